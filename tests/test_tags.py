import pytest

from docspace.core import ConflictError, Database, NotFoundError, ValidationError
from docspace.tags import (
    CreateTagRequest,
    Tag,
    TagDocumentRequest,
    TagService,
    UpdateTagRequest,
)


@pytest.fixture
def service():
    return TagService(Database())


def _key(tag):
    return tag.id.split(":", 1)[1]


def _make(service, name, space_id=None, description=None):
    return service.create_tag(
        "creator", CreateTagRequest(name=name, color="#ff0000", description=description, space_id=space_id)
    )


def test_create_and_get_round_trip(service):
    tag = _make(service, "Guide", space_id="s1")
    fetched = service.get_tag(_key(tag))
    assert fetched.name == "Guide"
    assert fetched.space_id == "space:s1"
    assert fetched.usage_count == 0
    assert fetched.created_by == "creator"
    assert fetched.id.startswith("tag:")


def test_slug_generated_from_name():
    assert Tag.generate_slug("Hello World") == "hello-world"


def test_duplicate_name_in_same_space_conflicts(service):
    _make(service, "Guide", space_id="s1")
    with pytest.raises(ConflictError):
        _make(service, "Guide", space_id="space:s1")


def test_same_name_allowed_in_other_space(service):
    first = _make(service, "Guide", space_id="s1")
    second = _make(service, "Guide", space_id="s2")
    assert first.id != second.id


def test_create_validates_name(service):
    with pytest.raises(ValidationError):
        _make(service, "   ")


def test_get_missing_tag_raises(service):
    with pytest.raises(NotFoundError):
        service.get_tag("nope")


def test_update_changes_name_and_slug(service):
    tag = _make(service, "Old", space_id="s1")
    updated = service.update_tag(_key(tag), "editor", UpdateTagRequest(name="New Name", color="#00ff00"))
    assert updated.name == "New Name"
    assert updated.slug == Tag.generate_slug("New Name")
    assert updated.color == "#00ff00"
    assert service.get_tag(_key(tag)).name == "New Name"


def test_update_to_existing_name_conflicts(service):
    _make(service, "Taken", space_id="s1")
    tag = _make(service, "Other", space_id="s1")
    with pytest.raises(ConflictError):
        service.update_tag(_key(tag), "editor", UpdateTagRequest(name="Taken"))


def test_update_keeping_same_name_is_allowed(service):
    tag = _make(service, "Same", space_id="s1")
    updated = service.update_tag(_key(tag), "editor", UpdateTagRequest(name="Same", description="d"))
    assert updated.description == "d"


def test_tag_document_increments_usage_and_skips_duplicates(service):
    tag = _make(service, "A")
    links = service.tag_document("u", TagDocumentRequest("doc1", [_key(tag)]))
    assert len(links) == 1
    assert links[0].document_id == "document:doc1"
    again = service.tag_document("u", TagDocumentRequest("doc1", [_key(tag)]))
    assert again == []
    assert service.get_tag(_key(tag)).usage_count == 1


def test_untag_never_goes_below_zero(service):
    tag = _make(service, "A")
    service.tag_document("u", TagDocumentRequest("doc1", [_key(tag)]))
    service.untag_document("doc1", _key(tag))
    service.untag_document("doc1", _key(tag))
    assert service.get_tag(_key(tag)).usage_count == 0
    assert service.get_document_tags("doc1") == []


def test_document_tags_sorted_by_name(service):
    b = _make(service, "beta")
    a = _make(service, "alpha")
    service.tag_document("u", TagDocumentRequest("doc1", [_key(b), _key(a)]))
    assert [t.name for t in service.get_document_tags("doc1")] == ["alpha", "beta"]


def test_documents_by_tag(service):
    tag = _make(service, "A")
    for doc in ("d1", "d2", "d3"):
        service.tag_document("u", TagDocumentRequest(doc, [_key(tag)]))
    all_docs = service.get_documents_by_tag(_key(tag), 1, 10)
    assert set(all_docs) == {"document:d1", "document:d2", "document:d3"}
    page_one = service.get_documents_by_tag(_key(tag), 1, 2)
    page_two = service.get_documents_by_tag(_key(tag), 2, 2)
    assert len(page_one) == 2 and len(page_two) == 1
    assert set(page_one + page_two) == set(all_docs)


def test_delete_tag_removes_links(service):
    tag = _make(service, "A")
    service.tag_document("u", TagDocumentRequest("doc1", [_key(tag)]))
    service.delete_tag(_key(tag))
    with pytest.raises(NotFoundError):
        service.get_tag(_key(tag))
    assert service.get_documents_by_tag(_key(tag), 1, 10) == []


def test_tags_by_space_ordered_by_usage_then_name(service):
    z = _make(service, "zeta", space_id="s1")
    _make(service, "alpha", space_id="s1")
    _make(service, "mid", space_id="s1")
    _make(service, "elsewhere", space_id="s2")
    service.tag_document("u", TagDocumentRequest("d", [_key(z)]))
    names = [t.name for t in service.get_tags_by_space("s1", 1, 10)]
    assert names == ["zeta", "alpha", "mid"]
    assert [t.name for t in service.get_tags_by_space("s1", 2, 2)] == ["mid"]


def test_global_tags_separate_from_space_tags(service):
    _make(service, "global")
    _make(service, "scoped", space_id="s1")
    assert [t.name for t in service.get_tags_by_space(None, 1, 10)] == ["global"]


def test_popular_tags_exclude_unused(service):
    used = _make(service, "used")
    _make(service, "unused")
    service.tag_document("u", TagDocumentRequest("d", [_key(used)]))
    assert [t.name for t in service.get_popular_tags(None, 10)] == ["used"]


def test_search_tags_matches_name_or_description(service):
    _make(service, "Python", space_id="s1")
    _make(service, "Other", space_id="s1", description="about python code")
    _make(service, "Rust", space_id="s1")
    found = {t.name for t in service.search_tags("s1", "python", 10)}
    assert found == {"Python", "Other"}


def test_statistics(service):
    used = _make(service, "used", space_id="s1")
    _make(service, "unused", space_id="s1")
    service.tag_document("u", TagDocumentRequest("d", [_key(used)]))
    stats = service.get_tag_statistics("s1")
    assert stats.total_tags == 2
    assert stats.used_tags == 1
    assert stats.unused_tags == stats.total_tags - stats.used_tags
    assert [t.name for t in stats.most_used_tags] == ["used"]