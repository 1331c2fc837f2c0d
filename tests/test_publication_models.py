import pytest

from docspace.core import RecordId, ValidationError
from docspace.publication_models import (
    CreatePublicationRequest,
    PublicationAnalytics,
    PublicationHistory,
    PublicationResponse,
    SpacePublication,
    UpdatePublicationRequest,
    format_publication_id,
    publication_record_id,
)


def _publication(**overrides):
    values = dict(space_id="space:s1", slug="my-docs", version=2, title="Docs", published_by="u1")
    values.update(overrides)
    return SpacePublication(**values)


def test_format_publication_id_adds_prefix():
    assert format_publication_id("abc") == "space_publication:abc"


def test_format_publication_id_keeps_existing_prefix():
    assert format_publication_id("space_publication:abc") == "space_publication:abc"


@pytest.mark.parametrize("given", ["abc", "space_publication:abc"])
def test_publication_record_id(given):
    assert publication_record_id(given) == RecordId("space_publication", "abc")


def test_create_request_accepts_valid_slug():
    request = CreatePublicationRequest(slug="my-docs-2", title="Docs")
    request.validate()
    assert request.slug == "my-docs-2"


@pytest.mark.parametrize("slug", ["", "My Docs", "bad--slug", "-lead", "trail-", "x" * 101])
def test_create_request_rejects_bad_slug(slug):
    with pytest.raises(ValidationError):
        CreatePublicationRequest(slug=slug, title="Docs").validate()


def test_create_request_rejects_empty_title():
    with pytest.raises(ValidationError):
        CreatePublicationRequest(slug="docs", title="   ").validate()


def test_update_request_title_checked_only_when_given():
    UpdatePublicationRequest().validate()
    with pytest.raises(ValidationError):
        UpdatePublicationRequest(title="").validate()


def test_publication_defaults():
    pub = _publication()
    assert pub.theme == "default"
    assert pub.enable_search is True
    assert pub.include_private_docs is False
    assert pub.enable_comments is False


@pytest.mark.parametrize(
    "active,deleted,expected",
    [(True, False, True), (False, False, False), (True, True, False)],
)
def test_can_update(active, deleted, expected):
    assert _publication(is_active=active, is_deleted=deleted).can_update() is expected


def test_urls_contain_base_and_slug():
    pub = _publication()
    public = pub.get_public_url("http://localhost:4173/")
    preview = pub.get_preview_url("http://localhost:4173")
    assert public.startswith("http://localhost:4173/")
    assert "//public" not in public
    assert public.endswith("/my-docs")
    assert preview.startswith(public)
    assert preview != public


def test_publication_round_trip_drops_missing_id():
    pub = _publication(seo_keywords=["a", "b"])
    data = pub.to_dict()
    assert "id" not in data
    assert SpacePublication.from_dict(data) == pub


def test_publication_from_dict_ignores_unknown_fields():
    data = _publication(id="space_publication:p1").to_dict()
    data["extra"] = 1
    restored = SpacePublication.from_dict(data)
    assert restored.id == "space_publication:p1"
    assert restored.slug == "my-docs"


def test_history_round_trip():
    history = PublicationHistory("space_publication:p1", 3, "u1", "Initial publication")
    assert PublicationHistory.from_dict(history.to_dict()) == history


def test_analytics_defaults_and_round_trip():
    analytics = PublicationAnalytics("space_publication:p1")
    assert analytics.total_views == 0
    assert analytics.popular_documents == []
    assert PublicationAnalytics.from_dict(analytics.to_dict()) == analytics


def test_response_from_publication():
    pub = _publication(id="space_publication:p1", description="About")
    response = PublicationResponse.from_publication(pub, 4, 17, "http://localhost:4173")
    assert response.id == "space_publication:p1"
    assert response.document_count == 4
    assert response.total_views == 17
    assert response.custom_domain is None
    assert response.public_url == pub.get_public_url("http://localhost:4173")
    assert response.preview_url == pub.get_preview_url("http://localhost:4173")
    assert response.published_at == pub.published_at


def test_response_without_id_uses_empty_string():
    response = PublicationResponse.from_publication(_publication(), 0, 0, "http://localhost")
    assert response.id == ""