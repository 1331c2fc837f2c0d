from datetime import datetime, timedelta, timezone

import pytest

from docspace.core import Database
from docspace.search import (
    SearchIndex,
    SearchRequest,
    SearchService,
    SearchSortBy,
    calculate_relevance_score,
    generate_highlights,
)

NOW = datetime(2024, 1, 31, tzinfo=timezone.utc)


def make_index(**overrides):
    values = dict(
        document_id="document:d1",
        space_id="space:s1",
        title="Intro",
        content="",
        excerpt="",
        author_id="alice",
        last_updated=NOW - timedelta(days=365),
    )
    values.update(overrides)
    return SearchIndex(**values)


@pytest.fixture
def service():
    return SearchService(Database())


def add(service, doc, title, *, content="", tags=(), author="alice", public=True, space="s1"):
    service.update_document_index(doc, space, title, content, "", list(tags), author, public)


def test_highlights_empty_query():
    assert generate_highlights(make_index(title="Anything"), "") == []


def test_title_highlight_span_is_case_insensitive():
    index = make_index(title="Getting Started Guide")
    highlights = [h for h in generate_highlights(index, "STARTED") if h.field == "title"]
    assert len(highlights) == 1
    h = highlights[0]
    assert h.text == index.title
    assert index.title[h.start:h.end].lower() == "started"


def test_content_highlight_has_context_and_ellipses():
    content = "x" * 100 + "needle" + "y" * 100
    highlights = generate_highlights(make_index(content=content), "needle")
    h = next(h for h in highlights if h.field == "content")
    assert h.text.startswith("...") and h.text.endswith("...")
    inner = h.text[3:-3]
    assert inner in content
    assert inner[h.start:h.end] == "needle"
    assert inner.startswith("x" * 50)
    assert inner.endswith("y" * 50)


def test_content_highlight_at_start():
    h = generate_highlights(make_index(content="needle at the start"), "needle")[0]
    assert h.start == 0
    assert h.text == "...needle at the start..."


def test_no_match_gives_no_highlights():
    assert generate_highlights(make_index(title="Alpha", content="beta"), "gamma") == []


def test_score_empty_query():
    assert calculate_relevance_score(make_index(), "", NOW) == 0.0


def test_exact_title_scores_higher_than_partial():
    exact = calculate_relevance_score(make_index(title="Guide"), "guide", NOW)
    partial = calculate_relevance_score(make_index(title="User Guide"), "guide", NOW)
    none = calculate_relevance_score(make_index(title="Other"), "guide", NOW)
    assert exact > partial > none


def test_matching_tag_adds_five():
    with_tag = calculate_relevance_score(make_index(tags=["guide-tips"]), "guide", NOW)
    without = calculate_relevance_score(make_index(tags=["misc"]), "guide", NOW)
    assert with_tag - without == 5.0


def test_each_content_occurrence_adds_one():
    content = "a b a b a"
    with_content = calculate_relevance_score(make_index(title="zzz", content=content), "a", NOW)
    empty = calculate_relevance_score(make_index(title="zzz"), "a", NOW)
    assert with_content - empty == content.count("a")


def test_recent_update_bonus():
    recent = calculate_relevance_score(make_index(last_updated=NOW - timedelta(days=2)), "intro", NOW)
    old = calculate_relevance_score(make_index(), "intro", NOW)
    assert recent - old == 1.0


def test_search_respects_visibility(service):
    add(service, "d1", "Public doc", author="bob")
    add(service, "d2", "Bob private", author="bob", public=False)
    add(service, "d3", "Alice private", author="alice", public=False)
    response = service.search("alice", SearchRequest())
    ids = {r.document_id for r in response.results}
    assert ids == {"document:d1", "document:d3"}
    assert response.total_count == len(ids)


def test_search_query_filters_title_and_content(service):
    add(service, "d1", "Install guide")
    add(service, "d2", "Other", content="see the guide here")
    add(service, "d3", "Unrelated")
    response = service.search("alice", SearchRequest(query="GUIDE"))
    assert {r.document_id for r in response.results} == {"document:d1", "document:d2"}
    assert response.query == "GUIDE"
    assert response.took >= 0


def test_relevance_puts_title_matches_first(service):
    add(service, "d1", "Other", content="guide")
    add(service, "d2", "The guide")
    response = service.search("alice", SearchRequest(query="guide"))
    assert response.results[0].document_id == "document:d2"
    assert response.results[0].score > response.results[1].score


def test_space_and_tag_filters(service):
    add(service, "d1", "A", tags=["rust"], space="s1")
    add(service, "d2", "B", tags=["python"], space="s1")
    add(service, "d3", "C", tags=["python"], space="s2")
    by_space = service.search("alice", SearchRequest(space_id="space:s2"))
    assert [r.document_id for r in by_space.results] == ["document:d3"]
    by_tag = service.search("alice", SearchRequest(tags=["python"]))
    assert {r.document_id for r in by_tag.results} == {"document:d2", "document:d3"}


def test_sort_by_title(service):
    for doc, title in [("d1", "Charlie"), ("d2", "Alpha"), ("d3", "Bravo")]:
        add(service, doc, title)
    response = service.search("alice", SearchRequest(sort_by=SearchSortBy.TITLE))
    titles = [r.title for r in response.results]
    assert titles == sorted(titles)


def test_pagination(service):
    for n in range(5):
        add(service, f"d{n}", f"Doc {n}")
    request = SearchRequest(sort_by=SearchSortBy.TITLE, per_page=2)
    pages = [service.search("alice", SearchRequest(**{**request.__dict__, "page": p})) for p in (1, 2, 3)]
    seen = [r.document_id for page in pages for r in page.results]
    assert len(seen) == len(set(seen)) == 5
    total = pages[0]
    assert total.total_pages * total.per_page >= total.total_count > (total.total_pages - 1) * total.per_page


def test_update_overwrites_and_delete_removes(service):
    add(service, "d1", "First")
    add(service, "d1", "Second")
    results = service.search("alice", SearchRequest()).results
    assert [r.title for r in results] == ["Second"]
    service.delete_index("d1")
    assert service.search("alice", SearchRequest()).results == []


def test_suggestions(service):
    add(service, "d1", "Guide one", tags=["guidebook", "misc"])
    add(service, "d2", "Guide two", tags=["guidebook"])
    suggestions = service.suggest_search_terms("alice", "guide", 10)
    assert "Guide one" in suggestions and "Guide two" in suggestions
    assert suggestions.count("guidebook") == 1
    assert "misc" not in suggestions
    assert len(service.suggest_search_terms("alice", "guide", 1)) == 1


def test_bulk_reindex(service):
    db = service.db
    db.create("document", {"title": "Alive", "space_id": "space:s1", "author_id": "alice",
                           "is_public": True, "is_deleted": False})
    db.create("document", {"title": "Gone", "space_id": "space:s1", "author_id": "alice",
                           "is_public": True, "is_deleted": True})
    assert service.bulk_reindex() == 1
    results = service.search("alice", SearchRequest())
    assert [r.title for r in results.results] == ["Alive"]