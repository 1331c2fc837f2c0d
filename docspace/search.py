"""Full-text search over indexed documents with highlights and relevance scores."""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Mapping, Optional

from .core import Database, strip_table_prefix

log = logging.getLogger(__name__)

TABLE = "search_index"
HIGHLIGHT_CONTEXT = 50
RECENT_DAYS = 30
SECONDS_PER_DAY = 86400


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _contains_text(haystack: Optional[str], needle: str) -> bool:
    return needle.lower() in (haystack or "").lower()


class SearchSortBy(str, Enum):
    RELEVANCE = "relevance"
    CREATED_AT = "created_at"
    UPDATED_AT = "updated_at"
    TITLE = "title"


@dataclass
class SearchIndex:
    """The searchable form of one document."""

    document_id: str
    space_id: str
    title: str
    content: str
    excerpt: str
    author_id: str
    tags: list[str] = field(default_factory=list)
    is_public: bool = False
    last_updated: datetime = field(default_factory=_now)
    id: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        if data["id"] is None:
            del data["id"]
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SearchIndex":
        names = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in names}
        values.setdefault("excerpt", "")
        values.setdefault("content", "")
        values["tags"] = list(values.get("tags") or [])
        return cls(**values)


@dataclass
class SearchRequest:
    query: str = ""
    space_id: Optional[str] = None
    author_id: Optional[str] = None
    tags: Optional[list[str]] = None
    sort_by: Optional[SearchSortBy] = None
    page: Optional[int] = None
    per_page: Optional[int] = None


@dataclass
class SearchHighlight:
    field: str
    text: str
    start: int
    end: int


@dataclass
class SearchResult:
    document_id: str
    space_id: str
    title: str
    excerpt: str
    tags: list[str]
    author_id: str
    last_updated: datetime
    score: float
    highlights: list[SearchHighlight]


@dataclass
class SearchResponse:
    results: list[SearchResult]
    total_count: int
    page: int
    per_page: int
    query: str
    took: int
    total_pages: int = field(init=False)

    def __post_init__(self) -> None:
        if self.per_page > 0:
            self.total_pages = (self.total_count + self.per_page - 1) // self.per_page
        else:
            self.total_pages = 0


def generate_highlights(index: SearchIndex, query: str) -> list[SearchHighlight]:
    """Spans where the query first occurs in the title and in the content."""
    if not query:
        return []
    needle = query.lower()
    highlights = []

    pos = index.title.lower().find(needle)
    if pos != -1:
        highlights.append(SearchHighlight("title", index.title, pos, pos + len(query)))

    pos = index.content.lower().find(needle)
    if pos != -1:
        start = max(pos - HIGHLIGHT_CONTEXT, 0)
        end = min(pos + len(query) + HIGHLIGHT_CONTEXT, len(index.content))
        highlights.append(
            SearchHighlight(
                "content",
                f"...{index.content[start:end]}...",
                pos - start,
                pos - start + len(query),
            )
        )
    return highlights


def calculate_relevance_score(
    index: SearchIndex, query: str, now: Optional[datetime] = None
) -> float:
    """Weighted score of title, content and tag matches plus a recency bonus."""
    if not query:
        return 0.0
    needle = query.lower()
    title = index.title.lower()
    score = 0.0

    if needle in title:
        score += 10.0
        if title == needle:
            score += 20.0

    score += float(index.content.lower().count(needle))
    score += 5.0 * sum(1 for tag in index.tags if needle in tag.lower())

    now = now or _now()
    days = int((now.timestamp() - index.last_updated.timestamp()) / SECONDS_PER_DAY)
    if days < RECENT_DAYS:
        score += 1.0
    return score


def _visible(row: Mapping[str, Any], user_id: str) -> bool:
    return bool(row.get("is_public")) or row.get("author_id") == user_id


class SearchService:
    """Maintains the search index and answers queries against it."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def create_or_update_index(self, index: SearchIndex) -> None:
        key = strip_table_prefix(index.document_id, "document")
        self.db.update(TABLE, key, index.to_dict())

    def delete_index(self, document_id: str) -> None:
        self.db.delete(TABLE, strip_table_prefix(document_id, "document"))

    def search(self, user_id: str, request: SearchRequest) -> SearchResponse:
        started = time.perf_counter()
        page = 1 if request.page is None else request.page
        per_page = 20 if request.per_page is None else request.per_page
        offset = max((page - 1) * per_page, 0)

        matches = [SearchIndex.from_dict(r) for r in self.db.find(TABLE, self._filter(user_id, request))]
        self._sort(matches, request)
        window = matches[offset:offset + max(per_page, 0)]

        now = _now()
        results = [
            SearchResult(
                document_id=index.document_id,
                space_id=index.space_id,
                title=index.title,
                excerpt=index.excerpt,
                tags=index.tags,
                author_id=index.author_id,
                last_updated=index.last_updated,
                score=calculate_relevance_score(index, request.query, now),
                highlights=generate_highlights(index, request.query),
            )
            for index in window
        ]
        took = int((time.perf_counter() - started) * 1000)
        return SearchResponse(results, len(matches), page, per_page, request.query, took)

    def suggest_search_terms(self, user_id: str, prefix: str, limit: int) -> list[str]:
        """Titles and tags of visible documents that contain the prefix."""
        rows = self.db.find(
            TABLE,
            lambda r: _visible(r, user_id) and _contains_text(r.get("title"), prefix),
            limit=limit,
        )
        needle = prefix.lower()
        suggestions: list[str] = []
        for row in rows:
            index = SearchIndex.from_dict(row)
            if needle in index.title.lower():
                suggestions.append(index.title)
            for tag in index.tags:
                if needle in tag.lower() and tag not in suggestions:
                    suggestions.append(tag)
        return suggestions[:max(limit, 0)]

    def update_document_index(
        self,
        document_id: str,
        space_id: str,
        title: str,
        content: str,
        excerpt: str,
        tags: list[str],
        author_id: str,
        is_public: bool,
    ) -> None:
        index = SearchIndex(
            document_id=f"document:{strip_table_prefix(document_id, 'document')}",
            space_id=f"space:{strip_table_prefix(space_id, 'space')}",
            title=title,
            content=content,
            excerpt=excerpt,
            author_id=author_id,
            tags=list(tags),
            is_public=is_public,
        )
        self.create_or_update_index(index)

    def bulk_reindex(self) -> int:
        """Rebuild the index entry of every document not deleted; return how many."""
        documents = self.db.find("document", lambda r: not r.get("is_deleted", False))
        for doc in documents:
            self.create_or_update_index(
                SearchIndex(
                    document_id=str(doc["id"]),
                    space_id=str(doc.get("space_id") or ""),
                    title=doc.get("title") or "",
                    content=doc.get("content") or "",
                    excerpt=doc.get("excerpt") or "",
                    author_id=doc.get("author_id") or "",
                    tags=list(doc.get("tags") or []),
                    is_public=bool(doc.get("is_public", False)),
                    last_updated=doc.get("updated_at") or doc.get("created_at") or _now(),
                )
            )
        log.info("Reindexed %d documents", len(documents))
        return len(documents)

    @staticmethod
    def _filter(user_id: str, request: SearchRequest) -> Callable[[dict], bool]:
        space = strip_table_prefix(request.space_id, "space") if request.space_id else None
        wanted_tags = set(request.tags or [])

        def matches(row: dict) -> bool:
            if not _visible(row, user_id):
                return False
            if request.query and not (
                _contains_text(row.get("title"), request.query)
                or _contains_text(row.get("content"), request.query)
            ):
                return False
            if space is not None and strip_table_prefix(str(row.get("space_id")), "space") != space:
                return False
            if request.author_id is not None and row.get("author_id") != request.author_id:
                return False
            if wanted_tags and not wanted_tags.intersection(row.get("tags") or []):
                return False
            return True

        return matches

    @staticmethod
    def _sort(items: list[SearchIndex], request: SearchRequest) -> None:
        order = SearchSortBy(request.sort_by or SearchSortBy.RELEVANCE)
        if order is SearchSortBy.RELEVANCE:
            items.sort(
                key=lambda i: (_contains_text(i.title, request.query), i.last_updated),
                reverse=True,
            )
        elif order is SearchSortBy.CREATED_AT:
            items.sort(key=lambda i: i.id or "", reverse=True)
        elif order is SearchSortBy.UPDATED_AT:
            items.sort(key=lambda i: i.last_updated, reverse=True)
        else:
            items.sort(key=lambda i: i.title)