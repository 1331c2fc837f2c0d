"""Requests, records and responses describing published spaces."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from .core import RecordId, ValidationError, strip_table_prefix

PUBLICATION_TABLE = "space_publication"
DEFAULT_THEME = "default"
MAX_SLUG_LENGTH = 100
MAX_TITLE_LENGTH = 200

_SLUG_RE = re.compile(r"[a-z0-9]+(?:-[a-z0-9]+)*")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _known_fields(cls: type, data: Mapping[str, Any]) -> dict:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


def _serialize(obj: Any) -> dict:
    data = asdict(obj)
    if data.get("id") is None:
        data.pop("id", None)
    return data


def _check_title(title: str) -> None:
    if not title.strip():
        raise ValidationError("title must not be empty")
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(f"title must be at most {MAX_TITLE_LENGTH} characters")


def format_publication_id(publication_id: str) -> str:
    """Full ``space_publication:key`` form of a publication identifier."""
    prefix = f"{PUBLICATION_TABLE}:"
    return publication_id if publication_id.startswith(prefix) else prefix + publication_id


def publication_record_id(publication_id: str) -> RecordId:
    """Record identifier of a publication, with or without its table prefix."""
    return RecordId(PUBLICATION_TABLE, strip_table_prefix(publication_id, PUBLICATION_TABLE))


@dataclass
class CreatePublicationRequest:
    slug: str
    title: str
    description: Optional[str] = None
    cover_image: Optional[str] = None
    theme: Optional[str] = None
    include_private_docs: Optional[bool] = None
    enable_search: Optional[bool] = None
    enable_comments: Optional[bool] = None
    custom_css: Optional[str] = None
    custom_js: Optional[str] = None
    seo_title: Optional[str] = None
    seo_description: Optional[str] = None
    seo_keywords: Optional[list[str]] = None

    def validate(self) -> None:
        if not self.slug or len(self.slug) > MAX_SLUG_LENGTH:
            raise ValidationError(f"slug must be 1 to {MAX_SLUG_LENGTH} characters")
        if not _SLUG_RE.fullmatch(self.slug):
            raise ValidationError(
                "slug may hold only lower-case letters, digits and single hyphens"
            )
        _check_title(self.title)


@dataclass
class UpdatePublicationRequest:
    title: Optional[str] = None
    description: Optional[str] = None
    cover_image: Optional[str] = None
    theme: Optional[str] = None
    enable_search: Optional[bool] = None
    enable_comments: Optional[bool] = None
    custom_css: Optional[str] = None
    custom_js: Optional[str] = None
    seo_title: Optional[str] = None
    seo_description: Optional[str] = None
    seo_keywords: Optional[list[str]] = None

    def validate(self) -> None:
        if self.title is not None:
            _check_title(self.title)


@dataclass
class SpacePublication:
    """A versioned public snapshot of a space."""

    space_id: str
    slug: str
    version: int
    title: str
    published_by: str
    description: Optional[str] = None
    cover_image: Optional[str] = None
    theme: str = DEFAULT_THEME
    include_private_docs: bool = False
    enable_search: bool = True
    enable_comments: bool = False
    custom_css: Optional[str] = None
    custom_js: Optional[str] = None
    seo_title: Optional[str] = None
    seo_description: Optional[str] = None
    seo_keywords: list[str] = field(default_factory=list)
    is_active: bool = True
    is_deleted: bool = False
    published_at: Optional[datetime] = field(default_factory=_now)
    updated_at: Optional[datetime] = field(default_factory=_now)
    deleted_at: Optional[datetime] = None
    id: Optional[str] = None

    def can_update(self) -> bool:
        """Only live publications may be edited or republished."""
        return self.is_active and not self.is_deleted

    def get_public_url(self, frontend_url: str) -> str:
        return f"{frontend_url.rstrip('/')}/public/{self.slug}"

    def get_preview_url(self, frontend_url: str) -> str:
        return f"{self.get_public_url(frontend_url)}?preview=true&version={self.version}"

    def to_dict(self) -> dict:
        return _serialize(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SpacePublication":
        values = _known_fields(cls, data)
        values["seo_keywords"] = list(values.get("seo_keywords") or [])
        return cls(**values)


@dataclass
class PublicationHistory:
    """One publish event of a publication."""

    publication_id: str
    version: int
    published_by: str
    change_summary: Optional[str] = None
    changed_documents: list[str] = field(default_factory=list)
    published_at: Optional[datetime] = field(default_factory=_now)
    id: Optional[str] = None

    def to_dict(self) -> dict:
        return _serialize(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PublicationHistory":
        values = _known_fields(cls, data)
        values["changed_documents"] = list(values.get("changed_documents") or [])
        return cls(**values)


@dataclass
class PublicationAnalytics:
    """Visit counters of a publication."""

    publication_id: str
    total_views: int = 0
    unique_visitors: int = 0
    views_today: int = 0
    views_week: int = 0
    views_month: int = 0
    popular_documents: list[str] = field(default_factory=list)
    updated_at: Optional[datetime] = field(default_factory=_now)
    id: Optional[str] = None

    def to_dict(self) -> dict:
        return _serialize(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PublicationAnalytics":
        values = _known_fields(cls, data)
        values["popular_documents"] = list(values.get("popular_documents") or [])
        return cls(**values)


@dataclass
class PublicationResponse:
    id: str
    space_id: str
    slug: str
    version: int
    title: str
    description: Optional[str]
    cover_image: Optional[str]
    theme: str
    public_url: str
    preview_url: str
    custom_domain: Optional[str]
    document_count: int
    total_views: int
    is_active: bool
    published_by: str
    published_at: datetime
    updated_at: datetime

    @classmethod
    def from_publication(
        cls,
        publication: SpacePublication,
        document_count: int,
        total_views: int,
        frontend_url: str,
    ) -> "PublicationResponse":
        """Response for a publication, with links built on the frontend URL."""
        return cls(
            id=publication.id or "",
            space_id=publication.space_id,
            slug=publication.slug,
            version=publication.version,
            title=publication.title,
            description=publication.description,
            cover_image=publication.cover_image,
            theme=publication.theme,
            public_url=publication.get_public_url(frontend_url),
            preview_url=publication.get_preview_url(frontend_url),
            custom_domain=None,
            document_count=document_count,
            total_views=total_views,
            is_active=publication.is_active,
            published_by=publication.published_by,
            published_at=publication.published_at or _now(),
            updated_at=publication.updated_at or _now(),
        )