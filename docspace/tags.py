"""Tags, their attachment to documents and usage statistics."""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from .core import (
    ConflictError,
    Database,
    InternalError,
    NotFoundError,
    ValidationError,
    strip_table_prefix,
)

log = logging.getLogger(__name__)

TAG_TABLE = "tag"
DOCUMENT_TAG_TABLE = "document_tag"
POPULAR_IN_STATISTICS = 5

_SLUG_SEPARATORS = re.compile(r"[^\w]+", re.UNICODE)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _tag_ref(tag_id: str) -> str:
    return f"tag:{strip_table_prefix(tag_id, 'tag')}"


def _document_ref(document_id: str) -> str:
    return f"document:{strip_table_prefix(document_id, 'document')}"


def _space_ref(space_id: Optional[str]) -> Optional[str]:
    if space_id is None:
        return None
    return f"space:{strip_table_prefix(space_id, 'space')}"


def _known_fields(cls: type, data: Mapping[str, Any]) -> dict:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


@dataclass
class Tag:
    """A label that can be attached to documents, optionally scoped to a space."""

    name: str
    color: str
    created_by: str
    description: Optional[str] = None
    space_id: Optional[str] = None
    slug: str = ""
    usage_count: int = 0
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    id: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.slug:
            self.slug = self.generate_slug(self.name)

    @staticmethod
    def generate_slug(name: str) -> str:
        """Lower-case name with runs of non-word characters turned into dashes."""
        slug = _SLUG_SEPARATORS.sub("-", name.strip().lower()).replace("_", "-")
        return re.sub(r"-{2,}", "-", slug).strip("-")

    def to_dict(self) -> dict:
        data = asdict(self)
        if data["id"] is None:
            del data["id"]
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Tag":
        return cls(**_known_fields(cls, data))


@dataclass
class DocumentTag:
    """The attachment of one tag to one document."""

    document_id: str
    tag_id: str
    tagged_by: str
    tagged_at: datetime = field(default_factory=_now)
    id: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        if data["id"] is None:
            del data["id"]
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DocumentTag":
        return cls(**_known_fields(cls, data))


@dataclass
class CreateTagRequest:
    name: str
    color: str
    description: Optional[str] = None
    space_id: Optional[str] = None

    def validate(self) -> None:
        if not self.name.strip():
            raise ValidationError("name must not be empty")
        if not self.color.strip():
            raise ValidationError("color must not be empty")


@dataclass
class UpdateTagRequest:
    name: Optional[str] = None
    description: Optional[str] = None
    color: Optional[str] = None

    def validate(self) -> None:
        if self.name is not None and not self.name.strip():
            raise ValidationError("name must not be empty")
        if self.color is not None and not self.color.strip():
            raise ValidationError("color must not be empty")


@dataclass
class TagDocumentRequest:
    document_id: str
    tag_ids: list[str] = field(default_factory=list)


@dataclass
class TagStatistics:
    total_tags: int
    used_tags: int
    unused_tags: int
    most_used_tags: list[Tag]


def _contains_text(haystack: Optional[str], needle: str) -> bool:
    return needle.lower() in (haystack or "").lower()


class TagService:
    """Creates tags, attaches them to documents and reports on their use."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def create_tag(self, creator_id: str, request: CreateTagRequest) -> Tag:
        request.validate()
        if self._tag_exists_in_space(request.space_id, request.name):
            raise ConflictError("Tag name already exists in this space")
        tag = Tag(
            name=request.name,
            color=request.color,
            created_by=creator_id,
            description=request.description or "",
            space_id=_space_ref(request.space_id),
        )
        created = self.db.create(TAG_TABLE, tag.to_dict())
        if created is None:
            raise InternalError("Failed to create tag")
        return Tag.from_dict(created)

    def get_tag(self, tag_id: str) -> Tag:
        row = self.db.select(TAG_TABLE, tag_id)
        if row is None:
            raise NotFoundError("Tag not found")
        return Tag.from_dict(row)

    def update_tag(self, tag_id: str, updater_id: str, request: UpdateTagRequest) -> Tag:
        request.validate()
        tag = self.get_tag(tag_id)

        if request.name is not None:
            if request.name != tag.name and self._tag_exists_in_space(tag.space_id, request.name):
                raise ConflictError("Tag name already exists in this space")
            tag.name = request.name
            tag.slug = Tag.generate_slug(tag.name)
        if request.description is not None:
            tag.description = request.description
        if request.color is not None:
            tag.color = request.color
        tag.updated_at = _now()

        updated = self.db.update(TAG_TABLE, tag_id, tag.to_dict())
        log.info("User %s updated tag %s", updater_id, tag_id)
        return Tag.from_dict(updated)

    def delete_tag(self, tag_id: str) -> None:
        """Remove a tag together with all of its document attachments."""
        self.db.delete_where(DOCUMENT_TAG_TABLE, {"tag_id": _tag_ref(tag_id)})
        self.db.delete(TAG_TABLE, tag_id)

    def get_tags_by_space(self, space_id: Optional[str], page: int, per_page: int) -> list[Tag]:
        rows = self.db.find(
            TAG_TABLE,
            {"space_id": _space_ref(space_id)},
            order_by=["-usage_count", "name"],
            limit=per_page,
            offset=(page - 1) * per_page,
        )
        return [Tag.from_dict(r) for r in rows]

    def get_popular_tags(self, space_id: Optional[str], limit: int) -> list[Tag]:
        space = _space_ref(space_id)
        rows = self.db.find(
            TAG_TABLE,
            lambda r: r.get("space_id") == space and r.get("usage_count", 0) > 0,
            order_by="-usage_count",
            limit=limit,
        )
        return [Tag.from_dict(r) for r in rows]

    def search_tags(self, space_id: Optional[str], query: str, limit: int) -> list[Tag]:
        space = _space_ref(space_id)
        rows = self.db.find(
            TAG_TABLE,
            lambda r: r.get("space_id") == space
            and (_contains_text(r.get("name"), query) or _contains_text(r.get("description"), query)),
            order_by="-usage_count",
            limit=limit,
        )
        return [Tag.from_dict(r) for r in rows]

    def tag_document(self, tagger_id: str, request: TagDocumentRequest) -> list[DocumentTag]:
        """Attach each tag not yet attached; return the new attachments."""
        document = _document_ref(request.document_id)
        created_tags = []
        for tag_id in request.tag_ids:
            if self._document_tag_exists(request.document_id, tag_id):
                continue
            link = DocumentTag(document_id=document, tag_id=_tag_ref(tag_id), tagged_by=tagger_id)
            created = self.db.create(DOCUMENT_TAG_TABLE, link.to_dict())
            if created is not None:
                created_tags.append(DocumentTag.from_dict(created))
                self._increment_tag_usage(tag_id)
        return created_tags

    def untag_document(self, document_id: str, tag_id: str) -> None:
        self.db.delete_where(
            DOCUMENT_TAG_TABLE,
            {"document_id": _document_ref(document_id), "tag_id": _tag_ref(tag_id)},
        )
        self._decrement_tag_usage(tag_id)

    def get_document_tags(self, document_id: str) -> list[Tag]:
        links = self.db.find(DOCUMENT_TAG_TABLE, {"document_id": _document_ref(document_id)})
        tag_refs = {link["tag_id"] for link in links}
        rows = self.db.find(TAG_TABLE, lambda r: r.get("id") in tag_refs, order_by="name")
        return [Tag.from_dict(r) for r in rows]

    def get_documents_by_tag(self, tag_id: str, page: int, per_page: int) -> list[str]:
        rows = self.db.find(
            DOCUMENT_TAG_TABLE,
            {"tag_id": _tag_ref(tag_id)},
            order_by="-tagged_at",
            limit=per_page,
            offset=(page - 1) * per_page,
        )
        return [str(r["document_id"]) for r in rows]

    def get_tag_statistics(self, space_id: Optional[str]) -> TagStatistics:
        space = _space_ref(space_id)
        total = self.db.count(TAG_TABLE, {"space_id": space})
        used = self.db.count(
            TAG_TABLE, lambda r: r.get("space_id") == space and r.get("usage_count", 0) > 0
        )
        return TagStatistics(
            total_tags=total,
            used_tags=used,
            unused_tags=total - used,
            most_used_tags=self.get_popular_tags(space_id, POPULAR_IN_STATISTICS),
        )

    def _tag_exists_in_space(self, space_id: Optional[str], name: str) -> bool:
        return self.db.count(TAG_TABLE, {"space_id": _space_ref(space_id), "name": name}) > 0

    def _document_tag_exists(self, document_id: str, tag_id: str) -> bool:
        where = {"document_id": _document_ref(document_id), "tag_id": _tag_ref(tag_id)}
        return self.db.count(DOCUMENT_TAG_TABLE, where) > 0

    def _increment_tag_usage(self, tag_id: str) -> None:
        self.db.update_where(
            TAG_TABLE,
            {"id": _tag_ref(tag_id)},
            lambda r: {"usage_count": r.get("usage_count", 0) + 1},
        )

    def _decrement_tag_usage(self, tag_id: str) -> None:
        self.db.update_where(
            TAG_TABLE,
            {"id": _tag_ref(tag_id)},
            lambda r: {"usage_count": max(r.get("usage_count", 0) - 1, 0)},
        )