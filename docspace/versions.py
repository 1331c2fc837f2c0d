"""Document version history: creation, restoration, comparison and diffs."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from itertools import zip_longest
from typing import Any, Mapping, Optional

from .core import BadRequestError, Database, NotFoundError, ValidationError

log = logging.getLogger(__name__)

TABLE = "document_version"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _document_ref(document_id: str) -> str:
    return f"document:{document_id}"


class VersionChangeType(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    RESTORED = "restored"


class DiffChangeType(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"


@dataclass
class CreateVersionRequest:
    title: str
    content: str
    change_type: VersionChangeType = VersionChangeType.UPDATED
    summary: Optional[str] = None

    def validate(self) -> None:
        if not self.title.strip():
            raise ValidationError("title must not be empty")


@dataclass
class DocumentVersion:
    """One stored revision of a document."""

    document_id: str
    version_number: int
    title: str
    content: str
    author_id: str
    change_type: VersionChangeType
    summary: Optional[str] = None
    is_current: bool = False
    id: Optional[str] = None
    created_at: datetime = field(default_factory=_now)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["change_type"] = VersionChangeType(self.change_type).value
        if data["id"] is None:
            del data["id"]
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DocumentVersion":
        names = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in names}
        values["change_type"] = VersionChangeType(values["change_type"])
        return cls(**values)


@dataclass
class ContentDiff:
    line_number: int
    change_type: DiffChangeType
    old_content: Optional[str] = None
    new_content: Optional[str] = None


@dataclass
class VersionComparison:
    from_version: int
    to_version: int
    title_changed: bool
    content_diff: list[ContentDiff]
    summary: str


@dataclass
class VersionHistorySummary:
    total_versions: int
    latest_version_number: int
    first_created: Optional[datetime]
    last_updated: Optional[datetime]
    authors: list[str]
    change_types_count: dict[str, int]


def _lines(text: str) -> list[str]:
    if not text:
        return []
    parts = text.split("\n")
    if parts[-1] == "":
        parts.pop()
    return [p[:-1] if p.endswith("\r") else p for p in parts]


def generate_content_diff(old_content: str, new_content: str) -> list[ContentDiff]:
    """Line-by-line comparison of two texts, position against position."""
    diffs = []
    pairs = zip_longest(_lines(old_content), _lines(new_content), fillvalue="")
    for number, (old, new) in enumerate(pairs, start=1):
        if old == new:
            continue
        if not old:
            diffs.append(ContentDiff(number, DiffChangeType.ADDED, None, new))
        elif not new:
            diffs.append(ContentDiff(number, DiffChangeType.REMOVED, old, None))
        else:
            diffs.append(ContentDiff(number, DiffChangeType.MODIFIED, old, new))
    return diffs


class VersionService:
    """Keeps the revision history of documents."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def create_version(
        self, document_id: str, author_id: str, request: CreateVersionRequest
    ) -> DocumentVersion:
        """Store a new current version numbered after the latest one."""
        request.validate()
        number = self._latest_version_number(document_id) + 1
        self._unset_current_version(document_id)
        version = DocumentVersion(
            document_id=_document_ref(document_id),
            version_number=number,
            title=request.title,
            content=request.content,
            author_id=author_id,
            change_type=VersionChangeType(request.change_type),
            summary=request.summary or "",
            is_current=True,
        )
        created = self.db.create(TABLE, version.to_dict())
        return DocumentVersion.from_dict(created)

    def get_version(self, version_id: str) -> DocumentVersion:
        row = self.db.select(TABLE, version_id)
        if row is None:
            raise NotFoundError("Version not found")
        return DocumentVersion.from_dict(row)

    def get_document_versions(
        self, document_id: str, page: int, per_page: int
    ) -> list[DocumentVersion]:
        rows = self.db.find(
            TABLE,
            {"document_id": _document_ref(document_id)},
            order_by="-version_number",
            limit=per_page,
            offset=(page - 1) * per_page,
        )
        return [DocumentVersion.from_dict(r) for r in rows]

    def get_current_version(self, document_id: str) -> Optional[DocumentVersion]:
        rows = self.db.find(
            TABLE, {"document_id": _document_ref(document_id), "is_current": True}, limit=1
        )
        return DocumentVersion.from_dict(rows[0]) if rows else None

    def restore_version(
        self, document_id: str, version_id: str, restorer_id: str
    ) -> DocumentVersion:
        """Create a new current version with the content of an older one."""
        old = self.get_version(version_id)
        if old.document_id != _document_ref(document_id):
            raise BadRequestError("Version does not belong to document")
        request = CreateVersionRequest(
            title=old.title,
            content=old.content,
            summary=f"Restored from version {old.version_number}",
            change_type=VersionChangeType.RESTORED,
        )
        return self.create_version(document_id, restorer_id, request)

    def compare_versions(self, version_id_1: str, version_id_2: str) -> VersionComparison:
        first = self.get_version(version_id_1)
        second = self.get_version(version_id_2)
        if first.document_id != second.document_id:
            raise BadRequestError("Versions belong to different documents")
        return VersionComparison(
            from_version=first.version_number,
            to_version=second.version_number,
            title_changed=first.title != second.title,
            content_diff=generate_content_diff(first.content, second.content),
            summary=(
                f"Comparing version {first.version_number} "
                f"to version {second.version_number}"
            ),
        )

    def get_version_history_summary(self, document_id: str) -> VersionHistorySummary:
        rows = self.db.find(
            TABLE, {"document_id": _document_ref(document_id)}, order_by="created_at"
        )
        versions = [DocumentVersion.from_dict(r) for r in rows]
        if not versions:
            return VersionHistorySummary(0, 0, None, None, [], {})
        authors = list(dict.fromkeys(v.author_id for v in versions))
        counts = Counter(VersionChangeType(v.change_type).value for v in versions)
        return VersionHistorySummary(
            total_versions=len(versions),
            latest_version_number=max(v.version_number for v in versions),
            first_created=min(v.created_at for v in versions),
            last_updated=max(v.created_at for v in versions),
            authors=authors,
            change_types_count=dict(counts),
        )

    def delete_version(self, version_id: str) -> None:
        version = self.get_version(version_id)
        if version.is_current:
            raise BadRequestError("Cannot delete current version")
        self.db.delete(TABLE, version_id)

    def get_versions_by_author(self, document_id: str, author_id: str) -> list[DocumentVersion]:
        rows = self.db.find(
            TABLE,
            {"document_id": _document_ref(document_id), "author_id": author_id},
            order_by="-version_number",
        )
        return [DocumentVersion.from_dict(r) for r in rows]

    def _latest_version_number(self, document_id: str) -> int:
        rows = self.db.find(TABLE, {"document_id": _document_ref(document_id)})
        return max((r.get("version_number", 0) for r in rows), default=0)

    def _unset_current_version(self, document_id: str) -> None:
        self.db.update_where(
            TABLE,
            {"document_id": _document_ref(document_id), "is_current": True},
            {"is_current": False},
        )