"""Storage and bookkeeping for uploaded files."""

from __future__ import annotations

import logging
import mimetypes
import os
import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional

from PIL import Image

from .core import (
    ApiError,
    BadRequestError,
    Database,
    ForbiddenError,
    InternalError,
    NotFoundError,
    RecordId,
)

log = logging.getLogger(__name__)

TABLE = "file_upload"
DEFAULT_UPLOAD_DIR = "./uploads"
DEFAULT_MAX_FILE_SIZE = 10485760
THUMBNAIL_SIZE = (300, 300)

ALLOWED_MIME_TYPES = frozenset(
    {
        "image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp", "image/svg+xml",
        "application/pdf", "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "text/plain", "text/markdown", "text/csv",
        "application/json", "application/xml", "text/html", "text/css", "text/javascript",
        "application/zip", "application/x-tar", "application/gzip",
    }
)

PermissionChecker = Callable[[str, str, Optional[str]], bool]


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class UploadFileRequest:
    """Optional space or document an upload belongs to."""

    space_id: Optional[str] = None
    document_id: Optional[str] = None


@dataclass
class FileQuery:
    page: Optional[int] = None
    per_page: Optional[int] = None
    space_id: Optional[str] = None
    document_id: Optional[str] = None
    file_type: Optional[str] = None


@dataclass
class FileRecord:
    """Metadata of one uploaded file."""

    filename: str
    original_name: str
    file_path: str
    file_size: int
    file_type: str
    mime_type: str
    uploaded_by: str
    id: Optional[str] = None
    space_id: Optional[str] = None
    document_id: Optional[str] = None
    is_deleted: bool = False
    deleted_by: Optional[str] = None
    deleted_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    def mark_deleted(self, user_id: str) -> None:
        now = _now()
        self.is_deleted = True
        self.deleted_by = user_id
        self.deleted_at = now
        self.updated_at = now

    def to_dict(self) -> dict:
        data = asdict(self)
        if data["id"] is None:
            del data["id"]
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FileRecord":
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})


@dataclass
class FileListResponse:
    files: list[FileRecord]
    total_count: int
    page: int
    per_page: int
    total_pages: int


def validate_file_type(mime_type: str) -> None:
    """Raise BadRequestError unless the MIME type is accepted."""
    if mime_type not in ALLOWED_MIME_TYPES:
        raise BadRequestError(f"File type '{mime_type}' is not allowed")


def determine_file_type(mime_type: str) -> str:
    """Coarse category of a MIME type."""
    t = mime_type
    if t.startswith("image/"):
        return "image"
    if t.startswith("video/"):
        return "video"
    if t.startswith("audio/"):
        return "audio"
    if t == "application/pdf":
        return "pdf"
    if "word" in t or "document" in t:
        return "document"
    if "excel" in t or "spreadsheet" in t:
        return "spreadsheet"
    if "powerpoint" in t or "presentation" in t:
        return "presentation"
    if t.startswith("text/"):
        return "text"
    if "zip" in t or "tar" in t or "gzip" in t:
        return "archive"
    return "other"


def unique_filename(original_name: str) -> str:
    """A random file name keeping the original extension."""
    extension = Path(original_name).suffix[1:]
    base = str(uuid.uuid4())
    return f"{base}.{extension}" if extension else base


def _parsed_id(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    try:
        return str(RecordId.parse(text))
    except ValueError:
        return None


class FileUploadService:
    """Saves uploads to disk and records their metadata."""

    def __init__(
        self,
        db: Database,
        permission_checker: Optional[PermissionChecker] = None,
        upload_dir: Optional[str] = None,
        max_file_size: Optional[int] = None,
    ) -> None:
        self.db = db
        self.permission_checker = permission_checker
        self.upload_dir = Path(upload_dir or os.environ.get("UPLOAD_DIR", DEFAULT_UPLOAD_DIR))
        if max_file_size is None:
            try:
                max_file_size = int(os.environ.get("MAX_FILE_SIZE", DEFAULT_MAX_FILE_SIZE))
            except ValueError:
                max_file_size = DEFAULT_MAX_FILE_SIZE
        self.max_file_size = max_file_size

    def upload_file(
        self,
        user_id: str,
        fields: Iterable[Mapping[str, Any]],
        request: UploadFileRequest,
    ) -> FileRecord:
        """Store the part named ``file`` from multipart fields.

        Each field is a mapping with ``name``, ``filename``, ``content_type`` and ``data``.
        """
        self._ensure_upload_dir_exists()
        data = filename = content_type = None
        for part in fields:
            if (part.get("name") or "") != "file":
                continue
            filename = part.get("filename")
            content_type = part.get("content_type")
            data = bytes(part.get("data") or b"")
            self._check_size(data)
            break
        if data is None:
            raise BadRequestError("No file found in request")
        if filename is None:
            raise BadRequestError("No filename provided")
        return self._store(user_id, data, filename, content_type, request)

    def upload_file_from_bytes(
        self,
        user_id: str,
        data: bytes,
        original_name: str,
        content_type: Optional[str],
        request: UploadFileRequest,
    ) -> FileRecord:
        """Store raw bytes under the given original name."""
        self._ensure_upload_dir_exists()
        self._check_size(data)
        return self._store(user_id, data, original_name, content_type, request)

    def get_file(self, file_id: str) -> FileRecord:
        try:
            rid = RecordId.parse(file_id)
        except ValueError:
            raise BadRequestError("Invalid file ID") from None
        row = self.db.select(TABLE, rid.key)
        if row is None:
            raise NotFoundError("File not found")
        record = FileRecord.from_dict(row)
        if record.is_deleted:
            raise NotFoundError("File not found")
        return record

    def list_files(self, user_id: str, query: FileQuery) -> FileListResponse:
        page = max(query.page or 1, 1)
        per_page = max(min(query.per_page or 20, 100), 1)
        offset = (page - 1) * per_page

        where: dict[str, Any] = {"is_deleted": False}
        space = _parsed_id(query.space_id)
        if space is not None:
            where["space_id"] = space
        document = _parsed_id(query.document_id)
        if document is not None:
            where["document_id"] = document
        if query.file_type is not None:
            where["file_type"] = query.file_type

        total_count = self.db.count(TABLE, where)
        rows = self.db.find(TABLE, where, order_by="-created_at", limit=per_page, offset=offset)
        return FileListResponse(
            files=[FileRecord.from_dict(r) for r in rows],
            total_count=total_count,
            page=page,
            per_page=per_page,
            total_pages=(total_count + per_page - 1) // per_page,
        )

    def delete_file(self, user_id: str, file_id: str) -> None:
        """Mark a file deleted if the user uploaded it or administers its space."""
        try:
            rid = RecordId.parse(file_id)
        except ValueError:
            raise BadRequestError("Invalid file ID") from None
        record = self.get_file(file_id)

        if record.uploaded_by != user_id:
            if record.space_id is None:
                raise ForbiddenError("Permission denied: You can only delete your own files")
            parts = record.space_id.split(":")
            if len(parts) < 2:
                raise InternalError("Invalid space ID format")
            if not self._has_admin(user_id, parts[1]):
                raise ForbiddenError(
                    "Permission denied: You can only delete your own files "
                    "or need admin permission"
                )

        record.mark_deleted(user_id)
        self.db.update(TABLE, rid.key, record.to_dict())
        log.info("File marked as deleted: %s", file_id)

    def get_file_content(self, file_id: str) -> tuple[bytes, str, str]:
        """Return the bytes, MIME type and original name of a file."""
        record = self.get_file(file_id)
        try:
            content = Path(record.file_path).read_bytes()
        except OSError as exc:
            log.error("Failed to read file content: %s", exc)
            raise InternalError("Failed to read file") from exc
        return content, record.mime_type, record.original_name

    def get_thumbnail(self, file_id: str) -> bytes:
        record = self.get_file(file_id)
        if not record.is_image:
            raise BadRequestError("File is not an image")
        path = self.thumbnail_path(record.filename)
        if not path.exists():
            raise NotFoundError("Thumbnail not found")
        try:
            return path.read_bytes()
        except OSError as exc:
            log.error("Failed to read thumbnail: %s", exc)
            raise InternalError("Failed to read thumbnail") from exc

    def thumbnail_path(self, filename: str) -> Path:
        return self.upload_dir / "thumbnails" / f"thumb_{filename}"

    def _has_admin(self, user_id: str, space_key: str) -> bool:
        if self.permission_checker is None:
            return False
        try:
            return bool(self.permission_checker(user_id, "docs.admin", space_key))
        except ApiError:
            return False

    def _check_size(self, data: bytes) -> None:
        if len(data) > self.max_file_size:
            raise BadRequestError(
                f"File size exceeds maximum allowed size of {self.max_file_size} bytes"
            )

    def _ensure_upload_dir_exists(self) -> None:
        for path, label in (
            (self.upload_dir, "upload directory"),
            (self.upload_dir / "thumbnails", "thumbnails directory"),
        ):
            try:
                path.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                log.error("Failed to create %s: %s", label, exc)
                raise InternalError(f"Failed to create {label}") from exc

    def _store(
        self,
        user_id: str,
        data: bytes,
        original_name: str,
        content_type: Optional[str],
        request: UploadFileRequest,
    ) -> FileRecord:
        filename = unique_filename(original_name)
        mime_type = content_type or (
            mimetypes.guess_type(original_name)[0] or "application/octet-stream"
        )
        validate_file_type(mime_type)

        file_path = self.upload_dir / filename
        try:
            file_path.write_bytes(data)
        except OSError as exc:
            log.error("Failed to save file: %s", exc)
            raise InternalError("Failed to save file") from exc

        if mime_type.startswith("image/"):
            try:
                self._generate_thumbnail(file_path, filename)
            except Exception as exc:  # any decoding failure leaves the upload intact
                log.warning("Failed to generate thumbnail for %s: %s", filename, exc)

        record = FileRecord(
            filename=filename,
            original_name=original_name,
            file_path=str(file_path),
            file_size=len(data),
            file_type=determine_file_type(mime_type),
            mime_type=mime_type,
            uploaded_by=user_id,
            space_id=_parsed_id(request.space_id),
            document_id=_parsed_id(request.document_id),
        )
        created = self.db.create(TABLE, record.to_dict())
        log.info("File uploaded successfully: %s", filename)
        return FileRecord.from_dict(created)

    def _generate_thumbnail(self, file_path: Path, filename: str) -> None:
        with Image.open(file_path) as img:
            img.thumbnail(THUMBNAIL_SIZE)
            if img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            img.save(self.thumbnail_path(filename), format="JPEG")