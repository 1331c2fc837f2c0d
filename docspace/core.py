"""Shared errors, record identifiers and the in-memory record store."""

from __future__ import annotations

import copy
import re
import threading
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Optional, Union

Where = Union[None, Mapping[str, Any], Callable[[dict], bool]]
Changes = Union[Mapping[str, Any], Callable[[dict], Mapping[str, Any]]]
OrderBy = Union[None, str, Iterable[str]]


class ApiError(Exception):
    """Base error carrying an HTTP status code and a message."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class BadRequestError(ApiError):
    status_code = 400


class ForbiddenError(ApiError):
    status_code = 403


class NotFoundError(ApiError):
    status_code = 404


class ConflictError(ApiError):
    status_code = 409


class ValidationError(ApiError):
    status_code = 422


class DatabaseError(ApiError):
    status_code = 500


class InternalError(ApiError):
    status_code = 500


_TABLE_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


@dataclass(frozen=True)
class RecordId:
    """A record identifier of the form ``table:key``."""

    table: str
    key: str

    @classmethod
    def parse(cls, text: str) -> "RecordId":
        """Parse ``table:key``; raise ValueError if the text is not one."""
        table, sep, key = text.strip().partition(":")
        if not sep or not _TABLE_RE.fullmatch(table):
            raise ValueError(f"invalid record id: {text!r}")
        if key.startswith("⟨") and key.endswith("⟩"):
            key = key[1:-1]
        if not key:
            raise ValueError(f"invalid record id: {text!r}")
        return cls(table, key)

    def __str__(self) -> str:
        return f"{self.table}:{self.key}"


def strip_table_prefix(record_id: str, table: str) -> str:
    """Remove a leading ``table:`` from an identifier, if present."""
    prefix = f"{table}:"
    return record_id[len(prefix):] if record_id.startswith(prefix) else record_id


def _matches(record: dict, where: Where) -> bool:
    if where is None:
        return True
    if callable(where):
        return bool(where(record))
    return all(record.get(field) == value for field, value in where.items())


def _sort_key(field: str) -> Callable[[dict], tuple]:
    def key(record: dict) -> tuple:
        value = record.get(field)
        return (0,) if value is None else (1, value)

    return key


class Database:
    """A thread-safe in-memory store of records grouped into tables."""

    def __init__(self) -> None:
        self._tables: dict[str, dict[str, dict]] = {}
        self._lock = threading.Lock()

    def _table(self, table: str) -> dict[str, dict]:
        return self._tables.setdefault(table, {})

    def create(self, table: str, content: Mapping[str, Any]) -> dict:
        """Insert a record and return it with its ``id`` filled in."""
        record = copy.deepcopy(dict(content))
        given = record.get("id")
        key = strip_table_prefix(str(given), table) if given else uuid.uuid4().hex
        with self._lock:
            rows = self._table(table)
            if key in rows:
                raise DatabaseError(f"Record {table}:{key} already exists")
            record["id"] = f"{table}:{key}"
            rows[key] = record
            return copy.deepcopy(record)

    def select(self, table: str, record_id: Any) -> Optional[dict]:
        """Return one record, or None when it does not exist."""
        key = strip_table_prefix(str(record_id), table)
        with self._lock:
            record = self._table(table).get(key)
            return copy.deepcopy(record) if record is not None else None

    def update(self, table: str, record_id: Any, content: Mapping[str, Any]) -> dict:
        """Replace the content of a record, creating it if needed."""
        key = strip_table_prefix(str(record_id), table)
        record = copy.deepcopy(dict(content))
        record["id"] = f"{table}:{key}"
        with self._lock:
            self._table(table)[key] = record
            return copy.deepcopy(record)

    def delete(self, table: str, record_id: Any) -> Optional[dict]:
        """Remove a record and return it, or None if it was absent."""
        key = strip_table_prefix(str(record_id), table)
        with self._lock:
            return self._table(table).pop(key, None)

    def find(
        self,
        table: str,
        where: Where = None,
        order_by: OrderBy = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[dict]:
        """Return matching records; ``order_by`` fields prefixed ``-`` sort descending."""
        with self._lock:
            rows = [copy.deepcopy(r) for r in self._table(table).values() if _matches(r, where)]
        if order_by is not None:
            fields = [order_by] if isinstance(order_by, str) else list(order_by)
            for field in reversed(fields):
                descending = field.startswith("-")
                name = field[1:] if descending else field
                rows.sort(key=_sort_key(name), reverse=descending)
        start = max(offset or 0, 0)
        end = None if limit is None else start + max(limit, 0)
        return rows[start:end]

    def count(self, table: str, where: Where = None) -> int:
        """Number of records matching ``where``."""
        with self._lock:
            return sum(1 for r in self._table(table).values() if _matches(r, where))

    def update_where(self, table: str, where: Where, changes: Changes) -> list[dict]:
        """Merge changes into every matching record and return the results."""
        updated = []
        with self._lock:
            for record in self._table(table).values():
                if not _matches(record, where):
                    continue
                delta = changes(record) if callable(changes) else changes
                record_id = record["id"]
                record.update(copy.deepcopy(dict(delta)))
                record["id"] = record_id
                updated.append(copy.deepcopy(record))
        return updated

    def delete_where(self, table: str, where: Where) -> list[dict]:
        """Remove every matching record and return the removed ones."""
        with self._lock:
            rows = self._table(table)
            keys = [k for k, r in rows.items() if _matches(r, where)]
            return [rows.pop(k) for k in keys]