"""Roles, statuses, requests and records for space membership."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

from .core import ValidationError

ROLES = ("owner", "admin", "editor", "viewer", "member")
DEFAULT_ROLE = "member"

_EMAIL_RE = re.compile(r"[^@\s]+@[^@\s]+\.[^@\s]+")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _role_name(role: Any) -> str:
    return role.value if isinstance(role, Enum) else str(role)


def _normalize_role(role: Any) -> str:
    name = _role_name(role)
    return name if name in ROLES else DEFAULT_ROLE


def _check_role(role: Any) -> None:
    if _role_name(role) not in ROLES:
        raise ValidationError(f"Unknown role '{_role_name(role)}'")


class MemberStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"


@dataclass
class RolePolicy:
    """Which permissions each role grants; unknown roles are treated as members."""

    grants: Mapping[str, Iterable[str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        normalized = {}
        for role, permissions in self.grants.items():
            name = _role_name(role)
            if name not in ROLES:
                raise ValueError(f"unknown role: {name!r}")
            normalized[name] = frozenset(permissions)
        self.grants = normalized

    def can_perform(self, role: Any, permission: str) -> bool:
        return permission in self.grants.get(_normalize_role(role), frozenset())

    def default_permissions(self, role: Any) -> list[str]:
        return sorted(self.grants.get(_normalize_role(role), frozenset()))


@dataclass
class InviteMemberRequest:
    role: str = DEFAULT_ROLE
    email: Optional[str] = None
    user_id: Optional[str] = None
    message: Optional[str] = None
    expires_in_days: Optional[int] = None

    def validate(self) -> None:
        _check_role(self.role)
        if not self.email and not self.user_id:
            raise ValidationError("Either email or user_id is required")
        if self.email is not None and not _EMAIL_RE.fullmatch(self.email):
            raise ValidationError("Invalid email address")
        if self.expires_in_days is not None and self.expires_in_days < 1:
            raise ValidationError("expires_in_days must be at least 1")


@dataclass
class UpdateMemberRequest:
    role: Optional[str] = None
    permissions: Optional[list[str]] = None

    def validate(self) -> None:
        if self.role is not None:
            _check_role(self.role)


@dataclass
class AcceptInvitationRequest:
    invite_token: str

    def validate(self) -> None:
        if not self.invite_token.strip():
            raise ValidationError("invite_token must not be empty")


def _serialize(obj: Any) -> dict:
    data = asdict(obj)
    for key, value in data.items():
        if isinstance(value, Enum):
            data[key] = value.value
    if data.get("id") is None:
        data.pop("id", None)
    return data


def _known_fields(cls: type, data: Mapping[str, Any]) -> dict:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


@dataclass
class SpaceMember:
    """A user's membership in a space."""

    space_id: str
    user_id: str
    role: str
    invited_by: str
    permissions: list[str] = field(default_factory=list)
    status: MemberStatus = MemberStatus.ACCEPTED
    invited_at: datetime = field(default_factory=_now)
    accepted_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    id: Optional[str] = None

    def to_dict(self) -> dict:
        return _serialize(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SpaceMember":
        values = _known_fields(cls, data)
        values["status"] = MemberStatus(values.get("status", MemberStatus.ACCEPTED))
        values["permissions"] = list(values.get("permissions") or [])
        return cls(**values)


@dataclass
class SpaceInvitation:
    """An invitation token granting a role in a space."""

    space_id: str
    invite_token: str
    role: str
    invited_by: str
    expires_at: datetime
    email: Optional[str] = None
    user_id: Optional[str] = None
    permissions: list[str] = field(default_factory=list)
    message: Optional[str] = None
    max_uses: int = 1
    used_count: int = 0
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    id: Optional[str] = None

    @property
    def is_used_up(self) -> bool:
        return self.used_count >= self.max_uses

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at <= (now or _now())

    def to_dict(self) -> dict:
        return _serialize(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SpaceInvitation":
        values = _known_fields(cls, data)
        values["permissions"] = list(values.get("permissions") or [])
        return cls(**values)