"""Space membership: access checks, invitations and member management."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from .core import ConflictError, Database, ForbiddenError, InternalError, NotFoundError
from .identity import User, clean_user_id_format, extract_space_id, inviter_display_name, strip_space_prefix
from .member_models import (
    AcceptInvitationRequest,
    InviteMemberRequest,
    MemberStatus,
    RolePolicy,
    SpaceInvitation,
    SpaceMember,
    UpdateMemberRequest,
)

log = logging.getLogger(__name__)

SPACE_TABLE = "space"
MEMBER_TABLE = "space_member"
INVITATION_TABLE = "space_invitation"
NOTIFICATION_TABLE = "notification"
DEFAULT_INVITATION_DAYS = 7
UNKNOWN_SPACE_NAME = "未知空间"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _space_ref(space_key: str) -> str:
    return f"space:{space_key}"


def _role_text(role: Any) -> str:
    return role.value if isinstance(role, Enum) else str(role)


class SpaceMemberService:
    """Decides who may reach a space and manages its members and invitations."""

    def __init__(self, db: Database, role_policy: Optional[RolePolicy] = None) -> None:
        self.db = db
        self.role_policy = role_policy or RolePolicy()

    def can_access_space(self, space_id: str, user_id: Optional[str]) -> bool:
        """True for the space owner and for accepted members."""
        if user_id is None:
            return False
        user = clean_user_id_format(user_id)
        space_key = strip_space_prefix(space_id)
        if self._is_owner(space_key, user):
            return True
        where = {"space_id": _space_ref(space_key), "user_id": user, "status": MemberStatus.ACCEPTED.value}
        return self.db.count(MEMBER_TABLE, where) > 0

    def check_permission(self, space_id: str, user_id: str, permission: str) -> bool:
        """True if the user owns the space or a membership grants the permission."""
        user = clean_user_id_format(user_id)
        space_key = strip_space_prefix(space_id)
        if self._is_owner(space_key, user):
            return True
        rows = self.db.find(
            MEMBER_TABLE,
            {"space_id": _space_ref(space_key), "user_id": user, "status": MemberStatus.ACCEPTED.value},
            limit=1,
        )
        if not rows:
            log.info("No membership of %s in space %s", user, space_key)
            return False
        member = rows[0]
        if self.role_policy.can_perform(member.get("role", ""), permission):
            return True
        return permission in (member.get("permissions") or [])

    def invite_member(
        self, space_id: str, inviter: User, request: InviteMemberRequest
    ) -> SpaceInvitation:
        """Create a single-use invitation and notify the invitee."""
        request.validate()
        if not self.check_permission(space_id, inviter.id, "members.invite"):
            raise ForbiddenError("Permission denied: members.invite required")
        if request.user_id is not None and self.can_access_space(space_id, request.user_id):
            raise ConflictError("User is already a member of this space")

        space_key = strip_space_prefix(space_id)
        days = request.expires_in_days or DEFAULT_INVITATION_DAYS
        invitation = SpaceInvitation(
            space_id=_space_ref(space_key),
            invite_token=str(uuid.uuid4()),
            role=_role_text(request.role),
            invited_by=inviter.id,
            expires_at=_now() + timedelta(days=days),
            email=request.email,
            user_id=request.user_id,
            permissions=self.role_policy.default_permissions(request.role),
            message=request.message,
        )
        created = SpaceInvitation.from_dict(self.db.create(INVITATION_TABLE, invitation.to_dict()))
        log.info("User %s invited %s to space %s", inviter.id, request.email or request.user_id, space_id)

        try:
            self._send_invitation_notifications(created, inviter_display_name(inviter), days)
        except Exception:
            log.exception("Failed to send invitation notifications")
        return created

    def accept_invitation(self, user_id: str, request: AcceptInvitationRequest) -> SpaceMember:
        """Turn a valid invitation into an accepted membership."""
        now = _now()
        rows = self.db.find(
            INVITATION_TABLE,
            lambda r: r.get("invite_token") == request.invite_token and r.get("expires_at") > now,
            limit=1,
        )
        if not rows:
            raise NotFoundError("Invitation not found or expired")
        invitation = SpaceInvitation.from_dict(rows[0])
        if invitation.is_used_up:
            raise ConflictError("Invitation has been used up")

        space_key = extract_space_id(invitation.space_id)
        if self.can_access_space(space_key, user_id):
            raise ConflictError("User is already a member of this space")

        member = SpaceMember(
            space_id=_space_ref(space_key),
            user_id=clean_user_id_format(user_id),
            role=invitation.role,
            invited_by=invitation.invited_by,
            permissions=list(invitation.permissions),
            status=MemberStatus.ACCEPTED,
            invited_at=now,
            accepted_at=now,
        )
        created = SpaceMember.from_dict(self.db.create(MEMBER_TABLE, member.to_dict()))

        if invitation.id:
            self.db.update_where(
                INVITATION_TABLE,
                {"id": invitation.id},
                lambda r: {"used_count": r.get("used_count", 0) + 1, "updated_at": _now()},
            )
        log.info("User %s accepted invitation to space %s", user_id, space_key)
        return created

    def list_space_members(self, space_id: str, requester: User) -> list[SpaceMember]:
        if not self.can_access_space(space_id, requester.id):
            raise ForbiddenError("Permission denied: space access required")
        rows = self.db.find(
            MEMBER_TABLE, {"space_id": _space_ref(strip_space_prefix(space_id))}, order_by="created_at"
        )
        return [SpaceMember.from_dict(r) for r in rows]

    def update_member(
        self, space_id: str, member_user_id: str, updater: User, request: UpdateMemberRequest
    ) -> SpaceMember:
        """Change a member's role or permissions; a new role resets its permissions."""
        request.validate()
        if not self.check_permission(space_id, updater.id, "members.manage"):
            raise ForbiddenError("Permission denied: members.manage required")

        where = {
            "space_id": _space_ref(strip_space_prefix(space_id)),
            "user_id": clean_user_id_format(member_user_id),
        }
        rows = self.db.find(MEMBER_TABLE, where, limit=1)
        if not rows:
            raise NotFoundError("Member not found")
        member = SpaceMember.from_dict(rows[0])

        if request.role is not None:
            member.role = _role_text(request.role)
            member.permissions = self.role_policy.default_permissions(request.role)
        if request.permissions is not None:
            member.permissions = list(request.permissions)
        member.updated_at = _now()

        updated = self.db.update_where(
            MEMBER_TABLE,
            where,
            {"role": member.role, "permissions": member.permissions, "updated_at": member.updated_at},
        )
        if not updated:
            raise InternalError("Failed to update member")
        log.info("User %s updated member %s in space %s", updater.id, member_user_id, space_id)
        return SpaceMember.from_dict(updated[0])

    def remove_member(self, space_id: str, member_user_id: str, remover: User) -> None:
        if not self.check_permission(space_id, remover.id, "members.remove"):
            raise ForbiddenError("Permission denied: members.remove required")
        if member_user_id == remover.id:
            raise ConflictError("Cannot remove yourself from space")
        self.db.delete_where(
            MEMBER_TABLE,
            {
                "space_id": _space_ref(strip_space_prefix(space_id)),
                "user_id": clean_user_id_format(member_user_id),
            },
        )
        log.info("User %s removed member %s from space %s", remover.id, member_user_id, space_id)

    def get_user_spaces(self, user_id: str) -> list[str]:
        """Keys of the spaces in which the user is an accepted member."""
        rows = self.db.find(
            MEMBER_TABLE,
            {"user_id": clean_user_id_format(user_id), "status": MemberStatus.ACCEPTED.value},
        )
        return [extract_space_id(str(r["space_id"])) for r in rows]

    def _is_owner(self, space_key: str, clean_user: str) -> bool:
        space = self.db.select(SPACE_TABLE, space_key)
        owner = space.get("owner_id") if space else None
        return isinstance(owner, str) and clean_user_id_format(owner) == clean_user

    def _space_name(self, space_key: str) -> str:
        space = self.db.select(SPACE_TABLE, space_key)
        name = space.get("name") if space else None
        return name if isinstance(name, str) else UNKNOWN_SPACE_NAME

    def _send_invitation_notifications(
        self, invitation: SpaceInvitation, inviter_name: str, expires_in_days: int
    ) -> None:
        space_name = self._space_name(extract_space_id(invitation.space_id))
        if invitation.user_id is not None:
            content = (
                f"{inviter_name} 邀请您以 {invitation.role} 的身份加入 {space_name} 空间。"
                f"{invitation.message or ''}"
            )
            now = _now()
            self.db.create(
                NOTIFICATION_TABLE,
                {
                    "user_id": invitation.user_id,
                    "type": "space_invitation",
                    "title": f"{inviter_name} 邀请您加入 {space_name} 空间",
                    "content": content,
                    "data": None,
                    "invite_token": invitation.invite_token,
                    "space_name": space_name,
                    "role": invitation.role,
                    "inviter_name": inviter_name,
                    "is_read": False,
                    "created_at": now,
                    "updated_at": now,
                },
            )
        if invitation.email is not None:
            log.info(
                "Sent invitation email to %s for space %s (expires in %d days)",
                invitation.email,
                space_name,
                expires_in_days,
            )