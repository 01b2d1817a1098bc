"""Authorization decisions for the school API.

Every predicate here is pure: callers fetch rows and relationship facts, then
ask for a verdict. A denial is a return value, never an exception; the only
error raised is ``InvalidArgumentError`` for names outside the known
vocabulary (unknown chat action, chat role or permission capability).

Relationship facts may be passed either as plain booleans or as zero-argument
callables. A fact that cannot be resolved (the lookup raises, or yields
anything other than ``True``) counts as false.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from app.core.exceptions import InvalidArgumentError
from app.models.chat import ChatRoomRole, ChatRoomType

logger = logging.getLogger(__name__)

SUPERADMIN_ROLE = "superadmin"
ADMIN_ROLE = "admin"
TEACHER_ROLE = "enseignant"
PARENT_ROLE = "parent"
STUDENT_ROLE = "apprenant"
PRINCIPAL_ROLE = "principal"
CENSEUR_ROLE = "censeur"

ADMIN_LIKE_ROLES = frozenset({ADMIN_ROLE, SUPERADMIN_ROLE, PRINCIPAL_ROLE, CENSEUR_ROLE})
PROTECTED_ROLES = frozenset({SUPERADMIN_ROLE, ADMIN_ROLE, TEACHER_ROLE, PARENT_ROLE, STUDENT_ROLE})
TEACHING_ROLES = frozenset({TEACHER_ROLE, "teacher"})
# Roles seeded for every new establishment.
SYSTEM_ROLES = PROTECTED_ROLES | {PRINCIPAL_ROLE, CENSEUR_ROLE}

PERMISSION_CAPABILITIES = ("view", "add", "modify", "delete")

Fact = Union[bool, None, Callable[[], Any]]


class ChatAction(str, Enum):
    add_participant = "add_participant"
    remove_participant = "remove_participant"
    change_role = "change_role"
    leave = "leave"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str | None = None
    code: str | None = None

    def __bool__(self) -> bool:
        return self.allowed

    @classmethod
    def permit(cls) -> "Decision":
        return cls(True)

    @classmethod
    def deny(cls, reason: str, code: str = "denied") -> "Decision":
        return cls(False, reason=reason, code=code)


def normalize_role_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise InvalidArgumentError("Role names must be non-empty strings", details={"role": repr(name)})
    return name.strip().lower()


def role_names(roles: Iterable[Any]) -> frozenset[str]:
    """Normalize role names, or objects with a ``name`` attribute, into a lower-case set."""
    if isinstance(roles, str):
        raise InvalidArgumentError("Expected a collection of role names, got a single string")
    names = set()
    for role in roles:
        names.add(normalize_role_name(role if isinstance(role, str) else getattr(role, "name", None)))
    return frozenset(names)


def resolve_fact(fact: Fact) -> bool:
    if callable(fact):
        try:
            fact = fact()
        except Exception:
            logger.warning("Relationship fact lookup failed; treating it as false", exc_info=True)
            return False
    return fact is True


def _parse_room_role(value: Any, *, field: str) -> ChatRoomRole:
    try:
        return ChatRoomRole(value)
    except ValueError as exc:
        raise InvalidArgumentError(f"Unknown chat room role for {field}: {value!r}") from exc


def is_admin_like(roles: Iterable[Any]) -> bool:
    return not role_names(roles).isdisjoint(ADMIN_LIKE_ROLES)


def is_protected_role(role_name: str) -> bool:
    return normalize_role_name(role_name) in PROTECTED_ROLES


def can_manage_own_resource(actor_id: int | None, owner_id: int | None, roles: Iterable[Any]) -> bool:
    if actor_id is not None and actor_id == owner_id:
        return True
    return is_admin_like(roles)


def can_view_student_data(
    actor_id: int | None,
    student_user_id: int | None,
    roles: Iterable[Any],
    is_parent_fact: Fact,
    *,
    viewer_roles: Iterable[str] = TEACHING_ROLES,
) -> bool:
    """Admin-like staff, the viewer tier, the student themself, or a parent may see a student's records.

    ``is_parent_fact`` is only resolved when the cheaper checks have all failed.
    """
    names = role_names(roles)
    if not names.isdisjoint(ADMIN_LIKE_ROLES) or not names.isdisjoint(role_names(viewer_roles)):
        return True
    if actor_id is not None and student_user_id is not None and actor_id == student_user_id:
        return True
    return resolve_fact(is_parent_fact)


def can_modify_role(role_name: str, actor_roles: Iterable[Any]) -> bool:
    names = role_names(actor_roles)
    if normalize_role_name(role_name) == SUPERADMIN_ROLE and SUPERADMIN_ROLE not in names:
        return False
    return not names.isdisjoint(ADMIN_LIKE_ROLES)


def can_modify_role_permissions(role_name: str, actor_roles: Iterable[Any]) -> bool:
    # The superadmin grant set is frozen, even for superadmins.
    if normalize_role_name(role_name) == SUPERADMIN_ROLE:
        return False
    return is_admin_like(actor_roles)


def can_delete_role(role_name: str, is_assigned_to_any_user: bool) -> bool:
    if is_protected_role(role_name):
        return False
    return not is_assigned_to_any_user


def has_permission(permissions: Iterable[Any], functionality: str, capability: str) -> bool:
    """True when any permission row for ``functionality`` grants ``capability``."""
    if capability not in PERMISSION_CAPABILITIES:
        raise InvalidArgumentError(
            f"Unknown permission capability {capability!r}",
            details={"allowed": list(PERMISSION_CAPABILITIES)},
        )
    attribute = f"can_{capability}"
    return any(
        permission.functionality == functionality and getattr(permission, attribute) is True
        for permission in permissions
    )


def can_create_chat_room(room_type: str, roles: Iterable[Any], membership_fact: Fact = None) -> Decision:
    """Decide whether an actor may open a room of ``room_type``.

    ``membership_fact`` answers "does this teacher belong to the target
    department / teach the target class" and is only consulted for
    non-admin teachers.
    """
    try:
        kind = ChatRoomType(room_type)
    except ValueError as exc:
        raise InvalidArgumentError(f"Unknown chat room type {room_type!r}") from exc

    names = role_names(roles)
    admin_like = not names.isdisjoint(ADMIN_LIKE_ROLES)
    teaching = not names.isdisjoint(TEACHING_ROLES)

    if admin_like or kind == ChatRoomType.custom:
        return Decision.permit()
    if kind == ChatRoomType.administration:
        return Decision.deny("Only administrators can create administration chat rooms")
    if not teaching:
        return Decision.deny(f"Only teachers or administrators can create {kind.value} chat rooms")
    if resolve_fact(membership_fact):
        return Decision.permit()
    if kind == ChatRoomType.department:
        return Decision.deny(
            "You must be a member of this department to create a department chat room",
            code="not_member",
        )
    return Decision.deny("You must teach in this class to create this chat room", code="not_member")


def chat_room_action_allowed(
    actor_room_role: str | None,
    action: str,
    target_room_role: str | None = None,
    *,
    is_self: bool = False,
    new_role: str | None = None,
    admin_count: int | Callable[[], Any] | None = None,
) -> Decision:
    """Apply the chat-room hierarchy.

    ``actor_room_role`` is ``None`` when the actor is not a participant.
    For ``add_participant`` the target role is the role being granted; for
    removals and role changes it is the target's current role.
    ``admin_count`` is the number of admins currently in the room and is
    only needed when an admin is removed or demoted; an unknown count denies.
    """
    try:
        chat_action = ChatAction(action)
    except ValueError as exc:
        raise InvalidArgumentError(f"Unknown chat action {action!r}") from exc

    if actor_room_role is None:
        return Decision.deny("You are not a participant in this chat room", code="not_participant")
    actor = _parse_room_role(actor_room_role, field="actor")
    target = _parse_room_role(target_room_role, field="target") if target_room_role is not None else None

    if chat_action == ChatAction.add_participant:
        granted = target or ChatRoomRole.member
        if actor == ChatRoomRole.member:
            return Decision.deny("Only room admins and moderators can add participants")
        if granted != ChatRoomRole.member and actor != ChatRoomRole.admin:
            return Decision.deny("Only room admins can add moderators or admins")
        return Decision.permit()

    if target is None:
        raise InvalidArgumentError(f"{chat_action.value} requires the target participant's role")

    if chat_action == ChatAction.change_role:
        if new_role is None:
            raise InvalidArgumentError("change_role requires new_role")
        replacement = _parse_room_role(new_role, field="new_role")
        if actor != ChatRoomRole.admin:
            return Decision.deny("Only room admins can update participant roles")
        if target == ChatRoomRole.admin and replacement != ChatRoomRole.admin:
            if not _has_other_admin(admin_count):
                return Decision.deny("Cannot demote the last admin of the chat room", code="last_admin")
        return Decision.permit()

    leaving = is_self or chat_action == ChatAction.leave
    if not leaving:
        if actor == ChatRoomRole.member:
            return Decision.deny("Only room admins and moderators can remove other participants")
        if actor == ChatRoomRole.moderator and target != ChatRoomRole.member:
            if target == ChatRoomRole.admin:
                return Decision.deny("Moderators cannot remove admins from the chat room")
            return Decision.deny("Moderators can only remove members from the chat room")
    if target == ChatRoomRole.admin and not _has_other_admin(admin_count):
        return Decision.deny("Cannot remove the last admin from the chat room", code="last_admin")
    return Decision.permit()


def _has_other_admin(admin_count: int | Callable[[], Any] | None) -> bool:
    if callable(admin_count):
        try:
            admin_count = admin_count()
        except Exception:
            logger.warning("Chat room admin count lookup failed; treating it as unknown", exc_info=True)
            return False
    if not isinstance(admin_count, int) or isinstance(admin_count, bool):
        return False
    return admin_count > 1
