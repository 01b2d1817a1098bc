from types import SimpleNamespace

import pytest

from app.core.exceptions import InvalidArgumentError
from app.services.authorization import (
    ADMIN_LIKE_ROLES,
    PROTECTED_ROLES,
    Decision,
    can_create_chat_room,
    can_delete_role,
    can_manage_own_resource,
    can_modify_role,
    can_modify_role_permissions,
    can_view_student_data,
    chat_room_action_allowed,
    has_permission,
    is_admin_like,
    resolve_fact,
    role_names,
)

OTHER_ROLES = ["enseignant", "teacher", "parent", "apprenant", "financier", "custom_role"]


@pytest.mark.parametrize("role", sorted(ADMIN_LIKE_ROLES))
def test_admin_like_single_roles(role):
    assert is_admin_like({role}) is True


@pytest.mark.parametrize("role", OTHER_ROLES)
def test_other_single_roles_are_not_admin_like(role):
    assert is_admin_like({role}) is False


def test_role_names_normalizes_case_and_rows():
    rows = [SimpleNamespace(name="Admin"), " Censeur "]
    assert role_names(rows) == frozenset({"admin", "censeur"})


def test_role_names_rejects_bare_string_and_empty_names():
    with pytest.raises(InvalidArgumentError):
        role_names("admin")
    with pytest.raises(InvalidArgumentError):
        role_names(["admin", ""])


def test_owner_can_manage_own_resource_regardless_of_roles():
    assert can_manage_own_resource(7, 7, set()) is True
    assert can_manage_own_resource(7, 7, {"parent"}) is True


def test_non_owner_needs_admin_like_role():
    assert can_manage_own_resource(7, 8, {"enseignant"}) is False
    assert can_manage_own_resource(7, 8, {"censeur"}) is True
    assert can_manage_own_resource(None, None, {"parent"}) is False


def test_student_data_visible_to_staff_self_and_parent():
    assert can_view_student_data(1, 50, {"principal"}, False) is True
    assert can_view_student_data(1, 50, {"enseignant"}, False) is True
    assert can_view_student_data(50, 50, {"apprenant"}, False) is True
    assert can_view_student_data(2, 50, {"parent"}, True) is True
    assert can_view_student_data(2, 50, {"parent"}, False) is False


def test_student_data_parent_fact_fails_closed():
    def broken_lookup():
        raise RuntimeError("database unavailable")

    assert can_view_student_data(2, 50, {"parent"}, broken_lookup) is False
    assert can_view_student_data(2, 50, {"parent"}, lambda: None) is False
    assert can_view_student_data(2, 50, {"parent"}, lambda: "yes") is False
    assert can_view_student_data(2, 50, {"parent"}, lambda: True) is True


def test_parent_fact_not_consulted_when_role_permits():
    calls = []

    def lookup():
        calls.append(1)
        return True

    assert can_view_student_data(1, 50, {"admin"}, lookup) is True
    assert calls == []


def test_resolve_fact_accepts_only_true():
    assert resolve_fact(True) is True
    assert resolve_fact(False) is False
    assert resolve_fact(None) is False
    assert resolve_fact(1) is False


def test_superadmin_role_protected_from_non_superadmins():
    assert can_modify_role("superadmin", {"admin"}) is False
    assert can_modify_role("superadmin", {"superadmin"}) is True
    assert can_modify_role("custom_role", {"admin"}) is True
    assert can_modify_role("custom_role", {"enseignant"}) is False


def test_superadmin_permissions_frozen_for_everyone():
    assert can_modify_role_permissions("superadmin", {"superadmin"}) is False
    assert can_modify_role_permissions("admin", {"superadmin"}) is True
    assert can_modify_role_permissions("custom_role", {"parent"}) is False


@pytest.mark.parametrize("role", sorted(PROTECTED_ROLES))
@pytest.mark.parametrize("assigned", [True, False])
def test_protected_roles_are_never_deletable(role, assigned):
    assert can_delete_role(role, assigned) is False


def test_custom_role_deletable_only_when_unassigned():
    assert can_delete_role("custom_role", True) is False
    assert can_delete_role("custom_role", False) is True
    assert can_delete_role("ADMIN", False) is False


def test_has_permission_checks_capability_per_functionality():
    permissions = [
        SimpleNamespace(functionality="timetable", can_view=True, can_add=False, can_modify=False, can_delete=False),
        SimpleNamespace(functionality="grades", can_view=True, can_add=True, can_modify=True, can_delete=False),
    ]
    assert has_permission(permissions, "timetable", "view") is True
    assert has_permission(permissions, "timetable", "add") is False
    assert has_permission(permissions, "grades", "modify") is True
    assert has_permission(permissions, "payments", "view") is False
    with pytest.raises(InvalidArgumentError):
        has_permission(permissions, "grades", "approve")


def test_decision_is_truthy_only_when_allowed():
    assert bool(Decision.permit()) is True
    denied = Decision.deny("nope", code="x")
    assert bool(denied) is False
    assert denied.reason == "nope"
    assert denied.code == "x"


def test_moderator_may_add_members_but_not_moderators():
    assert chat_room_action_allowed("moderator", "add_participant", "member").allowed
    denied = chat_room_action_allowed("moderator", "add_participant", "moderator")
    assert not denied.allowed
    assert denied.reason == "Only room admins can add moderators or admins"
    assert chat_room_action_allowed("admin", "add_participant", "admin").allowed


def test_member_cannot_add_participants():
    decision = chat_room_action_allowed("member", "add_participant", "member")
    assert not decision.allowed
    assert decision.reason == "Only room admins and moderators can add participants"


def test_non_participant_is_denied():
    decision = chat_room_action_allowed(None, "add_participant", "member")
    assert not decision.allowed
    assert decision.code == "not_participant"


def test_moderator_cannot_remove_admin():
    decision = chat_room_action_allowed("moderator", "remove_participant", "admin", admin_count=3)
    assert not decision.allowed
    assert decision.reason == "Moderators cannot remove admins from the chat room"


def test_moderator_removes_members_only():
    assert chat_room_action_allowed("moderator", "remove_participant", "member").allowed
    assert not chat_room_action_allowed("moderator", "remove_participant", "moderator").allowed


def test_any_participant_may_leave():
    assert chat_room_action_allowed("member", "leave", "member", is_self=True).allowed
    assert chat_room_action_allowed("member", "remove_participant", "member", is_self=True).allowed


def test_last_admin_cannot_be_removed_or_demoted():
    removed = chat_room_action_allowed("admin", "remove_participant", "admin", admin_count=1)
    assert not removed.allowed
    assert removed.code == "last_admin"

    left = chat_room_action_allowed("admin", "leave", "admin", is_self=True, admin_count=1)
    assert not left.allowed
    assert left.code == "last_admin"

    for new_role in ("moderator", "member"):
        demoted = chat_room_action_allowed("admin", "change_role", "admin", new_role=new_role, admin_count=1)
        assert not demoted.allowed
        assert demoted.code == "last_admin"


def test_admin_removal_allowed_when_another_admin_remains():
    assert chat_room_action_allowed("admin", "remove_participant", "admin", admin_count=2).allowed
    assert chat_room_action_allowed("admin", "change_role", "admin", new_role="member", admin_count=lambda: 2).allowed


def test_unknown_admin_count_fails_closed():
    def broken_count():
        raise RuntimeError("lookup failed")

    assert not chat_room_action_allowed("admin", "remove_participant", "admin").allowed
    assert not chat_room_action_allowed("admin", "remove_participant", "admin", admin_count=broken_count).allowed


def test_only_admins_change_roles():
    decision = chat_room_action_allowed("moderator", "change_role", "member", new_role="moderator")
    assert not decision.allowed
    assert decision.reason == "Only room admins can update participant roles"
    assert chat_room_action_allowed("admin", "change_role", "member", new_role="moderator").allowed


def test_unknown_chat_vocabulary_raises():
    with pytest.raises(InvalidArgumentError):
        chat_room_action_allowed("admin", "ban", "member")
    with pytest.raises(InvalidArgumentError):
        chat_room_action_allowed("owner", "add_participant", "member")
    with pytest.raises(InvalidArgumentError):
        chat_room_action_allowed("admin", "change_role", "member", new_role="owner")


def test_chat_room_creation_rules():
    assert can_create_chat_room("custom", {"apprenant"}).allowed
    assert can_create_chat_room("administration", {"censeur"}).allowed
    assert not can_create_chat_room("administration", {"enseignant"}).allowed
    assert can_create_chat_room("class", {"enseignant"}, True).allowed
    assert can_create_chat_room("class", {"admin"}, False).allowed

    not_member = can_create_chat_room("department", {"enseignant"}, lambda: False)
    assert not not_member.allowed
    assert not_member.code == "not_member"
    assert not can_create_chat_room("parents", {"parent"}, True).allowed

    with pytest.raises(InvalidArgumentError):
        can_create_chat_room("broadcast", {"admin"})
