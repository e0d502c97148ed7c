from __future__ import annotations

import itertools

import pytest

from churchhub.domain.policy import (
    can_assign_role,
    can_create_member_in_branch,
    can_edit_member,
    can_manage_permissions,
)
from churchhub.domain.results import ErrorKind
from churchhub.domain.roles import BranchScope, MemberContext, MemberRole


def _ctx(
    role: MemberRole,
    *,
    member_id: str = "m-actor",
    branch_id: str = "b-1",
    church_id: str = "c-1",
    permissions: frozenset[str] = frozenset(),
) -> MemberContext:
    return MemberContext(
        member_id=member_id,
        role=role,
        branch_id=branch_id,
        church_id=church_id,
        permissions=permissions,
    )


EXPECTED_ASSIGNMENTS = {
    (MemberRole.ADMINGERAL, MemberRole.ADMINFILIAL): True,
    (MemberRole.ADMINGERAL, MemberRole.COORDINATOR): True,
    (MemberRole.ADMINGERAL, MemberRole.MEMBER): True,
    (MemberRole.ADMINFILIAL, MemberRole.ADMINFILIAL): True,
    (MemberRole.ADMINFILIAL, MemberRole.COORDINATOR): True,
    (MemberRole.ADMINFILIAL, MemberRole.MEMBER): True,
    (MemberRole.COORDINATOR, MemberRole.MEMBER): True,
}


@pytest.mark.parametrize(
    ("actor_role", "target_role"),
    list(itertools.product(MemberRole, MemberRole)),
)
def test_can_assign_role_is_total(actor_role: MemberRole, target_role: MemberRole) -> None:
    decision = can_assign_role(actor_role, target_role)
    expected = EXPECTED_ASSIGNMENTS.get((actor_role, target_role), False)
    assert decision.allowed is expected
    if not expected:
        assert decision.kind == ErrorKind.ROLE_HIERARCHY_VIOLATION
        assert decision.reason
        assert decision.message


@pytest.mark.parametrize("actor_role", list(MemberRole))
def test_nobody_assigns_general_admin(actor_role: MemberRole) -> None:
    decision = can_assign_role(actor_role, MemberRole.ADMINGERAL)
    assert decision.denied
    assert decision.reason == "system_only_role"


def test_coordinator_and_member_reasons() -> None:
    assert can_assign_role(MemberRole.COORDINATOR, MemberRole.COORDINATOR).reason == "coordinator_member_only"
    assert can_assign_role(MemberRole.MEMBER, MemberRole.MEMBER).reason == "member_cannot_assign_roles"


def test_general_admin_creates_in_any_branch_of_own_church() -> None:
    actor = _ctx(MemberRole.ADMINGERAL, branch_id="b-main")
    assert can_create_member_in_branch(actor, BranchScope("b-other", "c-1")).allowed
    denied = can_create_member_in_branch(actor, BranchScope("b-x", "c-2"))
    assert denied.kind == ErrorKind.TENANT_MISMATCH
    assert denied.reason == "other_church"


def test_branch_admin_limited_to_own_branch() -> None:
    actor = _ctx(MemberRole.ADMINFILIAL, branch_id="b-1")
    assert can_create_member_in_branch(actor, BranchScope("b-1", "c-1")).allowed

    sibling = can_create_member_in_branch(actor, BranchScope("b-2", "c-1"))
    assert sibling.kind == ErrorKind.TENANT_MISMATCH
    assert sibling.reason == "own_branch_only"

    foreign = can_create_member_in_branch(actor, BranchScope("b-9", "c-2"))
    assert foreign.kind == ErrorKind.TENANT_MISMATCH
    assert foreign.reason == "other_church"
    assert "another church" in (foreign.message or "")


def test_coordinator_needs_members_manage() -> None:
    without = _ctx(MemberRole.COORDINATOR)
    denied = can_create_member_in_branch(without, BranchScope("b-1", "c-1"))
    assert denied.kind == ErrorKind.INSUFFICIENT_PERMISSION
    assert denied.reason == "members_manage_required"

    holder = _ctx(MemberRole.COORDINATOR, permissions=frozenset({"members_manage"}))
    assert can_create_member_in_branch(holder, BranchScope("b-1", "c-1")).allowed
    assert can_create_member_in_branch(holder, BranchScope("b-2", "c-1")).reason == "own_branch_only"


def test_member_with_members_manage_is_church_scoped() -> None:
    holder = _ctx(MemberRole.MEMBER, permissions=frozenset({"members_manage"}))
    assert can_create_member_in_branch(holder, BranchScope("b-2", "c-1")).allowed
    assert can_create_member_in_branch(holder, BranchScope("b-2", "c-2")).reason == "other_church"


def test_permission_check_precedes_church_check() -> None:
    actor = _ctx(MemberRole.MEMBER)
    decision = can_create_member_in_branch(actor, BranchScope("b-9", "c-2"))
    assert decision.kind == ErrorKind.INSUFFICIENT_PERMISSION


def test_can_edit_member_scopes() -> None:
    general = _ctx(MemberRole.ADMINGERAL, branch_id="b-main")
    branch_admin = _ctx(MemberRole.ADMINFILIAL, member_id="m-bf", branch_id="b-1")
    coordinator = _ctx(MemberRole.COORDINATOR, member_id="m-co", branch_id="b-1")

    same_branch = _ctx(MemberRole.MEMBER, member_id="m-1", branch_id="b-1")
    other_branch = _ctx(MemberRole.MEMBER, member_id="m-2", branch_id="b-2")
    other_church = _ctx(MemberRole.MEMBER, member_id="m-3", branch_id="b-9", church_id="c-2")

    assert can_edit_member(general, other_branch).allowed
    assert can_edit_member(general, other_church).reason == "other_church"

    assert can_edit_member(branch_admin, same_branch).allowed
    assert can_edit_member(branch_admin, other_branch).reason == "own_branch_only"

    assert can_edit_member(coordinator, coordinator).allowed
    denied = can_edit_member(coordinator, same_branch)
    assert denied.kind == ErrorKind.INSUFFICIENT_PERMISSION
    assert denied.reason == "self_edit_only"


def test_permission_managers_only_reach_lower_roles_in_their_branch() -> None:
    manage = frozenset({"permission_manage"})
    coordinator = _ctx(MemberRole.COORDINATOR, member_id="m-co", permissions=manage)
    plain_holder = _ctx(MemberRole.MEMBER, member_id="m-holder", permissions=manage)

    member = _ctx(MemberRole.MEMBER, member_id="m-1")
    peer = _ctx(MemberRole.COORDINATOR, member_id="m-co2")
    branch_admin = _ctx(MemberRole.ADMINFILIAL, member_id="m-bf")
    general = _ctx(MemberRole.ADMINGERAL, member_id="m-gen")
    elsewhere = _ctx(MemberRole.MEMBER, member_id="m-2", branch_id="b-2")

    assert can_manage_permissions(coordinator, member).allowed
    assert can_manage_permissions(coordinator, coordinator).reason == "self_grant_forbidden"
    assert can_manage_permissions(coordinator, peer).reason == "target_role_not_lower"
    assert can_manage_permissions(coordinator, branch_admin).kind == ErrorKind.ROLE_HIERARCHY_VIOLATION
    assert can_manage_permissions(coordinator, elsewhere).reason == "own_branch_only"

    assert can_manage_permissions(plain_holder, general).kind == ErrorKind.ROLE_HIERARCHY_VIOLATION
    assert can_manage_permissions(plain_holder, member).reason == "target_role_not_lower"

    without = _ctx(MemberRole.COORDINATOR, member_id="m-co3")
    assert can_manage_permissions(without, member).reason == "permission_manage_required"


def test_admins_manage_permissions_by_edit_scope() -> None:
    branch_admin = _ctx(MemberRole.ADMINFILIAL, member_id="m-bf", branch_id="b-1")
    assert can_manage_permissions(branch_admin, _ctx(MemberRole.COORDINATOR, member_id="m-1")).allowed
    other = _ctx(MemberRole.MEMBER, member_id="m-2", branch_id="b-2")
    assert can_manage_permissions(branch_admin, other).reason == "own_branch_only"
