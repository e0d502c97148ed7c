from __future__ import annotations

from churchhub.domain.permissions import PERM_MEMBERS_MANAGE, PERM_PERMISSION_MANAGE
from churchhub.domain.results import Decision, ErrorKind
from churchhub.domain.roles import (
    ROLE_RANK,
    SYSTEM_ONLY_ROLES,
    BranchScope,
    MemberContext,
    MemberRole,
    is_implicitly_privileged,
)


def can_assign_role(actor_role: MemberRole, target_role: MemberRole) -> Decision:
    # First match wins.
    if target_role in SYSTEM_ONLY_ROLES:
        return Decision.deny(
            ErrorKind.ROLE_HIERARCHY_VIOLATION,
            "system_only_role",
            "ADMINGERAL is a system-only role",
        )
    if actor_role == MemberRole.ADMINFILIAL and target_role == MemberRole.ADMINGERAL:
        return Decision.deny(
            ErrorKind.ROLE_HIERARCHY_VIOLATION,
            "branch_admin_cannot_assign_general_admin",
            "branch admins cannot assign ADMINGERAL",
        )
    if actor_role == MemberRole.COORDINATOR and target_role != MemberRole.MEMBER:
        return Decision.deny(
            ErrorKind.ROLE_HIERARCHY_VIOLATION,
            "coordinator_member_only",
            "coordinators may only create MEMBER",
        )
    if actor_role == MemberRole.MEMBER:
        return Decision.deny(
            ErrorKind.ROLE_HIERARCHY_VIOLATION,
            "member_cannot_assign_roles",
            "members cannot assign roles",
        )
    return Decision.allow()


def can_create_member_in_branch(actor: MemberContext, target_branch: BranchScope) -> Decision:
    if not is_implicitly_privileged(actor.role) and not actor.holds(PERM_MEMBERS_MANAGE):
        return Decision.deny(
            ErrorKind.INSUFFICIENT_PERMISSION,
            "members_manage_required",
            "creating members requires the members_manage permission",
            role=str(actor.role),
        )
    # Church before own branch so a branch admin aiming at another church reads "other church".
    if target_branch.church_id != actor.church_id:
        return Decision.deny(
            ErrorKind.TENANT_MISMATCH,
            "other_church",
            "cannot create members in branches of another church",
        )
    branch_bound = actor.role in (MemberRole.ADMINFILIAL, MemberRole.COORDINATOR)
    if branch_bound and target_branch.branch_id != actor.branch_id:
        return Decision.deny(
            ErrorKind.TENANT_MISMATCH,
            "own_branch_only",
            "members can only be created in your own branch",
        )
    return Decision.allow()


def can_edit_member(actor: MemberContext, target: MemberContext) -> Decision:
    if actor.role == MemberRole.ADMINGERAL:
        if actor.church_id != target.church_id:
            return Decision.deny(
                ErrorKind.TENANT_MISMATCH,
                "other_church",
                "you can only edit members of your church",
            )
        return Decision.allow()
    if actor.role == MemberRole.ADMINFILIAL:
        if actor.branch_id != target.branch_id:
            return Decision.deny(
                ErrorKind.TENANT_MISMATCH,
                "own_branch_only",
                "you can only edit members of your branch",
            )
        return Decision.allow()
    if actor.member_id != target.member_id:
        return Decision.deny(
            ErrorKind.INSUFFICIENT_PERMISSION,
            "self_edit_only",
            "you can only edit your own profile",
        )
    return Decision.allow()


def can_manage_permissions(actor: MemberContext, target: MemberContext) -> Decision:
    """Decide whether ``actor`` may replace the permission set of ``target``.

    Administrators follow the edit rules. Anyone else needs ``permission_manage``
    and may only act on lower-ranked members of their own branch, never on
    themselves.
    """
    if is_implicitly_privileged(actor.role):
        return can_edit_member(actor, target)
    if not actor.holds(PERM_PERMISSION_MANAGE):
        return Decision.deny(
            ErrorKind.INSUFFICIENT_PERMISSION,
            "permission_manage_required",
            "granting permissions requires the permission_manage permission",
        )
    if actor.member_id == target.member_id:
        return Decision.deny(
            ErrorKind.INSUFFICIENT_PERMISSION,
            "self_grant_forbidden",
            "you cannot change your own permissions",
        )
    if actor.church_id != target.church_id or actor.branch_id != target.branch_id:
        return Decision.deny(
            ErrorKind.TENANT_MISMATCH,
            "own_branch_only",
            "you can only manage permissions of members in your branch",
        )
    if is_implicitly_privileged(target.role) or ROLE_RANK[target.role] >= ROLE_RANK[actor.role]:
        return Decision.deny(
            ErrorKind.ROLE_HIERARCHY_VIOLATION,
            "target_role_not_lower",
            "you can only manage permissions of members below your role",
            target_role=str(target.role),
        )
    return Decision.allow()
