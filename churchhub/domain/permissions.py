from __future__ import annotations

from collections.abc import Iterable
from enum import StrEnum

from churchhub.domain.results import Decision, ErrorKind
from churchhub.domain.roles import MemberContext, MemberRole, is_implicitly_privileged


class PermissionType(StrEnum):
    MEMBERS_VIEW = "members_view"
    MEMBERS_MANAGE = "members_manage"
    EVENTS_MANAGE = "events_manage"
    DEVOTIONAL_MANAGE = "devotional_manage"
    CONTRIBUTIONS_MANAGE = "contributions_manage"
    FINANCES_MANAGE = "finances_manage"
    CHURCH_MANAGE = "church_manage"
    PERMISSION_MANAGE = "permission_manage"


PERM_MEMBERS_VIEW = PermissionType.MEMBERS_VIEW.value
PERM_MEMBERS_MANAGE = PermissionType.MEMBERS_MANAGE.value
PERM_PERMISSION_MANAGE = PermissionType.PERMISSION_MANAGE.value

PERMISSION_CATALOG: frozenset[str] = frozenset(item.value for item in PermissionType)

# Types that require at least COORDINATOR.
RESTRICTED_PERMISSIONS: frozenset[str] = frozenset(
    {
        PermissionType.FINANCES_MANAGE.value,
        PermissionType.CHURCH_MANAGE.value,
        PermissionType.CONTRIBUTIONS_MANAGE.value,
        PermissionType.MEMBERS_MANAGE.value,
    }
)

BASELINE_PERMISSIONS: frozenset[str] = frozenset({PERM_MEMBERS_VIEW})


def parse_permission_types(values: Iterable[str]) -> frozenset[str]:
    parsed: set[str] = set()
    unknown: list[str] = []
    for value in values:
        normalized = str(value).strip()
        if normalized in PERMISSION_CATALOG:
            parsed.add(normalized)
        else:
            unknown.append(normalized)
    if unknown:
        raise ValueError(f"unknown permission types: {', '.join(sorted(unknown))}")
    return frozenset(parsed)


def has_permission(context: MemberContext, permission: str) -> bool:
    if is_implicitly_privileged(context.role):
        return True
    return context.holds(permission)


def next_permission_set(
    current: Iterable[str],
    old_role: MemberRole,
    new_role: MemberRole,
) -> frozenset[str]:
    """Permission set a member should hold after moving from ``old_role`` to ``new_role``.

    Admin roles get the whole catalog. A coordinator keeps everything already
    granted. A plain member loses the restricted types. Both non-admin roles
    always keep ``members_view``. ``old_role`` does not change the result; the
    outcome depends only on where the member lands, which keeps the function
    idempotent.
    """
    _ = old_role
    if is_implicitly_privileged(new_role):
        return PERMISSION_CATALOG
    current_set = frozenset(str(item) for item in current)
    if new_role == MemberRole.COORDINATOR:
        return current_set | BASELINE_PERMISSIONS
    return (current_set - RESTRICTED_PERMISSIONS) | BASELINE_PERMISSIONS


def initial_permission_set(role: MemberRole, requested: Iterable[str] = ()) -> frozenset[str]:
    if is_implicitly_privileged(role):
        return PERMISSION_CATALOG
    return frozenset(str(item) for item in requested) | BASELINE_PERMISSIONS


def apply_permission_grant(member_role: MemberRole, requested_types: Iterable[str]) -> Decision:
    requested = frozenset(str(item) for item in requested_types)
    if member_role != MemberRole.MEMBER:
        return Decision.allow()
    offending = sorted(requested & RESTRICTED_PERMISSIONS)
    if offending:
        return Decision.deny(
            ErrorKind.ROLE_HIERARCHY_VIOLATION,
            "restricted_for_member",
            f"permissions require COORDINATOR or above: {', '.join(offending)}",
            offending=offending,
        )
    return Decision.allow()
