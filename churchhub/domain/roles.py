from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class MemberRole(StrEnum):
    ADMINGERAL = "ADMINGERAL"
    ADMINFILIAL = "ADMINFILIAL"
    COORDINATOR = "COORDINATOR"
    MEMBER = "MEMBER"


# Only the onboarding path may produce ADMINGERAL.
SYSTEM_ONLY_ROLES = frozenset({MemberRole.ADMINGERAL})
IMPLICITLY_PRIVILEGED_ROLES = frozenset({MemberRole.ADMINGERAL, MemberRole.ADMINFILIAL})
ROLE_RANK = {
    MemberRole.ADMINGERAL: 3,
    MemberRole.ADMINFILIAL: 2,
    MemberRole.COORDINATOR: 1,
    MemberRole.MEMBER: 0,
}


def is_implicitly_privileged(role: MemberRole | str) -> bool:
    return role in IMPLICITLY_PRIVILEGED_ROLES


@dataclass(frozen=True)
class MemberContext:
    """A member together with its tenant ancestry.

    The tenant resolver builds one of these for the authenticated actor and
    the repository builds them for edit targets; policy code never looks up
    tenancy on its own.
    """

    member_id: str
    role: MemberRole
    branch_id: str
    church_id: str
    user_id: str | None = None
    permissions: frozenset[str] = field(default_factory=frozenset)

    def holds(self, permission: str) -> bool:
        return permission in self.permissions


@dataclass(frozen=True)
class BranchScope:
    branch_id: str
    church_id: str
