from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from churchhub.domain.results import ErrorKind, Outcome
from churchhub.infra.repository import ChurchPlanUsage, Repository


class QuotaResource(StrEnum):
    MEMBERS = "members"
    BRANCHES = "branches"


@dataclass(frozen=True)
class QuotaCheck:
    resource: QuotaResource
    current: int
    maximum: int | None
    plan_code: str

    @property
    def exceeded(self) -> bool:
        # Evaluated before the add, so equality already means no room.
        return self.maximum is not None and self.current >= self.maximum


class QuotaEnforcer:
    """Plan limits aggregated per church.

    Checks are advisory: two concurrent creations can both pass before either
    inserts. Nothing here serializes the count and the later insert.
    """

    def __init__(self, repository: Repository) -> None:
        self._repository = repository

    def usage(self, church_id: str, owner_user_id: str | None = None) -> ChurchPlanUsage:
        return self._repository.get_church_plan_usage(church_id, owner_user_id=owner_user_id)

    def check_member_quota(self, church_id: str, owner_user_id: str | None = None) -> Outcome[QuotaCheck]:
        usage = self.usage(church_id, owner_user_id)
        if usage.plan is None:
            return self._plan_not_found(church_id)
        check = QuotaCheck(
            resource=QuotaResource.MEMBERS,
            current=usage.member_count,
            maximum=usage.plan.max_members,
            plan_code=usage.plan.code,
        )
        return self._result(check)

    def check_branch_quota(self, church_id: str, owner_user_id: str | None = None) -> Outcome[QuotaCheck]:
        usage = self.usage(church_id, owner_user_id)
        if usage.plan is None:
            return self._plan_not_found(church_id)
        check = QuotaCheck(
            resource=QuotaResource.BRANCHES,
            current=usage.branch_count,
            maximum=usage.plan.max_branches,
            plan_code=usage.plan.code,
        )
        return self._result(check)

    @staticmethod
    def _plan_not_found(church_id: str) -> Outcome[QuotaCheck]:
        return Outcome.deny(
            ErrorKind.NOT_FOUND,
            "plan_not_found",
            "no active plan found for the identity or for the church administrator",
            church_id=church_id,
        )

    @staticmethod
    def _result(check: QuotaCheck) -> Outcome[QuotaCheck]:
        if check.exceeded:
            return Outcome.deny(
                ErrorKind.QUOTA_EXCEEDED,
                f"{check.resource}_limit_reached",
                f"plan limit reached: at most {check.maximum} {check.resource}, currently {check.current}",
                resource=str(check.resource),
                current=check.current,
                maximum=check.maximum,
                plan_code=check.plan_code,
            )
        return Outcome.success(check)
