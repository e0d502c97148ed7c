from __future__ import annotations

import os
import secrets
from collections.abc import Callable
from datetime import datetime

import structlog
from sqlmodel import Session

from churchhub.domain.invite_state import (
    STATE_INVALID_REASONS,
    InviteLinkInvalidReason,
    InviteLinkState,
    as_utc,
    derive_invite_state,
)
from churchhub.domain.models import InviteLink, now_utc
from churchhub.domain.permissions import PERM_MEMBERS_MANAGE, has_permission
from churchhub.domain.policy import can_create_member_in_branch
from churchhub.domain.results import Decision, ErrorKind, Outcome
from churchhub.domain.roles import BranchScope, MemberContext
from churchhub.infra.notifier import Notifier
from churchhub.infra.repository import Repository
from churchhub.services.quota_service import QuotaEnforcer

logger = structlog.get_logger(__name__)

INVITE_TOKEN_PREFIX = "inv_"
INVITE_TOKEN_BYTES = int(os.getenv("INVITE_TOKEN_BYTES", "24"))
INVITE_TOKEN_MAX_ATTEMPTS = int(os.getenv("INVITE_TOKEN_MAX_ATTEMPTS", "5"))

INVALID_MESSAGES: dict[InviteLinkInvalidReason, str] = {
    InviteLinkInvalidReason.NOT_FOUND: "invite link not found",
    InviteLinkInvalidReason.DEACTIVATED: "this invite link was deactivated",
    InviteLinkInvalidReason.EXPIRED: "this invite link has expired",
    InviteLinkInvalidReason.EXHAUSTED: "this invite link reached its usage limit",
    InviteLinkInvalidReason.LIMIT_REACHED: "the church reached the member limit of its plan",
}

Clock = Callable[[], datetime]


class InviteTokenExhaustedError(RuntimeError):
    pass


def random_invite_token() -> str:
    return f"{INVITE_TOKEN_PREFIX}{secrets.token_urlsafe(INVITE_TOKEN_BYTES)}"


class InviteLinkService:
    def __init__(
        self,
        repository: Repository,
        quota: QuotaEnforcer,
        *,
        notifier: Notifier | None = None,
        clock: Clock = now_utc,
        token_factory: Callable[[], str] = random_invite_token,
    ) -> None:
        self._repository = repository
        self._quota = quota
        self._notifier = notifier
        self._clock = clock
        self._token_factory = token_factory

    @staticmethod
    def _invalid(
        reason: InviteLinkInvalidReason,
        link: InviteLink | None = None,
        **detail: object,
    ) -> Outcome[InviteLink]:
        if link is not None:
            detail["link_id"] = link.id
            detail["branch_id"] = link.branch_id
        return Outcome.deny(
            ErrorKind.INVITE_LINK_INVALID,
            reason.value,
            INVALID_MESSAGES[reason],
            **detail,
        )

    def generate_token(self) -> str:
        for attempt in range(1, INVITE_TOKEN_MAX_ATTEMPTS + 1):
            token = self._token_factory()
            if not self._repository.invite_token_exists(token):
                return token
            logger.warning("invite_token_collision", attempt=attempt)
        raise InviteTokenExhaustedError(
            f"could not generate a unique invite token after {INVITE_TOKEN_MAX_ATTEMPTS} attempts"
        )

    def create(
        self,
        actor: MemberContext,
        branch_id: str,
        *,
        max_uses: int | None = None,
        expires_at: datetime | None = None,
    ) -> Outcome[InviteLink]:
        if max_uses is not None and max_uses < 1:
            raise ValueError("max_uses must be at least 1")

        branch = self._repository.get_branch(branch_id)
        if branch is None:
            return Outcome.deny(ErrorKind.NOT_FOUND, "branch_not_found", "branch not found")

        # An invite link creates members by proxy, so it needs the same right.
        decision = can_create_member_in_branch(actor, BranchScope(branch.id, branch.church_id))
        if decision.denied:
            return Outcome.failure(decision)

        quota = self._quota.check_member_quota(actor.church_id, actor.user_id)
        if not quota.ok:
            return Outcome.failure(quota.denial)  # type: ignore[arg-type]

        link = InviteLink(
            token=self.generate_token(),
            branch_id=branch.id,
            created_by=actor.member_id,
            max_uses=max_uses,
            expires_at=as_utc(expires_at) if expires_at is not None else None,
            is_active=True,
            current_uses=0,
        )
        return Outcome.success(self._repository.create_entity(link))

    def validate(self, token: str, *, now: datetime | None = None) -> Outcome[InviteLink]:
        current = now or self._clock()
        link = self._repository.get_invite_link_by_token(token)
        if link is None:
            return self._invalid(InviteLinkInvalidReason.NOT_FOUND)

        state = derive_invite_state(link, current)
        if state != InviteLinkState.ACTIVE:
            return self._invalid(STATE_INVALID_REASONS[state], link)

        branch = self._repository.get_branch(link.branch_id)
        if branch is None:
            return self._invalid(InviteLinkInvalidReason.NOT_FOUND, link)

        # The church may have hit its plan limit after the link was issued.
        quota = self._quota.check_member_quota(branch.church_id)
        denial = quota.denial
        if denial is None:
            return Outcome.success(link)
        if denial.kind != ErrorKind.QUOTA_EXCEEDED:
            logger.warning(
                "invite_quota_check_skipped",
                link_id=link.id,
                church_id=branch.church_id,
                reason=quota.reason,
            )
            return Outcome.success(link)

        self._notify_limit_reached(branch.church_id, denial)
        return self._invalid(
            InviteLinkInvalidReason.LIMIT_REACHED,
            link,
            current=denial.detail.get("current"),
            maximum=denial.detail.get("maximum"),
        )

    def consume(self, token: str, *, session: Session | None = None) -> Outcome[InviteLink]:
        now = self._clock()
        validation = self.validate(token, now=now)
        if not validation.ok:
            return validation
        link = validation.unwrap()

        updated = self._repository.upsert_invite_link_usage(link.id, now=now, session=session)
        if updated is not None:
            return Outcome.success(updated)

        # Lost the conditional update; report what the stored row says now.
        latest = self._repository.get_invite_link(link.id)
        if latest is not None:
            state = derive_invite_state(latest, now)
            if state in STATE_INVALID_REASONS:
                return self._invalid(STATE_INVALID_REASONS[state], latest)
        return self._invalid(InviteLinkInvalidReason.EXHAUSTED, link)

    def deactivate(self, link_id: str, actor: MemberContext) -> Outcome[InviteLink]:
        link = self._repository.get_invite_link(link_id)
        if link is None:
            return Outcome.deny(ErrorKind.NOT_FOUND, "invite_link_not_found", "invite link not found")

        if link.created_by != actor.member_id:
            if not has_permission(actor, PERM_MEMBERS_MANAGE):
                return Outcome.deny(
                    ErrorKind.INSUFFICIENT_PERMISSION,
                    "members_manage_required",
                    "you are not allowed to deactivate this invite link",
                )
            branch = self._repository.get_branch(link.branch_id)
            if branch is None or branch.church_id != actor.church_id:
                return Outcome.deny(
                    ErrorKind.TENANT_MISMATCH,
                    "other_church",
                    "cannot deactivate invite links of another church",
                )

        updated = self._repository.update_entity(InviteLink, link.id, {"is_active": False})
        if updated is None:
            return Outcome.deny(ErrorKind.NOT_FOUND, "invite_link_not_found", "invite link not found")
        return Outcome.success(updated)

    def list_links(
        self,
        actor: MemberContext,
        branch_id: str,
        *,
        active_only: bool = False,
    ) -> Outcome[list[tuple[InviteLink, InviteLinkState]]]:
        branch = self._repository.get_branch(branch_id)
        if branch is None:
            return Outcome.deny(ErrorKind.NOT_FOUND, "branch_not_found", "branch not found")
        if branch.church_id != actor.church_id:
            return Outcome.deny(
                ErrorKind.TENANT_MISMATCH,
                "other_church",
                "cannot view invite links of another church",
            )
        now = self._clock()
        links = self._repository.list_invite_links(branch.id, active_only=active_only)
        return Outcome.success([(item, derive_invite_state(item, now)) for item in links])

    def _notify_limit_reached(self, church_id: str, denial: Decision) -> None:
        if self._notifier is None:
            return
        try:
            church = self._repository.get_church(church_id)
            admins = self._repository.list_church_admins(church_id)
            emails = [item.email for item in admins if item.email]
            if not emails:
                return
            self._notifier.notify_member_limit_reached(
                emails,
                church.name if church is not None else church_id,
                int(denial.detail.get("current", 0)),
                int(denial.detail.get("maximum", 0)),
            )
        except Exception:
            logger.warning("notifier_failed", church_id=church_id, exc_info=True)
