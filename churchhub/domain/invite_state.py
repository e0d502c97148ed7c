from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Protocol


class InviteLinkState(StrEnum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    EXHAUSTED = "EXHAUSTED"
    DEACTIVATED = "DEACTIVATED"


class InviteLinkInvalidReason(StrEnum):
    NOT_FOUND = "not_found"
    DEACTIVATED = "deactivated"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"
    LIMIT_REACHED = "limit_reached"


STATE_INVALID_REASONS: dict[InviteLinkState, InviteLinkInvalidReason] = {
    InviteLinkState.DEACTIVATED: InviteLinkInvalidReason.DEACTIVATED,
    InviteLinkState.EXPIRED: InviteLinkInvalidReason.EXPIRED,
    InviteLinkState.EXHAUSTED: InviteLinkInvalidReason.EXHAUSTED,
}


class InviteLinkFields(Protocol):
    is_active: bool
    expires_at: datetime | None
    max_uses: int | None
    current_uses: int


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def is_expired(expires_at: datetime | None, now: datetime) -> bool:
    if expires_at is None:
        return False
    return as_utc(now) > as_utc(expires_at)


def is_exhausted(max_uses: int | None, current_uses: int) -> bool:
    return max_uses is not None and current_uses >= max_uses


def derive_invite_state(link: InviteLinkFields, now: datetime | None = None) -> InviteLinkState:
    # Only DEACTIVATED is stored; the others are computed here.
    current = now or datetime.now(UTC)
    if not link.is_active:
        return InviteLinkState.DEACTIVATED
    if is_expired(link.expires_at, current):
        return InviteLinkState.EXPIRED
    if is_exhausted(link.max_uses, link.current_uses):
        return InviteLinkState.EXHAUSTED
    return InviteLinkState.ACTIVE
