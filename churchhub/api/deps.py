from __future__ import annotations

from typing import Annotated, Any, NoReturn, TypeVar

import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from churchhub.domain.invite_state import InviteLinkInvalidReason
from churchhub.domain.results import Decision, ErrorKind, Outcome
from churchhub.domain.roles import MemberContext
from churchhub.infra.auth import decode_access_token
from churchhub.infra.notifier import LoggingNotifier
from churchhub.infra.repository import SqlRepository
from churchhub.services.identity_service import IdentityService
from churchhub.services.policy_service import PolicyFacade

T = TypeVar("T")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/dev-login")

ERROR_STATUS: dict[ErrorKind, int] = {
    ErrorKind.ACTOR_NOT_FOUND: status.HTTP_403_FORBIDDEN,
    ErrorKind.TENANT_MISMATCH: status.HTTP_403_FORBIDDEN,
    ErrorKind.ROLE_HIERARCHY_VIOLATION: status.HTTP_403_FORBIDDEN,
    ErrorKind.INSUFFICIENT_PERMISSION: status.HTTP_403_FORBIDDEN,
    ErrorKind.QUOTA_EXCEEDED: status.HTTP_403_FORBIDDEN,
    ErrorKind.INVITE_LINK_INVALID: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
}


def status_for(denial: Decision) -> int:
    if denial.kind == ErrorKind.INVITE_LINK_INVALID and denial.reason == InviteLinkInvalidReason.NOT_FOUND:
        return status.HTTP_404_NOT_FOUND
    if denial.kind is None:
        return status.HTTP_400_BAD_REQUEST
    return ERROR_STATUS[denial.kind]


def raise_for_denial(denial: Decision | None) -> NoReturn:
    if denial is None:
        raise ValueError("cannot raise for a missing denial")
    raise HTTPException(status_code=status_for(denial), detail=denial.as_dict())


def unwrap_or_raise(outcome: Outcome[T]) -> T:
    if not outcome.ok:
        raise_for_denial(outcome.denial)
    return outcome.unwrap()


def get_current_claims(
    request: Request,
    token: str = Depends(oauth2_scheme),
) -> dict[str, Any]:
    try:
        claims = decode_access_token(token)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc
    request.state.claims = claims
    structlog.contextvars.bind_contextvars(user_id=claims["sub"])
    return claims


def get_identity_service() -> IdentityService:
    return IdentityService()


def get_facade() -> PolicyFacade:
    return PolicyFacade(SqlRepository(), notifier=LoggingNotifier())


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Facade = Annotated[PolicyFacade, Depends(get_facade)]


def get_actor(claims: Claims, facade: Facade) -> MemberContext:
    outcome = facade.resolve_actor(claims["sub"])
    actor = unwrap_or_raise(outcome)
    structlog.contextvars.bind_contextvars(member_id=actor.member_id, church_id=actor.church_id)
    return actor


Actor = Annotated[MemberContext, Depends(get_actor)]
