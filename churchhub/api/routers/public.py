from __future__ import annotations

from fastapi import APIRouter, status

from churchhub.api.deps import Facade, unwrap_or_raise
from churchhub.domain.models import (
    InviteLinkValidationRead,
    InviteRegistrationRead,
    InviteRegistrationRequest,
)

router = APIRouter()


@router.get("/invite-links/{token}", response_model=InviteLinkValidationRead)
def validate_invite_link(token: str, facade: Facade) -> InviteLinkValidationRead:
    return facade.describe_invite_link(token)


@router.post("/register", response_model=InviteRegistrationRead, status_code=status.HTTP_201_CREATED)
def register_with_invite_link(payload: InviteRegistrationRequest, facade: Facade) -> InviteRegistrationRead:
    return unwrap_or_raise(facade.register_with_invite_link(payload))
