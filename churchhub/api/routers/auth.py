from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from churchhub.api.deps import Claims, get_identity_service
from churchhub.domain.models import DevLoginRequest, RegisterRequest, TokenResponse, UserRead
from churchhub.infra.auth import create_access_token
from churchhub.services.identity_service import AuthError, ConflictError, IdentityService, NotFoundError

router = APIRouter()

Service = Annotated[IdentityService, Depends(get_identity_service)]


def _handle_identity_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, AuthError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    raise exc


@router.post("/register", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, service: Service) -> UserRead:
    try:
        user = service.register(payload)
    except ConflictError as exc:
        _handle_identity_error(exc)
        raise
    return UserRead.model_validate(user)


@router.post("/dev-login", response_model=TokenResponse)
def dev_login(payload: DevLoginRequest, service: Service) -> TokenResponse:
    try:
        user = service.dev_login(payload.email, payload.password)
    except AuthError as exc:
        _handle_identity_error(exc)
        raise
    return TokenResponse(access_token=create_access_token(user_id=user.id))


@router.get("/me", response_model=UserRead)
def me(claims: Claims, service: Service) -> UserRead:
    try:
        user = service.get_user(claims["sub"])
    except NotFoundError as exc:
        _handle_identity_error(exc)
        raise
    return UserRead.model_validate(user)
