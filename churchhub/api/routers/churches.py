from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from churchhub.api.deps import Actor, Claims, Facade, get_identity_service, unwrap_or_raise
from churchhub.domain.models import (
    BranchCreate,
    BranchRead,
    ChurchCreate,
    ChurchOnboardingRead,
    ChurchPlanUsageRead,
)
from churchhub.services.identity_service import IdentityService, NotFoundError

router = APIRouter()

Identity = Annotated[IdentityService, Depends(get_identity_service)]


@router.post("", response_model=ChurchOnboardingRead, status_code=status.HTTP_201_CREATED)
def create_church(
    payload: ChurchCreate,
    claims: Claims,
    identity: Identity,
    facade: Facade,
) -> ChurchOnboardingRead:
    try:
        user = identity.get_user(claims["sub"])
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    return unwrap_or_raise(facade.create_church(user, payload))


@router.get("/me/usage", response_model=ChurchPlanUsageRead)
def church_usage(actor: Actor, facade: Facade) -> ChurchPlanUsageRead:
    return unwrap_or_raise(facade.church_plan_usage(actor))


@router.post("/me/branches", response_model=BranchRead, status_code=status.HTTP_201_CREATED)
def create_branch(payload: BranchCreate, actor: Actor, facade: Facade) -> BranchRead:
    return unwrap_or_raise(facade.create_branch(actor, payload))
