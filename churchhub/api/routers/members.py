from __future__ import annotations

from fastapi import APIRouter, status

from churchhub.api.deps import Actor, Facade, unwrap_or_raise
from churchhub.domain.models import (
    MemberCreate,
    MemberRead,
    MemberUpdate,
    PermissionGrantRequest,
    RoleChangeRequest,
)

router = APIRouter()


@router.post("", response_model=MemberRead, status_code=status.HTTP_201_CREATED)
def create_member(payload: MemberCreate, actor: Actor, facade: Facade) -> MemberRead:
    return unwrap_or_raise(facade.create_member(actor, payload))


@router.get("/me", response_model=MemberRead)
def get_me(actor: Actor, facade: Facade) -> MemberRead:
    return unwrap_or_raise(facade.get_member(actor, actor.member_id))


@router.get("/{member_id}", response_model=MemberRead)
def get_member(member_id: str, actor: Actor, facade: Facade) -> MemberRead:
    return unwrap_or_raise(facade.get_member(actor, member_id))


@router.patch("/{member_id}", response_model=MemberRead)
def update_member(member_id: str, payload: MemberUpdate, actor: Actor, facade: Facade) -> MemberRead:
    return unwrap_or_raise(facade.update_member(actor, member_id, payload))


@router.put("/{member_id}/role", response_model=MemberRead)
def change_role(member_id: str, payload: RoleChangeRequest, actor: Actor, facade: Facade) -> MemberRead:
    return unwrap_or_raise(facade.change_role(actor, member_id, payload.role))


@router.put("/{member_id}/permissions", response_model=MemberRead)
def grant_permissions(
    member_id: str,
    payload: PermissionGrantRequest,
    actor: Actor,
    facade: Facade,
) -> MemberRead:
    return unwrap_or_raise(facade.grant_permissions(actor, member_id, payload.permissions))
