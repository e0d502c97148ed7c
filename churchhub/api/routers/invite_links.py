from __future__ import annotations

from fastapi import APIRouter, status

from churchhub.api.deps import Actor, Facade, unwrap_or_raise
from churchhub.domain.models import InviteLinkCreate, InviteLinkRead

router = APIRouter()


@router.post("", response_model=InviteLinkRead, status_code=status.HTTP_201_CREATED)
def create_invite_link(payload: InviteLinkCreate, actor: Actor, facade: Facade) -> InviteLinkRead:
    return unwrap_or_raise(facade.create_invite_link(actor, payload))


@router.get("", response_model=list[InviteLinkRead])
def list_invite_links(
    branch_id: str,
    actor: Actor,
    facade: Facade,
    active_only: bool = False,
) -> list[InviteLinkRead]:
    return unwrap_or_raise(facade.list_invite_links(actor, branch_id, active_only=active_only))


@router.post("/{link_id}/deactivate", response_model=InviteLinkRead)
def deactivate_invite_link(link_id: str, actor: Actor, facade: Facade) -> InviteLinkRead:
    return unwrap_or_raise(facade.deactivate_invite_link(actor, link_id))
