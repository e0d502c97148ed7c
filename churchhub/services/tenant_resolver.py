from __future__ import annotations

from churchhub.domain.results import ErrorKind, Outcome
from churchhub.domain.roles import MemberContext
from churchhub.infra.repository import Repository


class TenantResolver:
    def __init__(self, repository: Repository) -> None:
        self._repository = repository

    def resolve_actor(self, user_id: str) -> Outcome[MemberContext]:
        actor = self._repository.get_actor_by_identity(user_id)
        if actor is None:
            return Outcome.deny(
                ErrorKind.ACTOR_NOT_FOUND,
                "onboarding_incomplete",
                "no member is linked to this identity yet",
            )
        return Outcome.success(actor)
