from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, TypeVar

import structlog
from sqlalchemy import func, or_, update
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, col, select

from churchhub.domain.models import (
    FREE_PLAN_CODE,
    Branch,
    Church,
    InviteLink,
    Member,
    MemberPermission,
    Plan,
    Subscription,
    SubscriptionStatus,
    User,
    now_utc,
)
from churchhub.domain.roles import IMPLICITLY_PRIVILEGED_ROLES, MemberContext, MemberRole
from churchhub.infra.db import get_engine

logger = structlog.get_logger(__name__)

EntityT = TypeVar("EntityT", bound=SQLModel)

_ALWAYS_IMMUTABLE = frozenset({"id"})
IMMUTABLE_FIELDS: dict[type[SQLModel], frozenset[str]] = {
    Branch: frozenset({"id", "church_id"}),
    # Role changes go through replace_member_permissions so both move together.
    Member: frozenset({"id", "branch_id", "user_id", "role"}),
    InviteLink: frozenset({"id", "token", "branch_id", "created_by", "current_uses"}),
}


@dataclass(frozen=True)
class ChurchPlanUsage:
    church_id: str
    plan: Plan | None
    member_count: int
    branch_count: int


class Repository(Protocol):
    def transaction(self) -> AbstractContextManager[Session]: ...

    def get_actor_by_identity(self, user_id: str) -> MemberContext | None: ...

    def get_member(self, member_id: str) -> Member | None: ...

    def get_member_context(self, member_id: str) -> MemberContext | None: ...

    def get_member_permissions(self, member_id: str) -> list[str]: ...

    def get_branch(self, branch_id: str) -> Branch | None: ...

    def get_church(self, church_id: str) -> Church | None: ...

    def get_user_by_email(self, email: str) -> User | None: ...

    def get_church_plan_usage(
        self,
        church_id: str,
        *,
        owner_user_id: str | None = None,
    ) -> ChurchPlanUsage: ...

    def list_church_admins(self, church_id: str) -> list[Member]: ...

    def replace_member_permissions(
        self,
        member_id: str,
        types: Iterable[str],
        *,
        role: MemberRole | None = None,
        session: Session | None = None,
    ) -> list[str]: ...

    def upsert_invite_link_usage(
        self,
        link_id: str,
        *,
        now: datetime,
        session: Session | None = None,
    ) -> InviteLink | None: ...

    def get_invite_link(self, link_id: str) -> InviteLink | None: ...

    def get_invite_link_by_token(self, token: str) -> InviteLink | None: ...

    def invite_token_exists(self, token: str) -> bool: ...

    def list_invite_links(self, branch_id: str, *, active_only: bool = False) -> list[InviteLink]: ...

    def create_entity(self, entity: EntityT, *, session: Session | None = None) -> EntityT: ...

    def update_entity(
        self,
        entity_type: type[EntityT],
        entity_id: str,
        changes: dict[str, Any],
        *,
        session: Session | None = None,
    ) -> EntityT | None: ...

    def create_member(
        self,
        member: Member,
        permissions: Iterable[str],
        *,
        session: Session | None = None,
    ) -> Member: ...


class SqlRepository:
    """SQLModel-backed :class:`Repository`.

    Every write method accepts an optional ``session``. Without one the method
    runs in its own transaction and commits; with one it only flushes, so the
    caller can compose several writes and commit them together via
    :meth:`transaction`.
    """

    def __init__(self, engine: Engine | None = None) -> None:
        self._engine = engine

    def _session(self) -> Session:
        return Session(self._engine or get_engine(), expire_on_commit=False)

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        with self._session() as session:
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise

    @contextmanager
    def _scope(self, session: Session | None) -> Iterator[Session]:
        if session is not None:
            yield session
            session.flush()
            return
        with self.transaction() as owned:
            yield owned

    @staticmethod
    def _permission_types(session: Session, member_id: str) -> list[str]:
        rows = session.exec(
            select(MemberPermission.type).where(MemberPermission.member_id == member_id)
        ).all()
        return sorted(rows)

    @staticmethod
    def _context(member: Member, branch: Branch, permissions: Iterable[str]) -> MemberContext:
        return MemberContext(
            member_id=member.id,
            role=MemberRole(member.role),
            branch_id=branch.id,
            church_id=branch.church_id,
            user_id=member.user_id,
            permissions=frozenset(permissions),
        )

    def get_actor_by_identity(self, user_id: str) -> MemberContext | None:
        with self._session() as session:
            row = session.exec(
                select(Member, Branch)
                .join(Branch, col(Member.branch_id) == col(Branch.id))
                .where(Member.user_id == user_id)
            ).first()
            if row is None:
                return None
            member, branch = row
            return self._context(member, branch, self._permission_types(session, member.id))

    def get_member(self, member_id: str) -> Member | None:
        with self._session() as session:
            return session.get(Member, member_id)

    def get_member_context(self, member_id: str) -> MemberContext | None:
        with self._session() as session:
            row = session.exec(
                select(Member, Branch)
                .join(Branch, col(Member.branch_id) == col(Branch.id))
                .where(Member.id == member_id)
            ).first()
            if row is None:
                return None
            member, branch = row
            return self._context(member, branch, self._permission_types(session, member.id))

    def get_member_permissions(self, member_id: str) -> list[str]:
        with self._session() as session:
            return self._permission_types(session, member_id)

    def get_branch(self, branch_id: str) -> Branch | None:
        with self._session() as session:
            return session.get(Branch, branch_id)

    def get_church(self, church_id: str) -> Church | None:
        with self._session() as session:
            return session.get(Church, church_id)

    def get_user_by_email(self, email: str) -> User | None:
        with self._session() as session:
            return session.exec(select(User).where(User.email == email)).first()

    def _plan_for_identity(self, session: Session, user_id: str) -> Plan | None:
        active = session.exec(
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .where(Subscription.status == SubscriptionStatus.ACTIVE)
            .order_by(col(Subscription.started_at).desc())
        ).first()
        if active is not None:
            plan = session.get(Plan, active.plan_id)
            if plan is not None:
                return plan

        free_plan = session.exec(
            select(Plan)
            .join(Subscription, col(Subscription.plan_id) == col(Plan.id))
            .where(Subscription.user_id == user_id)
            .where(col(Subscription.status).in_([SubscriptionStatus.ACTIVE, SubscriptionStatus.PENDING]))
            .where(Plan.code == FREE_PLAN_CODE)
            .order_by(col(Subscription.started_at).desc())
        ).first()
        if free_plan is not None:
            logger.info("plan_fallback_free_subscription", user_id=user_id, plan_code=free_plan.code)
        return free_plan

    def _resolve_plan(self, session: Session, church_id: str, owner_user_id: str | None) -> Plan | None:
        if owner_user_id is not None:
            plan = self._plan_for_identity(session, owner_user_id)
            if plan is not None:
                return plan

        admin_user_id = session.exec(
            select(Member.user_id)
            .join(Branch, col(Member.branch_id) == col(Branch.id))
            .where(Branch.church_id == church_id)
            .where(Member.role == MemberRole.ADMINGERAL)
            .where(col(Member.user_id).is_not(None))
            .order_by(col(Member.created_at))
        ).first()
        if admin_user_id is None or admin_user_id == owner_user_id:
            return None
        plan = self._plan_for_identity(session, admin_user_id)
        if plan is not None:
            logger.info(
                "plan_fallback_church_admin",
                church_id=church_id,
                admin_user_id=admin_user_id,
                plan_code=plan.code,
            )
        return plan

    def get_church_plan_usage(
        self,
        church_id: str,
        *,
        owner_user_id: str | None = None,
    ) -> ChurchPlanUsage:
        with self._session() as session:
            member_count = session.exec(
                select(func.count())
                .select_from(Member)
                .join(Branch, col(Member.branch_id) == col(Branch.id))
                .where(Branch.church_id == church_id)
            ).one()
            branch_count = session.exec(
                select(func.count()).select_from(Branch).where(Branch.church_id == church_id)
            ).one()
            plan = self._resolve_plan(session, church_id, owner_user_id)
            return ChurchPlanUsage(
                church_id=church_id,
                plan=plan,
                member_count=int(member_count),
                branch_count=int(branch_count),
            )

    def list_church_admins(self, church_id: str) -> list[Member]:
        with self._session() as session:
            return list(
                session.exec(
                    select(Member)
                    .join(Branch, col(Member.branch_id) == col(Branch.id))
                    .where(Branch.church_id == church_id)
                    .where(col(Member.role).in_(list(IMPLICITLY_PRIVILEGED_ROLES)))
                ).all()
            )

    def replace_member_permissions(
        self,
        member_id: str,
        types: Iterable[str],
        *,
        role: MemberRole | None = None,
        session: Session | None = None,
    ) -> list[str]:
        normalized = sorted({str(item) for item in types})
        with self._scope(session) as active:
            member = active.get(Member, member_id)
            if member is None:
                raise LookupError(f"member {member_id} not found")
            existing = active.exec(
                select(MemberPermission).where(MemberPermission.member_id == member_id)
            ).all()
            for row in existing:
                active.delete(row)
            # Deletes must hit the table before re-inserting the same types.
            active.flush()
            for permission_type in normalized:
                active.add(MemberPermission(member_id=member_id, type=permission_type))
            if role is not None:
                member.role = role
            member.updated_at = now_utc()
            active.add(member)
            active.flush()
        return normalized

    def upsert_invite_link_usage(
        self,
        link_id: str,
        *,
        now: datetime,
        session: Session | None = None,
    ) -> InviteLink | None:
        statement = (
            update(InviteLink)
            .where(col(InviteLink.id) == link_id)
            .where(col(InviteLink.is_active).is_(True))
            .where(
                or_(
                    col(InviteLink.max_uses).is_(None),
                    col(InviteLink.current_uses) < col(InviteLink.max_uses),
                )
            )
            .where(or_(col(InviteLink.expires_at).is_(None), col(InviteLink.expires_at) >= now))
            .values(current_uses=col(InviteLink.current_uses) + 1)
        )
        with self._scope(session) as active:
            result = active.connection().execute(statement)
            if result.rowcount != 1:
                return None
            return active.get(InviteLink, link_id, populate_existing=True)

    def get_invite_link(self, link_id: str) -> InviteLink | None:
        with self._session() as session:
            return session.get(InviteLink, link_id)

    def get_invite_link_by_token(self, token: str) -> InviteLink | None:
        with self._session() as session:
            return session.exec(select(InviteLink).where(InviteLink.token == token)).first()

    def invite_token_exists(self, token: str) -> bool:
        with self._session() as session:
            return session.exec(select(InviteLink.id).where(InviteLink.token == token)).first() is not None

    def list_invite_links(self, branch_id: str, *, active_only: bool = False) -> list[InviteLink]:
        with self._session() as session:
            statement = select(InviteLink).where(InviteLink.branch_id == branch_id)
            if active_only:
                statement = statement.where(col(InviteLink.is_active).is_(True))
            statement = statement.order_by(col(InviteLink.created_at).desc())
            return list(session.exec(statement).all())

    def create_entity(self, entity: EntityT, *, session: Session | None = None) -> EntityT:
        with self._scope(session) as active:
            active.add(entity)
            active.flush()
        return entity

    def update_entity(
        self,
        entity_type: type[EntityT],
        entity_id: str,
        changes: dict[str, Any],
        *,
        session: Session | None = None,
    ) -> EntityT | None:
        blocked = IMMUTABLE_FIELDS.get(entity_type, _ALWAYS_IMMUTABLE) & changes.keys()
        if blocked:
            raise ValueError(f"cannot update immutable fields: {', '.join(sorted(blocked))}")
        with self._scope(session) as active:
            entity = active.get(entity_type, entity_id)
            if entity is None:
                return None
            for key, value in changes.items():
                setattr(entity, key, value)
            if hasattr(entity, "updated_at"):
                entity.updated_at = now_utc()  # type: ignore[attr-defined]
            active.add(entity)
            active.flush()
        return entity

    def create_member(
        self,
        member: Member,
        permissions: Iterable[str],
        *,
        session: Session | None = None,
    ) -> Member:
        with self._scope(session) as active:
            active.add(member)
            active.flush()
            for permission_type in sorted({str(item) for item in permissions}):
                active.add(MemberPermission(member_id=member.id, type=permission_type))
            active.flush()
        return member
