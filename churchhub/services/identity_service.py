from __future__ import annotations

import structlog
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from churchhub.domain.models import FREE_PLAN_CODE, Plan, RegisterRequest, Subscription, User
from churchhub.infra.auth import hash_password, verify_password
from churchhub.infra.db import get_engine

logger = structlog.get_logger(__name__)


class IdentityError(Exception):
    pass


class NotFoundError(IdentityError):
    pass


class ConflictError(IdentityError):
    pass


class AuthError(IdentityError):
    pass


class IdentityService:
    """Authenticated identities. Church membership is handled by the policy facade."""

    def __init__(self, engine: Engine | None = None) -> None:
        self._engine = engine

    def _session(self) -> Session:
        return Session(self._engine or get_engine(), expire_on_commit=False)

    def register(self, payload: RegisterRequest) -> User:
        with self._session() as session:
            user = User(
                email=payload.email.strip().lower(),
                name=payload.name.strip(),
                password_hash=hash_password(payload.password),
            )
            session.add(user)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("email already registered") from exc
            session.refresh(user)
            self._subscribe_free_plan(session, user)
            logger.info("identity_registered", user_id=user.id)
            return user

    def _subscribe_free_plan(self, session: Session, user: User) -> None:
        # New identities start on a PENDING FREE subscription.
        plan = session.exec(select(Plan).where(Plan.code == FREE_PLAN_CODE)).first()
        if plan is None:
            logger.warning("free_plan_missing", user_id=user.id)
            return
        session.add(Subscription(user_id=user.id, plan_id=plan.id))
        session.commit()

    def get_user(self, user_id: str) -> User:
        with self._session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("user not found")
            return user

    def dev_login(self, email: str, password: str) -> User:
        with self._session() as session:
            user = session.exec(select(User).where(User.email == email.strip().lower())).first()
            if user is None:
                raise AuthError("invalid credentials")
            if not user.is_active:
                raise AuthError("user disabled")
            if not verify_password(password, user.password_hash):
                raise AuthError("invalid credentials")
            return user
