from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

from churchhub.domain.models import (
    Branch,
    Church,
    Member,
    Plan,
    Subscription,
    SubscriptionStatus,
    User,
)
from churchhub.domain.permissions import PERMISSION_CATALOG
from churchhub.domain.results import ErrorKind
from churchhub.domain.roles import MemberContext, MemberRole
from churchhub.infra.auth import hash_password
from churchhub.infra.repository import SqlRepository
from churchhub.services.quota_service import QuotaEnforcer


@pytest.fixture()
def quota_engine(tmp_path: Path) -> Engine:
    db_path = tmp_path / "quota_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    return test_engine


@pytest.fixture()
def repo(quota_engine: Engine) -> SqlRepository:
    return SqlRepository(quota_engine)


def _user(repo: SqlRepository, email: str) -> User:
    return repo.create_entity(User(email=email, name=email.split("@")[0], password_hash=hash_password("secret1")))


def _plan(repo: SqlRepository, code: str, *, max_members: int | None, max_branches: int | None) -> Plan:
    return repo.create_entity(Plan(code=code, name=code.title(), max_members=max_members, max_branches=max_branches))


def _subscribe(repo: SqlRepository, user: User, plan: Plan, status: SubscriptionStatus) -> None:
    repo.create_entity(Subscription(user_id=user.id, plan_id=plan.id, status=status))


def _church(repo: SqlRepository, owner: User, *, name: str = "Grace") -> tuple[MemberContext, Branch]:
    with repo.transaction() as session:
        church = repo.create_entity(Church(name=name, created_by_user_id=owner.id), session=session)
        branch = repo.create_entity(
            Branch(church_id=church.id, name="Sede", is_main_branch=True),
            session=session,
        )
        repo.create_member(
            Member(branch_id=branch.id, user_id=owner.id, name="Admin", email=owner.email, role=MemberRole.ADMINGERAL),
            PERMISSION_CATALOG,
            session=session,
        )
    actor = repo.get_actor_by_identity(owner.id)
    assert actor is not None
    return actor, branch


def _add_members(repo: SqlRepository, branch_id: str, count: int) -> None:
    for index in range(count):
        repo.create_member(Member(branch_id=branch_id, name=f"Member {index}"), {"members_view"})


def test_member_quota_counts_all_branches(repo: SqlRepository) -> None:
    owner = _user(repo, "owner@example.com")
    _subscribe(repo, owner, _plan(repo, "PRO", max_members=10, max_branches=5), SubscriptionStatus.ACTIVE)
    actor, main = _church(repo, owner)
    second = repo.create_entity(Branch(church_id=actor.church_id, name="North"))

    # 1 admin + 5 + 3 = 9 members spread over two branches.
    _add_members(repo, main.id, 5)
    _add_members(repo, second.id, 3)
    enforcer = QuotaEnforcer(repo)

    allowed = enforcer.check_member_quota(actor.church_id, owner.id)
    assert allowed.ok
    assert allowed.unwrap().current == 9

    _add_members(repo, second.id, 1)
    denied = enforcer.check_member_quota(actor.church_id, owner.id)
    assert denied.kind == ErrorKind.QUOTA_EXCEEDED
    assert denied.reason == "members_limit_reached"
    assert denied.denial is not None
    assert denied.denial.detail["current"] == 10
    assert denied.denial.detail["maximum"] == 10
    assert "10" in (denied.denial.message or "")


def test_unlimited_plan_never_exceeds(repo: SqlRepository) -> None:
    owner = _user(repo, "owner@example.com")
    _subscribe(repo, owner, _plan(repo, "UNLIMITED", max_members=None, max_branches=None), SubscriptionStatus.ACTIVE)
    actor, main = _church(repo, owner)
    _add_members(repo, main.id, 12)

    enforcer = QuotaEnforcer(repo)
    assert enforcer.check_member_quota(actor.church_id, owner.id).ok
    assert enforcer.check_branch_quota(actor.church_id, owner.id).ok


def test_branch_quota(repo: SqlRepository) -> None:
    owner = _user(repo, "owner@example.com")
    _subscribe(repo, owner, _plan(repo, "PRO", max_members=50, max_branches=2), SubscriptionStatus.ACTIVE)
    actor, _ = _church(repo, owner)
    enforcer = QuotaEnforcer(repo)

    assert enforcer.check_branch_quota(actor.church_id, owner.id).ok
    repo.create_entity(Branch(church_id=actor.church_id, name="North"))
    denied = enforcer.check_branch_quota(actor.church_id, owner.id)
    assert denied.kind == ErrorKind.QUOTA_EXCEEDED
    assert denied.reason == "branches_limit_reached"


def test_pending_free_subscription_resolves_plan(repo: SqlRepository) -> None:
    owner = _user(repo, "owner@example.com")
    _subscribe(repo, owner, _plan(repo, "FREE", max_members=3, max_branches=1), SubscriptionStatus.PENDING)
    actor, _ = _church(repo, owner)

    result = QuotaEnforcer(repo).check_member_quota(actor.church_id, owner.id)
    assert result.ok
    assert result.unwrap().plan_code == "FREE"


def test_pending_paid_subscription_does_not_count(repo: SqlRepository) -> None:
    owner = _user(repo, "owner@example.com")
    _subscribe(repo, owner, _plan(repo, "PRO", max_members=3, max_branches=1), SubscriptionStatus.PENDING)
    actor, _ = _church(repo, owner)

    result = QuotaEnforcer(repo).check_member_quota(actor.church_id, owner.id)
    assert result.kind == ErrorKind.NOT_FOUND
    assert result.reason == "plan_not_found"


def test_actor_without_plan_falls_back_to_church_admin(repo: SqlRepository) -> None:
    owner = _user(repo, "owner@example.com")
    _subscribe(repo, owner, _plan(repo, "PRO", max_members=7, max_branches=2), SubscriptionStatus.ACTIVE)
    actor, main = _church(repo, owner)

    helper = _user(repo, "helper@example.com")
    repo.create_member(
        Member(branch_id=main.id, user_id=helper.id, name="Helper", role=MemberRole.COORDINATOR),
        {"members_view", "members_manage"},
    )

    result = QuotaEnforcer(repo).check_member_quota(actor.church_id, helper.id)
    assert result.ok
    assert result.unwrap().maximum == 7
    assert result.unwrap().plan_code == "PRO"


def test_usage_reports_counts(repo: SqlRepository) -> None:
    owner = _user(repo, "owner@example.com")
    _subscribe(repo, owner, _plan(repo, "PRO", max_members=10, max_branches=3), SubscriptionStatus.ACTIVE)
    actor, main = _church(repo, owner)
    _add_members(repo, main.id, 2)

    usage = QuotaEnforcer(repo).usage(actor.church_id, owner.id)
    assert usage.member_count == 3
    assert usage.branch_count == 1
    assert usage.plan is not None
    assert usage.plan.code == "PRO"
