from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import JSON, CheckConstraint, Column, DateTime, ForeignKeyConstraint, Index, UniqueConstraint
from sqlmodel import Field, SQLModel

from churchhub.domain.invite_state import InviteLinkInvalidReason, InviteLinkState
from churchhub.domain.permissions import PermissionType
from churchhub.domain.roles import MemberRole


def now_utc() -> datetime:
    return datetime.now(UTC)


FREE_PLAN_CODE = "FREE"


class SubscriptionStatus(StrEnum):
    ACTIVE = "ACTIVE"
    PENDING = "PENDING"
    CANCELED = "CANCELED"
    EXPIRED = "EXPIRED"


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    event_type: str = Field(index=True)
    actor_id: str | None = Field(default=None, index=True)
    entity_type: str = Field(index=True)
    entity_id: str | None = Field(default=None, index=True)
    ts: datetime = Field(default_factory=now_utc, index=True, sa_type=DateTime(timezone=True))
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    email: str = Field(index=True, unique=True)
    name: str
    password_hash: str
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=now_utc, index=True, sa_type=DateTime(timezone=True))


class Church(SQLModel, table=True):
    __tablename__ = "churches"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True)
    is_active: bool = Field(default=True)
    created_by_user_id: str | None = Field(default=None, foreign_key="users.id", index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True, sa_type=DateTime(timezone=True))


class Branch(SQLModel, table=True):
    __tablename__ = "branches"
    __table_args__ = (Index("ix_branches_church_main", "church_id", "is_main_branch"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    church_id: str = Field(foreign_key="churches.id", index=True)
    name: str
    is_main_branch: bool = Field(default=False)
    created_at: datetime = Field(default_factory=now_utc, index=True, sa_type=DateTime(timezone=True))


class Member(SQLModel, table=True):
    __tablename__ = "members"
    __table_args__ = (Index("ix_members_branch_role", "branch_id", "role"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    branch_id: str = Field(foreign_key="branches.id", index=True)
    user_id: str | None = Field(default=None, foreign_key="users.id", unique=True)
    name: str
    email: str | None = Field(default=None, index=True)
    role: MemberRole = Field(default=MemberRole.MEMBER)
    position: str | None = None
    invite_link_id: str | None = Field(default=None, foreign_key="invite_links.id", index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=now_utc, index=True, sa_type=DateTime(timezone=True))


class MemberPermission(SQLModel, table=True):
    __tablename__ = "member_permissions"
    __table_args__ = (
        UniqueConstraint("member_id", "type", name="uq_member_permissions_member_type"),
        ForeignKeyConstraint(["member_id"], ["members.id"], ondelete="CASCADE"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    member_id: str = Field(index=True)
    type: str = Field(index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True, sa_type=DateTime(timezone=True))


class Plan(SQLModel, table=True):
    __tablename__ = "plans"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    code: str = Field(index=True, unique=True)
    name: str
    max_members: int | None = None
    max_branches: int | None = None
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=now_utc, index=True, sa_type=DateTime(timezone=True))


class Subscription(SQLModel, table=True):
    __tablename__ = "subscriptions"
    __table_args__ = (Index("ix_subscriptions_user_status", "user_id", "status"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    plan_id: str = Field(foreign_key="plans.id", index=True)
    status: SubscriptionStatus = Field(default=SubscriptionStatus.PENDING)
    started_at: datetime = Field(default_factory=now_utc, index=True, sa_type=DateTime(timezone=True))


class InviteLink(SQLModel, table=True):
    __tablename__ = "invite_links"
    __table_args__ = (
        CheckConstraint("current_uses >= 0", name="ck_invite_links_uses_non_negative"),
        CheckConstraint(
            "max_uses IS NULL OR current_uses <= max_uses",
            name="ck_invite_links_uses_within_max",
        ),
        Index("ix_invite_links_branch_active", "branch_id", "is_active"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    token: str = Field(index=True, unique=True)
    branch_id: str = Field(foreign_key="branches.id", index=True)
    created_by: str = Field(index=True)
    max_uses: int | None = None
    current_uses: int = Field(default=0)
    expires_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=now_utc, index=True, sa_type=DateTime(timezone=True))


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class RegisterRequest(BaseModel):
    email: str
    name: str
    password: str = PydanticField(min_length=6)


class DevLoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserRead(ORMReadModel):
    id: str
    email: str
    name: str
    is_active: bool
    created_at: datetime


class ChurchCreate(BaseModel):
    name: str = PydanticField(min_length=1)
    branch_name: str = "Sede"


class ChurchRead(ORMReadModel):
    id: str
    name: str
    is_active: bool
    created_at: datetime


class BranchCreate(BaseModel):
    name: str = PydanticField(min_length=1)
    church_id: str | None = None


class BranchRead(ORMReadModel):
    id: str
    church_id: str
    name: str
    is_main_branch: bool
    created_at: datetime


class ChurchOnboardingRead(BaseModel):
    church: ChurchRead
    branch: BranchRead
    member_id: str


class MemberCreate(BaseModel):
    branch_id: str
    name: str = PydanticField(min_length=1)
    email: str | None = None
    role: MemberRole | None = None
    position: str | None = None
    permissions: list[PermissionType] = PydanticField(default_factory=list)


class MemberUpdate(BaseModel):
    name: str | None = None
    email: str | None = None
    position: str | None = None


class RoleChangeRequest(BaseModel):
    role: MemberRole


class PermissionGrantRequest(BaseModel):
    permissions: list[PermissionType]


class MemberRead(ORMReadModel):
    id: str
    branch_id: str
    user_id: str | None = None
    name: str
    email: str | None = None
    role: MemberRole
    position: str | None = None
    invite_link_id: str | None = None
    permissions: list[str] = PydanticField(default_factory=list)
    created_at: datetime


class InviteLinkCreate(BaseModel):
    branch_id: str
    max_uses: int | None = PydanticField(default=None, ge=1)
    expires_at: datetime | None = None


class InviteLinkRead(ORMReadModel):
    id: str
    token: str
    branch_id: str
    created_by: str
    max_uses: int | None = None
    current_uses: int
    expires_at: datetime | None = None
    is_active: bool
    state: InviteLinkState | None = None
    created_at: datetime


class InviteLinkValidationRead(BaseModel):
    valid: bool
    reason: InviteLinkInvalidReason | None = None
    branch_id: str | None = None
    church_name: str | None = None


class InviteRegistrationRequest(BaseModel):
    token: str
    name: str = PydanticField(min_length=1)
    email: str
    password: str = PydanticField(min_length=6)


class InviteRegistrationRead(BaseModel):
    user: UserRead
    member: MemberRead


class ChurchPlanUsageRead(BaseModel):
    church_id: str
    plan_code: str | None = None
    max_members: int | None = None
    max_branches: int | None = None
    member_count: int
    branch_count: int
