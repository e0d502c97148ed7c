"""tenancy, membership and invite link tables

Revision ID: 202610180001
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610180001"
down_revision = None
branch_labels = None
depends_on = None

FREE_PLAN_MAX_MEMBERS = 20
FREE_PLAN_MAX_BRANCHES = 1


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("password_hash", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_created_at", "users", ["created_at"])

    op.create_table(
        "churches",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_by_user_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_churches_name", "churches", ["name"])
    op.create_index("ix_churches_created_by_user_id", "churches", ["created_by_user_id"])
    op.create_index("ix_churches_created_at", "churches", ["created_at"])

    op.create_table(
        "branches",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("church_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("is_main_branch", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["church_id"], ["churches.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_branches_church_id", "branches", ["church_id"])
    op.create_index("ix_branches_created_at", "branches", ["created_at"])
    op.create_index("ix_branches_church_main", "branches", ["church_id", "is_main_branch"])

    op.create_table(
        "plans",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("max_members", sa.Integer(), nullable=True),
        sa.Column("max_branches", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_plans_code", "plans", ["code"], unique=True)
    op.create_index("ix_plans_created_at", "plans", ["created_at"])

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("plan_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["plan_id"], ["plans.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"])
    op.create_index("ix_subscriptions_plan_id", "subscriptions", ["plan_id"])
    op.create_index("ix_subscriptions_started_at", "subscriptions", ["started_at"])
    op.create_index("ix_subscriptions_user_status", "subscriptions", ["user_id", "status"])

    op.create_table(
        "invite_links",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("token", sa.String(), nullable=False),
        sa.Column("branch_id", sa.String(), nullable=False),
        sa.Column("created_by", sa.String(), nullable=False),
        sa.Column("max_uses", sa.Integer(), nullable=True),
        sa.Column("current_uses", sa.Integer(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.CheckConstraint("current_uses >= 0", name="ck_invite_links_uses_non_negative"),
        sa.CheckConstraint(
            "max_uses IS NULL OR current_uses <= max_uses",
            name="ck_invite_links_uses_within_max",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_invite_links_token", "invite_links", ["token"], unique=True)
    op.create_index("ix_invite_links_branch_id", "invite_links", ["branch_id"])
    op.create_index("ix_invite_links_created_by", "invite_links", ["created_by"])
    op.create_index("ix_invite_links_created_at", "invite_links", ["created_at"])
    op.create_index("ix_invite_links_branch_active", "invite_links", ["branch_id", "is_active"])

    op.create_table(
        "members",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("branch_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("position", sa.String(), nullable=True),
        sa.Column("invite_link_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["invite_link_id"], ["invite_links.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
    )
    op.create_index("ix_members_branch_id", "members", ["branch_id"])
    op.create_index("ix_members_email", "members", ["email"])
    op.create_index("ix_members_invite_link_id", "members", ["invite_link_id"])
    op.create_index("ix_members_created_at", "members", ["created_at"])
    op.create_index("ix_members_updated_at", "members", ["updated_at"])
    op.create_index("ix_members_branch_role", "members", ["branch_id", "role"])

    op.create_table(
        "member_permissions",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("member_id", sa.String(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["member_id"], ["members.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("member_id", "type", name="uq_member_permissions_member_type"),
    )
    op.create_index("ix_member_permissions_member_id", "member_permissions", ["member_id"])
    op.create_index("ix_member_permissions_type", "member_permissions", ["type"])
    op.create_index("ix_member_permissions_created_at", "member_permissions", ["created_at"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("entity_type", sa.String(), nullable=False),
        sa.Column("entity_id", sa.String(), nullable=True),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("detail", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_event_type", "audit_logs", ["event_type"])
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_entity_type", "audit_logs", ["entity_type"])
    op.create_index("ix_audit_logs_entity_id", "audit_logs", ["entity_id"])
    op.create_index("ix_audit_logs_ts", "audit_logs", ["ts"])

    plans = sa.table(
        "plans",
        sa.column("id", sa.String()),
        sa.column("code", sa.String()),
        sa.column("name", sa.String()),
        sa.column("max_members", sa.Integer()),
        sa.column("max_branches", sa.Integer()),
        sa.column("is_active", sa.Boolean()),
        sa.column("created_at", sa.DateTime(timezone=True)),
    )
    op.bulk_insert(
        plans,
        [
            {
                "id": str(uuid4()),
                "code": "FREE",
                "name": "Free",
                "max_members": FREE_PLAN_MAX_MEMBERS,
                "max_branches": FREE_PLAN_MAX_BRANCHES,
                "is_active": True,
                "created_at": datetime.now(UTC),
            }
        ],
    )


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("member_permissions")
    op.drop_table("members")
    op.drop_table("invite_links")
    op.drop_table("subscriptions")
    op.drop_table("plans")
    op.drop_table("branches")
    op.drop_table("churches")
    op.drop_table("users")
