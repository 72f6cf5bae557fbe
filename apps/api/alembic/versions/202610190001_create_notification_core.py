"""create notification core

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19 00:01:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "crm_user_profile",
        sa.Column("id", sa.String(length=128), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=True),
        sa.Column("first_name", sa.Text(), nullable=True),
        sa.Column("last_name", sa.Text(), nullable=True),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("role", sa.String(length=32), nullable=False, server_default="user"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_user_profile_tenant_role", "crm_user_profile", ["tenant_id", "role"], unique=False)

    op.create_table(
        "crm_lead",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=True),
        sa.Column("first_name", sa.Text(), nullable=True),
        sa.Column("last_name", sa.Text(), nullable=True),
        sa.Column("company_name", sa.Text(), nullable=True),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="new"),
        sa.Column("owner_user_id", sa.String(length=128), nullable=True),
        sa.Column("reassignment_pending", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reassignment_requested_by", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_lead_owner", "crm_lead", ["owner_user_id"], unique=False)

    op.create_table(
        "crm_deal",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("stage", sa.String(length=32), nullable=False, server_default="prospecting"),
        sa.Column("value", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("owner_user_id", sa.String(length=128), nullable=True),
        sa.Column("close_date", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_deal_open_close_date", "crm_deal", ["stage", "close_date"], unique=False)

    op.create_table(
        "crm_task",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("kind", sa.String(length=32), nullable=False, server_default="task"),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="open"),
        sa.Column("assigned_to_user_id", sa.String(length=128), nullable=True),
        sa.Column("created_by_user_id", sa.String(length=128), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("start_time", sa.Time(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_task_status_due", "crm_task", ["status", "due_date"], unique=False)

    op.create_table(
        "notifications_notice",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("recipient_id", sa.String(length=128), nullable=False),
        sa.Column("notice_type", sa.String(length=64), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("entity_kind", sa.String(length=32), nullable=False, server_default="system"),
        sa.Column("entity_id", sa.String(length=128), nullable=True),
        sa.Column("priority", sa.String(length=16), nullable=False, server_default="medium"),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("action_ref", sa.Text(), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("resolution", sa.String(length=16), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_notifications_notice_recipient_created",
        "notifications_notice",
        ["recipient_id", "created_at"],
        unique=False,
    )
    op.create_index(
        "ix_notifications_notice_recipient_unread",
        "notifications_notice",
        ["recipient_id", "is_read"],
        unique=False,
    )
    op.create_index(
        "ix_notifications_notice_dedup_entity",
        "notifications_notice",
        ["recipient_id", "notice_type", "entity_kind", "entity_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "activity_log_entry",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("actor_id", sa.String(length=128), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=True),
        sa.Column("action_type", sa.String(length=64), nullable=False),
        sa.Column("entity_kind", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.String(length=128), nullable=True),
        sa.Column("entity_title", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_activity_log_entry_tenant_created",
        "activity_log_entry",
        ["tenant_id", "created_at"],
        unique=False,
    )
    op.create_index(
        "ix_activity_log_entry_guard",
        "activity_log_entry",
        ["actor_id", "entity_kind", "entity_id", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_activity_log_entry_guard", table_name="activity_log_entry")
    op.drop_index("ix_activity_log_entry_tenant_created", table_name="activity_log_entry")
    op.drop_table("activity_log_entry")
    op.drop_index("ix_notifications_notice_dedup_entity", table_name="notifications_notice")
    op.drop_index("ix_notifications_notice_recipient_unread", table_name="notifications_notice")
    op.drop_index("ix_notifications_notice_recipient_created", table_name="notifications_notice")
    op.drop_table("notifications_notice")
    op.drop_index("ix_crm_task_status_due", table_name="crm_task")
    op.drop_table("crm_task")
    op.drop_index("ix_crm_deal_open_close_date", table_name="crm_deal")
    op.drop_table("crm_deal")
    op.drop_index("ix_crm_lead_owner", table_name="crm_lead")
    op.drop_table("crm_lead")
    op.drop_index("ix_crm_user_profile_tenant_role", table_name="crm_user_profile")
    op.drop_table("crm_user_profile")
