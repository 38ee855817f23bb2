"""initial schema

Revision ID: 202602210001
Revises:
Create Date: 2026-02-21 00:00:01
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "202602210001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("college_id", sa.String(length=64), nullable=False),
        sa.Column("author_id", sa.String(length=64), nullable=False),
        sa.Column("author_name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("author_role", sa.String(length=20), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("start_at", sa.DateTime(), nullable=False),
        sa.Column("end_at", sa.DateTime(), nullable=False),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("mode", sa.String(length=20), nullable=False),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column("meeting_url", sa.String(length=500), nullable=True),
        sa.Column("capacity", sa.Integer(), nullable=True),
        sa.Column("visible_to_all_depts", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("moderation_status", sa.String(length=20), nullable=False, server_default="PENDING_REVIEW"),
        sa.Column("monitor_id", sa.String(length=64), nullable=True),
        sa.Column("monitor_name", sa.String(length=255), nullable=True),
        sa.Column("registration_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("archived_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("end_at >= start_at", name="chk_event_time_order"),
        sa.CheckConstraint("capacity IS NULL OR capacity > 0", name="chk_event_capacity"),
        sa.CheckConstraint(
            "registration_count >= 0 AND (capacity IS NULL OR registration_count <= capacity)",
            name="chk_event_registration_count",
        ),
        sa.CheckConstraint(
            "moderation_status IN ('PENDING_REVIEW', 'APPROVED', 'REJECTED')",
            name="chk_event_moderation_status",
        ),
        sa.CheckConstraint("type IN ('WORKSHOP', 'SEMINAR', 'HACKATHON', 'MEETUP')", name="chk_event_type"),
        sa.CheckConstraint("mode IN ('ONLINE', 'ONSITE', 'HYBRID')", name="chk_event_mode"),
    )
    op.create_index("ix_events_college_id", "events", ["college_id"])
    op.create_index("ix_events_author_id", "events", ["author_id"])
    op.create_index("ix_events_monitor_id", "events", ["monitor_id"])
    op.create_index("idx_events_college_status", "events", ["college_id", "moderation_status"])
    op.create_index("idx_events_start_at", "events", ["start_at"])

    op.create_table(
        "event_departments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.ForeignKeyConstraint(["event_id"], ["events.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("event_id", "name", name="uq_event_department"),
    )
    op.create_index("ix_event_departments_id", "event_departments", ["id"])
    op.create_index("idx_event_departments_name", "event_departments", ["name"])

    op.create_table(
        "event_registrations",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("event_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("joined_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["event_id"], ["events.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("event_id", "user_id", name="uq_event_registration_user"),
    )
    op.create_index("idx_event_registrations_user", "event_registrations", ["user_id"])

    op.create_table(
        "event_approval_flows",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_id", sa.String(length=36), nullable=False),
        sa.Column("assigned_to", sa.String(length=64), nullable=True),
        sa.Column("assigned_to_name", sa.String(length=255), nullable=True),
        sa.Column("submitted_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("approved_by", sa.String(length=64), nullable=True),
        sa.Column("approved_by_name", sa.String(length=255), nullable=True),
        sa.Column("rejected_at", sa.DateTime(), nullable=True),
        sa.Column("rejected_by", sa.String(length=64), nullable=True),
        sa.Column("rejected_by_name", sa.String(length=255), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("is_escalated", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("escalated_at", sa.DateTime(), nullable=True),
        sa.Column("escalated_to", sa.String(length=64), nullable=True),
        sa.Column("escalated_to_name", sa.String(length=255), nullable=True),
        sa.Column("mentor_assigned", sa.String(length=64), nullable=True),
        sa.Column("mentor_name", sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(["event_id"], ["events.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("event_id"),
        sa.CheckConstraint(
            "approved_at IS NULL OR rejected_at IS NULL", name="chk_approval_flow_single_outcome"
        ),
    )
    op.create_index("ix_event_approval_flows_id", "event_approval_flows", ["id"])
    op.create_index("ix_event_approval_flows_assigned_to", "event_approval_flows", ["assigned_to"])
    op.create_index("idx_approval_flows_pending", "event_approval_flows", ["is_escalated", "submitted_at"])

    op.create_table(
        "escalation_policies",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("college_id", sa.String(length=64), nullable=False),
        sa.Column("escalation_delay_hours", sa.Integer(), nullable=False, server_default=sa.text("72")),
        sa.Column("backup_approvers", sa.JSON(), nullable=False),
        sa.Column("auto_escalate_to_head", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("college_id"),
        sa.CheckConstraint("escalation_delay_hours > 0", name="chk_escalation_delay"),
    )
    op.create_index("ix_escalation_policies_id", "escalation_policies", ["id"])

    op.create_table(
        "admin_audit_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("admin_id", sa.String(length=64), nullable=False),
        sa.Column("admin_name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.Text(), nullable=False),
        sa.Column("old_values", sa.Text(), nullable=True),
        sa.Column("new_values", sa.Text(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("college_id", sa.String(length=64), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_admin_audit_logs_id", "admin_audit_logs", ["id"])
    op.create_index("ix_admin_audit_logs_admin_id", "admin_audit_logs", ["admin_id"])
    op.create_index("ix_admin_audit_logs_action", "admin_audit_logs", ["action"])
    op.create_index("ix_admin_audit_logs_entity_type", "admin_audit_logs", ["entity_type"])
    op.create_index("ix_admin_audit_logs_college_id", "admin_audit_logs", ["college_id"])
    op.create_index("idx_admin_audit_logs_timestamp", "admin_audit_logs", ["timestamp"])


def downgrade() -> None:
    op.drop_table("admin_audit_logs")
    op.drop_table("escalation_policies")
    op.drop_table("event_approval_flows")
    op.drop_table("event_registrations")
    op.drop_table("event_departments")
    op.drop_table("events")
