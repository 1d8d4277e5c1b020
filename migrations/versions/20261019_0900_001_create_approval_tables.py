"""Create approval workflow tables

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000

Creates the following tables:
- workspaces / workspace_members: Directory data read by eligibility checks
- board_items: Items with their denormalized approval status
- approval_workflows: Level policy per board
- approval_records: One decision per chain position
- approval_events: Append-only event log and notification outbox
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ========================================
    # 1. workspaces / workspace_members
    # ========================================
    op.create_table(
        "workspaces",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "workspace_members",
        sa.Column("workspace_id", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=False),
        sa.Column("role", sa.String(32), nullable=False, server_default="member"),
        sa.Column("department", sa.String(100), nullable=True),
        sa.PrimaryKeyConstraint("workspace_id", "user_id"),
        sa.ForeignKeyConstraint(["workspace_id"], ["workspaces.id"]),
    )
    op.create_index("ix_workspace_members_user_id", "workspace_members", ["user_id"])

    # ========================================
    # 2. board_items
    # ========================================
    op.create_table(
        "board_items",
        sa.Column("id", sa.String(64), nullable=False),
        # Ownership
        sa.Column("board_id", sa.String(64), nullable=False),
        sa.Column("workspace_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("creator_id", sa.String(64), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=True),
        # Approval state
        sa.Column("overall_approval_status", sa.String(16), nullable=False, server_default="draft"),
        sa.Column("approval_level_count", sa.Integer(), nullable=True),
        # Timestamps
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False),
        # Constraints
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "overall_approval_status IN ('draft', 'in_review', 'approved', 'rejected')",
            name="item_approval_status",
        ),
    )
    op.create_index("ix_board_items_board_id", "board_items", ["board_id"])
    op.create_index("ix_board_items_workspace_id", "board_items", ["workspace_id"])
    op.create_index("ix_board_items_overall_approval_status", "board_items", ["overall_approval_status"])

    # ========================================
    # 3. approval_workflows
    # ========================================
    op.create_table(
        "approval_workflows",
        sa.Column("board_id", sa.String(64), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("policy", JSONB, nullable=False),
        sa.Column("updated_by", sa.String(64), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("board_id"),
    )

    # ========================================
    # 4. approval_records
    # ========================================
    op.create_table(
        "approval_records",
        sa.Column("id", sa.String(36), nullable=False),
        # Chain position
        sa.Column("item_id", sa.String(64), nullable=False),
        sa.Column("round", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("level", sa.Integer(), nullable=False),
        # Decision
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("changes_requested", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("approver_id", sa.String(64), nullable=True),
        sa.Column("comments", sa.Text(), nullable=True),
        # Timestamps
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        # Constraints
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("status IN ('pending', 'approved', 'rejected')", name="record_status"),
        sa.CheckConstraint("level >= 1", name="record_level"),
        sa.CheckConstraint("round >= 1", name="record_round"),
    )
    op.create_index("ix_approval_records_item_id", "approval_records", ["item_id"])
    op.create_index("ix_approval_records_status", "approval_records", ["status"])
    # One active record per chain position; changes-requested rows are history
    op.create_index(
        "uq_approval_record_position",
        "approval_records",
        ["item_id", "round", "level"],
        unique=True,
        postgresql_where=sa.text("NOT changes_requested"),
    )
    # At most one pending record per item
    op.create_index(
        "uq_approval_record_pending",
        "approval_records",
        ["item_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )

    # ========================================
    # 5. approval_events
    # ========================================
    op.create_table(
        "approval_events",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("event_type", sa.String(40), nullable=False),
        sa.Column("record_id", sa.String(36), nullable=False),
        sa.Column("item_id", sa.String(64), nullable=False),
        sa.Column("level", sa.Integer(), nullable=False),
        sa.Column("actor_id", sa.String(64), nullable=True),
        sa.Column("payload", JSONB, nullable=False, server_default="{}"),
        sa.Column("emitted_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_approval_events_event_type", "approval_events", ["event_type"])
    op.create_index("ix_approval_events_record_id", "approval_events", ["record_id"])
    op.create_index("ix_approval_events_item_id", "approval_events", ["item_id"])
    op.create_index("ix_approval_events_published_at", "approval_events", ["published_at"])


def downgrade() -> None:
    op.drop_table("approval_events")
    op.drop_table("approval_records")
    op.drop_table("approval_workflows")
    op.drop_table("board_items")
    op.drop_table("workspace_members")
    op.drop_table("workspaces")
