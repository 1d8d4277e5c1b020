"""Board item and board workflow models.

Items belong to the board product; this core only reads them and writes
the approval columns.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from boardflow.models.base import Base, JsonDocument, TimestampMixin, utcnow


class BoardItem(Base, TimestampMixin):
    """Board item table."""

    __tablename__ = "board_items"

    # Primary key
    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    # Ownership
    board_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    workspace_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    creator_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)

    # Approval state owned by the approval core
    overall_approval_status: Mapped[str] = mapped_column(
        String(16), default="draft", nullable=False, index=True
    )
    approval_level_count: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True
    )

    __table_args__ = (
        CheckConstraint(
            "overall_approval_status IN ('draft', 'in_review', 'approved', 'rejected')",
            name="item_approval_status",
        ),
    )


class BoardWorkflow(Base):
    """Approval workflow configuration of one board."""

    __tablename__ = "approval_workflows"

    board_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    policy: Mapped[dict] = mapped_column(JsonDocument, nullable=False)
    updated_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )
