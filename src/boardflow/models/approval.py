"""Approval record and approval event models."""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from boardflow.models.base import Base, JsonDocument, utcnow

# SQLite only autoincrements INTEGER PRIMARY KEY
EventId = BigInteger().with_variant(Integer(), "sqlite")


class ApprovalRecord(Base):
    """One level's decision for one item.

    Records are inserted by the escalation orchestrator, decided exactly
    once and never deleted.
    """

    __tablename__ = "approval_records"

    # Primary key
    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    # Chain position
    item_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    round: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False)

    # Decision
    status: Mapped[str] = mapped_column(
        String(16), default="pending", nullable=False, index=True
    )
    changes_requested: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    approver_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    decided_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')", name="record_status"
        ),
        CheckConstraint("level >= 1", name="record_level"),
        CheckConstraint("round >= 1", name="record_round"),
        # One active record per chain position; changes-requested rows are history
        Index(
            "uq_approval_record_position",
            "item_id",
            "round",
            "level",
            unique=True,
            postgresql_where=text("NOT changes_requested"),
            sqlite_where=text("NOT changes_requested"),
        ),
        # At most one pending record per item
        Index(
            "uq_approval_record_pending",
            "item_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )


class ApprovalEvent(Base):
    """Append-only approval event log, doubling as the notification outbox."""

    __tablename__ = "approval_events"

    # Primary key, monotonic so the feed has a stable order
    id: Mapped[int] = mapped_column(EventId, primary_key=True, autoincrement=True)

    event_type: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    record_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    item_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    actor_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    payload: Mapped[dict] = mapped_column(JsonDocument, nullable=False, default=dict)

    emitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    published_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
