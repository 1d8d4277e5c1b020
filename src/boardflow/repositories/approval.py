"""Repository for approval records and approval events."""

from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import and_, desc, func, select, update

from boardflow.models.approval import ApprovalEvent, ApprovalRecord
from boardflow.models.board import BoardItem
from boardflow.repositories.base import BaseRepository

PENDING = "pending"


class ApprovalRecordRepository(BaseRepository[ApprovalRecord]):
    """Repository for ApprovalRecord database operations.

    Handles approval chain queries including:
    - The single pending record of an item
    - Chain positions of the current round
    - Conditional decision writes
    - The cross-item pending feed
    """

    model = ApprovalRecord

    async def get_pending_for_item(self, item_id: str) -> ApprovalRecord | None:
        """Get the pending record of an item, if any.

        @param item_id - Item ID
        @returns Pending record or None
        """
        return await self.get_one_by_filter(item_id=item_id, status=PENDING)

    async def get_history(self, item_id: str) -> Sequence[ApprovalRecord]:
        """Get every record of an item in chain order.

        @param item_id - Item ID
        @returns Records ordered by round, level and creation time
        """
        stmt = (
            select(self.model)
            .where(self.model.item_id == item_id)
            .order_by(self.model.round, self.model.level, self.model.created_at)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def get_latest_for_item(self, item_id: str) -> ApprovalRecord | None:
        """Get the most recent record at the furthest chain position.

        @param item_id - Item ID
        @returns Latest record or None if the item was never submitted
        """
        stmt = (
            select(self.model)
            .where(self.model.item_id == item_id)
            .order_by(
                desc(self.model.round),
                desc(self.model.level),
                desc(self.model.created_at),
            )
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_current_round(self, item_id: str) -> int:
        """Get the highest round of an item.

        @param item_id - Item ID
        @returns Round number, 0 if never submitted
        """
        stmt = select(func.max(self.model.round)).where(self.model.item_id == item_id)
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def get_active(
        self, item_id: str, round: int, level: int
    ) -> ApprovalRecord | None:
        """Get the record occupying a chain position.

        Changes-requested rejections are history and never occupy a position.

        @param item_id - Item ID
        @param round - Submission round
        @param level - Level ordinal
        @returns Record or None
        """
        return await self.get_one_by_filter(
            item_id=item_id, round=round, level=level, changes_requested=False
        )

    async def get_latest_at(
        self, item_id: str, round: int, level: int
    ) -> ApprovalRecord | None:
        """Get the newest record at a chain position, changes requests included.

        @param item_id - Item ID
        @param round - Submission round
        @param level - Level ordinal
        @returns Record or None if the position was never opened
        """
        stmt = (
            select(self.model)
            .where(
                and_(
                    self.model.item_id == item_id,
                    self.model.round == round,
                    self.model.level == level,
                )
            )
            .order_by(desc(self.model.created_at))
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_approvers_in_round(self, item_id: str, round: int) -> dict[str, int]:
        """Map approver id to the level they approved in a round.

        @param item_id - Item ID
        @param round - Submission round
        @returns approver_id -> level
        """
        stmt = select(self.model.approver_id, self.model.level).where(
            and_(
                self.model.item_id == item_id,
                self.model.round == round,
                self.model.status == "approved",
            )
        )
        result = await self.session.execute(stmt)
        return {approver: level for approver, level in result.all()}

    async def get_levels_approved_by(
        self, approver_id: str, item_ids: Sequence[str]
    ) -> dict[tuple[str, int], int]:
        """Map (item, round) to the level an approver approved there.

        @param approver_id - Approver
        @param item_ids - Items to look at
        @returns (item_id, round) -> level
        """
        if not item_ids:
            return {}
        stmt = select(self.model.item_id, self.model.round, self.model.level).where(
            and_(
                self.model.approver_id == approver_id,
                self.model.item_id.in_(list(item_ids)),
                self.model.status == "approved",
            )
        )
        result = await self.session.execute(stmt)
        return {(item_id, round): level for item_id, round, level in result.all()}

    async def get_current_round_approvals(
        self, item_ids: Sequence[str]
    ) -> dict[str, list[ApprovalRecord]]:
        """Get the approved records of each item's latest round.

        @param item_ids - Item IDs
        @returns item_id -> approved records ordered by level
        """
        if not item_ids:
            return {}

        current = (
            select(self.model.item_id, func.max(self.model.round).label("round"))
            .where(self.model.item_id.in_(list(item_ids)))
            .group_by(self.model.item_id)
            .subquery()
        )
        stmt = (
            select(self.model)
            .join(
                current,
                and_(
                    self.model.item_id == current.c.item_id,
                    self.model.round == current.c.round,
                ),
            )
            .where(self.model.status == "approved")
            .order_by(self.model.item_id, self.model.level)
        )
        result = await self.session.execute(stmt)

        approvals: dict[str, list[ApprovalRecord]] = {}
        for record in result.scalars().all():
            approvals.setdefault(record.item_id, []).append(record)
        return approvals

    async def transition(self, record_id: str, values: dict[str, Any]) -> bool:
        """Decide a record only if it is still pending.

        @param record_id - Record ID
        @param values - Decision columns
        @returns True if this call won the write
        """
        updated = await self.update_where(values, id=record_id, status=PENDING)
        return updated == 1

    async def get_pending_in_workspaces(
        self,
        workspace_ids: Sequence[str],
        *,
        board_id: str | None = None,
        level: int | None = None,
    ) -> Sequence[tuple[ApprovalRecord, BoardItem]]:
        """Get pending records with their items inside the given workspaces.

        @param workspace_ids - Workspaces the reader belongs to
        @param board_id - Optional board filter
        @param level - Optional level filter
        @returns (record, item) pairs, oldest record first
        """
        if not workspace_ids:
            return []

        stmt = (
            select(self.model, BoardItem)
            .join(BoardItem, BoardItem.id == self.model.item_id)
            .where(
                and_(
                    self.model.status == PENDING,
                    BoardItem.workspace_id.in_(list(workspace_ids)),
                )
            )
        )
        if board_id:
            stmt = stmt.where(BoardItem.board_id == board_id)
        if level is not None:
            stmt = stmt.where(self.model.level == level)
        stmt = stmt.order_by(self.model.created_at, self.model.id)

        result = await self.session.execute(stmt)
        return [(record, item) for record, item in result.all()]


class ApprovalEventRepository(BaseRepository[ApprovalEvent]):
    """Repository for the append-only approval event log."""

    model = ApprovalEvent

    async def get_by_item(self, item_id: str) -> Sequence[ApprovalEvent]:
        """Get all events of an item in emission order.

        @param item_id - Item ID
        @returns Events ordered by id
        """
        stmt = (
            select(self.model)
            .where(self.model.item_id == item_id)
            .order_by(self.model.id)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def get_unpublished(self, limit: int = 100) -> Sequence[ApprovalEvent]:
        """Get events not yet handed to subscribers.

        @param limit - Maximum events
        @returns Oldest unpublished events first
        """
        stmt = (
            select(self.model)
            .where(self.model.published_at.is_(None))
            .order_by(self.model.id)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def mark_published(self, event_ids: Sequence[int], at: datetime) -> int:
        """Stamp events as delivered.

        @param event_ids - Event IDs
        @param at - Publication time
        @returns Number of events stamped
        """
        if not event_ids:
            return 0
        stmt = (
            update(self.model)
            .where(
                and_(
                    self.model.id.in_(list(event_ids)),
                    self.model.published_at.is_(None),
                )
            )
            .values(published_at=at)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount
