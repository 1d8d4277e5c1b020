"""Escalation orchestrator.

Sequences an item's approval chain: opens it on submission, advances it one
level per approval, finalizes it after the last level and reopens it after
a changes request. Every method runs inside the caller's transaction.
"""

import logging
import uuid

from sqlalchemy.exc import IntegrityError

from boardflow.core.exceptions import (
    AlreadySubmitted,
    ApprovalValidationError,
    NotEditable,
)
from boardflow.models.approval import ApprovalRecord
from boardflow.models.board import BoardItem
from boardflow.repositories import ApprovalRecordRepository
from boardflow.services.approval.collaborators import SqlItemStore
from boardflow.services.approval.policy import LevelPolicyResolver
from boardflow.services.approval.publisher import EventOutbox
from boardflow.services.approval.schemas import (
    ApprovalEventType,
    OverallApprovalStatus,
    RecordStatus,
)

logger = logging.getLogger(__name__)


class EscalationOrchestrator:
    """Creates approval records and owns the item's overall status."""

    def __init__(
        self,
        records: ApprovalRecordRepository,
        items: SqlItemStore,
        resolver: LevelPolicyResolver,
        outbox: EventOutbox,
    ):
        self.records = records
        self.items = items
        self.resolver = resolver
        self.outbox = outbox

    async def _open_record(self, item_id: str, round: int, level: int) -> ApprovalRecord:
        return await self.records.create(
            {
                "id": str(uuid.uuid4()),
                "item_id": item_id,
                "round": round,
                "level": level,
                "status": RecordStatus.PENDING.value,
            }
        )

    async def submit(self, item_id: str, actor_id: str) -> ApprovalRecord:
        """Open a new chain for an item.

        @param item_id - Item ID
        @param actor_id - Submitting user
        @returns Level-1 pending record of the new round
        @raises ApprovalNotFound if the item does not exist
        @raises AlreadySubmitted if the item's state forbids a new chain
        @raises ApprovalValidationError if the workflow is disabled or empty
        """
        item = await self.items.require_item(item_id)
        status = OverallApprovalStatus(item.overall_approval_status)

        if status == OverallApprovalStatus.IN_REVIEW or await self.records.get_pending_for_item(
            item_id
        ):
            raise AlreadySubmitted(f"Item {item_id} is already in review")
        if status == OverallApprovalStatus.APPROVED:
            raise AlreadySubmitted(f"Item {item_id} is already approved")

        latest = await self.records.get_latest_for_item(item_id)
        if status == OverallApprovalStatus.DRAFT and latest and latest.changes_requested:
            raise AlreadySubmitted(
                f"Item {item_id} awaits resubmission at level {latest.level}"
            )

        policy = await self.items.get_approval_config(item_id)
        if status == OverallApprovalStatus.REJECTED and not policy.allow_resubmit_after_reject:
            raise AlreadySubmitted(f"Item {item_id} was rejected")

        if not policy.enabled:
            raise ApprovalValidationError(
                f"Approval workflow is disabled on board {item.board_id}"
            )
        levels = self.resolver.levels_for(policy, item)
        if not levels:
            raise ApprovalValidationError(
                f"Approval workflow of board {item.board_id} has no enabled levels"
            )

        round = await self.records.get_current_round(item_id) + 1
        await self.items.snapshot_level_count(item_id, len(levels))
        await self.items.set_overall_approval_status(item_id, OverallApprovalStatus.IN_REVIEW)
        record = await self._open_record(item_id, round, 1)

        await self.outbox.record(
            ApprovalEventType.SUBMITTED,
            record,
            item,
            actor_id,
            level_count=len(levels),
            resubmission=False,
        )
        logger.info(
            f"Item {item_id} submitted by {actor_id}: round {round}, {len(levels)} level(s)"
        )
        return record

    async def on_approved(
        self, record: ApprovalRecord, item: BoardItem
    ) -> ApprovalRecord | None:
        """Advance the chain after a level's approval.

        Safe to replay. The chain only moves while the item is in review in
        the record's round with nothing pending. Otherwise the approval was
        already processed and the record found at the next position, if
        any, is returned unchanged.

        @param record - Approved record
        @param item - Item of the record
        @returns Next level's record, or None if the chain finished
        """
        next_level = record.level + 1
        is_last = record.level >= self.resolver.last_level(item)

        if not await self._awaits_escalation(record, item):
            logger.debug(f"Approval {record.id} of item {item.id} already processed")
            if is_last:
                return None
            return await self.records.get_latest_at(item.id, record.round, next_level)

        if is_last:
            await self._finalize(record, item)
            return None

        existing = await self.records.get_active(item.id, record.round, next_level)
        if existing is not None:
            logger.debug(f"Level {next_level} of item {item.id} already open")
            return existing

        try:
            async with self.records.session.begin_nested():
                created = await self._open_record(item.id, record.round, next_level)
        except IntegrityError:
            logger.debug(f"Level {next_level} of item {item.id} opened concurrently")
            return await self.records.get_active(item.id, record.round, next_level)

        logger.info(f"Item {item.id} escalated to level {next_level}")
        return created

    async def _awaits_escalation(self, record: ApprovalRecord, item: BoardItem) -> bool:
        if item.overall_approval_status != OverallApprovalStatus.IN_REVIEW.value:
            return False
        if record.round != await self.records.get_current_round(item.id):
            return False
        return await self.records.get_pending_for_item(item.id) is None

    async def _finalize(self, record: ApprovalRecord, item: BoardItem) -> None:
        await self.items.set_overall_approval_status(item.id, OverallApprovalStatus.APPROVED)
        await self.outbox.record(
            ApprovalEventType.COMPLETED,
            record,
            item,
            None,
            level_count=self.resolver.last_level(item),
        )
        logger.info(f"Item {item.id} approved after level {record.level}")

    async def on_rejected(
        self, record: ApprovalRecord, item: BoardItem, changes_requested: bool
    ) -> OverallApprovalStatus:
        """Close the chain after a rejection.

        @param record - Rejected record
        @param item - Item of the record
        @param changes_requested - Return the item to draft instead of rejecting it
        @returns New overall status
        """
        status = (
            OverallApprovalStatus.DRAFT if changes_requested else OverallApprovalStatus.REJECTED
        )
        await self.items.set_overall_approval_status(item.id, status)
        logger.info(f"Item {item.id} {status.value} at level {record.level}")
        return status

    async def resubmit(self, item_id: str, actor_id: str) -> ApprovalRecord:
        """Reopen a chain at the level that requested changes.

        @param item_id - Item ID
        @param actor_id - Resubmitting user
        @returns New pending record at the same round and level
        @raises ApprovalNotFound if the item does not exist
        @raises NotEditable if the item is not awaiting resubmission
        """
        item = await self.items.require_item(item_id)
        if item.overall_approval_status != OverallApprovalStatus.DRAFT.value:
            raise NotEditable(
                f"Item {item_id} is {item.overall_approval_status}, not awaiting changes"
            )

        latest = await self.records.get_latest_for_item(item_id)
        if latest is None or not latest.changes_requested:
            raise NotEditable(f"No changes were requested on item {item_id}")

        await self.items.set_overall_approval_status(item_id, OverallApprovalStatus.IN_REVIEW)
        record = await self._open_record(item_id, latest.round, latest.level)

        await self.outbox.record(
            ApprovalEventType.SUBMITTED,
            record,
            item,
            actor_id,
            level_count=self.resolver.last_level(item),
            resubmission=True,
            previous_record_id=latest.id,
        )
        logger.info(f"Item {item_id} resubmitted by {actor_id} at level {latest.level}")
        return record
