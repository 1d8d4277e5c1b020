"""Approval state machine.

Applies an approver's decision to one record: validates it against the
transition table and the level policy, writes it with a compare-and-set
update and hands the result to the escalation orchestrator.
"""

import logging

from boardflow.core.exceptions import (
    AlreadyDecided,
    ApprovalNotFound,
    ApprovalValidationError,
    NotEligible,
)
from boardflow.models.base import utcnow
from boardflow.repositories import ApprovalRecordRepository
from boardflow.services.approval.collaborators import SqlItemStore
from boardflow.services.approval.orchestrator import EscalationOrchestrator
from boardflow.services.approval.policy import LevelPolicyResolver
from boardflow.services.approval.publisher import EventOutbox
from boardflow.services.approval.schemas import (
    ApprovalEventType,
    ApprovalRecordOut,
    DecisionOutcome,
    DecisionResult,
    OverallApprovalStatus,
    RecordStatus,
)
from boardflow.services.approval.states import get_transition_rule, is_terminal

logger = logging.getLogger(__name__)


class ApprovalStateMachine:
    """Decides approval records.

    Records move from ``pending`` to ``approved`` or ``rejected`` exactly
    once. Two decisions racing on one record both pass validation, but
    only the first conditional write matches a pending row; the loser
    gets ``AlreadyDecided``.
    """

    def __init__(
        self,
        records: ApprovalRecordRepository,
        items: SqlItemStore,
        resolver: LevelPolicyResolver,
        outbox: EventOutbox,
        orchestrator: EscalationOrchestrator,
    ):
        self.records = records
        self.items = items
        self.resolver = resolver
        self.outbox = outbox
        self.orchestrator = orchestrator

    async def decide(
        self,
        record_id: str,
        actor_id: str,
        outcome: DecisionOutcome | str,
        comments: str | None = None,
    ) -> DecisionResult:
        """Approve or reject a pending record.

        @param record_id - Record ID
        @param actor_id - Deciding user
        @param outcome - approved | rejected
        @param comments - Comments, mandatory for rejections
        @returns Decision result
        @raises ApprovalValidationError on an unknown outcome or a missing comment
        @raises ApprovalNotFound if the record does not exist
        @raises AlreadyDecided if the record is no longer pending
        @raises NotEligible if the actor may not decide this level
        """
        try:
            outcome = DecisionOutcome(outcome)
        except ValueError:
            raise ApprovalValidationError(f"Invalid decision outcome: {outcome}")

        return await self._apply(record_id, actor_id, outcome, comments, False)

    async def request_changes(
        self, record_id: str, actor_id: str, comments: str | None
    ) -> DecisionResult:
        """Reject a pending record and return its item to draft.

        @param record_id - Record ID
        @param actor_id - Deciding user
        @param comments - What has to change, mandatory
        @returns Decision result with ``changes_requested`` set
        """
        return await self._apply(
            record_id, actor_id, DecisionOutcome.REJECTED, comments, True
        )

    async def _apply(
        self,
        record_id: str,
        actor_id: str,
        outcome: DecisionOutcome,
        comments: str | None,
        changes_requested: bool,
    ) -> DecisionResult:
        comments = comments.strip() if comments else None

        record = await self.records.get_by_id(record_id)
        if record is None:
            raise ApprovalNotFound(f"Approval {record_id} not found")

        current = RecordStatus(record.status)
        if is_terminal(current):
            raise AlreadyDecided(record.id, record.status)

        rule = get_transition_rule(current, outcome)
        if rule is None:
            raise ApprovalValidationError(
                f"Cannot apply {outcome.value} to a {current.value} approval"
            )
        if rule.requires_comment and not comments:
            raise ApprovalValidationError(
                "Requesting changes requires a comment"
                if changes_requested
                else "Rejection requires a comment"
            )

        item = await self.items.require_item(record.item_id)
        policy = await self.items.get_approval_config(item.id)

        if not await self.resolver.is_eligible(actor_id, record.level, item, policy):
            raise NotEligible(actor_id, record.level)

        if not policy.allow_same_approver_across_levels:
            approved_levels = await self.records.get_approvers_in_round(
                item.id, record.round
            )
            previous = approved_levels.get(actor_id)
            if previous is not None and previous != record.level:
                raise NotEligible(
                    actor_id, record.level, f"already approved level {previous}"
                )

        won = await self.records.transition(
            record.id,
            {
                "status": rule.to_state.value,
                "changes_requested": changes_requested,
                "approver_id": actor_id,
                "comments": comments,
                "decided_at": utcnow(),
            },
        )
        await self.records.session.refresh(record)
        if not won:
            logger.warning(f"Lost decision race on approval {record.id}")
            raise AlreadyDecided(record.id, record.status)

        is_final = record.level >= self.resolver.last_level(item)
        logger.info(
            f"Approval {record.id} {rule.to_state.value} by {actor_id} "
            f"(item={item.id}, level={record.level}, changes_requested={changes_requested})"
        )

        next_record = None
        if rule.to_state == RecordStatus.APPROVED:
            await self.outbox.record(
                ApprovalEventType.APPROVED,
                record,
                item,
                actor_id,
                is_final_level=is_final,
            )
            next_record = await self.orchestrator.on_approved(record, item)
        else:
            await self.outbox.record(
                ApprovalEventType.CHANGES_REQUESTED
                if changes_requested
                else ApprovalEventType.REJECTED,
                record,
                item,
                actor_id,
                is_final_level=is_final,
            )
            await self.orchestrator.on_rejected(record, item, changes_requested)

        return DecisionResult(
            record=ApprovalRecordOut.model_validate(record),
            is_final_level=is_final,
            changes_requested=changes_requested,
            next_record=(
                ApprovalRecordOut.model_validate(next_record) if next_record else None
            ),
            overall_status=OverallApprovalStatus(item.overall_approval_status),
        )
