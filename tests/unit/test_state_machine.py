"""Tests for the approval state machine."""

import pytest

from boardflow.core.exceptions import (
    AlreadyDecided,
    ApprovalNotFound,
    ApprovalValidationError,
    NotEligible,
)
from boardflow.services.approval.schemas import (
    DecisionOutcome,
    OverallApprovalStatus,
    RecordStatus,
)
from boardflow.services.approval.states import (
    TERMINAL_STATES,
    get_transition_rule,
    is_terminal,
)

BOARD_ID = "board-invoices"


class TestTransitionTable:
    """Tests for the record transition table."""

    def test_pending_to_approved(self):
        """Test approval needs no comment."""
        rule = get_transition_rule(RecordStatus.PENDING, DecisionOutcome.APPROVED)

        assert rule is not None
        assert rule.to_state == RecordStatus.APPROVED
        assert rule.requires_comment is False

    def test_pending_to_rejected_requires_comment(self):
        """Test rejection needs a comment."""
        rule = get_transition_rule(RecordStatus.PENDING, DecisionOutcome.REJECTED)

        assert rule is not None
        assert rule.to_state == RecordStatus.REJECTED
        assert rule.requires_comment is True

    @pytest.mark.parametrize("state", [RecordStatus.APPROVED, RecordStatus.REJECTED])
    def test_decided_states_are_terminal(self, state):
        """Test that no transition leaves a decided state."""
        assert is_terminal(state)
        assert state in TERMINAL_STATES
        for outcome in DecisionOutcome:
            assert get_transition_rule(state, outcome) is None

    def test_pending_is_not_terminal(self):
        """Test pending records can still be decided."""
        assert not is_terminal(RecordStatus.PENDING)


class TestDecide:
    """Tests for decisions applied through the engine."""

    @pytest.fixture
    async def record(self, workflow_engine, add_item, make_policy):
        """Submit one item under a two-level workflow."""
        await workflow_engine.save_board_workflow(BOARD_ID, make_policy(), "owner")
        await add_item("item-1")
        return await workflow_engine.submit("item-1", "creator")

    @pytest.mark.asyncio
    async def test_approve_sets_decision_fields(self, workflow_engine, record):
        """Test that approving stamps approver and decision time."""
        result = await workflow_engine.decide(
            record.id, "approver-a", "approved", "looks good"
        )

        assert result.record.status == RecordStatus.APPROVED
        assert result.record.approver_id == "approver-a"
        assert result.record.comments == "looks good"
        assert result.record.decided_at is not None
        assert result.is_final_level is False
        assert result.changes_requested is False

    @pytest.mark.asyncio
    async def test_reject_without_comment_fails_before_any_change(
        self, workflow_engine, record, load_item
    ):
        """Test that rejection requires a comment and leaves state untouched."""
        with pytest.raises(ApprovalValidationError):
            await workflow_engine.decide(record.id, "approver-a", "rejected", "   ")

        stored = await workflow_engine.get_record(record.id)
        item = await load_item("item-1")
        assert stored.status == RecordStatus.PENDING
        assert item.overall_approval_status == OverallApprovalStatus.IN_REVIEW.value

    @pytest.mark.asyncio
    async def test_invalid_outcome(self, workflow_engine, record):
        """Test that unknown outcomes are rejected."""
        with pytest.raises(ApprovalValidationError):
            await workflow_engine.decide(record.id, "approver-a", "maybe")

    @pytest.mark.asyncio
    async def test_unknown_record(self, workflow_engine, record):
        """Test deciding a record that does not exist."""
        with pytest.raises(ApprovalNotFound):
            await workflow_engine.decide("missing", "approver-a", "approved")

    @pytest.mark.asyncio
    async def test_wrong_role_not_eligible(self, workflow_engine, record):
        """Test that a director cannot decide the manager level."""
        with pytest.raises(NotEligible):
            await workflow_engine.decide(record.id, "approver-b", "approved")

    @pytest.mark.asyncio
    async def test_other_workspace_not_eligible(self, workflow_engine, record):
        """Test that members of other workspaces are not eligible."""
        with pytest.raises(NotEligible):
            await workflow_engine.decide(record.id, "outsider", "approved")

    @pytest.mark.asyncio
    async def test_second_decision_already_decided(self, workflow_engine, record):
        """Test that a decided record cannot be decided again."""
        await workflow_engine.decide(record.id, "approver-a", "rejected", "wrong amount")

        with pytest.raises(AlreadyDecided):
            await workflow_engine.decide(record.id, "approver-a", "approved")

    @pytest.mark.asyncio
    async def test_request_changes_requires_comment(self, workflow_engine, record):
        """Test that a changes request needs a comment."""
        with pytest.raises(ApprovalValidationError):
            await workflow_engine.request_changes(record.id, "approver-a", None)

    @pytest.mark.asyncio
    async def test_request_changes_flags_rejection(self, workflow_engine, record):
        """Test that a changes request is a flagged rejection."""
        result = await workflow_engine.request_changes(
            record.id, "approver-a", "attach the receipt"
        )

        assert result.record.status == RecordStatus.REJECTED
        assert result.record.changes_requested is True
        assert result.changes_requested is True
        assert result.overall_status == OverallApprovalStatus.DRAFT


class TestSameApproverAcrossLevels:
    """Tests for the anti-self-chain policy flag."""

    @pytest.fixture
    async def dual_role_chain(self, workflow_engine, add_item, make_policy):
        """Two levels a single manager is eligible for."""
        policy = make_policy(allow_same_approver_across_levels=False)
        policy.levels[1].roles = ["director", "manager"]
        await workflow_engine.save_board_workflow(BOARD_ID, policy, "owner")
        await add_item("item-1")
        record = await workflow_engine.submit("item-1", "creator")
        result = await workflow_engine.decide(record.id, "approver-a", "approved")
        return result.next_record

    @pytest.mark.asyncio
    async def test_same_approver_blocked(self, workflow_engine, dual_role_chain):
        """Test that the level-1 approver cannot also approve level 2."""
        with pytest.raises(NotEligible, match="already approved level 1"):
            await workflow_engine.decide(dual_role_chain.id, "approver-a", "approved")

    @pytest.mark.asyncio
    async def test_other_approver_allowed(self, workflow_engine, dual_role_chain):
        """Test that a different eligible approver can decide level 2."""
        result = await workflow_engine.decide(dual_role_chain.id, "approver-b", "approved")

        assert result.overall_status == OverallApprovalStatus.APPROVED

    @pytest.mark.asyncio
    async def test_allowed_when_flag_set(self, workflow_engine, add_item, make_policy):
        """Test that the default policy lets one actor approve several levels."""
        policy = make_policy()
        policy.levels[1].roles = ["director", "manager"]
        await workflow_engine.save_board_workflow(BOARD_ID, policy, "owner")
        await add_item("item-2")
        record = await workflow_engine.submit("item-2", "creator")
        first = await workflow_engine.decide(record.id, "approver-a", "approved")

        second = await workflow_engine.decide(first.next_record.id, "approver-a", "approved")

        assert second.overall_status == OverallApprovalStatus.APPROVED
