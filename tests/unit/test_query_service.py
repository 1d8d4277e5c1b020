"""Tests for approval queries."""

import csv
import io
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from boardflow.core.exceptions import ApprovalNotFound
from boardflow.models import ApprovalRecord
from boardflow.services.approval import (
    ApprovedItemsFilter,
    LevelPolicy,
    LevelRule,
    OverallApprovalStatus,
)
from boardflow.services.approval.collaborators import SqlMembershipDirectory
from boardflow.services.approval.query import HISTORY_CSV_COLUMNS

BOARD_ID = "board-invoices"
SALES_BOARD_ID = "board-deals"


class TestPendingApprovals:
    """Tests for the per-user pending approvals feed."""

    @pytest.fixture
    async def feed(self, workflow_engine, add_item, make_policy):
        """Three finance items at level 1 and one sales item."""
        await workflow_engine.save_board_workflow(BOARD_ID, make_policy(), "owner")
        await workflow_engine.save_board_workflow(
            SALES_BOARD_ID,
            LevelPolicy(levels=[LevelRule(level=1, name="Sales lead", roles=["director"])]),
            "owner",
        )

        records = {}
        for item_id, name in [
            ("inv-1", "Office chairs"),
            ("inv-2", "Laptop refresh"),
            ("inv-3", "Office plants"),
        ]:
            await add_item(item_id, name=name)
            records[item_id] = await workflow_engine.submit(item_id, "creator")

        await add_item(
            "deal-1", name="Renewal", board_id=SALES_BOARD_ID, workspace_id="ws-sales"
        )
        records["deal-1"] = await workflow_engine.submit("deal-1", "creator")
        return records

    @pytest.mark.asyncio
    async def test_lists_eligible_records_oldest_first(self, workflow_engine, feed):
        """Test that a manager sees every level-1 finance record."""
        result = await workflow_engine.list_mine("approver-a")

        assert [p.record.item_id for p in result.items] == ["inv-1", "inv-2", "inv-3"]
        assert result.items[0].item_name == "Office chairs"
        assert result.items[0].board_id == BOARD_ID
        assert result.items[0].level_count == 2
        assert result.meta.total_items == 3

    @pytest.mark.asyncio
    async def test_ineligible_level_not_listed(self, workflow_engine, feed):
        """Test that the director sees nothing until level 2 opens."""
        assert (await workflow_engine.list_mine("approver-b")).items == []

        await workflow_engine.decide(feed["inv-2"].id, "approver-a", "approved")

        result = await workflow_engine.list_mine("approver-b")
        assert [(p.record.item_id, p.record.level) for p in result.items] == [("inv-2", 2)]

    @pytest.mark.asyncio
    async def test_other_workspace_members(self, workflow_engine, feed):
        """Test that membership scopes the feed."""
        result = await workflow_engine.list_mine("outsider")

        assert [p.record.item_id for p in result.items] == ["deal-1"]
        assert (await workflow_engine.list_mine("stranger")).items == []

    @pytest.mark.asyncio
    async def test_filters(self, workflow_engine, feed):
        """Test level, board, workspace and search filters."""
        by_search = await workflow_engine.list_mine("approver-a", search="  OFFICE ")
        by_level = await workflow_engine.list_mine("approver-a", level=2)
        by_board = await workflow_engine.list_mine("outsider", board_id=BOARD_ID)
        by_workspace = await workflow_engine.list_mine("approver-a", workspace_id="ws-sales")

        assert [p.record.item_id for p in by_search.items] == ["inv-1", "inv-3"]
        assert by_level.items == []
        assert by_board.items == []
        assert by_workspace.items == []

    @pytest.mark.asyncio
    async def test_pagination(self, workflow_engine, feed):
        """Test paging through the feed."""
        first = await workflow_engine.list_mine("approver-a", page=1, page_size=2)
        second = await workflow_engine.list_mine("approver-a", page=2, page_size=2)

        assert [p.record.item_id for p in first.items] == ["inv-1", "inv-2"]
        assert [p.record.item_id for p in second.items] == ["inv-3"]
        assert first.meta.total_pages == 2
        assert second.meta.page == 2

    @pytest.mark.asyncio
    async def test_decided_records_leave_the_feed(self, workflow_engine, feed):
        """Test that decided records disappear from the feed."""
        await workflow_engine.decide(feed["inv-1"].id, "approver-a", "rejected", "too pricey")
        await workflow_engine.request_changes(feed["inv-3"].id, "approver-a", "add quote")

        result = await workflow_engine.list_mine("approver-a")

        assert [p.record.item_id for p in result.items] == ["inv-2"]

    @pytest.mark.asyncio
    async def test_same_approver_excluded_when_disallowed(
        self, workflow_engine, add_item, make_policy
    ):
        """Test that the feed hides levels an approver may not chain into."""
        policy = make_policy(allow_same_approver_across_levels=False)
        policy.levels[1].roles = ["director", "manager"]
        await workflow_engine.save_board_workflow(BOARD_ID, policy, "owner")
        await add_item("inv-9")
        record = await workflow_engine.submit("inv-9", "creator")
        await workflow_engine.decide(record.id, "approver-a", "approved")

        assert (await workflow_engine.list_mine("approver-a")).items == []
        assert len((await workflow_engine.list_mine("approver-b")).items) == 1

    @pytest.mark.asyncio
    async def test_eligible_approvers_looked_up_once_per_level(
        self, workflow_engine, feed, monkeypatch
    ):
        """Test that records sharing a board level share one directory lookup."""
        lookups = []
        original = SqlMembershipDirectory.list_eligible_approvers

        async def counting(directory, workspace_id, rule):
            lookups.append((workspace_id, rule.level))
            return await original(directory, workspace_id, rule)

        monkeypatch.setattr(SqlMembershipDirectory, "list_eligible_approvers", counting)

        result = await workflow_engine.list_mine("approver-a")

        assert len(result.items) == 3
        assert lookups == [("ws-finance", 1)]


class TestItemQueries:
    """Tests for item status, events and record lookups."""

    @pytest.mark.asyncio
    async def test_item_never_submitted(self, workflow_engine, add_item):
        """Test the status of a fresh item."""
        await add_item("item-1")

        status = await workflow_engine.get_item_approvals("item-1")

        assert status.overall_status == OverallApprovalStatus.DRAFT
        assert status.current is None
        assert status.changes_requested is None
        assert status.history == []
        assert await workflow_engine.list_item_events("item-1") == []

    @pytest.mark.asyncio
    async def test_item_in_review(self, workflow_engine, add_item, make_policy):
        """Test the status of an item halfway through its chain."""
        await workflow_engine.save_board_workflow(BOARD_ID, make_policy(), "owner")
        await add_item("item-1")
        record = await workflow_engine.submit("item-1", "creator")
        first = await workflow_engine.decide(record.id, "approver-a", "approved")

        status = await workflow_engine.get_item_approvals("item-1")

        assert status.overall_status == OverallApprovalStatus.IN_REVIEW
        assert status.level_count == 2
        assert status.current.id == first.next_record.id
        assert [r.level for r in status.history] == [1, 2]

    @pytest.mark.asyncio
    async def test_unknown_ids(self, workflow_engine):
        """Test lookups of missing items and records."""
        with pytest.raises(ApprovalNotFound):
            await workflow_engine.get_item_approvals("missing")
        with pytest.raises(ApprovalNotFound):
            await workflow_engine.list_item_events("missing")
        with pytest.raises(ApprovalNotFound):
            await workflow_engine.get_record("missing")

    @pytest.mark.asyncio
    async def test_get_record(self, workflow_engine, add_item):
        """Test reading a single record."""
        await add_item("item-1")
        record = await workflow_engine.submit("item-1", "creator")

        stored = await workflow_engine.get_record(record.id)

        assert stored.id == record.id
        assert stored.item_id == "item-1"
        assert stored.level == 1


class TestBoardWorkflow:
    """Tests for board workflow configuration."""

    @pytest.mark.asyncio
    async def test_unknown_board(self, workflow_engine):
        """Test that boards without items or workflow are unknown."""
        with pytest.raises(ApprovalNotFound):
            await workflow_engine.get_board_workflow("board-missing")

    @pytest.mark.asyncio
    async def test_default_workflow(self, workflow_engine, add_item):
        """Test the workflow of a board that never stored one."""
        await add_item("item-1")

        workflow = await workflow_engine.get_board_workflow(BOARD_ID)

        assert workflow.is_default is True
        assert workflow.updated_by is None
        assert [rule.roles for rule in workflow.policy.levels] == [["owner", "admin"]]

    @pytest.mark.asyncio
    async def test_saved_workflow(self, workflow_engine, make_policy):
        """Test reading back a stored workflow."""
        await workflow_engine.save_board_workflow(
            BOARD_ID, make_policy(allow_resubmit_after_reject=True), "owner"
        )

        workflow = await workflow_engine.get_board_workflow(BOARD_ID)

        assert workflow.is_default is False
        assert workflow.updated_by == "owner"
        assert workflow.policy.allow_resubmit_after_reject is True
        assert [rule.name for rule in workflow.policy.levels] == ["Manager", "Director"]

    @pytest.mark.asyncio
    async def test_evaluate_workflow(self, workflow_engine, add_item, make_policy):
        """Test previewing an item's chain."""
        await workflow_engine.save_board_workflow(BOARD_ID, make_policy(), "owner")
        await add_item("item-1")

        evaluation = await workflow_engine.evaluate_workflow(BOARD_ID, "item-1")

        assert evaluation.required_levels == [1, 2]
        assert evaluation.eligible_approvers == {1: ["approver-a"], 2: ["approver-b"]}

        with pytest.raises(ApprovalNotFound):
            await workflow_engine.evaluate_workflow("board-other", "item-1")


class TestApprovedItems:
    """Tests for the approved-items feed."""

    @pytest.fixture
    async def progress(self, workflow_engine, add_item, make_policy):
        """One finished chain, one halfway, one untouched and one rejected item."""
        await workflow_engine.save_board_workflow(BOARD_ID, make_policy(), "owner")
        records = {}
        for item_id, name in [
            ("inv-1", "Office chairs"),
            ("inv-2", "Laptop refresh"),
            ("inv-3", "Office plants"),
            ("inv-4", "Team offsite"),
        ]:
            await add_item(item_id, name=name)
            records[item_id] = await workflow_engine.submit(item_id, "creator")

        first = await workflow_engine.decide(records["inv-1"].id, "approver-a", "approved")
        await workflow_engine.decide(first.next_record.id, "approver-b", "approved")
        await workflow_engine.decide(records["inv-2"].id, "approver-a", "approved")
        await workflow_engine.decide(records["inv-4"].id, "approver-a", "rejected", "too costly")
        return records

    @pytest.mark.asyncio
    async def test_all_lists_fully_and_partially_approved(self, workflow_engine, progress):
        """Test the default filter, most recent approval first."""
        result = await workflow_engine.list_approved("creator")

        assert [entry.item_id for entry in result.items] == ["inv-2", "inv-1"]
        partial, full = result.items
        assert partial.is_partially_approved is True
        assert partial.is_fully_approved is False
        assert partial.approved_levels == [1]
        assert partial.overall_status == OverallApprovalStatus.IN_REVIEW
        assert full.is_fully_approved is True
        assert full.approved_levels == [1, 2]
        assert full.level_count == 2
        assert result.meta.total_items == 2

    @pytest.mark.asyncio
    async def test_filters(self, workflow_engine, progress):
        """Test the progress, search and scope filters."""
        fully = await workflow_engine.list_approved(
            "creator", status_filter=ApprovedItemsFilter.FULLY_APPROVED
        )
        partially = await workflow_engine.list_approved(
            "creator", status_filter="partially_approved"
        )
        searched = await workflow_engine.list_approved("creator", search="office")
        other_board = await workflow_engine.list_approved("creator", board_id=SALES_BOARD_ID)

        assert [entry.item_id for entry in fully.items] == ["inv-1"]
        assert [entry.item_id for entry in partially.items] == ["inv-2"]
        assert [entry.item_id for entry in searched.items] == ["inv-1"]
        assert other_board.items == []
        assert (await workflow_engine.list_approved("outsider")).items == []

    @pytest.mark.asyncio
    async def test_pagination(self, workflow_engine, progress):
        """Test paging through approved items."""
        second = await workflow_engine.list_approved("creator", page=2, page_size=1)

        assert [entry.item_id for entry in second.items] == ["inv-1"]
        assert second.meta.total_pages == 2

    @pytest.mark.asyncio
    async def test_new_round_resets_progress(self, workflow_engine, add_item, make_policy):
        """Test that approvals of an earlier round do not count."""
        await workflow_engine.save_board_workflow(
            BOARD_ID, make_policy(allow_resubmit_after_reject=True), "owner"
        )
        await add_item("inv-9")
        record = await workflow_engine.submit("inv-9", "creator")
        first = await workflow_engine.decide(record.id, "approver-a", "approved")
        await workflow_engine.decide(first.next_record.id, "approver-b", "rejected", "no budget")
        await workflow_engine.submit("inv-9", "creator")

        assert (await workflow_engine.list_approved("creator")).items == []


class TestItemHistory:
    """Tests for approval history with turnaround times."""

    START = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)

    @pytest.fixture
    async def decided_chain(self, workflow_engine, add_item, make_policy, session_factory):
        """Level 1 decided after 2.5 hours, level 2 after 30 minutes, then changes."""
        await workflow_engine.save_board_workflow(BOARD_ID, make_policy(), "owner")
        await add_item("item-1", name="Printer lease")
        record = await workflow_engine.submit("item-1", "creator")
        first = await workflow_engine.decide(record.id, "approver-a", "approved", "looks good")
        await workflow_engine.request_changes(
            first.next_record.id, "approver-b", "attach the contract"
        )
        resubmitted = await workflow_engine.resubmit("item-1", "creator")

        timings = {
            record.id: (self.START, self.START + timedelta(hours=2, minutes=30)),
            first.next_record.id: (
                self.START + timedelta(hours=2, minutes=30),
                self.START + timedelta(hours=3),
            ),
        }
        async with session_factory() as session:
            for record_id, (created, decided) in timings.items():
                await session.execute(
                    update(ApprovalRecord)
                    .where(ApprovalRecord.id == record_id)
                    .values(created_at=created, decided_at=decided)
                )
            await session.commit()

        return record, first.next_record, resubmitted

    @pytest.mark.asyncio
    async def test_time_taken_per_entry(self, workflow_engine, decided_chain):
        """Test per-record turnaround and the chain total."""
        history = await workflow_engine.get_item_history("item-1")

        assert history.item_name == "Printer lease"
        assert [(e.level, e.status.value) for e in history.entries] == [
            (1, "approved"),
            (2, "rejected"),
            (2, "pending"),
        ]
        first, changes, pending = history.entries
        assert first.time_taken_hours == 2.5
        assert first.approver_name == "Avery Approver"
        assert changes.time_taken_hours == 0.5
        assert changes.changes_requested is True
        assert changes.approver_name == "Blake Approver"
        assert pending.time_taken_hours is None
        assert pending.approver_name is None
        assert history.total_time_hours == 3.0

    @pytest.mark.asyncio
    async def test_undecided_chain_has_no_total(self, workflow_engine, add_item):
        """Test an item whose only record is pending."""
        await add_item("item-2")
        await workflow_engine.submit("item-2", "creator")

        history = await workflow_engine.get_item_history("item-2")

        assert len(history.entries) == 1
        assert history.total_time_hours is None

    @pytest.mark.asyncio
    async def test_csv_export(self, workflow_engine, decided_chain):
        """Test the CSV rendering of the history."""
        first, changes, resubmitted = decided_chain

        rows = list(csv.reader(io.StringIO(await workflow_engine.export_item_history("item-1"))))

        assert rows[0] == HISTORY_CSV_COLUMNS
        assert [row[0] for row in rows[1:]] == [first.id, changes.id, resubmitted.id]
        assert rows[1][3] == "approved"
        assert rows[1][6] == "Avery Approver"
        assert rows[1][7] == "looks good"
        assert rows[1][10] == "2.5"
        assert rows[2][4] == "yes"
        assert rows[3][9] == ""
        assert rows[3][10] == ""

    @pytest.mark.asyncio
    async def test_unknown_item(self, workflow_engine):
        """Test history of a missing item."""
        with pytest.raises(ApprovalNotFound):
            await workflow_engine.get_item_history("missing")
        with pytest.raises(ApprovalNotFound):
            await workflow_engine.export_item_history("missing")
