"""Read path of the approval core."""

import csv
import io
import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from boardflow.core.exceptions import ApprovalNotFound
from boardflow.repositories import (
    ApprovalEventRepository,
    ApprovalRecordRepository,
    BoardItemRepository,
)
from boardflow.services.approval.collaborators import (
    SqlItemStore,
    SqlMembershipDirectory,
)
from boardflow.services.approval.policy import LevelPolicyResolver
from boardflow.services.approval.schemas import (
    ApprovalEventOut,
    ApprovalHistory,
    ApprovalHistoryEntry,
    ApprovalRecordOut,
    ApprovedItem,
    ApprovedItemsFilter,
    ItemApprovalStatus,
    LevelPolicy,
    OverallApprovalStatus,
    PendingApproval,
    RecordStatus,
)

logger = logging.getLogger(__name__)

HISTORY_CSV_COLUMNS = [
    "record_id",
    "round",
    "level",
    "status",
    "changes_requested",
    "approver_id",
    "approver_name",
    "comments",
    "created_at",
    "decided_at",
    "time_taken_hours",
]


def _hours_between(start: datetime, end: datetime | None) -> float | None:
    if end is None:
        return None
    return round((end - start).total_seconds() / 3600, 2)


class ApprovalQueryService:
    """Queries over approval records and events, bound to one session."""

    def __init__(self, session: AsyncSession):
        self.records = ApprovalRecordRepository(session)
        self.board_items = BoardItemRepository(session)
        self.events = ApprovalEventRepository(session)
        self.items = SqlItemStore(session)
        self.directory = SqlMembershipDirectory(session)
        self.resolver = LevelPolicyResolver(self.directory)

    async def pending_approvals_for(
        self,
        user_id: str,
        *,
        level: int | None = None,
        board_id: str | None = None,
        workspace_id: str | None = None,
        search: str | None = None,
    ) -> list[PendingApproval]:
        """Get the pending records a user may decide right now.

        A record is listed when its item lives in one of the user's
        workspaces and the current policy makes the user eligible for the
        record's level. Eligible approvers are looked up once per
        workspace, board and level.

        @param user_id - Reading user
        @param level - Only this chain ordinal
        @param board_id - Only this board
        @param workspace_id - Only this workspace
        @param search - Case-insensitive substring of the item name
        @returns Pending approvals, oldest first
        """
        workspace_ids = await self.directory.list_workspaces_for(user_id)
        if workspace_id is not None:
            workspace_ids = [ws for ws in workspace_ids if ws == workspace_id]

        rows = await self.records.get_pending_in_workspaces(
            workspace_ids, board_id=board_id, level=level
        )
        needle = search.strip().lower() if search else None
        if needle:
            rows = [(record, item) for record, item in rows if needle in item.name.lower()]

        policies: dict[str, LevelPolicy] = {}
        approvers: dict[tuple[str, str, int], list[str]] = {}
        eligible = []
        for record, item in rows:
            policy = policies.get(item.board_id)
            if policy is None:
                policy, _ = await self.items.get_board_policy(item.board_id)
                policies[item.board_id] = policy

            key = (item.workspace_id, item.board_id, record.level)
            if key not in approvers:
                resolved = self.resolver.level_at(policy, record.level)
                approvers[key] = (
                    await self.directory.list_eligible_approvers(
                        item.workspace_id, resolved.rule
                    )
                    if resolved
                    else []
                )
            if user_id in approvers[key]:
                eligible.append((record, item, policy))

        chained = [
            item.id
            for _, item, policy in eligible
            if not policy.allow_same_approver_across_levels
        ]
        approved_by_user = await self.records.get_levels_approved_by(user_id, chained)

        pending: list[PendingApproval] = []
        for record, item, policy in eligible:
            if not policy.allow_same_approver_across_levels:
                previous = approved_by_user.get((item.id, record.round), record.level)
                if previous != record.level:
                    continue

            pending.append(
                PendingApproval(
                    record=ApprovalRecordOut.model_validate(record),
                    item_name=item.name,
                    board_id=item.board_id,
                    workspace_id=item.workspace_id,
                    creator_id=item.creator_id,
                    level_count=item.approval_level_count,
                )
            )

        logger.debug(f"{len(pending)} pending approvals for {user_id}")
        return pending

    async def item_approvals(self, item_id: str) -> ItemApprovalStatus:
        """Get an item's approval status and full record history.

        @param item_id - Item ID
        @returns Item approval status
        @raises ApprovalNotFound if the item does not exist
        """
        item = await self.items.require_item(item_id)
        history = [
            ApprovalRecordOut.model_validate(record)
            for record in await self.records.get_history(item_id)
        ]

        current = next(
            (record for record in history if record.status == RecordStatus.PENDING), None
        )

        changes = None
        status = OverallApprovalStatus(item.overall_approval_status)
        if status == OverallApprovalStatus.DRAFT:
            latest = await self.records.get_latest_for_item(item_id)
            if latest is not None and latest.changes_requested:
                changes = ApprovalRecordOut.model_validate(latest)

        return ItemApprovalStatus(
            item_id=item.id,
            overall_status=status,
            level_count=item.approval_level_count,
            current=current,
            changes_requested=changes,
            history=history,
        )

    async def approved_items_for(
        self,
        user_id: str,
        *,
        status_filter: ApprovedItemsFilter = ApprovedItemsFilter.ALL,
        board_id: str | None = None,
        workspace_id: str | None = None,
        search: str | None = None,
    ) -> list[ApprovedItem]:
        """Get items with approved levels in the user's workspaces.

        Fully approved items finished their chain. Partially approved items
        are still in review with at least one level of their current round
        approved.

        @param user_id - Reading user
        @param status_filter - fully_approved | partially_approved | all
        @param board_id - Only this board
        @param workspace_id - Only this workspace
        @param search - Case-insensitive substring of the item name
        @returns Items, most recently approved first
        """
        workspace_ids = await self.directory.list_workspaces_for(user_id)
        if workspace_id is not None:
            workspace_ids = [ws for ws in workspace_ids if ws == workspace_id]

        statuses = {
            ApprovedItemsFilter.FULLY_APPROVED: [OverallApprovalStatus.APPROVED],
            ApprovedItemsFilter.PARTIALLY_APPROVED: [OverallApprovalStatus.IN_REVIEW],
            ApprovedItemsFilter.ALL: [
                OverallApprovalStatus.APPROVED,
                OverallApprovalStatus.IN_REVIEW,
            ],
        }[ApprovedItemsFilter(status_filter)]

        items = await self.board_items.get_by_status_in_workspaces(
            workspace_ids, [status.value for status in statuses], board_id=board_id
        )
        needle = search.strip().lower() if search else None
        if needle:
            items = [item for item in items if needle in item.name.lower()]

        approvals = await self.records.get_current_round_approvals([item.id for item in items])

        approved: list[ApprovedItem] = []
        for item in items:
            records = approvals.get(item.id)
            if not records:
                continue

            fully = item.overall_approval_status == OverallApprovalStatus.APPROVED.value
            approved.append(
                ApprovedItem(
                    item_id=item.id,
                    item_name=item.name,
                    board_id=item.board_id,
                    workspace_id=item.workspace_id,
                    creator_id=item.creator_id,
                    overall_status=OverallApprovalStatus(item.overall_approval_status),
                    level_count=item.approval_level_count,
                    approved_levels=[record.level for record in records],
                    is_fully_approved=fully,
                    is_partially_approved=not fully,
                    last_approved_at=max(record.decided_at for record in records),
                )
            )

        approved.sort(key=lambda entry: entry.last_approved_at, reverse=True)
        return approved

    async def item_history(self, item_id: str) -> ApprovalHistory:
        """Get an item's records with approver names and turnaround.

        @param item_id - Item ID
        @returns History in chain order; pending records have no time taken
        @raises ApprovalNotFound if the item does not exist
        """
        item = await self.items.require_item(item_id)

        names: dict[str, str] = {}
        entries: list[ApprovalHistoryEntry] = []
        for record in await self.records.get_history(item_id):
            approver_name = None
            if record.approver_id:
                if record.approver_id not in names:
                    names[record.approver_id] = await self.directory.display_name(
                        item.workspace_id, record.approver_id
                    )
                approver_name = names[record.approver_id]

            entries.append(
                ApprovalHistoryEntry(
                    id=record.id,
                    round=record.round,
                    level=record.level,
                    status=RecordStatus(record.status),
                    changes_requested=record.changes_requested,
                    approver_id=record.approver_id,
                    approver_name=approver_name,
                    comments=record.comments,
                    created_at=record.created_at,
                    decided_at=record.decided_at,
                    time_taken_hours=_hours_between(record.created_at, record.decided_at),
                )
            )

        taken = [entry.time_taken_hours for entry in entries if entry.time_taken_hours is not None]
        return ApprovalHistory(
            item_id=item.id,
            item_name=item.name,
            entries=entries,
            total_time_hours=round(sum(taken), 2) if taken else None,
        )

    async def item_history_csv(self, item_id: str) -> str:
        """Render an item's approval history as CSV.

        @param item_id - Item ID
        @returns CSV text with a header row
        @raises ApprovalNotFound if the item does not exist
        """
        history = await self.item_history(item_id)

        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(HISTORY_CSV_COLUMNS)
        for entry in history.entries:
            writer.writerow(
                [
                    entry.id,
                    entry.round,
                    entry.level,
                    entry.status.value,
                    "yes" if entry.changes_requested else "no",
                    entry.approver_id or "",
                    entry.approver_name or "",
                    entry.comments or "",
                    entry.created_at.isoformat(),
                    entry.decided_at.isoformat() if entry.decided_at else "",
                    "" if entry.time_taken_hours is None else entry.time_taken_hours,
                ]
            )
        return output.getvalue()

    async def item_events(self, item_id: str) -> list[ApprovalEventOut]:
        """Get an item's approval events in emission order.

        @raises ApprovalNotFound if the item does not exist
        """
        await self.items.require_item(item_id)
        return [
            ApprovalEventOut.model_validate(event)
            for event in await self.events.get_by_item(item_id)
        ]

    async def get_record(self, record_id: str) -> ApprovalRecordOut:
        record = await self.records.get_by_id(record_id)
        if record is None:
            raise ApprovalNotFound(f"Approval {record_id} not found")
        return ApprovalRecordOut.model_validate(record)
