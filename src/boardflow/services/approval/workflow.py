"""Approval workflow engine.

Facade over the approval core. Every write operation runs in one unit of
work: a single session and transaction shared by the state machine, the
orchestrator and the event outbox. Integrity and lock failures become
``StorageConflict`` and are retried; committed events are published once
the transaction is durable.
"""

import logging
import math
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from boardflow.core.config import Settings, get_settings
from boardflow.core.exceptions import (
    ApprovalNotFound,
    ApprovalValidationError,
    StorageConflict,
)
from boardflow.infrastructure.database.session import AsyncSessionLocal
from boardflow.repositories import ApprovalRecordRepository
from boardflow.services.approval.collaborators import (
    SqlItemStore,
    SqlMembershipDirectory,
)
from boardflow.services.approval.machine import ApprovalStateMachine
from boardflow.services.approval.orchestrator import EscalationOrchestrator
from boardflow.services.approval.policy import LevelPolicyResolver
from boardflow.services.approval.publisher import (
    ApprovalEventPublisher,
    EventOutbox,
    get_event_publisher,
)
from boardflow.services.approval.query import ApprovalQueryService
from boardflow.services.approval.schemas import (
    ApprovalEventOut,
    ApprovalHistory,
    ApprovalRecordOut,
    ApprovedItemListResponse,
    ApprovedItemsFilter,
    BoardWorkflowResponse,
    DecisionOutcome,
    DecisionResult,
    ItemApprovalStatus,
    LevelPolicy,
    PaginationMeta,
    PendingApprovalListResponse,
    WorkflowEvaluation,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _paginate(entries: list[T], page: int, page_size: int) -> tuple[list[T], PaginationMeta]:
    total = len(entries)
    offset = (page - 1) * page_size
    return entries[offset : offset + page_size], PaginationMeta(
        page=page,
        page_size=page_size,
        total_items=total,
        total_pages=math.ceil(total / page_size) if total else 0,
    )


class ApprovalUnitOfWork:
    """Components of the approval core bound to one session."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.records = ApprovalRecordRepository(session)
        self.items = SqlItemStore(session)
        self.directory = SqlMembershipDirectory(session)
        self.resolver = LevelPolicyResolver(self.directory)
        self.outbox = EventOutbox(session, self.directory)
        self.orchestrator = EscalationOrchestrator(
            self.records, self.items, self.resolver, self.outbox
        )
        self.machine = ApprovalStateMachine(
            self.records, self.items, self.resolver, self.outbox, self.orchestrator
        )


class ApprovalWorkflowEngine:
    """Entry point of the approval core.

    Features:
    - Multi-level sequential approval chains per board
    - Approve, reject and request-changes decisions
    - Resubmission after a changes request
    - Pending approvals feed per user
    - Transactional event outbox with after-commit publishing
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] | None = None,
        publisher: ApprovalEventPublisher | None = None,
        settings: Settings | None = None,
    ):
        """Initialize approval workflow engine.

        @param session_factory - Optional factory for creating database sessions
        @param publisher - Event publisher, bound to the same session factory by default
        @param settings - Application settings
        """
        self._session_factory = session_factory or AsyncSessionLocal
        self.publisher = publisher or ApprovalEventPublisher(self._session_factory)
        self.settings = settings or get_settings()

    @asynccontextmanager
    async def _unit_of_work(self) -> AsyncIterator[ApprovalUnitOfWork]:
        async with self._session_factory() as session:
            uow = ApprovalUnitOfWork(session)
            try:
                yield uow
                await session.commit()
            except (IntegrityError, OperationalError) as e:
                await session.rollback()
                raise StorageConflict(f"Concurrent approval write rejected: {e.orig}") from e
            except Exception:
                await session.rollback()
                raise

        await self.publisher.publish(uow.outbox.events)

    async def _run(self, operation: Callable[[ApprovalUnitOfWork], Awaitable[T]]) -> T:
        retries = self.settings.approval_conflict_retries
        attempt = 0
        while True:
            try:
                async with self._unit_of_work() as uow:
                    return await operation(uow)
            except StorageConflict as e:
                attempt += 1
                if attempt > retries:
                    logger.error(f"Giving up after {attempt} attempt(s): {e.message}")
                    raise
                logger.warning(f"{e.message}; retrying ({attempt}/{retries})")

    # Chain operations

    async def submit(self, item_id: str, actor_id: str) -> ApprovalRecordOut:
        """Submit an item for approval.

        @param item_id - Item ID
        @param actor_id - Submitting user
        @returns Level-1 pending record
        """

        async def operation(uow: ApprovalUnitOfWork) -> ApprovalRecordOut:
            record = await uow.orchestrator.submit(item_id, actor_id)
            return ApprovalRecordOut.model_validate(record)

        return await self._run(operation)

    async def resubmit(self, item_id: str, actor_id: str) -> ApprovalRecordOut:
        """Resubmit an item after a changes request.

        @param item_id - Item ID
        @param actor_id - Resubmitting user
        @returns New pending record at the level that requested changes
        """

        async def operation(uow: ApprovalUnitOfWork) -> ApprovalRecordOut:
            record = await uow.orchestrator.resubmit(item_id, actor_id)
            return ApprovalRecordOut.model_validate(record)

        return await self._run(operation)

    async def decide(
        self,
        record_id: str,
        actor_id: str,
        status: DecisionOutcome | str,
        comments: str | None = None,
    ) -> DecisionResult:
        """Approve or reject a pending record.

        @param record_id - Record ID
        @param actor_id - Deciding user
        @param status - approved | rejected
        @param comments - Comments, mandatory for rejections
        @returns Decision result
        """
        return await self._run(
            lambda uow: uow.machine.decide(record_id, actor_id, status, comments)
        )

    async def request_changes(
        self, record_id: str, actor_id: str, comments: str | None
    ) -> DecisionResult:
        """Send an item back to its creator.

        @param record_id - Record ID
        @param actor_id - Deciding user
        @param comments - What has to change
        @returns Decision result
        """
        return await self._run(
            lambda uow: uow.machine.request_changes(record_id, actor_id, comments)
        )

    # Queries

    async def list_mine(
        self,
        user_id: str,
        *,
        level: int | None = None,
        board_id: str | None = None,
        workspace_id: str | None = None,
        search: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> PendingApprovalListResponse:
        """List the pending approvals a user may decide.

        @param user_id - Reading user
        @param level - Filter by chain ordinal
        @param board_id - Filter by board
        @param workspace_id - Filter by workspace
        @param search - Item name search
        @param page - Page number (1-indexed)
        @param page_size - Items per page
        @returns Paginated pending approvals, oldest first
        """
        async with self._session_factory() as session:
            pending = await ApprovalQueryService(session).pending_approvals_for(
                user_id,
                level=level,
                board_id=board_id,
                workspace_id=workspace_id,
                search=search,
            )

        items, meta = _paginate(pending, page, page_size)
        return PendingApprovalListResponse(items=items, meta=meta)

    async def list_approved(
        self,
        user_id: str,
        *,
        status_filter: ApprovedItemsFilter = ApprovedItemsFilter.ALL,
        board_id: str | None = None,
        workspace_id: str | None = None,
        search: str | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> ApprovedItemListResponse:
        """List fully and partially approved items visible to a user.

        @param user_id - Reading user
        @param status_filter - fully_approved | partially_approved | all
        @param board_id - Filter by board
        @param workspace_id - Filter by workspace
        @param search - Item name search
        @param page - Page number (1-indexed)
        @param page_size - Items per page
        @returns Paginated items, most recently approved first
        """
        async with self._session_factory() as session:
            approved = await ApprovalQueryService(session).approved_items_for(
                user_id,
                status_filter=status_filter,
                board_id=board_id,
                workspace_id=workspace_id,
                search=search,
            )

        items, meta = _paginate(approved, page, page_size)
        return ApprovedItemListResponse(items=items, meta=meta)

    async def get_record(self, record_id: str) -> ApprovalRecordOut:
        async with self._session_factory() as session:
            return await ApprovalQueryService(session).get_record(record_id)

    async def get_item_approvals(self, item_id: str) -> ItemApprovalStatus:
        async with self._session_factory() as session:
            return await ApprovalQueryService(session).item_approvals(item_id)

    async def list_item_events(self, item_id: str) -> list[ApprovalEventOut]:
        async with self._session_factory() as session:
            return await ApprovalQueryService(session).item_events(item_id)

    async def get_item_history(self, item_id: str) -> ApprovalHistory:
        async with self._session_factory() as session:
            return await ApprovalQueryService(session).item_history(item_id)

    async def export_item_history(self, item_id: str) -> str:
        """Export an item's approval history as CSV text.

        @param item_id - Item ID
        @returns CSV with one row per record
        """
        async with self._session_factory() as session:
            return await ApprovalQueryService(session).item_history_csv(item_id)

    # Board workflow configuration

    async def get_board_workflow(self, board_id: str) -> BoardWorkflowResponse:
        """Get a board's workflow, or the default one if none is stored.

        @param board_id - Board ID
        @returns Board workflow
        @raises ApprovalNotFound if the board is unknown
        """
        async with self._session_factory() as session:
            items = SqlItemStore(session)
            if not await items.board_exists(board_id):
                raise ApprovalNotFound(f"Board {board_id} not found")

            policy, stored = await items.get_board_policy(board_id)
            return BoardWorkflowResponse(
                board_id=board_id,
                policy=policy,
                is_default=stored is None,
                updated_by=stored.updated_by if stored else None,
                updated_at=stored.updated_at if stored else None,
            )

    async def save_board_workflow(
        self, board_id: str, policy: LevelPolicy, actor_id: str
    ) -> BoardWorkflowResponse:
        """Replace a board's workflow.

        Chains already submitted keep their snapshotted level count.

        @param board_id - Board ID
        @param policy - New level policy
        @param actor_id - Editing user
        @returns Stored workflow
        @raises ApprovalValidationError if an enabled policy has no enabled level
        """
        if policy.enabled and not any(rule.enabled for rule in policy.levels):
            raise ApprovalValidationError(
                "An enabled approval workflow needs at least one enabled level"
            )

        async def operation(uow: ApprovalUnitOfWork) -> BoardWorkflowResponse:
            stored = await uow.items.workflows.upsert(
                board_id,
                enabled=policy.enabled,
                policy=policy.model_dump(mode="json"),
                updated_by=actor_id,
            )
            logger.info(
                f"Approval workflow of board {board_id} saved by {actor_id} "
                f"({len(policy.levels)} level(s), enabled={policy.enabled})"
            )
            return BoardWorkflowResponse(
                board_id=board_id,
                policy=policy,
                is_default=False,
                updated_by=stored.updated_by,
                updated_at=stored.updated_at,
            )

        return await self._run(operation)

    async def evaluate_workflow(self, board_id: str, item_id: str) -> WorkflowEvaluation:
        """Preview the chain an item would get if submitted now.

        @param board_id - Board ID
        @param item_id - Item ID
        @returns Workflow evaluation
        @raises ApprovalNotFound if the item is not on the board
        """
        async with self._session_factory() as session:
            items = SqlItemStore(session)
            item = await items.get_item(item_id)
            if item is None or item.board_id != board_id:
                raise ApprovalNotFound(f"Item {item_id} not found on board {board_id}")

            policy, _ = await items.get_board_policy(board_id)
            resolver = LevelPolicyResolver(SqlMembershipDirectory(session))
            return await resolver.evaluate(policy, item)

    # Outbox

    async def relay_pending_events(self, limit: int | None = None) -> int:
        """Publish events whose delivery was interrupted.

        @param limit - Maximum events, defaults to the configured batch size
        @returns Number of events published
        """
        return await self.publisher.relay_pending(
            limit or self.settings.approval_event_relay_batch_size
        )


# Singleton instance
_workflow_engine: ApprovalWorkflowEngine | None = None


def get_approval_workflow_engine() -> ApprovalWorkflowEngine:
    """Get or create approval workflow engine singleton.

    @returns ApprovalWorkflowEngine instance
    """
    global _workflow_engine
    if _workflow_engine is None:
        _workflow_engine = ApprovalWorkflowEngine(publisher=get_event_publisher())
    return _workflow_engine


def reset_approval_workflow_engine() -> None:
    """Reset approval workflow engine singleton (for testing)."""
    global _workflow_engine
    _workflow_engine = None
