"""Approval workflow API endpoints."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from fastapi.responses import Response

from boardflow.core.exceptions import ApprovalError
from boardflow.services.approval import (
    ApprovalEventOut,
    ApprovalHistory,
    ApprovalRecordOut,
    ApprovalWorkflowEngine,
    ApprovedItemListResponse,
    ApprovedItemsFilter,
    BoardWorkflowResponse,
    ChangesRequest,
    DecisionRequest,
    DecisionResult,
    ItemApprovalStatus,
    PendingApprovalListResponse,
    WorkflowEvaluation,
    WorkflowUpdateRequest,
    get_approval_workflow_engine,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/approvals", tags=["Approvals"])

# Authentication lives outside this service; callers pass the acting user
ActorId = Annotated[
    str, Header(alias="X-User-Id", min_length=1, description="Acting user ID")
]
Engine = Annotated[ApprovalWorkflowEngine, Depends(get_approval_workflow_engine)]


def _to_http(error: ApprovalError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.message)


@router.get("/pending", response_model=PendingApprovalListResponse)
async def list_my_pending_approvals(
    actor_id: ActorId,
    engine: Engine,
    level: int | None = Query(None, ge=1, description="Filter by level"),
    board_id: str | None = Query(None, description="Filter by board"),
    workspace_id: str | None = Query(None, description="Filter by workspace"),
    search: str | None = Query(None, max_length=255, description="Search item names"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
) -> PendingApprovalListResponse:
    """List pending approvals the current user may decide.

    Oldest requests first.
    """
    return await engine.list_mine(
        actor_id,
        level=level,
        board_id=board_id,
        workspace_id=workspace_id,
        search=search,
        page=page,
        page_size=page_size,
    )


@router.get("/approved-items", response_model=ApprovedItemListResponse)
async def list_approved_items(
    actor_id: ActorId,
    engine: Engine,
    status_filter: ApprovedItemsFilter = Query(
        ApprovedItemsFilter.ALL, alias="filter", description="Approval progress filter"
    ),
    board_id: str | None = Query(None, description="Filter by board"),
    workspace_id: str | None = Query(None, description="Filter by workspace"),
    search: str | None = Query(None, max_length=255, description="Search item names"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
) -> ApprovedItemListResponse:
    """List fully or partially approved items in the user's workspaces.

    Most recently approved first.
    """
    return await engine.list_approved(
        actor_id,
        status_filter=status_filter,
        board_id=board_id,
        workspace_id=workspace_id,
        search=search,
        page=page,
        page_size=page_size,
    )


@router.post("/items/{item_id}/submit", response_model=ApprovalRecordOut, status_code=201)
async def submit_item(
    item_id: str,
    actor_id: ActorId,
    engine: Engine,
) -> ApprovalRecordOut:
    """Submit an item for approval, opening level 1 of a new chain."""
    try:
        return await engine.submit(item_id, actor_id)
    except ApprovalError as e:
        raise _to_http(e)


@router.post(
    "/items/{item_id}/resubmit", response_model=ApprovalRecordOut, status_code=201
)
async def resubmit_item(
    item_id: str,
    actor_id: ActorId,
    engine: Engine,
) -> ApprovalRecordOut:
    """Resubmit an item after changes were requested.

    A new record is opened at the level that requested the changes.
    """
    try:
        return await engine.resubmit(item_id, actor_id)
    except ApprovalError as e:
        raise _to_http(e)


@router.get("/items/{item_id}", response_model=ItemApprovalStatus)
async def get_item_approvals(
    item_id: str,
    actor_id: ActorId,
    engine: Engine,
) -> ItemApprovalStatus:
    """Get an item's approval status and record history."""
    try:
        return await engine.get_item_approvals(item_id)
    except ApprovalError as e:
        raise _to_http(e)


@router.get("/items/{item_id}/events", response_model=list[ApprovalEventOut])
async def list_item_events(
    item_id: str,
    actor_id: ActorId,
    engine: Engine,
) -> list[ApprovalEventOut]:
    """Get an item's approval events in emission order."""
    try:
        return await engine.list_item_events(item_id)
    except ApprovalError as e:
        raise _to_http(e)


@router.get("/items/{item_id}/history", response_model=ApprovalHistory)
async def get_item_history(
    item_id: str,
    actor_id: ActorId,
    engine: Engine,
) -> ApprovalHistory:
    """Get an item's approval history with time taken per level."""
    try:
        return await engine.get_item_history(item_id)
    except ApprovalError as e:
        raise _to_http(e)


@router.get("/items/{item_id}/history/export")
async def export_item_history(
    item_id: str,
    actor_id: ActorId,
    engine: Engine,
) -> Response:
    """Download an item's approval history as CSV."""
    try:
        content = await engine.export_item_history(item_id)
    except ApprovalError as e:
        raise _to_http(e)

    return Response(
        content=content,
        media_type="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="approval-history-{item_id}.csv"'
        },
    )


@router.get("/boards/{board_id}/workflow", response_model=BoardWorkflowResponse)
async def get_board_workflow(
    board_id: str,
    actor_id: ActorId,
    engine: Engine,
) -> BoardWorkflowResponse:
    """Get a board's approval workflow."""
    try:
        return await engine.get_board_workflow(board_id)
    except ApprovalError as e:
        raise _to_http(e)


@router.put("/boards/{board_id}/workflow", response_model=BoardWorkflowResponse)
async def save_board_workflow(
    board_id: str,
    request: WorkflowUpdateRequest,
    actor_id: ActorId,
    engine: Engine,
) -> BoardWorkflowResponse:
    """Replace a board's approval workflow.

    Items already in review keep the level count they were submitted with.
    """
    try:
        return await engine.save_board_workflow(board_id, request.policy, actor_id)
    except ApprovalError as e:
        raise _to_http(e)


@router.post(
    "/boards/{board_id}/items/{item_id}/evaluate-workflow",
    response_model=WorkflowEvaluation,
)
async def evaluate_workflow(
    board_id: str,
    item_id: str,
    actor_id: ActorId,
    engine: Engine,
) -> WorkflowEvaluation:
    """Preview the levels and approvers an item would need if submitted now."""
    try:
        return await engine.evaluate_workflow(board_id, item_id)
    except ApprovalError as e:
        raise _to_http(e)


@router.get("/{record_id}", response_model=ApprovalRecordOut)
async def get_approval(
    record_id: str,
    actor_id: ActorId,
    engine: Engine,
) -> ApprovalRecordOut:
    """Get one approval record."""
    try:
        return await engine.get_record(record_id)
    except ApprovalError as e:
        raise _to_http(e)


@router.post("/{record_id}/decision", response_model=DecisionResult)
async def decide_approval(
    record_id: str,
    request: DecisionRequest,
    actor_id: ActorId,
    engine: Engine,
) -> DecisionResult:
    """Approve or reject a pending approval.

    Rejections require comments. Approving the last level approves the item;
    approving any other level opens the next one.
    """
    try:
        return await engine.decide(
            record_id, actor_id, request.status, request.comments
        )
    except ApprovalError as e:
        raise _to_http(e)


@router.post("/{record_id}/request-changes", response_model=DecisionResult)
async def request_changes(
    record_id: str,
    request: ChangesRequest,
    actor_id: ActorId,
    engine: Engine,
) -> DecisionResult:
    """Return the item to its creator for changes."""
    try:
        return await engine.request_changes(record_id, actor_id, request.comments)
    except ApprovalError as e:
        raise _to_http(e)
