"""Approval workflow service module."""

from boardflow.services.approval.publisher import (
    ApprovalEventPublisher,
    get_event_publisher,
)
from boardflow.services.approval.schemas import (
    ApprovalEventOut,
    ApprovalEventType,
    ApprovalHistory,
    ApprovalRecordOut,
    ApprovedItemListResponse,
    ApprovedItemsFilter,
    BoardWorkflowResponse,
    ChangesRequest,
    DecisionOutcome,
    DecisionRequest,
    DecisionResult,
    ItemApprovalStatus,
    LevelPolicy,
    LevelRule,
    AmountRoutingRule,
    OverallApprovalStatus,
    PendingApprovalListResponse,
    RecordStatus,
    WorkflowEvaluation,
    WorkflowUpdateRequest,
)
from boardflow.services.approval.workflow import (
    ApprovalWorkflowEngine,
    get_approval_workflow_engine,
    reset_approval_workflow_engine,
)

__all__ = [
    # Enums
    "RecordStatus",
    "OverallApprovalStatus",
    "DecisionOutcome",
    "ApprovalEventType",
    "ApprovedItemsFilter",
    # Policy schemas
    "LevelPolicy",
    "LevelRule",
    "AmountRoutingRule",
    "WorkflowEvaluation",
    "BoardWorkflowResponse",
    "WorkflowUpdateRequest",
    # Decision schemas
    "DecisionRequest",
    "ChangesRequest",
    "DecisionResult",
    "ApprovalRecordOut",
    "ItemApprovalStatus",
    "PendingApprovalListResponse",
    "ApprovedItemListResponse",
    "ApprovalHistory",
    "ApprovalEventOut",
    # Engine
    "ApprovalWorkflowEngine",
    "get_approval_workflow_engine",
    "reset_approval_workflow_engine",
    # Events
    "ApprovalEventPublisher",
    "get_event_publisher",
]
