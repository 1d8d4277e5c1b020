"""Approval workflow schemas."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RecordStatus(str, Enum):
    """Status of one approval record."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class OverallApprovalStatus(str, Enum):
    """Denormalized approval status of an item."""

    DRAFT = "draft"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"


class DecisionOutcome(str, Enum):
    """Outcome an approver may choose."""

    APPROVED = "approved"
    REJECTED = "rejected"


class ApprovedItemsFilter(str, Enum):
    """Which items the approved-items feed returns."""

    FULLY_APPROVED = "fully_approved"
    PARTIALLY_APPROVED = "partially_approved"
    ALL = "all"


class ApprovalEventType(str, Enum):
    """Domain events emitted by the approval core."""

    SUBMITTED = "approval.submitted"
    APPROVED = "approval.approved"
    REJECTED = "approval.rejected"
    CHANGES_REQUESTED = "approval.changes_requested"
    COMPLETED = "approval.completed"


class LevelRule(BaseModel):
    """Configuration of one approval level.

    An actor is eligible when they match any of the listed approver ids,
    roles or departments. A level listing none of them accepts every
    workspace member.
    """

    level: int = Field(..., ge=1, description="Configured position")
    name: str = Field(default="", max_length=100, description="Display name")
    enabled: bool = Field(default=True, description="Disabled levels are skipped")
    approver_ids: list[str] = Field(default_factory=list, description="Explicit approvers")
    roles: list[str] = Field(default_factory=list, description="Eligible workspace roles")
    departments: list[str] = Field(
        default_factory=list, description="Eligible departments"
    )


class AmountRoutingRule(BaseModel):
    """Items at or above ``min_amount`` need only the first ``levels`` levels."""

    min_amount: Decimal = Field(..., ge=0, description="Inclusive lower bound")
    levels: int = Field(..., ge=1, description="Number of enabled levels required")


class LevelPolicy(BaseModel):
    """Approval workflow of a board."""

    enabled: bool = Field(default=True, description="Require approval on this board")
    levels: list[LevelRule] = Field(default_factory=list, description="Ordered levels")
    amount_rules: list[AmountRoutingRule] = Field(
        default_factory=list, description="Amount-based routing"
    )
    allow_resubmit_after_reject: bool = Field(
        default=False, description="Permit a fresh submission after a rejection"
    )
    allow_same_approver_across_levels: bool = Field(
        default=True, description="Permit one actor to approve several levels"
    )

    @field_validator("levels")
    @classmethod
    def _unique_levels(cls, levels: list[LevelRule]) -> list[LevelRule]:
        positions = [rule.level for rule in levels]
        if len(positions) != len(set(positions)):
            raise ValueError("level positions must be unique")
        return sorted(levels, key=lambda rule: rule.level)


class ResolvedLevel(BaseModel):
    """An enabled level with its ordinal inside a chain."""

    ordinal: int = Field(..., ge=1, description="Position in the chain, 1..k")
    rule: LevelRule = Field(..., description="Source configuration")


class WorkflowEvaluation(BaseModel):
    """What a submission of an item would require right now."""

    board_id: str = Field(..., description="Board ID")
    item_id: str = Field(..., description="Item ID")
    enabled: bool = Field(..., description="Workflow enabled")
    required_levels: list[int] = Field(..., description="Configured levels required")
    skipped_levels: list[int] = Field(..., description="Disabled or routed-out levels")
    eligible_approvers: dict[int, list[str]] = Field(
        ..., description="Chain ordinal -> eligible user ids"
    )


class BoardWorkflowResponse(BaseModel):
    """Stored workflow of a board."""

    board_id: str = Field(..., description="Board ID")
    policy: LevelPolicy = Field(..., description="Level policy")
    is_default: bool = Field(..., description="No workflow stored, defaults apply")
    updated_by: str | None = Field(None, description="Last editor")
    updated_at: datetime | None = Field(None, description="Last update")


class DecisionRequest(BaseModel):
    """Request to approve or reject a record."""

    status: DecisionOutcome = Field(..., description="Outcome")
    comments: str | None = Field(None, max_length=2000, description="Comments")


class ChangesRequest(BaseModel):
    """Request to send an item back to its creator."""

    comments: str = Field(..., max_length=2000, description="What has to change")


class ApprovalRecordOut(BaseModel):
    """Approval record as exposed to clients."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Record ID")
    item_id: str = Field(..., description="Item ID")
    round: int = Field(..., description="Submission round")
    level: int = Field(..., description="Level ordinal")
    status: RecordStatus = Field(..., description="Record status")
    changes_requested: bool = Field(..., description="Rejection returned the item to draft")
    approver_id: str | None = Field(None, description="Deciding user")
    comments: str | None = Field(None, description="Decision comments")
    created_at: datetime = Field(..., description="Created timestamp")
    decided_at: datetime | None = Field(None, description="Decision timestamp")


class DecisionResult(BaseModel):
    """Outcome of a decide / request-changes call."""

    record: ApprovalRecordOut = Field(..., description="Decided record")
    is_final_level: bool = Field(..., description="Record was the chain's last level")
    changes_requested: bool = Field(default=False, description="Item returned to draft")
    next_record: ApprovalRecordOut | None = Field(
        None, description="Record created by escalation"
    )
    overall_status: OverallApprovalStatus = Field(..., description="Item status after commit")


class ItemApprovalStatus(BaseModel):
    """Approval state and history of one item."""

    item_id: str = Field(..., description="Item ID")
    overall_status: OverallApprovalStatus = Field(..., description="Overall status")
    level_count: int | None = Field(None, description="Levels of the submitted chain")
    current: ApprovalRecordOut | None = Field(None, description="Pending record")
    changes_requested: ApprovalRecordOut | None = Field(
        None, description="Record awaiting resubmission"
    )
    history: list[ApprovalRecordOut] = Field(default_factory=list, description="All records")


class PendingApproval(BaseModel):
    """Entry of the pending approvals feed."""

    record: ApprovalRecordOut = Field(..., description="Pending record")
    item_name: str = Field(..., description="Item name")
    board_id: str = Field(..., description="Board ID")
    workspace_id: str = Field(..., description="Workspace ID")
    creator_id: str = Field(..., description="Item creator")
    level_count: int | None = Field(None, description="Levels of the chain")


class PaginationMeta(BaseModel):
    """Pagination metadata."""

    page: int = Field(..., ge=1, description="Current page")
    page_size: int = Field(..., ge=1, le=100, description="Page size")
    total_items: int = Field(..., ge=0, description="Total items")
    total_pages: int = Field(..., ge=0, description="Total pages")


class PendingApprovalListResponse(BaseModel):
    """Paginated pending approvals."""

    items: list[PendingApproval] = Field(..., description="Pending approvals")
    meta: PaginationMeta = Field(..., description="Pagination metadata")


class ApprovedItem(BaseModel):
    """Entry of the approved-items feed."""

    item_id: str = Field(..., description="Item ID")
    item_name: str = Field(..., description="Item name")
    board_id: str = Field(..., description="Board ID")
    workspace_id: str = Field(..., description="Workspace ID")
    creator_id: str = Field(..., description="Item creator")
    overall_status: OverallApprovalStatus = Field(..., description="Overall status")
    level_count: int | None = Field(None, description="Levels of the chain")
    approved_levels: list[int] = Field(..., description="Approved levels of the current round")
    is_fully_approved: bool = Field(..., description="Every level approved")
    is_partially_approved: bool = Field(..., description="Some levels approved, still in review")
    last_approved_at: datetime | None = Field(None, description="Latest approval time")


class ApprovedItemListResponse(BaseModel):
    """Paginated approved items."""

    items: list[ApprovedItem] = Field(..., description="Approved items")
    meta: PaginationMeta = Field(..., description="Pagination metadata")


class ApprovalHistoryEntry(BaseModel):
    """One record of an item's approval history with its turnaround."""

    id: str = Field(..., description="Record ID")
    round: int = Field(..., description="Submission round")
    level: int = Field(..., description="Level ordinal")
    status: RecordStatus = Field(..., description="Record status")
    changes_requested: bool = Field(..., description="Rejection returned the item to draft")
    approver_id: str | None = Field(None, description="Deciding user")
    approver_name: str | None = Field(None, description="Deciding user's display name")
    comments: str | None = Field(None, description="Decision comments")
    created_at: datetime = Field(..., description="Created timestamp")
    decided_at: datetime | None = Field(None, description="Decision timestamp")
    time_taken_hours: float | None = Field(None, description="Hours from creation to decision")


class ApprovalHistory(BaseModel):
    """Approval history of one item."""

    item_id: str = Field(..., description="Item ID")
    item_name: str = Field(..., description="Item name")
    entries: list[ApprovalHistoryEntry] = Field(default_factory=list, description="Records")
    total_time_hours: float | None = Field(
        None, description="Sum of the decided records' turnaround"
    )


class ApprovalEventOut(BaseModel):
    """Approval event as exposed to clients."""

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="Event ID")
    event_type: ApprovalEventType = Field(..., description="Event type")
    record_id: str = Field(..., description="Record ID")
    item_id: str = Field(..., description="Item ID")
    level: int = Field(..., description="Level ordinal")
    actor_id: str | None = Field(None, description="Acting user")
    payload: dict[str, Any] = Field(default_factory=dict, description="Rendering metadata")
    emitted_at: datetime = Field(..., description="Emission time")
    published_at: datetime | None = Field(None, description="Delivery time")


class WorkflowUpdateRequest(BaseModel):
    """Request to replace a board's workflow."""

    policy: LevelPolicy = Field(..., description="New level policy")
