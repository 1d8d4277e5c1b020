"""Database models for boardflow."""

from boardflow.models.approval import ApprovalEvent, ApprovalRecord
from boardflow.models.base import Base, TimestampMixin
from boardflow.models.board import BoardItem, BoardWorkflow
from boardflow.models.workspace import Workspace, WorkspaceMember

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    # Approval ledger
    "ApprovalRecord",
    "ApprovalEvent",
    # Board collaborators
    "BoardItem",
    "BoardWorkflow",
    "Workspace",
    "WorkspaceMember",
]
