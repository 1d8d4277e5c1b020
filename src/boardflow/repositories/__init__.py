"""Repository layer for database operations.

This module provides async repository implementations using SQLAlchemy 2.x.
All repositories follow the Repository pattern with consistent CRUD operations.
"""

from boardflow.repositories.approval import (
    ApprovalEventRepository,
    ApprovalRecordRepository,
)
from boardflow.repositories.base import BaseRepository
from boardflow.repositories.board import BoardItemRepository, BoardWorkflowRepository
from boardflow.repositories.workspace import WorkspaceMemberRepository

__all__ = [
    "BaseRepository",
    "ApprovalRecordRepository",
    "ApprovalEventRepository",
    "BoardItemRepository",
    "BoardWorkflowRepository",
    "WorkspaceMemberRepository",
]
