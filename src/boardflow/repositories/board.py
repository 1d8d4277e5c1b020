"""Repositories for board items and board workflows."""

from typing import Any, Sequence

from sqlalchemy import select

from boardflow.models.board import BoardItem, BoardWorkflow
from boardflow.repositories.base import BaseRepository


class BoardItemRepository(BaseRepository[BoardItem]):
    """Repository for BoardItem rows, limited to what approvals touch."""

    model = BoardItem

    async def set_approval_status(self, item_id: str, status: str) -> bool:
        """Write the denormalized overall approval status.

        @param item_id - Item ID
        @param status - draft | in_review | approved | rejected
        @returns True if the item exists
        """
        return await self.update(item_id, {"overall_approval_status": status}) is not None

    async def set_level_count(self, item_id: str, level_count: int) -> bool:
        """Snapshot the number of levels of the submitted chain.

        @param item_id - Item ID
        @param level_count - Resolved level count
        @returns True if the item exists
        """
        return await self.update(item_id, {"approval_level_count": level_count}) is not None

    async def get_by_status_in_workspaces(
        self,
        workspace_ids: Sequence[str],
        statuses: Sequence[str],
        *,
        board_id: str | None = None,
    ) -> Sequence[BoardItem]:
        """Get items with one of the given approval statuses.

        @param workspace_ids - Workspaces the reader belongs to
        @param statuses - Overall approval statuses to include
        @param board_id - Optional board filter
        @returns Items ordered by id
        """
        if not workspace_ids or not statuses:
            return []

        stmt = select(self.model).where(
            self.model.workspace_id.in_(list(workspace_ids)),
            self.model.overall_approval_status.in_(list(statuses)),
        )
        if board_id:
            stmt = stmt.where(self.model.board_id == board_id)
        stmt = stmt.order_by(self.model.id)

        result = await self.session.execute(stmt)
        return result.scalars().all()


class BoardWorkflowRepository(BaseRepository[BoardWorkflow]):
    """Repository for per-board approval workflow configuration."""

    model = BoardWorkflow

    async def upsert(
        self,
        board_id: str,
        *,
        enabled: bool,
        policy: dict[str, Any],
        updated_by: str | None = None,
    ) -> BoardWorkflow:
        """Create or replace the workflow of a board.

        @param board_id - Board ID
        @param enabled - Whether approvals are required on the board
        @param policy - Serialized level policy
        @param updated_by - Acting user
        @returns Stored workflow
        """
        existing = await self.get_by_id(board_id)
        if existing is None:
            return await self.create(
                {
                    "board_id": board_id,
                    "enabled": enabled,
                    "policy": policy,
                    "updated_by": updated_by,
                }
            )
        return await self.update(
            board_id,
            {"enabled": enabled, "policy": policy, "updated_by": updated_by},
        )
