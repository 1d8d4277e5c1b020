"""Collaborator contracts of the approval core.

The approval core never owns items, boards or workspace membership. It
reaches them through two narrow contracts, with SQLAlchemy-backed
implementations bound to the unit of work's session so that item status
writes commit or roll back together with the approval records.
"""

import logging
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from boardflow.core.config import get_settings
from boardflow.core.exceptions import ApprovalNotFound
from boardflow.models.board import BoardItem, BoardWorkflow
from boardflow.repositories import (
    BoardItemRepository,
    BoardWorkflowRepository,
    WorkspaceMemberRepository,
)
from boardflow.services.approval.schemas import (
    LevelPolicy,
    LevelRule,
    OverallApprovalStatus,
)

logger = logging.getLogger(__name__)


def default_policy() -> LevelPolicy:
    """Single-level policy used by boards without a stored workflow."""
    settings = get_settings()
    return LevelPolicy(
        enabled=True,
        levels=[
            LevelRule(level=1, name="Approval", roles=list(settings.approval_default_roles))
        ],
    )


class ItemStore(Protocol):
    """Item/board store contract."""

    async def get_item(self, item_id: str) -> BoardItem | None: ...

    async def get_approval_config(self, item_id: str) -> LevelPolicy: ...

    async def set_overall_approval_status(
        self, item_id: str, status: OverallApprovalStatus
    ) -> None: ...

    async def snapshot_level_count(self, item_id: str, count: int) -> None: ...


class MembershipDirectory(Protocol):
    """Workspace membership contract."""

    async def list_eligible_approvers(
        self, workspace_id: str, rule: LevelRule
    ) -> list[str]: ...

    async def list_workspaces_for(self, user_id: str) -> list[str]: ...

    async def display_name(self, workspace_id: str, user_id: str) -> str: ...

    async def workspace_name(self, workspace_id: str) -> str | None: ...


class SqlItemStore:
    """Item store over the ``board_items`` and ``approval_workflows`` tables."""

    def __init__(self, session: AsyncSession):
        self.items = BoardItemRepository(session)
        self.workflows = BoardWorkflowRepository(session)

    async def get_item(self, item_id: str) -> BoardItem | None:
        return await self.items.get_by_id(item_id)

    async def require_item(self, item_id: str) -> BoardItem:
        """Get an item or raise ``ApprovalNotFound``."""
        item = await self.items.get_by_id(item_id)
        if item is None:
            raise ApprovalNotFound(f"Item {item_id} not found")
        return item

    async def get_board_policy(
        self, board_id: str
    ) -> tuple[LevelPolicy, BoardWorkflow | None]:
        """Get the effective policy of a board and the stored row behind it.

        @param board_id - Board ID
        @returns (policy, stored workflow or None when defaults apply)
        """
        workflow = await self.workflows.get_by_id(board_id)
        if workflow is None:
            return default_policy(), None

        policy = LevelPolicy.model_validate(workflow.policy)
        policy.enabled = workflow.enabled
        return policy, workflow

    async def get_approval_config(self, item_id: str) -> LevelPolicy:
        """Get the policy governing an item's board.

        @param item_id - Item ID
        @returns Level policy
        @raises ApprovalNotFound if the item does not exist
        """
        item = await self.require_item(item_id)
        policy, _ = await self.get_board_policy(item.board_id)
        return policy

    async def board_exists(self, board_id: str) -> bool:
        """A board is known once it stores a workflow or holds an item."""
        if await self.workflows.get_by_id(board_id) is not None:
            return True
        return await self.items.exists(board_id=board_id)

    async def set_overall_approval_status(
        self, item_id: str, status: OverallApprovalStatus
    ) -> None:
        if not await self.items.set_approval_status(item_id, status.value):
            raise ApprovalNotFound(f"Item {item_id} not found")

    async def snapshot_level_count(self, item_id: str, count: int) -> None:
        if not await self.items.set_level_count(item_id, count):
            raise ApprovalNotFound(f"Item {item_id} not found")


class SqlMembershipDirectory:
    """Membership directory over ``workspace_members``."""

    def __init__(self, session: AsyncSession):
        self.members = WorkspaceMemberRepository(session)

    async def list_eligible_approvers(
        self, workspace_id: str, rule: LevelRule
    ) -> list[str]:
        """Get the members of a workspace matching a level rule.

        @param workspace_id - Workspace ID
        @param rule - Level rule
        @returns User IDs ordered by id
        """
        members = await self.members.find_matching(
            workspace_id,
            user_ids=rule.approver_ids,
            roles=rule.roles,
            departments=rule.departments,
        )
        return [member.user_id for member in members]

    async def list_workspaces_for(self, user_id: str) -> list[str]:
        return await self.members.get_workspace_ids(user_id)

    async def display_name(self, workspace_id: str, user_id: str) -> str:
        member = await self.members.get_member(workspace_id, user_id)
        return member.display_name if member else user_id

    async def workspace_name(self, workspace_id: str) -> str | None:
        return await self.members.get_workspace_name(workspace_id)
