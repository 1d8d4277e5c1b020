"""Repository for workspace membership lookups."""

from typing import Sequence

from sqlalchemy import or_, select

from boardflow.models.workspace import Workspace, WorkspaceMember
from boardflow.repositories.base import BaseRepository


class WorkspaceMemberRepository(BaseRepository[WorkspaceMember]):
    """Read-side queries over workspace membership."""

    model = WorkspaceMember

    async def get_member(self, workspace_id: str, user_id: str) -> WorkspaceMember | None:
        """Get one membership row.

        @param workspace_id - Workspace ID
        @param user_id - User ID
        @returns Membership or None
        """
        return await self.session.get(self.model, (workspace_id, user_id))

    async def get_workspace_ids(self, user_id: str) -> list[str]:
        """Get the workspaces a user belongs to.

        @param user_id - User ID
        @returns Workspace IDs
        """
        stmt = select(self.model.workspace_id).where(self.model.user_id == user_id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_matching(
        self,
        workspace_id: str,
        *,
        user_ids: Sequence[str] = (),
        roles: Sequence[str] = (),
        departments: Sequence[str] = (),
    ) -> Sequence[WorkspaceMember]:
        """Get members matching any of the given criteria.

        With no criteria at all every member matches.

        @param workspace_id - Workspace ID
        @param user_ids - Explicit user IDs
        @param roles - Roles
        @param departments - Departments
        @returns Matching members ordered by user id
        """
        stmt = select(self.model).where(self.model.workspace_id == workspace_id)

        criteria = []
        if user_ids:
            criteria.append(self.model.user_id.in_(list(user_ids)))
        if roles:
            criteria.append(self.model.role.in_(list(roles)))
        if departments:
            criteria.append(self.model.department.in_(list(departments)))
        if criteria:
            stmt = stmt.where(or_(*criteria))

        result = await self.session.execute(stmt.order_by(self.model.user_id))
        return result.scalars().all()

    async def get_workspace_name(self, workspace_id: str) -> str | None:
        """Get a workspace's display name.

        @param workspace_id - Workspace ID
        @returns Name or None
        """
        workspace = await self.session.get(Workspace, workspace_id)
        return workspace.name if workspace else None
