"""Base repository with common CRUD operations.

Provides a generic async repository pattern for SQLAlchemy models.
"""

from typing import Any, Generic, TypeVar

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Select

from boardflow.models.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """Generic async repository bound to one session.

    Repositories never commit. The caller owns the transaction, so every
    write made through any repository of one session lands or rolls back
    together.

    Example:
        repo = ApprovalRecordRepository(session)
        record = await repo.get_by_id(record_id)
        pending = await repo.get_one_by_filter(item_id=item_id, status="pending")
    """

    model: type[ModelType]

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with async session.

        @param session - SQLAlchemy async session
        """
        self.session = session

    async def get_by_id(self, id: Any) -> ModelType | None:
        """Get record by primary key.

        @param id - Primary key value
        @returns Model instance or None if not found
        """
        return await self.session.get(self.model, id)

    def _filtered(self, stmt: Select, filters: dict[str, Any]) -> Select:
        for key, value in filters.items():
            if hasattr(self.model, key) and value is not None:
                stmt = stmt.where(getattr(self.model, key) == value)
        return stmt

    async def get_one_by_filter(self, **filters: Any) -> ModelType | None:
        """Get single record matching filter criteria.

        @param filters - Key-value pairs for filtering
        @returns Model instance or None if not found
        """
        stmt = self._filtered(select(self.model), filters).limit(1)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def create(self, obj_in: dict[str, Any] | ModelType) -> ModelType:
        """Create new record and flush it.

        Constraint violations surface here as ``IntegrityError``.

        @param obj_in - Dictionary or model instance with data
        @returns Created model instance
        """
        if isinstance(obj_in, dict):
            db_obj = self.model(**obj_in)
        else:
            db_obj = obj_in
        self.session.add(db_obj)
        await self.session.flush()
        await self.session.refresh(db_obj)
        return db_obj

    async def update(self, id: Any, obj_in: dict[str, Any]) -> ModelType | None:
        """Update existing record by primary key.

        @param id - Primary key of record to update
        @param obj_in - Dictionary with update data
        @returns Updated model instance or None if not found
        """
        db_obj = await self.get_by_id(id)
        if db_obj is None:
            return None

        for key, value in obj_in.items():
            if hasattr(db_obj, key):
                setattr(db_obj, key, value)

        await self.session.flush()
        await self.session.refresh(db_obj)
        return db_obj

    async def update_where(self, values: dict[str, Any], **conditions: Any) -> int:
        """Conditional update in a single statement.

        Unlike ``update`` this never reads first, so it is the primitive for
        compare-and-set writes: the row changes only if every condition
        still holds when the statement runs. Instances already loaded in
        the session are not synchronized; refresh them afterwards.

        @param values - Column values to set
        @param conditions - Column equality conditions, None values included
        @returns Number of updated rows
        """
        stmt = update(self.model).values(**values)
        for key, value in conditions.items():
            column = getattr(self.model, key)
            stmt = stmt.where(column.is_(None) if value is None else column == value)
        result = await self.session.execute(
            stmt.execution_options(synchronize_session=False)
        )
        await self.session.flush()
        return result.rowcount

    async def count(self, **filters: Any) -> int:
        """Count records matching criteria.

        @param filters - Key-value pairs for filtering
        @returns Number of matching records
        """
        stmt = self._filtered(select(func.count()).select_from(self.model), filters)
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def exists(self, **filters: Any) -> bool:
        """Check if record exists matching criteria.

        @param filters - Key-value pairs for filtering
        @returns True if exists, False otherwise
        """
        return await self.count(**filters) > 0
