"""Pytest configuration and fixtures."""

from decimal import Decimal

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from boardflow.core.config import Settings
from boardflow.models import ApprovalRecord, Base, BoardItem, Workspace, WorkspaceMember
from boardflow.services.approval import (
    ApprovalEventPublisher,
    ApprovalWorkflowEngine,
    LevelPolicy,
    LevelRule,
)

WORKSPACE_ID = "ws-finance"
OTHER_WORKSPACE_ID = "ws-sales"
BOARD_ID = "board-invoices"

# Directory of the finance workspace used across tests:
# creator submits, approver-a decides level 1, approver-b decides level 2.
MEMBERS = [
    (WORKSPACE_ID, "creator", "Casey Creator", "member", "finance"),
    (WORKSPACE_ID, "approver-a", "Avery Approver", "manager", "finance"),
    (WORKSPACE_ID, "approver-b", "Blake Approver", "director", "operations"),
    (WORKSPACE_ID, "owner", "Olive Owner", "owner", None),
    (OTHER_WORKSPACE_ID, "outsider", "Oscar Outsider", "director", "operations"),
]


def two_level_policy(**overrides) -> LevelPolicy:
    """Manager approval followed by director approval."""
    return LevelPolicy(
        levels=[
            LevelRule(level=1, name="Manager", roles=["manager"]),
            LevelRule(level=2, name="Director", roles=["director"]),
        ],
        **overrides,
    )


@pytest.fixture(scope="session")
def app():
    """Create FastAPI application for testing."""
    from boardflow.main import create_app

    return create_app()


@pytest.fixture(scope="session")
def client(app):
    """Create test client."""
    with TestClient(app) as client:
        yield client


@pytest.fixture(scope="function")
def settings():
    """Create settings instance for testing."""
    return Settings(environment="testing")


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """File-backed SQLite database with the approval schema."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'approvals.db'}",
        poolclass=NullPool,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        # Writers take the database lock up front and queue behind each other
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Session factory bound to the test database."""
    return async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def directory(session_factory):
    """Seed the workspace directory."""
    async with session_factory() as session:
        session.add_all(
            [
                Workspace(id=WORKSPACE_ID, name="Finance"),
                Workspace(id=OTHER_WORKSPACE_ID, name="Sales"),
            ]
        )
        await session.flush()
        session.add_all(
            [
                WorkspaceMember(
                    workspace_id=workspace_id,
                    user_id=user_id,
                    display_name=display_name,
                    role=role,
                    department=department,
                )
                for workspace_id, user_id, display_name, role, department in MEMBERS
            ]
        )
        await session.commit()
    return MEMBERS


@pytest.fixture
def publisher(session_factory):
    """Event publisher bound to the test database."""
    return ApprovalEventPublisher(session_factory)


@pytest.fixture
def workflow_engine(session_factory, publisher, settings, directory):
    """Approval engine bound to the test database with a seeded directory."""
    return ApprovalWorkflowEngine(
        session_factory=session_factory,
        publisher=publisher,
        settings=settings,
    )


@pytest.fixture
def add_item(session_factory):
    """Factory fixture inserting board items."""

    async def _add_item(
        item_id: str,
        *,
        name: str | None = None,
        board_id: str = BOARD_ID,
        workspace_id: str = WORKSPACE_ID,
        amount: Decimal | None = None,
        creator_id: str = "creator",
    ) -> str:
        async with session_factory() as session:
            session.add(
                BoardItem(
                    id=item_id,
                    board_id=board_id,
                    workspace_id=workspace_id,
                    name=name or f"Invoice {item_id}",
                    creator_id=creator_id,
                    amount=amount,
                )
            )
            await session.commit()
        return item_id

    return _add_item


@pytest.fixture
def load_item(session_factory):
    """Read an item's current row."""

    async def _load_item(item_id: str) -> BoardItem:
        async with session_factory() as session:
            return await session.get(BoardItem, item_id)

    return _load_item


@pytest.fixture
def chain_invariants(session_factory):
    """Assert the structural invariants of an item's approval chain."""

    async def _check(item_id: str) -> list[ApprovalRecord]:
        async with session_factory() as session:
            result = await session.execute(
                select(ApprovalRecord)
                .where(ApprovalRecord.item_id == item_id)
                .order_by(ApprovalRecord.round, ApprovalRecord.level, ApprovalRecord.created_at)
            )
            records = list(result.scalars().all())

        pending = [r for r in records if r.status == "pending"]
        assert len(pending) <= 1, "more than one pending record"

        if records:
            current_round = max(r.round for r in records)
            active = [
                r for r in records if r.round == current_round and not r.changes_requested
            ]
            levels = [r.level for r in active]
            assert levels == list(range(1, len(levels) + 1)), f"levels not gapless: {levels}"
            assert all(r.status == "approved" for r in active[:-1])

        return records

    return _check


@pytest.fixture
def make_policy():
    """Factory for the two-level manager/director policy."""
    return two_level_policy
