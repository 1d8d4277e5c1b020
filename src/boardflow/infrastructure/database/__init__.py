"""Database infrastructure module."""

from boardflow.infrastructure.database.session import (
    AsyncSessionLocal,
    async_engine,
)

__all__ = [
    "async_engine",
    "AsyncSessionLocal",
]
