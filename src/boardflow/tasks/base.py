"""Base task class and async task decorator.

Celery runs tasks synchronously; approval code is async. ``async_task``
bridges the two by running the coroutine on the worker's event loop.
"""

import asyncio
import functools
import logging
from typing import Any, Callable, TypeVar

from celery import Task
from celery.signals import worker_process_init

from boardflow.core.celery_app import celery_app
from boardflow.core.config import get_settings
from boardflow.core.logging import configure_logging

logger = logging.getLogger(__name__)

T = TypeVar("T")

# One loop per worker process; async engines must not cross loops
_worker_loop: asyncio.AbstractEventLoop | None = None


@worker_process_init.connect
def _init_worker_process(**kwargs: Any) -> None:
    global _worker_loop
    configure_logging(get_settings())
    _worker_loop = asyncio.new_event_loop()


def get_worker_loop() -> asyncio.AbstractEventLoop:
    """Get the worker's event loop, creating it outside a worker process."""
    global _worker_loop
    if _worker_loop is None or _worker_loop.is_closed():
        _worker_loop = asyncio.new_event_loop()
    return _worker_loop


class RetryableTask(Task):
    """Task with automatic retry on failure.

    Retries with exponential backoff on transient errors.
    """

    abstract = True
    autoretry_for = (Exception,)
    retry_backoff = True
    retry_backoff_max = 600  # Max 10 minutes
    retry_jitter = True
    max_retries = 3

    def on_failure(
        self,
        exc: Exception,
        task_id: str,
        args: tuple,
        kwargs: dict,
        einfo: Any,
    ) -> None:
        """Log task failure."""
        logger.error(
            "Task %s failed after %d retries",
            self.name,
            self.request.retries,
            exc_info=exc,
            extra={"task_id": task_id, "task_name": self.name},
        )

    def on_retry(
        self,
        exc: Exception,
        task_id: str,
        args: tuple,
        kwargs: dict,
        einfo: Any,
    ) -> None:
        """Log task retry."""
        logger.warning(
            "Task %s retrying (attempt %d/%d)",
            self.name,
            self.request.retries + 1,
            self.max_retries,
            extra={"task_id": task_id, "task_name": self.name, "exception": str(exc)},
        )


def run_async(coro: Any) -> Any:
    """Run a coroutine to completion on the worker's event loop."""
    return get_worker_loop().run_until_complete(coro)


def async_task(
    *args: Any,
    bind: bool = True,
    base: type[Task] = RetryableTask,
    **kwargs: Any,
) -> Callable:
    """Decorator for async Celery tasks.

    @param bind - Bind task instance to first argument
    @param base - Base task class to use
    @returns Decorated task function

    Example:
        @async_task(queue="high")
        async def relay_approval_events(self, limit: int | None = None) -> dict:
            ...
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @celery_app.task(*args, bind=bind, base=base, **kwargs)
        @functools.wraps(func)
        def wrapper(*task_args: Any, **task_kwargs: Any) -> T:
            return run_async(func(*task_args, **task_kwargs))

        return wrapper

    return decorator
