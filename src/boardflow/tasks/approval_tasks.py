"""Approval workflow tasks.

Handles approval-related background operations:
- Outbox relay of approval events whose delivery was interrupted
"""

import logging
from typing import Any

from boardflow.services.approval import get_approval_workflow_engine, get_event_publisher
from boardflow.services.approval.handlers import register_default_handlers
from boardflow.tasks.base import async_task

logger = logging.getLogger(__name__)


@async_task(queue="high")
async def relay_approval_events(self, limit: int | None = None) -> dict[str, Any]:
    """Publish approval events left unpublished.

    @param limit - Maximum events, defaults to the configured batch size
    @returns Relay summary
    """
    register_default_handlers(get_event_publisher())
    published = await get_approval_workflow_engine().relay_pending_events(limit)

    if published:
        logger.info(f"Relayed {published} approval events")
    return {"status": "ok", "published": published}
