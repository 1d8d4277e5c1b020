"""Default subscribers of the approval event publisher.

Notification delivery is owned by other services, which subscribe their
own handlers. The handler here writes every event to the audit log stream.
"""

import logging

from boardflow.services.approval.publisher import ALL_EVENTS, ApprovalEventPublisher
from boardflow.services.approval.schemas import ApprovalEventOut

logger = logging.getLogger(__name__)


async def log_approval_event(event: ApprovalEventOut) -> None:
    """Write an approval event to the audit log stream."""
    logger.info(
        f"Approval event {event.event_type.value}",
        extra={
            "event_id": event.id,
            "record_id": event.record_id,
            "item_id": event.item_id,
            "level": event.level,
            "actor_id": event.actor_id,
        },
    )


def register_default_handlers(publisher: ApprovalEventPublisher) -> None:
    """Subscribe the default handlers, replacing earlier registrations."""
    publisher.unsubscribe(ALL_EVENTS, log_approval_event)
    publisher.subscribe(ALL_EVENTS, log_approval_event, priority=-10)
