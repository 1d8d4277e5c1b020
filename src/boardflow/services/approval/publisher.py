"""Approval event outbox and publisher.

Events are inserted into ``approval_events`` inside the transaction that
produced them. Once that transaction commits, the publisher hands them to
subscribed handlers and stamps ``published_at``. Events whose delivery was
interrupted stay unpublished and are picked up by ``relay_pending``.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from boardflow.infrastructure.database.session import AsyncSessionLocal
from boardflow.models.approval import ApprovalEvent, ApprovalRecord
from boardflow.models.base import utcnow
from boardflow.models.board import BoardItem
from boardflow.repositories import ApprovalEventRepository
from boardflow.services.approval.collaborators import MembershipDirectory
from boardflow.services.approval.schemas import ApprovalEventOut, ApprovalEventType

logger = logging.getLogger(__name__)

# Handler type
Handler = Callable[[ApprovalEventOut], Coroutine[Any, Any, None]]

ALL_EVENTS = "*"


@dataclass
class PublisherStats:
    """Statistics for the event publisher."""

    events_published: int = 0
    events_unhandled: int = 0
    errors: int = 0
    handlers_by_type: dict[str, int] = field(default_factory=dict)


class EventOutbox:
    """Collects the events of one unit of work.

    Bound to the unit of work's session; the events it records commit or
    roll back with the approval records they describe.
    """

    def __init__(self, session: AsyncSession, directory: MembershipDirectory):
        self.repository = ApprovalEventRepository(session)
        self.directory = directory
        self.events: list[ApprovalEvent] = []

    async def record(
        self,
        event_type: ApprovalEventType,
        record: ApprovalRecord,
        item: BoardItem,
        actor_id: str | None,
        **extra: Any,
    ) -> ApprovalEvent:
        """Insert an event with its rendering metadata.

        @param event_type - Event type
        @param record - Approval record the event is about
        @param item - Item of the record
        @param actor_id - Acting user, None for system events
        @param extra - Additional payload fields
        @returns Stored event
        """
        payload = {
            "item_name": item.name,
            "board_id": item.board_id,
            "workspace_id": item.workspace_id,
            "workspace_name": await self.directory.workspace_name(item.workspace_id),
            "actor_name": (
                await self.directory.display_name(item.workspace_id, actor_id)
                if actor_id
                else None
            ),
            "round": record.round,
            "comments": record.comments,
            **extra,
        }
        event = await self.repository.create(
            {
                "event_type": event_type.value,
                "record_id": record.id,
                "item_id": record.item_id,
                "level": record.level,
                "actor_id": actor_id,
                "payload": payload,
                "emitted_at": utcnow(),
            }
        )
        self.events.append(event)
        return event


class ApprovalEventPublisher:
    """Dispatches committed approval events to subscribers.

    Supports:
    - Handlers per event type or for all events
    - Handler priority ordering
    - Error isolation between handlers
    """

    def __init__(self, session_factory: Callable[[], AsyncSession] | None = None):
        """Initialize publisher.

        @param session_factory - Factory for the sessions that stamp events
        """
        self._session_factory = session_factory or AsyncSessionLocal
        self._handlers: dict[str, list[tuple[int, Handler]]] = {}
        self._stats = PublisherStats()

    @property
    def stats(self) -> PublisherStats:
        """Get publisher statistics."""
        return self._stats

    def subscribe(
        self,
        event_type: ApprovalEventType | str,
        handler: Handler,
        priority: int = 0,
    ) -> None:
        """Register a handler.

        @param event_type - Event type, or ``"*"`` for every event
        @param handler - Async callable receiving the event
        @param priority - Higher runs first
        """
        key = event_type.value if isinstance(event_type, ApprovalEventType) else event_type
        handlers = self._handlers.setdefault(key, [])
        handlers.append((priority, handler))
        handlers.sort(key=lambda entry: -entry[0])
        self._stats.handlers_by_type[key] = len(handlers)

        logger.info(
            f"Subscribed handler to {key} (priority={priority}, total={len(handlers)})"
        )

    def unsubscribe(self, event_type: ApprovalEventType | str, handler: Handler) -> bool:
        """Remove a handler.

        @returns True if the handler was registered
        """
        key = event_type.value if isinstance(event_type, ApprovalEventType) else event_type
        handlers = self._handlers.get(key, [])
        remaining = [(p, h) for p, h in handlers if h is not handler]
        if len(remaining) == len(handlers):
            return False
        self._handlers[key] = remaining
        self._stats.handlers_by_type[key] = len(remaining)
        return True

    def _handlers_for(self, event_type: str) -> list[Handler]:
        entries = self._handlers.get(event_type, []) + self._handlers.get(ALL_EVENTS, [])
        entries.sort(key=lambda entry: -entry[0])
        return [handler for _, handler in entries]

    async def dispatch(self, event: ApprovalEventOut) -> bool:
        """Hand one event to its handlers.

        @param event - Event to dispatch
        @returns True if at least one handler succeeded
        """
        handlers = self._handlers_for(event.event_type.value)
        if not handlers:
            self._stats.events_unhandled += 1
            logger.debug(f"No handlers for event type: {event.event_type.value}")
            return False

        handled = False
        for handler in handlers:
            try:
                await handler(event)
                handled = True
            except Exception as e:
                self._stats.errors += 1
                logger.error(
                    f"Handler error for {event.event_type.value} event {event.id}: {e}"
                )
        return handled

    async def publish(self, events: Sequence[ApprovalEvent]) -> int:
        """Dispatch committed events and mark them published.

        Delivery problems are logged and never raised.

        @param events - Committed events
        @returns Number of events stamped as published
        """
        if not events:
            return 0

        delivered: list[int] = []
        for event in events:
            await self.dispatch(ApprovalEventOut.model_validate(event))
            delivered.append(event.id)
            self._stats.events_published += 1

        try:
            async with self._session_factory() as session:
                stamped = await ApprovalEventRepository(session).mark_published(
                    delivered, utcnow()
                )
                await session.commit()
        except Exception as e:
            logger.warning(f"Failed to mark {len(delivered)} approval events published: {e}")
            return 0

        return stamped

    async def relay_pending(self, limit: int = 100) -> int:
        """Publish events left unpublished by an interrupted delivery.

        @param limit - Maximum events per call
        @returns Number of events published
        """
        async with self._session_factory() as session:
            events = list(await ApprovalEventRepository(session).get_unpublished(limit))

        if not events:
            return 0

        logger.info(f"Relaying {len(events)} unpublished approval events")
        return await self.publish(events)


# Singleton publisher instance
_publisher: ApprovalEventPublisher | None = None


def get_event_publisher() -> ApprovalEventPublisher:
    """Get or create event publisher singleton."""
    global _publisher
    if _publisher is None:
        _publisher = ApprovalEventPublisher()
    return _publisher
