"""In-process event bus.

Components publish state changes here; consumers hold an explicit
Subscription with its own queue. Publishing never blocks and never
raises into the publisher.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from crisiswatch.shared.models import ConversationMessage

logger = logging.getLogger(__name__)


class EventType(Enum):
    SESSION_CREATED = "session.created"
    SESSION_STATUS_CHANGED = "session.status_changed"
    SESSION_ENDED = "session.ended"
    SESSION_REMOVED = "session.removed"
    PARTICIPANT_JOINED = "participant.joined"
    PARTICIPANT_LEFT = "participant.left"
    MESSAGE_RECEIVED = "message.received"
    RECORDING_AVAILABLE = "recording.available"
    ADAPTER_ERROR = "adapter.error"
    ANALYSIS_UPDATED = "analysis.updated"
    SESSION_PROCESSED = "session.processed"
    SUPERVISOR_ALERT = "supervisor.alert"
    CALL_ESCALATE = "call.escalate"
    CASE_UPDATED = "case.updated"
    FOLLOWUP_SCHEDULED = "followup.scheduled"
    RESOURCES_SEND = "resources.send"


@dataclass(frozen=True)
class ConversationEvent:
    """Immutable pipeline event.

    ``data`` is JSON-serialisable. ``message`` carries the appended message
    object for in-process consumers of MESSAGE_RECEIVED.
    """
    event_id: str
    event_type: EventType
    session_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    message: Optional[ConversationMessage] = field(default=None, compare=False)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_payload(self) -> dict:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "session_id": self.session_id,
            "timestamp": self.timestamp.isoformat(),
            "source": "crisiswatch",
            "data": self.data,
        }


class Subscription:
    """A consumer's view of the bus: a queue filtered by event type."""

    def __init__(self, name: str, event_types: Optional[Iterable[EventType]] = None):
        self.name = name
        self.event_types: Optional[FrozenSet[EventType]] = (
            frozenset(event_types) if event_types is not None else None
        )
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def accepts(self, event: ConversationEvent) -> bool:
        if self.closed:
            return False
        return self.event_types is None or event.event_type in self.event_types

    def deliver(self, event: ConversationEvent) -> None:
        self._queue.put_nowait(event)

    async def get(self) -> Optional[ConversationEvent]:
        """Next event, or None once the subscription is closed."""
        if self.closed and self._queue.empty():
            return None
        return await self._queue.get()

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        # Wake a consumer blocked in get()
        self._queue.put_nowait(None)


class EventBus:
    """Fan-out of ConversationEvents to subscriptions."""

    def __init__(self):
        self._subscriptions: List[Subscription] = []
        self.published_count = 0

    def subscribe(
        self,
        name: str,
        event_types: Optional[Iterable[EventType]] = None,
    ) -> Subscription:
        subscription = Subscription(name, event_types)
        self._subscriptions.append(subscription)
        logger.debug("EVENT_SUBSCRIPTION_ADDED", extra={"subscriber": name})
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.close()
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
            logger.debug("EVENT_SUBSCRIPTION_REMOVED", extra={"subscriber": subscription.name})

    def publish(
        self,
        event_type: EventType,
        session_id: str,
        data: Optional[Dict[str, Any]] = None,
        message: Optional[ConversationMessage] = None,
    ) -> ConversationEvent:
        event = ConversationEvent(
            event_id=f"evt_{uuid.uuid4().hex[:12]}",
            event_type=event_type,
            session_id=session_id,
            data=data or {},
            message=message,
        )
        self.published_count += 1

        for subscription in list(self._subscriptions):
            if subscription.accepts(event):
                subscription.deliver(event)

        logger.debug(
            "EVENT_PUBLISHED",
            extra={"event_type": event_type.value, "session_id": session_id}
        )
        return event

    def close(self) -> None:
        for subscription in list(self._subscriptions):
            self.unsubscribe(subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)
