"""Pipeline events: in-process bus and Kinesis forwarding."""
from .bus import ConversationEvent, EventBus, EventType, Subscription
from .stream_publisher import EventStreamPublisher

__all__ = [
    "ConversationEvent",
    "EventBus",
    "EventType",
    "Subscription",
    "EventStreamPublisher",
]
