"""Channel Adapters: platform events in, outbound messages out.

Components:
- base.py: ChannelAdapter contract, InboundEvent, rejection errors
- twilio_adapter.py: Twilio voice/SMS (twilio SDK)
- genesys_adapter.py: Genesys Cloud (OAuth + REST over aiohttp)
- websocket_adapter.py: direct WebSocket clients served by the gateway
"""

from .base import (
    AdapterNotReadyError,
    ChannelAdapter,
    InboundEvent,
    InboundEventRejected,
    InvalidSignatureError,
    MalformedEventError,
    WebhookEvent,
)
from .genesys_adapter import GenesysAdapter
from .twilio_adapter import TwilioAdapter
from .websocket_adapter import WebSocketAdapter, WebSocketClient

__all__ = [
    "AdapterNotReadyError",
    "ChannelAdapter",
    "InboundEvent",
    "InboundEventRejected",
    "InvalidSignatureError",
    "MalformedEventError",
    "WebhookEvent",
    "GenesysAdapter",
    "TwilioAdapter",
    "WebSocketAdapter",
    "WebSocketClient",
]
