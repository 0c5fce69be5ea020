"""Channel adapter contract.

An adapter translates one platform's native events into SessionStore
operations and carries outbound messages back to the platform. Adapters
hold no conversation state of their own.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from crisiswatch.shared.events import EventType
from crisiswatch.shared.models import (
    ConversationMessage,
    ConversationParticipant,
    ConversationSession,
    PlatformType,
)
from crisiswatch.services.session_service import SessionStore

logger = logging.getLogger(__name__)


class WebhookEvent(Enum):
    CONVERSATION_STARTED = "conversation_started"
    MESSAGE_RECEIVED = "message_received"
    CONVERSATION_ENDED = "conversation_ended"
    PARTICIPANT_JOINED = "participant_joined"
    PARTICIPANT_LEFT = "participant_left"
    RECORDING_AVAILABLE = "recording_available"


class InboundEventRejected(Exception):
    """An inbound event was refused at the adapter boundary."""


class InvalidSignatureError(InboundEventRejected):
    pass


class MalformedEventError(InboundEventRejected):
    pass


class AdapterNotReadyError(Exception):
    """The adapter cannot perform the operation in its current state."""


@dataclass(frozen=True)
class InboundEvent:
    """A native platform event handed to an adapter."""
    platform: PlatformType
    event: WebhookEvent
    data: Mapping[str, Any]
    signature: Optional[str] = None
    url: Optional[str] = None
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ChannelAdapter(ABC):
    """Base class for platform adapters."""

    platform_type: PlatformType = PlatformType.GENERIC

    def __init__(self, session_store: SessionStore, config: Optional[Dict[str, Any]] = None):
        self.session_store = session_store
        self.config = dict(config or {})
        self.initialized = False
        self.listening = False
        self.events_processed = 0
        self.events_rejected = 0

    @abstractmethod
    async def initialize(self) -> None:
        ...

    async def start_listening(self) -> None:
        if not self.initialized:
            raise AdapterNotReadyError(f"{self.platform_type.value} adapter not initialized")
        self.listening = True
        logger.info("ADAPTER_LISTENING", extra={"platform": self.platform_type.value})

    async def stop_listening(self) -> None:
        self.listening = False
        logger.info("ADAPTER_STOPPED_LISTENING", extra={"platform": self.platform_type.value})

    @abstractmethod
    async def send_message(self, conversation_id: str, text: str) -> None:
        """Deliver text into the conversation on the platform.

        Args:
            conversation_id: Internal session id
            text: Message text
        """

    async def get_conversation_history(self, conversation_id: str) -> List[ConversationMessage]:
        session = self.session_store.get(conversation_id)
        return list(session.messages) if session else []

    def validate_signature(self, event: InboundEvent) -> bool:
        return True

    async def process_inbound_event(self, event: InboundEvent) -> None:
        """Validate and dispatch one native event.

        Raises:
            InvalidSignatureError: Signature check failed
            MalformedEventError: Required fields missing

        Other failures are logged and published as ADAPTER_ERROR.
        """
        if not self.validate_signature(event):
            self.events_rejected += 1
            logger.warning(
                "INBOUND_EVENT_SIGNATURE_INVALID",
                extra={"platform": self.platform_type.value, "event": event.event.value}
            )
            raise InvalidSignatureError(f"Invalid {self.platform_type.value} signature")

        try:
            await self.handle_event(event)
        except MalformedEventError as e:
            self.events_rejected += 1
            logger.warning(
                "INBOUND_EVENT_MALFORMED",
                extra={"platform": self.platform_type.value, "event": event.event.value, "error": str(e)}
            )
            raise
        except Exception as e:
            self.report_error(e, {"event": event.event.value})
            return

        self.events_processed += 1

    @abstractmethod
    async def handle_event(self, event: InboundEvent) -> None:
        ...

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    def session_for(self, platform_session_id: str) -> Optional[ConversationSession]:
        return self.session_store.get_by_platform_id(self.platform_type, platform_session_id)

    def open_session(
        self,
        platform_session_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        participants: Optional[List[ConversationParticipant]] = None,
    ) -> Optional[ConversationSession]:
        """Existing live session for the native id, else a new one."""
        session = self.session_for(platform_session_id)
        if session is not None and not session.status.is_terminal:
            return session
        return self.session_store.create_session(
            self.platform_type, platform_session_id, metadata=metadata, participants=participants
        )

    @staticmethod
    def require(data: Mapping[str, Any], *keys: str) -> None:
        missing = [key for key in keys if not data.get(key)]
        if missing:
            raise MalformedEventError(f"Missing required fields: {', '.join(missing)}")

    def report_error(self, error: Exception, context: Optional[Dict[str, Any]] = None) -> None:
        logger.error(
            "ADAPTER_ERROR",
            extra={"platform": self.platform_type.value, "error": str(error), **(context or {})},
            exc_info=True,
        )
        if self.session_store.event_bus is not None:
            self.session_store.event_bus.publish(
                EventType.ADAPTER_ERROR,
                "",
                {"platform": self.platform_type.value, "error": str(error), **(context or {})},
            )

    def is_healthy(self) -> bool:
        return self.initialized and self.listening

    def health_details(self) -> Dict[str, Any]:
        return {}

    async def health_check(self) -> Dict[str, Any]:
        sessions = [
            s for s in self.session_store.list_sessions()
            if s.platform_type == self.platform_type and not s.status.is_terminal
        ]
        return {
            "healthy": self.is_healthy(),
            "details": {
                "platform": self.platform_type.value,
                "initialized": self.initialized,
                "listening": self.listening,
                "active_sessions": len(sessions),
                "events_processed": self.events_processed,
                "events_rejected": self.events_rejected,
                **self.health_details(),
            },
        }

    async def cleanup(self) -> None:
        await self.stop_listening()
        self.initialized = False
        logger.info("ADAPTER_CLEANED_UP", extra={"platform": self.platform_type.value})
