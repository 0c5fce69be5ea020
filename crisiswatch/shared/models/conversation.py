"""Conversation session, participant and message models.

A session is the per-conversation aggregate owned by the SessionStore.
Messages are append-only and kept in arrival order.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .analysis import ConversationAnalysis


class Speaker(Enum):
    CALLER = "caller"
    AGENT = "agent"
    SYSTEM = "system"


class ConversationStatus(Enum):
    ACTIVE = "active"
    ENDED = "ended"
    PAUSED = "paused"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ConversationStatus.ENDED, ConversationStatus.ERROR)


STATUS_TRANSITIONS: Mapping[ConversationStatus, FrozenSet[ConversationStatus]] = {
    ConversationStatus.ACTIVE: frozenset({
        ConversationStatus.PAUSED,
        ConversationStatus.ENDED,
        ConversationStatus.ERROR,
    }),
    ConversationStatus.PAUSED: frozenset({
        ConversationStatus.ACTIVE,
        ConversationStatus.ENDED,
    }),
    ConversationStatus.ENDED: frozenset(),
    ConversationStatus.ERROR: frozenset(),
}


class PlatformType(Enum):
    TWILIO = "twilio"
    GENESYS = "genesys"
    WEBSOCKET = "websocket"
    GENERIC = "generic"


@dataclass
class ConversationParticipant:
    """A caller or agent taking part in a conversation."""
    participant_id: str
    role: Speaker
    name: Optional[str] = None
    phone_number: Optional[str] = None
    email: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "participant_id": self.participant_id,
            "role": self.role.value,
            "name": self.name,
            "phone_number": self.phone_number,
            "email": self.email,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class ConversationMessage:
    """A single utterance. Immutable once appended."""
    message_id: str
    session_id: str
    timestamp: datetime
    speaker: Speaker
    content: str
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "message_id": self.message_id,
            "session_id": self.session_id,
            "timestamp": self.timestamp.isoformat(),
            "speaker": self.speaker.value,
            "content": self.content,
            "metadata": dict(self.metadata),
        }


@dataclass
class ConversationSession:
    """Per-conversation aggregate.

    Mutated only through the SessionStore. ``analysis`` holds the latest
    analysis only; ``case_id`` transitions from None to a value at most once.
    """
    session_id: str
    platform_type: PlatformType
    platform_session_id: str
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: ConversationStatus = ConversationStatus.ACTIVE
    end_time: Optional[datetime] = None
    participants: List[ConversationParticipant] = field(default_factory=list)
    messages: List[ConversationMessage] = field(default_factory=list)
    analysis: Optional["ConversationAnalysis"] = None
    case_id: Optional[str] = None
    case_number: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def caller_messages(self) -> List[ConversationMessage]:
        return [m for m in self.messages if m.speaker == Speaker.CALLER]

    @property
    def caller(self) -> Optional[ConversationParticipant]:
        for participant in self.participants:
            if participant.role == Speaker.CALLER:
                return participant
        return None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds()

    def snapshot(self) -> "ConversationSession":
        """Point-in-time copy for an analysis pass.

        Later appends to this session do not show up in the copy.
        """
        return replace(
            self,
            participants=list(self.participants),
            messages=list(self.messages),
            metadata=dict(self.metadata),
        )

    def to_dict(self, include_messages: bool = True) -> dict:
        data = {
            "session_id": self.session_id,
            "platform_type": self.platform_type.value,
            "platform_session_id": self.platform_session_id,
            "status": self.status.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "participants": [p.to_dict() for p in self.participants],
            "message_count": len(self.messages),
            "case_id": self.case_id,
            "case_number": self.case_number,
            "risk_level": self.analysis.risk_level.value if self.analysis else None,
            "metadata": dict(self.metadata),
        }
        if include_messages:
            data["messages"] = [m.to_dict() for m in self.messages]
        return data
