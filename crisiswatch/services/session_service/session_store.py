"""Session Store: single source of truth for conversation state.

Adapters create sessions and append messages here; the processing
pipeline reads snapshots and writes analysis and case linkage back.
Appends to one session are serialized by a per-session asyncio.Lock.
"""
import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from crisiswatch.shared.events import EventBus, EventType
from crisiswatch.shared.models import (
    ConversationAnalysis,
    ConversationMessage,
    ConversationParticipant,
    ConversationSession,
    ConversationStatus,
    PlatformType,
    STATUS_TRANSITIONS,
    Speaker,
)
from crisiswatch.shared.utils import hash_text_for_audit

logger = logging.getLogger(__name__)


class SessionStore:
    """In-memory store of conversation sessions.

    Sessions are indexed by internal id and by (platform, native id).
    Ended sessions stay readable until evicted.
    """

    def __init__(self, event_bus: Optional[EventBus] = None):
        self.event_bus = event_bus
        self._sessions: Dict[str, ConversationSession] = {}
        self._by_platform: Dict[Tuple[PlatformType, str], str] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._evictions: Dict[str, asyncio.TimerHandle] = {}
        self._accepting = True

    def _publish(self, event_type: EventType, session_id: str, data: Optional[dict] = None, message=None) -> None:
        if self.event_bus is not None:
            self.event_bus.publish(event_type, session_id, data, message=message)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, session_id: str) -> Optional[ConversationSession]:
        return self._sessions.get(session_id)

    def get_by_platform_id(
        self, platform_type: PlatformType, platform_session_id: str
    ) -> Optional[ConversationSession]:
        session_id = self._by_platform.get((platform_type, platform_session_id))
        if session_id is None:
            return None
        return self._sessions.get(session_id)

    def list_sessions(self, status: Optional[ConversationStatus] = None) -> List[ConversationSession]:
        sessions = list(self._sessions.values())
        if status is not None:
            sessions = [s for s in sessions if s.status == status]
        return sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def create_session(
        self,
        platform_type: PlatformType,
        platform_session_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        participants: Optional[List[ConversationParticipant]] = None,
    ) -> Optional[ConversationSession]:
        """Create a session for a native conversation id.

        Returns:
            The new session, or None when a live session already exists
            for that native id or the store is shutting down.
        """
        if not self._accepting:
            logger.warning(
                "SESSION_CREATE_REJECTED",
                extra={"platform": platform_type.value, "reason": "shutting_down"}
            )
            return None

        existing = self.get_by_platform_id(platform_type, platform_session_id)
        if existing is not None and not existing.status.is_terminal:
            logger.warning(
                "SESSION_CREATE_DUPLICATE",
                extra={"platform": platform_type.value, "session_id": existing.session_id}
            )
            return None

        session = ConversationSession(
            session_id=f"{platform_type.value}_{uuid.uuid4().hex[:12]}",
            platform_type=platform_type,
            platform_session_id=platform_session_id,
            participants=list(participants or []),
            metadata=dict(metadata or {}),
        )
        self._sessions[session.session_id] = session
        self._by_platform[(platform_type, platform_session_id)] = session.session_id

        logger.info(
            "SESSION_CREATED",
            extra={"session_id": session.session_id, "platform": platform_type.value}
        )
        self._publish(
            EventType.SESSION_CREATED,
            session.session_id,
            {"platform": platform_type.value, "platform_session_id": platform_session_id},
        )
        return session

    async def append_message(
        self,
        session_id: str,
        speaker: Speaker,
        content: str,
        timestamp: Optional[datetime] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[ConversationMessage]:
        """Append a message to a live session.

        Returns:
            The stored message, or None (logged) when the session is
            unknown or already ended. Never raises for those cases.
        """
        async with self.lock_for(session_id):
            session = self._sessions.get(session_id)
            if session is None or session.status.is_terminal:
                logger.debug(
                    "MESSAGE_APPEND_REJECTED",
                    extra={
                        "session_id": session_id,
                        "reason": "unknown_session" if session is None else f"session_{session.status.value}",
                    }
                )
                return None

            if timestamp is None:
                timestamp = datetime.now(timezone.utc)
            elif timestamp.tzinfo is None:
                timestamp = timestamp.replace(tzinfo=timezone.utc)
            message = ConversationMessage(
                message_id=f"msg_{uuid.uuid4().hex[:12]}",
                session_id=session_id,
                timestamp=timestamp,
                speaker=speaker,
                content=content,
                metadata=dict(metadata or {}),
            )
            session.messages.append(message)

        logger.debug(
            "MESSAGE_APPENDED",
            extra={
                "session_id": session_id,
                "message_id": message.message_id,
                "speaker": speaker.value,
                "content_hash": hash_text_for_audit(content)[:16],
                "content_length": len(content),
            }
        )
        self._publish(
            EventType.MESSAGE_RECEIVED,
            session_id,
            {"message_id": message.message_id, "speaker": speaker.value},
            message=message,
        )
        return message

    def set_status(self, session_id: str, status: ConversationStatus) -> bool:
        """Move a session to a new status.

        Ending stamps ``end_time`` and publishes SESSION_ENDED once.
        Repeating the current status is a no-op.

        Returns:
            True if the status changed
        """
        session = self._sessions.get(session_id)
        if session is None:
            logger.warning("SESSION_STATUS_UNKNOWN_SESSION", extra={"session_id": session_id})
            return False
        if session.status == status:
            return False
        if status not in STATUS_TRANSITIONS[session.status]:
            logger.warning(
                "SESSION_STATUS_TRANSITION_REJECTED",
                extra={
                    "session_id": session_id,
                    "from_status": session.status.value,
                    "to_status": status.value,
                }
            )
            return False

        previous = session.status
        session.status = status
        if status == ConversationStatus.ENDED:
            session.end_time = datetime.now(timezone.utc)

        logger.info(
            "SESSION_STATUS_CHANGED",
            extra={"session_id": session_id, "from_status": previous.value, "to_status": status.value}
        )
        self._publish(
            EventType.SESSION_STATUS_CHANGED,
            session_id,
            {"from_status": previous.value, "to_status": status.value},
        )
        if status == ConversationStatus.ENDED:
            self._publish(
                EventType.SESSION_ENDED,
                session_id,
                {"duration_seconds": session.duration_seconds, "message_count": len(session.messages)},
            )
        return True

    def end_session(self, session_id: str) -> bool:
        return self.set_status(session_id, ConversationStatus.ENDED)

    def add_participant(self, session_id: str, participant: ConversationParticipant) -> bool:
        session = self._sessions.get(session_id)
        if session is None or session.status.is_terminal:
            return False
        if any(p.participant_id == participant.participant_id for p in session.participants):
            return False
        session.participants.append(participant)
        self._publish(
            EventType.PARTICIPANT_JOINED,
            session_id,
            {"participant_id": participant.participant_id, "role": participant.role.value},
        )
        return True

    def remove_participant(self, session_id: str, participant_id: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        for participant in session.participants:
            if participant.participant_id == participant_id:
                session.participants.remove(participant)
                self._publish(
                    EventType.PARTICIPANT_LEFT,
                    session_id,
                    {"participant_id": participant_id, "role": participant.role.value},
                )
                return True
        return False

    def set_analysis(self, session_id: str, analysis: ConversationAnalysis) -> bool:
        """Replace the session's latest analysis."""
        session = self._sessions.get(session_id)
        if session is None:
            return False
        session.analysis = analysis
        return True

    def link_case(self, session_id: str, case_id: str, case_number: Optional[str] = None) -> bool:
        """Link a case record to the session. A session is linked at most once."""
        session = self._sessions.get(session_id)
        if session is None:
            return False
        if session.case_id is not None:
            if session.case_id != case_id:
                logger.warning(
                    "CASE_LINK_REJECTED",
                    extra={"session_id": session_id, "existing_case_id": session.case_id}
                )
            return False
        session.case_id = case_id
        session.case_number = case_number
        logger.info(
            "CASE_LINKED",
            extra={"session_id": session_id, "case_id": case_id, "case_number": case_number}
        )
        return True

    def update_metadata(self, session_id: str, **values: Any) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        session.metadata.update(values)
        return True

    # ------------------------------------------------------------------
    # Eviction and shutdown
    # ------------------------------------------------------------------

    def remove_session(self, session_id: str) -> Optional[ConversationSession]:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return None

        key = (session.platform_type, session.platform_session_id)
        if self._by_platform.get(key) == session_id:
            del self._by_platform[key]
        self._locks.pop(session_id, None)
        handle = self._evictions.pop(session_id, None)
        if handle is not None:
            handle.cancel()

        logger.info("SESSION_REMOVED", extra={"session_id": session_id})
        self._publish(EventType.SESSION_REMOVED, session_id)
        return session

    def schedule_eviction(self, session_id: str, grace_seconds: float) -> None:
        """Remove the session after a grace period. Must run inside the event loop."""
        if session_id not in self._sessions:
            return
        existing = self._evictions.pop(session_id, None)
        if existing is not None:
            existing.cancel()
        loop = asyncio.get_running_loop()
        self._evictions[session_id] = loop.call_later(grace_seconds, self.remove_session, session_id)

    def stop_accepting(self) -> None:
        self._accepting = False
        logger.info("SESSION_STORE_CLOSED_FOR_NEW_SESSIONS", extra={"active": self.active_count})

    @property
    def accepting(self) -> bool:
        return self._accepting

    def cancel_evictions(self) -> None:
        for handle in self._evictions.values():
            handle.cancel()
        self._evictions.clear()

    @property
    def active_count(self) -> int:
        return sum(1 for s in self._sessions.values() if s.status == ConversationStatus.ACTIVE)

    def stats(self) -> Dict[str, Any]:
        by_status: Dict[str, int] = {}
        by_platform: Dict[str, int] = {}
        for session in self._sessions.values():
            by_status[session.status.value] = by_status.get(session.status.value, 0) + 1
            by_platform[session.platform_type.value] = by_platform.get(session.platform_type.value, 0) + 1
        return {
            "total": len(self._sessions),
            "by_status": by_status,
            "by_platform": by_platform,
            "pending_evictions": len(self._evictions),
            "accepting": self._accepting,
        }
