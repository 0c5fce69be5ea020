"""Processing Scheduler: when to analyze a conversation.

Caller messages arm a per-session debounce timer; a burst of messages
produces one analysis pass once the caller goes quiet. Session end and
explicit re-analysis bypass both the debounce and the reprocess
suppression window. At most one pass runs per session at a time.
"""
import asyncio
import logging
import time
from typing import Callable, Dict, Optional, Set

from crisiswatch.shared.config import SettingsStore
from crisiswatch.shared.events import EventBus, EventType
from crisiswatch.shared.models import (
    ConversationAnalysis,
    ConversationMessage,
    ConversationSession,
    ProcessingResult,
    Speaker,
)
from crisiswatch.services.analysis_service import ConversationAnalyzer
from crisiswatch.services.session_service import SessionStore
from .action_engine import ActionEngine

logger = logging.getLogger(__name__)


class RecentlyProcessedCache:
    """Session ids processed within a time window.

    Soft state: losing it only means an extra pass.
    """

    def __init__(self, ttl_seconds: Callable[[], float], clock: Callable[[], float] = time.monotonic):
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, float] = {}

    def mark(self, session_id: str) -> None:
        self._entries[session_id] = self._clock()

    def is_recent(self, session_id: str) -> bool:
        self.purge()
        return session_id in self._entries

    def discard(self, session_id: str) -> None:
        self._entries.pop(session_id, None)

    def purge(self) -> None:
        cutoff = self._clock() - self._ttl_seconds()
        expired = [sid for sid, marked_at in self._entries.items() if marked_at <= cutoff]
        for session_id in expired:
            del self._entries[session_id]

    def __len__(self) -> int:
        return len(self._entries)


class ProcessingScheduler:
    """Debounces caller messages into analysis + action passes."""

    def __init__(
        self,
        analyzer: ConversationAnalyzer,
        action_engine: ActionEngine,
        session_store: SessionStore,
        settings: Optional[SettingsStore] = None,
        event_bus: Optional[EventBus] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.analyzer = analyzer
        self.action_engine = action_engine
        self.session_store = session_store
        self.settings = settings or SettingsStore()
        self.event_bus = event_bus
        self.recently_processed = RecentlyProcessedCache(
            lambda: self.settings.current.reprocess_suppression_seconds, clock
        )
        self._pending: Dict[str, asyncio.Task] = {}
        self._pass_locks: Dict[str, asyncio.Lock] = {}
        self._in_flight: Set[asyncio.Task] = set()
        self._accepting = True
        self.passes_completed = 0

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def on_message(self, session: ConversationSession, message: ConversationMessage) -> bool:
        """Arm (or re-arm) the debounce timer for a caller message.

        Returns:
            True if a pass was scheduled
        """
        if message.speaker != Speaker.CALLER:
            return False
        if not self._accepting or session.status.is_terminal:
            return False

        try:
            session_id = session.session_id
            delay = self.settings.current.debounce_seconds
            self._cancel_pending(session_id)
            self._pending[session_id] = asyncio.create_task(self._run_after(session_id, delay))
        except Exception as e:
            logger.error(
                "PROCESSING_SCHEDULE_FAILED",
                extra={"session_id": session.session_id, "error": str(e)}
            )
            return False

        logger.debug(
            "PROCESSING_SCHEDULED",
            extra={"session_id": session.session_id, "delay_seconds": delay}
        )
        return True

    async def on_session_end(self, session: ConversationSession) -> Optional[ProcessingResult]:
        """Final forced pass for an ended session."""
        self._cancel_pending(session.session_id)
        logger.info("SESSION_END_PROCESSING", extra={"session_id": session.session_id})
        result = await self.process(session, force=True)
        if result is not None:
            self._publish(EventType.SESSION_PROCESSED, session.session_id, {
                "risk_level": result.analysis.risk_level.value,
                "case_id": session.case_id,
                "errors": list(result.errors),
            })
        return result

    async def request_reanalysis(self, session_id: str) -> Optional[ProcessingResult]:
        """Forced pass on request, e.g. from the API."""
        session = self.session_store.get(session_id)
        if session is None:
            return None
        self._cancel_pending(session_id)
        return await self.process(session, force=True)

    def cancel(self, session_id: str) -> bool:
        return self._cancel_pending(session_id)

    def _cancel_pending(self, session_id: str) -> bool:
        task = self._pending.pop(session_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    async def _run_after(self, session_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        # Past this point the timer has fired and is no longer cancellable
        if self._pending.get(session_id) is asyncio.current_task():
            del self._pending[session_id]

        session = self.session_store.get(session_id)
        if session is None or session.status.is_terminal:
            # Ended sessions get their final pass from on_session_end
            logger.debug("PROCESSING_SESSION_GONE", extra={"session_id": session_id})
            return
        try:
            await self.process(session)
        except Exception as e:
            logger.error(
                "SCHEDULED_PROCESSING_FAILED",
                extra={"session_id": session_id, "error": str(e)}
            )

    # ------------------------------------------------------------------
    # Pass
    # ------------------------------------------------------------------

    async def process(self, session: ConversationSession, force: bool = False) -> Optional[ProcessingResult]:
        """One analysis + action pass.

        Returns:
            ProcessingResult, or None if the pass was suppressed
        """
        session_id = session.session_id
        if not force and self.recently_processed.is_recent(session_id):
            logger.debug("PROCESSING_SUPPRESSED", extra={"session_id": session_id})
            return None

        task = asyncio.current_task()
        if task is not None:
            self._in_flight.add(task)

        lock = self._pass_locks.setdefault(session_id, asyncio.Lock())
        try:
            async with lock:
                start_time = time.perf_counter()
                try:
                    analysis = await self.analyzer.analyze(session.snapshot())
                    self.session_store.set_analysis(session_id, analysis)
                    self._publish(EventType.ANALYSIS_UPDATED, session_id, {
                        "risk_level": analysis.risk_level.value,
                        "overall_sentiment": analysis.overall_sentiment,
                        "confidence": analysis.confidence,
                        "indicator_types": [i.crisis_type.value for i in analysis.crisis_indicators],
                    })
                    result = await self.action_engine.run(session, analysis, forced=force)
                except Exception as e:
                    logger.error(
                        "PROCESSING_PASS_FAILED",
                        extra={"session_id": session_id, "error": str(e)},
                        exc_info=True,
                    )
                    return ProcessingResult(
                        conversation_id=session_id,
                        analysis=session.analysis or ConversationAnalysis.fallback(),
                        errors=[str(e)],
                        forced=force,
                    )

                self.recently_processed.mark(session_id)
                self.passes_completed += 1
                logger.info(
                    "PROCESSING_COMPLETED",
                    extra={
                        "session_id": session_id,
                        "forced": force,
                        "risk_level": result.analysis.risk_level.value,
                        "actions_executed": sum(1 for a in result.actions if a.executed),
                        "case_created": result.case_created,
                        "case_updated": result.case_updated,
                        "errors": len(result.errors),
                        "duration_ms": round((time.perf_counter() - start_time) * 1000, 2),
                    }
                )
                return result
        finally:
            if task is not None:
                self._in_flight.discard(task)
            if not lock.locked() and session_id not in self.session_store:
                self._pass_locks.pop(session_id, None)

    def _publish(self, event_type: EventType, session_id: str, data: dict) -> None:
        if self.event_bus is not None:
            self.event_bus.publish(event_type, session_id, data)

    # ------------------------------------------------------------------
    # Status and shutdown
    # ------------------------------------------------------------------

    def is_pending(self, session_id: str) -> bool:
        return session_id in self._pending

    def status(self) -> dict:
        return {
            "pending_timers": len(self._pending),
            "in_flight": len(self._in_flight),
            "recently_processed": len(self.recently_processed),
            "passes_completed": self.passes_completed,
            "accepting": self._accepting,
        }

    async def shutdown(self, timeout: float = 30.0) -> None:
        """Stop new triggers, cancel timers, drain in-flight passes."""
        self._accepting = False
        for session_id in list(self._pending):
            self._cancel_pending(session_id)

        current = asyncio.current_task()
        in_flight = [t for t in self._in_flight if t is not current]
        if in_flight:
            done, pending = await asyncio.wait(in_flight, timeout=timeout)
            if pending:
                logger.warning("PROCESSING_SHUTDOWN_TIMEOUT", extra={"abandoned": len(pending)})
                for task in pending:
                    task.cancel()
        logger.info("PROCESSING_SCHEDULER_STOPPED", extra={"passes_completed": self.passes_completed})
