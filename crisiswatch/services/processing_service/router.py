"""Session Router: routes bus events to one mailbox per session.

Each session gets an actor task that drains its mailbox in order, so
message triggers and the end-of-session pass for one session never
interleave, while different sessions proceed independently.
"""
import asyncio
import logging
from typing import Dict, Optional, Set

from crisiswatch.shared.config import SettingsStore
from crisiswatch.shared.events import ConversationEvent, EventBus, EventType, Subscription
from crisiswatch.services.session_service import SessionStore
from .scheduler import ProcessingScheduler

logger = logging.getLogger(__name__)

ROUTED_EVENTS = (EventType.MESSAGE_RECEIVED, EventType.SESSION_ENDED)


class SessionRouter:
    """Consumes MESSAGE_RECEIVED / SESSION_ENDED and drives the scheduler."""

    def __init__(
        self,
        session_store: SessionStore,
        scheduler: ProcessingScheduler,
        event_bus: EventBus,
        settings: Optional[SettingsStore] = None,
    ):
        self.session_store = session_store
        self.scheduler = scheduler
        self.event_bus = event_bus
        self.settings = settings or SettingsStore()
        self._subscription: Optional[Subscription] = None
        self._consumer: Optional[asyncio.Task] = None
        self._mailboxes: Dict[str, asyncio.Queue] = {}
        self._actors: Dict[str, asyncio.Task] = {}
        self._ending: Set[str] = set()

    @property
    def running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    async def start(self) -> None:
        if self.running:
            return
        self._subscription = self.event_bus.subscribe("session-router", ROUTED_EVENTS)
        self._consumer = asyncio.create_task(self._consume())
        logger.info("SESSION_ROUTER_STARTED")

    async def _consume(self) -> None:
        while True:
            event = await self._subscription.get()
            if event is None:
                break
            self.route(event)

    def route(self, event: ConversationEvent) -> None:
        session_id = event.session_id
        mailbox = self._mailboxes.get(session_id)
        if mailbox is None:
            session = self.session_store.get(session_id)
            if session is None:
                return
            if event.event_type == EventType.MESSAGE_RECEIVED and session.status.is_terminal:
                return
            mailbox = asyncio.Queue()
            self._mailboxes[session_id] = mailbox
            self._actors[session_id] = asyncio.create_task(self._run_actor(session_id, mailbox))
        mailbox.put_nowait(event)

    async def _run_actor(self, session_id: str, mailbox: asyncio.Queue) -> None:
        try:
            while True:
                event = await mailbox.get()
                session = self.session_store.get(session_id)
                if session is None:
                    break

                if event.event_type == EventType.MESSAGE_RECEIVED and event.message is not None:
                    self.scheduler.on_message(session, event.message)
                elif event.event_type == EventType.SESSION_ENDED:
                    self._ending.add(session_id)
                    try:
                        await self.scheduler.on_session_end(session)
                    except Exception as e:
                        logger.error(
                            "SESSION_END_PROCESSING_FAILED",
                            extra={"session_id": session_id, "error": str(e)}
                        )
                    self.session_store.schedule_eviction(
                        session_id, self.settings.current.session_eviction_grace_seconds
                    )
                    break
        finally:
            self._mailboxes.pop(session_id, None)
            self._actors.pop(session_id, None)
            self._ending.discard(session_id)

    @property
    def active_actors(self) -> int:
        return len(self._actors)

    async def stop(self, timeout: float = 30.0) -> None:
        """Stop routing; actors still running an end-of-session pass get ``timeout``."""
        if self._subscription is not None:
            self.event_bus.unsubscribe(self._subscription)
        if self._consumer is not None:
            await self._consumer
            self._consumer = None

        ending = []
        for session_id, task in list(self._actors.items()):
            if session_id in self._ending:
                ending.append(task)
            else:
                # Idle actors are parked on an empty mailbox
                task.cancel()
        if ending:
            _, pending = await asyncio.wait(ending, timeout=timeout)
            for task in pending:
                task.cancel()
        logger.info("SESSION_ROUTER_STOPPED", extra={"drained": len(ending)})
