"""Tests for SessionRouter."""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from crisiswatch.shared.config import ProcessingConfig, SettingsStore
from crisiswatch.shared.events import EventBus, EventType
from crisiswatch.shared.models import PlatformType, Speaker
from crisiswatch.services.processing_service import ProcessingScheduler, SessionRouter
from crisiswatch.services.session_service import SessionStore


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def store(bus):
    return SessionStore(event_bus=bus)


@pytest.fixture
def scheduler():
    scheduler = MagicMock(spec=ProcessingScheduler)
    scheduler.on_session_end = AsyncMock(return_value=None)
    return scheduler


@pytest.fixture
def router(store, scheduler, bus):
    settings = SettingsStore(ProcessingConfig(session_eviction_grace_seconds=0.01))
    return SessionRouter(store, scheduler, bus, settings=settings)


async def settle():
    await asyncio.sleep(0.02)


class TestSessionRouter:

    @pytest.mark.asyncio
    async def test_messages_reach_scheduler(self, router, store, scheduler):
        await router.start()
        session = store.create_session(PlatformType.TWILIO, "CA1")
        message = await store.append_message(session.session_id, Speaker.CALLER, "hello")
        await settle()

        scheduler.on_message.assert_called_once_with(session, message)
        assert router.active_actors == 1
        await router.stop(timeout=1)

    @pytest.mark.asyncio
    async def test_end_runs_final_pass_then_evicts(self, router, store, scheduler):
        await router.start()
        session = store.create_session(PlatformType.TWILIO, "CA1")
        await store.append_message(session.session_id, Speaker.CALLER, "hello")
        store.end_session(session.session_id)
        await settle()

        scheduler.on_session_end.assert_awaited_once_with(session)
        assert router.active_actors == 0
        await asyncio.sleep(0.05)
        assert session.session_id not in store
        await router.stop(timeout=1)

    @pytest.mark.asyncio
    async def test_events_handled_in_order(self, router, store, scheduler):
        calls = []
        scheduler.on_message.side_effect = lambda s, m: calls.append(("message", m.content))

        async def on_end(session):
            calls.append(("end", session.session_id))

        scheduler.on_session_end.side_effect = on_end
        await router.start()
        session = store.create_session(PlatformType.WEBSOCKET, "ws1")
        await store.append_message(session.session_id, Speaker.CALLER, "one")
        # The actor exists once the first message is routed; later events queue behind it
        await settle()
        await store.append_message(session.session_id, Speaker.CALLER, "two")
        store.end_session(session.session_id)
        await settle()

        assert calls == [("message", "one"), ("message", "two"), ("end", session.session_id)]
        await router.stop(timeout=1)

    @pytest.mark.asyncio
    async def test_messages_routed_after_end_are_dropped(self, router, store, scheduler):
        await router.start()
        session = store.create_session(PlatformType.WEBSOCKET, "ws1")
        await store.append_message(session.session_id, Speaker.CALLER, "late")
        store.end_session(session.session_id)
        await settle()

        scheduler.on_message.assert_not_called()
        scheduler.on_session_end.assert_awaited_once_with(session)
        await router.stop(timeout=1)

    @pytest.mark.asyncio
    async def test_end_failure_still_evicts(self, router, store, scheduler):
        scheduler.on_session_end.side_effect = RuntimeError("boom")
        await router.start()
        session = store.create_session(PlatformType.TWILIO, "CA1")
        store.end_session(session.session_id)
        await settle()
        await asyncio.sleep(0.05)
        assert session.session_id not in store
        await router.stop(timeout=1)

    @pytest.mark.asyncio
    async def test_unknown_session_ignored(self, router, bus, scheduler):
        await router.start()
        bus.publish(EventType.SESSION_ENDED, "missing")
        await settle()
        scheduler.on_session_end.assert_not_awaited()
        assert router.active_actors == 0
        await router.stop(timeout=1)

    @pytest.mark.asyncio
    async def test_stop_cancels_idle_actors(self, router, store):
        await router.start()
        session = store.create_session(PlatformType.TWILIO, "CA1")
        await store.append_message(session.session_id, Speaker.CALLER, "hello")
        await settle()

        await router.stop(timeout=1)
        await settle()

        assert not router.running
        assert router.active_actors == 0

    @pytest.mark.asyncio
    async def test_stop_waits_for_end_pass(self, router, store, scheduler):
        finished = []

        async def slow_end(session):
            await asyncio.sleep(0.05)
            finished.append(session.session_id)

        scheduler.on_session_end.side_effect = slow_end
        await router.start()
        session = store.create_session(PlatformType.TWILIO, "CA1")
        store.end_session(session.session_id)
        await settle()

        await router.stop(timeout=1)
        assert finished == [session.session_id]
