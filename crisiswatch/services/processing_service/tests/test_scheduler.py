"""Tests for ProcessingScheduler: debounce, suppression, forced passes, shutdown."""
import asyncio
from unittest.mock import AsyncMock

import pytest

from crisiswatch.shared.config import ProcessingConfig, SettingsStore
from crisiswatch.shared.events import EventBus, EventType
from crisiswatch.shared.models import ConversationStatus, PlatformType, RiskLevel, Speaker
from crisiswatch.shared.utils import configure_pii_salt
from crisiswatch.services.analysis_service import ConversationAnalyzer, LexiconSentimentScorer
from crisiswatch.services.processing_service import ActionEngine, ProcessingScheduler, RecentlyProcessedCache
from crisiswatch.services.session_service import SessionStore

DEBOUNCE = 0.05


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def settings():
    return SettingsStore(ProcessingConfig(debounce_seconds=DEBOUNCE, reprocess_suppression_seconds=300))


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def store(bus):
    return SessionStore(event_bus=bus)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler(store, settings, bus, clock):
    analyzer = ConversationAnalyzer(scorer=LexiconSentimentScorer(), settings=settings)
    engine = ActionEngine(store, settings=settings, event_bus=bus)
    return ProcessingScheduler(analyzer, engine, store, settings=settings, event_bus=bus, clock=clock)


async def caller_says(store, scheduler, session, text, speaker=Speaker.CALLER):
    message = await store.append_message(session.session_id, speaker, text)
    return scheduler.on_message(session, message)


class TestRecentlyProcessedCache:

    def test_entries_expire(self):
        clock = FakeClock()
        cache = RecentlyProcessedCache(lambda: 10, clock)
        cache.mark("s1")
        assert cache.is_recent("s1")
        clock.now += 10
        assert not cache.is_recent("s1")
        assert len(cache) == 0

    def test_ttl_read_on_each_check(self):
        clock = FakeClock()
        ttl = [100]
        cache = RecentlyProcessedCache(lambda: ttl[0], clock)
        cache.mark("s1")
        clock.now += 50
        assert cache.is_recent("s1")
        ttl[0] = 20
        assert not cache.is_recent("s1")


class TestDebounce:

    @pytest.mark.asyncio
    async def test_burst_yields_one_pass(self, store, scheduler):
        session = store.create_session(PlatformType.WEBSOCKET, "ws1")
        for text in ("hello", "I feel hopeless", "I can't cope"):
            assert await caller_says(store, scheduler, session, text)

        assert scheduler.is_pending(session.session_id)
        await asyncio.sleep(DEBOUNCE * 4)

        assert scheduler.passes_completed == 1
        assert not scheduler.is_pending(session.session_id)
        # The pass saw every message in the burst
        assert len(session.analysis.sentiment_trend) == 3

    @pytest.mark.asyncio
    async def test_pass_waits_for_quiet_after_last_message(self, store, scheduler, settings):
        window = 0.2
        settings.update(debounce_seconds=window)
        session = store.create_session(PlatformType.WEBSOCKET, "ws1")
        texts = ("hello", "I feel hopeless", "I can't cope", "nothing helps")
        for index, text in enumerate(texts):
            if index:
                await asyncio.sleep(window / 2)
            await caller_says(store, scheduler, session, text)
            # Each message re-arms the timer, so nothing has run mid-burst
            assert scheduler.passes_completed == 0

        await asyncio.sleep(window * 0.75)
        assert scheduler.passes_completed == 0
        assert scheduler.is_pending(session.session_id)

        await asyncio.sleep(window)
        assert scheduler.passes_completed == 1
        assert len(session.analysis.sentiment_trend) == len(texts)

    @pytest.mark.asyncio
    async def test_agent_messages_do_not_schedule(self, store, scheduler):
        session = store.create_session(PlatformType.WEBSOCKET, "ws1")
        assert not await caller_says(store, scheduler, session, "How can I help?", Speaker.AGENT)
        await asyncio.sleep(DEBOUNCE * 2)
        assert scheduler.passes_completed == 0

    @pytest.mark.asyncio
    async def test_no_pass_if_session_ends_first(self, store, scheduler):
        session = store.create_session(PlatformType.WEBSOCKET, "ws1")
        await caller_says(store, scheduler, session, "hello")
        store.end_session(session.session_id)
        await asyncio.sleep(DEBOUNCE * 3)
        assert scheduler.passes_completed == 0

    @pytest.mark.asyncio
    async def test_debounce_read_from_current_settings(self, store, scheduler, settings):
        settings.update(debounce_seconds=10)
        session = store.create_session(PlatformType.WEBSOCKET, "ws1")
        await caller_says(store, scheduler, session, "hello")
        await asyncio.sleep(DEBOUNCE * 2)
        assert scheduler.passes_completed == 0
        assert scheduler.cancel(session.session_id)


class TestSuppression:

    @pytest.mark.asyncio
    async def test_unforced_pass_suppressed_within_window(self, store, scheduler, clock):
        session = store.create_session(PlatformType.TWILIO, "CA1")
        await store.append_message(session.session_id, Speaker.CALLER, "hello")

        assert await scheduler.process(session) is not None
        assert await scheduler.process(session) is None

        clock.now += 301
        assert await scheduler.process(session) is not None

    @pytest.mark.asyncio
    async def test_forced_pass_bypasses_suppression(self, store, scheduler):
        session = store.create_session(PlatformType.TWILIO, "CA1")
        await store.append_message(session.session_id, Speaker.CALLER, "hello")
        await scheduler.process(session)
        result = await scheduler.request_reanalysis(session.session_id)
        assert result is not None
        assert result.forced


class TestSessionEnd:

    @pytest.mark.asyncio
    async def test_end_pass_is_forced_and_published(self, store, scheduler, bus):
        processed = bus.subscribe("t", [EventType.SESSION_PROCESSED])
        session = store.create_session(PlatformType.TWILIO, "CA1")
        await store.append_message(session.session_id, Speaker.CALLER, "I want to kill myself")
        await scheduler.process(session)
        store.end_session(session.session_id)

        result = await scheduler.on_session_end(session)

        assert result.forced
        assert result.analysis.risk_level == RiskLevel.IMMINENT
        event = await processed.get()
        assert event.data["risk_level"] == "imminent"

    @pytest.mark.asyncio
    async def test_end_cancels_pending_timer(self, store, scheduler):
        session = store.create_session(PlatformType.TWILIO, "CA1")
        await caller_says(store, scheduler, session, "hello")
        store.end_session(session.session_id)
        await scheduler.on_session_end(session)
        await asyncio.sleep(DEBOUNCE * 3)
        assert scheduler.passes_completed == 1

    @pytest.mark.asyncio
    async def test_reanalysis_of_unknown_session(self, scheduler):
        assert await scheduler.request_reanalysis("missing") is None


class TestFailures:

    @pytest.mark.asyncio
    async def test_action_engine_failure_becomes_result_error(self, store, scheduler):
        scheduler.action_engine.run = AsyncMock(side_effect=RuntimeError("boom"))
        session = store.create_session(PlatformType.TWILIO, "CA1")
        await store.append_message(session.session_id, Speaker.CALLER, "hello")

        result = await scheduler.process(session, force=True)

        assert result.errors == ["boom"]
        # The analysis itself was stored before the failure
        assert session.analysis is not None
        assert result.analysis is session.analysis

    @pytest.mark.asyncio
    async def test_passes_for_one_session_do_not_overlap(self, store, scheduler):
        running = []
        overlaps = []
        original = scheduler.analyzer.analyze

        async def slow_analyze(snapshot):
            if running:
                overlaps.append(True)
            running.append(True)
            await asyncio.sleep(0.02)
            running.pop()
            return await original(snapshot)

        scheduler.analyzer.analyze = slow_analyze
        session = store.create_session(PlatformType.TWILIO, "CA1")
        await store.append_message(session.session_id, Speaker.CALLER, "hello")

        await asyncio.gather(*(scheduler.process(session, force=True) for _ in range(3)))

        assert overlaps == []
        assert scheduler.passes_completed == 3


class TestShutdown:

    @pytest.mark.asyncio
    async def test_shutdown_cancels_timers_and_refuses_new(self, store, scheduler):
        session = store.create_session(PlatformType.TWILIO, "CA1")
        await caller_says(store, scheduler, session, "hello")

        await scheduler.shutdown(timeout=1)
        await asyncio.sleep(DEBOUNCE * 3)

        assert scheduler.passes_completed == 0
        assert not await caller_says(store, scheduler, session, "anyone there?")
        assert scheduler.status()["accepting"] is False
