"""Tests for ActionEngine: the decision table, case linkage and partial failure."""
from unittest.mock import AsyncMock

import pytest

from crisiswatch.shared.config import ProcessingConfig, SettingsStore
from crisiswatch.shared.events import EventBus, EventType
from crisiswatch.shared.models import (
    ActionType,
    ConversationAnalysis,
    CrisisIndicator,
    CrisisType,
    PlatformType,
    Priority,
    RiskLevel,
)
from crisiswatch.shared.utils import configure_pii_salt
from crisiswatch.services.case_service import CaseRecordClient, CaseReference, CaseServiceError
from crisiswatch.services.processing_service import ActionEngine
from crisiswatch.services.session_service import SessionStore


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


def make_analysis(risk=RiskLevel.LOW, indicator_types=()):
    return ConversationAnalysis(
        overall_sentiment=-0.5,
        risk_level=risk,
        confidence=0.6,
        crisis_indicators=tuple(
            CrisisIndicator(crisis_type=t, severity=0.6, confidence=0.8, description=f"{t.value} detected")
            for t in indicator_types
        ),
    )


def action_types(actions):
    return [a.action_type for a in actions]


@pytest.fixture
def store():
    return SessionStore()


@pytest.fixture
def session(store):
    return store.create_session(PlatformType.TWILIO, "CA123")


@pytest.fixture
def case_client():
    client = AsyncMock(spec=CaseRecordClient)
    client.create_case.return_value = CaseReference(case_id="case_1", case_number="CW-0001")
    client.update_case.return_value = True
    return client


def make_engine(store, case_client=None, bus=None, **settings):
    return ActionEngine(
        store,
        case_client=case_client,
        settings=SettingsStore(ProcessingConfig(**settings)),
        event_bus=bus,
    )


class TestDetermineActions:

    def test_low_risk_no_actions(self, store, session):
        engine = make_engine(store)
        assert engine.determine_actions(session, make_analysis(RiskLevel.LOW)) == []

    def test_moderate_schedules_followup(self, store, session):
        actions = make_engine(store).determine_actions(session, make_analysis(RiskLevel.MODERATE))
        assert action_types(actions) == [ActionType.SCHEDULE_FOLLOWUP]
        assert actions[0].priority == Priority.MEDIUM

    def test_high_escalates_manually(self, store, session):
        actions = make_engine(store).determine_actions(session, make_analysis(RiskLevel.HIGH))
        assert action_types(actions) == [ActionType.ESCALATE_CALL, ActionType.SCHEDULE_FOLLOWUP]
        assert actions[0].automated is False
        assert actions[1].priority == Priority.HIGH

    def test_imminent_with_auto_case(self, store, session):
        engine = make_engine(store, auto_case_creation=True)
        actions = engine.determine_actions(session, make_analysis(RiskLevel.IMMINENT))
        assert action_types(actions) == [
            ActionType.CREATE_CASE,
            ActionType.ALERT_SUPERVISOR,
            ActionType.ESCALATE_CALL,
            ActionType.SCHEDULE_FOLLOWUP,
        ]
        assert actions[0].priority == Priority.CRITICAL
        assert actions[1].priority == Priority.CRITICAL

    def test_no_case_without_flag(self, store, session):
        actions = make_engine(store).determine_actions(session, make_analysis(RiskLevel.IMMINENT))
        assert ActionType.CREATE_CASE not in action_types(actions)

    def test_indicators_create_medium_case(self, store, session):
        engine = make_engine(store, auto_case_creation=True)
        actions = engine.determine_actions(
            session, make_analysis(RiskLevel.LOW, [CrisisType.SUBSTANCE_ABUSE])
        )
        assert action_types(actions) == [ActionType.CREATE_CASE]
        assert actions[0].priority == Priority.MEDIUM

    def test_linked_session_updates_instead_of_creating(self, store, session):
        store.link_case(session.session_id, "case_9")
        engine = make_engine(store, auto_case_creation=True)
        actions = engine.determine_actions(session, make_analysis(RiskLevel.HIGH))
        assert ActionType.CREATE_CASE not in action_types(actions)
        assert action_types(actions)[0] == ActionType.UPDATE_CASE

    def test_send_resources_needs_flag_and_indicators(self, store, session):
        analysis = make_analysis(RiskLevel.LOW, [CrisisType.DOMESTIC_VIOLENCE])
        assert make_engine(store).determine_actions(session, analysis) == []
        engine = make_engine(store, auto_send_resources=True)
        assert action_types(engine.determine_actions(session, analysis)) == [ActionType.SEND_RESOURCES]


class TestRun:

    @pytest.mark.asyncio
    async def test_case_created_and_linked(self, store, session, case_client):
        bus = EventBus()
        sub = bus.subscribe("t", [EventType.CASE_UPDATED])
        engine = make_engine(store, case_client, bus=bus, auto_case_creation=True)

        result = await engine.run(session, make_analysis(RiskLevel.HIGH, [CrisisType.SUICIDE_RISK]))

        assert result.case_created
        assert session.case_id == "case_1"
        assert session.case_number == "CW-0001"
        payload = case_client.create_case.call_args.args[0]
        assert payload["crisisType"] == "mental_health"
        assert payload["priority"] == "high"
        event = await sub.get()
        assert event.data["created"] is True
        assert event.data["case_id"] == "case_1"

    @pytest.mark.asyncio
    async def test_second_pass_updates_existing_case(self, store, session, case_client):
        engine = make_engine(store, case_client, auto_case_creation=True)
        await engine.run(session, make_analysis(RiskLevel.HIGH))
        result = await engine.run(session, make_analysis(RiskLevel.HIGH))

        assert case_client.create_case.await_count == 1
        assert result.case_updated
        assert not result.case_created
        assert case_client.update_case.call_args.args[0] == "case_1"

    @pytest.mark.asyncio
    async def test_failed_create_does_not_stop_other_actions(self, store, session, case_client):
        bus = EventBus()
        alerts = bus.subscribe("alerts", [EventType.SUPERVISOR_ALERT])
        case_client.create_case.side_effect = CaseServiceError("POST /cases returned 503")
        engine = make_engine(store, case_client, bus=bus, auto_case_creation=True)

        result = await engine.run(session, make_analysis(RiskLevel.IMMINENT, [CrisisType.SUICIDE_RISK]))

        create, alert, escalate, followup = result.actions
        assert create.executed is False
        assert create.error == "create_case: POST /cases returned 503"
        assert alert.executed and followup.executed
        assert escalate.executed is False and escalate.error is None
        assert result.errors == [create.error]
        assert not result.succeeded
        assert session.case_id is None
        assert alerts.pending() == 1

    @pytest.mark.asyncio
    async def test_declined_create_recorded(self, store, session, case_client):
        case_client.create_case.return_value = None
        engine = make_engine(store, case_client, auto_case_creation=True)
        result = await engine.run(session, make_analysis(RiskLevel.HIGH))
        assert result.errors == ["create_case: case service declined the case"]
        assert session.case_id is None

    @pytest.mark.asyncio
    async def test_missing_case_client_is_an_action_error(self, store, session):
        engine = make_engine(store, None, auto_case_creation=True)
        result = await engine.run(session, make_analysis(RiskLevel.HIGH))
        assert result.errors == ["create_case: case service not configured"]

    @pytest.mark.asyncio
    async def test_escalation_requested_not_executed(self, store, session):
        bus = EventBus()
        sub = bus.subscribe("t", [EventType.CALL_ESCALATE])
        engine = make_engine(store, bus=bus)
        result = await engine.run(session, make_analysis(RiskLevel.HIGH))
        escalate = result.actions[0]
        assert escalate.action_type == ActionType.ESCALATE_CALL
        assert escalate.result == {"requested": True}
        event = await sub.get()
        assert event.data["platform_session_id"] == "CA123"

    @pytest.mark.asyncio
    async def test_followup_timeframe(self, store, session):
        bus = EventBus()
        sub = bus.subscribe("t", [EventType.FOLLOWUP_SCHEDULED])
        engine = make_engine(store, bus=bus)
        await engine.run(session, make_analysis(RiskLevel.IMMINENT))
        event = await sub.get()
        assert event.data["recommended_timeframe"] == "1 hour"
