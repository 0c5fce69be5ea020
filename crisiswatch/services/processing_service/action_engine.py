"""Action Engine: decides and executes side effects of an analysis.

Each action runs independently; a failing action records its error and
does not stop the others. Case creation links the case on the session
through the store, at most once per session.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional

from crisiswatch.shared.config import SettingsStore
from crisiswatch.shared.events import EventBus, EventType
from crisiswatch.shared.models import (
    ActionType,
    ConversationAnalysis,
    ConversationSession,
    Priority,
    ProcessingAction,
    ProcessingResult,
    RiskLevel,
)
from crisiswatch.services.case_service import (
    CaseRecordClient,
    CaseServiceError,
    build_case_payload,
    build_update_payload,
)
from crisiswatch.services.session_service import SessionStore

logger = logging.getLogger(__name__)

FOLLOWUP_TIMEFRAMES: Dict[RiskLevel, timedelta] = {
    RiskLevel.IMMINENT: timedelta(hours=1),
    RiskLevel.HIGH: timedelta(hours=4),
    RiskLevel.MODERATE: timedelta(hours=24),
    RiskLevel.LOW: timedelta(hours=72),
}


def describe_timeframe(delta: timedelta) -> str:
    hours = int(delta.total_seconds() // 3600)
    return f"{hours} hour" if hours == 1 else f"{hours} hours"


class ActionEngine:
    """Turns a ConversationAnalysis into executed ProcessingActions."""

    def __init__(
        self,
        session_store: SessionStore,
        case_client: Optional[CaseRecordClient] = None,
        settings: Optional[SettingsStore] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.session_store = session_store
        self.case_client = case_client
        self.settings = settings or SettingsStore()
        self.event_bus = event_bus
        self._handlers: Dict[ActionType, Callable[[ConversationSession, ConversationAnalysis, ProcessingAction], Awaitable[None]]] = {
            ActionType.CREATE_CASE: self._create_case,
            ActionType.UPDATE_CASE: self._update_case,
            ActionType.ALERT_SUPERVISOR: self._alert_supervisor,
            ActionType.ESCALATE_CALL: self._escalate_call,
            ActionType.SCHEDULE_FOLLOWUP: self._schedule_followup,
            ActionType.SEND_RESOURCES: self._send_resources,
        }

    def _publish(self, event_type: EventType, session_id: str, data: dict) -> None:
        if self.event_bus is not None:
            self.event_bus.publish(event_type, session_id, data)

    def determine_actions(
        self, session: ConversationSession, analysis: ConversationAnalysis
    ) -> List[ProcessingAction]:
        """Evaluate every action rule independently against one analysis."""
        config = self.settings.current
        risk = analysis.risk_level
        actions: List[ProcessingAction] = []

        if config.auto_case_creation and session.case_id is None:
            if risk >= RiskLevel.HIGH:
                actions.append(ProcessingAction(
                    action_type=ActionType.CREATE_CASE,
                    description="Auto-create case due to high risk level",
                    priority=Priority.CRITICAL if risk == RiskLevel.IMMINENT else Priority.HIGH,
                    automated=True,
                ))
            elif analysis.crisis_indicators:
                actions.append(ProcessingAction(
                    action_type=ActionType.CREATE_CASE,
                    description="Auto-create case due to crisis indicators",
                    priority=Priority.MEDIUM,
                    automated=True,
                ))

        if session.case_id is not None:
            actions.append(ProcessingAction(
                action_type=ActionType.UPDATE_CASE,
                description="Update existing case with new analysis",
                priority=Priority.MEDIUM,
                automated=True,
            ))

        if risk == RiskLevel.IMMINENT:
            actions.append(ProcessingAction(
                action_type=ActionType.ALERT_SUPERVISOR,
                description="Alert supervisor - imminent risk detected",
                priority=Priority.CRITICAL,
                automated=True,
            ))

        if risk >= RiskLevel.HIGH:
            actions.append(ProcessingAction(
                action_type=ActionType.ESCALATE_CALL,
                description="Escalate call to crisis specialist",
                priority=Priority.HIGH,
                automated=False,
            ))

        if risk != RiskLevel.LOW:
            actions.append(ProcessingAction(
                action_type=ActionType.SCHEDULE_FOLLOWUP,
                description="Schedule follow-up based on risk level",
                priority=Priority.HIGH if risk == RiskLevel.HIGH else Priority.MEDIUM,
                automated=True,
            ))

        if config.auto_send_resources and analysis.crisis_indicators:
            actions.append(ProcessingAction(
                action_type=ActionType.SEND_RESOURCES,
                description="Send crisis resources to caller",
                priority=Priority.MEDIUM,
                automated=True,
            ))

        return actions

    async def execute_actions(
        self,
        session: ConversationSession,
        analysis: ConversationAnalysis,
        actions: List[ProcessingAction],
    ) -> List[ProcessingAction]:
        """Run each action; errors are recorded on the action, never raised."""
        for action in actions:
            logger.info(
                "ACTION_EXECUTING",
                extra={
                    "session_id": session.session_id,
                    "action_type": action.action_type.value,
                    "automated": action.automated,
                }
            )
            try:
                await self._handlers[action.action_type](session, analysis, action)
            except Exception as e:
                action.executed = False
                action.error = f"{action.action_type.value}: {e}"
                logger.error(
                    "ACTION_EXECUTION_FAILED",
                    extra={
                        "session_id": session.session_id,
                        "action_type": action.action_type.value,
                        "error": str(e),
                    }
                )
                continue

            if action.executed:
                action.executed_at = datetime.now(timezone.utc)
                logger.info(
                    "ACTION_EXECUTED",
                    extra={"session_id": session.session_id, "action_type": action.action_type.value}
                )
        return actions

    async def run(
        self,
        session: ConversationSession,
        analysis: ConversationAnalysis,
        forced: bool = False,
    ) -> ProcessingResult:
        actions = await self.execute_actions(session, analysis, self.determine_actions(session, analysis))
        result = ProcessingResult(
            conversation_id=session.session_id,
            analysis=analysis,
            actions=actions,
            case_created=any(a.action_type == ActionType.CREATE_CASE and a.executed for a in actions),
            case_updated=any(a.action_type == ActionType.UPDATE_CASE and a.executed for a in actions),
            errors=[a.error for a in actions if a.error],
            forced=forced,
        )
        if result.case_created or result.case_updated:
            self._publish(
                EventType.CASE_UPDATED,
                session.session_id,
                {
                    "case_id": session.case_id,
                    "case_number": session.case_number,
                    "created": result.case_created,
                    "risk_level": analysis.risk_level.value,
                },
            )
        return result

    # ------------------------------------------------------------------
    # Action handlers
    # ------------------------------------------------------------------

    def _require_case_client(self) -> CaseRecordClient:
        if self.case_client is None:
            raise CaseServiceError("case service not configured")
        return self.case_client

    async def _create_case(self, session, analysis, action) -> None:
        if session.case_id is not None:
            # Linked by a concurrent pass since the actions were decided
            action.result = {"skipped": "case_already_linked", "case_id": session.case_id}
            return

        client = self._require_case_client()
        reference = await client.create_case(build_case_payload(session.snapshot(), analysis))
        if reference is None:
            action.error = "create_case: case service declined the case"
            return

        self.session_store.link_case(session.session_id, reference.case_id, reference.case_number)
        action.result = {"case_id": reference.case_id, "case_number": reference.case_number}
        action.executed = True

    async def _update_case(self, session, analysis, action) -> None:
        client = self._require_case_client()
        updated = await client.update_case(session.case_id, build_update_payload(session.snapshot(), analysis))
        if not updated:
            action.error = "update_case: case service declined the update"
            return
        action.result = {"case_id": session.case_id}
        action.executed = True

    async def _alert_supervisor(self, session, analysis, action) -> None:
        logger.critical(
            "SUPERVISOR_ALERT_RAISED",
            extra={"session_id": session.session_id, "risk_level": analysis.risk_level.value}
        )
        self._publish(
            EventType.SUPERVISOR_ALERT,
            session.session_id,
            {
                "risk_level": analysis.risk_level.value,
                "message": "Imminent risk detected in conversation",
                "indicator_types": [i.crisis_type.value for i in analysis.crisis_indicators],
                "recommended_actions": list(analysis.recommended_actions),
            },
        )
        action.executed = True

    async def _escalate_call(self, session, analysis, action) -> None:
        # Needs a human decision; the event is the request, not the escalation
        self._publish(
            EventType.CALL_ESCALATE,
            session.session_id,
            {
                "reason": "High risk situation detected",
                "risk_level": analysis.risk_level.value,
                "platform": session.platform_type.value,
                "platform_session_id": session.platform_session_id,
            },
        )
        action.result = {"requested": True}

    async def _schedule_followup(self, session, analysis, action) -> None:
        timeframe = FOLLOWUP_TIMEFRAMES[analysis.risk_level]
        due_at = datetime.now(timezone.utc) + timeframe
        self._publish(
            EventType.FOLLOWUP_SCHEDULED,
            session.session_id,
            {
                "risk_level": analysis.risk_level.value,
                "recommended_timeframe": describe_timeframe(timeframe),
                "due_at": due_at.isoformat(),
                "case_id": session.case_id,
            },
        )
        action.result = {"recommended_timeframe": describe_timeframe(timeframe), "due_at": due_at.isoformat()}
        action.executed = True

    async def _send_resources(self, session, analysis, action) -> None:
        primary = analysis.primary_indicator
        self._publish(
            EventType.RESOURCES_SEND,
            session.session_id,
            {"crisis_type": primary.crisis_type.value if primary else None},
        )
        action.executed = True
