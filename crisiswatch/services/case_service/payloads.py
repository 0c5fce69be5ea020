"""Builds case-record payloads from a conversation and its analysis."""
from typing import Any, Dict, List

from crisiswatch.shared.models import (
    ConversationAnalysis,
    ConversationSession,
    CrisisType,
    Priority,
    RiskLevel,
    Speaker,
)

CASE_AUTHOR = "crisiswatch"

# The case system has no escalation-only categories
CASE_CRISIS_TYPES: Dict[CrisisType, CrisisType] = {
    CrisisType.SUICIDE_RISK: CrisisType.MENTAL_HEALTH,
    CrisisType.VIOLENCE_THREAT: CrisisType.DOMESTIC_VIOLENCE,
}

RISK_PRIORITIES: Dict[RiskLevel, Priority] = {
    RiskLevel.LOW: Priority.LOW,
    RiskLevel.MODERATE: Priority.MEDIUM,
    RiskLevel.HIGH: Priority.HIGH,
    RiskLevel.IMMINENT: Priority.CRITICAL,
}

RISK_NEEDS: Dict[RiskLevel, List[str]] = {
    RiskLevel.IMMINENT: ["Immediate safety intervention", "Emergency services contact"],
    RiskLevel.HIGH: ["Urgent mental health evaluation", "Safety planning"],
    RiskLevel.MODERATE: ["Follow-up within 24 hours", "Resource referrals"],
}

INDICATOR_NEEDS: Dict[CrisisType, List[str]] = {
    CrisisType.SUICIDE_RISK: ["Suicide risk assessment", "Crisis counseling"],
    CrisisType.DOMESTIC_VIOLENCE: ["Safety planning", "Legal advocacy"],
    CrisisType.SUBSTANCE_ABUSE: ["Medical evaluation", "Addiction counseling"],
}

EMOTION_NEEDS: Dict[str, str] = {
    "anxiety": "Anxiety management support",
    "despair": "Hope and coping resources",
    "anger": "Anger management resources",
}

EXCERPT_MIN_LENGTH = 20
EXCERPT_COUNT = 3


def determine_primary_crisis_type(analysis: ConversationAnalysis) -> CrisisType:
    """Case category of the indicator with the highest severity x confidence."""
    if not analysis.crisis_indicators:
        return CrisisType.GENERAL_EMERGENCY
    primary = max(analysis.crisis_indicators, key=lambda i: i.severity * i.confidence)
    return CASE_CRISIS_TYPES.get(primary.crisis_type, primary.crisis_type)


def map_risk_to_priority(risk_level: RiskLevel) -> Priority:
    return RISK_PRIORITIES.get(risk_level, Priority.MEDIUM)


def generate_conversation_summary(session: ConversationSession, analysis: ConversationAnalysis) -> str:
    caller_messages = [m for m in session.messages if m.speaker == Speaker.CALLER]
    if session.end_time is not None:
        duration = f"{round(session.duration_seconds / 60)} minutes"
    else:
        duration = "ongoing"

    lines = [f"Conversation analysis ({len(caller_messages)} caller messages, {duration}).", ""]

    if analysis.crisis_indicators:
        lines.append("CRISIS INDICATORS DETECTED:")
        for indicator in analysis.crisis_indicators:
            lines.append(f"- {indicator.description} (severity: {round(indicator.severity * 100)}%)")
        lines.append("")

    if analysis.emotional_states:
        lines.append("EMOTIONAL STATE:")
        for state in analysis.emotional_states[:3]:
            lines.append(f"- {state.emotion} (intensity: {round(state.intensity * 100)}%)")
        lines.append("")

    excerpts = [m for m in caller_messages if len(m.content) > EXCERPT_MIN_LENGTH][-EXCERPT_COUNT:]
    if excerpts:
        lines.append("KEY CONVERSATION EXCERPTS:")
        for message in excerpts:
            lines.append(f'[{message.timestamp.strftime("%H:%M:%S")}] "{message.content}"')
        lines.append("")

    if analysis.sentiment_trend:
        sentiment = analysis.overall_sentiment
        if sentiment > 0.2:
            label = "Positive"
        elif sentiment < -0.2:
            label = "Negative"
        else:
            label = "Neutral"
        lines.append(f"OVERALL SENTIMENT: {label} ({sentiment:.2f})")

    return "\n".join(lines).strip()


def extract_immediate_needs(analysis: ConversationAnalysis) -> List[str]:
    needs: List[str] = list(RISK_NEEDS.get(analysis.risk_level, []))
    for indicator in analysis.crisis_indicators:
        needs.extend(INDICATOR_NEEDS.get(indicator.crisis_type, []))
    if analysis.emotional_states:
        emotion_need = EMOTION_NEEDS.get(analysis.emotional_states[0].emotion)
        if emotion_need:
            needs.append(emotion_need)
    return list(dict.fromkeys(needs))


def generate_initial_actions(analysis: ConversationAnalysis) -> List[Dict[str, str]]:
    actions = []
    if analysis.risk_level == RiskLevel.IMMINENT:
        actions.append({
            "type": "immediate_response",
            "description": "Contact emergency services immediately",
            "assignedTo": "Crisis Team",
            "priority": Priority.CRITICAL.value,
            "status": "pending",
        })
    if analysis.risk_level >= RiskLevel.HIGH:
        actions.append({
            "type": "follow_up",
            "description": "Schedule follow-up call within 2 hours",
            "assignedTo": "Crisis Counselor",
            "priority": Priority.HIGH.value,
            "status": "pending",
        })
    if analysis.crisis_indicators:
        actions.append({
            "type": "resource_coordination",
            "description": "Connect caller with appropriate crisis resources",
            "assignedTo": "Resource Coordinator",
            "priority": Priority.MEDIUM.value,
            "status": "pending",
        })
    return actions


def _assessment(analysis: ConversationAnalysis) -> Dict[str, Any]:
    return {
        "riskLevel": analysis.risk_level.value,
        "sentimentScore": analysis.overall_sentiment,
        "emotionalState": [s.emotion for s in analysis.emotional_states],
        "recommendations": list(analysis.recommended_actions),
    }


def build_case_payload(session: ConversationSession, analysis: ConversationAnalysis) -> Dict[str, Any]:
    """Payload for POST /cases."""
    caller = session.caller
    name_parts = (caller.name or "").split() if caller else []

    return {
        "crisisType": determine_primary_crisis_type(analysis).value,
        "priority": map_risk_to_priority(analysis.risk_level).value,
        "createdBy": CASE_AUTHOR,
        "lastModifiedBy": CASE_AUTHOR,
        "source": {
            "platform": session.platform_type.value,
            "sessionId": session.session_id,
            "platformSessionId": session.platform_session_id,
        },
        "personalInfo": {
            "firstName": name_parts[0] if name_parts else "Unknown",
            "lastName": " ".join(name_parts[1:]) or "Caller",
            "phoneNumber": caller.phone_number if caller else None,
            "email": caller.email if caller else None,
        },
        "crisisDetails": {
            "description": generate_conversation_summary(session, analysis),
            "location": session.metadata.get("location", "Phone call"),
            "dateTime": session.start_time.isoformat(),
            "riskFactors": [i.description for i in analysis.crisis_indicators],
            "immediateNeeds": extract_immediate_needs(analysis),
        },
        "assessment": _assessment(analysis),
        "actions": generate_initial_actions(analysis),
    }


def build_update_payload(session: ConversationSession, analysis: ConversationAnalysis) -> Dict[str, Any]:
    """Payload for PUT /cases/{id}."""
    return {
        "lastModifiedBy": CASE_AUTHOR,
        "crisisDetails": {
            "description": generate_conversation_summary(session, analysis),
            "riskFactors": [i.description for i in analysis.crisis_indicators],
            "immediateNeeds": extract_immediate_needs(analysis),
        },
        "assessment": _assessment(analysis),
    }
