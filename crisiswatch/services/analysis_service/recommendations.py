"""Recommended actions for call-takers, derived from an analysis."""
from typing import Dict, List, Sequence, Tuple

from crisiswatch.shared.models import CrisisIndicator, CrisisType, EmotionalState, RiskLevel

RISK_RECOMMENDATIONS: Dict[RiskLevel, Tuple[str, ...]] = {
    RiskLevel.IMMINENT: (
        "IMMEDIATE INTERVENTION REQUIRED",
        "Contact emergency services",
        "Do not leave caller alone",
    ),
    RiskLevel.HIGH: (
        "Escalate to supervisor immediately",
        "Consider emergency services",
        "Implement safety planning",
    ),
    RiskLevel.MODERATE: (
        "Increase monitoring frequency",
        "Schedule follow-up within 24 hours",
    ),
    RiskLevel.LOW: (),
}

INDICATOR_RECOMMENDATIONS: Dict[CrisisType, Tuple[str, ...]] = {
    CrisisType.SUICIDE_RISK: (
        "Conduct suicide risk assessment",
        "Remove means of self-harm",
        "Activate crisis response team",
    ),
    CrisisType.DOMESTIC_VIOLENCE: (
        "Provide safety planning resources",
        "Connect with domestic violence services",
        "Document incident details",
    ),
    CrisisType.SUBSTANCE_ABUSE: (
        "Assess for overdose risk",
        "Provide addiction resources",
        "Consider medical evaluation",
    ),
    CrisisType.VIOLENCE_THREAT: (
        "Assess risk to others",
        "Consider duty-to-warn obligations",
    ),
    CrisisType.CHILD_WELFARE: (
        "Assess child safety",
        "Report to child protective services",
    ),
    CrisisType.ELDER_ABUSE: (
        "Assess elder safety",
        "Report to adult protective services",
    ),
    CrisisType.GENERAL_EMERGENCY: (
        "Contact emergency services",
    ),
}

EMOTION_RECOMMENDATIONS: Dict[str, Tuple[str, ...]] = {
    "anxiety": ("Use calming techniques", "Provide grounding exercises"),
    "anger": ("De-escalation techniques", "Allow venting in safe manner"),
    "despair": ("Focus on hope and support", "Identify coping resources"),
}


def build_recommendations(
    risk_level: RiskLevel,
    indicators: Sequence[CrisisIndicator],
    emotional_states: Sequence[EmotionalState],
) -> Tuple[str, ...]:
    """Risk items, then indicator items, then dominant-emotion items.

    Duplicates are dropped keeping the first occurrence.
    """
    candidates: List[str] = list(RISK_RECOMMENDATIONS.get(risk_level, ()))
    for indicator in indicators:
        candidates.extend(INDICATOR_RECOMMENDATIONS.get(indicator.crisis_type, ()))
    if emotional_states:
        candidates.extend(EMOTION_RECOMMENDATIONS.get(emotional_states[0].emotion, ()))
    return tuple(dict.fromkeys(candidates))
