"""Risk level, crisis category and case priority domain models.

Risk levels are ordered so the action rules can compare them directly
(``analysis.risk_level >= RiskLevel.HIGH``).
"""
from enum import Enum
from functools import total_ordering
from typing import FrozenSet


@total_ordering
class RiskLevel(Enum):
    """Risk classification for a conversation.

    Ordered: LOW < MODERATE < HIGH < IMMINENT.
    """
    LOW = "low"             # No action beyond normal handling
    MODERATE = "moderate"   # Follow-up within 24 hours
    HIGH = "high"           # Escalate, safety planning
    IMMINENT = "imminent"   # Immediate intervention, supervisor alerted

    @property
    def rank(self) -> int:
        return _RISK_ORDER.index(self)

    def __lt__(self, other):
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank < other.rank


_RISK_ORDER = (RiskLevel.LOW, RiskLevel.MODERATE, RiskLevel.HIGH, RiskLevel.IMMINENT)


class CrisisType(Enum):
    """Crisis categories detected in caller speech."""
    MENTAL_HEALTH = "mental_health"
    DOMESTIC_VIOLENCE = "domestic_violence"
    SUBSTANCE_ABUSE = "substance_abuse"
    CHILD_WELFARE = "child_welfare"
    ELDER_ABUSE = "elder_abuse"
    GENERAL_EMERGENCY = "general_emergency"
    SUICIDE_RISK = "suicide_risk"
    VIOLENCE_THREAT = "violence_threat"


# A strong indicator of either type forces IMMINENT regardless of score
ESCALATION_ONLY_TYPES: FrozenSet[CrisisType] = frozenset({
    CrisisType.SUICIDE_RISK,
    CrisisType.VIOLENCE_THREAT,
})


class Priority(Enum):
    """Priority attached to processing actions and case records."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"
