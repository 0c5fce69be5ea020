"""Analysis result models.

Everything here is immutable: an analysis is a snapshot of one pass over
a conversation and is replaced, never edited, by the next pass.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Tuple

from .risk import CrisisType, RiskLevel

MANUAL_REVIEW_RECOMMENDATION = "Analysis failed - manual review required"


@dataclass(frozen=True)
class SentimentPoint:
    """Sentiment of one caller message."""
    message_id: str
    timestamp: datetime
    sentiment: float        # -1.0 to 1.0
    confidence: float       # 0.0 to 1.0

    def to_dict(self) -> dict:
        return {
            "message_id": self.message_id,
            "timestamp": self.timestamp.isoformat(),
            "sentiment": self.sentiment,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class CrisisIndicator:
    """A crisis category flagged in caller speech."""
    crisis_type: CrisisType
    severity: float         # ratio of matched signals, capped at 1.0
    confidence: float
    signals: Tuple[str, ...] = ()
    message_ids: Tuple[str, ...] = ()
    description: str = ""

    def __post_init__(self):
        if not 0.0 <= self.severity <= 1.0:
            raise ValueError(f"Severity must be 0.0-1.0, got {self.severity}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be 0.0-1.0, got {self.confidence}")

    def to_dict(self) -> dict:
        return {
            "crisis_type": self.crisis_type.value,
            "severity": self.severity,
            "confidence": self.confidence,
            "signals": list(self.signals),
            "message_ids": list(self.message_ids),
            "description": self.description,
        }


@dataclass(frozen=True)
class EmotionalState:
    emotion: str
    intensity: float
    confidence: float
    duration_seconds: float
    start_time: datetime
    end_time: datetime

    def to_dict(self) -> dict:
        return {
            "emotion": self.emotion,
            "intensity": self.intensity,
            "confidence": self.confidence,
            "duration_seconds": self.duration_seconds,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
        }


@dataclass(frozen=True)
class ConversationAnalysis:
    """Result of one analysis pass.

    Timing fields are excluded from equality so that two passes over the
    same messages compare equal.
    """
    overall_sentiment: float
    risk_level: RiskLevel
    confidence: float
    sentiment_trend: Tuple[SentimentPoint, ...] = ()
    crisis_indicators: Tuple[CrisisIndicator, ...] = ()
    key_phrases: Tuple[str, ...] = ()
    emotional_states: Tuple[EmotionalState, ...] = ()
    recommended_actions: Tuple[str, ...] = ()
    processing_time_ms: float = field(default=0.0, compare=False)
    analyzed_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc), compare=False
    )

    @classmethod
    def fallback(cls, processing_time_ms: float = 0.0) -> "ConversationAnalysis":
        """Degraded analysis used when a pass fails internally."""
        return cls(
            overall_sentiment=0.0,
            risk_level=RiskLevel.LOW,
            confidence=0.0,
            recommended_actions=(MANUAL_REVIEW_RECOMMENDATION,),
            processing_time_ms=processing_time_ms,
        )

    @property
    def is_fallback(self) -> bool:
        return self.recommended_actions == (MANUAL_REVIEW_RECOMMENDATION,) and self.confidence == 0.0

    @property
    def primary_indicator(self) -> Optional[CrisisIndicator]:
        return self.crisis_indicators[0] if self.crisis_indicators else None

    def to_dict(self) -> dict:
        return {
            "overall_sentiment": self.overall_sentiment,
            "risk_level": self.risk_level.value,
            "confidence": self.confidence,
            "sentiment_trend": [p.to_dict() for p in self.sentiment_trend],
            "crisis_indicators": [i.to_dict() for i in self.crisis_indicators],
            "key_phrases": list(self.key_phrases),
            "emotional_states": [e.to_dict() for e in self.emotional_states],
            "recommended_actions": list(self.recommended_actions),
            "processing_time_ms": self.processing_time_ms,
            "analyzed_at": self.analyzed_at.isoformat(),
        }
