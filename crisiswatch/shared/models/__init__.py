"""Shared domain models for the crisiswatch pipeline."""
from .risk import RiskLevel, CrisisType, Priority, ESCALATION_ONLY_TYPES
from .conversation import (
    Speaker,
    ConversationStatus,
    STATUS_TRANSITIONS,
    PlatformType,
    ConversationParticipant,
    ConversationMessage,
    ConversationSession,
)
from .analysis import (
    SentimentPoint,
    CrisisIndicator,
    EmotionalState,
    ConversationAnalysis,
    MANUAL_REVIEW_RECOMMENDATION,
)
from .processing import ActionType, ProcessingAction, ProcessingResult

__all__ = [
    "RiskLevel",
    "CrisisType",
    "Priority",
    "ESCALATION_ONLY_TYPES",
    "Speaker",
    "ConversationStatus",
    "STATUS_TRANSITIONS",
    "PlatformType",
    "ConversationParticipant",
    "ConversationMessage",
    "ConversationSession",
    "SentimentPoint",
    "CrisisIndicator",
    "EmotionalState",
    "ConversationAnalysis",
    "MANUAL_REVIEW_RECOMMENDATION",
    "ActionType",
    "ProcessingAction",
    "ProcessingResult",
]
