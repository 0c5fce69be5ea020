"""Conversation analysis engine.

Turns the caller side of a conversation into a ConversationAnalysis:
sentiment trend, crisis indicators, emotional states, a risk level and
recommended actions. Only caller speech is analyzed.

Identical message lists produce equal analyses (timing fields aside).
An internal failure yields the fallback analysis instead of raising.
"""
import asyncio
import logging
import re
import time
from collections import Counter
from typing import List, Mapping, Optional, Sequence, Tuple

from crisiswatch.shared.config import ProcessingConfig, SettingsStore
from crisiswatch.shared.models import (
    ConversationAnalysis,
    ConversationMessage,
    ConversationSession,
    CrisisIndicator,
    CrisisType,
    ESCALATION_ONLY_TYPES,
    EmotionalState,
    RiskLevel,
    SentimentPoint,
    Speaker,
)
from .crisis_patterns import CRISIS_PATTERNS, EMOTION_KEYWORDS, CrisisPattern
from .recommendations import build_recommendations
from .sentiment_scorer import ResilientSentimentScorer, SentimentScorer

logger = logging.getLogger(__name__)

SENTIMENT_RECENCY_WEIGHT = 1.1
ESCALATION_SEVERITY = 0.5
INDICATOR_SCORE_WEIGHT = 0.3
KEY_PHRASE_LIMIT = 10
KEY_PHRASE_MIN_LENGTH = 4

_NON_WORD = re.compile(r"[^\w\s]")


class ConversationAnalyzer:
    """Analyzes a conversation snapshot."""

    def __init__(
        self,
        scorer: Optional[SentimentScorer] = None,
        settings: Optional[SettingsStore] = None,
        crisis_patterns: Mapping[CrisisType, CrisisPattern] = CRISIS_PATTERNS,
        emotion_keywords: Mapping[str, Sequence[str]] = EMOTION_KEYWORDS,
    ):
        self.scorer = scorer or ResilientSentimentScorer()
        self.settings = settings or SettingsStore()
        self.crisis_patterns = crisis_patterns
        self.emotion_keywords = emotion_keywords

        logger.info(
            "CONVERSATION_ANALYZER_INITIALIZED",
            extra={
                "scorer": type(self.scorer).__name__,
                "crisis_categories": len(crisis_patterns),
            }
        )

    async def analyze(self, session: ConversationSession) -> ConversationAnalysis:
        """Analyze the caller side of a session.

        Args:
            session: Session or snapshot; its message list is read once

        Returns:
            ConversationAnalysis; the fallback analysis on internal failure

        Logs:
            ANALYSIS_COMPLETED on success, IMMINENT_RISK_DETECTED at
            critical level, ANALYSIS_FAILED on fallback
        """
        start_time = time.perf_counter()
        config = self.settings.current

        try:
            caller_messages = [m for m in list(session.messages) if m.speaker == Speaker.CALLER]

            trend = await self.analyze_sentiment_trend(caller_messages)
            overall = self.calculate_overall_sentiment(trend)
            indicators = self.detect_crisis_indicators(caller_messages)
            emotional_states = self.analyze_emotional_states(caller_messages)
            key_phrases = self.extract_key_phrases(caller_messages)
            risk_level = self.classify_risk(indicators, overall, config)

            analysis = ConversationAnalysis(
                overall_sentiment=overall,
                risk_level=risk_level,
                confidence=self.calculate_confidence(trend, indicators),
                sentiment_trend=trend,
                crisis_indicators=indicators,
                key_phrases=key_phrases,
                emotional_states=emotional_states,
                recommended_actions=build_recommendations(risk_level, indicators, emotional_states),
                processing_time_ms=(time.perf_counter() - start_time) * 1000,
            )
        except Exception as e:
            elapsed_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                "ANALYSIS_FAILED",
                extra={"session_id": session.session_id, "error": str(e)},
                exc_info=True,
            )
            return ConversationAnalysis.fallback(processing_time_ms=elapsed_ms)

        log_extra = {
            "session_id": session.session_id,
            "risk_level": analysis.risk_level.value,
            "overall_sentiment": round(analysis.overall_sentiment, 3),
            "indicator_types": [i.crisis_type.value for i in analysis.crisis_indicators],
            "message_count": len(caller_messages),
            "processing_time_ms": round(analysis.processing_time_ms, 2),
        }
        if analysis.risk_level == RiskLevel.IMMINENT:
            logger.critical("IMMINENT_RISK_DETECTED", extra=log_extra)
        else:
            logger.info("ANALYSIS_COMPLETED", extra=log_extra)

        return analysis

    async def analyze_sentiment_trend(
        self, caller_messages: Sequence[ConversationMessage]
    ) -> Tuple[SentimentPoint, ...]:
        """One point per non-empty caller message, in message order."""
        scored = [m for m in caller_messages if m.content and m.content.strip()]
        scores = await asyncio.gather(*(self.scorer.score(m.content) for m in scored))
        return tuple(
            SentimentPoint(
                message_id=message.message_id,
                timestamp=message.timestamp,
                sentiment=score.score,
                confidence=score.confidence,
            )
            for message, score in zip(scored, scores)
        )

    @staticmethod
    def calculate_overall_sentiment(trend: Sequence[SentimentPoint]) -> float:
        """Confidence- and recency-weighted mean; later messages weigh more."""
        weighted_sum = 0.0
        total_weight = 0.0
        for index, point in enumerate(trend):
            weight = SENTIMENT_RECENCY_WEIGHT ** index
            weighted_sum += point.sentiment * point.confidence * weight
            total_weight += point.confidence * weight
        if total_weight == 0:
            return 0.0
        return weighted_sum / total_weight

    def detect_crisis_indicators(
        self, caller_messages: Sequence[ConversationMessage]
    ) -> Tuple[CrisisIndicator, ...]:
        """Flag crisis categories over the concatenated caller text.

        Severity is the share of a category's keywords matched (distinct
        keywords plus matched patterns), capped at 1. Sorted by severity,
        ties keep table order.
        """
        combined = " ".join(m.content for m in caller_messages).lower()
        if not combined.strip():
            return ()

        indicators: List[CrisisIndicator] = []
        for crisis_type, table in self.crisis_patterns.items():
            signals = [kw for kw in table.keywords if kw in combined]
            signals.extend(p.pattern for p in table.patterns if p.search(combined))
            if not signals:
                continue

            indicators.append(CrisisIndicator(
                crisis_type=crisis_type,
                severity=min(len(signals) / len(table.keywords), 1.0),
                confidence=0.8 if len(signals) >= 2 else 0.6,
                signals=tuple(signals),
                message_ids=tuple(
                    m.message_id for m in caller_messages if self._matches(m.content, table)
                ),
                description=f"{table.label} indicators detected: {', '.join(signals)}",
            ))

        return tuple(sorted(indicators, key=lambda i: i.severity, reverse=True))

    @staticmethod
    def _matches(text: str, table: CrisisPattern) -> bool:
        lowered = text.lower()
        return (
            any(kw in lowered for kw in table.keywords)
            or any(p.search(lowered) for p in table.patterns)
        )

    def analyze_emotional_states(
        self, caller_messages: Sequence[ConversationMessage]
    ) -> Tuple[EmotionalState, ...]:
        states: List[EmotionalState] = []
        if not caller_messages:
            return ()

        for emotion, keywords in self.emotion_keywords.items():
            occurrences = 0
            contributing: List[ConversationMessage] = []
            for message in caller_messages:
                text = message.content.lower()
                count = sum(text.count(kw) for kw in keywords)
                if count:
                    occurrences += count
                    contributing.append(message)

            if not contributing:
                continue

            first, last = contributing[0], contributing[-1]
            states.append(EmotionalState(
                emotion=emotion,
                intensity=min(occurrences / len(caller_messages), 1.0),
                confidence=min(len(contributing) / len(caller_messages) * 2, 1.0),
                duration_seconds=(last.timestamp - first.timestamp).total_seconds(),
                start_time=first.timestamp,
                end_time=last.timestamp,
            ))

        return tuple(sorted(states, key=lambda s: s.intensity, reverse=True))

    @staticmethod
    def extract_key_phrases(caller_messages: Sequence[ConversationMessage]) -> Tuple[str, ...]:
        """Most frequent words of four or more characters."""
        text = _NON_WORD.sub(" ", " ".join(m.content for m in caller_messages).lower())
        words = [w for w in text.split() if len(w) >= KEY_PHRASE_MIN_LENGTH]
        return tuple(word for word, _ in Counter(words).most_common(KEY_PHRASE_LIMIT))

    @staticmethod
    def classify_risk(
        indicators: Sequence[CrisisIndicator],
        overall_sentiment: float,
        config: Optional[ProcessingConfig] = None,
    ) -> RiskLevel:
        """Map indicators and sentiment to a risk level.

        A strong suicide or violence indicator is IMMINENT regardless of
        the additive score.
        """
        config = config or ProcessingConfig()

        for indicator in indicators:
            if indicator.crisis_type in ESCALATION_ONLY_TYPES and indicator.severity > ESCALATION_SEVERITY:
                return RiskLevel.IMMINENT

        score = 0.0
        if overall_sentiment < config.crisis_sentiment_threshold:
            score += 0.4
        elif overall_sentiment < config.negative_sentiment_threshold:
            score += 0.2

        for indicator in indicators:
            score += indicator.severity * indicator.confidence * INDICATOR_SCORE_WEIGHT

        if len(indicators) >= config.crisis_indicator_threshold:
            score += 0.2

        if score >= 0.8:
            return RiskLevel.IMMINENT
        if score >= 0.6:
            return RiskLevel.HIGH
        if score >= 0.3:
            return RiskLevel.MODERATE
        return RiskLevel.LOW

    @staticmethod
    def calculate_confidence(
        trend: Sequence[SentimentPoint],
        indicators: Sequence[CrisisIndicator],
    ) -> float:
        if not trend:
            return 0.0
        sentiment_confidence = sum(p.confidence for p in trend) / len(trend)
        indicator_confidence = (
            sum(i.confidence for i in indicators) / len(indicators) if indicators else 0.5
        )
        return (sentiment_confidence + indicator_confidence) / 2
