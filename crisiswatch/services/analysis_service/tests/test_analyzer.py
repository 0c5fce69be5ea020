"""Tests for ConversationAnalyzer.

Covers risk classification (including the suicide/violence override),
sentiment weighting, indicator and emotion detection, and fallback safety.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from crisiswatch.shared.config import ProcessingConfig
from crisiswatch.shared.models import (
    ConversationMessage,
    ConversationSession,
    CrisisIndicator,
    CrisisType,
    MANUAL_REVIEW_RECOMMENDATION,
    PlatformType,
    RiskLevel,
    SentimentPoint,
    Speaker,
)
from crisiswatch.services.analysis_service import (
    ConversationAnalyzer,
    LexiconSentimentScorer,
    SentimentScore,
)

BASE_TIME = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def make_session(*turns):
    """Build a session from (speaker, text) pairs, one second apart."""
    session = ConversationSession(
        session_id="twilio_test",
        platform_type=PlatformType.TWILIO,
        platform_session_id="CA_TEST",
    )
    for index, (speaker, text) in enumerate(turns):
        session.messages.append(ConversationMessage(
            message_id=f"msg_{index}",
            session_id=session.session_id,
            timestamp=BASE_TIME + timedelta(seconds=index),
            speaker=speaker,
            content=text,
        ))
    return session


def caller(text):
    return (Speaker.CALLER, text)


def agent(text):
    return (Speaker.AGENT, text)


@pytest.fixture
def analyzer():
    return ConversationAnalyzer(scorer=LexiconSentimentScorer())


class TestRiskClassification:

    @pytest.mark.asyncio
    async def test_suicide_statement_is_imminent(self, analyzer):
        analysis = await analyzer.analyze(make_session(caller("I want to kill myself")))

        assert analysis.risk_level == RiskLevel.IMMINENT
        assert analysis.primary_indicator.crisis_type == CrisisType.SUICIDE_RISK
        assert analysis.primary_indicator.severity > 0.5
        assert "IMMEDIATE INTERVENTION REQUIRED" in analysis.recommended_actions
        assert "Conduct suicide risk assessment" in analysis.recommended_actions

    @pytest.mark.asyncio
    async def test_baseline_conversation_is_low(self, analyzer):
        analysis = await analyzer.analyze(make_session(
            caller("Hi, I'd like some information about your services please."),
            agent("Of course, what would you like to know?"),
        ))
        assert analysis.risk_level == RiskLevel.LOW
        assert analysis.crisis_indicators == ()
        assert analysis.recommended_actions == ()

    @pytest.mark.asyncio
    async def test_agent_speech_is_ignored(self, analyzer):
        analysis = await analyzer.analyze(make_session(
            caller("Hello, I have a question about billing."),
            agent("Have you ever thought about suicide or wanted to kill yourself?"),
        ))
        assert analysis.risk_level == RiskLevel.LOW
        assert len(analysis.sentiment_trend) == 1

    @pytest.mark.asyncio
    async def test_agent_only_conversation(self, analyzer):
        analysis = await analyzer.analyze(make_session(agent("Hello?")))
        assert analysis.risk_level == RiskLevel.LOW
        assert analysis.overall_sentiment == 0.0
        assert analysis.confidence == 0.0
        assert analysis.sentiment_trend == ()

    def test_override_ignores_additive_score(self):
        indicator = CrisisIndicator(crisis_type=CrisisType.VIOLENCE_THREAT, severity=0.6, confidence=0.6)
        assert ConversationAnalyzer.classify_risk([indicator], 0.9) == RiskLevel.IMMINENT

    def test_weak_suicide_indicator_not_overridden(self):
        indicator = CrisisIndicator(crisis_type=CrisisType.SUICIDE_RISK, severity=0.4, confidence=0.8)
        # 0.4 * 0.8 * 0.3 = 0.096
        assert ConversationAnalyzer.classify_risk([indicator], 0.0) == RiskLevel.LOW

    def test_negative_sentiment_with_many_indicators_is_moderate(self):
        indicators = [
            CrisisIndicator(crisis_type=t, severity=0.2, confidence=0.6)
            for t in (CrisisType.MENTAL_HEALTH, CrisisType.SUBSTANCE_ABUSE, CrisisType.DOMESTIC_VIOLENCE)
        ]
        # 0.2 (negative) + 3 * 0.036 + 0.2 (count) = 0.508
        assert ConversationAnalyzer.classify_risk(indicators, -0.5) == RiskLevel.MODERATE

    def test_crisis_sentiment_and_indicators_is_high(self):
        indicators = [
            CrisisIndicator(crisis_type=t, severity=0.5, confidence=0.8)
            for t in (CrisisType.MENTAL_HEALTH, CrisisType.SUBSTANCE_ABUSE, CrisisType.DOMESTIC_VIOLENCE)
        ]
        # 0.4 + 3 * 0.12 + 0.2 = 0.96
        assert ConversationAnalyzer.classify_risk(indicators, -0.8) == RiskLevel.IMMINENT
        # without the count bonus: 0.4 + 2 * 0.12 = 0.64
        assert ConversationAnalyzer.classify_risk(indicators[:2], -0.8) == RiskLevel.HIGH

    def test_thresholds_come_from_config(self):
        config = ProcessingConfig(crisis_sentiment_threshold=-0.9, negative_sentiment_threshold=-0.8)
        assert ConversationAnalyzer.classify_risk([], -0.75, config) == RiskLevel.LOW
        assert ConversationAnalyzer.classify_risk([], -0.75) == RiskLevel.MODERATE


class TestDeterminism:

    @pytest.mark.asyncio
    async def test_same_messages_same_analysis(self, analyzer):
        session = make_session(
            caller("I feel so hopeless and I can't cope anymore"),
            agent("I'm here with you."),
            caller("I took too much of my pills"),
        )
        first = await analyzer.analyze(session)
        second = await analyzer.analyze(session)
        assert first == second

    @pytest.mark.asyncio
    async def test_indicators_sorted_by_severity(self, analyzer):
        analysis = await analyzer.analyze(make_session(
            caller("I'm depressed, hopeless and overwhelmed, I can't cope"),
            caller("maybe I drink too much alcohol"),
        ))
        severities = [i.severity for i in analysis.crisis_indicators]
        assert severities == sorted(severities, reverse=True)
        assert analysis.primary_indicator.crisis_type == CrisisType.MENTAL_HEALTH


class TestSentiment:

    def test_recency_weighting(self):
        trend = [
            SentimentPoint(message_id="a", timestamp=BASE_TIME, sentiment=-1.0, confidence=1.0),
            SentimentPoint(message_id="b", timestamp=BASE_TIME, sentiment=1.0, confidence=1.0),
        ]
        assert ConversationAnalyzer.calculate_overall_sentiment(trend) == pytest.approx(0.1 / 2.1)

    def test_zero_confidence_is_neutral(self):
        trend = [SentimentPoint(message_id="a", timestamp=BASE_TIME, sentiment=-1.0, confidence=0.0)]
        assert ConversationAnalyzer.calculate_overall_sentiment(trend) == 0.0

    @pytest.mark.asyncio
    async def test_blank_messages_skipped(self, analyzer):
        analysis = await analyzer.analyze(make_session(caller("   "), caller("this is bad")))
        assert [p.message_id for p in analysis.sentiment_trend] == ["msg_1"]
        assert analysis.overall_sentiment == pytest.approx(-0.1)


class TestIndicatorsAndEmotions:

    def test_indicator_records_contributing_messages(self, analyzer):
        session = make_session(
            caller("He hits me when he drinks"),
            caller("The weather is nice"),
        )
        indicators = analyzer.detect_crisis_indicators(session.caller_messages)
        dv = next(i for i in indicators if i.crisis_type == CrisisType.DOMESTIC_VIOLENCE)
        assert dv.message_ids == ("msg_0",)
        assert dv.description.startswith("Domestic violence indicators detected:")

    def test_single_signal_has_lower_confidence(self, analyzer):
        indicators = analyzer.detect_crisis_indicators(make_session(caller("there was an emergency")).caller_messages)
        assert indicators[0].crisis_type == CrisisType.GENERAL_EMERGENCY
        assert indicators[0].confidence == 0.6
        assert indicators[0].severity == pytest.approx(1 / 5)

    def test_emotion_intensity_and_confidence(self, analyzer):
        session = make_session(
            caller("I'm scared and worried"),
            caller("okay"),
            caller("fine"),
        )
        states = analyzer.analyze_emotional_states(session.caller_messages)
        fear = next(s for s in states if s.emotion == "fear")
        assert fear.intensity == pytest.approx(2 / 3)
        assert fear.confidence == pytest.approx(2 / 3)
        assert fear.duration_seconds == 0.0

    def test_emotion_duration_spans_contributing_messages(self, analyzer):
        session = make_session(caller("I'm angry"), caller("hello"), caller("still so mad"))
        anger = analyzer.analyze_emotional_states(session.caller_messages)[0]
        assert anger.emotion == "anger"
        assert anger.duration_seconds == 2.0
        assert anger.confidence == 1.0

    def test_key_phrases(self):
        session = make_session(caller("Help, help me please. The pain, the pain!"))
        phrases = ConversationAnalyzer.extract_key_phrases(session.caller_messages)
        assert phrases[0] == "help"
        assert "pain" in phrases
        assert "me" not in phrases


class TestFallback:

    @pytest.mark.asyncio
    async def test_scorer_failure_yields_fallback(self):
        scorer = AsyncMock()
        scorer.score.side_effect = RuntimeError("model down")
        analyzer = ConversationAnalyzer(scorer=scorer)

        analysis = await analyzer.analyze(make_session(caller("I want to kill myself")))

        assert analysis.is_fallback
        assert analysis.risk_level == RiskLevel.LOW
        assert analysis.recommended_actions == (MANUAL_REVIEW_RECOMMENDATION,)

    @pytest.mark.asyncio
    async def test_external_scores_are_used(self):
        scorer = AsyncMock()
        scorer.score.return_value = SentimentScore(score=-0.9, confidence=0.9, source="model")
        analyzer = ConversationAnalyzer(scorer=scorer)

        analysis = await analyzer.analyze(make_session(caller("I don't know what to do")))

        assert analysis.overall_sentiment == pytest.approx(-0.9)
        assert analysis.risk_level == RiskLevel.MODERATE
