"""Analysis Service: sentiment, crisis indicators and risk for a conversation.

Components:
- analyzer.py: ConversationAnalyzer (the analysis pass)
- crisis_patterns.py: crisis keyword/pattern tables and emotion lexicon
- sentiment_scorer.py: HTTP model scorer with deterministic lexicon fallback
- recommendations.py: call-taker recommendations per risk/indicator/emotion

Usage:
    analyzer = ConversationAnalyzer(scorer=ResilientSentimentScorer(HttpSentimentScorer(url)))
    analysis = await analyzer.analyze(session.snapshot())
"""

from .analyzer import ConversationAnalyzer
from .crisis_patterns import CRISIS_PATTERNS, EMOTION_KEYWORDS, PATTERN_VERSION, CrisisPattern
from .recommendations import build_recommendations
from .sentiment_scorer import (
    HttpSentimentScorer,
    LexiconSentimentScorer,
    ResilientSentimentScorer,
    SentimentScore,
    SentimentScorer,
    SentimentScorerError,
)

__all__ = [
    "ConversationAnalyzer",
    "CRISIS_PATTERNS",
    "EMOTION_KEYWORDS",
    "PATTERN_VERSION",
    "CrisisPattern",
    "build_recommendations",
    "HttpSentimentScorer",
    "LexiconSentimentScorer",
    "ResilientSentimentScorer",
    "SentimentScore",
    "SentimentScorer",
    "SentimentScorerError",
]
