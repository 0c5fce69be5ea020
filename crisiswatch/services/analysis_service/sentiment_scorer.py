"""Sentiment scorers for caller messages.

The external scorer is an HTTP model service. It is wrapped by
ResilientSentimentScorer, which falls back to the deterministic lexicon
scorer on any failure so an analysis pass never stalls on the network.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import FrozenSet, Optional

import aiohttp

logger = logging.getLogger(__name__)

POSITIVE_WORDS: FrozenSet[str] = frozenset({
    "good", "great", "happy", "better", "hope", "thank", "help",
})
NEGATIVE_WORDS: FrozenSet[str] = frozenset({
    "bad", "terrible", "sad", "worse", "hate", "hurt", "pain", "kill", "die",
})

LEXICON_WORD_WEIGHT = 0.1
LEXICON_CONFIDENCE = 0.5


class SentimentScorerError(Exception):
    """The external scorer failed or returned an unusable response."""


@dataclass(frozen=True)
class SentimentScore:
    score: float            # -1.0 to 1.0
    confidence: float       # 0.0 to 1.0
    source: str = "lexicon"


def _clip(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class SentimentScorer(ABC):

    @abstractmethod
    async def score(self, text: str) -> SentimentScore:
        ...

    async def close(self) -> None:
        return None


class LexiconSentimentScorer(SentimentScorer):
    """Word-list scorer: +/-0.1 per positive/negative word, clipped to [-1, 1].

    Deterministic and never raises.
    """

    def score_text(self, text: str) -> SentimentScore:
        score = 0.0
        for word in (text or "").lower().split():
            if word in POSITIVE_WORDS:
                score += LEXICON_WORD_WEIGHT
            elif word in NEGATIVE_WORDS:
                score -= LEXICON_WORD_WEIGHT
        return SentimentScore(
            score=round(_clip(score, -1.0, 1.0), 6),
            confidence=LEXICON_CONFIDENCE,
            source="lexicon",
        )

    async def score(self, text: str) -> SentimentScore:
        return self.score_text(text)


class HttpSentimentScorer(SentimentScorer):
    """Client for the external sentiment model service.

    POST {base_url}/analyze {"text": ...}; accepts either
    ``{"score", "confidence"}`` or ``{"sentiment": {"score", "confidence"}}``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.endpoint = f"{base_url.rstrip('/')}/analyze"
        self.timeout_seconds = timeout_seconds
        self.headers = {"Content-Type": "application/json"}
        if api_key:
            self.headers["Authorization"] = f"Bearer {api_key}"
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def score(self, text: str) -> SentimentScore:
        session = self._get_session()
        try:
            async with session.post(
                self.endpoint,
                headers=self.headers,
                json={"text": text, "options": {"include_confidence": True}},
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            ) as response:
                response.raise_for_status()
                body = await response.json()
        except Exception as e:
            raise SentimentScorerError(f"Sentiment request failed: {e}") from e

        return self._parse(body)

    @staticmethod
    def _parse(body) -> SentimentScore:
        if not isinstance(body, dict):
            raise SentimentScorerError("Sentiment response is not an object")
        result = body.get("sentiment", body)
        try:
            score = float(result["score"])
            confidence = float(result.get("confidence", 0.5))
        except (KeyError, TypeError, ValueError) as e:
            raise SentimentScorerError(f"Malformed sentiment response: {e}") from e
        return SentimentScore(
            score=_clip(score, -1.0, 1.0),
            confidence=_clip(confidence, 0.0, 1.0),
            source="model",
        )

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()


class ResilientSentimentScorer(SentimentScorer):
    """Primary scorer with lexicon fallback. Never raises."""

    def __init__(
        self,
        primary: Optional[SentimentScorer] = None,
        fallback: Optional[LexiconSentimentScorer] = None,
    ):
        self.primary = primary
        self.fallback = fallback or LexiconSentimentScorer()
        self.fallback_count = 0

    async def score(self, text: str) -> SentimentScore:
        if self.primary is not None:
            try:
                return await self.primary.score(text)
            except Exception as e:
                self.fallback_count += 1
                logger.warning(
                    "SENTIMENT_SCORER_FALLBACK",
                    extra={"error": str(e), "fallback_count": self.fallback_count}
                )
        return await self.fallback.score(text)

    async def close(self) -> None:
        if self.primary is not None:
            await self.primary.close()
