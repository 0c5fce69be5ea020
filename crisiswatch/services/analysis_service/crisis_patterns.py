"""Crisis keyword and pattern tables.

Each crisis category is flagged by case-insensitive keyword substrings or
regex patterns over the caller's speech. Table order is the tie-break
order for indicators of equal severity.
"""
import re
from dataclasses import dataclass
from typing import Dict, Mapping, Pattern, Tuple

from crisiswatch.shared.models import CrisisType

PATTERN_VERSION = "2026.10.19"


@dataclass(frozen=True)
class CrisisPattern:
    keywords: Tuple[str, ...]
    patterns: Tuple[Pattern, ...]
    label: str


def _compile(*sources: str) -> Tuple[Pattern, ...]:
    return tuple(re.compile(source, re.IGNORECASE) for source in sources)


CRISIS_PATTERNS: Mapping[CrisisType, CrisisPattern] = {
    CrisisType.SUICIDE_RISK: CrisisPattern(
        keywords=(
            "suicide",
            "suicidal",
            "kill myself",
            "end my life",
            "want to die",
        ),
        patterns=_compile(
            r"\bwant(s|ed)? to (die|kill myself|end (it all|my life))",
            r"\b(kill|hurt|harm)(ing)? myself\b",
            r"\b(life is not|life isn't|not) worth living\b",
            r"\bbetter off dead\b",
            r"\bend it all\b",
        ),
        label="Suicide risk",
    ),
    CrisisType.MENTAL_HEALTH: CrisisPattern(
        keywords=("depressed", "anxiety", "panic", "hopeless", "overwhelmed", "can't cope"),
        patterns=_compile(
            r"feel(ing)? so (depressed|hopeless|overwhelmed)",
            r"can'?t (cope|handle)",
        ),
        label="Mental health crisis",
    ),
    CrisisType.DOMESTIC_VIOLENCE: CrisisPattern(
        keywords=("hit me", "hurt me", "abusive", "scared of", "threatens me", "violent"),
        patterns=_compile(
            r"\b(he|she) (hits|hurts|threatens|beats) me\b",
            r"\bscared of (him|her)\b",
        ),
        label="Domestic violence",
    ),
    CrisisType.SUBSTANCE_ABUSE: CrisisPattern(
        keywords=("overdose", "too much", "can't stop", "addiction", "withdrawal", "drugs", "alcohol"),
        patterns=_compile(
            r"can'?t stop (drinking|using)",
            r"\btook too much\b",
        ),
        label="Substance abuse",
    ),
    CrisisType.VIOLENCE_THREAT: CrisisPattern(
        keywords=("hurt someone", "kill them", "make them pay", "revenge", "weapon"),
        patterns=_compile(
            r"\bwant to hurt\b",
            r"\bgoing to kill\b",
            r"\bmake (him|her|them) pay\b",
        ),
        label="Violence threat",
    ),
    CrisisType.CHILD_WELFARE: CrisisPattern(
        keywords=("my child", "my kids", "neglect", "child abuse", "left alone"),
        patterns=_compile(
            r"\b(hits|hurts|beats) (my|the) (child|kids?|son|daughter)\b",
            r"\b(child|kids?) (is|are) (not safe|in danger)\b",
        ),
        label="Child welfare concern",
    ),
    CrisisType.ELDER_ABUSE: CrisisPattern(
        keywords=("elder abuse", "my grandmother", "my grandfather", "nursing home", "caregiver"),
        patterns=_compile(
            r"\bcaregiver (hits|hurts|steals)\b",
            r"\b(grandmother|grandfather|elderly (mother|father|parent)) (is|was) (hurt|abused|neglected)\b",
        ),
        label="Elder abuse concern",
    ),
    CrisisType.GENERAL_EMERGENCY: CrisisPattern(
        keywords=("emergency", "ambulance", "bleeding", "can't breathe", "unconscious"),
        patterns=_compile(
            r"\bcall (911|an ambulance|the police)\b",
            r"\b(he|she|someone) (is|isn't|is not) (breathing|conscious|responding)\b",
        ),
        label="General emergency",
    ),
}


# Emotion lexicon; counts are substring occurrences in caller messages
EMOTION_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "anger": ("angry", "mad", "furious", "rage", "hate"),
    "fear": ("scared", "afraid", "terrified", "frightened", "worried"),
    "sadness": ("sad", "depressed", "crying", "tears", "heartbroken"),
    "anxiety": ("anxious", "nervous", "panic", "stressed", "overwhelmed"),
    "despair": ("hopeless", "helpless", "worthless", "pointless", "give up"),
}
