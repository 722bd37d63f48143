"""Text screening for transcripts, comments and chat messages.

Screening runs in two stages. An allow-list of innocuous conversational text
(greetings, small talk) short-circuits to "not flagged" so that short friendly
clips are never rejected by an over-eager scorer. Everything else is scored by
three independent scorers and the highest score wins:

- severe keywords (profanity, slurs, threats, hard drugs, explicit content)
- spam and clickbait patterns
- a weighted lexicon of milder insults and bullying phrases

The allow-list only matches the *whole* normalized text, so a greeting followed
by a slur falls through to the scorers and is flagged.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass

from media_gate.core.settings import settings

logger = logging.getLogger(__name__)

CONTEXT_VIDEO = "video"
CONTEXT_COMMENT = "comment"
CONTEXT_CHAT = "chat"
SCREENING_CONTEXTS = (CONTEXT_VIDEO, CONTEXT_COMMENT, CONTEXT_CHAT)

MAX_INNOCENT_VOCABULARY_WORDS = 8
SEVERE_KEYWORD_SCORE = 1.0
SPAM_PATTERN_SCORE = 0.75

_PUNCTUATION = re.compile(r"[.,!?;:]")
_WHITESPACE = re.compile(r"\s+")

INNOCENT_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern)
    for pattern in (
        r"^(oh\s+)?(hello|hi|hey)(\s+there)?(\s+world)?$",
        r"^(good\s+)?(morning|afternoon|evening|night)$",
        r"^how\s+are\s+you(\s+doing)?$",
        r"^nice\s+to\s+(meet|see)\s+you$",
        r"^take\s+care$",
        r"^see\s+you\s+(later|soon)$",
        r"^what['’]?s\s+up$",
        r"^how['’]?s\s+it\s+going$",
        r"^(hello\s+)+(hi\s+)*how\s+are\s+you(\s+doing)?$",
        r"^(oh\s+)*(hello|hi|hey)(\s+there)?(\s+world)?(\s+how\s+are\s+you)?$",
        r"^(hello|hi|hey|thanks|thank\s+you|yes|ok|okay|sure|great|good|nice|cool|awesome|wonderful)$",
        r"^(it['’]?s\s+)?(beautiful|nice|lovely|great|good)\s+(day|weather)$",
        r"^(have\s+a\s+)?(good|great|nice|wonderful)\s+(day|time|weekend)$",
    )
)

INNOCENT_VOCABULARY = frozenset(
    {
        "hello", "hi", "hey", "oh", "there", "world", "how", "are", "you", "doing",
        "good", "morning", "afternoon", "evening", "night", "nice", "to", "meet",
        "see", "take", "care", "later", "soon", "what", "whats", "up", "hows", "it",
        "going", "thanks", "thank", "yes", "ok", "okay", "sure", "great", "cool",
        "awesome", "wonderful", "beautiful", "lovely", "day", "weather", "have", "a",
        "time", "weekend", "the", "is", "its",
    }
)

SEVERE_KEYWORDS: tuple[str, ...] = (
    # profanity
    "fuck", "fucking", "shit", "shitting", "bitch", "asshole", "cunt", "dickhead",
    # slurs
    "nigger", "faggot", "retard",
    # threats and violence
    "kill yourself", "die bitch", "nazi", "terrorist", "bomb threat", "school shooter",
    "murder threat",
    # hard drugs
    "cocaine", "heroin", "meth", "crack cocaine",
    # explicit sexual content
    "porn", "pornography", "xxx", "explicit sex",
    # scams
    "get rich quick", "make money fast",
)

_SEVERE_KEYWORD_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = tuple(
    (keyword, re.compile(rf"\b{re.escape(keyword)}\b")) for keyword in SEVERE_KEYWORDS
)

SPAM_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\b(free|easy|quick)\s+(money|cash|profit)\b"),
    re.compile(r"\b(click\s+here|buy\s+now|limited\s+time)\b"),
)

TOXIC_TERM_WEIGHTS: dict[str, float] = {
    "idiot": 0.35,
    "moron": 0.35,
    "stupid": 0.3,
    "dumb": 0.25,
    "loser": 0.35,
    "pathetic": 0.35,
    "worthless": 0.4,
    "ugly": 0.25,
    "trash": 0.25,
    "shut up": 0.3,
    "hate you": 0.45,
    "nobody likes you": 0.5,
    "go away": 0.15,
}

_TOXIC_TERM_PATTERNS: tuple[tuple[re.Pattern[str], float], ...] = tuple(
    (re.compile(rf"\b{re.escape(term)}\b"), weight) for term, weight in TOXIC_TERM_WEIGHTS.items()
)


@dataclass(frozen=True)
class ScreeningResult:
    """Outcome of screening one piece of text."""

    flagged: bool
    reason: str | None = None
    score: float = 0.0
    matched_allow_list: bool = False


def normalize_text(text: str) -> str:
    """Lowercase, turn sentence punctuation into spaces and collapse whitespace."""
    lowered = _PUNCTUATION.sub(" ", text.lower())
    return _WHITESPACE.sub(" ", lowered).strip()


def is_innocuous(normalized: str) -> bool:
    """Return True if the whole normalized text is harmless small talk."""
    if any(pattern.match(normalized) for pattern in INNOCENT_PATTERNS):
        return True
    words = normalized.split(" ")
    return len(words) <= MAX_INNOCENT_VOCABULARY_WORDS and all(
        word in INNOCENT_VOCABULARY for word in words
    )


def _severe_keyword(normalized: str) -> str | None:
    for keyword, pattern in _SEVERE_KEYWORD_PATTERNS:
        if pattern.search(normalized):
            return keyword
    return None


def _toxicity_score(normalized: str) -> float:
    total = sum(weight for pattern, weight in _TOXIC_TERM_PATTERNS if pattern.search(normalized))
    return min(1.0, round(total, 4))


class TextScreener:
    """Allow-list plus keyword/toxicity scoring with context-specific thresholds."""

    def __init__(
        self,
        threshold: float | None = None,
        video_threshold: float | None = None,
    ) -> None:
        self.threshold = settings.text_toxicity_threshold if threshold is None else threshold
        self.video_threshold = (
            settings.video_text_toxicity_threshold if video_threshold is None else video_threshold
        )

    def threshold_for(self, context: str) -> float:
        # Video transcripts are screened more strictly than typed text.
        if context == CONTEXT_VIDEO:
            return min(self.threshold, self.video_threshold)
        return self.threshold

    def screen(self, text: str | None, context: str = CONTEXT_COMMENT) -> ScreeningResult:
        normalized = normalize_text(text or "")
        if not normalized:
            return ScreeningResult(flagged=False)

        if is_innocuous(normalized):
            logger.debug("Text matched innocuous allow-list: %r", normalized)
            return ScreeningResult(flagged=False, matched_allow_list=True)

        keyword = _severe_keyword(normalized)
        if keyword is not None:
            return ScreeningResult(
                flagged=True,
                reason=f'Contains inappropriate language: "{keyword}"',
                score=SEVERE_KEYWORD_SCORE,
            )

        threshold = self.threshold_for(context)
        if any(pattern.search(normalized) for pattern in SPAM_PATTERNS):
            return ScreeningResult(
                flagged=SPAM_PATTERN_SCORE >= threshold,
                reason="Contains potentially inappropriate or spam content",
                score=SPAM_PATTERN_SCORE,
            )

        score = _toxicity_score(normalized)
        if score >= threshold:
            return ScreeningResult(flagged=True, reason="Toxic language detected", score=score)
        return ScreeningResult(flagged=False, score=score)

    def screen_many(
        self, texts: Iterable[str | None], context: str = CONTEXT_COMMENT
    ) -> list[ScreeningResult]:
        """Screen a batch of comment or chat texts in order."""
        return [self.screen(text, context) for text in texts]


class _TextScreenerSingleton:
    """Singleton wrapper for TextScreener."""

    _instance: TextScreener | None = None

    @classmethod
    def get_instance(cls) -> TextScreener:
        if cls._instance is None:
            cls._instance = TextScreener()
        return cls._instance


def get_text_screener() -> TextScreener:
    """Return the process-wide text screener."""
    return _TextScreenerSingleton.get_instance()
