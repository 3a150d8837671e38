"""Best-effort sentiment tagging for engagement snippets.

Sentiment is an enrichment field only; it never feeds ICP matching. The
classifier is injectable so a model-backed implementation can replace the
lexicon one without touching the engine.
"""

from __future__ import annotations

import re
from typing import Optional, Protocol


_POSITIVE_TERMS = (
    "love",
    "great",
    "awesome",
    "amazing",
    "excellent",
    "helpful",
    "insightful",
    "congrats",
    "congratulations",
    "thank",
    "thanks",
    "agree",
    "brilliant",
    "fantastic",
    "useful",
    "interested",
    "spot on",
    "well said",
    "so true",
    "count me in",
    "sign me up",
    "would love",
    "send it",
    "dm me",
)
_NEGATIVE_TERMS = (
    "disagree",
    "terrible",
    "awful",
    "hate",
    "wrong",
    "useless",
    "spam",
    "scam",
    "bad",
    "worst",
    "misleading",
    "nonsense",
    "not true",
    "overrated",
    "disappointed",
)
_NEGATIONS = ("not", "don't", "dont", "never", "no", "isn't", "isnt", "wasn't")
_MIN_CLASSIFIABLE_CHARS = 3
_TOKEN = re.compile(r"[a-z']+")


class SentimentClassifier(Protocol):
    def classify(self, text: Optional[str]) -> Optional[str]:
        """Return ``positive``, ``neutral``, ``negative`` or ``None`` when unknown."""


def _count_terms(lowered: str, tokens: list[str], terms: tuple[str, ...]) -> int:
    count = 0
    for term in terms:
        if " " in term:
            count += lowered.count(term)
            continue
        for index, token in enumerate(tokens):
            if token != term and not (token.startswith(term) and len(term) >= 5):
                continue
            window = tokens[max(0, index - 2) : index]
            count += -1 if any(negation in window for negation in _NEGATIONS) else 1
    return count


class KeywordSentimentClassifier:
    """Lexicon classifier: positive minus negative hits, with simple negation."""

    def classify(self, text: Optional[str]) -> Optional[str]:
        if text is None:
            return None
        lowered = text.strip().lower()
        if len(lowered) < _MIN_CLASSIFIABLE_CHARS:
            return "neutral"

        tokens = _TOKEN.findall(lowered)
        positive = _count_terms(lowered, tokens, _POSITIVE_TERMS)
        negative = _count_terms(lowered, tokens, _NEGATIVE_TERMS)
        balance = positive - negative
        if balance > 0:
            return "positive"
        if balance < 0:
            return "negative"
        return "neutral"


class NullSentimentClassifier:
    def classify(self, text: Optional[str]) -> Optional[str]:
        del text
        return None
