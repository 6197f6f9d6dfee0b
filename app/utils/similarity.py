from __future__ import annotations

import unicodedata
from typing import Optional

from rapidfuzz.distance import Levenshtein

EXACT_SCORE = 1.0
CONTAINMENT_SCORE = 0.9


def normalize_text(value: Optional[str]) -> str:
    if not value:
        return ""
    return unicodedata.normalize("NFC", str(value)).strip().lower()


def levenshtein_distance(a: str, b: str) -> int:
    return int(Levenshtein.distance(a, b))


class TextSimilarityMatcher:
    """
    Normalized string similarity in [0, 1].

    Exact (case-insensitive, trimmed) matches score 1.0, containment of one
    string in the other scores ``containment_score``, anything else scores
    ``1 - distance / longest``. Works on any script, including right-to-left
    text, since comparison is per code point with no collation.
    """

    def __init__(self, containment_score: float = CONTAINMENT_SCORE) -> None:
        self._containment_score = containment_score

    def similarity(self, a: Optional[str], b: Optional[str]) -> float:
        left = normalize_text(a)
        right = normalize_text(b)
        if not left or not right:
            return 0.0
        if left == right:
            return EXACT_SCORE
        if left in right or right in left:
            return self._containment_score

        distance = levenshtein_distance(left, right)
        return 1 - distance / max(len(left), len(right))


_default_matcher = TextSimilarityMatcher()


def text_similarity(a: Optional[str], b: Optional[str]) -> float:
    return _default_matcher.similarity(a, b)
