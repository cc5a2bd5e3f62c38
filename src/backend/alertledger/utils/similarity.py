"""
Fuzzy matching for merchant names.

Bank alerts spell the same merchant many ways ("SBUX", "STARBUCKS COFFEE",
"Starbucks India Pvt Ltd"). Names are normalized first, then compared by
containment (plain substring or abbreviation) and finally by normalized
Levenshtein similarity.
"""

import re
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from rapidfuzz.distance import Levenshtein

DEFAULT_THRESHOLD = 0.75
CONTAINS_SIMILARITY = 0.85

_NON_ALNUM = re.compile(r'[^a-z0-9\s]')
_COMMON_WORDS = re.compile(r'\b(?:the|and|pvt|ltd|limited|inc|corp|llc)\b')
_WHITESPACE = re.compile(r'\s+')
# Sound-alike endings that abbreviations collapse ("bucks" → "bux")
_PHONETIC_X = re.compile(r'cks|ks|cs')


@dataclass(frozen=True)
class SimilarityResult:
    match: bool
    similarity: float


def normalize_merchant_name(name: Optional[str]) -> str:
    """
    Normalize merchant name for comparison.

    Examples:
        "Starbucks India Pvt. Ltd." -> "starbucks india"
        "The Coffee & Tea Co" -> "coffee tea co"
    """
    if not name:
        return ''

    normalized = _NON_ALNUM.sub('', name.lower())
    normalized = _COMMON_WORDS.sub('', normalized)
    return _WHITESPACE.sub(' ', normalized).strip()


def _compact(normalized: str) -> str:
    return _PHONETIC_X.sub('x', normalized.replace(' ', ''))


def _is_abbreviation(short: str, long: str) -> bool:
    """True when `short` reads as an abbreviation of `long` (SBUX → Starbucks, AMZN → Amazon)."""
    if ' ' in short or len(short) < 3:
        return False

    short_c, long_c = _compact(short), _compact(long)
    if len(short_c) > len(long_c) - 2 or short_c[0] != long_c[0]:
        return False

    chars = iter(long_c)
    return all(ch in chars for ch in short_c)


def contains(normalized1: str, normalized2: str) -> bool:
    """Either name contains the other, literally or as an abbreviation."""
    if not normalized1 or not normalized2:
        return False
    if normalized1 in normalized2 or normalized2 in normalized1:
        return True

    short, long = sorted((normalized1, normalized2), key=len)
    return _is_abbreviation(short, long)


def similarity_ratio(s1: str, s2: str) -> float:
    """Normalized Levenshtein similarity: 1.0 identical, 0.0 completely different."""
    if not s1 and not s2:
        return 1.0
    return Levenshtein.normalized_similarity(s1, s2)


def fuzzy_match(name1: str, name2: str, threshold: float = DEFAULT_THRESHOLD) -> SimilarityResult:
    """Check whether two merchant names refer to the same merchant."""
    normalized1 = normalize_merchant_name(name1)
    normalized2 = normalize_merchant_name(name2)

    if not normalized1 or not normalized2:
        return SimilarityResult(match=False, similarity=0.0)

    if normalized1 == normalized2:
        return SimilarityResult(match=True, similarity=1.0)

    if contains(normalized1, normalized2):
        return SimilarityResult(
            match=CONTAINS_SIMILARITY >= threshold,
            similarity=CONTAINS_SIMILARITY
        )

    similarity = similarity_ratio(normalized1, normalized2)
    return SimilarityResult(match=similarity >= threshold, similarity=similarity)


def find_best_match(
    search_name: str,
    names: Iterable[str],
    threshold: float = DEFAULT_THRESHOLD
) -> Optional[Tuple[str, float]]:
    """
    Find the best matching name from a list.

    Returns:
        (name, similarity) of the best match at or above threshold, or None
    """
    best_name = None
    best_similarity = 0.0

    for name in names:
        result = fuzzy_match(search_name, name, threshold)
        if result.match and result.similarity > best_similarity:
            best_name = name
            best_similarity = result.similarity

    if best_name is None:
        return None
    return best_name, best_similarity
