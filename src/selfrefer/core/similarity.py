"""String similarity primitives used by the search engines.

Jaro-Winkler comes from rapidfuzz; keyword containment is a plain word count.
Nothing in here raises: a failing distance computation degrades to keyword
containment.
"""

from typing import List

from rapidfuzz.distance import JaroWinkler

KEYWORD_DISCOUNT = 0.8


def query_words(query: str) -> List[str]:
    """Split a query on whitespace, dropping empty words."""
    return [word for word in query.split() if word]


def jaro_winkler(a: str, b: str) -> float:
    """Prefix-weighted Jaro-Winkler similarity in [0, 1] (case sensitive)."""
    return JaroWinkler.similarity(a, b)


def keyword_containment(query: str, text: str) -> float:
    """Fraction of query words that occur as substrings of ``text``."""
    words = query_words(query.lower())
    if not words:
        return 0.0
    text_lower = text.lower()
    hits = sum(1 for word in words if word in text_lower)
    return hits / len(words)


def similarity(query: str, text: str) -> float:
    """Fuzzy similarity of ``query`` against ``text`` in [0, 1].

    Returns the larger of the Jaro-Winkler similarity and a slightly
    discounted keyword containment score, so long texts that mention every
    query word still score well even though their edit distance is poor.
    """
    containment = keyword_containment(query, text)
    try:
        distance = jaro_winkler(query.lower(), text.lower())
    except Exception:
        return containment
    return max(distance, containment * KEYWORD_DISCOUNT)


__all__ = ["similarity", "keyword_containment", "jaro_winkler", "query_words"]
