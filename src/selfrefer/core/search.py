"""Multi-factor ranking engine for markdown records.

The engine scores a free-text query against in-memory ``SearchableItem``s and
returns ranked ``EnhancedSearchResult``s. It is pure and CPU bound: callers
load records from disk first and hand the full list to ``search``.

Scoring combines six sub-scores:
- exact match (title / category equality, content containment)
- semantic similarity (Jaro-Winkler on title and the first 200 content chars)
- keyword relevance (per-field word hits, declared keywords weighted highest)
- category boost
- recency (exponential decay over 30 days, small weight)
- field boost (short titles containing the query, title bigram overlap)

A numeric query that names an existing record id short-circuits everything and
returns that record alone.
"""

import math
import re
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Sequence, Set

from pydantic import BaseModel, ConfigDict, Field

from selfrefer.core.models import EnhancedSearchResult, SearchableItem, SearchScore
from selfrefer.core.similarity import jaro_winkler, query_words, similarity

LEADING_INT_PATTERN = re.compile(r"^\s*([+-]?\d+)")

CONTENT_PREVIEW_CHARS = 200
KEYWORDS_FIELD_WEIGHT = 2.5
RECENCY_DECAY_DAYS = 30.0
SNIPPET_RADIUS = 50

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Options
# ============================================================================

class FieldWeights(BaseModel):
    """Per-field multipliers for semantic and keyword scoring."""

    model_config = ConfigDict(frozen=True)

    id: float = Field(default=1.0, description="Field boost reported for ID matches")
    title: float = Field(default=0.8, ge=0.0)
    content: float = Field(default=0.6, ge=0.0)
    category: float = Field(default=0.4, ge=0.0)


class SearchOptions(BaseModel):
    """Immutable search configuration."""

    model_config = ConfigDict(frozen=True)

    min_score: float = Field(default=0.3, ge=0.0, description="Candidates below this are dropped")
    max_results: int = Field(default=50, ge=0, description="Maximum number of results returned")
    category_filter: str = Field(default="", description="Exact category to keep ('' disables)")
    field_weights: FieldWeights = Field(default_factory=FieldWeights)
    recency_weight: float = Field(default=0.05, ge=0.0)


# ============================================================================
# Helpers
# ============================================================================

def parse_query_id(query: str) -> Optional[int]:
    """Return the leading positive integer of ``query``, else None."""
    match = LEADING_INT_PATTERN.match(query)
    if not match:
        return None
    value = int(match.group(1))
    return value if value >= 1 else None


def bigrams(text: str) -> Set[str]:
    """Distinct 2-character shingles of the lowercased, whitespace-collapsed text."""
    normalized = re.sub(r"\s+", " ", text.lower())
    return {normalized[i:i + 2] for i in range(len(normalized) - 1)}


def bigram_overlap(query: str, text: str) -> float:
    """Fraction of the query's bigrams that also occur in ``text``."""
    if len(query) < 2:
        return 0.0
    query_grams = bigrams(query)
    text_grams = bigrams(text)
    if not text_grams or not query_grams:
        return 0.0
    matches = sum(1 for gram in query_grams if gram in text_grams)
    return matches / len(query_grams)


def _as_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ============================================================================
# Engine
# ============================================================================

class SearchEngine:
    """Scores and ranks ``SearchableItem``s against a query.

    The engine keeps no per-call state; one instance can serve any number of
    independent searches.

    Attributes:
        options: Frozen search configuration
    """

    def __init__(self, options: Optional[SearchOptions] = None, clock: Optional[Clock] = None):
        self.options = options or SearchOptions()
        self._clock = clock or _utcnow

    # ------------------------------------------------------------------
    # Query engine
    # ------------------------------------------------------------------

    def search(self, query: str, items: Sequence[SearchableItem]) -> List[EnhancedSearchResult]:
        """Rank ``items`` against ``query``.

        Returns:
            Results with ``score.final >= min_score``, best first, at most
            ``max_results`` long. An ID hit returns exactly one result.
        """
        id_match = self.try_id_search(query, items)
        if id_match is not None:
            return [id_match]

        normalized = query.lower().strip()
        category_filter = self.options.category_filter
        results: List[EnhancedSearchResult] = []

        for item in items:
            if category_filter and item.category != category_filter:
                continue

            score = self.score(normalized, item)
            if score.final < self.options.min_score:
                continue

            results.append(
                EnhancedSearchResult(
                    item=item,
                    score=score,
                    matched_fields=self.matched_fields(normalized, item),
                    match_highlights=self.highlights(normalized, item),
                )
            )

        # Equal scores fall back to the higher (newer) id.
        results.sort(key=lambda r: (r.score.final, r.item.id), reverse=True)
        return results[: self.options.max_results]

    def try_id_search(
        self, query: str, items: Iterable[SearchableItem]
    ) -> Optional[EnhancedSearchResult]:
        """Return the record whose id the query names, scored as a perfect hit."""
        id_num = parse_query_id(query)
        if id_num is None:
            return None

        item = next((candidate for candidate in items if candidate.id == id_num), None)
        if item is None:
            return None

        perfect = SearchScore(
            exact_match=1.0,
            semantic_similarity=1.0,
            keyword_relevance=1.0,
            category_boost=0.0,
            recency_score=self.recency_score(item.last_updated),
            field_boost=self.options.field_weights.id,
            final=1.0,
        )
        return EnhancedSearchResult(
            item=item,
            score=perfect,
            matched_fields=["id"],
            match_highlights=[f"ID: {id_num}"],
        )

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def score(self, query: str, item: SearchableItem) -> SearchScore:
        """Compute the full score breakdown for an already normalized query."""
        exact = self.exact_match_score(query, item)
        semantic = self.semantic_similarity(query, item)
        keyword = self.keyword_relevance(query, item)
        category = self.category_boost(query, item)
        recency = self.recency_score(item.last_updated)
        field_boost = self.field_boost(query, item)

        base = (
            exact * 0.4
            + semantic * 0.25
            + keyword * 0.2
            + category * 0.1
            + recency
            + field_boost
        )

        agreeing = sum(1 for value in (exact, semantic, keyword) if value > 0.1)
        multiplier = 1.1 if agreeing >= 2 else 1.0

        return SearchScore(
            exact_match=exact,
            semantic_similarity=semantic,
            keyword_relevance=keyword,
            category_boost=category,
            recency_score=recency,
            field_boost=field_boost,
            final=min(1.0, base * multiplier),
        )

    def exact_match_score(self, query: str, item: SearchableItem) -> float:
        title_match = 0.95 if item.title.lower() == query else 0.0
        category_match = 0.8 if item.category is not None and item.category.lower() == query else 0.0
        content_match = 0.7 if query in item.content.lower() else 0.0
        return max(title_match, category_match, content_match)

    def semantic_similarity(self, query: str, item: SearchableItem) -> float:
        weights = self.options.field_weights
        try:
            title_similarity = jaro_winkler(query, item.title.lower())
            content_similarity = jaro_winkler(
                query, item.content.lower()[:CONTENT_PREVIEW_CHARS]
            )
        except Exception:
            return 0.0
        return max(title_similarity * weights.title, content_similarity * weights.content)

    def keyword_relevance(self, query: str, item: SearchableItem) -> float:
        words = query_words(query)
        if not words:
            return 0.0

        weights = self.options.field_weights
        fields = (
            (item.title, weights.title),
            (item.content, weights.content),
            (item.category or "", weights.category),
            (" ".join(item.keywords) if item.keywords else "", KEYWORDS_FIELD_WEIGHT),
        )

        total = 0.0
        match_count = 0
        for text, weight in fields:
            field_text = text.lower()
            field_score = 0.0
            for word in words:
                if word not in field_text:
                    continue
                whole_word = re.search(rf"\b{re.escape(word)}\b", field_text) is not None
                field_score += 1.0 if whole_word else 0.7
                match_count += 1
            total += (field_score / len(words)) * weight

        completeness = match_count / (len(words) * len(fields))
        return (total / len(fields)) * (1 + completeness * 0.2)

    def category_boost(self, query: str, item: SearchableItem) -> float:
        if item.category is None:
            return 0.0
        category = item.category.lower()
        if category == query:
            return 0.2
        if query in category:
            return 0.1
        return 0.0

    def recency_score(self, last_updated: datetime) -> float:
        elapsed = _as_aware(self._clock()) - _as_aware(last_updated)
        # future timestamps count as "now"
        days = max(0.0, elapsed.total_seconds() / 86400)
        return math.exp(-days / RECENCY_DECAY_DAYS) * self.options.recency_weight

    def field_boost(self, query: str, item: SearchableItem) -> float:
        boost = 0.0
        if query in item.title.lower():
            boost += max(0.1, 1.0 - len(item.title) / 100) * 0.2
        boost += bigram_overlap(query, item.title) * 0.1
        return boost

    # ------------------------------------------------------------------
    # Annotation
    # ------------------------------------------------------------------

    @staticmethod
    def matched_fields(query: str, item: SearchableItem) -> List[str]:
        """Fields whose text contains the query as a substring."""
        query = query.lower()
        matches = []
        if query in item.title.lower():
            matches.append("title")
        if query in item.content.lower():
            matches.append("content")
        if item.category is not None and query in item.category.lower():
            matches.append("category")
        return matches

    @staticmethod
    def highlights(query: str, item: SearchableItem) -> List[str]:
        """Title highlight plus one content snippet around the first matching word."""
        query = query.lower()
        highlights = []
        if query in item.title.lower():
            highlights.append(f'Title: "{item.title}"')

        content_lower = item.content.lower()
        for word in query_words(query):
            index = content_lower.find(word)
            if index == -1:
                continue
            start = max(0, index - SNIPPET_RADIUS)
            end = min(len(item.content), index + len(word) + SNIPPET_RADIUS)
            highlights.append(f"...{item.content[start:end]}...")
            break

        return highlights


# ============================================================================
# Simple similarity search
# ============================================================================

def similarity_search(
    query: str,
    items: Sequence[SearchableItem],
    threshold: float = 0.3,
    content_weight: float = 0.7,
) -> List[EnhancedSearchResult]:
    """Lightweight title/content similarity ranking.

    Used for collections where the multi-factor engine is overkill. Keeps
    items scoring strictly above ``threshold``; scores are rounded to two
    decimals. ID queries short-circuit exactly like ``SearchEngine``.
    """
    id_num = parse_query_id(query)
    if id_num is not None:
        item = next((candidate for candidate in items if candidate.id == id_num), None)
        if item is not None:
            perfect = SearchScore(
                exact_match=1.0,
                semantic_similarity=1.0,
                keyword_relevance=1.0,
                category_boost=0.0,
                recency_score=0.0,
                field_boost=0.0,
                final=1.0,
            )
            return [EnhancedSearchResult(item, perfect, ["id"], [f"ID: {id_num}"])]

    normalized = query.lower().strip()
    results: List[EnhancedSearchResult] = []
    for item in items:
        title_score = similarity(query, item.title)
        content_score = similarity(query, item.content) * content_weight
        value = max(title_score, content_score)
        if value <= threshold:
            continue

        score = SearchScore(
            exact_match=0.0,
            semantic_similarity=title_score,
            keyword_relevance=content_score,
            category_boost=0.0,
            recency_score=0.0,
            field_boost=0.0,
            final=round(value, 2),
        )
        results.append(
            EnhancedSearchResult(
                item=item,
                score=score,
                matched_fields=SearchEngine.matched_fields(normalized, item),
                match_highlights=SearchEngine.highlights(normalized, item),
            )
        )

    results.sort(key=lambda r: (r.score.final, r.item.id), reverse=True)
    return results


__all__ = [
    "FieldWeights",
    "SearchOptions",
    "SearchEngine",
    "similarity_search",
    "parse_query_id",
    "bigram_overlap",
]
