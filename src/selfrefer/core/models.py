"""Value objects shared by the record store, the search engine and the CLI.

Search records are plain frozen dataclasses so the ranking engine stays free of
any I/O or validation machinery. Records loaded from disk carry the richer
per-type metadata in ``Record``; ``Record.to_searchable()`` narrows them to the
engine's input shape.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple


# ============================================================================
# Enumerations
# ============================================================================

class ContentType(str, Enum):
    """Kind of markdown collection. Only the store and presentation layers use it."""
    PAGE = "page"
    PLAN = "plan"
    PATTERN = "pattern"
    SPEC = "spec"
    KNOWLEDGE = "knowledge"

    @property
    def directory(self) -> str:
        """Directory name under the content root (e.g. 'plans')."""
        return f"{self.value}s"

    @property
    def label(self) -> str:
        return _LABELS[self][0]

    @property
    def emoji(self) -> str:
        return _LABELS[self][1]


_LABELS = {
    ContentType.PAGE: ("Session Page", "📄"),
    ContentType.PLAN: ("Strategic Plan", "📋"),
    ContentType.PATTERN: ("Code Pattern", "🧩"),
    ContentType.SPEC: ("Project Specification", "📐"),
    ContentType.KNOWLEDGE: ("Domain Knowledge", "🧠"),
}


class PlanStatus(str, Enum):
    PLANNING = "Planning"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"


# ============================================================================
# Search value objects
# ============================================================================

@dataclass(frozen=True)
class SearchableItem:
    """One markdown-backed record as seen by the ranking engine.

    Attributes:
        id: Numeric prefix of the filename, 0 for unnumbered files
        title: First heading of the document or "Untitled"
        content: Full raw markdown
        last_updated: Modification timestamp of the backing file
        file: Filename relative to the collection directory
        category: Optional grouping (plan status, pattern language, ...)
        keywords: Optional declared keywords (never derived from content)
    """
    id: int
    title: str
    content: str
    last_updated: datetime
    file: str
    category: Optional[str] = None
    keywords: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class SearchScore:
    """Per-candidate score breakdown; ``final`` is capped at 1.0."""
    exact_match: float
    semantic_similarity: float
    keyword_relevance: float
    category_boost: float
    recency_score: float
    field_boost: float
    final: float

    def breakdown(self) -> Dict[str, float]:
        data = asdict(self)
        data.pop("final")
        return data


@dataclass
class EnhancedSearchResult:
    """A ranked search hit with the fields that matched and display highlights."""
    item: SearchableItem
    score: SearchScore
    matched_fields: List[str] = field(default_factory=list)
    match_highlights: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.item.id,
            "title": self.item.title,
            "file": self.item.file,
            "category": self.item.category,
            "score": round(self.score.final, 2),
            "matched_fields": list(self.matched_fields),
            "highlights": list(self.match_highlights),
            "score_breakdown": self.score.breakdown(),
        }


# ============================================================================
# Stored records
# ============================================================================

@dataclass(frozen=True)
class Record:
    """A markdown file loaded from a collection directory, with type metadata."""
    content_type: ContentType
    id: int
    title: str
    file: str
    path: Path
    content: str
    last_updated: datetime
    status: Optional[PlanStatus] = None
    category: Optional[str] = None
    language: Optional[str] = None
    keywords: Tuple[str, ...] = ()
    explanation: str = ""

    @property
    def search_category(self) -> Optional[str]:
        """Category the ranking engine should see for this record's type."""
        if self.content_type is ContentType.PLAN:
            return self.status.value if self.status else None
        if self.content_type is ContentType.PATTERN:
            return self.language
        return self.category

    @property
    def metadata_line(self) -> str:
        updated = self.last_updated.strftime("%Y-%m-%d")
        if self.content_type is ContentType.PLAN:
            return f"Status: {self.status.value if self.status else 'Unknown'} | Updated: {updated}"
        if self.content_type is ContentType.PATTERN:
            return f"Language: {self.language or 'Unknown'} | Updated: {updated}"
        if self.content_type in (ContentType.SPEC, ContentType.KNOWLEDGE):
            return f"Category: {self.category or 'Unknown'} | Updated: {updated}"
        return f"Created: {updated}"

    def to_searchable(self) -> SearchableItem:
        keywords = self.keywords if self.content_type is ContentType.PATTERN else None
        return SearchableItem(
            id=self.id,
            title=self.title,
            content=self.content,
            last_updated=self.last_updated,
            file=self.file,
            category=self.search_category,
            keywords=keywords,
        )


__all__ = [
    "ContentType",
    "PlanStatus",
    "SearchableItem",
    "SearchScore",
    "EnhancedSearchResult",
    "Record",
]
