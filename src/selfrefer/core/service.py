"""Content managers: one per record type, built on the store and search engine.

Managers hold no state besides their collaborators; every call rescans the
type directory, so edits made outside the tool are always visible.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

import frontmatter

from selfrefer.core.agents import AgentSelection, sync_pattern_table
from selfrefer.core.errors import ContentNotFoundError, StoreError
from selfrefer.core.extraction import format_filename, next_id
from selfrefer.core.models import ContentType, EnhancedSearchResult, PlanStatus, Record
from selfrefer.core.search import SearchEngine, SearchOptions, parse_query_id, similarity_search
from selfrefer.core.store import ContentStore

logger = logging.getLogger(__name__)

STATUS_LINE_PATTERN = re.compile(r"\*\*Status\*\*: \[.*\]")
LAST_UPDATED_PATTERN = re.compile(r"\*\*Last Updated\*\*: .+")

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ContentManager:
    """Shared list / lookup / create behaviour for every content type.

    Subclasses set ``content_type`` and ``kind`` and override ``search`` or
    ``render_new`` where their type differs.
    """

    content_type: ContentType = ContentType.PAGE
    kind: str = "Record"
    newest_first: bool = True
    keyword_lookup: bool = True

    def __init__(
        self,
        store: ContentStore,
        options: Optional[SearchOptions] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.store = store
        self.options = options or SearchOptions()
        self.clock = clock or _utcnow

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list(self) -> List[Record]:
        records = self.store.load(self.content_type)
        return sorted(records, key=lambda r: r.id, reverse=self.newest_first)

    def engine(self, options: Optional[SearchOptions] = None) -> SearchEngine:
        return SearchEngine(options or self.options, clock=self.clock)

    def search(self, query: str) -> List[EnhancedSearchResult]:
        items = [record.to_searchable() for record in self.list() if record.content]
        return self.engine().search(query, items)

    def get(self, reference: str) -> Record:
        """Find a record by numeric id or, where allowed, by best search match."""
        records = self.list()

        record_id = parse_query_id(reference)
        if record_id is not None:
            match = next((r for r in records if r.id == record_id), None)
            if match is not None:
                return match

        if self.keyword_lookup:
            results = self.search(reference)
            if results:
                best = results[0].item.file
                match = next((r for r in records if r.file == best), None)
                if match is not None:
                    return match

        raise ContentNotFoundError(self.kind, reference)

    def view(self, reference: str) -> str:
        return self.get(reference).content

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def render_new(self, title: str, content: str) -> str:
        return f"# {title}\n\n{content}\n"

    def _create(self, title: str, text: str) -> Tuple[int, str]:
        record_id = next_id(r.id for r in self.store.load(self.content_type))
        filename = format_filename(record_id, title)
        self.store.write(self.content_type, filename, text)
        logger.info("Created %s %03d (%s)", self.content_type.value, record_id, filename)
        return record_id, filename


# ============================================================================
# Pages
# ============================================================================

class PageManager(ContentManager):
    """Session pages: numbered snapshots of a working session."""

    content_type = ContentType.PAGE
    kind = "Page"
    keyword_lookup = False

    def create(self, title: str, content: str) -> int:
        record_id, _ = self._create(title, self.render_new(title, content))
        return record_id


# ============================================================================
# Plans
# ============================================================================

class PlanManager(ContentManager):
    """Strategic plans with a ``**Status**: [..]`` line used as category."""

    content_type = ContentType.PLAN
    kind = "Plan"

    def create(self, title: str, content: str) -> int:
        record_id, _ = self._create(title, self.render_new(title, content))
        return record_id

    def edit(self, reference: str, full_content: str) -> Record:
        """Replace the whole plan document."""
        record = self.get(reference)
        self.store.write(self.content_type, record.file, full_content)
        return record

    def resolve(self, reference: str) -> Record:
        """Mark the plan completed and stamp ``**Last Updated**``."""
        record = self.get(reference)
        status_line = f"**Status**: [{PlanStatus.COMPLETED.value}]"

        if STATUS_LINE_PATTERN.search(record.content):
            updated = STATUS_LINE_PATTERN.sub(lambda _: status_line, record.content, count=1)
        else:
            head, sep, rest = record.content.partition("\n")
            updated = f"{head}\n\n{status_line}\n{rest}" if sep else f"{head}\n\n{status_line}\n"

        stamp = f"**Last Updated**: {self.clock().isoformat()}"
        updated = LAST_UPDATED_PATTERN.sub(lambda _: stamp, updated, count=1)

        self.store.write(self.content_type, record.file, updated)
        return record

    def delete(self, reference: str) -> Record:
        record = self.get(reference)
        self.store.delete(self.content_type, record.file)
        return record


# ============================================================================
# Patterns
# ============================================================================

class PatternManager(ContentManager):
    """Reusable code patterns with front-matter metadata.

    Creating a pattern also refreshes the pattern table in the selected
    agent's prompt file under ``project_root``.
    """

    content_type = ContentType.PATTERN
    kind = "Pattern"
    newest_first = False

    def __init__(
        self,
        store: ContentStore,
        project_root: Path,
        options: Optional[SearchOptions] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        super().__init__(store, options=options, clock=clock)
        self.project_root = Path(project_root)

    def search(self, query: str, language: Optional[str] = None) -> List[EnhancedSearchResult]:
        records = self.list()
        if language:
            records = [r for r in records if r.language == language.lower()]
        items = [record.to_searchable() for record in records if record.content]
        return self.engine().search(query, items)

    def create(
        self,
        name: str,
        content: str,
        keywords: Sequence[str] = (),
        language: str = "",
        explanation: str = "",
    ) -> str:
        """Write a new pattern with its metadata as front-matter; returns the filename."""
        try:
            post = frontmatter.loads(content)
        except Exception as exc:
            raise StoreError(f"Invalid front-matter in pattern '{name}': {exc}") from exc
        post.metadata["keywords"] = ", ".join(k.strip() for k in keywords if k.strip())
        post.metadata["language"] = language
        post.metadata["explanation"] = explanation

        _, filename = self._create(name, frontmatter.dumps(post) + "\n")
        self.sync_prompt_table()
        return filename

    def sync_prompt_table(self) -> AgentSelection:
        return sync_pattern_table(self.list(), self.store.content_dir, self.project_root)


# ============================================================================
# Knowledge and specs
# ============================================================================

class _CategorizedManager(ContentManager):
    """Entries carrying a ``**Category**:`` line."""

    def list(self, category: Optional[str] = None) -> List[Record]:
        records = super().list()
        if category:
            records = [r for r in records if r.category == category]
        return records

    def render_new(self, title: str, content: str, category: str = "general") -> str:
        return f"# {title}\n\n**Category**: {category}\n\n{content}\n"

    def create(self, title: str, content: str, category: str = "general") -> Tuple[int, str]:
        return self._create(title, self.render_new(title, content, category))


class KnowledgeManager(_CategorizedManager):
    """Domain knowledge entries, ranked with the lightweight similarity search."""

    content_type = ContentType.KNOWLEDGE
    kind = "Knowledge entry"

    def search(self, query: str, category: Optional[str] = None) -> List[EnhancedSearchResult]:
        items = [record.to_searchable() for record in self.list(category) if record.content]
        return similarity_search(query, items, threshold=self.options.min_score)

    def render_new(self, title: str, content: str, category: str = "general") -> str:
        body = super().render_new(title, content, category)
        return f"{body}\n---\n**Created**: {self.clock().isoformat()}\n"


class SpecManager(_CategorizedManager):
    """Project specifications, ranked with the full engine and a category filter."""

    content_type = ContentType.SPEC
    kind = "Spec entry"

    def search(self, query: str, category: Optional[str] = None) -> List[EnhancedSearchResult]:
        items = [record.to_searchable() for record in self.list(category) if record.content]
        options = self.options.model_copy(update={"category_filter": category or ""})
        return self.engine(options).search(query, items)


__all__ = [
    "ContentManager",
    "PageManager",
    "PlanManager",
    "PatternManager",
    "KnowledgeManager",
    "SpecManager",
]
