"""Metadata extraction from markdown records.

All helpers are pure: they take the raw text (and sometimes the filename) and
return plain values. Front-matter is parsed with python-frontmatter.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, List, Optional

import frontmatter

from selfrefer.core.models import PlanStatus

UNTITLED = "Untitled"
DEFAULT_CATEGORY = "general"
DEFAULT_LANGUAGE = "text"

ID_PREFIX_PATTERN = re.compile(r"^(\d+)-")
HEADING_MARKER_PATTERN = re.compile(r"^#+\s*")
STATUS_PATTERN = re.compile(r"\*\*Status\*\*:\s*\[(Planning|In Progress|Completed)\]")
CATEGORY_PATTERN = re.compile(r"\*\*Category\*\*:\s*(.+)")
CODE_FENCE_PATTERN = re.compile(r"```([a-zA-Z]+)")
FILENAME_LANGUAGE_PATTERN = re.compile(r"-([a-zA-Z]+)\.(md|txt)$")


@dataclass
class PatternMetadata:
    """Pattern metadata declared in front-matter or inferred from the body."""
    title: str
    language: str
    keywords: List[str] = field(default_factory=list)
    explanation: str = ""


def extract_title(content: str) -> str:
    """Return the first heading of ``content`` without its ``#`` markers."""
    for line in content.split("\n"):
        stripped = line.strip()
        if stripped.startswith("#"):
            return HEADING_MARKER_PATTERN.sub("", stripped).strip()
    return UNTITLED


def parse_id(filename: str) -> int:
    """Numeric ``NNN-`` filename prefix, or 0 when the file is unnumbered."""
    match = ID_PREFIX_PATTERN.match(filename)
    return int(match.group(1)) if match else 0


def extract_status(content: str) -> PlanStatus:
    match = STATUS_PATTERN.search(content)
    if not match:
        return PlanStatus.PLANNING
    return PlanStatus(match.group(1))


def extract_category(content: str, path: Optional[Path] = None) -> str:
    """Category from a ``**Category**:`` line, else the parent directory name."""
    match = CATEGORY_PATTERN.search(content)
    if match:
        return match.group(1).strip()
    if path is not None and path.parent.name:
        return path.parent.name
    return DEFAULT_CATEGORY


def _load_front_matter(content: str) -> dict[str, Any]:
    try:
        return dict(frontmatter.loads(content).metadata or {})
    except Exception:
        # Malformed YAML is treated as "no front-matter".
        return {}


def _split_keywords(raw: Any) -> List[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        parts: Iterable[Any] = raw.split(",")
    elif isinstance(raw, (list, tuple)):
        parts = raw
    else:
        parts = [raw]
    return [str(part).strip() for part in parts if str(part).strip()]


def parse_pattern_metadata(content: str, filename: str) -> PatternMetadata:
    """Parse a pattern's title, language, keywords and explanation.

    Language priority: front-matter, first fenced code block, ``-lang.md``
    filename suffix, then ``text``.
    """
    metadata = _load_front_matter(content)

    language = str(metadata.get("language") or "").strip().lower()
    if not language:
        fence = CODE_FENCE_PATTERN.search(content)
        if fence:
            language = fence.group(1).lower()
    if not language:
        suffix = FILENAME_LANGUAGE_PATTERN.search(filename)
        if suffix:
            language = suffix.group(1).lower()

    return PatternMetadata(
        title=extract_title(content),
        language=language or DEFAULT_LANGUAGE,
        keywords=_split_keywords(metadata.get("keywords")),
        explanation=str(metadata.get("explanation") or "").strip(),
    )


def sanitize_filename(title: str) -> str:
    """Slug used in record filenames: lowercase, dashes, ``[a-z0-9-]`` only."""
    slug = re.sub(r"\s+", "-", title.lower())
    return re.sub(r"[^a-z0-9-]", "", slug)


def next_id(existing_ids: Iterable[int]) -> int:
    return max(existing_ids, default=0) + 1


def format_filename(record_id: int, title: str) -> str:
    return f"{record_id:03d}-{sanitize_filename(title)}.md"


def next_filename(existing_ids: Iterable[int], title: str) -> str:
    """Filename for a new record: ``NNN-slug.md`` with the next free id."""
    return format_filename(next_id(existing_ids), title)


__all__ = [
    "PatternMetadata",
    "extract_title",
    "parse_id",
    "extract_status",
    "extract_category",
    "parse_pattern_metadata",
    "sanitize_filename",
    "next_id",
    "format_filename",
    "next_filename",
]
