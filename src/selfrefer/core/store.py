"""Filesystem store for markdown records.

Each content type owns one flat directory under the content root
(``<content_dir>/pages``, ``<content_dir>/plans``, ...). Records are re-read on
every ``load`` call; nothing is cached between calls.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import List

from selfrefer.core.errors import StoreError
from selfrefer.core.extraction import (
    extract_category,
    extract_status,
    extract_title,
    parse_id,
    parse_pattern_metadata,
)
from selfrefer.core.models import ContentType, Record

logger = logging.getLogger(__name__)


def _timestamp(stat: os.stat_result, prefer_birth: bool) -> datetime:
    # st_birthtime only exists on some platforms
    value = getattr(stat, "st_birthtime", None) if prefer_birth else None
    if value is None:
        value = stat.st_mtime
    return datetime.fromtimestamp(value, tz=timezone.utc)


class ContentStore:
    """Reads and writes the markdown files of every content type."""

    def __init__(self, content_dir: Path) -> None:
        self.content_dir = Path(content_dir)

    def directory(self, content_type: ContentType) -> Path:
        return self.content_dir / content_type.directory

    def ensure_dir(self, content_type: ContentType) -> Path:
        """Create the type directory if needed and return it."""
        path = self.directory(content_type)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreError(f"Cannot create directory {path}: {exc}") from exc
        return path

    def path_for(self, content_type: ContentType, filename: str) -> Path:
        return self.directory(content_type) / filename

    def load(self, content_type: ContentType) -> List[Record]:
        """Load every ``*.md`` file of ``content_type`` (non-recursive)."""
        directory = self.ensure_dir(content_type)
        records: List[Record] = []
        for path in sorted(directory.glob("*.md")):
            if not path.is_file():
                continue
            records.append(self._read_record(content_type, path))
        logger.debug("Loaded %d %s records from %s", len(records), content_type.value, directory)
        return records

    def _read_record(self, content_type: ContentType, path: Path) -> Record:
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
            stat = path.stat()
        except OSError as exc:
            raise StoreError(f"Cannot read {path}: {exc}") from exc

        filename = path.name
        common = dict(
            content_type=content_type,
            id=parse_id(filename),
            title=extract_title(content),
            file=filename,
            path=path,
            content=content,
            last_updated=_timestamp(stat, prefer_birth=content_type is ContentType.PAGE),
        )

        if content_type is ContentType.PLAN:
            return Record(**common, status=extract_status(content))
        if content_type is ContentType.PATTERN:
            metadata = parse_pattern_metadata(content, filename)
            return Record(
                **common,
                language=metadata.language,
                keywords=tuple(metadata.keywords),
                explanation=metadata.explanation,
            )
        if content_type in (ContentType.SPEC, ContentType.KNOWLEDGE):
            return Record(**common, category=extract_category(content, Path(filename)))
        return Record(**common)

    def write(self, content_type: ContentType, filename: str, text: str) -> Path:
        """Write ``text`` to ``filename`` inside the type directory."""
        path = self.ensure_dir(content_type) / filename
        try:
            path.write_text(text, encoding="utf-8")
        except OSError as exc:
            raise StoreError(f"Cannot write {path}: {exc}") from exc
        logger.info("Wrote %s", path)
        return path

    def delete(self, content_type: ContentType, filename: str) -> None:
        path = self.path_for(content_type, filename)
        try:
            path.unlink()
        except FileNotFoundError as exc:
            raise StoreError(f"Record file not found: {path}") from exc
        except OSError as exc:
            raise StoreError(f"Cannot delete {path}: {exc}") from exc
        logger.info("Deleted %s", path)


__all__ = ["ContentStore"]
