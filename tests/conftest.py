import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Tuple

import pytest

from selfrefer import config as config_module
from selfrefer.core.models import SearchableItem
from selfrefer.core.store import ContentStore

FIXED_NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def _make_item(
    id: int,
    title: str,
    content: str = "",
    category: Optional[str] = None,
    keywords: Optional[Tuple[str, ...]] = None,
    last_updated: datetime = FIXED_NOW,
) -> SearchableItem:
    return SearchableItem(
        id=id,
        title=title,
        content=content,
        last_updated=last_updated,
        file=f"{id:03d}-item.md",
        category=category,
        keywords=keywords,
    )


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def make_item():
    return _make_item


@pytest.fixture
def content_dir(tmp_path: Path) -> Path:
    path = tmp_path / ".claude"
    path.mkdir()
    return path


@pytest.fixture
def store(content_dir: Path) -> ContentStore:
    return ContentStore(content_dir)


@pytest.fixture(autouse=True)
def restore_settings_cache(monkeypatch, tmp_path: Path):
    """
    Keep settings isolated from the developer's environment and .env files.
    """
    for key in list(os.environ):
        if key.startswith("SELF_REFER_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    config_module.get_settings.cache_clear()
    yield
    config_module.get_settings.cache_clear()
