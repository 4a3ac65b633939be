"""
self-refer configuration

Settings are read from environment variables prefixed with ``SELF_REFER_``
and from an optional ``.env`` file in the working directory.

Key settings:
- SELF_REFER_CONTENT_DIR: content directory relative to the project root (default: .claude)
- SELF_REFER_PROJECT_ROOT: explicit project root (default: detected from the working directory)
- SELF_REFER_MIN_SCORE / SELF_REFER_MAX_RESULTS: search cut-offs
- SELF_REFER_TEMPLATES_URL: base URL for command templates used by ``init``
- SELF_REFER_LOG_LEVEL: logging level for the CLI
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from selfrefer.core.search import SearchOptions

DEFAULT_TEMPLATES_URL = "https://raw.githubusercontent.com/mym0404/cc-self-refer/main"


class Settings(BaseSettings):
    """self-refer configuration settings."""

    content_dir: str = Field(default=".claude", description="Content directory relative to the project root")
    project_root: Path | None = Field(default=None, description="Skip project root detection when set")

    # Search
    min_score: float = Field(default=0.3, ge=0.0, le=1.0)
    max_results: int = Field(default=50, ge=1)
    recency_weight: float = Field(default=0.05, ge=0.0)

    # Session extraction
    claude_projects_dir: Path = Field(default_factory=lambda: Path.home() / ".claude" / "projects")

    # Project setup
    templates_url: str | None = Field(default=None, description="Command template base URL; unset skips download")
    http_timeout: float = Field(default=10.0, gt=0)

    log_level: str = "WARNING"

    model_config = SettingsConfigDict(
        env_prefix="SELF_REFER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        level = str(value).strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level

    def search_options(self) -> SearchOptions:
        """Search options derived from these settings."""
        return SearchOptions(
            min_score=self.min_score,
            max_results=self.max_results,
            recency_weight=self.recency_weight,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load and cache settings."""
    return Settings()


def reload_settings() -> Settings:
    """Clear cached settings (useful for tests) and reload."""
    get_settings.cache_clear()
    return get_settings()


__all__ = ["Settings", "get_settings", "reload_settings", "DEFAULT_TEMPLATES_URL"]
