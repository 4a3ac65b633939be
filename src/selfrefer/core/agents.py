"""Agent selection and the pattern table kept in the agent's prompt file.

The selected agent decides which prompt file (``CLAUDE.md``, ``AGENTS.md``,
``GEMINI.md``) receives the ``[PATTERN LIST]`` block. The selection lives in
``<content_dir>/self-refer.json``.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from selfrefer.core.errors import StoreError
from selfrefer.core.models import Record

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "self-refer.json"
PATTERN_LIST_START = "[PATTERN LIST]"
PATTERN_LIST_END = "[PATTERN LIST END]"
NAME_MARKUP_PATTERN = re.compile(r"[#!*_`]")


@dataclass(frozen=True)
class AgentSelection:
    agent_id: str
    label: str
    prompt_file: str


AGENT_REGISTRY: Dict[str, AgentSelection] = {
    "claude": AgentSelection("claude", "Claude Code", "CLAUDE.md"),
    "codex": AgentSelection("codex", "Codex", "AGENTS.md"),
    "gemini": AgentSelection("gemini", "Gemini", "GEMINI.md"),
}

DEFAULT_AGENT = "claude"


@dataclass(frozen=True)
class AgentUpdate:
    """Outcome of ``write_agent_selection``."""
    selection: AgentSelection
    previous_agent: Optional[str]
    config_path: Path


def is_agent_id(value: str) -> bool:
    return value in AGENT_REGISTRY


def _read_raw_config(config_path: Path) -> Dict[str, Any]:
    if not config_path.exists():
        return {}
    try:
        parsed = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring unreadable %s: %s", config_path, exc)
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _agent_from_config(raw: Dict[str, Any]) -> Optional[str]:
    agent = raw.get("agent")
    if isinstance(agent, str) and is_agent_id(agent):
        return agent
    return None


def resolve_agent_selection(content_dir: Path) -> AgentSelection:
    """Agent configured in ``self-refer.json``, or the default agent."""
    raw = _read_raw_config(Path(content_dir) / CONFIG_FILENAME)
    return AGENT_REGISTRY[_agent_from_config(raw) or DEFAULT_AGENT]


def write_agent_selection(content_dir: Path, agent_id: str) -> AgentUpdate:
    """Persist ``agent_id`` while keeping any other keys of the config file."""
    if not is_agent_id(agent_id):
        raise ValueError(
            f"Unknown agent '{agent_id}'. Choose one of: {', '.join(AGENT_REGISTRY)}"
        )

    content_dir = Path(content_dir)
    config_path = content_dir / CONFIG_FILENAME
    raw = _read_raw_config(config_path)
    previous = _agent_from_config(raw)

    raw["agent"] = agent_id
    try:
        content_dir.mkdir(parents=True, exist_ok=True)
        config_path.write_text(json.dumps(raw, indent=2) + "\n", encoding="utf-8")
    except OSError as exc:
        raise StoreError(f"Cannot write {config_path}: {exc}") from exc

    logger.info("Agent changed from %s to %s", previous, agent_id)
    return AgentUpdate(AGENT_REGISTRY[agent_id], previous, config_path)


# ============================================================================
# Pattern table
# ============================================================================

def render_pattern_table(patterns: Sequence[Record]) -> str:
    """Markdown table of patterns wrapped in the pattern list markers."""
    if not patterns:
        return f"{PATTERN_LIST_START}\n\nNo patterns available yet.\n\n{PATTERN_LIST_END}"

    lines = [
        PATTERN_LIST_START,
        "",
        "| ID | Name | Language | Keywords | Explanation |",
        "|----|------|----------|----------|-------------|",
    ]
    for pattern in sorted(patterns, key=lambda p: p.id):
        name = NAME_MARKUP_PATTERN.sub("", pattern.title).strip()
        keywords = ", ".join(pattern.keywords)
        lines.append(
            f"| {pattern.id:03d} | {name} | {pattern.language or ''} | {keywords} | {pattern.explanation} |"
        )
    lines.extend(["", PATTERN_LIST_END])
    return "\n".join(lines)


def replace_pattern_block(document: str, table: str) -> str:
    """Swap the existing pattern block of ``document`` or append a new one."""
    start = document.find(PATTERN_LIST_START)
    end = document.find(PATTERN_LIST_END)
    if start != -1 and end != -1 and end > start:
        return document[:start] + table + document[end + len(PATTERN_LIST_END):]
    return f"{document.rstrip()}\n\n{table}\n"


def sync_pattern_table(
    patterns: Sequence[Record], content_dir: Path, project_root: Path
) -> AgentSelection:
    """Rewrite the pattern block in the selected agent's prompt file."""
    selection = resolve_agent_selection(content_dir)
    prompt_path = Path(project_root) / selection.prompt_file

    try:
        document = prompt_path.read_text(encoding="utf-8") if prompt_path.exists() else ""
        prompt_path.write_text(
            replace_pattern_block(document, render_pattern_table(patterns)), encoding="utf-8"
        )
    except OSError as exc:
        raise StoreError(f"Cannot update {prompt_path}: {exc}") from exc

    logger.info("Synced %d patterns into %s", len(patterns), prompt_path)
    return selection


__all__ = [
    "AgentSelection",
    "AgentUpdate",
    "AGENT_REGISTRY",
    "DEFAULT_AGENT",
    "is_agent_id",
    "resolve_agent_selection",
    "write_agent_selection",
    "render_pattern_table",
    "replace_pattern_block",
    "sync_pattern_table",
]
