"""Extract the latest Claude Code session log as a markdown page.

Session logs live under ``~/.claude/projects/<mangled project path>/*.jsonl``.
The extractor picks the newest log for the current project, flattens each
message into text, and shrinks noisy messages when the transcript is long:

- level 1: command wrappers, system reminders, tool noise, long code blocks
- level 2: pasted command docs, long edit results, short code blocks, duplicates
- level 3: truncate any message over 2000 characters
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from selfrefer.core.errors import SessionNotFoundError

logger = logging.getLogger(__name__)

STRIP_THRESHOLDS = ((80_000, 3), (40_000, 2), (15_000, 1))
DOC_MARKER = "## What does this command do"
CODE_BLOCK_PATTERN = re.compile(r"```[\s\S]*?```")
HEADING_PATTERN = re.compile(r"^#\s+(.+?)$", re.MULTILINE)
DOC_HEADER_PATTERN = re.compile(r"^#{1,3}\s", re.MULTILINE)


@dataclass(frozen=True)
class SessionMessage:
    timestamp: str
    role: str
    content: str
    strip_level: int = 0
    original: str = ""


@dataclass(frozen=True)
class StripRule:
    level: int
    name: str
    condition: Callable[[str, str], bool]
    transform: Callable[[str], str]


# ============================================================================
# Strip rules
# ============================================================================

def looks_like_command_documentation(content: str) -> bool:
    """Heuristic for slash-command docs pasted into the conversation."""
    header_count = len(DOC_HEADER_PATTERN.findall(content))
    doc_markers = ("## Usage", "## Description", "## Example", "### CLI Command", "This command")
    has_doc_markers = any(marker in content for marker in doc_markers)
    is_long_doc = len(content) > 2000 and header_count > 5
    return (has_doc_markers and header_count > 3) or is_long_doc


def _command_name(content: str) -> str:
    match = re.search(r"<command-name>(.+?)</command-name>", content)
    return f"[Command: {match.group(1) if match else 'command'}]"


def _doc_title(content: str) -> str:
    match = HEADING_PATTERN.search(content)
    return f"[Doc: {match.group(1) if match else 'Command Documentation'}]"


def _modified_file(content: str) -> str:
    match = re.search(r"Applied \d+ edits? to (.+?):", content)
    name = match.group(1).split("/")[-1] if match else "file"
    return f"[File Modified: {name}]"


def _truncate(content: str) -> str:
    suffix = " [Contains code blocks...]" if "```" in content else " [Message truncated...]"
    return content[:300] + suffix


def _strip_code(content: str) -> str:
    return CODE_BLOCK_PATTERN.sub("[Code Block Removed]", content)


STRIP_RULES = (
    StripRule(
        1, "command_execution",
        lambda c, r: "<command-" in c and "</command-" in c,
        _command_name,
    ),
    StripRule(1, "system_reminders", lambda c, r: "<system-reminder>" in c, lambda c: "[System Reminder]"),
    StripRule(
        1, "local_command_output",
        lambda c, r: "<local-command-stdout>" in c,
        lambda c: "[Local Command Output]",
    ),
    StripRule(
        1, "tool_noise",
        lambda c, r: "command not found" in c and ("node:" in c or "pnpm:" in c),
        lambda c: re.sub(r"\n?(node|pnpm):\d+:.*?command not found.*?\n?", "", c).strip(),
    ),
    StripRule(
        2, "command_documentation",
        lambda c, r: r == "user" and looks_like_command_documentation(c),
        _doc_title,
    ),
    StripRule(
        2, "file_modifications_long",
        lambda c, r: "Applied" in c and "edit" in c and len(c) > 800,
        _modified_file,
    ),
    StripRule(2, "code_blocks_short", lambda c, r: "```" in c and len(c) < 1000, _strip_code),
    StripRule(1, "code_blocks_long", lambda c, r: "```" in c and len(c) >= 1000, _strip_code),
    StripRule(3, "long_messages", lambda c, r: len(c) > 2000, _truncate),
)


def choose_strip_level(total_length: int) -> int:
    for threshold, level in STRIP_THRESHOLDS:
        if total_length > threshold:
            return level
    return 0


def detect_duplicates(messages: List[SessionMessage]) -> Set[int]:
    """Indices of exact repeats and repeated command docs."""
    duplicates: Set[int] = set()
    seen: Dict[str, int] = {}
    for index, message in enumerate(messages):
        content = message.content
        if content in seen:
            duplicates.add(index)
            continue
        if DOC_MARKER in content:
            match = re.search(r"# (.+?) - .+?\n", content)
            if match and any(DOC_MARKER in key and match.group(1) in key for key in seen):
                duplicates.add(index)
                continue
        seen[content] = index
    return duplicates


def analyze_strip_levels(messages: List[SessionMessage]) -> List[SessionMessage]:
    duplicates = detect_duplicates(messages)
    analyzed = []
    for index, message in enumerate(messages):
        level = 2 if index in duplicates else 0
        for rule in STRIP_RULES:
            if rule.condition(message.content, message.role):
                level = max(level, rule.level)
        analyzed.append(replace(message, strip_level=level, original=message.content))
    return analyzed


def apply_strip_level(messages: List[SessionMessage], max_level: int) -> List[SessionMessage]:
    duplicates = detect_duplicates(messages)
    processed = []
    for index, message in enumerate(messages):
        if message.strip_level == 0 or message.strip_level > max_level:
            processed.append(message)
            continue

        content = message.original or message.content
        if index in duplicates and max_level >= 2:
            if DOC_MARKER in content:
                match = HEADING_PATTERN.search(content)
                content = f"[Duplicate Doc: {match.group(1) if match else 'Command Documentation'}]"
            else:
                content = "[Duplicate Message]"
        else:
            for rule in STRIP_RULES:
                if rule.level <= max_level and rule.condition(content, message.role):
                    content = rule.transform(content)
        processed.append(replace(message, content=content))
    return processed


# ============================================================================
# Message flattening
# ============================================================================

def _tool_use_text(block: Dict[str, Any]) -> str:
    name = block.get("name") or "unknown"
    params = block.get("input") or block.get("parameters") or {}
    if not params:
        return f"[Tool: {name}]"
    if name == "TodoWrite":
        return "[Todo Updated]"
    if name in ("Edit", "MultiEdit"):
        file_path = params.get("file_path")
        return f"[Tool: {name} - {file_path.split('/')[-1] if file_path else 'file'}]"
    return f"[Tool: {name}]\n{json.dumps(params, indent=2)}"


def _tool_result_text(block: Dict[str, Any]) -> str:
    content = block.get("content") or ""
    if not isinstance(content, str):
        content = json.dumps(content)
    if "Todos have been modified successfully" in content:
        return "[Todo Updated]"
    if "Applied" in content and "edit" in content:
        return f"[Tool Result]\n{content}"
    if "On branch" in content or "Changes not staged" in content:
        return "[Git Status]"
    if "files changed" in content and "insertions" in content:
        return "[Git Commit Successful]"
    if len(content) > 500:
        return f"[Tool Result]\n{content[:200]}..."
    return f"[Tool Result]\n{content}"


def flatten_content(content: Any) -> str:
    """Render a message ``content`` field (string or block list) as text."""
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return json.dumps(content)

    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif not isinstance(block, dict):
            parts.append(json.dumps(block))
        elif block.get("type") == "text":
            parts.append(block.get("text") or "")
        elif block.get("type") == "tool_use":
            parts.append(_tool_use_text(block))
        elif block.get("type") == "tool_result":
            parts.append(_tool_result_text(block))
        else:
            parts.append(json.dumps(block))
    return "\n".join(parts)


def parse_session_lines(lines: List[str]) -> List[SessionMessage]:
    messages = []
    for number, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        try:
            data = json.loads(line)
        except ValueError:
            logger.debug("Skipping malformed session line %d", number)
            continue
        message = data.get("message") if isinstance(data, dict) else None
        if not isinstance(message, dict):
            continue
        messages.append(
            SessionMessage(
                timestamp=data.get("timestamp") or datetime.now(timezone.utc).isoformat(),
                role=message.get("role") or "user",
                content=flatten_content(message.get("content", "")),
            )
        )
    return messages


def _duration(messages: List[SessionMessage]) -> str:
    if len(messages) < 2:
        return "N/A"
    try:
        start = datetime.fromisoformat(messages[0].timestamp)
        end = datetime.fromisoformat(messages[-1].timestamp)
        seconds = (end - start).total_seconds()
    except (TypeError, ValueError):
        return "N/A"
    hours, remainder = divmod(int(seconds), 3600)
    minutes = remainder // 60
    return f"{hours}h {minutes}m" if hours > 0 else f"{minutes}m"


# ============================================================================
# Extractor
# ============================================================================

class SessionExtractor:
    """Locates and renders the newest session log of a project."""

    def __init__(self, projects_dir: Optional[Path] = None, clock: Optional[Callable[[], datetime]] = None):
        self.projects_dir = Path(projects_dir or Path.home() / ".claude" / "projects")
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    @staticmethod
    def directory_candidates(project_path: str) -> List[str]:
        """Directory names Claude Code has used for ``project_path``."""
        without_drive = re.sub(r"^[A-Za-z]:", "", project_path)
        relative = re.sub(r"^/", "", without_drive)
        dashed = re.sub(r"[/\\]", "-", relative)

        candidates = [
            f"-{dashed}",
            dashed,
            f"-{dashed.lower()}",
            dashed.lower(),
            re.sub(r"\s", "_", re.sub(r"[/\\:]", "-", relative)),
        ]
        if project_path.startswith("/"):
            candidates.append(f"--{dashed}")
        return list(dict.fromkeys(candidates))

    def find_session_dir(self, project_path: str) -> Path:
        candidates = self.directory_candidates(project_path)
        for candidate in candidates:
            directory = self.projects_dir / candidate
            if directory.is_dir():
                return directory
        tried = "\n".join(f"  - {self.projects_dir / c}" for c in candidates)
        raise SessionNotFoundError(
            f"No Claude session found for project: {project_path}\n"
            f"Tried the following directory patterns:\n{tried}"
        )

    @staticmethod
    def latest_session_file(directory: Path) -> Optional[Path]:
        files = [path for path in directory.glob("*.jsonl") if path.is_file()]
        if not files:
            return None
        return max(files, key=lambda path: path.stat().st_mtime)

    def extract(self, project_path: Optional[Path] = None) -> str:
        """Render the current project's latest session as markdown."""
        project = str(project_path or Path.cwd())
        directory = self.find_session_dir(project)
        session_file = self.latest_session_file(directory)
        if session_file is None:
            raise SessionNotFoundError(f"No session files found in: {directory}")

        logger.info("Extracting session from %s", session_file)
        try:
            lines = session_file.read_text(encoding="utf-8", errors="replace").split("\n")
        except OSError as exc:
            raise SessionNotFoundError(f"Cannot read session file {session_file}: {exc}") from exc
        return self.render(parse_session_lines(lines), project)

    def render(self, messages: List[SessionMessage], project: str) -> str:
        analyzed = analyze_strip_levels(messages)
        total_length = sum(len(m.content) for m in analyzed)
        level = choose_strip_level(total_length)
        processed = apply_strip_level(analyzed, level)

        start = processed[0].timestamp if processed else "Unknown"
        end = processed[-1].timestamp if processed else "Unknown"
        header = (
            f"# Claude Code Session - {project}\n\n"
            f"**Extracted**: {self.clock().isoformat()}\n"
            f"**Total Messages**: {len(processed)}\n"
            f"**Session Start**: {start}\n"
            f"**Session End**: {end}\n\n"
            "---\n\n"
            "## Conversation History\n\n"
        )

        sections = []
        for index, message in enumerate(processed, start=1):
            role = "👤 User" if message.role == "user" else "🤖 Assistant"
            simplified = " (simplified)" if 0 < message.strip_level <= level else ""
            sections.append(f"### Message {index} - {role}{simplified}\n\n{message.content}\n\n")

        users = sum(1 for m in processed if m.role == "user")
        assistants = sum(1 for m in processed if m.role == "assistant")
        footer = (
            "\n## Session Summary\n\n"
            f"- **Total Messages**: {len(processed)}\n"
            f"- **User Messages**: {users}\n"
            f"- **Assistant Messages**: {assistants}\n"
            f"- **Duration**: {_duration(processed)}\n"
            f"- **Content Strip Level**: {level} (0=none, 1=commands, 2=docs, 3=code)\n"
            f"- **Original Length**: {total_length:,} chars\n"
        )
        return header + "\n".join(sections) + footer


__all__ = [
    "SessionMessage",
    "SessionExtractor",
    "STRIP_RULES",
    "choose_strip_level",
    "detect_duplicates",
    "analyze_strip_levels",
    "apply_strip_level",
    "flatten_content",
    "parse_session_lines",
    "looks_like_command_documentation",
]
