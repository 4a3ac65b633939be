"""Project initialization: directory layout, command templates, permissions."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import httpx

from selfrefer.core.errors import SetupError
from selfrefer.core.models import ContentType

logger = logging.getLogger(__name__)

PROJECT_MARKERS = (".git", "pyproject.toml", "package.json", ".claude")

COMMAND_TEMPLATES = (
    "page-save.md",
    "page-refer.md",
    "plan-create.md",
    "plan-edit.md",
    "plan-resolve.md",
    "pattern-create.md",
    "pattern-use.md",
    "knowledge-create.md",
    "knowledge-refer.md",
)

REQUIRED_PERMISSIONS = (
    "Bash(self-refer:*)",
    "Bash(self-refer *)",
    "Bash(uvx self-refer:*)",
)

SETTINGS_FILENAME = "settings.local.json"

INIT_PROMPT = """\
# Initialize self-refer for this project

Run the following steps in order and report the result of each one.

1. Run `self-refer init` from the project root. It creates `.claude/pages`,
   `.claude/plans`, `.claude/patterns`, `.claude/specs`, `.claude/knowledges`
   and `.claude/commands`, and grants the `self-refer` permissions in
   `.claude/settings.local.json`.
2. Run `self-refer agent show` and confirm the prompt file that will hold the
   pattern list (CLAUDE.md, AGENTS.md or GEMINI.md). Switch with
   `self-refer agent set <claude|codex|gemini>` if needed.
3. Look through the codebase for two or three idioms that recur across files.
   Save each one with
   `self-refer pattern create "<name>" "<markdown>" --keywords "a,b" --language <lang> --explanation "<one line>"`.
4. Run `self-refer pattern sync` so the prompt file lists every pattern.
5. Record the project's main domain terms with
   `self-refer knowledge create "<title>" "<markdown>" -c <category>`.

When you later need context, search before reading files:
`self-refer page search "<topic>"`, `self-refer plan search "<topic>"`,
`self-refer pattern search "<topic>"`, `self-refer knowledge search "<topic>"`.
"""


@dataclass
class SetupResult:
    """What ``setup_project`` did."""
    content_dir: Path
    created_dirs: List[Path] = field(default_factory=list)
    downloaded: List[str] = field(default_factory=list)
    permissions_added: bool = False


def find_project_root(start: Optional[Path] = None) -> Path:
    """Nearest ancestor of ``start`` holding a project marker, else ``start``."""
    origin = Path(start or Path.cwd()).resolve()
    for candidate in (origin, *origin.parents):
        if any((candidate / marker).exists() for marker in PROJECT_MARKERS):
            return candidate
    return origin


def init_prompt() -> str:
    return INIT_PROMPT


def create_layout(content_dir: Path) -> List[Path]:
    """Create every content type directory plus ``commands/``."""
    targets = [content_dir / content_type.directory for content_type in ContentType]
    targets.append(content_dir / "commands")
    created = []
    for target in targets:
        if target.is_dir():
            continue
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise SetupError(f"Cannot create {target}: {exc}") from exc
        created.append(target)
    return created


def download_templates(
    commands_dir: Path,
    templates_url: str,
    client: httpx.Client,
) -> List[str]:
    """Fetch every command template into ``commands_dir``.

    Raises:
        SetupError: listing each template that failed to download
    """
    base = templates_url.rstrip("/")
    downloaded: List[str] = []
    failures: List[str] = []

    for name in COMMAND_TEMPLATES:
        url = f"{base}/templates/commands/{name}"
        try:
            response = client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Failed to download %s: %s", url, exc)
            failures.append(f"{name} ({exc})")
            continue

        target = commands_dir / name
        if target.exists():
            logger.info("Overwriting existing template %s", target)
        target.write_text(response.text, encoding="utf-8")
        downloaded.append(name)

    if failures:
        raise SetupError(
            f"Failed to download {len(failures)} template(s): {', '.join(failures)}",
            hint="Check your internet connection or the templates URL and try again",
        )
    return downloaded


def ensure_permissions(content_dir: Path) -> bool:
    """Merge the self-refer permissions into ``settings.local.json``.

    Returns True when the file changed.
    """
    settings_path = content_dir / SETTINGS_FILENAME
    settings = {}
    if settings_path.exists():
        try:
            settings = json.loads(settings_path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise SetupError(f"Cannot read {settings_path}: {exc}") from exc
        except ValueError as exc:
            raise SetupError(
                f"{settings_path} is not valid JSON: {exc}",
                hint="Fix or remove the file, then rerun init",
            ) from exc
        if not isinstance(settings, dict):
            raise SetupError(f"{settings_path} must contain a JSON object")

    permissions = settings.setdefault("permissions", {})
    allow = permissions.setdefault("allow", [])

    missing = [p for p in REQUIRED_PERMISSIONS if p not in allow]
    if not missing:
        logger.info("Permissions already configured in %s", settings_path)
        return False

    allow.extend(missing)
    try:
        settings_path.write_text(json.dumps(settings, indent=2) + "\n", encoding="utf-8")
    except OSError as exc:
        raise SetupError(f"Cannot write {settings_path}: {exc}") from exc
    logger.info("Added %d permissions to %s", len(missing), settings_path)
    return True


def setup_project(
    content_dir: Path,
    templates_url: Optional[str] = None,
    client: Optional[httpx.Client] = None,
    timeout: float = 10.0,
) -> SetupResult:
    """Initialize ``content_dir`` for use with self-refer.

    Permissions are merged before any download, so a failed download still
    leaves a usable project. Templates are only downloaded when
    ``templates_url`` is given. Pass a ``client`` to control the transport (tests use ``httpx.MockTransport``).
    """
    content_dir = Path(content_dir)
    result = SetupResult(content_dir=content_dir)
    result.created_dirs = create_layout(content_dir)
    result.permissions_added = ensure_permissions(content_dir)

    if templates_url:
        if client is not None:
            result.downloaded = download_templates(content_dir / "commands", templates_url, client)
        else:
            with httpx.Client(timeout=timeout, follow_redirects=True) as owned:
                result.downloaded = download_templates(
                    content_dir / "commands", templates_url, owned
                )
    return result


__all__ = [
    "SetupResult",
    "COMMAND_TEMPLATES",
    "REQUIRED_PERMISSIONS",
    "find_project_root",
    "init_prompt",
    "create_layout",
    "download_templates",
    "ensure_permissions",
    "setup_project",
]
