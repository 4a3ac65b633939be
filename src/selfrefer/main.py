import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import typer
from rich.console import Console
from rich.logging import RichHandler

from selfrefer.config import DEFAULT_TEMPLATES_URL, Settings, get_settings
from selfrefer.core.agents import AGENT_REGISTRY, resolve_agent_selection, write_agent_selection
from selfrefer.core.errors import SelfReferError
from selfrefer.core.models import ContentType, EnhancedSearchResult, Record
from selfrefer.core.scaffold import find_project_root, init_prompt, setup_project
from selfrefer.core.service import (
    ContentManager,
    KnowledgeManager,
    PageManager,
    PatternManager,
    PlanManager,
    SpecManager,
)
from selfrefer.core.session import SessionExtractor
from selfrefer.core.store import ContentStore
from selfrefer.formatters import FormattedItem, format_search_results, format_single_match
from selfrefer.reporter import Reporter

logger = logging.getLogger(__name__)

APP_HELP = """
self-refer: Long-lived project memory for coding agents.

Everything lives as plain markdown under the project's content directory
(default .claude/):

- PAGES:     snapshots of past sessions          (.claude/pages/)
- PLANS:     strategic plans with a status       (.claude/plans/)
- PATTERNS:  reusable code idioms                (.claude/patterns/)
- SPECS:     project specifications              (.claude/specs/)
- KNOWLEDGE: domain knowledge entries            (.claude/knowledges/)

Search is fuzzy: exact matches, typo-tolerant similarity, keyword hits, and
recency all contribute. A numeric query jumps straight to that ID.

CORE WORKFLOW:
1. SETUP:   Run `self-refer init` once per project.
2. RECALL:  Run `self-refer <type> search "<topic>"` before reading files.
3. RECORD:  Run `self-refer <type> create ...` when you learn something worth keeping.
"""

INIT_COMMANDS = {"init", "init-get-prompt"}

app = typer.Typer(name="self-refer", help=APP_HELP, no_args_is_help=True)
page_app = typer.Typer(name="page", help="Manage session pages.", no_args_is_help=True)
plan_app = typer.Typer(name="plan", help="Manage strategic plans.", no_args_is_help=True)
pattern_app = typer.Typer(name="pattern", help="Manage reusable code patterns.", no_args_is_help=True)
knowledge_app = typer.Typer(name="knowledge", help="Manage domain knowledge.", no_args_is_help=True)
spec_app = typer.Typer(name="spec", help="Manage project specifications.", no_args_is_help=True)
agent_app = typer.Typer(name="agent", help="Choose the agent whose prompt file holds the pattern list.", no_args_is_help=True)
app.add_typer(page_app, name="page")
app.add_typer(plan_app, name="plan")
app.add_typer(pattern_app, name="pattern")
app.add_typer(knowledge_app, name="knowledge")
app.add_typer(spec_app, name="spec")
app.add_typer(agent_app, name="agent")


# ============================================================================
# Invocation state
# ============================================================================

@dataclass
class CliState:
    settings: Settings
    project_root: Path
    content_dir: Path
    content_dir_name: str
    reporter: Reporter

    @property
    def store(self) -> ContentStore:
        return ContentStore(self.content_dir)

    def pages(self) -> PageManager:
        return PageManager(self.store, options=self.settings.search_options())

    def plans(self) -> PlanManager:
        return PlanManager(self.store, options=self.settings.search_options())

    def patterns(self) -> PatternManager:
        return PatternManager(self.store, self.project_root, options=self.settings.search_options())

    def knowledge(self) -> KnowledgeManager:
        return KnowledgeManager(self.store, options=self.settings.search_options())

    def specs(self) -> SpecManager:
        return SpecManager(self.store, options=self.settings.search_options())


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.callback()
def main(
    ctx: typer.Context,
    directory: str = typer.Option(None, "--dir", "-d", help="Content directory relative to the project root (default: .claude)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    settings = get_settings()
    _configure_logging("DEBUG" if verbose else settings.log_level)

    project_root = (settings.project_root or find_project_root(Path.cwd())).resolve()
    content_dir_name = directory or settings.content_dir
    state = CliState(
        settings=settings,
        project_root=project_root,
        content_dir=(project_root / content_dir_name).resolve(),
        content_dir_name=content_dir_name,
        reporter=Reporter(),
    )
    ctx.obj = state
    logger.debug("Project root %s, content dir %s", project_root, state.content_dir)

    if ctx.invoked_subcommand not in INIT_COMMANDS and not state.content_dir.is_dir():
        state.reporter.warning(f"{content_dir_name} directory not found in {project_root}")
        state.reporter.detail("Run `self-refer init` first or create the directory manually")
        raise typer.Exit(code=1)


@contextmanager
def reported_errors(state: CliState):
    """Report ``SelfReferError``s and exit with status 1."""
    try:
        yield
    except SelfReferError as exc:
        logger.debug("Command failed", exc_info=True)
        state.reporter.error(exc)
        raise typer.Exit(code=1) from exc


def _require_query(value: str) -> str:
    if not value or not value.strip():
        raise typer.BadParameter("Search query must not be empty")
    return value


def _require_numeric_id(value: str) -> str:
    if not value.isdigit():
        raise typer.BadParameter("Invalid ID format. Please provide a numeric ID.")
    return value


def _read_content(value: str) -> str:
    """``-`` reads the content from stdin."""
    if value == "-":
        return typer.get_text_stream("stdin").read()
    return value


# ============================================================================
# Shared rendering
# ============================================================================

def _print_search(
    state: CliState,
    manager: ContentManager,
    results: Sequence[EnhancedSearchResult],
    query: str,
    json_output: bool,
) -> None:
    if json_output:
        state.reporter.text(json.dumps([r.to_dict() for r in results], indent=2, default=str))
        return

    records: Dict[str, Record] = {r.file: r for r in manager.list()}
    matches = [FormattedItem.from_record(records[r.item.file]) for r in results if r.item.file in records]
    available = [FormattedItem.from_record(r) for r in records.values()]
    state.reporter.text(
        format_search_results(matches, available, manager.content_type, query, state.content_dir_name)
    )


def _print_list(state: CliState, content_type: ContentType, records: List[Record], extra: Optional[str] = None) -> None:
    if not records:
        state.reporter.warning(f"No {content_type.value} entries found in {state.content_dir_name}/{content_type.directory}/")
        return

    columns = ["ID", "Title", "File", "Details"]
    rows = [(str(r.id), r.title, r.file, r.metadata_line) for r in records]
    title = f"{content_type.emoji} {content_type.label}s"
    if extra:
        title = f"{title} ({extra})"
    state.reporter.table(title, columns, rows)


def _print_view(state: CliState, record: Record, context: bool) -> None:
    if context:
        state.reporter.text(
            format_single_match(FormattedItem.from_record(record), record.content_type, state.content_dir_name)
        )
        return
    state.reporter.text(record.content)


# ============================================================================
# Page commands
# ============================================================================

@page_app.command("list")
def page_list(ctx: typer.Context):
    """List all session pages, newest first."""
    state: CliState = ctx.obj
    with reported_errors(state):
        _print_list(state, ContentType.PAGE, state.pages().list())


@page_app.command("search")
def page_search(
    ctx: typer.Context,
    query: str = typer.Argument(..., callback=_require_query, help="Search keywords or a page ID"),
    json_output: bool = typer.Option(False, "--json", help="Output ranked results as JSON"),
):
    """Search session pages."""
    state: CliState = ctx.obj
    with reported_errors(state):
        manager = state.pages()
        _print_search(state, manager, manager.search(query), query, json_output)


@page_app.command("view")
def page_view(
    ctx: typer.Context,
    page_id: str = typer.Argument(..., callback=_require_numeric_id, help="Page ID number"),
):
    """View a page by its ID number."""
    state: CliState = ctx.obj
    with reported_errors(state):
        _print_view(state, state.pages().get(page_id), context=False)


@page_app.command("create")
def page_create(
    ctx: typer.Context,
    title: str = typer.Argument(None, help="Page title (default: Session-<timestamp>)"),
    content: str = typer.Option(None, "--content", "-c", help="Page content ('-' reads stdin). Default: extract the current session"),
):
    """
    Create a new page.

    Without --content the latest Claude Code session log of this project is
    extracted and saved as the page body.
    """
    state: CliState = ctx.obj
    with reported_errors(state):
        if not title:
            title = f"Session-{datetime.now(timezone.utc):%Y-%m-%dT%H-%M-%S}"

        if content is None:
            extractor = SessionExtractor(state.settings.claude_projects_dir)
            body = extractor.extract(state.project_root)
        else:
            body = _read_content(content)

        page_id = state.pages().create(title, body)
        state.reporter.success(f"Created page #{page_id}: {title}")


# ============================================================================
# Plan commands
# ============================================================================

@plan_app.command("create")
def plan_create(
    ctx: typer.Context,
    title: str = typer.Argument(..., help="Plan title"),
    content: str = typer.Argument(..., help="Plan content ('-' reads stdin)"),
):
    """Create a new strategic plan."""
    state: CliState = ctx.obj
    with reported_errors(state):
        plan_id = state.plans().create(title, _read_content(content))
        state.reporter.success(f"Created plan #{plan_id}: {title}")


@plan_app.command("list")
def plan_list(ctx: typer.Context):
    """List all plans with their status."""
    state: CliState = ctx.obj
    with reported_errors(state):
        _print_list(state, ContentType.PLAN, state.plans().list())


@plan_app.command("view")
def plan_view(
    ctx: typer.Context,
    reference: str = typer.Argument(..., help="Plan ID or search keyword"),
):
    """View a plan by ID or best keyword match."""
    state: CliState = ctx.obj
    with reported_errors(state):
        _print_view(state, state.plans().get(reference), context=False)


@plan_app.command("search")
def plan_search(
    ctx: typer.Context,
    query: str = typer.Argument(..., callback=_require_query, help="Search keywords or a plan ID"),
    json_output: bool = typer.Option(False, "--json", help="Output ranked results as JSON"),
):
    """Search plans. The plan status counts as its category."""
    state: CliState = ctx.obj
    with reported_errors(state):
        manager = state.plans()
        _print_search(state, manager, manager.search(query), query, json_output)


@plan_app.command("edit")
def plan_edit(
    ctx: typer.Context,
    reference: str = typer.Argument(..., help="Plan ID or search keyword"),
    full_content: str = typer.Argument(..., help="Complete updated plan content ('-' reads stdin)"),
):
    """Replace the full content of an existing plan."""
    state: CliState = ctx.obj
    with reported_errors(state):
        record = state.plans().edit(reference, _read_content(full_content))
        state.reporter.success(f"Plan #{record.id} updated ({record.file})")


@plan_app.command("resolve")
def plan_resolve(
    ctx: typer.Context,
    reference: str = typer.Argument(..., help="Plan ID or search keyword"),
):
    """Mark a plan as completed."""
    state: CliState = ctx.obj
    with reported_errors(state):
        record = state.plans().resolve(reference)
        state.reporter.success(f"Plan #{record.id} marked as completed: {record.title}")


@plan_app.command("delete")
def plan_delete(
    ctx: typer.Context,
    reference: str = typer.Argument(..., help="Plan ID or search keyword"),
):
    """Delete a completed or obsolete plan."""
    state: CliState = ctx.obj
    with reported_errors(state):
        record = state.plans().delete(reference)
        state.reporter.text(
            "# Plan Deleted Successfully\n\n"
            f"**Title**: {record.title}\n"
            f"**ID/Keyword**: {reference}\n\n"
            f"The plan has been removed from {state.content_dir_name}/{ContentType.PLAN.directory}/."
        )


# ============================================================================
# Pattern commands
# ============================================================================

@pattern_app.command("list")
def pattern_list(ctx: typer.Context):
    """List all code patterns."""
    state: CliState = ctx.obj
    with reported_errors(state):
        patterns = state.patterns().list()
        if not patterns:
            state.reporter.warning(f"No pattern entries found in {state.content_dir_name}/patterns/")
            return
        rows = [(f"{p.id:03d}", p.title, p.language or "", ", ".join(p.keywords)) for p in patterns]
        state.reporter.table(f"{ContentType.PATTERN.emoji} Code Patterns", ["ID", "Name", "Language", "Keywords"], rows)


@pattern_app.command("search")
def pattern_search(
    ctx: typer.Context,
    query: str = typer.Argument(..., callback=_require_query, help="Search keywords or a pattern ID"),
    language: str = typer.Option(None, "--language", "-l", help="Only patterns in this language"),
    json_output: bool = typer.Option(False, "--json", help="Output ranked results as JSON"),
):
    """Search code patterns. Declared keywords weigh most."""
    state: CliState = ctx.obj
    with reported_errors(state):
        manager = state.patterns()
        _print_search(state, manager, manager.search(query, language=language), query, json_output)


@pattern_app.command("view")
def pattern_view(
    ctx: typer.Context,
    reference: str = typer.Argument(..., help="Pattern ID or search keyword"),
):
    """Print a pattern."""
    state: CliState = ctx.obj
    with reported_errors(state):
        _print_view(state, state.patterns().get(reference), context=False)


@pattern_app.command("create")
def pattern_create(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Pattern name"),
    content: str = typer.Argument(..., help="Pattern markdown ('-' reads stdin)"),
    keywords: str = typer.Option("", "--keywords", "-k", help="Comma separated keywords"),
    language: str = typer.Option("", "--language", "-l", help="Programming language"),
    explanation: str = typer.Option("", "--explanation", "-e", help="One line explanation"),
):
    """Create a pattern and refresh the pattern list in the agent prompt file."""
    state: CliState = ctx.obj
    with reported_errors(state):
        manager = state.patterns()
        filename = manager.create(
            name,
            _read_content(content),
            keywords=[k for k in keywords.split(",") if k.strip()],
            language=language,
            explanation=explanation,
        )
        selection = resolve_agent_selection(state.content_dir)
        state.reporter.success(f"Created pattern {filename}")
        state.reporter.detail(f"Pattern list synced to {selection.prompt_file}")


@pattern_app.command("sync")
def pattern_sync(ctx: typer.Context):
    """Rewrite the pattern list in the selected agent's prompt file."""
    state: CliState = ctx.obj
    with reported_errors(state):
        selection = state.patterns().sync_prompt_table()
        state.reporter.success(f"Pattern list synced to {selection.prompt_file} ({selection.label})")


# ============================================================================
# Knowledge and spec commands
# ============================================================================

def _categorized_list(state: CliState, manager, category: Optional[str]) -> None:
    records = manager.list(category)
    if not records and category:
        state.reporter.warning(f'No {manager.content_type.value} entries found in category "{category}"')
        return
    _print_list(state, manager.content_type, records, extra=category)


def _categorized_search(
    state: CliState,
    manager,
    query: str,
    category: Optional[str],
    context: bool,
    json_output: bool,
) -> None:
    results = manager.search(query, category)
    if context or json_output:
        _print_search(state, manager, results, query, json_output)
        return

    if not results:
        state.reporter.warning(f'No {manager.content_type.value} entries found matching "{query}"')
        return

    rows = [
        (str(i), r.item.title, r.item.category or "", f"{r.score.final:.2f}", r.item.file)
        for i, r in enumerate(results, start=1)
    ]
    state.reporter.table(
        f'🔍 {manager.content_type.label} results for "{query}"',
        ["#", "Title", "Category", "Score", "File"],
        rows,
    )


@knowledge_app.command("list")
def knowledge_list(
    ctx: typer.Context,
    category: str = typer.Option(None, "--category", "-c", help="Filter by category"),
):
    """List knowledge entries."""
    state: CliState = ctx.obj
    with reported_errors(state):
        _categorized_list(state, state.knowledge(), category)


@knowledge_app.command("search")
def knowledge_search(
    ctx: typer.Context,
    query: str = typer.Argument(..., callback=_require_query, help="Search keywords or an entry ID"),
    category: str = typer.Option(None, "--category", "-c", help="Filter by category"),
    context: bool = typer.Option(False, "--context", help="Output formatted for agent context"),
    json_output: bool = typer.Option(False, "--json", help="Output ranked results as JSON"),
):
    """Search the knowledge base."""
    state: CliState = ctx.obj
    with reported_errors(state):
        _categorized_search(state, state.knowledge(), query, category, context, json_output)


@knowledge_app.command("view")
def knowledge_view(
    ctx: typer.Context,
    reference: str = typer.Argument(..., help="Entry ID or search keyword"),
    context: bool = typer.Option(False, "--context", help="Output formatted for agent context"),
):
    """View a knowledge entry."""
    state: CliState = ctx.obj
    with reported_errors(state):
        _print_view(state, state.knowledge().get(reference), context)


@knowledge_app.command("create")
def knowledge_create(
    ctx: typer.Context,
    title: str = typer.Argument(..., help="Entry title"),
    content: str = typer.Argument(..., help="Entry content ('-' reads stdin)"),
    category: str = typer.Option("general", "--category", "-c", help="Entry category"),
):
    """Create a knowledge entry."""
    state: CliState = ctx.obj
    with reported_errors(state):
        entry_id, filename = state.knowledge().create(title, _read_content(content), category)
        state.reporter.success(f"Created knowledge entry #{entry_id}: {title}")
        state.reporter.detail(f"File: {state.content_dir_name}/{ContentType.KNOWLEDGE.directory}/{filename}")
        state.reporter.detail(f"Category: {category}")


@spec_app.command("list")
def spec_list(
    ctx: typer.Context,
    category: str = typer.Option(None, "--category", "-c", help="Filter by category"),
):
    """List specifications."""
    state: CliState = ctx.obj
    with reported_errors(state):
        _categorized_list(state, state.specs(), category)


@spec_app.command("search")
def spec_search(
    ctx: typer.Context,
    query: str = typer.Argument(..., callback=_require_query, help="Search keywords or a spec ID"),
    category: str = typer.Option(None, "--category", "-c", help="Only this category"),
    context: bool = typer.Option(False, "--context", help="Output formatted for agent context"),
    json_output: bool = typer.Option(False, "--json", help="Output ranked results as JSON"),
):
    """Search specifications."""
    state: CliState = ctx.obj
    with reported_errors(state):
        _categorized_search(state, state.specs(), query, category, context, json_output)


@spec_app.command("view")
def spec_view(
    ctx: typer.Context,
    reference: str = typer.Argument(..., help="Spec ID or search keyword"),
    context: bool = typer.Option(False, "--context", help="Output formatted for agent context"),
):
    """View a specification."""
    state: CliState = ctx.obj
    with reported_errors(state):
        _print_view(state, state.specs().get(reference), context)


@spec_app.command("create")
def spec_create(
    ctx: typer.Context,
    title: str = typer.Argument(..., help="Spec title"),
    content: str = typer.Argument(..., help="Spec content ('-' reads stdin)"),
    category: str = typer.Option("general", "--category", "-c", help="Spec category"),
):
    """Create a specification."""
    state: CliState = ctx.obj
    with reported_errors(state):
        spec_id, filename = state.specs().create(title, _read_content(content), category)
        state.reporter.success(f"Created spec #{spec_id}: {title}")
        state.reporter.detail(f"File: {state.content_dir_name}/{ContentType.SPEC.directory}/{filename}")


# ============================================================================
# Agent commands
# ============================================================================

@agent_app.command("show")
def agent_show(ctx: typer.Context):
    """Show the selected agent and its prompt file."""
    state: CliState = ctx.obj
    selection = resolve_agent_selection(state.content_dir)
    state.reporter.info(f"{selection.label} ({selection.agent_id}) -> {selection.prompt_file}")


@agent_app.command("set")
def agent_set(
    ctx: typer.Context,
    agent_id: str = typer.Argument(..., help=f"One of: {', '.join(AGENT_REGISTRY)}"),
):
    """Select the agent whose prompt file receives the pattern list."""
    state: CliState = ctx.obj
    if agent_id not in AGENT_REGISTRY:
        raise typer.BadParameter(f"Unknown agent '{agent_id}'. Choose one of: {', '.join(AGENT_REGISTRY)}")
    with reported_errors(state):
        update = write_agent_selection(state.content_dir, agent_id)
        previous = update.previous_agent or "default"
        state.reporter.success(f"Agent set to {update.selection.label} (was {previous})")
        state.reporter.detail(f"Pattern list will be written to {update.selection.prompt_file}")


# ============================================================================
# Init commands
# ============================================================================

@app.command("init")
def init(
    ctx: typer.Context,
    download: bool = typer.Option(False, "--download", help="Download command templates into commands/"),
    templates_url: str = typer.Option(None, "--templates-url", help="Base URL for command templates"),
):
    """Create the content directory layout and grant self-refer permissions."""
    state: CliState = ctx.obj
    url = templates_url or state.settings.templates_url
    if download and not url:
        url = DEFAULT_TEMPLATES_URL

    with reported_errors(state):
        result = setup_project(state.content_dir, templates_url=url, timeout=state.settings.http_timeout)

    for created in result.created_dirs:
        state.reporter.detail(f"Created {state.content_dir_name}/{created.name}")
    for name in result.downloaded:
        state.reporter.detail(f"Downloaded {name}")
    if result.permissions_added:
        state.reporter.detail("Added self-refer permissions to settings.local.json")
    state.reporter.success(f"Project initialized in {state.content_dir_name}/")


@app.command("init-get-prompt")
def init_get_prompt(ctx: typer.Context):
    """Print the initialization prompt for an agent to execute."""
    state: CliState = ctx.obj
    state.reporter.text(init_prompt())


if __name__ == "__main__":
    app()
