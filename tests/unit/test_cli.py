"""End-to-end tests for the typer CLI."""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from selfrefer.main import app

runner = CliRunner()


@pytest.fixture
def project(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.setenv("SELF_REFER_PROJECT_ROOT", str(tmp_path))
    monkeypatch.setenv("SELF_REFER_CLAUDE_PROJECTS_DIR", str(tmp_path / "sessions"))
    monkeypatch.setenv("COLUMNS", "200")
    return tmp_path


@pytest.fixture
def initialized(project: Path) -> Path:
    result = runner.invoke(app, ["init"])
    assert result.exit_code == 0, result.output
    return project


def test_commands_require_content_dir(project: Path) -> None:
    result = runner.invoke(app, ["page", "list"])

    assert result.exit_code == 1
    assert "directory not found" in result.output


def test_init_creates_layout(project: Path) -> None:
    result = runner.invoke(app, ["init"])

    assert result.exit_code == 0, result.output
    assert "Project initialized" in result.output
    for name in ("pages", "plans", "patterns", "specs", "knowledges", "commands"):
        assert (project / ".claude" / name).is_dir()
    settings = json.loads((project / ".claude" / "settings.local.json").read_text())
    assert "Bash(self-refer:*)" in settings["permissions"]["allow"]


def test_init_honours_custom_dir(project: Path) -> None:
    result = runner.invoke(app, ["--dir", "memory", "init"])

    assert result.exit_code == 0, result.output
    assert (project / "memory" / "plans").is_dir()


def test_init_get_prompt_needs_no_setup(project: Path) -> None:
    result = runner.invoke(app, ["init-get-prompt"])

    assert result.exit_code == 0
    assert "self-refer init" in result.output


def test_page_roundtrip(initialized: Path) -> None:
    created = runner.invoke(app, ["page", "create", "My First Page", "--content", "content"])
    assert created.exit_code == 0, created.output
    assert "Created page #1" in created.output

    listed = runner.invoke(app, ["page", "list"])
    assert "My First Page" in listed.output

    viewed = runner.invoke(app, ["page", "view", "1"])
    assert viewed.output.startswith("# My First Page")


def test_page_view_rejects_non_numeric_id(initialized: Path) -> None:
    result = runner.invoke(app, ["page", "view", "first"])

    assert result.exit_code == 2


def test_page_create_without_session(initialized: Path) -> None:
    result = runner.invoke(app, ["page", "create", "Snapshot"])

    assert result.exit_code == 1
    assert "No Claude session found" in result.output


def test_page_create_reads_stdin(initialized: Path) -> None:
    result = runner.invoke(app, ["page", "create", "Piped", "-c", "-"], input="from stdin")

    assert result.exit_code == 0, result.output
    text = (initialized / ".claude" / "pages" / "001-piped.md").read_text()
    assert text == "# Piped\n\nfrom stdin\n"


def test_plan_lifecycle(initialized: Path) -> None:
    runner.invoke(app, ["plan", "create", "Ship It", "**Status**: [In Progress]"])

    resolved = runner.invoke(app, ["plan", "resolve", "ship"])
    assert resolved.exit_code == 0, resolved.output
    assert "marked as completed" in resolved.output

    viewed = runner.invoke(app, ["plan", "view", "1"])
    assert "**Status**: [Completed]" in viewed.output

    deleted = runner.invoke(app, ["plan", "delete", "1"])
    assert "# Plan Deleted Successfully" in deleted.output
    assert not list((initialized / ".claude" / "plans").glob("*.md"))


def test_missing_plan_reports_error(initialized: Path) -> None:
    result = runner.invoke(app, ["plan", "view", "99"])

    assert result.exit_code == 1
    assert "Plan not found: 99" in result.output


def test_empty_query_is_rejected(initialized: Path) -> None:
    result = runner.invoke(app, ["knowledge", "search", "   "])

    assert result.exit_code == 2


def test_search_json_output(initialized: Path) -> None:
    runner.invoke(app, ["plan", "create", "Cache Layer", "redis cache plan"])
    runner.invoke(app, ["plan", "create", "Unrelated", "nothing here"])

    result = runner.invoke(app, ["plan", "search", "cache layer", "--json"])

    assert result.exit_code == 0, result.output
    data = json.loads(result.stdout)
    assert data[0]["title"] == "Cache Layer"
    assert set(data[0]["score_breakdown"]) == {
        "exact_match",
        "semantic_similarity",
        "keyword_relevance",
        "category_boost",
        "recency_score",
        "field_boost",
    }


def test_search_context_output(initialized: Path) -> None:
    runner.invoke(app, ["knowledge", "create", "API Rate Limits", "100 requests per minute", "-c", "backend"])

    result = runner.invoke(app, ["knowledge", "search", "rate limits", "--context"])

    assert result.exit_code == 0, result.output
    assert result.output.startswith("# 🧠 Domain Knowledge: API Rate Limits")


def test_search_without_matches(initialized: Path) -> None:
    runner.invoke(app, ["spec", "create", "Overview", "what the project does"])

    result = runner.invoke(app, ["spec", "search", "zzzz", "--context"])

    assert result.exit_code == 0
    assert "# No Project Specification Found" in result.output
    assert "1. **Overview**" in result.output


def test_pattern_create_syncs_prompt_file(initialized: Path) -> None:
    result = runner.invoke(
        app,
        [
            "pattern", "create", "React Hook", "# React Hook\n\n```tsx\nx\n```",
            "-k", "react,hooks", "-l", "typescript", "-e", "Custom hook",
        ],
    )

    assert result.exit_code == 0, result.output
    prompt = (initialized / "CLAUDE.md").read_text()
    assert "| 001 | React Hook | typescript | react, hooks | Custom hook |" in prompt


def test_agent_switch_changes_sync_target(initialized: Path) -> None:
    assert runner.invoke(app, ["agent", "set", "copilot"]).exit_code == 2

    result = runner.invoke(app, ["agent", "set", "codex"])
    assert result.exit_code == 0, result.output

    runner.invoke(app, ["pattern", "sync"])
    assert "No patterns available yet." in (initialized / "AGENTS.md").read_text()

    shown = runner.invoke(app, ["agent", "show"])
    assert "AGENTS.md" in shown.output
