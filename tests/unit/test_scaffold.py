import json
from pathlib import Path

import httpx
import pytest

from selfrefer.core.errors import SetupError
from selfrefer.core.scaffold import (
    COMMAND_TEMPLATES,
    REQUIRED_PERMISSIONS,
    create_layout,
    download_templates,
    ensure_permissions,
    find_project_root,
    init_prompt,
    setup_project,
)

TEMPLATES_URL = "https://templates.example.com/repo/"


def _client(requested: list, fail: frozenset = frozenset()) -> httpx.Client:
    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(request.url.path)
        name = request.url.path.rsplit("/", 1)[-1]
        if name in fail:
            return httpx.Response(404, text="missing")
        return httpx.Response(200, text=f"# {name}\n")

    return httpx.Client(transport=httpx.MockTransport(handler))


def test_find_project_root_walks_up(tmp_path: Path) -> None:
    (tmp_path / "repo" / ".git").mkdir(parents=True)
    nested = tmp_path / "repo" / "src" / "pkg"
    nested.mkdir(parents=True)

    assert find_project_root(nested) == (tmp_path / "repo").resolve()


def test_create_layout_is_idempotent(tmp_path: Path) -> None:
    content_dir = tmp_path / ".claude"

    created = create_layout(content_dir)

    assert sorted(p.name for p in created) == [
        "commands", "knowledges", "pages", "patterns", "plans", "specs",
    ]
    assert create_layout(content_dir) == []


def test_ensure_permissions_merges_existing_settings(content_dir: Path) -> None:
    settings_path = content_dir / "settings.local.json"
    settings_path.write_text(
        json.dumps({"model": "x", "permissions": {"allow": ["Bash(ls:*)", "Bash(self-refer:*)"]}})
    )

    assert ensure_permissions(content_dir) is True

    data = json.loads(settings_path.read_text())
    assert data["model"] == "x"
    assert data["permissions"]["allow"][0] == "Bash(ls:*)"
    assert set(REQUIRED_PERMISSIONS) <= set(data["permissions"]["allow"])
    assert data["permissions"]["allow"].count("Bash(self-refer:*)") == 1

    assert ensure_permissions(content_dir) is False


def test_ensure_permissions_rejects_invalid_json(content_dir: Path) -> None:
    (content_dir / "settings.local.json").write_text("{not json")

    with pytest.raises(SetupError) as excinfo:
        ensure_permissions(content_dir)

    assert excinfo.value.hint


def test_download_templates(content_dir: Path) -> None:
    commands = content_dir / "commands"
    commands.mkdir()

    requested: list = []
    with _client(requested) as client:
        downloaded = download_templates(commands, TEMPLATES_URL, client)

    assert downloaded == list(COMMAND_TEMPLATES)
    assert requested[0] == "/repo/templates/commands/page-save.md"
    assert (commands / "plan-create.md").read_text() == "# plan-create.md\n"


def test_download_reports_failures(content_dir: Path) -> None:
    commands = content_dir / "commands"
    commands.mkdir()

    with _client([], fail=frozenset({"pattern-use.md"})) as client:
        with pytest.raises(SetupError, match="pattern-use.md"):
            download_templates(commands, TEMPLATES_URL, client)

    assert (commands / "page-save.md").exists()


def test_setup_project_without_download(tmp_path: Path) -> None:
    result = setup_project(tmp_path / ".claude")

    assert result.downloaded == []
    assert result.permissions_added is True
    assert (tmp_path / ".claude" / "settings.local.json").exists()


def test_setup_project_with_download(tmp_path: Path) -> None:
    with _client([]) as client:
        result = setup_project(tmp_path / ".claude", templates_url=TEMPLATES_URL, client=client)

    assert len(result.downloaded) == len(COMMAND_TEMPLATES)


def test_init_prompt_mentions_commands() -> None:
    prompt = init_prompt()

    assert "self-refer init" in prompt
    assert "self-refer pattern sync" in prompt


def test_failed_download_still_grants_permissions(tmp_path: Path) -> None:
    content_dir = tmp_path / ".claude"

    with _client([], fail=frozenset({"page-save.md"})) as client:
        with pytest.raises(SetupError):
            setup_project(content_dir, templates_url=TEMPLATES_URL, client=client)

    settings = json.loads((content_dir / "settings.local.json").read_text())
    assert set(REQUIRED_PERMISSIONS) <= set(settings["permissions"]["allow"])


def test_unwritable_settings_raise_setup_error(content_dir: Path, monkeypatch) -> None:
    def refuse(self, *args, **kwargs):
        raise PermissionError("read-only file system")

    monkeypatch.setattr(Path, "write_text", refuse)

    with pytest.raises(SetupError, match="Cannot write"):
        ensure_permissions(content_dir)
