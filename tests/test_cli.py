from __future__ import annotations

import importlib
from pathlib import Path

import pytest
import typer
from typer.testing import CliRunner

from texpreview.core.exceptions import ConfigError
from texpreview.ui.cli import app
import texpreview.ui.cli.state as cli_state

from conftest import FakeToolchain


cli_app = importlib.import_module("texpreview.ui.cli.app")
render_module = importlib.import_module("texpreview.ui.cli.commands.render")


class AsyncToolchain(FakeToolchain):
    async def wait(self) -> None:
        return None


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, fake_bin: Path, isolated_home):
    root = tmp_path / "project"
    root.mkdir()
    monkeypatch.chdir(root)
    return root


def _install(monkeypatch: pytest.MonkeyPatch, toolchain: FakeToolchain) -> None:
    monkeypatch.setattr(render_module, "AsyncioProcessRunner", lambda: toolchain)


def _write(root: Path, body: str) -> Path:
    path = root / "paper.tex"
    path.write_text(
        "\\documentclass{article}\n\\begin{document}\n" + body + "\n\\end{document}\n",
        encoding="utf-8",
    )
    return path


def test_render_copies_images_to_output(workspace: Path, monkeypatch) -> None:
    toolchain = AsyncToolchain()
    _install(monkeypatch, toolchain)
    source = _write(workspace, "Take $a$ and $b$.")
    out = workspace / "out"

    result = CliRunner().invoke(app, ["render", str(source), "--output", str(out)])

    assert result.exit_code == 0, result.output
    assert sorted(path.name for path in out.iterdir()) == ["fragment-001.png", "fragment-002.png"]
    assert toolchain.compiled == [["$a$", "$b$"]]


def test_render_reports_failed_fragments(workspace: Path, monkeypatch) -> None:
    _install(monkeypatch, AsyncToolchain(truncate={"$b$"}))
    source = _write(workspace, "Take $a$ and $b$.")

    result = CliRunner().invoke(app, ["render", str(source)])

    assert result.exit_code == 1
    assert "could not be rendered" in result.output


def test_render_without_fragments(workspace: Path, monkeypatch) -> None:
    _install(monkeypatch, AsyncToolchain())
    source = _write(workspace, "No maths here.")

    result = CliRunner().invoke(app, ["render", str(source)])

    assert result.exit_code == 0
    assert "No math fragments found" in result.output


def test_render_rejects_unknown_backend(workspace: Path, monkeypatch) -> None:
    _install(monkeypatch, AsyncToolchain())
    source = _write(workspace, "$a$")

    result = CliRunner().invoke(app, ["render", str(source), "--backend", "mathjax"])

    assert result.exit_code != 0
    assert isinstance(result.exception, ConfigError)


def test_config_file_option(workspace: Path, monkeypatch) -> None:
    toolchain = AsyncToolchain()
    _install(monkeypatch, toolchain)
    config = workspace / "settings.yml"
    config.write_text("resolution: 300\n", encoding="utf-8")
    source = _write(workspace, "$a$")

    result = CliRunner().invoke(app, ["--config", str(config), "render", str(source)])

    assert result.exit_code == 0, result.output
    extract = next(h for h in toolchain.handles if Path(h.argv[0]).name == "dvipng")
    assert extract.argv[extract.argv.index("-D") + 1] == "300"


def test_cache_commands(workspace: Path, monkeypatch) -> None:
    _install(monkeypatch, AsyncToolchain())
    source = _write(workspace, "Take $a$ and $b$.")
    runner = CliRunner()
    assert runner.invoke(app, ["render", str(source)]).exit_code == 0

    info = runner.invoke(app, ["cache", "info"])
    assert info.exit_code == 0
    assert "persistent" in info.output

    cleared = runner.invoke(app, ["cache", "clear", "--tier", "persistent"])
    assert cleared.exit_code == 0
    assert "Removed 2 cache entries." in cleared.output

    again = runner.invoke(app, ["cache", "clear"])
    assert "Removed 0 cache entries." in again.output

    collected = runner.invoke(app, ["cache", "gc"])
    assert collected.exit_code == 0
    assert "Expired 0 cache entries." in collected.output


def test_verbose_and_debug_flags_update_state(workspace: Path, monkeypatch) -> None:
    _install(monkeypatch, AsyncToolchain())
    source = _write(workspace, "$a$")

    result = CliRunner().invoke(app, ["-vv", "--debug", "render", str(source)])

    assert result.exit_code == 0, result.output
    state = cli_state.get_cli_state(create=False)
    assert state.verbosity == 2
    assert state.show_tracebacks
    builds = state.consume_events("preview_build")
    assert builds == [{"count": 1, "backend": "dvipng", "generation": 0}]
    assert state.consume_events("preview_build") == []


def test_main_reports_errors_without_traceback(monkeypatch, capsys) -> None:
    token = cli_state._STATE_VAR.set(cli_state.CLIState())

    def failing_app() -> None:
        raise ConfigError("Unknown preview backend 'mathjax'")

    monkeypatch.setattr(cli_app, "app", failing_app)
    try:
        with pytest.raises(typer.Exit) as excinfo:
            cli_app.main()
    finally:
        cli_state._STATE_VAR.reset(token)

    assert excinfo.value.exit_code == 1
    assert "Unknown preview backend" in capsys.readouterr().err
