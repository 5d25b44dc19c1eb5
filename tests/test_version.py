from typer.testing import CliRunner

import texpreview
from texpreview.ui.cli import app


def test_get_version_matches_public_api() -> None:
    assert texpreview.get_version() == texpreview.__version__
    assert isinstance(texpreview.__version__, str)


def test_cli_version_flag() -> None:
    runner = CliRunner()
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0, result.stdout
    assert result.stdout.strip() == texpreview.get_version()
