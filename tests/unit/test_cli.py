import json

import pytest
from typer.testing import CliRunner

from scholargraph import cli
from scholargraph import settings as settings_module

runner = CliRunner()


@pytest.fixture(autouse=True)
def env(tmp_path, monkeypatch):
    monkeypatch.setenv("SCHOLARGRAPH_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.delenv("SCHOLARGRAPH_OPENAI_API_KEY", raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(settings_module, "_settings", None)
    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)


def test_init_db_then_stats():
    result = runner.invoke(cli.app, ["init-db"])
    assert result.exit_code == 0, result.output

    result = runner.invoke(cli.app, ["stats"])
    assert result.exit_code == 0, result.output
    assert "Papers: 0" in result.output
    assert "Nodes: 0" in result.output


def test_papers_lists_by_status():
    runner.invoke(cli.app, ["init-db"])
    result = runner.invoke(cli.app, ["papers", "--status", "failed"])
    assert result.exit_code == 0, result.output
    assert "0 failed paper(s)" in result.output


def test_ingest_requires_api_key(tmp_path):
    papers = tmp_path / "papers.json"
    papers.write_text(json.dumps([{"title": "A Paper"}]), encoding="utf-8")
    result = runner.invoke(cli.app, ["ingest", str(papers)])
    assert result.exit_code == 2
    assert "SCHOLARGRAPH_OPENAI_API_KEY" in result.output


def test_check_requires_api_key():
    result = runner.invoke(cli.app, ["check"])
    assert result.exit_code == 2


def test_reprocess_rejects_bad_id(monkeypatch):
    monkeypatch.setenv("SCHOLARGRAPH_OPENAI_API_KEY", "k")
    result = runner.invoke(cli.app, ["reprocess", "not-a-uuid"])
    assert result.exit_code != 0
