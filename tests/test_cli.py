"""CLI tests for shears -- every command via Click's CliRunner.

Commands that read state use file-backed databases written by a
ContextPruner first, since the CLI opens its own engine.
"""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from shears.cli import cli
from shears.engine.pruner import ContextPruner
from shears.engine.tokens import CharTokenCounter
from shears.prompts import PRUNED_OUTPUT_PLACEHOLDER
from tests.conftest import openai_body, tool_message

STEPS = [
    ("call_1", "read", {"filePath": "/a.ts"}, "export const a = 1;\n" * 20),
    ("call_2", "bash", {"command": "ls"}, "a.ts"),
    ("call_3", "read", {"filePath": "/a.ts"}, "export const a = 1;\n" * 20),
]


@pytest.fixture
def runner():
    return CliRunner()


def _seed_db(db_path: str, conversation_id: str = "ses_1") -> None:
    """Run one transform with a duplicate read so the state has a mark."""
    with ContextPruner.open(db_path, token_counter=CharTokenCounter()) as pruner:
        pruner.transform(openai_body(STEPS), conversation_id)


def _write_body(path, body: dict) -> str:
    path.write_text(json.dumps(body), encoding="utf-8")
    return str(path)


class TestLimit:
    def test_claude(self, runner, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_1M_CONTEXT", raising=False)
        monkeypatch.delenv("VERTEX_ANTHROPIC_1M_CONTEXT", raising=False)
        result = runner.invoke(cli, ["limit", "claude-sonnet-4"])
        assert result.exit_code == 0, result.output
        assert "200,000" in result.output

    def test_threshold(self, runner):
        result = runner.invoke(cli, ["limit", "gpt-4o", "--threshold", "0.85"])
        assert result.exit_code == 0, result.output
        assert "128,000" in result.output
        assert "108,800" in result.output


class TestInspect:
    def test_lists_calls(self, runner, tmp_path):
        path = _write_body(tmp_path / "body.json", openai_body(STEPS))
        result = runner.invoke(cli, ["inspect", path])
        assert result.exit_code == 0, result.output
        assert "Format: openai-chat" in result.output
        assert "Calls: 3" in result.output
        assert "duplicate" not in result.output

    def test_prune_writes_output(self, runner, tmp_path):
        path = _write_body(tmp_path / "body.json", openai_body(STEPS))
        out = tmp_path / "pruned.json"
        result = runner.invoke(cli, ["inspect", path, "--prune", "--output", str(out)])
        assert result.exit_code == 0, result.output
        assert "Pruned 1 tool(s)" in result.output
        pruned = json.loads(out.read_text(encoding="utf-8"))
        assert tool_message(pruned, "call_1")["content"] == PRUNED_OUTPUT_PLACEHOLDER
        assert tool_message(pruned, "call_2")["content"] == "a.ts"

    def test_anthropic_body(self, runner, tmp_path):
        from tests.conftest import anthropic_body

        body = anthropic_body([("toolu_1", "read", {"filePath": "/a.ts"}, "content", False)])
        result = runner.invoke(cli, ["inspect", _write_body(tmp_path / "body.json", body)])
        assert result.exit_code == 0, result.output
        assert "Format: anthropic" in result.output

    def test_expect_format(self, runner, tmp_path):
        path = _write_body(tmp_path / "body.json", openai_body(STEPS))
        assert runner.invoke(cli, ["inspect", path, "--expect-format", "openai-chat"]).exit_code == 0

        wrong = runner.invoke(cli, ["inspect", path, "--expect-format", "gemini"])
        assert wrong.exit_code == 1
        assert "not gemini" in wrong.output

        unknown = runner.invoke(cli, ["inspect", path, "--expect-format", "smoke"])
        assert unknown.exit_code == 1
        assert "Unknown format" in unknown.output

    def test_bad_json(self, runner, tmp_path):
        path = tmp_path / "body.json"
        path.write_text("{oops", encoding="utf-8")
        result = runner.invoke(cli, ["inspect", str(path)])
        assert result.exit_code == 1
        assert "Not valid JSON" in result.output

    def test_unrecognized_body(self, runner, tmp_path):
        path = _write_body(tmp_path / "body.json", {"prompt": "hello"})
        result = runner.invoke(cli, ["inspect", path])
        assert result.exit_code == 1
        assert "Unrecognized request body format" in result.output

    def test_bad_config(self, runner, tmp_path):
        project = tmp_path / "project"
        (project / ".shears").mkdir(parents=True)
        (project / ".shears" / "shears.json").write_text('{"nope": 1}', encoding="utf-8")
        path = _write_body(tmp_path / "body.json", openai_body(STEPS))
        result = runner.invoke(cli, ["inspect", path, "--config-dir", str(project)])
        assert result.exit_code == 1
        assert "Invalid shears config" in result.output


class TestStats:
    def test_lists_conversations(self, runner, tmp_path):
        db = str(tmp_path / "shears.db")
        _seed_db(db)
        result = runner.invoke(cli, ["stats", "--db", db])
        assert result.exit_code == 0, result.output
        assert "ses_1" in result.output

    def test_detail(self, runner, tmp_path):
        db = str(tmp_path / "shears.db")
        _seed_db(db)
        result = runner.invoke(cli, ["stats", "--db", db, "ses_1"])
        assert result.exit_code == 0, result.output
        assert "Conversation: ses_1" in result.output
        assert "Prunes:       1" in result.output
        assert "duplicate" in result.output

    def test_unknown_conversation(self, runner, tmp_path):
        db = str(tmp_path / "shears.db")
        _seed_db(db)
        result = runner.invoke(cli, ["stats", "--db", db, "nope"])
        assert result.exit_code == 1
        assert "No stored state" in result.output

    def test_db_from_env(self, runner, tmp_path):
        db = str(tmp_path / "shears.db")
        _seed_db(db)
        result = runner.invoke(cli, ["stats"], env={"SHEARS_DB": db})
        assert result.exit_code == 0, result.output
        assert "ses_1" in result.output

    def test_missing_db(self, runner, tmp_path):
        result = runner.invoke(cli, ["stats", "--db", str(tmp_path / "missing.db")])
        assert result.exit_code == 1
        assert "Database not found" in result.output


class TestForget:
    def test_forget(self, runner, tmp_path):
        db = str(tmp_path / "shears.db")
        _seed_db(db)
        result = runner.invoke(cli, ["forget", "--db", db, "ses_1"])
        assert result.exit_code == 0, result.output
        assert "Forgot conversation ses_1" in result.output

        again = runner.invoke(cli, ["forget", "--db", db, "ses_1"])
        assert again.exit_code == 1
        assert "No stored state" in again.output


def test_version(runner):
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "shears" in result.output
