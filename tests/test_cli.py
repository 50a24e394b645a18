"""Integration tests for CLI commands."""

import json
from pathlib import Path

from typer.testing import CliRunner

from aidev_cli import __version__
from aidev_cli.cli import app

runner = CliRunner()


class TestVersion:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"aidev v{__version__}" in result.stdout


class TestInitCommand:
    """Tests for 'aidev init'."""

    def test_init(self, temp_dir: Path):
        result = runner.invoke(app, ["init", "--path", str(temp_dir)])

        assert result.exit_code == 0
        assert (temp_dir / ".aidev" / "config.yaml").exists()
        assert "created" in result.stdout

    def test_init_twice(self, temp_dir: Path):
        runner.invoke(app, ["init", "--path", str(temp_dir)])
        result = runner.invoke(app, ["init", "--path", str(temp_dir)])

        assert result.exit_code == 0
        assert "already initialised" in result.stdout

    def test_init_missing_directory(self, temp_dir: Path):
        result = runner.invoke(app, ["init", "--path", str(temp_dir / "nope")])
        assert result.exit_code != 0


class TestSyncCommand:
    """Tests for 'aidev sync'."""

    def test_sync_writes_edges(self, sample_project: Path):
        result = runner.invoke(app, ["sync", "-p", str(sample_project)])

        assert result.exit_code == 0
        assert "wrote 4 edges" in result.stdout
        assert (sample_project / ".aidev" / "model" / "graph" / "discovered_edges.yaml").exists()

    def test_check_reports_drift(self, sample_project: Path):
        result = runner.invoke(app, ["sync", "-p", str(sample_project), "--check"])

        assert result.exit_code == 1
        assert "Drift" in result.stdout
        assert not (sample_project / ".aidev" / "model" / "graph" / "discovered_edges.yaml").exists()

    def test_check_in_sync(self, synced_project: Path):
        result = runner.invoke(app, ["sync", "-p", str(synced_project), "--check"])

        assert result.exit_code == 0
        assert "In sync" in result.stdout


class TestImpactCommand:
    """Tests for 'aidev impact'."""

    def test_json_report(self, synced_project: Path):
        result = runner.invoke(app, ["impact", "-p", str(synced_project), "-f", "src/db/client.ts", "--json"])

        assert result.exit_code == 0
        payload = json.loads(result.stdout)
        assert payload["affectedComponents"] == ["api", "auth", "database"]
        assert payload["affectedFiles"] == [
            "src/api/routes.ts",
            "src/auth/session.ts",
            "src/db/client.ts",
            "src/db/index.ts",
        ]
        assert payload["summary"]["filesChanged"] == 1

    def test_json_is_stable(self, synced_project: Path):
        args = ["impact", "-p", str(synced_project), "-f", "src/db/client.ts", "-f", "src/api/routes.ts", "--json"]
        assert runner.invoke(app, args).stdout == runner.invoke(app, args).stdout

    def test_min_confidence(self, synced_project: Path):
        result = runner.invoke(app, [
            "impact", "-p", str(synced_project), "-f", "src/db/client.ts",
            "--json", "--min-confidence", "80",
        ])

        payload = json.loads(result.stdout)
        assert payload["affectedFiles"] == ["src/auth/session.ts", "src/db/client.ts", "src/db/index.ts"]

    def test_text_report(self, synced_project: Path):
        result = runner.invoke(app, ["impact", "-p", str(synced_project), "-f", "src/db/client.ts"])

        assert result.exit_code == 0
        assert "Impact Analysis" in result.stdout
        assert "database" in result.stdout
        assert "src/auth/session.ts" in result.stdout

    def test_explain(self, synced_project: Path):
        result = runner.invoke(app, [
            "impact", "-p", str(synced_project), "-f", "src/db/client.ts",
            "--explain", "src/api/routes.ts", "--json",
        ])

        payload = json.loads(result.stdout)
        assert payload["path"] == ["src/db/client.ts", "src/auth/session.ts", "src/api/routes.ts"]
        assert [h["direction"] for h in payload["hops"]] == ["reverse", "reverse"]

    def test_explain_unreachable(self, synced_project: Path):
        result = runner.invoke(app, [
            "impact", "-p", str(synced_project), "-f", "src/db/client.ts",
            "--explain", "tools/helpers.py", "--json",
        ])

        assert result.exit_code == 0
        assert json.loads(result.stdout) == {"path": None, "target": "tools/helpers.py"}

    def test_malformed_model_exits_with_config_code(self, sample_project: Path):
        (sample_project / ".aidev" / "config.yaml").write_text("scan: [oops\n")
        result = runner.invoke(app, ["impact", "-p", str(sample_project), "-f", "a.ts", "--json"])

        assert result.exit_code == 10
        assert json.loads(result.stdout)["error"] == "ConfigError"

    def test_not_a_git_repository(self, temp_dir: Path):
        result = runner.invoke(app, ["impact", "-p", str(temp_dir)])
        assert result.exit_code == 20


class TestPromptCommand:
    """Tests for 'aidev prompt'."""

    def test_openai_output_file(self, synced_project: Path, temp_dir: Path, offline_estimator):
        out = temp_dir / "pack" / "context.json"
        result = runner.invoke(app, [
            "prompt", "-p", str(synced_project), "-f", "src/db/client.ts",
            "--provider", "openai", "-t", "Rotate the key", "-o", str(out),
        ])

        assert result.exit_code == 0
        messages = json.loads(out.read_text())
        assert [m["role"] for m in messages] == ["system", "user"]
        assert "sk-abcdefghijklmnopqrstuvwxyz123456" not in out.read_text()

    def test_generic_to_stdout(self, synced_project: Path):
        result = runner.invoke(app, [
            "prompt", "-p", str(synced_project), "-f", "tools/helpers.py", "--provider", "generic",
        ])

        assert result.exit_code == 0
        assert "# AI Development Context Pack" in result.stdout
        assert "## File: tools/helpers.py" in result.stdout

    def test_claude_default(self, synced_project: Path, temp_dir: Path):
        out = temp_dir / "context.xml"
        result = runner.invoke(app, ["prompt", "-p", str(synced_project), "-f", "src/db/client.ts", "-o", str(out)])

        assert result.exit_code == 0
        assert out.read_text().startswith("<context>")

    def test_unknown_provider(self, synced_project: Path):
        result = runner.invoke(app, ["prompt", "-p", str(synced_project), "-f", "a.ts", "--provider", "llama"])
        assert result.exit_code == 10

    def test_invalid_budget(self, synced_project: Path):
        result = runner.invoke(app, ["prompt", "-p", str(synced_project), "-f", "a.ts", "--budget", "0"])
        assert result.exit_code == 10


class TestDefaultsCommands:
    """Tests for 'aidev set-defaults' / 'aidev show-defaults'."""

    def test_show_builtin(self):
        result = runner.invoke(app, ["show-defaults"])

        assert result.exit_code == 0
        assert "claude" in result.stdout
        assert "built-in" in result.stdout

    def test_set_and_show(self):
        result = runner.invoke(app, ["set-defaults", "--provider", "openai", "--budget", "5000"])
        assert result.exit_code == 0

        result = runner.invoke(app, ["show-defaults"])
        assert "openai" in result.stdout
        assert "5000" in result.stdout
        assert "user config" in result.stdout

    def test_user_default_used_by_prompt(self, synced_project: Path, temp_dir: Path, offline_estimator):
        runner.invoke(app, ["set-defaults", "--provider", "openai"])
        out = temp_dir / "pack.json"
        result = runner.invoke(app, ["prompt", "-p", str(synced_project), "-f", "src/db/client.ts", "-o", str(out)])

        assert result.exit_code == 0
        assert json.loads(out.read_text())[0]["role"] == "system"

    def test_reset(self):
        runner.invoke(app, ["set-defaults", "--provider", "openai"])
        result = runner.invoke(app, ["set-defaults", "--reset"])
        assert result.exit_code == 0

        assert "built-in" in runner.invoke(app, ["show-defaults"]).stdout

    def test_requires_an_option(self):
        result = runner.invoke(app, ["set-defaults"])
        assert result.exit_code != 0

    def test_rejects_unknown_provider(self):
        result = runner.invoke(app, ["set-defaults", "--provider", "llama"])
        assert result.exit_code != 0


class TestStateCommand:
    """Tests for 'aidev state'."""

    def test_empty_state(self, temp_dir: Path):
        result = runner.invoke(app, ["state", "-p", str(temp_dir)])

        assert result.exit_code == 0
        assert "Internal State" in result.stdout
        assert not (temp_dir / ".aidev" / "session" / "internal_state.yaml").exists()

    def test_record_and_show_json(self, temp_dir: Path):
        result = runner.invoke(app, [
            "state", "-p", str(temp_dir),
            "--objective", "Fix login",
            "--fact", "Sessions live in redis",
            "--question", "Who owns auth?",
            "--constraint", "No schema changes", "--constraint-type", "hard",
            "--next", "Read session.ts",
        ])
        assert result.exit_code == 0
        assert "Objective added" in result.stdout

        shown = runner.invoke(app, ["state", "-p", str(temp_dir), "--json"])
        data = json.loads(shown.stdout)
        task = data["task_context"]
        assert [o["goal"] for o in task["objectives"]] == ["Fix login"]
        assert task["known_facts"][0]["source"] == "user"
        assert task["constraints"][0]["type"] == "hard"
        assert task["next_action"] == "Read session.ts"

    def test_decide_requires_why(self, temp_dir: Path):
        result = runner.invoke(app, ["state", "-p", str(temp_dir), "--decide", "use redis"])
        assert result.exit_code == 1

    def test_invalid_priority_is_config_error(self, temp_dir: Path):
        result = runner.invoke(app, [
            "state", "-p", str(temp_dir), "--question", "x", "--question-priority", "urgent",
        ])
        assert result.exit_code == 10

    def test_refresh_from_files(self, synced_project: Path):
        result = runner.invoke(app, [
            "state", "-p", str(synced_project), "--refresh", "-f", "src/db/client.ts", "--compact",
        ])
        assert result.exit_code == 0
        assert "Code context refreshed" in result.stdout
        assert "3 components" in result.stdout

    def test_budget_and_reset(self, temp_dir: Path):
        runner.invoke(app, ["state", "-p", str(temp_dir), "--objective", "a", "--budget", "2000"])
        shown = runner.invoke(app, ["state", "-p", str(temp_dir), "--json"])
        assert json.loads(shown.stdout)["budget"]["max_tokens"] == 2000

        result = runner.invoke(app, ["state", "-p", str(temp_dir), "--reset"])
        assert result.exit_code == 0
        shown = runner.invoke(app, ["state", "-p", str(temp_dir), "--json"])
        assert json.loads(shown.stdout)["task_context"]["objectives"] == []
