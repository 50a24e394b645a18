"""Tests for prompt pack assembly."""

from datetime import datetime, timezone

import pytest

from aidev_cli.generator import (
    PromptPackGenerator,
    format_file_content,
    language_for,
)
from aidev_cli.impact import ImpactAnalyzer
from aidev_cli.model_loader import load_project_model
from conftest import changed

NOW = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def report_for(root, *paths):
    return ImpactAnalyzer(load_project_model(root)).analyze(changed(*paths))


class TestFormatting:
    @pytest.mark.parametrize(
        "path, language",
        [("a/b.ts", "typescript"), ("x.py", "python"), ("Makefile", ""), ("v1.2/conf.toml", "toml")],
    )
    def test_language_for(self, path, language):
        assert language_for(path) == language

    def test_format_file_content(self):
        text = format_file_content("src/a.py", "x = 1", "modified")
        assert text == "## File: src/a.py\n**Context:** modified\n\n```python\nx = 1\n```"


class TestPromptPackGenerator:
    """End-to-end pack generation on the sample project."""

    def test_sections_in_category_order(self, synced_project):
        generator = PromptPackGenerator(synced_project, task_description="Rotate the DB key")
        pack = generator.generate(report_for(synced_project, "src/db/client.ts"), now=NOW)

        assert [s.category for s in pack.sections] == [
            "task", "changed", "impacted", "contract", "architecture",
        ]
        assert pack.sections[0].content == "Rotate the DB key"
        assert pack.sections[1].files == ["src/db/client.ts"]
        assert pack.sections[3].files == [".aidev/model/contracts/auth.yaml"]

    def test_impacted_ordered_by_confidence(self, synced_project):
        pack = PromptPackGenerator(synced_project).generate(
            report_for(synced_project, "src/db/client.ts"), now=NOW
        )
        impacted = next(s for s in pack.sections if s.category == "impacted")
        assert impacted.files == ["src/auth/session.ts", "src/db/index.ts", "src/api/routes.ts"]

    def test_secrets_redacted(self, synced_project):
        pack = PromptPackGenerator(synced_project).generate(
            report_for(synced_project, "src/db/client.ts"), now=NOW
        )

        assert "sk-abcdefghijklmnopqrstuvwxyz123456" not in pack.content
        assert "[REDACTED:api_key]" in pack.content
        assert pack.manifest["files"]["redacted"] == 1

    def test_manifest(self, synced_project):
        pack = PromptPackGenerator(synced_project, budget=50000).generate(
            report_for(synced_project, "src/db/client.ts"), now=NOW
        )
        manifest = pack.manifest

        assert manifest["version"] == "1.0.0"
        assert manifest["provider"] == "claude"
        assert manifest["generatedAt"] == NOW.isoformat()
        assert manifest["files"]["changed"] == 1
        assert manifest["files"]["impacted"] == 3
        assert manifest["files"]["included"] == 6
        assert manifest["components"] == {"affected": 3, "names": ["api", "auth", "database"]}
        assert manifest["tokens"]["budget"] == 50000
        assert manifest["tokens"]["total"] == pack.allocation.total_tokens
        assert 0 < manifest["tokens"]["utilization"] < 1

    def test_content_hash_ignores_timestamp(self, synced_project):
        report = report_for(synced_project, "src/db/client.ts")
        first = PromptPackGenerator(synced_project).generate(report, now=NOW)
        later = PromptPackGenerator(synced_project).generate(
            report, now=datetime(2027, 6, 1, tzinfo=timezone.utc)
        )

        assert first.content != later.content
        assert first.manifest["contentHash"] == later.manifest["contentHash"]
        assert len(first.manifest["contentHash"]) == 12

    def test_optional_sections_disabled(self, synced_project):
        generator = PromptPackGenerator(
            synced_project, include_architecture=False, include_contracts=False
        )
        pack = generator.generate(report_for(synced_project, "src/db/client.ts"), now=NOW)
        assert [s.category for s in pack.sections] == ["changed", "impacted"]

    def test_deleted_file_skipped(self, synced_project):
        pack = PromptPackGenerator(synced_project, include_architecture=False).generate(
            report_for(synced_project, "src/removed.ts"), now=NOW
        )
        assert pack.sections == []
        assert pack.manifest["files"]["included"] == 0

    def test_render_header(self, synced_project):
        pack = PromptPackGenerator(synced_project, provider="generic").generate(
            report_for(synced_project, "tools/helpers.py"), now=NOW
        )
        assert pack.content.startswith("# AI Development Context Pack\n")
        assert f"Generated: {NOW.isoformat()}" in pack.content
        assert "Provider: generic" in pack.content
        assert "```python" in pack.content

    def test_small_budget_drops_items(self, synced_project):
        pack = PromptPackGenerator(synced_project, budget=200).generate(
            report_for(synced_project, "src/db/client.ts"), now=NOW
        )
        assert pack.allocation.dropped
        assert pack.manifest["tokens"]["total"] <= 200
