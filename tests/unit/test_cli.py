"""Tests for CLI entry points."""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from appvet import __version__
from appvet.cli.main import EXIT_CONFIG_ERROR, EXIT_FAILED, cli, exit_code_for
from appvet.core.config import ENV_OVERRIDES
from appvet.models.review import Recommendation, ReviewResult, ReviewStatus

from conftest import PRIVATE_KEY_LINE, FakeProvider


@pytest.fixture
def provider(monkeypatch, tmp_path):
    """Isolated cwd and environment, with the reasoning backend faked out."""
    monkeypatch.chdir(tmp_path)
    for name in [*ENV_OVERRIDES, "AI_REVIEW_MODEL"]:
        monkeypatch.delenv(name, raising=False)
    fake = FakeProvider()
    monkeypatch.setattr("appvet.core.orchestrator.get_ai_provider", lambda config: fake)
    return fake


def invoke(*args):
    return CliRunner().invoke(cli, [str(a) for a in args])


class TestExitCodes:
    @pytest.mark.parametrize(
        "recommendation,code",
        [
            (Recommendation.APPROVE, 0),
            (Recommendation.REJECT, 1),
            (Recommendation.MANUAL_REVIEW, 2),
        ],
    )
    def test_completed(self, recommendation, code):
        result = ReviewResult(
            id="r", app_id="a", file_hash="h",
            status=ReviewStatus.COMPLETED, recommendation=recommendation,
        )
        assert exit_code_for(result) == code

    def test_failed(self):
        result = ReviewResult(id="r", app_id="a", file_hash="h", status=ReviewStatus.FAILED)
        assert exit_code_for(result) == EXIT_FAILED


class TestCli:
    def test_help_lists_commands(self):
        result = invoke("--help")
        assert result.exit_code == 0
        for command in ("review", "quick", "trigger"):
            assert command in result.output

    def test_version(self):
        result = invoke("--version")
        assert result.exit_code == 0
        assert __version__ in result.output


class TestReviewCommand:
    def test_requires_app_id(self, provider, make_zip):
        result = invoke("review", make_zip({"a.js": "1\n"}))
        assert result.exit_code == 2
        assert provider.call_count == 0

    def test_clean_app_approved(self, provider, make_zip, tmp_path):
        out = tmp_path / "result.json"
        result = invoke("review", make_zip({"src/index.js": "export const a = 1;\n"}),
                        "--app-id", "weather-bot", "-o", out)

        assert result.exit_code == 0
        data = json.loads(out.read_text(encoding="utf-8"))
        assert data["appId"] == "weather-bot"
        assert data["recommendation"] == "approve"
        assert len(data["fileHash"]) == 64
        assert provider.call_count == 1

    def test_malware_rejected(self, provider, make_zip, tmp_path):
        out = tmp_path / "result.json"
        result = invoke("review", make_zip({"x.js": "eval(atob('eA=='));\n"}),
                        "--app-id", "bad", "-o", out)
        assert result.exit_code == 1
        assert json.loads(out.read_text(encoding="utf-8"))["overallScore"] == 0
        assert provider.call_count == 0

    def test_secret_needs_manual_review(self, provider, make_zip, tmp_path):
        out = tmp_path / "result.json"
        result = invoke("review", make_zip({"k.js": f"`{PRIVATE_KEY_LINE}`\n"}),
                        "--app-id", "keys", "-o", out)
        assert result.exit_code == 2
        assert json.loads(out.read_text(encoding="utf-8"))["recommendation"] == "manual_review"

    def test_corrupt_archive(self, provider, tmp_path):
        archive = tmp_path / "broken.zip"
        archive.write_bytes(b"not a zip")
        out = tmp_path / "result.json"
        result = invoke("review", archive, "--app-id", "broken", "-o", out)
        assert result.exit_code == EXIT_FAILED
        data = json.loads(out.read_text(encoding="utf-8"))
        assert data["status"] == "failed"
        assert data["recommendation"] is None

    def test_invalid_config(self, provider, make_zip, tmp_path):
        config = tmp_path / "bad.yaml"
        config.write_text("review:\n  approve_threshold: 10\n  reject_threshold: 50\n")
        result = invoke("review", make_zip({"a.js": "1\n"}), "--app-id", "x", "--config", config)
        assert result.exit_code == EXIT_CONFIG_ERROR

    def test_disabled_pipeline(self, provider, make_zip, monkeypatch):
        monkeypatch.setenv("ENABLE_AI_REVIEW", "false")
        result = invoke("review", make_zip({"a.js": "1\n"}), "--app-id", "x")
        assert result.exit_code == EXIT_CONFIG_ERROR
        assert provider.call_count == 0

    def test_completed_review_reused(self, provider, make_zip, tmp_path):
        archive = make_zip({"a.js": "let a = 1;\n"})
        store = tmp_path / "store"

        first = invoke("review", archive, "--app-id", "app-1", "--store", store, "-o", tmp_path / "1.json")
        second = invoke("review", archive, "--app-id", "app-1", "--store", store, "-o", tmp_path / "2.json")

        assert first.exit_code == second.exit_code == 0
        assert provider.call_count == 1
        one = json.loads((tmp_path / "1.json").read_text(encoding="utf-8"))
        two = json.loads((tmp_path / "2.json").read_text(encoding="utf-8"))
        assert one["id"] == two["id"]

    def test_markdown_report(self, provider, make_zip):
        result = invoke("review", make_zip({"a.js": "1\n"}), "--app-id", "x", "--report")
        assert result.exit_code == 0
        assert "# Security Review Report" in result.output


class TestQuickCommand:
    def test_no_reasoning_calls(self, provider, make_zip):
        result = invoke("quick", make_zip({"a.js": "document.cookie = 'a';\n"}), "--app-id", "x")
        assert result.exit_code == 2
        assert '"overallScore": 60' in result.output
        assert provider.call_count == 0

    def test_output_matches_review_serialization(self, provider, make_zip, tmp_path):
        out = tmp_path / "quick.json"
        result = invoke("quick", make_zip({"a.js": "1\n"}), "--app-id", "x", "--file-hash", "abc", "-o", out)
        assert result.exit_code == 0
        data = json.loads(out.read_text(encoding="utf-8"))
        assert data["fileHash"] == "abc"
        assert data["summary"] == "Quick scan passed."

    def test_ignores_provider_settings(self, make_zip, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        for name in [*ENV_OVERRIDES, "AI_REVIEW_MODEL"]:
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("AI_REVIEW_PROVIDER", "carrier-pigeon")
        result = invoke("quick", make_zip({"a.js": "document.cookie = 'a';\n"}), "--app-id", "x")
        assert result.exit_code == 2
        assert '"overallScore": 60' in result.output


class TestTriggerCommand:
    def test_auto_trigger_off_by_default(self, provider):
        result = invoke("trigger", "10")
        assert result.exit_code == 0
        assert result.output.strip() == "no"

    def test_low_score_triggers(self, provider, tmp_path):
        config = tmp_path / "appvet.yaml"
        config.write_text("review:\n  auto_trigger: true\n")
        result = invoke("trigger", "10", "--config", config)
        assert result.output.strip() == "yes"

    def test_score_out_of_range(self, provider):
        assert invoke("trigger", "150").exit_code == 2
