"""Tests for the CLI interface.

Covers every command group via CliRunner against a temporary state
directory. LLM calls are patched out.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch

from typer.testing import CliRunner

from catalai import __version__
from catalai.cli import app
from catalai.errors import ProviderError, ProviderErrorReason
from catalai.matrix.store import MatrixVersionStore
from catalai.schemas.classification import ConnectionProbe, LLMClassification
from catalai.schemas.feedback import FeedbackSession
from catalai.schemas.suggestion import SuggestionStatus

# NO_COLOR=1 prevents Rich from injecting ANSI codes inside option names,
# which breaks substring matching in CI (headless, no TTY).
# COLUMNS=200 prevents wrapping that could split a flag across lines.
runner = CliRunner(env={"NO_COLOR": "1", "COLUMNS": "200"})

_PROVIDER = "catalai.cli.LiteLLMProvider"
_T0 = datetime(2025, 4, 1, 9, 0, tzinfo=UTC)


# ── Factories ──────────────────────────────────────────────────────


def _invoke(state_dir, *args):
    return runner.invoke(app, ["--state-dir", str(state_dir), *args])


def _write_sessions(path, count: int = 4):
    lines = [
        FeedbackSession(
            session_id=f"cli-{i}",
            final_category="RPA",
            final_confidence=0.8,
            user_corrected_category="Digitise",
            attribute_values={"frequency": "weekly", "complexity": "low"},
            timestamp=_T0 + timedelta(hours=i),
            llm_category="RPA",
            llm_confidence=0.8,
            subject="Procurement",
        ).model_dump_json()
        for i in range(count)
    ]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def _prepared(tmp_path):
    """State dir with the baseline active and feedback imported."""
    state = tmp_path / "state"
    assert _invoke(state, "matrix", "baseline").exit_code == 0
    sessions = _write_sessions(tmp_path / "sessions.jsonl")
    assert _invoke(state, "sessions", "import", str(sessions)).exit_code == 0
    return state


# ── Global options ─────────────────────────────────────────────────


class TestGlobal:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_commands(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("matrix", "evaluate", "sessions", "analyze", "suggestions", "validate"):
            assert command in result.output

    def test_bad_config(self, tmp_path):
        result = runner.invoke(app, ["--config", str(tmp_path / "missing.toml"), "matrix", "show"])
        assert result.exit_code == 1
        assert "Error loading config" in result.output


# ── matrix ─────────────────────────────────────────────────────────


class TestMatrixCommands:
    def test_show_without_matrix(self, tmp_path):
        result = _invoke(tmp_path, "matrix", "show")
        assert result.exit_code == 0
        assert "No active matrix" in result.output

    def test_baseline_then_show(self, tmp_path):
        result = _invoke(tmp_path, "matrix", "baseline")
        assert result.exit_code == 0
        assert "Activated baseline matrix v1" in result.output

        result = _invoke(tmp_path, "matrix", "show")
        assert result.exit_code == 0
        assert "Matrix v1" in result.output
        assert "rpa-frequent-simple" in result.output
        assert "override → RPA" in result.output

    def test_export_import_history(self, tmp_path):
        _invoke(tmp_path, "matrix", "baseline")
        exported = tmp_path / "export.json"

        result = _invoke(tmp_path, "matrix", "export", str(exported))
        assert result.exit_code == 0
        assert json.loads(exported.read_text())["format"] == "catalai.matrix"

        result = _invoke(tmp_path, "matrix", "import", str(exported))
        assert result.exit_code == 0
        assert "Activated matrix v2" in result.output

        result = _invoke(tmp_path, "matrix", "history")
        assert result.exit_code == 0
        assert "v1" in result.output
        assert "v2 *" in result.output

    def test_import_invalid_document(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text('{"format": "other"}', encoding="utf-8")
        result = _invoke(tmp_path, "matrix", "import", str(path))
        assert result.exit_code == 1
        assert "Unsupported document format" in result.output

    def test_export_without_matrix(self, tmp_path):
        result = _invoke(tmp_path, "matrix", "export", str(tmp_path / "out.json"))
        assert result.exit_code == 1
        assert "No active matrix" in result.output

    def test_revert(self, tmp_path):
        _invoke(tmp_path, "matrix", "baseline")
        _invoke(tmp_path, "matrix", "baseline")
        result = _invoke(tmp_path, "matrix", "revert", "1")
        assert result.exit_code == 0
        assert "Restored v1 as matrix v3" in result.output


# ── evaluate / classify ────────────────────────────────────────────


class TestEvaluate:
    def test_override_shown(self, tmp_path):
        _invoke(tmp_path, "matrix", "baseline")
        result = _invoke(
            tmp_path, "evaluate",
            "--category", "AI Agent", "--confidence", "0.8",
            "-a", "frequency=daily", "-a", "complexity=low", "-a", "risk=low",
        )
        assert result.exit_code == 0
        assert "RPA" in result.output
        assert "LLM said AI Agent" in result.output
        assert "Frequent simple work is RPA" in result.output
        assert "clarify" in result.output

    def test_bad_attribute_pair(self, tmp_path):
        _invoke(tmp_path, "matrix", "baseline")
        result = _invoke(
            tmp_path, "evaluate", "--category", "RPA", "--confidence", "0.8", "-a", "frequency",
        )
        assert result.exit_code == 1
        assert "Invalid --attr" in result.output

    def test_numeric_attribute_bucketed(self, tmp_path):
        _invoke(tmp_path, "matrix", "baseline")
        result = _invoke(
            tmp_path, "evaluate", "--category", "RPA", "--confidence", "0.8",
            "-a", "frequency=daily", "-a", "user_count=120",
        )
        assert result.exit_code == 0
        assert "0.85" in result.output

    def test_classify_uses_provider(self, tmp_path):
        _invoke(tmp_path, "matrix", "baseline")
        with patch(_PROVIDER) as provider_cls:
            provider_cls.return_value.complete = AsyncMock(
                return_value=LLMClassification(category="AI Agent", confidence=0.7),
            )
            result = _invoke(
                tmp_path, "classify", "Re-key orders every hour", "-a", "frequency=hourly",
            )
        assert result.exit_code == 0
        assert "AI Agent" in result.output


# ── sessions ───────────────────────────────────────────────────────


class TestSessions:
    def test_import_and_list(self, tmp_path):
        sessions = _write_sessions(tmp_path / "s.jsonl", count=3)
        result = _invoke(tmp_path, "sessions", "import", str(sessions))
        assert result.exit_code == 0
        assert "Imported 3 feedback session(s)" in result.output

        result = _invoke(tmp_path, "sessions", "list")
        assert result.exit_code == 0
        assert "cli-2" in result.output
        assert "Digitise" in result.output

    def test_list_empty(self, tmp_path):
        result = _invoke(tmp_path, "sessions", "list")
        assert result.exit_code == 0
        assert "No feedback sessions found" in result.output

    def test_list_bad_date(self, tmp_path):
        result = _invoke(tmp_path, "sessions", "list", "--since", "yesterday")
        assert result.exit_code == 1
        assert "Invalid date" in result.output

    def test_import_missing_file(self, tmp_path):
        result = _invoke(tmp_path, "sessions", "import", str(tmp_path / "missing.jsonl"))
        assert result.exit_code == 1


# ── analyze / suggestions / validate ───────────────────────────────


class TestLearningLoop:
    def test_analyze_submits_suggestions(self, tmp_path):
        state = _prepared(tmp_path)

        result = _invoke(state, "analyze")

        assert result.exit_code == 0
        assert "Sessions analysed: 4" in result.output
        assert "Suggestions (1)" in result.output
        pending = MatrixVersionStore.open(state).list_suggestions(SuggestionStatus.PENDING)
        assert len(pending) == 1

    def test_analyze_json(self, tmp_path):
        state = _prepared(tmp_path)
        result = _invoke(state, "analyze", "--json")
        assert result.exit_code == 0
        assert json.loads(result.output)["analysed_sessions"] == 4

    def test_analyze_without_feedback(self, tmp_path):
        _invoke(tmp_path, "matrix", "baseline")
        result = _invoke(tmp_path, "analyze")
        assert result.exit_code == 1
        assert "No feedback sessions" in result.output

    def test_review_cycle(self, tmp_path):
        state = _prepared(tmp_path)
        _invoke(state, "analyze")
        suggestion_id = MatrixVersionStore.open(state).list_suggestions()[0].id

        result = _invoke(state, "suggestions", "list")
        assert result.exit_code == 0
        assert suggestion_id[:8] in result.output
        assert "pending" in result.output

        result = _invoke(state, "validate", suggestion_id[:8], "--seed", "7")
        assert result.exit_code == 0
        assert "seed 7" in result.output
        assert "4 of 4" in result.output

        result = _invoke(state, "suggestions", "approve", suggestion_id[:8], "--reviewer", "kim")
        assert result.exit_code == 0
        assert "matrix v2 is active" in result.output

        result = _invoke(state, "suggestions", "approve", suggestion_id[:8])
        assert result.exit_code == 1
        assert "already approved" in result.output

    def test_reject(self, tmp_path):
        state = _prepared(tmp_path)
        _invoke(state, "analyze")
        suggestion_id = MatrixVersionStore.open(state).list_suggestions()[0].id

        result = _invoke(state, "suggestions", "reject", suggestion_id, "--notes", "Too broad")
        assert result.exit_code == 0

        store = MatrixVersionStore.open(state)
        assert store.get_suggestion(suggestion_id).status == SuggestionStatus.REJECTED
        assert store.require_active().version == 1

    def test_show_suggestion(self, tmp_path):
        state = _prepared(tmp_path)
        _invoke(state, "analyze")
        suggestion_id = MatrixVersionStore.open(state).list_suggestions()[0].id
        result = _invoke(state, "suggestions", "show", suggestion_id[:8])
        assert result.exit_code == 0
        assert "add_rule" in result.output

    def test_unknown_suggestion(self, tmp_path):
        _invoke(tmp_path, "matrix", "baseline")
        result = _invoke(tmp_path, "suggestions", "approve", "deadbeef")
        assert result.exit_code == 1
        assert "Suggestion not found" in result.output


# ── provider ───────────────────────────────────────────────────────


class TestProvider:
    def test_provider_ok(self, tmp_path):
        with patch(_PROVIDER) as provider_cls:
            provider_cls.return_value.probe = AsyncMock(
                return_value=ConnectionProbe(text="ready", latency=0.25, model="gpt-4o-mini"),
            )
            result = _invoke(tmp_path, "provider", "test")
        assert result.exit_code == 0
        assert "'ready'" in result.output
        assert "0.25s" in result.output

    def test_provider_failure(self, tmp_path):
        with patch(_PROVIDER) as provider_cls:
            provider_cls.return_value.probe = AsyncMock(
                side_effect=ProviderError(ProviderErrorReason.AUTH, "Authentication failed"),
            )
            result = _invoke(tmp_path, "provider", "test")
        assert result.exit_code == 1
        assert "Authentication failed" in result.output
