"""Tests for catalai.learning.analyzer — mining feedback for suggestions."""

from __future__ import annotations

import random
from datetime import UTC, datetime, timedelta

import pytest

from catalai.errors import EmptyDatasetError, OperationCancelledError
from catalai.learning.analyzer import FeedbackAnalyzer
from catalai.learning.cancellation import CancellationToken
from catalai.matrix.document import baseline_matrix
from catalai.schemas.config import AnalysisConfig
from catalai.schemas.feedback import AnalysisFilters, FeedbackSession
from catalai.schemas.matrix import (
    Condition,
    ConditionOperator,
    DecisionMatrix,
    OverrideAction,
    Rule,
)
from catalai.schemas.suggestion import AddRule, ModifyRule, SuggestionStatus

_T0 = datetime(2025, 3, 1, 9, 0, tzinfo=UTC)


# ── Factories ──────────────────────────────────────────────────────


def _session(
    index: int,
    final: str = "RPA",
    corrected: str | None = "Digitise",
    confidence: float = 0.8,
    subject: str | None = None,
    **values,
) -> FeedbackSession:
    attributes = {"frequency": "weekly", "complexity": "low"}
    attributes.update(values)
    return FeedbackSession(
        session_id=f"s{index:04d}",
        final_category=final,
        final_confidence=confidence,
        user_corrected_category=corrected,
        attribute_values=attributes,
        timestamp=_T0 + timedelta(hours=index),
        subject=subject,
    )


def _matrix() -> DecisionMatrix:
    return baseline_matrix().model_copy(update={"version": 4})


def _analyze(sessions, matrix=None, **filter_overrides):
    filters = AnalysisFilters(**filter_overrides)
    return FeedbackAnalyzer(matrix or _matrix()).analyze(sessions, filters)


# ── Selection ──────────────────────────────────────────────────────


class TestSelection:
    def test_empty_input_raises(self):
        with pytest.raises(EmptyDatasetError):
            _analyze([])

    def test_only_confirmed_sessions_raises_by_default(self):
        sessions = [_session(i, corrected=None) for i in range(5)]
        with pytest.raises(EmptyDatasetError):
            _analyze(sessions)

    def test_same_category_correction_is_not_a_misclassification(self):
        sessions = [_session(i, corrected="RPA") for i in range(5)]
        with pytest.raises(EmptyDatasetError):
            _analyze(sessions)

    def test_date_range_is_inclusive(self):
        sessions = [_session(i) for i in range(10)]
        report = _analyze(
            sessions,
            start=_T0 + timedelta(hours=2),
            end=_T0 + timedelta(hours=5),
        )
        assert report.analysed_sessions == 4
        assert report.data_range.start == _T0 + timedelta(hours=2)
        assert report.data_range.end == _T0 + timedelta(hours=5)

    def test_all_sessions_when_not_restricted(self):
        sessions = [_session(i, corrected=None) for i in range(3)] + [
            _session(i) for i in range(3, 5)
        ]
        report = _analyze(sessions, misclassifications_only=False)
        assert report.analysed_sessions == 5
        assert report.overall_agreement_rate == pytest.approx(0.6)
        assert report.category_agreement_rates == {"RPA": pytest.approx(0.6)}


# ── Patterns and suggestions ───────────────────────────────────────


class TestSuggestions:
    def test_pattern_below_support_is_ignored(self):
        report = _analyze([_session(i) for i in range(2)])
        assert report.patterns == []
        assert report.suggestions == []

    def test_qualifying_pattern_becomes_add_rule(self):
        report = _analyze([_session(i) for i in range(4)])

        assert len(report.patterns) == 1
        assert report.patterns[0].support == 4
        assert len(report.suggestions) == 1

        suggestion = report.suggestions[0]
        assert suggestion.status == SuggestionStatus.PENDING
        assert suggestion.base_version == 4
        assert suggestion.evidence.support == 4
        assert suggestion.evidence.session_ids == ("s0000", "s0001", "s0002", "s0003")

        change = suggestion.proposed_change
        assert isinstance(change, AddRule)
        assert change.rule.id.startswith("learned-")
        assert change.rule.priority == 96
        assert change.rule.action.category == "Digitise"
        assert [c.attribute for c in change.rule.conditions] == ["frequency", "complexity"]
        assert all(c.operator == ConditionOperator.EQ for c in change.rule.conditions)

    def test_suggested_rule_id_is_stable(self):
        first = _analyze([_session(i) for i in range(4)]).suggestions[0]
        second = _analyze([_session(i) for i in range(4)]).suggestions[0]
        assert first.proposed_change.rule.id == second.proposed_change.rule.id
        assert first.id != second.id

    def test_values_grouped_case_insensitively(self):
        sessions = [
            _session(0, frequency="Weekly"),
            _session(1, frequency="WEEKLY"),
            _session(2, frequency="weekly"),
        ]
        report = _analyze(sessions)
        assert len(report.patterns) == 1
        assert report.patterns[0].signature["frequency"] == "weekly"

    def test_unregistered_attributes_are_unactionable(self):
        sessions = [
            FeedbackSession(
                session_id=f"x{i}",
                final_category="RPA",
                user_corrected_category="Simplify",
                attribute_values={"colour": "red"},
                timestamp=_T0,
            )
            for i in range(3)
        ]
        report = _analyze(sessions)
        assert report.suggestions == []
        assert len(report.unactionable_patterns) == 1

    def test_existing_override_is_modified(self):
        rule = Rule(
            id="weekly-simple-rpa",
            priority=50,
            conditions=(
                Condition(attribute="frequency", operator=ConditionOperator.EQ, value="weekly"),
                Condition(attribute="complexity", operator=ConditionOperator.EQ, value="low"),
            ),
            action=OverrideAction(category="RPA"),
        )
        matrix = _matrix().model_copy(update={"rules": (rule,)})

        report = _analyze([_session(i) for i in range(3)], matrix=matrix)

        change = report.suggestions[0].proposed_change
        assert isinstance(change, ModifyRule)
        assert change.rule_id == "weekly-simple-rpa"
        assert change.rule.action.category == "Digitise"
        assert change.rule.priority == 50

    def test_existing_matching_override_is_not_suggested_again(self):
        rule = Rule(
            id="weekly-simple-digitise",
            conditions=(
                Condition(attribute="frequency", operator=ConditionOperator.EQ, value="weekly"),
                Condition(attribute="complexity", operator=ConditionOperator.EQ, value="low"),
            ),
            action=OverrideAction(category="Digitise"),
        )
        matrix = _matrix().model_copy(update={"rules": (rule,)})
        report = _analyze([_session(i) for i in range(3)], matrix=matrix)
        assert len(report.patterns) == 1
        assert report.suggestions == []

    def test_support_fraction_raises_threshold(self):
        sessions = [_session(i) for i in range(4)] + [
            _session(i, complexity="high") for i in range(4, 10)
        ]
        report = _analyze(sessions, min_support=3, min_support_fraction=0.5)
        assert report.support_threshold == 5
        assert [p.support for p in report.patterns] == [6]

    def test_thousand_sessions_only_qualifying_patterns(self):
        rng = random.Random(7)
        sessions = []
        for i in range(1000):
            corrected = rng.choice(["Simplify", "Digitise"]) if rng.random() < 0.4 else None
            sessions.append(_session(
                i,
                final=rng.choice(["RPA", "AI Agent", "Digitise"]),
                corrected=corrected,
                frequency=rng.choice(["weekly", "daily", "hourly"]),
                complexity=rng.choice(["low", "high"]),
            ))

        report = FeedbackAnalyzer(_matrix(), AnalysisConfig(batch_size=64)).analyze(
            sessions, AnalysisFilters(min_support=3),
        )

        assert report.analysed_sessions == sum(1 for s in sessions if s.is_corrected)
        assert report.patterns
        assert all(p.support >= 3 for p in report.patterns)
        assert all(s.evidence.support >= 3 for s in report.suggestions)
        corrected_ids = {s.session_id for s in sessions if s.is_corrected}
        for suggestion in report.suggestions:
            assert set(suggestion.evidence.session_ids) <= corrected_ids


# ── Findings ───────────────────────────────────────────────────────


class TestFindings:
    def test_misclassifications_sorted_by_count(self):
        sessions = [_session(i) for i in range(3)] + [
            _session(i, final="AI Agent", corrected="RPA") for i in range(3, 8)
        ]
        report = _analyze(sessions)
        top = report.common_misclassifications[0]
        assert (top.from_category, top.to_category, top.count) == ("AI Agent", "RPA", 5)
        assert len(top.examples) == 5

    def test_over_classification_insight(self):
        report = _analyze([_session(i) for i in range(3)])
        assert report.insights[0].startswith("Most common misclassification: RPA → Digitise")
        assert any("Over-classification tendency: 3" in i for i in report.insights)

    def test_under_classification_insight(self):
        report = _analyze([_session(i, final="Simplify", corrected="RPA") for i in range(2)])
        assert any("Under-classification tendency: 2" in i for i in report.insights)

    def test_low_confidence_insight(self):
        report = _analyze([_session(i, confidence=0.55) for i in range(2)])
        assert any("2 misclassifications had confidence below 0.70" in i for i in report.insights)

    def test_subject_consistency(self):
        sessions = [
            _session(0, subject="Finance"),
            _session(1, subject="Finance", corrected=None),
            _session(2, subject="Finance", corrected=None),
            _session(3, subject="HR"),
        ]
        report = _analyze(sessions, misclassifications_only=False)
        assert [c.subject for c in report.subject_consistency] == ["Finance"]
        finance = report.subject_consistency[0]
        assert finance.total_sessions == 3
        assert finance.agreement_rate == pytest.approx(2 / 3)
        assert finance.common_category == "RPA"
        assert any('Subject "Finance": low consistency' in i for i in report.insights)


# ── Batching ───────────────────────────────────────────────────────


class TestBatching:
    def test_progress_reported(self):
        events = []
        analyzer = FeedbackAnalyzer(_matrix(), AnalysisConfig(batch_size=2))
        analyzer.analyze([_session(i) for i in range(5)], on_progress=events.append)

        stages = [e.stage for e in events]
        assert stages[0] == "collecting"
        assert stages.count("analyzing") == 3
        assert stages[-1] == "complete"
        assert events[-1].percentage == 100

    def test_cancelled_before_start(self):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(OperationCancelledError):
            FeedbackAnalyzer(_matrix()).analyze([_session(i) for i in range(5)], cancel=token)

    def test_cancelled_mid_scan(self):
        token = CancellationToken()

        def cancel_after_first_batch(progress):
            if progress.stage == "analyzing":
                token.cancel()

        analyzer = FeedbackAnalyzer(_matrix(), AnalysisConfig(batch_size=2))
        with pytest.raises(OperationCancelledError):
            analyzer.analyze(
                [_session(i) for i in range(6)],
                cancel=token,
                on_progress=cancel_after_first_batch,
            )
