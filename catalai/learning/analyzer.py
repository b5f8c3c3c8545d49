"""Feedback analyzer: mines corrected classifications for matrix changes.

Scans feedback sessions in batches, groups corrections that share the same
attribute snapshot and category pair, and turns every group with enough
support into a pending Suggestion. Alongside the suggestions the report
carries agreement rates, the most frequent corrections, subject-level
consistency and short human-readable insights.

The scan is a pure in-memory pass. It checks a CancellationToken between
batches and raises OperationCancelledError without returning a partial
report.
"""

from __future__ import annotations

import hashlib
import json
import logging
import math
from collections import Counter, defaultdict
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field

from catalai.errors import EmptyDatasetError, InvalidValueError, UnknownAttributeError
from catalai.learning.cancellation import CancellationToken
from catalai.matrix.registry import AttributeRegistry
from catalai.schemas.config import DEFAULT_CATEGORIES, AnalysisConfig
from catalai.schemas.feedback import (
    AnalysisFilters,
    AnalysisProgress,
    AnalysisReport,
    DateRange,
    FeedbackSession,
    MisclassificationPattern,
    MisclassificationSummary,
    SubjectConsistency,
)
from catalai.schemas.matrix import (
    ActionType,
    AttributeType,
    Condition,
    ConditionOperator,
    DecisionMatrix,
    EnumValue,
    OverrideAction,
    Rule,
)
from catalai.schemas.suggestion import (
    AddRule,
    ModifyRule,
    Suggestion,
    SuggestionEvidence,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[AnalysisProgress], None]

_UNKNOWN_SUBJECT = "Unknown"
_MIN_SUBJECT_SESSIONS = 2
_MIN_SUBJECT_TREND_SESSIONS = 5
_MAX_INCONSISTENT_SUBJECTS = 3

Signature = tuple[tuple[str, str], ...]


@dataclass
class _ScanState:
    """Counters accumulated across batches."""

    by_category: Counter = field(default_factory=Counter)
    agreed_by_category: Counter = field(default_factory=Counter)
    corrections: dict[tuple[str, str], list[str]] = field(
        default_factory=lambda: defaultdict(list),
    )
    by_subject: dict[str, list[FeedbackSession]] = field(
        default_factory=lambda: defaultdict(list),
    )
    groups: dict[tuple[Signature, str, str], list[str]] = field(
        default_factory=lambda: defaultdict(list),
    )
    low_confidence: int = 0


@dataclass
class _Draft:
    """A suggestion being assembled from one or more patterns."""

    conditions: tuple[Condition, ...]
    corrected: str
    patterns: list[MisclassificationPattern] = field(default_factory=list)


class FeedbackAnalyzer:
    """Mines feedback sessions against one matrix version."""

    def __init__(
        self,
        matrix: DecisionMatrix,
        config: AnalysisConfig | None = None,
        categories: Sequence[str] = DEFAULT_CATEGORIES,
    ) -> None:
        self._matrix = matrix
        self._config = config or AnalysisConfig()
        self._categories = list(categories)
        self._registry = AttributeRegistry.from_matrix(matrix)

    def analyze(
        self,
        sessions: Iterable[FeedbackSession],
        filters: AnalysisFilters | None = None,
        cancel: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> AnalysisReport:
        """Analyse sessions and synthesise pending suggestions.

        Raises:
            EmptyDatasetError: If no session matches the filters.
            OperationCancelledError: If ``cancel`` fires mid-scan.
        """
        filters = filters or AnalysisFilters(min_support=self._config.min_support)
        selected = self._select(sessions, filters)
        if not selected:
            raise EmptyDatasetError("No feedback sessions match the analysis filters")

        threshold = max(
            filters.min_support,
            math.ceil(filters.min_support_fraction * len(selected)),
        )
        logger.info(
            "Analysing %d session(s) against matrix v%d (support threshold %d)",
            len(selected), self._matrix.version, threshold,
        )
        self._notify(
            on_progress, "collecting", f"Selected {len(selected)} sessions", 0, len(selected),
        )

        state = _ScanState()
        batch_size = self._config.batch_size
        for start in range(0, len(selected), batch_size):
            if cancel is not None:
                cancel.raise_if_cancelled("Feedback analysis")
            batch = selected[start:start + batch_size]
            for session in batch:
                self._scan(session, state)
            done = start + len(batch)
            self._notify(
                on_progress, "analyzing", f"Analysed {done}/{len(selected)} sessions",
                done, len(selected),
            )

        if cancel is not None:
            cancel.raise_if_cancelled("Feedback analysis")

        misclassifications = self._summarise_corrections(state)
        consistency = self._subject_consistency(state)
        patterns = self._patterns(state, threshold)
        suggestions, unactionable = self._suggest(patterns)
        insights = self._insights(state, misclassifications, consistency)

        agreed = sum(state.agreed_by_category.values())
        timestamps = [s.timestamp for s in selected]
        report = AnalysisReport(
            filters=filters,
            matrix_version=self._matrix.version,
            analysed_sessions=len(selected),
            data_range=DateRange(start=min(timestamps), end=max(timestamps)),
            support_threshold=threshold,
            overall_agreement_rate=agreed / len(selected),
            category_agreement_rates={
                category: state.agreed_by_category[category] / total
                for category, total in sorted(state.by_category.items())
            },
            common_misclassifications=misclassifications,
            subject_consistency=consistency,
            insights=insights,
            patterns=patterns,
            unactionable_patterns=unactionable,
            suggestions=suggestions,
        )

        self._notify(
            on_progress, "complete",
            f"Found {len(patterns)} pattern(s), {len(suggestions)} suggestion(s)",
            len(selected), len(selected),
        )
        logger.info(
            "Analysis %s: %d pattern(s), %d suggestion(s), %d unactionable",
            report.analysis_id, len(patterns), len(suggestions), len(unactionable),
        )
        return report

    # ── Selection and scan ───────────────────────────────────────

    @staticmethod
    def _select(
        sessions: Iterable[FeedbackSession], filters: AnalysisFilters,
    ) -> list[FeedbackSession]:
        window = filters.date_range
        selected = [
            s for s in sessions
            if window.contains(s.timestamp)
            and (s.is_corrected or not filters.misclassifications_only)
        ]
        return sorted(selected, key=lambda s: (s.timestamp, s.session_id))

    def _scan(self, session: FeedbackSession, state: _ScanState) -> None:
        state.by_category[session.final_category] += 1
        state.by_subject[session.subject or _UNKNOWN_SUBJECT].append(session)

        if not session.is_corrected:
            state.agreed_by_category[session.final_category] += 1
            return

        corrected = session.correct_category
        state.corrections[(session.final_category, corrected)].append(session.session_id)
        key = (self._signature(session), session.final_category, corrected)
        state.groups[key].append(session.session_id)

        confidence = session.final_confidence
        if confidence is None:
            confidence = session.llm_confidence
        if confidence is not None and confidence < self._config.low_confidence_below:
            state.low_confidence += 1

    def _canonical(self, name: str, raw: object) -> str | None:
        """Canonical text of a registered attribute value, or None."""
        if name not in self._registry:
            return None
        try:
            resolved = self._registry.resolve_value(name, raw)
        except (UnknownAttributeError, InvalidValueError):
            return None
        if isinstance(resolved, EnumValue):
            return resolved.value
        value = float(resolved.value)
        return str(int(value)) if value.is_integer() else str(value)

    def _signature(self, session: FeedbackSession) -> Signature:
        items = []
        for name, raw in session.attribute_values.items():
            canonical = self._canonical(name, raw)
            items.append((name, canonical if canonical is not None else str(raw).strip()))
        return tuple(sorted(items))

    # ── Findings ─────────────────────────────────────────────────

    def _summarise_corrections(self, state: _ScanState) -> list[MisclassificationSummary]:
        summaries = [
            MisclassificationSummary(
                from_category=source,
                to_category=target,
                count=len(ids),
                examples=ids[: self._config.max_examples],
            )
            for (source, target), ids in state.corrections.items()
        ]
        return sorted(summaries, key=lambda m: (-m.count, m.from_category, m.to_category))

    def _subject_consistency(self, state: _ScanState) -> list[SubjectConsistency]:
        results = []
        for subject, sessions in state.by_subject.items():
            if len(sessions) < _MIN_SUBJECT_SESSIONS:
                continue
            agreed = sum(1 for s in sessions if not s.is_corrected)
            distribution = Counter(s.final_category for s in sessions)
            common = sorted(distribution.items(), key=lambda kv: (-kv[1], kv[0]))[0][0]
            results.append(SubjectConsistency(
                subject=subject,
                total_sessions=len(sessions),
                agreement_rate=agreed / len(sessions),
                common_category=common,
                category_distribution=dict(sorted(distribution.items())),
            ))
        return sorted(results, key=lambda c: (-c.total_sessions, c.subject))

    def _rank(self, category: str) -> int | None:
        return self._categories.index(category) if category in self._categories else None

    def _insights(
        self,
        state: _ScanState,
        misclassifications: list[MisclassificationSummary],
        consistency: list[SubjectConsistency],
    ) -> list[str]:
        insights: list[str] = []

        if misclassifications:
            top = misclassifications[0]
            insights.append(
                f"Most common misclassification: {top.from_category} → "
                f"{top.to_category} ({top.count} occurrences)"
            )

        over = under = 0
        for m in misclassifications:
            source, target = self._rank(m.from_category), self._rank(m.to_category)
            if source is None or target is None:
                continue
            if source > target:
                over += m.count
            elif source < target:
                under += m.count
        if over:
            insights.append(
                f"Over-classification tendency: {over} cases where the system "
                "chose a more automated category than the correct one"
            )
        if under:
            insights.append(
                f"Under-classification tendency: {under} cases where the system "
                "chose a less automated category than the correct one"
            )

        if state.low_confidence:
            insights.append(
                f"{state.low_confidence} misclassifications had confidence below "
                f"{self._config.low_confidence_below:.2f}, suggesting uncertainty"
            )

        inconsistent = [
            c for c in consistency
            if c.agreement_rate < self._config.consistency_threshold and c.total_sessions >= 3
        ]
        for c in sorted(inconsistent, key=lambda c: (c.agreement_rate, c.subject))[
            :_MAX_INCONSISTENT_SUBJECTS
        ]:
            insights.append(
                f'Subject "{c.subject}": low consistency ({c.agreement_rate:.0%} agreement) '
                f"across {c.total_sessions} sessions"
            )

        for subject, sessions in sorted(state.by_subject.items()):
            if len(sessions) < _MIN_SUBJECT_TREND_SESSIONS:
                continue
            pairs = Counter(
                (s.final_category, s.correct_category) for s in sessions if s.is_corrected
            )
            if not pairs:
                continue
            (source, target), count = sorted(pairs.items(), key=lambda kv: (-kv[1], kv[0]))[0]
            if count >= 2:
                insights.append(
                    f'Subject "{subject}": recurring misclassification '
                    f"{source} → {target} ({count} times)"
                )

        return insights

    # ── Patterns and suggestions ─────────────────────────────────

    def _patterns(self, state: _ScanState, threshold: int) -> list[MisclassificationPattern]:
        patterns = []
        for (signature, final, corrected), ids in state.groups.items():
            if len(ids) < threshold:
                continue
            shown = ", ".join(f"{k}={v}" for k, v in signature) or "no attributes"
            patterns.append(MisclassificationPattern(
                signature=dict(signature),
                final_category=final,
                corrected_category=corrected,
                support=len(ids),
                session_ids=sorted(ids),
                description=(
                    f"{len(ids)} sessions with {shown} classified as {final} "
                    f"were corrected to {corrected}"
                ),
            ))
        return sorted(
            patterns,
            key=lambda p: (-p.support, p.final_category, p.corrected_category,
                           json.dumps(p.signature, sort_keys=True)),
        )

    def _conditions_for(self, pattern: MisclassificationPattern) -> tuple[Condition, ...]:
        usable = []
        for name, value in pattern.signature.items():
            if self._canonical(name, value) is None:
                continue
            usable.append(self._registry.get(name))
        usable.sort(key=lambda a: (-a.weight, a.name))
        conditions = []
        for attribute in usable:
            literal: str | float = pattern.signature[attribute.name]
            if attribute.type == AttributeType.NUMERIC:
                literal = float(literal)
            conditions.append(Condition(
                attribute=attribute.name, operator=ConditionOperator.EQ, value=literal,
            ))
        return tuple(conditions)

    @staticmethod
    def _condition_key(conditions: Iterable[Condition]) -> frozenset:
        return frozenset((c.attribute, c.operator.value, c.values) for c in conditions)

    def _suggest(
        self, patterns: list[MisclassificationPattern],
    ) -> tuple[list[Suggestion], list[MisclassificationPattern]]:
        drafts: dict[tuple[frozenset, str], _Draft] = {}
        unactionable: list[MisclassificationPattern] = []

        for pattern in patterns:
            conditions = self._conditions_for(pattern)
            if not conditions:
                logger.debug("Pattern has no usable condition: %s", pattern.description)
                unactionable.append(pattern)
                continue
            key = (self._condition_key(conditions), pattern.corrected_category)
            draft = drafts.setdefault(key, _Draft(conditions, pattern.corrected_category))
            draft.patterns.append(pattern)

        top_priority = max((r.priority for r in self._matrix.rules), default=0)
        suggestions = []
        for draft in drafts.values():
            suggestion = self._draft_to_suggestion(draft, top_priority + 1)
            if suggestion is not None:
                suggestions.append(suggestion)
        return suggestions, unactionable

    def _existing_override(self, conditions: tuple[Condition, ...]) -> Rule | None:
        wanted = self._condition_key(conditions)
        for rule in self._matrix.ordered_rules():
            if rule.action_type != ActionType.OVERRIDE:
                continue
            if self._condition_key(rule.conditions) == wanted:
                return rule
        return None

    def _draft_to_suggestion(self, draft: _Draft, priority: int) -> Suggestion | None:
        session_ids = sorted({sid for p in draft.patterns for sid in p.session_ids})
        sources = sorted({p.final_category for p in draft.patterns})
        description = "; ".join(p.description for p in draft.patterns)
        shown = " AND ".join(f"{c.attribute} == {c.value}" for c in draft.conditions)
        rationale = (
            f"Users corrected {len(session_ids)} classification(s) of {', '.join(sources)} "
            f"to {draft.corrected} when {shown}"
        )
        action = OverrideAction(category=draft.corrected, rationale=rationale)
        evidence = SuggestionEvidence(
            session_ids=tuple(session_ids),
            pattern_description=description,
            support=len(session_ids),
        )

        existing = self._existing_override(draft.conditions)
        if existing is not None:
            already = isinstance(existing.action, OverrideAction) and (
                existing.action.category == draft.corrected
            )
            if already:
                logger.debug("Rule %s already overrides to %s", existing.id, draft.corrected)
                return None
            change = ModifyRule(
                rule_id=existing.id,
                rule=existing.model_copy(update={"action": action}),
            )
        else:
            change = AddRule(rule=Rule(
                id=self._rule_id(draft),
                name=f"Learned: {shown} → {draft.corrected}",
                priority=priority,
                conditions=draft.conditions,
                action=action,
                description=description,
            ))

        return Suggestion(
            proposed_change=change,
            evidence=evidence,
            rationale=rationale,
            base_version=self._matrix.version,
        )

    def _rule_id(self, draft: _Draft) -> str:
        key = json.dumps(
            [[c.attribute, c.operator.value, list(c.values)] for c in draft.conditions]
            + [draft.corrected],
        )
        digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:10]
        rule_id = f"learned-{digest}"
        suffix = 1
        while self._matrix.rule(rule_id) is not None:
            suffix += 1
            rule_id = f"learned-{digest}-{suffix}"
        return rule_id

    @staticmethod
    def _notify(
        callback: ProgressCallback | None, stage: str, message: str, current: int, total: int,
    ) -> None:
        if callback is not None:
            callback(AnalysisProgress(stage=stage, message=message, current=current, total=total))
