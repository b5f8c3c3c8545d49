"""Tests for catalai.matrix.store — versioned matrix history and suggestion review."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from catalai.errors import (
    ConcurrentModificationError,
    SuggestionStateError,
    UnknownSuggestionError,
    ValidationError,
)
from catalai.matrix.document import baseline_matrix
from catalai.matrix.store import MatrixVersionStore, apply_change
from catalai.schemas.matrix import (
    Attribute,
    AttributeType,
    Condition,
    ConditionOperator,
    OverrideAction,
    Rule,
)
from catalai.schemas.suggestion import (
    AddAttribute,
    AddRule,
    ModifyAttribute,
    ModifyRule,
    ProposedChange,
    RemoveAttribute,
    RemoveRule,
    Suggestion,
    SuggestionEvidence,
    SuggestionStatus,
)

# ── Factories ──────────────────────────────────────────────────────


def _new_rule(rule_id: str = "learned-1", category: str = "Digitise") -> Rule:
    return Rule(
        id=rule_id,
        name="Weekly low complexity is Digitise",
        priority=101,
        conditions=(
            Condition(attribute="frequency", operator=ConditionOperator.EQ, value="weekly"),
            Condition(attribute="complexity", operator=ConditionOperator.EQ, value="low"),
        ),
        action=OverrideAction(category=category),
    )


def _make_suggestion(change: ProposedChange | None = None, base_version: int = 1) -> Suggestion:
    return Suggestion(
        proposed_change=change or AddRule(rule=_new_rule()),
        evidence=SuggestionEvidence(
            session_ids=("s1", "s2", "s3"),
            pattern_description="3 sessions corrected to Digitise",
            support=3,
        ),
        rationale="Users keep correcting these",
        base_version=base_version,
    )


def _make_store(state_dir=None) -> MatrixVersionStore:
    store = MatrixVersionStore(state_dir)
    store.activate(baseline_matrix())
    return store


# ── apply_change ───────────────────────────────────────────────────


class TestApplyChange:
    def test_add_rule_bumps_version(self):
        base = _make_store().require_active()
        updated = apply_change(base, AddRule(rule=_new_rule()))
        assert updated.version == base.version + 1
        assert updated.rule("learned-1") is not None
        assert base.rule("learned-1") is None

    def test_add_existing_rule_rejected(self):
        base = _make_store().require_active()
        with pytest.raises(ValidationError):
            apply_change(base, AddRule(rule=_new_rule("rpa-frequent-simple")))

    def test_modify_rule(self):
        base = _make_store().require_active()
        original = base.rule("rpa-frequent-simple")
        replacement = original.model_copy(update={"priority": 10})
        updated = apply_change(base, ModifyRule(rule_id=original.id, rule=replacement))
        assert updated.rule(original.id).priority == 10

    def test_modify_missing_rule_rejected(self):
        base = _make_store().require_active()
        with pytest.raises(ValidationError):
            apply_change(base, ModifyRule(rule_id="ghost", rule=_new_rule("ghost")))

    def test_remove_rule(self):
        base = _make_store().require_active()
        updated = apply_change(base, RemoveRule(rule_id="penalise-confidential"))
        assert updated.rule("penalise-confidential") is None
        assert len(updated.rules) == len(base.rules) - 1

    def test_add_and_modify_attribute(self):
        base = _make_store().require_active()
        region = Attribute(
            name="region", type=AttributeType.CATEGORICAL, possible_values=("emea", "apac"),
        )
        added = apply_change(base, AddAttribute(attribute=region))
        assert added.attribute("region") is not None

        widened = region.model_copy(update={"possible_values": ("emea", "apac", "amer")})
        modified = apply_change(added, ModifyAttribute(name="region", attribute=widened))
        assert modified.attribute("region").possible_values == ("emea", "apac", "amer")
        assert modified.version == base.version + 2

    def test_remove_referenced_attribute_refused(self):
        base = _make_store().require_active()
        with pytest.raises(ValidationError):
            apply_change(base, RemoveAttribute(name="frequency"))

    def test_remove_unreferenced_attribute(self):
        base = _make_store().require_active()
        region = Attribute(
            name="region", type=AttributeType.CATEGORICAL, possible_values=("emea",),
        )
        added = apply_change(base, AddAttribute(attribute=region))
        removed = apply_change(added, RemoveAttribute(name="region"))
        assert removed.attribute("region") is None


# ── Versions ───────────────────────────────────────────────────────


class TestVersions:
    def test_empty_store(self):
        store = MatrixVersionStore()
        assert store.active is None
        assert store.history() == []
        with pytest.raises(ValidationError, match="No active matrix"):
            store.require_active()

    def test_first_activation_is_version_one(self):
        store = _make_store()
        assert store.require_active().version == 1

    def test_activation_renumbers(self):
        store = _make_store()
        second = store.activate(baseline_matrix(), created_by="import")
        assert second.version == 2
        assert second.created_by == "import"
        assert [m.version for m in store.history()] == [1, 2]

    def test_get_unknown_version(self):
        with pytest.raises(ValidationError):
            _make_store().get(42)

    def test_revert_appends_new_version(self):
        store = _make_store()
        store.apply_suggestion(store.submit([_make_suggestion()])[0].id)
        reverted = store.revert_to(1)
        assert reverted.version == 3
        assert reverted.rule("learned-1") is None
        assert store.get(2).rule("learned-1") is not None


# ── Suggestion lifecycle ───────────────────────────────────────────


class TestSuggestions:
    def test_submit_and_list(self):
        store = _make_store()
        suggestion = _make_suggestion()
        store.submit([suggestion])
        assert store.get_suggestion(suggestion.id) == suggestion
        assert store.list_suggestions(SuggestionStatus.PENDING) == [suggestion]
        assert store.list_suggestions(SuggestionStatus.APPROVED) == []

    def test_submit_duplicate_rejected(self):
        store = _make_store()
        suggestion = _make_suggestion()
        store.submit([suggestion])
        with pytest.raises(ValidationError, match="already exists"):
            store.submit([suggestion])

    def test_approve_commits_new_version(self):
        store = _make_store()
        suggestion = _make_suggestion()
        store.submit([suggestion])

        matrix = store.apply_suggestion(suggestion.id, notes="Looks right", reviewer="ana")

        assert matrix.version == 2
        assert store.require_active() is matrix
        assert matrix.rule("learned-1") is not None
        assert matrix.created_by == "ana"
        resolved = store.get_suggestion(suggestion.id)
        assert resolved.status == SuggestionStatus.APPROVED
        assert resolved.review_notes == "Looks right"
        assert resolved.reviewed_by == "ana"
        assert resolved.resolved_at is not None

    def test_reject_leaves_matrix_unchanged(self):
        store = _make_store()
        suggestion = _make_suggestion()
        store.submit([suggestion])

        rejected = store.reject(suggestion.id, notes="Too broad")

        assert rejected.status == SuggestionStatus.REJECTED
        assert rejected.review_notes == "Too broad"
        assert store.require_active().version == 1

    def test_terminal_states_are_final(self):
        store = _make_store()
        suggestion = _make_suggestion()
        store.submit([suggestion])
        store.reject(suggestion.id)
        with pytest.raises(SuggestionStateError):
            store.apply_suggestion(suggestion.id)
        with pytest.raises(SuggestionStateError):
            store.reject(suggestion.id)

    def test_unknown_suggestion(self):
        with pytest.raises(UnknownSuggestionError):
            _make_store().apply_suggestion("missing")

    def test_stale_suggestion_auto_rejected(self):
        store = _make_store()
        first = _make_suggestion()
        second = _make_suggestion(AddRule(rule=_new_rule("learned-2", "Simplify")))
        store.submit([first, second])
        store.apply_suggestion(first.id)

        with pytest.raises(ConcurrentModificationError) as exc_info:
            store.apply_suggestion(second.id)

        assert exc_info.value.base_version == 1
        assert exc_info.value.active_version == 2
        stale = store.get_suggestion(second.id)
        assert stale.status == SuggestionStatus.REJECTED
        assert stale.review_notes.startswith("Auto-rejected")
        assert store.require_active().version == 2

    def test_concurrent_approvals_commit_once(self):
        store = _make_store()
        suggestions = [
            _make_suggestion(AddRule(rule=_new_rule(f"learned-{i}"))) for i in range(8)
        ]
        store.submit(suggestions)
        barrier = threading.Barrier(len(suggestions))

        def approve(suggestion: Suggestion):
            barrier.wait()
            try:
                return store.apply_suggestion(suggestion.id)
            except ConcurrentModificationError as e:
                return e

        with ThreadPoolExecutor(max_workers=len(suggestions)) as pool:
            outcomes = list(pool.map(approve, suggestions))

        committed = [o for o in outcomes if not isinstance(o, ConcurrentModificationError)]
        assert len(committed) == 1
        assert len(outcomes) - len(committed) == len(suggestions) - 1
        assert [m.version for m in store.history()] == [1, 2]
        statuses = [store.get_suggestion(s.id).status for s in suggestions]
        assert statuses.count(SuggestionStatus.APPROVED) == 1
        assert statuses.count(SuggestionStatus.REJECTED) == len(suggestions) - 1

    def test_readers_see_whole_versions(self):
        store = _make_store()
        suggestions = [
            _make_suggestion(AddRule(rule=_new_rule(f"learned-{i}")), base_version=i + 1)
            for i in range(20)
        ]
        store.submit(suggestions)
        done = threading.Event()
        seen: list[tuple[int, int]] = []

        def read():
            while not done.is_set():
                active = store.require_active()
                learned = sum(1 for r in active.rules if r.id.startswith("learned-"))
                seen.append((active.version, learned))

        reader = threading.Thread(target=read)
        reader.start()
        try:
            for suggestion in suggestions:
                store.apply_suggestion(suggestion.id)
        finally:
            done.set()
            reader.join()

        assert store.require_active().version == 21
        # Version n always carries exactly n - 1 learned rules
        assert all(learned == version - 1 for version, learned in seen)

    def test_invalid_change_leaves_suggestion_pending(self):
        store = _make_store()
        suggestion = _make_suggestion(RemoveRule(rule_id="ghost"))
        store.submit([suggestion])
        with pytest.raises(ValidationError):
            store.apply_suggestion(suggestion.id)
        assert store.get_suggestion(suggestion.id).status == SuggestionStatus.PENDING
        assert store.require_active().version == 1


# ── Persistence ────────────────────────────────────────────────────


class TestPersistence:
    def test_reopen_restores_versions_and_suggestions(self, tmp_path):
        store = _make_store(tmp_path)
        approved = _make_suggestion()
        pending = _make_suggestion(AddRule(rule=_new_rule("learned-2")), base_version=2)
        store.submit([approved])
        store.apply_suggestion(approved.id)
        store.submit([pending])

        reopened = MatrixVersionStore.open(tmp_path)

        assert [m.version for m in reopened.history()] == [1, 2]
        assert reopened.require_active().rule("learned-1") is not None
        assert reopened.get_suggestion(approved.id).status == SuggestionStatus.APPROVED
        assert reopened.get_suggestion(pending.id).status == SuggestionStatus.PENDING

    def test_open_missing_dir_is_empty(self, tmp_path):
        store = MatrixVersionStore.open(tmp_path / "fresh")
        assert store.active is None

    def test_version_files_written(self, tmp_path):
        _make_store(tmp_path)
        assert (tmp_path / "matrix" / "v1.json").exists()
