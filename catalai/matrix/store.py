"""Matrix version store.

Holds the append-only history of matrix versions plus the suggestions
awaiting review. Every mutation builds a new frozen matrix and swaps the
active reference in one assignment, so readers see a version either
entirely before or entirely after a change. A single lock serialises
writers; readers never take it.

When opened on a state directory, versions are written to
``matrix/v{n}.json`` and suggestions to ``suggestions/{id}.json``.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from catalai.errors import (
    ConcurrentModificationError,
    SuggestionStateError,
    UnknownSuggestionError,
    ValidationError,
)
from catalai.matrix.document import read_matrix, write_matrix
from catalai.matrix.registry import validate_matrix
from catalai.schemas.matrix import DecisionMatrix
from catalai.schemas.suggestion import (
    AddAttribute,
    AddRule,
    ModifyAttribute,
    ModifyRule,
    ProposedChange,
    RemoveAttribute,
    RemoveRule,
    Suggestion,
    SuggestionStatus,
)

logger = logging.getLogger(__name__)

_VERSION_FILE_RE = re.compile(r"^v(\d+)\.json$")


def apply_change(
    matrix: DecisionMatrix,
    change: ProposedChange,
    *,
    created_by: str = "system",
    description: str = "",
) -> DecisionMatrix:
    """Return a validated copy of ``matrix`` with one change applied.

    The copy carries the next version number. ``matrix`` is untouched.

    Raises:
        ValidationError: If the change does not fit the matrix or the
            result is malformed.
    """
    rules = list(matrix.rules)
    attributes = list(matrix.attributes)
    rule_ids = [r.id for r in rules]
    attr_names = [a.name for a in attributes]

    if isinstance(change, AddRule):
        if change.rule.id in rule_ids:
            raise ValidationError(f"Rule '{change.rule.id}' already exists")
        rules.append(change.rule)
    elif isinstance(change, ModifyRule):
        if change.rule_id not in rule_ids:
            raise ValidationError(f"Rule '{change.rule_id}' does not exist")
        rules[rule_ids.index(change.rule_id)] = change.rule
    elif isinstance(change, RemoveRule):
        if change.rule_id not in rule_ids:
            raise ValidationError(f"Rule '{change.rule_id}' does not exist")
        del rules[rule_ids.index(change.rule_id)]
    elif isinstance(change, AddAttribute):
        if change.attribute.name in attr_names:
            raise ValidationError(f"Attribute '{change.attribute.name}' already exists")
        attributes.append(change.attribute)
    elif isinstance(change, ModifyAttribute):
        if change.name not in attr_names:
            raise ValidationError(f"Attribute '{change.name}' does not exist")
        attributes[attr_names.index(change.name)] = change.attribute
    elif isinstance(change, RemoveAttribute):
        if change.name not in attr_names:
            raise ValidationError(f"Attribute '{change.name}' does not exist")
        users = sorted(
            r.id for r in rules if any(c.attribute == change.name for c in r.conditions)
        )
        if users:
            raise ValidationError(
                f"Attribute '{change.name}' is still used by rules: {', '.join(users)}"
            )
        del attributes[attr_names.index(change.name)]

    candidate = DecisionMatrix(
        version=matrix.version + 1,
        attributes=tuple(attributes),
        rules=tuple(rules),
        created_by=created_by,
        description=description or matrix.description,
    )
    validate_matrix(candidate)
    return candidate


class MatrixVersionStore:
    """Append-only matrix history with an atomically swapped active version."""

    def __init__(self, state_dir: Path | None = None) -> None:
        self._state_dir = state_dir
        self._lock = threading.Lock()
        self._versions: list[DecisionMatrix] = []
        self._active: DecisionMatrix | None = None
        self._suggestions: dict[str, Suggestion] = {}

    @classmethod
    def open(cls, state_dir: Path) -> MatrixVersionStore:
        """Load a store persisted under ``state_dir`` (created if missing)."""
        state_dir = state_dir.expanduser()
        store = cls(state_dir)

        matrix_dir = state_dir / "matrix"
        if matrix_dir.is_dir():
            files = sorted(
                (int(m.group(1)), p)
                for p in matrix_dir.iterdir()
                if (m := _VERSION_FILE_RE.match(p.name))
            )
            for _, path in files:
                store._versions.append(read_matrix(path))
            if store._versions:
                store._active = store._versions[-1]

        suggestion_dir = state_dir / "suggestions"
        if suggestion_dir.is_dir():
            for path in sorted(suggestion_dir.glob("*.json")):
                suggestion = Suggestion.model_validate_json(path.read_text(encoding="utf-8"))
                store._suggestions[suggestion.id] = suggestion

        logger.info(
            "Opened matrix store at %s (%d versions, %d suggestions)",
            state_dir, len(store._versions), len(store._suggestions),
        )
        return store

    # ── Reads ────────────────────────────────────────────────────

    @property
    def active(self) -> DecisionMatrix | None:
        """The current version, or None before anything was activated."""
        return self._active

    def require_active(self) -> DecisionMatrix:
        active = self._active
        if active is None:
            raise ValidationError("No active matrix; import one or load the baseline first")
        return active

    def get(self, version: int) -> DecisionMatrix:
        for matrix in self._versions:
            if matrix.version == version:
                return matrix
        raise ValidationError(f"Matrix version {version} does not exist")

    def history(self) -> list[DecisionMatrix]:
        """All versions, oldest first."""
        return list(self._versions)

    def get_suggestion(self, suggestion_id: str) -> Suggestion:
        try:
            return self._suggestions[suggestion_id]
        except KeyError:
            raise UnknownSuggestionError(suggestion_id) from None

    def list_suggestions(self, status: SuggestionStatus | None = None) -> list[Suggestion]:
        found = [s for s in self._suggestions.values() if status is None or s.status == status]
        return sorted(found, key=lambda s: (s.created_at, s.id))

    # ── Writes ───────────────────────────────────────────────────

    def activate(self, matrix: DecisionMatrix, *, created_by: str | None = None) -> DecisionMatrix:
        """Validate ``matrix`` and make it the next active version.

        Used for imports and the baseline. The stored copy is renumbered
        to follow the current version.

        Raises:
            ValidationError: If the matrix is malformed.
        """
        validate_matrix(matrix)
        with self._lock:
            next_version = self._active.version + 1 if self._active else 1
            update: dict[str, object] = {
                "version": next_version,
                "created_at": datetime.now(UTC),
            }
            if created_by:
                update["created_by"] = created_by
            stored = matrix.model_copy(update=update)
            self._commit(stored)
        logger.info("Activated matrix v%d (%d rules)", stored.version, len(stored.rules))
        return stored

    def revert_to(self, version: int, *, created_by: str = "system") -> DecisionMatrix:
        """Append a copy of an older version as the new active version."""
        target = self.get(version)
        return self.activate(
            target.model_copy(update={"description": f"Reverted to v{version}"}),
            created_by=created_by,
        )

    def submit(self, suggestions: Iterable[Suggestion]) -> list[Suggestion]:
        """Register pending suggestions for review.

        Raises:
            ValidationError: If a suggestion is not pending or its id exists.
        """
        accepted: list[Suggestion] = []
        with self._lock:
            for suggestion in suggestions:
                if suggestion.status != SuggestionStatus.PENDING:
                    raise ValidationError(
                        f"Suggestion {suggestion.id} must be pending to be submitted"
                    )
                if suggestion.id in self._suggestions:
                    raise ValidationError(f"Suggestion {suggestion.id} already exists")
                self._suggestions[suggestion.id] = suggestion
                self._persist_suggestion(suggestion)
                accepted.append(suggestion)
        if accepted:
            logger.info("Submitted %d suggestion(s) for review", len(accepted))
        return accepted

    def apply_suggestion(
        self,
        suggestion_id: str,
        notes: str | None = None,
        reviewer: str | None = None,
    ) -> DecisionMatrix:
        """Approve a pending suggestion and commit its change as a new version.

        Raises:
            UnknownSuggestionError: If the id is unknown.
            SuggestionStateError: If the suggestion was already reviewed.
            ConcurrentModificationError: If the matrix moved past the
                suggestion's base version; the suggestion is rejected.
            ValidationError: If the change does not fit the active matrix.
        """
        with self._lock:
            suggestion = self._require_pending(suggestion_id)
            active = self.require_active()

            if suggestion.base_version != active.version:
                reason = (
                    f"Auto-rejected: computed against v{suggestion.base_version} "
                    f"but v{active.version} is active"
                )
                self._resolve(suggestion, SuggestionStatus.REJECTED, reason, reviewer)
                logger.warning("Suggestion %s is stale: %s", suggestion.id, reason)
                raise ConcurrentModificationError(
                    suggestion.id, suggestion.base_version, active.version,
                )

            candidate = apply_change(
                active,
                suggestion.proposed_change,
                created_by=reviewer or "system",
                description=f"Applied suggestion {suggestion.id}: {suggestion.summary()}",
            )
            self._commit(candidate)
            self._resolve(suggestion, SuggestionStatus.APPROVED, notes, reviewer)

        logger.info(
            "Applied suggestion %s (%s) as matrix v%d",
            suggestion.id, suggestion.summary(), candidate.version,
        )
        return candidate

    def reject(
        self,
        suggestion_id: str,
        notes: str | None = None,
        reviewer: str | None = None,
    ) -> Suggestion:
        """Reject a pending suggestion. The matrix is not touched."""
        with self._lock:
            suggestion = self._require_pending(suggestion_id)
            rejected = self._resolve(suggestion, SuggestionStatus.REJECTED, notes, reviewer)
        logger.info("Rejected suggestion %s", suggestion_id)
        return rejected

    # ── Internals (called with the lock held) ────────────────────

    def _require_pending(self, suggestion_id: str) -> Suggestion:
        suggestion = self.get_suggestion(suggestion_id)
        if suggestion.status != SuggestionStatus.PENDING:
            raise SuggestionStateError(
                f"Suggestion {suggestion_id} is already {suggestion.status.value}"
            )
        return suggestion

    def _resolve(
        self,
        suggestion: Suggestion,
        status: SuggestionStatus,
        notes: str | None,
        reviewer: str | None,
    ) -> Suggestion:
        resolved = suggestion.model_copy(update={
            "status": status,
            "review_notes": notes,
            "reviewed_by": reviewer,
            "resolved_at": datetime.now(UTC),
        })
        self._suggestions[resolved.id] = resolved
        self._persist_suggestion(resolved)
        return resolved

    def _commit(self, matrix: DecisionMatrix) -> None:
        if self._state_dir is not None:
            write_matrix(matrix, self._state_dir / "matrix" / f"v{matrix.version}.json")
        self._versions.append(matrix)
        self._active = matrix

    def _persist_suggestion(self, suggestion: Suggestion) -> None:
        if self._state_dir is None:
            return
        path = self._state_dir / "suggestions" / f"{suggestion.id}.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps(suggestion.model_dump(mode="json"), indent=2) + "\n",
            encoding="utf-8",
        )
