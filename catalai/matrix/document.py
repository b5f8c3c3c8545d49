"""Matrix export/import as a JSON-shaped document.

Exported documents carry the attributes, rules and version metadata of one
matrix. Import accepts that shape and also the legacy camelCase layout
(``ruleId``, ``possibleValues``, ``targetCategory``...) produced by the
earlier web tooling, translating it on the way in.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from catalai.errors import ValidationError
from catalai.matrix.registry import validate_matrix
from catalai.schemas.matrix import DecisionMatrix
from catalai.settings import CONFIG_DIR

logger = logging.getLogger(__name__)

DOCUMENT_FORMAT = "catalai.matrix"
DOCUMENT_FORMAT_VERSION = 1

_LEGACY_ACTIONS = {
    "override": "override",
    "adjust_confidence": "adjust_confidence",
    "flag_review": "require_review",
}


def export_matrix(matrix: DecisionMatrix) -> dict[str, Any]:
    """Serialise a matrix to a JSON-compatible document."""
    document: dict[str, Any] = {
        "format": DOCUMENT_FORMAT,
        "format_version": DOCUMENT_FORMAT_VERSION,
    }
    document.update(matrix.model_dump(mode="json"))
    return document


def import_matrix(document: dict[str, Any], *, strict: bool = False) -> DecisionMatrix:
    """Build a matrix from an exported or legacy document.

    Args:
        document: Parsed JSON document.
        strict: Also reject conditions whose values fall outside their
            declared domain instead of loading them as never-matching.

    Raises:
        ValidationError: If the document is malformed.
    """
    if not isinstance(document, dict):
        raise ValidationError("Matrix document must be a JSON object")

    fmt = document.get("format")
    if fmt is not None and fmt != DOCUMENT_FORMAT:
        raise ValidationError(f"Unsupported document format '{fmt}'")

    payload = dict(document) if fmt else _translate_legacy(document)
    payload.pop("format", None)
    payload.pop("format_version", None)

    try:
        matrix = DecisionMatrix.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid matrix document: {e}") from e

    issues = validate_matrix(matrix)
    if strict and issues:
        details = "; ".join(f"{i.rule_id}: {i.message}" for i in issues)
        raise ValidationError(f"Matrix has invalid conditions: {details}")
    return matrix


def _legacy_version(raw: object) -> int:
    if isinstance(raw, int) and not isinstance(raw, bool):
        return max(raw, 0)
    match = re.match(r"\s*v?(\d+)", str(raw or ""))
    return int(match.group(1)) if match else 0


def _legacy_literal(value: object) -> object:
    # Boolean attributes become categorical "true"/"false"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, list):
        return [_legacy_literal(v) for v in value]
    return value


def _legacy_condition(raw: Any) -> Any:
    if not isinstance(raw, dict) or "value" not in raw:
        return raw
    return {**raw, "value": _legacy_literal(raw["value"])}


def _translate_legacy(document: dict[str, Any]) -> dict[str, Any]:
    """Map the camelCase web-tool layout onto the native one."""
    attributes = []
    for raw in document.get("attributes", []):
        attr_type = raw.get("type", "categorical")
        values = raw.get("possibleValues", raw.get("possible_values")) or []
        if attr_type == "boolean":
            attr_type, values = "categorical", values or ["true", "false"]
        attributes.append({
            "name": raw.get("name"),
            "type": attr_type,
            "possible_values": values,
            "weight": raw.get("weight", 1.0),
            "description": raw.get("description", ""),
        })

    rules = []
    for raw in document.get("rules", []):
        action = raw.get("action") or {}
        action_type = _LEGACY_ACTIONS.get(action.get("type", ""), action.get("type"))
        translated_action: dict[str, Any] = {
            "type": action_type,
            "rationale": action.get("rationale", ""),
        }
        if action_type == "override":
            translated_action["category"] = action.get("targetCategory", action.get("category"))
        elif action_type == "adjust_confidence":
            translated_action["delta"] = action.get(
                "confidenceAdjustment", action.get("delta", 0.0),
            )

        priority = raw.get("priority", 0)
        if isinstance(priority, int | float) and not isinstance(priority, bool):
            priority = max(0, min(100, int(priority)))

        rules.append({
            "id": raw.get("ruleId", raw.get("id")),
            "name": raw.get("name", ""),
            "description": raw.get("description", ""),
            "priority": priority,
            "enabled": raw.get("active", raw.get("enabled", True)),
            "conditions": [_legacy_condition(c) for c in raw.get("conditions", [])],
            "action": translated_action,
        })

    translated: dict[str, Any] = {
        "version": _legacy_version(document.get("version")),
        "description": document.get("description", ""),
        "created_by": document.get("createdBy", document.get("created_by", "system")),
        "attributes": attributes,
        "rules": rules,
    }
    created_at = document.get("createdAt", document.get("created_at"))
    if created_at:
        translated["created_at"] = created_at
    logger.info(
        "Translated legacy matrix document (%d attributes, %d rules)",
        len(attributes), len(rules),
    )
    return translated


# ── Files ────────────────────────────────────────────────────────


def write_matrix(matrix: DecisionMatrix, path: Path) -> Path:
    """Write a matrix document as indented JSON."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(export_matrix(matrix), indent=2) + "\n", encoding="utf-8")
    return path


def read_matrix(path: Path, *, strict: bool = False) -> DecisionMatrix:
    """Read a matrix document from disk.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValidationError: If the file is not valid JSON or not a matrix.
    """
    if not path.exists():
        raise FileNotFoundError(f"Matrix document not found: {path}")
    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValidationError(f"{path} is not valid JSON: {e}") from e
    return import_matrix(document, strict=strict)


def baseline_matrix() -> DecisionMatrix:
    """The packaged baseline matrix: standard attributes and starter rules."""
    return read_matrix(CONFIG_DIR / "baseline_matrix.json", strict=True)
