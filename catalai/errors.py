"""Typed failures raised by the classification core.

Every error the core surfaces to a caller derives from CatalaiError so the
calling layer can render a user-facing message without string matching.
"""

from __future__ import annotations

from enum import StrEnum


class CatalaiError(Exception):
    """Base exception for the classification core."""


class ValidationError(CatalaiError):
    """Raised when an attribute, rule or matrix definition is malformed.

    A matrix that fails validation is never activated.
    """


class UnknownAttributeError(CatalaiError):
    """Raised when a value or condition refers to an unregistered attribute."""

    def __init__(self, attribute: str) -> None:
        super().__init__(f"Unknown attribute: '{attribute}'")
        self.attribute = attribute


class InvalidValueError(CatalaiError):
    """Raised when a value falls outside an attribute's declared domain.

    Never fatal to matrix loading. During evaluation the offending
    condition simply does not match.
    """

    def __init__(self, attribute: str, value: object, detail: str = "") -> None:
        message = f"Value {value!r} is not valid for attribute '{attribute}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.attribute = attribute
        self.value = value


class EmptyDatasetError(CatalaiError):
    """Raised when no sessions match the requested filters."""


class ProviderErrorReason(StrEnum):
    """Opaque failure tags reported by a completion provider."""

    TIMEOUT = "timeout"
    AUTH = "auth"
    CAPACITY = "capacity"
    MODEL_NOT_FOUND = "model_not_found"
    MALFORMED_RESPONSE = "malformed_response"
    UNKNOWN = "unknown"


class ProviderError(CatalaiError):
    """Raised when the LLM boundary fails. The core never retries."""

    def __init__(self, reason: ProviderErrorReason, message: str = "") -> None:
        super().__init__(message or reason.value)
        self.reason = reason


class ConcurrentModificationError(CatalaiError):
    """Raised when a suggestion targets a matrix version that has moved on."""

    def __init__(self, suggestion_id: str, base_version: int, active_version: int) -> None:
        super().__init__(
            f"Suggestion {suggestion_id} was computed against matrix "
            f"v{base_version} but v{active_version} is active"
        )
        self.suggestion_id = suggestion_id
        self.base_version = base_version
        self.active_version = active_version


class SuggestionStateError(CatalaiError):
    """Raised when a suggestion that is no longer pending is reviewed again."""


class UnknownSuggestionError(CatalaiError):
    """Raised when a suggestion id is not known to the store."""

    def __init__(self, suggestion_id: str) -> None:
        super().__init__(f"Suggestion not found: '{suggestion_id}'")
        self.suggestion_id = suggestion_id


class OperationCancelledError(CatalaiError):
    """Raised when a batch analysis or validation run is cancelled."""
