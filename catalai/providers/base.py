"""Abstract base class for LLM completion providers.

Defines the CompletionProvider interface the classifier uses to obtain an
LLM category and confidence. The core never calls provider SDKs directly
and never retries: failures surface as ProviderError with a reason tag.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from catalai.schemas.classification import ConnectionProbe, LLMClassification
from catalai.schemas.config import ProviderConfig


class CompletionProvider(ABC):
    """Abstract interface for any LLM that can propose a classification."""

    def __init__(self, config: ProviderConfig) -> None:
        self._config = config

    # ── Identity ──────────────────────────────────────────────

    @property
    def model_id(self) -> str:
        """Model identifier used for routing."""
        return self._config.model

    @property
    def timeout(self) -> float:
        """Per-call timeout in seconds, enforced by the caller's config."""
        return self._config.timeout

    @property
    def config(self) -> ProviderConfig:
        return self._config

    # ── Core interface ────────────────────────────────────────

    @abstractmethod
    async def complete(self, prompt: str) -> LLMClassification:
        """Ask the model to classify a process.

        Args:
            prompt: Full classification prompt.

        Returns:
            The model's category and confidence.

        Raises:
            ProviderError: On timeout, auth rejection, capacity problems,
                unknown model or an unparseable response.
        """

    @abstractmethod
    async def probe(self, messages: list[dict[str, str]]) -> ConnectionProbe:
        """Send a short chat exchange to test the connection.

        Args:
            messages: Conversation messages in OpenAI format.

        Returns:
            Text returned by the model and the round-trip latency.

        Raises:
            ProviderError: If the call fails.
        """
