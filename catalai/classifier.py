"""Classification facade.

Reads one active matrix snapshot per request, evaluates the context
against it and routes the result. With a CompletionProvider attached it
can also obtain the LLM category and confidence from a raw description.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence

from catalai.errors import ValidationError
from catalai.matrix.engine import RuleEngine
from catalai.matrix.store import MatrixVersionStore
from catalai.providers.base import CompletionProvider
from catalai.routing.router import route
from catalai.schemas.classification import (
    ClarifyingExchange,
    ClassificationContext,
    ClassificationOutcome,
)
from catalai.schemas.config import EngineConfig

logger = logging.getLogger(__name__)


def build_prompt(
    description: str,
    categories: Sequence[str],
    attribute_values: Mapping[str, object] | None = None,
    conversation_history: Sequence[ClarifyingExchange] = (),
) -> str:
    """Classification prompt for a completion provider."""
    lines = [
        f"Categories (least to most automated): {', '.join(categories)}",
        "",
        "Process description:",
        description.strip(),
    ]
    if attribute_values:
        lines += ["", "Known attributes:"]
        lines += [f"- {name}: {value}" for name, value in sorted(attribute_values.items())]
    if conversation_history:
        lines += ["", "Clarifying questions and answers:"]
        for exchange in conversation_history:
            lines += [f"Q: {exchange.question}", f"A: {exchange.answer}"]
    return "\n".join(lines)


class Classifier:
    """Evaluates and routes classifications against the active matrix."""

    def __init__(
        self,
        store: MatrixVersionStore,
        config: EngineConfig | None = None,
        provider: CompletionProvider | None = None,
    ) -> None:
        self._store = store
        self._config = config or EngineConfig()
        self._provider = provider
        self._compiled: RuleEngine | None = None

    def _engine(self) -> RuleEngine:
        matrix = self._store.require_active()
        compiled = self._compiled
        if compiled is None or compiled.matrix is not matrix:
            compiled = RuleEngine(matrix)
            self._compiled = compiled
        return compiled

    def classify(self, context: ClassificationContext) -> ClassificationOutcome:
        """Evaluate and route one context against a single matrix snapshot."""
        evaluation = self._engine().evaluate(context)
        routing = route(
            evaluation,
            context.process_description,
            context.conversation_history,
            self._config.routing,
            self._config.quality,
        )
        logger.info(
            "Classified as %s (%.2f) on v%d -> %s",
            evaluation.category, evaluation.confidence,
            evaluation.matrix_version, routing.action,
        )
        return ClassificationOutcome(evaluation=evaluation, routing=routing)

    async def classify_description(
        self,
        description: str,
        attribute_values: Mapping[str, bool | str | float] | None = None,
        conversation_history: Sequence[ClarifyingExchange] = (),
    ) -> ClassificationOutcome:
        """Ask the provider for a category, then evaluate and route it.

        Raises:
            ValidationError: If no provider is configured.
            ProviderError: If the provider call fails.
        """
        if self._provider is None:
            raise ValidationError("No completion provider configured")

        prompt = build_prompt(
            description, self._config.categories, attribute_values, conversation_history,
        )
        proposal = await self._provider.complete(prompt)
        if proposal.category not in self._config.categories:
            logger.warning("Provider proposed unknown category %r", proposal.category)

        context = ClassificationContext(
            process_description=description,
            attribute_values=dict(attribute_values or {}),
            llm_category=proposal.category,
            llm_confidence=proposal.confidence,
            conversation_history=tuple(conversation_history),
        )
        return self.classify(context)
