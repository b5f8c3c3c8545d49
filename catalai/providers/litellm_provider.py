"""LiteLLM adapter implementing the CompletionProvider interface.

Routes classification and connection-test calls to any provider through
LiteLLM's unified API, parses the JSON classification out of the reply,
and maps every failure to a ProviderError reason. Calls are made exactly
once; retry policy belongs to the caller.
"""

from __future__ import annotations

import json
import logging
import os
import re
import time

import litellm
from pydantic import ValidationError as PydanticValidationError

# Suppress LiteLLM's "Give Feedback / Get Help" and "Provider List" banners
litellm.suppress_debug_info = True

from catalai.errors import ProviderError, ProviderErrorReason
from catalai.providers.base import CompletionProvider
from catalai.schemas.classification import ConnectionProbe, LLMClassification
from catalai.schemas.config import ProviderConfig

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = (
    "You classify business processes into one automation category. "
    "Reply with a JSON object only: "
    '{"category": "<category>", "confidence": <0.0-1.0>, "rationale": "<one sentence>"}'
)

# JSON inside a fenced block, or the first bare object in the reply
_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*\n(.*?)\n```", re.DOTALL)
_BARE_JSON_RE = re.compile(r"\{.*\}", re.DOTALL)


def classify_error(error: Exception) -> ProviderErrorReason:
    """Map a LiteLLM or transport error to a ProviderError reason.

    Typed LiteLLM exceptions are matched first; anything else falls back
    to status codes and keywords in the message.
    """
    if isinstance(error, TimeoutError | litellm.Timeout):
        return ProviderErrorReason.TIMEOUT
    if isinstance(error, litellm.AuthenticationError | litellm.PermissionDeniedError):
        return ProviderErrorReason.AUTH
    if isinstance(error, litellm.NotFoundError):
        return ProviderErrorReason.MODEL_NOT_FOUND
    if isinstance(
        error,
        litellm.RateLimitError | litellm.ServiceUnavailableError | litellm.InternalServerError,
    ):
        return ProviderErrorReason.CAPACITY

    error_str = str(error).lower()
    if "timeout" in error_str or "timed out" in error_str:
        return ProviderErrorReason.TIMEOUT
    if any(marker in error_str for marker in ("401", "403", "api key", "unauthorized")):
        return ProviderErrorReason.AUTH
    if "404" in error_str or "model not found" in error_str or "does not exist" in error_str:
        return ProviderErrorReason.MODEL_NOT_FOUND
    if (
        "429" in error_str
        or "rate" in error_str
        or "overloaded" in error_str
        or "503" in error_str
        or "capacity" in error_str
        or "throughput" in error_str
    ):
        return ProviderErrorReason.CAPACITY
    return ProviderErrorReason.UNKNOWN


def parse_classification(content: str) -> LLMClassification:
    """Extract the JSON classification from a model reply.

    Raises:
        ProviderError: With reason malformed_response if no valid object is found.
    """
    candidates = [content.strip()]
    fenced = _FENCED_JSON_RE.search(content)
    if fenced:
        candidates.append(fenced.group(1))
    bare = _BARE_JSON_RE.search(content)
    if bare:
        candidates.append(bare.group(0))

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if not isinstance(data, dict):
            continue
        try:
            return LLMClassification.model_validate(data)
        except PydanticValidationError:
            continue

    raise ProviderError(
        ProviderErrorReason.MALFORMED_RESPONSE,
        f"Model reply is not a valid classification: {content[:80]!r}",
    )


class LiteLLMProvider(CompletionProvider):
    """Completion provider powered by LiteLLM.

    Works with any model LiteLLM can route to (OpenAI, Bedrock, Anthropic,
    local servers via api_base).
    """

    def __init__(self, config: ProviderConfig) -> None:
        super().__init__(config)
        # Resolve API key from environment
        self._api_key = os.environ.get(config.api_key_env, "")

    async def complete(self, prompt: str) -> LLMClassification:
        messages = [
            {"role": "system", "content": _SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]
        response = await self._call(messages)
        content = self._extract_content(response)
        if not content:
            raise ProviderError(
                ProviderErrorReason.MALFORMED_RESPONSE,
                f"Empty response from {self._config.model}",
            )
        classification = parse_classification(content)
        logger.debug(
            "%s classified as %s (%.2f)",
            self._config.model, classification.category, classification.confidence,
        )
        return classification

    async def probe(self, messages: list[dict[str, str]]) -> ConnectionProbe:
        started = time.monotonic()
        response = await self._call(messages)
        latency = time.monotonic() - started
        return ConnectionProbe(
            text=self._extract_content(response),
            latency=latency,
            model=getattr(response, "model", None) or self._config.model,
        )

    def _build_completion_kwargs(self, messages: list[dict[str, str]]) -> dict:
        """Build the kwargs dict for litellm.acompletion."""
        kwargs: dict = {
            "model": self._config.model,
            "messages": messages,
            "timeout": float(self._config.timeout),
            "temperature": self._config.temperature,
        }

        # Set API key if available
        if self._api_key:
            kwargs["api_key"] = self._api_key

        # Set custom API base if configured
        if self._config.api_base:
            kwargs["api_base"] = self._config.api_base

        return kwargs

    async def _call(self, messages: list[dict[str, str]]) -> litellm.ModelResponse:
        """Call litellm.acompletion once, translating failures to ProviderError."""
        kwargs = self._build_completion_kwargs(messages)
        try:
            return await litellm.acompletion(**kwargs)
        except Exception as e:
            reason = classify_error(e)
            logger.warning("Call to %s failed (%s): %s", self._config.model, reason, str(e)[:80])
            if reason == ProviderErrorReason.AUTH:
                message = (
                    f"Authentication failed for {self._config.model}. "
                    f"Check that {self._config.api_key_env} is set correctly."
                )
            else:
                message = f"Call to {self._config.model} failed ({reason}): {str(e)[:200]}"
            raise ProviderError(reason, message) from e

    def _extract_content(self, response: litellm.ModelResponse) -> str:
        """Extract text content from a LiteLLM response."""
        if not response.choices:
            return ""
        message = response.choices[0].message
        return message.content or "" if message else ""
