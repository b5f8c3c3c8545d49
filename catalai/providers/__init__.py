"""catalai provider layer.

The classifier obtains LLM categories only through the CompletionProvider
interface. LiteLLMProvider is the shipped adapter.
"""

from catalai.providers.base import CompletionProvider
from catalai.providers.litellm_provider import LiteLLMProvider

__all__ = [
    "CompletionProvider",
    "LiteLLMProvider",
]
