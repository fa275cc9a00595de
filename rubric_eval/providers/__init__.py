"""
LLM Provider Abstraction Layer

Unified interface for the model backends the pipeline calls (Ollama, Google).
Importing this package registers every provider with ProviderFactory.

Usage:
    from rubric_eval.providers import ProviderFactory

    provider = ProviderFactory.create("google", model="gemini-2.5-flash")
    response = await provider.generate("Explain rubric scoring")
"""

from .base import (
    BaseProvider,
    GenerationConfig,
    GenerationMetrics,
    GenerationResponse,
    Message,
    ProviderFactory,
    ProviderType,
    calculate_tokens_per_second,
)
from .ollama_provider import OllamaProvider
from .google_provider import GoogleProvider

__all__ = [
    "BaseProvider",
    "GenerationConfig",
    "GenerationMetrics",
    "GenerationResponse",
    "Message",
    "ProviderFactory",
    "ProviderType",
    "calculate_tokens_per_second",
    "OllamaProvider",
    "GoogleProvider",
]
