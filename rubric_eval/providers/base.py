"""
Base Provider Abstraction Layer

Defines the interface the pipeline's provider-backed operations call to reach
a language model. Providers never raise on a failed request; they return a
GenerationResponse with ``error`` set and let the caller decide.

Usage:
    from rubric_eval.providers import ProviderFactory, Message

    provider = ProviderFactory.create("ollama", model="qwen2.5:32b")
    response = await provider.generate_chat([
        Message("system", "You are a helpful assistant."),
        Message("user", "What is 2+2?"),
    ])
    print(response.text, response.metrics.total_duration_ms)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class ProviderType(Enum):
    """Supported LLM provider types."""

    OLLAMA = auto()
    GOOGLE = auto()


@dataclass
class GenerationConfig:
    """Sampling configuration for one request."""

    temperature: float = 0.7
    max_tokens: int = 2048
    top_p: float = 1.0
    top_k: Optional[int] = None
    stop_sequences: List[str] = field(default_factory=list)
    seed: Optional[int] = None


@dataclass
class GenerationMetrics:
    """Token and timing metrics from a generation request."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    total_duration_ms: float = 0.0
    tokens_per_second: float = 0.0


@dataclass
class GenerationResponse:
    """Response from a generation request."""

    text: str
    model: str
    provider: ProviderType
    metrics: GenerationMetrics = field(default_factory=GenerationMetrics)
    timestamp: datetime = field(default_factory=datetime.now)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        """Whether the generation succeeded."""
        return self.error is None and len(self.text) > 0

    @property
    def failure_reason(self) -> str:
        return self.error or "empty response"


@dataclass
class Message:
    """A single chat message."""

    role: str  # "system", "user", "assistant"
    content: str


class BaseProvider(ABC):
    """
    Abstract base class for LLM providers.

    All providers must implement:
    - generate_chat(): System/user conversation
    - health_check(): Connectivity test
    """

    def __init__(
        self,
        model: str,
        config: Optional[GenerationConfig] = None,
        timeout: float = 120.0,
    ):
        """
        Args:
            model: Provider-side model name.
            config: Default sampling configuration.
            timeout: Request timeout in seconds.
        """
        self.model = model
        self.config = config or GenerationConfig()
        self.timeout = timeout
        self._request_count = 0
        self._error_count = 0
        self._total_tokens = 0

    @property
    @abstractmethod
    def provider_type(self) -> ProviderType:
        ...

    @property
    def is_local(self) -> bool:
        """Whether this provider runs locally (no API costs)."""
        return self.provider_type == ProviderType.OLLAMA

    async def generate(
        self,
        prompt: str,
        config: Optional[GenerationConfig] = None,
    ) -> GenerationResponse:
        """Generate text from a single user prompt."""
        return await self.generate_chat([Message("user", prompt)], config)

    @abstractmethod
    async def generate_chat(
        self,
        messages: List[Message],
        config: Optional[GenerationConfig] = None,
    ) -> GenerationResponse:
        """
        Generate text from a conversation.

        Args:
            messages: List of Message objects (system, user, assistant).
            config: Override default generation config.

        Returns:
            GenerationResponse; ``error`` is set instead of raising.
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        ...

    def get_stats(self) -> Dict[str, Any]:
        """Get usage statistics for this provider instance."""
        return {
            "model": self.model,
            "provider": self.provider_type.name,
            "request_count": self._request_count,
            "error_count": self._error_count,
            "total_tokens": self._total_tokens,
        }

    def _record_request(self, response: GenerationResponse) -> None:
        self._request_count += 1
        self._total_tokens += response.metrics.total_tokens
        if response.error is not None:
            self._error_count += 1

    def _failed(self, error: str) -> GenerationResponse:
        result = GenerationResponse(
            text="",
            model=self.model,
            provider=self.provider_type,
            error=error,
        )
        self._record_request(result)
        return result


def calculate_tokens_per_second(tokens: int, duration_ms: float) -> float:
    """Calculate tokens per second from token count and duration."""
    if duration_ms <= 0:
        return 0.0
    return (tokens / duration_ms) * 1000


class ProviderFactory:
    """
    Factory for creating provider instances by name.

    Usage:
        provider = ProviderFactory.create("google", model="gemini-2.5-flash")
    """

    _registry: Dict[str, type] = {}

    @classmethod
    def register(cls, name: str, provider_class: type) -> None:
        cls._registry[name.lower()] = provider_class

    @classmethod
    def create(
        cls,
        provider_name: str,
        model: str,
        config: Optional[GenerationConfig] = None,
        **kwargs: Any,
    ) -> BaseProvider:
        """
        Create a provider instance.

        Args:
            provider_name: Registered provider name (ollama, google).
            model: Provider-side model name.
            config: Generation configuration.
            **kwargs: Provider-specific arguments.

        Raises:
            ValueError: If provider is not registered.
        """
        provider_class = cls._registry.get(provider_name.lower())
        if provider_class is None:
            available = ", ".join(sorted(cls._registry)) or "none"
            raise ValueError(
                f"Unknown provider '{provider_name}'. Available: {available}"
            )
        return provider_class(model=model, config=config, **kwargs)

    @classmethod
    def available_providers(cls) -> List[str]:
        return list(cls._registry.keys())
