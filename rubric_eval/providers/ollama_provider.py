"""
Ollama Provider Implementation

Local LLM inference via the Ollama chat API.

Usage:
    provider = OllamaProvider(model="qwen2.5:32b")
    response = await provider.generate_chat([Message("user", "Explain rubrics")])
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from ollama import AsyncClient

import config as app_config

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

logger = logging.getLogger(__name__)


class OllamaProvider(BaseProvider):
    """
    Ollama provider for local LLM inference.

    Connects to the server at OLLAMA_HOST (default: http://localhost:11434).
    """

    def __init__(
        self,
        model: str,
        config: Optional[GenerationConfig] = None,
        timeout: float = 120.0,
        host: Optional[str] = None,
    ):
        super().__init__(model, config, timeout)
        self.host = host or app_config.OLLAMA_HOST
        self._client = AsyncClient(host=self.host)

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.OLLAMA

    def _options(self, cfg: GenerationConfig) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "temperature": cfg.temperature,
            "num_predict": cfg.max_tokens,
            "top_p": cfg.top_p,
        }
        if cfg.top_k is not None:
            options["top_k"] = cfg.top_k
        if cfg.seed is not None:
            options["seed"] = cfg.seed
        if cfg.stop_sequences:
            options["stop"] = cfg.stop_sequences
        return options

    async def generate_chat(
        self,
        messages: List[Message],
        config: Optional[GenerationConfig] = None,
    ) -> GenerationResponse:
        cfg = config or self.config
        ollama_messages = [{"role": m.role, "content": m.content} for m in messages]

        try:
            response = await asyncio.wait_for(
                self._client.chat(
                    model=self.model,
                    messages=ollama_messages,
                    options=self._options(cfg),
                    stream=False,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"Ollama chat timed out after {self.timeout:.0f}s ({self.model})")
            return self._failed(f"timed out after {self.timeout:.0f}s")
        except Exception as e:
            logger.error(f"Ollama chat failed ({self.model}): {e}")
            return self._failed(str(e))

        message = response.get("message") or {}
        result = GenerationResponse(
            text=message.get("content", "") or "",
            model=self.model,
            provider=self.provider_type,
            metrics=self._extract_metrics(response),
            timestamp=datetime.now(),
        )
        self._record_request(result)
        return result

    async def health_check(self) -> bool:
        try:
            await self._client.list()
            return True
        except Exception as e:
            logger.warning(f"Ollama health check failed: {e}")
            return False

    def _extract_metrics(self, response: Any) -> GenerationMetrics:
        prompt_tokens = response.get("prompt_eval_count") or 0
        completion_tokens = response.get("eval_count") or 0

        # Ollama reports durations in nanoseconds
        eval_ms = (response.get("eval_duration") or 0) / 1_000_000
        total_ms = (response.get("total_duration") or 0) / 1_000_000

        return GenerationMetrics(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
            total_duration_ms=total_ms,
            tokens_per_second=calculate_tokens_per_second(completion_tokens, eval_ms),
        )


ProviderFactory.register("ollama", OllamaProvider)
