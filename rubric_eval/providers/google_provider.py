"""
Google Gemini Provider Implementation

Cloud LLM inference via the google-genai async client.

Usage:
    provider = GoogleProvider(model="gemini-2.5-flash")
    response = await provider.generate_chat([Message("user", "Explain rubrics")])
"""

import asyncio
import logging
import os
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from google import genai
from google.genai import types

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

class GoogleProvider(BaseProvider):
    """
    Google Gemini provider.

    Requires GOOGLE_API_KEY environment variable or explicit api_key.
    """

    def __init__(
        self,
        model: str,
        config: Optional[GenerationConfig] = None,
        timeout: float = 120.0,
        api_key: Optional[str] = None,
    ):
        super().__init__(model, config, timeout)
        self._api_key = api_key or os.getenv("GOOGLE_API_KEY")
        self._client: Optional[genai.Client] = None

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.GOOGLE

    def _ensure_client(self) -> genai.Client:
        """Lazily initialize the Google GenAI client."""
        if self._client is None:
            if not self._api_key:
                raise ValueError(
                    "Google API key required. Set GOOGLE_API_KEY env var or pass api_key."
                )
            self._client = genai.Client(api_key=self._api_key)
        return self._client

    def _content_config(
        self, cfg: GenerationConfig, system_instruction: Optional[str]
    ) -> types.GenerateContentConfig:
        params: Dict[str, Any] = {
            "temperature": cfg.temperature,
            "max_output_tokens": cfg.max_tokens,
            "top_p": cfg.top_p,
        }
        if cfg.top_k is not None:
            params["top_k"] = cfg.top_k
        if cfg.stop_sequences:
            params["stop_sequences"] = cfg.stop_sequences
        if cfg.seed is not None:
            params["seed"] = cfg.seed
        if system_instruction:
            params["system_instruction"] = system_instruction
        return types.GenerateContentConfig(**params)

    async def generate_chat(
        self,
        messages: List[Message],
        config: Optional[GenerationConfig] = None,
    ) -> GenerationResponse:
        cfg = config or self.config

        # Gemini takes the system prompt separately and calls the assistant "model"
        contents = []
        system_parts = []
        for msg in messages:
            if msg.role == "system":
                system_parts.append(msg.content)
            elif msg.role == "assistant":
                contents.append(types.Content(role="model", parts=[types.Part(text=msg.content)]))
            else:
                contents.append(types.Content(role="user", parts=[types.Part(text=msg.content)]))

        try:
            client = self._ensure_client()
            start_time = time.perf_counter()
            response = await asyncio.wait_for(
                client.aio.models.generate_content(
                    model=self.model,
                    contents=contents,
                    config=self._content_config(cfg, "\n\n".join(system_parts) or None),
                ),
                timeout=self.timeout,
            )
            duration_ms = (time.perf_counter() - start_time) * 1000
        except asyncio.TimeoutError:
            logger.error(f"Google generate timed out after {self.timeout:.0f}s ({self.model})")
            return self._failed(f"timed out after {self.timeout:.0f}s")
        except Exception as e:
            logger.error(f"Google generate failed ({self.model}): {e}")
            return self._failed(str(e))

        usage = getattr(response, "usage_metadata", None)
        prompt_tokens = (getattr(usage, "prompt_token_count", 0) or 0) if usage else 0
        completion_tokens = (getattr(usage, "candidates_token_count", 0) or 0) if usage else 0

        result = GenerationResponse(
            text=response.text or "",
            model=self.model,
            provider=self.provider_type,
            metrics=GenerationMetrics(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
                total_duration_ms=duration_ms,
                tokens_per_second=calculate_tokens_per_second(completion_tokens, duration_ms),
            ),
            timestamp=datetime.now(),
        )
        self._record_request(result)
        return result

    async def health_check(self) -> bool:
        try:
            self._ensure_client()
            return True
        except Exception as e:
            logger.warning(f"Google health check failed: {e}")
            return False


ProviderFactory.register("google", GoogleProvider)
