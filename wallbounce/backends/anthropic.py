"""Anthropic Claude backend using anthropic SDK with native async."""

import asyncio
import logging
import os
import time
from collections.abc import Mapping

import anthropic as anthropic_sdk

from config.config_loader import BackendConfig
from wallbounce.backends.base import Backend, BackendError
from wallbounce.models import BackendResponse, TokenUsage

logger = logging.getLogger(__name__)


class AnthropicBackend(Backend):
    """Anthropic Claude backend via anthropic SDK."""

    def __init__(self, config: BackendConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env or "", "").strip()
        if not api_key:
            raise BackendError(config.kind.value, f"Missing API key: {config.api_key_env}")
        self._client = anthropic_sdk.AsyncAnthropic(api_key=api_key)

    def name(self) -> str:
        return self._config.kind.value

    def model_string(self) -> str:
        return self._config.model

    async def invoke(self, prompt: str, options: Mapping[str, object] | None = None) -> BackendResponse:
        start = time.monotonic()
        try:
            call = self._client.messages.create(
                model=self._config.model,
                max_tokens=self._config.max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
            if self._config.timeout_sec is not None:
                response = await asyncio.wait_for(call, timeout=self._config.timeout_sec)
            else:
                response = await call
        except TimeoutError as exc:
            raise BackendError(self.name(), f"Request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise BackendError(self.name(), f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        if not response.content:
            raise BackendError(self.name(), "Empty response content")

        text_blocks = [b.text for b in response.content if b.type == "text"]
        if not text_blocks:
            raise BackendError(self.name(), "No text blocks in response")

        content = "\n".join(text_blocks)

        tokens = TokenUsage()
        if response.usage:
            tokens = TokenUsage(input=response.usage.input_tokens, output=response.usage.output_tokens)

        logger.info("Anthropic %s: %.2fs, %d tokens", self.name(), latency, tokens.total)

        return self._response(self._config, content, tokens)
