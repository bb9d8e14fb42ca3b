"""OpenAI backend using openai SDK with native async.

Also serves any OpenAI-compatible endpoint (xAI, DeepSeek, local gateways)
through ``base_url``.
"""

import asyncio
import logging
import os
import time
from collections.abc import Mapping

from openai import AsyncOpenAI

from config.config_loader import BackendConfig
from wallbounce.backends.base import Backend, BackendError
from wallbounce.models import BackendResponse, TokenUsage

logger = logging.getLogger(__name__)


class OpenAIBackend(Backend):
    """OpenAI backend via openai SDK."""

    def __init__(self, config: BackendConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env or "", "").strip()
        if not api_key:
            raise BackendError(config.kind.value, f"Missing API key: {config.api_key_env}")
        if config.base_url:
            self._client = AsyncOpenAI(api_key=api_key, base_url=config.base_url)
        else:
            self._client = AsyncOpenAI(api_key=api_key)

    def name(self) -> str:
        return self._config.kind.value

    def model_string(self) -> str:
        return self._config.model

    async def invoke(self, prompt: str, options: Mapping[str, object] | None = None) -> BackendResponse:
        start = time.monotonic()
        try:
            call = self._client.chat.completions.create(
                model=self._config.model,
                messages=[{"role": "user", "content": prompt}],
                max_completion_tokens=self._config.max_tokens,
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

        choice = response.choices[0] if response.choices else None
        if not choice or not choice.message.content:
            raise BackendError(self.name(), "Empty response content")

        tokens = TokenUsage()
        if response.usage:
            tokens = TokenUsage(input=response.usage.prompt_tokens, output=response.usage.completion_tokens)

        logger.info("OpenAI %s: %.2fs, %d tokens", self.name(), latency, tokens.total)

        return self._response(self._config, choice.message.content, tokens)
