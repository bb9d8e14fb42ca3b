"""Gemini backend using google-genai SDK with native async."""

import asyncio
import logging
import os
import time
from collections.abc import Mapping

from google import genai
from google.genai import types as genai_types

from config.config_loader import BackendConfig
from wallbounce.backends.base import Backend, BackendError
from wallbounce.models import BackendResponse, TokenUsage

logger = logging.getLogger(__name__)


class GeminiBackend(Backend):
    """Google Gemini backend via google-genai SDK."""

    def __init__(self, config: BackendConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env or "", "").strip()
        if not api_key:
            raise BackendError(config.kind.value, f"Missing API key: {config.api_key_env}")
        self._client = genai.Client(api_key=api_key)

    def name(self) -> str:
        return self._config.kind.value

    def model_string(self) -> str:
        return self._config.model

    async def invoke(self, prompt: str, options: Mapping[str, object] | None = None) -> BackendResponse:
        start = time.monotonic()
        try:
            call = self._client.aio.models.generate_content(
                model=self._config.model,
                contents=prompt,
                config=genai_types.GenerateContentConfig(
                    max_output_tokens=self._config.max_tokens,
                ),
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

        if not response.text:
            raise BackendError(self.name(), "Empty response text")

        tokens = TokenUsage()
        usage = response.usage_metadata
        if usage:
            tokens = TokenUsage(
                input=usage.prompt_token_count or 0,
                output=usage.candidates_token_count or 0,
            )

        logger.info("Gemini %s: %.2fs, %d tokens", self.name(), latency, tokens.total)

        return self._response(self._config, response.text, tokens)
