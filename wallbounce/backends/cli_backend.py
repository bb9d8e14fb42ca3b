"""Backend that shells out to a local model CLI (gemini, codex, claude, ...)."""

import asyncio
import json
import logging
import os
import time
from collections.abc import Mapping

from config.config_loader import BackendConfig
from wallbounce.backends.base import Backend, BackendError, estimate_tokens
from wallbounce.models import BackendResponse, TokenUsage

logger = logging.getLogger(__name__)

_PROMPT_PLACEHOLDER = "{prompt}"


def _extract_content(stdout: str) -> str:
    """Pull the answer out of CLI stdout; JSON output with content/text/response wins."""
    text = stdout.strip()
    if text.startswith("{"):
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return text
        if isinstance(payload, dict):
            for key in ("content", "text", "response", "result"):
                value = payload.get(key)
                if isinstance(value, str) and value.strip():
                    return value.strip()
    return text


class CliBackend(Backend):
    """Runs ``config.command`` as a subprocess, prompt passed as an argument.

    The command is an argv list, never a shell string. A ``{prompt}`` element
    is replaced by the prompt; without one the prompt is appended last.
    """

    def __init__(self, config: BackendConfig) -> None:
        if not config.command:
            raise BackendError(config.kind.value, "cli backend requires a command")
        self._config = config

    def name(self) -> str:
        return self._config.kind.value

    def model_string(self) -> str:
        return self._config.model

    def _argv(self, prompt: str) -> list[str]:
        if _PROMPT_PLACEHOLDER in self._config.command:
            return [prompt if part == _PROMPT_PLACEHOLDER else part for part in self._config.command]
        return [*self._config.command, prompt]

    async def invoke(self, prompt: str, options: Mapping[str, object] | None = None) -> BackendResponse:
        argv = self._argv(prompt)
        logger.info("Spawning %s for %s", argv[0], self.name())
        start = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=dict(os.environ),
            )
        except OSError as exc:
            raise BackendError(self.name(), f"Spawn error: {exc}") from exc

        try:
            if self._config.timeout_sec is not None:
                stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._config.timeout_sec)
            else:
                stdout, stderr = await proc.communicate()
        except TimeoutError as exc:
            raise BackendError(self.name(), f"Request timed out after {self._config.timeout_sec}s") from exc
        finally:
            # Timeout or cancellation: the child must not outlive the call
            if proc.returncode is None:
                proc.kill()
                await proc.wait()

        latency = time.monotonic() - start
        err_text = stderr.decode("utf-8", errors="replace").strip()
        if proc.returncode != 0:
            raise BackendError(self.name(), f"{argv[0]} exited with code {proc.returncode}: {err_text[:500]}")
        if err_text and "DeprecationWarning" not in err_text:
            logger.warning("%s stderr: %s", self.name(), err_text[:500])

        content = _extract_content(stdout.decode("utf-8", errors="replace"))
        if not content:
            raise BackendError(self.name(), f"Empty response from {argv[0]}")

        tokens = TokenUsage(input=estimate_tokens(prompt), output=estimate_tokens(content))
        logger.info("CLI %s: %.2fs, ~%d tokens", self.name(), latency, tokens.total)

        return self._response(self._config, content, tokens)
