"""Backend health checks: ping each backend before running an analysis."""

import asyncio
import logging

from wallbounce.backends.base import Backend
from wallbounce.models import BackendKind

logger = logging.getLogger(__name__)

_PING_PROMPT = "Reply with the word OK only."
_TIMEOUT_SEC = 30.0


async def _check_one(key: BackendKind, backend: Backend) -> tuple[BackendKind, bool, str]:
    """Ping a single backend. Returns (key, ok, error_message)."""
    try:
        await asyncio.wait_for(
            backend.invoke(_PING_PROMPT, {"mode": "healthcheck"}),
            timeout=_TIMEOUT_SEC,
        )
        return key, True, ""
    except Exception as exc:
        logger.debug("Health check failed for %s: %s", key.value, exc)
        return key, False, str(exc) or type(exc).__name__


async def run_health_checks(
    backends: dict[BackendKind, Backend],
) -> dict[BackendKind, tuple[bool, str]]:
    """Ping all backends in parallel.

    Returns:
        Dict mapping backend key -> (ok, error_message).
        error_message is "" when ok is True.
    """
    results = await asyncio.gather(*(_check_one(k, b) for k, b in backends.items()))
    return {key: (ok, err) for key, ok, err in results}
