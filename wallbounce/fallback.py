"""Reserve-backend substitution when the primary set misses quorum."""

import logging
from collections.abc import Awaitable, Callable, Collection

from wallbounce.errors import BackendError
from wallbounce.events import EventSink, publish
from wallbounce.ledger import DispatchLedger
from wallbounce.models import BackendKind, BackendResponse, CallState, DispatchEvent
from wallbounce.registry import BackendDescriptor, BackendRegistry

logger = logging.getLogger(__name__)

Attempt = Callable[[BackendDescriptor, str, int], Awaitable[tuple[BackendResponse | BackendError, int]]]


class FallbackController:
    """Tries the registry's reserve list one backend at a time until quorum.

    Reserve entries already attempted in this call, or excluded (the call's
    synthesizer), are skipped. A failed identity is never retried.
    """

    def __init__(self, registry: BackendRegistry) -> None:
        self._registry = registry

    def candidates(self, exclude: Collection[BackendKind]) -> list[BackendDescriptor]:
        return [
            self._registry.require(key)
            for key in self._registry.reserve_order
            if key not in exclude
        ]

    async def recover(
        self,
        ledger: DispatchLedger,
        prompt_for: Callable[[BackendKind], str],
        min_backends: int,
        exclude: Collection[BackendKind],
        attempt: Attempt,
        sink: EventSink | None = None,
    ) -> None:
        """Append reserve votes to the ledger until it reaches min_backends."""
        skip = set(exclude) | set(ledger.attempted)
        reserves = self.candidates(skip)

        logger.warning(
            "Primary backends short of quorum (%d/%d), trying fallback: %s",
            len(ledger.votes),
            min_backends,
            [d.key.value for d in reserves],
        )
        publish(sink, DispatchEvent("state", state=CallState.FALLING_BACK))

        for descriptor in reserves:
            if len(ledger.votes) >= min_backends:
                break
            publish(sink, DispatchEvent("fallback:start", backend=descriptor.key))
            prompt = prompt_for(descriptor.key)
            result, elapsed_ms = await attempt(descriptor, prompt, 1)
            if isinstance(result, BackendResponse):
                ledger.record_success(descriptor, prompt, result, 1, elapsed_ms, fallback=True)
                logger.info("Fallback succeeded: %s", descriptor.key.value)
            else:
                ledger.record_failure(descriptor, prompt, result, 1, elapsed_ms)
                logger.error("Fallback failed: %s: %s", descriptor.key.value, result.message)
