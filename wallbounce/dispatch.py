"""Dispatch engine: parallel fan-out and sequential chained calls."""

import asyncio
import logging
import time
from collections.abc import Collection, Sequence
from enum import Enum

from config.config_loader import PromptsConfig
from wallbounce.errors import BackendError, InsufficientBackends
from wallbounce.events import EventSink, publish
from wallbounce.fallback import FallbackController
from wallbounce.ledger import DispatchLedger
from wallbounce.models import BackendKind, BackendResponse, DispatchEvent, ExecutionMode
from wallbounce.prompts import build_parallel_prompt, build_sequential_prompt, extend_summary
from wallbounce.registry import BackendDescriptor, BackendRegistry

logger = logging.getLogger(__name__)

MIN_DEPTH = 3
MAX_DEPTH = 5
DEFAULT_DEPTH = 3


def clamp_depth(depth: int | None, mode: ExecutionMode) -> int:
    """Depth is fixed at 1 outside sequential mode; otherwise clamped to [3, 5]."""
    if mode is not ExecutionMode.SEQUENTIAL:
        return 1
    if depth is None:
        return DEFAULT_DEPTH
    clamped = min(max(depth, MIN_DEPTH), MAX_DEPTH)
    if clamped != depth:
        logger.warning("Depth %d out of range, clamped to %d", depth, clamped)
    return clamped


def plan_chain(backends: Sequence[BackendDescriptor], depth: int) -> list[BackendDescriptor]:
    """Cycle through backends by index modulo count; small sets repeat."""
    if not backends:
        return []
    return [backends[i % len(backends)] for i in range(depth)]


class ChainState(str, Enum):
    IDLE = "idle"
    STEP = "step"
    RECORDED = "recorded"
    FAILED = "failed"
    COMPLETE = "complete"


_CHAIN_TRANSITIONS: dict[ChainState, frozenset[ChainState]] = {
    ChainState.IDLE: frozenset({ChainState.STEP, ChainState.COMPLETE}),
    ChainState.STEP: frozenset({ChainState.RECORDED, ChainState.FAILED}),
    ChainState.RECORDED: frozenset({ChainState.STEP, ChainState.COMPLETE}),
    ChainState.FAILED: frozenset({ChainState.STEP, ChainState.COMPLETE}),
    ChainState.COMPLETE: frozenset(),
}


class SequentialChain:
    """State machine for one chained run: Idle -> Step(i) -> Recorded|Failed -> ... -> Complete.

    Step i+1 can only begin once step i has been recorded or failed, because
    its prompt carries every earlier answer and the accumulated summary.
    """

    def __init__(
        self,
        prompt: str,
        plan: Sequence[BackendDescriptor],
        prompts: PromptsConfig,
        ledger: DispatchLedger,
    ) -> None:
        self._prompt = prompt
        self._plan = list(plan)
        self._prompts = prompts
        self._ledger = ledger
        self._previous: list[tuple[BackendKind, str]] = []
        self.state = ChainState.IDLE
        self.position = 0
        self.summary = ""

    @property
    def depth(self) -> int:
        return len(self._plan)

    @property
    def has_next(self) -> bool:
        return self.position < self.depth

    def _move(self, target: ChainState) -> None:
        if target not in _CHAIN_TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal chain transition {self.state.value} -> {target.value}")
        self.state = target

    def begin_step(self) -> tuple[BackendDescriptor, str]:
        self._move(ChainState.STEP)
        self.position += 1
        descriptor = self._plan[self.position - 1]
        step_prompt = build_sequential_prompt(
            self._prompt,
            descriptor.key,
            self._prompts,
            self._previous,
            self.summary,
            self.position,
            self.depth,
        )
        return descriptor, step_prompt

    def record(self, descriptor: BackendDescriptor, step_prompt: str, response: BackendResponse, elapsed_ms: int) -> None:
        self._previous.append((descriptor.key, response.content))
        self.summary = extend_summary(self.summary, descriptor.key, response.content, self.position)
        self._ledger.record_success(
            descriptor, step_prompt, response, self.position, elapsed_ms, accumulated_context=self.summary
        )
        self._move(ChainState.RECORDED)

    def fail(self, descriptor: BackendDescriptor, step_prompt: str, error: BackendError, elapsed_ms: int) -> None:
        self._ledger.record_failure(
            descriptor, step_prompt, error, self.position, elapsed_ms, accumulated_context=self.summary
        )
        self._move(ChainState.FAILED)

    def finish(self) -> None:
        self._move(ChainState.COMPLETE)


class DispatchEngine:
    """Runs a backend set in parallel or sequential mode and enforces quorum.

    The engine holds no per-call state; every dispatch gets its own ledger,
    so one engine can serve concurrent calls.
    """

    def __init__(
        self,
        registry: BackendRegistry,
        prompts: PromptsConfig,
        fallback: FallbackController | None = None,
        allow_reuse: bool = True,
        event_sink: EventSink | None = None,
    ) -> None:
        self._registry = registry
        self._prompts = prompts
        self._fallback = fallback
        self._allow_reuse = allow_reuse
        self._sink = event_sink

    async def _attempt(
        self,
        descriptor: BackendDescriptor,
        prompt: str,
        step: int,
        mode: ExecutionMode = ExecutionMode.PARALLEL,
    ) -> tuple[BackendResponse | BackendError, int]:
        """Invoke one backend. Never raises; failures come back as BackendError."""
        publish(self._sink, DispatchEvent("backend:start", backend=descriptor.key, step=step))
        start = time.monotonic()
        result: BackendResponse | BackendError
        try:
            result = await descriptor.invoke(prompt, {"mode": mode.value, "step": step})
        except BackendError as exc:
            result = exc
        except Exception as exc:
            result = BackendError(descriptor.key.value, f"Unexpected error: {exc}")
        else:
            if not result.content.strip():
                result = BackendError(descriptor.key.value, "Empty response content")
        elapsed_ms = int((time.monotonic() - start) * 1000)

        if isinstance(result, BackendError):
            logger.warning("Backend %s failed at step %d: %s", descriptor.key.value, step, result.message)
            publish(self._sink, DispatchEvent("backend:error", backend=descriptor.key, step=step, detail=result.message))
        else:
            logger.debug("Backend %s answered in %dms", descriptor.key.value, elapsed_ms)
            publish(self._sink, DispatchEvent("backend:complete", backend=descriptor.key, step=step))
        return result, elapsed_ms

    async def dispatch(
        self,
        prompt: str,
        backends: Sequence[BackendDescriptor],
        mode: ExecutionMode,
        min_backends: int,
        depth: int | None = None,
        enable_fallback: bool = True,
        exclude: Collection[BackendKind] = (),
    ) -> DispatchLedger:
        """Run the backend set and return the ledger, or raise InsufficientBackends.

        ``exclude`` lists backends that must not vote in this call (the
        synthesizer); it limits fallback and chain extension.
        """
        if mode is ExecutionMode.SEQUENTIAL:
            return await self._run_sequential(prompt, backends, min_backends, clamp_depth(depth, mode), exclude)
        return await self._run_parallel(prompt, backends, min_backends, enable_fallback, exclude)

    async def _run_parallel(
        self,
        prompt: str,
        backends: Sequence[BackendDescriptor],
        min_backends: int,
        enable_fallback: bool,
        exclude: Collection[BackendKind],
    ) -> DispatchLedger:
        ledger = DispatchLedger()
        tailored = {d.key: build_parallel_prompt(prompt, d.key, self._prompts) for d in backends}

        logger.info("Parallel dispatch to %d backends: %s", len(backends), [d.key.value for d in backends])

        # gather keeps input order; _attempt never raises, so no sibling is cancelled
        results = await asyncio.gather(*(self._attempt(d, tailored[d.key], 1) for d in backends))
        for descriptor, (result, elapsed_ms) in zip(backends, results):
            if isinstance(result, BackendResponse):
                ledger.record_success(descriptor, tailored[descriptor.key], result, 1, elapsed_ms)
            else:
                ledger.record_failure(descriptor, tailored[descriptor.key], result, 1, elapsed_ms)

        logger.info(
            "Parallel dispatch complete: %d/%d backends succeeded",
            len(ledger.votes),
            len(backends),
        )

        if len(ledger.votes) < min_backends and enable_fallback and self._fallback is not None:
            await self._fallback.recover(
                ledger,
                lambda key: build_parallel_prompt(prompt, key, self._prompts),
                min_backends,
                exclude,
                self._attempt,
                self._sink,
            )

        if len(ledger.votes) < min_backends:
            raise InsufficientBackends(
                min_backends,
                len(ledger.votes),
                ledger.errors,
                attempted=[k.value for k in ledger.attempted],
            )
        return ledger

    def _chain_candidates(
        self,
        backends: Sequence[BackendDescriptor],
        depth: int,
        exclude: Collection[BackendKind],
    ) -> list[BackendDescriptor]:
        candidates = list(backends)
        if self._allow_reuse or len(candidates) >= depth:
            return candidates
        chosen = {d.key for d in candidates}
        for key in self._registry.primary_roster():
            if len(candidates) >= depth:
                break
            if key not in chosen and key not in exclude:
                candidates.append(self._registry.require(key))
                chosen.add(key)
        return candidates

    async def _run_sequential(
        self,
        prompt: str,
        backends: Sequence[BackendDescriptor],
        min_backends: int,
        depth: int,
        exclude: Collection[BackendKind],
    ) -> DispatchLedger:
        ledger = DispatchLedger(depth_executed=depth)
        plan = plan_chain(self._chain_candidates(backends, depth, exclude), depth)
        chain = SequentialChain(prompt, plan, self._prompts, ledger)

        logger.info(
            "Sequential dispatch, depth %d: %s",
            depth,
            " -> ".join(d.key.value for d in plan),
        )

        while chain.has_next:
            descriptor, step_prompt = chain.begin_step()
            publish(
                self._sink,
                DispatchEvent("chain:step", backend=descriptor.key, step=chain.position, detail=f"{chain.position}/{depth}"),
            )
            result, elapsed_ms = await self._attempt(descriptor, step_prompt, chain.position, ExecutionMode.SEQUENTIAL)
            if isinstance(result, BackendResponse):
                chain.record(descriptor, step_prompt, result, elapsed_ms)
                logger.info("Wall-bounce depth %d/%d complete: %s", chain.position, depth, descriptor.key.value)
            else:
                chain.fail(descriptor, step_prompt, result, elapsed_ms)
        chain.finish()

        required = min(min_backends, depth)
        if len(ledger.votes) < required:
            raise InsufficientBackends(
                required,
                len(ledger.votes),
                ledger.errors,
                context=f"for depth {depth}",
                attempted=[k.value for k in ledger.attempted],
            )
        return ledger
