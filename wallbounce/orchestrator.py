"""Caller-facing entry point: classify, select, dispatch, synthesize, assemble."""

import logging
import time

from config.config_loader import AppConfig, DefaultsConfig
from wallbounce.assembler import assemble_result
from wallbounce.classifier import QueryClassifier
from wallbounce.complexity import SynthesizerSelector
from wallbounce.dispatch import DispatchEngine, clamp_depth
from wallbounce.errors import ConfigurationError, SynthesisError, WallBounceError
from wallbounce.events import EventSink, publish
from wallbounce.fallback import FallbackController
from wallbounce.models import (
    AnalysisResult,
    BackendKind,
    CallState,
    DispatchEvent,
    ExecutionMode,
    ExecutionOptions,
    TaskType,
)
from wallbounce.registry import BackendDescriptor, BackendRegistry
from wallbounce.synthesis import ConsensusBuilder

logger = logging.getLogger(__name__)


class WallBounceOrchestrator:
    """Runs one wall-bounce analysis per call.

    State per call: Classifying -> Selecting -> Dispatching -> [FallingBack]
    -> Synthesizing -> Completed, or Failed. Nothing is kept between calls,
    so one orchestrator may serve concurrent callers.
    """

    def __init__(
        self,
        registry: BackendRegistry,
        classifier: QueryClassifier,
        selector: SynthesizerSelector,
        engine: DispatchEngine,
        consensus: ConsensusBuilder,
        defaults: DefaultsConfig,
        event_sink: EventSink | None = None,
    ) -> None:
        self._registry = registry
        self._classifier = classifier
        self._selector = selector
        self._engine = engine
        self._consensus = consensus
        self._defaults = defaults
        self._sink = event_sink

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        registry: BackendRegistry,
        event_sink: EventSink | None = None,
    ) -> "WallBounceOrchestrator":
        classifier = QueryClassifier(
            technical_keywords=config.classifier.technical_keywords,
            simple_patterns=config.classifier.simple_patterns,
            max_simple_length=config.classifier.max_simple_length,
            enabled=config.defaults.simple_fast_path,
        )
        selector = SynthesizerSelector(
            default=config.synthesis.default,
            complex_=config.synthesis.complex,
            threshold=config.synthesis.complexity_threshold,
            task_overrides=config.synthesis.task_overrides,
        )
        engine = DispatchEngine(
            registry,
            config.prompts,
            fallback=FallbackController(registry),
            allow_reuse=config.defaults.sequential_allow_reuse,
            event_sink=event_sink,
        )
        return cls(
            registry,
            classifier,
            selector,
            engine,
            ConsensusBuilder(config.prompts),
            config.defaults,
            event_sink=event_sink,
        )

    def _state(self, state: CallState) -> None:
        logger.debug("Call state: %s", state.value)
        publish(self._sink, DispatchEvent("state", state=state))

    def _validate(self, options: ExecutionOptions, primary_count: int) -> ExecutionOptions:
        min_backends = max(options.min_backends or self._defaults.min_backends, 1)
        max_backends = options.max_backends or primary_count
        max_backends = max(min(max_backends, primary_count), min(min_backends, primary_count), 1)
        enable_fallback = (
            self._defaults.enable_fallback if options.enable_fallback is None else options.enable_fallback
        )
        return ExecutionOptions(
            task_type=options.task_type,
            mode=options.mode,
            depth=clamp_depth(options.depth, options.mode),
            min_backends=min_backends,
            max_backends=max_backends,
            enable_fallback=enable_fallback,
        )

    def _select_backends(
        self,
        selection_type: TaskType,
        synthesizer: BackendKind,
        options: ExecutionOptions,
    ) -> list[BackendDescriptor]:
        primary = [k for k in self._registry.primary_roster() if k != synthesizer]
        order = [k for k in self._registry.select_order(selection_type) if k != synthesizer]
        target = min(max(len(order), options.min_backends or 1), options.max_backends or len(primary))

        selected = order[:target]
        for key in primary:
            if len(selected) >= target:
                break
            if key not in selected:
                selected.append(key)
        return [self._registry.require(k) for k in selected]

    async def execute_analysis(
        self,
        prompt: str,
        options: ExecutionOptions | None = None,
    ) -> AnalysisResult:
        """Run a full wall-bounce analysis.

        Raises:
            ConfigurationError: Before any backend is invoked, when nothing can run.
            InsufficientBackends: Quorum not reached after selection and fallback.
            SynthesisError: The synthesizer call failed. Carries the dispatch errors and votes.
        """
        start = time.monotonic()
        requested = options or ExecutionOptions(
            task_type=self._defaults.task_type,
            mode=self._defaults.mode,
            depth=self._defaults.depth,
        )

        try:
            self._state(CallState.CLASSIFYING)
            classification = self._classifier.classify(prompt, requested.task_type)

            self._state(CallState.SELECTING)
            synthesizer_key, complexity = self._selector.select(prompt, classification.task_type)
            synthesizer = self._registry.get(synthesizer_key)
            if synthesizer is None:
                raise ConfigurationError(f"Synthesizer '{synthesizer_key.value}' is not registered")

            primary_count = len([k for k in self._registry.primary_roster() if k != synthesizer_key])
            if primary_count == 0:
                raise ConfigurationError("No primary backends registered")

            validated = self._validate(requested, primary_count)
            selection_type = TaskType.SIMPLE if classification.is_simple else classification.task_type
            backends = self._select_backends(selection_type, synthesizer_key, validated)

            logger.info(
                "Wall-bounce start: task=%s mode=%s depth=%s min=%d backends=%s synthesizer=%s",
                validated.task_type.value,
                validated.mode.value,
                validated.depth if validated.mode is ExecutionMode.SEQUENTIAL else "n/a",
                validated.min_backends,
                [d.key.value for d in backends],
                synthesizer_key.value,
            )

            self._state(CallState.DISPATCHING)
            ledger = await self._engine.dispatch(
                prompt,
                backends,
                validated.mode,
                min_backends=validated.min_backends or 1,
                depth=validated.depth,
                enable_fallback=bool(validated.enable_fallback),
                exclude={synthesizer_key},
            )

            self._state(CallState.SYNTHESIZING)
            synthesis_prompt = self._consensus.build_prompt(
                prompt, ledger.votes, task_type=validated.task_type, depth=ledger.depth_executed
            )
            try:
                synthesis = await self._consensus.synthesize(synthesizer, synthesis_prompt)
            except SynthesisError as exc:
                raise SynthesisError(
                    exc.synthesizer,
                    exc.message,
                    errors=ledger.errors,
                    attempted=[k.value for k in ledger.attempted],
                    votes=ledger.votes,
                ) from exc
        except WallBounceError as exc:
            self._state(CallState.FAILED)
            logger.error(
                "Wall-bounce analysis failed after %dms: %s",
                int((time.monotonic() - start) * 1000),
                exc,
            )
            raise

        processing_time_ms = int((time.monotonic() - start) * 1000)
        result = assemble_result(
            ledger,
            synthesis,
            synthesizer_key,
            processing_time_ms,
            task_type=validated.task_type,
            mode=validated.mode,
            is_simple=classification.is_simple,
            complexity=complexity,
            synthesis_prompt=synthesis_prompt,
        )
        self._state(CallState.COMPLETED)
        logger.info(
            "Wall-bounce complete: %d votes, confidence %.2f, cost $%s, %dms",
            len(result.votes),
            result.consensus.confidence,
            result.total_cost,
            processing_time_ms,
        )
        return result
