"""Shared pytest fixtures."""

import asyncio
from collections.abc import Iterable, Mapping
from decimal import Decimal
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from config.config_loader import (
    AppConfig,
    BackendConfig,
    ClassifierConfig,
    DefaultsConfig,
    GuidanceConfig,
    PromptsConfig,
    SynthesisConfig,
)
from wallbounce.backends.base import Backend
from wallbounce.errors import BackendError
from wallbounce.models import BackendKind, BackendResponse, TaskType, TokenUsage
from wallbounce.registry import LIGHTWEIGHT, SYNTHESIZER, BackendDescriptor, BackendRegistry

STANDARD = [
    BackendKind.GEMINI_PRO,
    BackendKind.GPT_CODEX,
    BackendKind.GPT,
    BackendKind.CLAUDE_SONNET,
]
LIGHT = [BackendKind.GEMINI_FLASH, BackendKind.GPT_MINI, BackendKind.CLAUDE_HAIKU]
SYNTH = [BackendKind.CLAUDE_SONNET_LATEST, BackendKind.CLAUDE_OPUS]


def make_response(
    content: str = "Mock answer",
    confidence: float = 0.8,
    cost: str = "0.001",
) -> BackendResponse:
    return BackendResponse(
        content=content,
        confidence=confidence,
        reasoning="mock analysis",
        cost=Decimal(cost),
        tokens=TokenUsage(input=10, output=20),
    )


class FakeBackend(Backend):
    """Test double Backend."""

    def __init__(
        self,
        key: BackendKind,
        content: str | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
        confidence: float = 0.8,
        cost: str = "0.001",
    ) -> None:
        self.key = key
        self._content = content if content is not None else f"Answer from {key.value}"
        self._error = error
        self._delay = delay
        self._confidence = confidence
        self._cost = cost
        # Shadow the class method with an AsyncMock at the instance level.
        # ABC check passes because invoke is defined in the class body below.
        self.invoke = AsyncMock(side_effect=self._answer)  # type: ignore[assignment]

    async def _answer(self, prompt: str, options: Mapping[str, object] | None = None) -> BackendResponse:
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        return make_response(self._content, self._confidence, self._cost)

    def fail_with(self, message: str = "boom") -> "FakeBackend":
        self._error = BackendError(self.key.value, message)
        return self

    def name(self) -> str:
        return self.key.value

    def model_string(self) -> str:
        return f"{self.key.value}-model"

    async def invoke(self, prompt: str, options: Mapping[str, object] | None = None) -> BackendResponse:  # type: ignore[override]
        """Default implementation; replaced by AsyncMock in __init__."""
        return make_response(self._content)

    @property
    def prompts(self) -> list[str]:
        """Every prompt this backend was invoked with, in call order."""
        return [call.args[0] for call in self.invoke.await_args_list]


def _capabilities(key: BackendKind) -> frozenset[str]:
    if key in LIGHT:
        return frozenset({LIGHTWEIGHT})
    if key in SYNTH:
        return frozenset({SYNTHESIZER})
    return frozenset()


def descriptor_for(backend: FakeBackend, capabilities: Iterable[str] | None = None) -> BackendDescriptor:
    return BackendDescriptor(
        key=backend.key,
        display_name=backend.key.value.replace("-", " ").title(),
        model=backend.model_string(),
        invoker=backend,
        capabilities=frozenset(capabilities) if capabilities is not None else _capabilities(backend.key),
    )


def make_registry(
    backends: Iterable[FakeBackend],
    reserve: Iterable[BackendKind] = (),
) -> BackendRegistry:
    return BackendRegistry([descriptor_for(b) for b in backends], reserve=list(reserve))


@pytest.fixture
def fake_backends() -> dict[BackendKind, FakeBackend]:
    """The full roster: four standard, three lightweight, two synthesizers."""
    return {key: FakeBackend(key) for key in [*STANDARD, *LIGHT, *SYNTH]}


@pytest.fixture
def registry(fake_backends: dict[BackendKind, FakeBackend]) -> BackendRegistry:
    return make_registry(
        fake_backends.values(),
        reserve=[BackendKind.CLAUDE_OPUS, BackendKind.CLAUDE_SONNET],
    )


@pytest.fixture
def sample_prompts_config() -> PromptsConfig:
    return PromptsConfig(
        generic_parallel=["Answer precisely.", "State your assumptions."],
        generic_sequential="Build on the previous analysis.",
        synthesis_instructions=["Merge the answers below.", "Flag disagreements."],
        guidance={
            BackendKind.GEMINI_PRO: GuidanceConfig(
                parallel=["Focus on architecture."],
                sequential="Deepen the architectural view.",
            ),
            BackendKind.GPT_CODEX: GuidanceConfig(
                parallel=["Focus on code."],
                sequential="Check the implementation details.",
            ),
        },
    )


@pytest.fixture
def sample_defaults_config(tmp_path: Path) -> DefaultsConfig:
    return DefaultsConfig(
        output_dir=tmp_path / "output",
        reserve_backends=[BackendKind.CLAUDE_OPUS, BackendKind.CLAUDE_SONNET],
    )


@pytest.fixture
def sample_synthesis_config() -> SynthesisConfig:
    return SynthesisConfig(
        default=BackendKind.CLAUDE_SONNET_LATEST,
        complex=BackendKind.CLAUDE_OPUS,
        complexity_threshold=6,
        task_overrides={TaskType.CRITICAL: BackendKind.CLAUDE_OPUS},
    )


@pytest.fixture
def sample_classifier_config() -> ClassifierConfig:
    return ClassifierConfig(
        max_simple_length=60,
        technical_keywords=["error", "bug", "deploy", "server", "log", "エラー"],
        simple_patterns=[
            r"^(hello|hi|hey)[\s!.,]*(there)?[\s!.]*$",
            r"^(thanks|thank you)[\s!.]*$",
            r"^(こんにちは|ありがとう(ございます)?)[\s!！。]*$",
        ],
    )


@pytest.fixture
def sample_app_config(
    sample_defaults_config: DefaultsConfig,
    sample_prompts_config: PromptsConfig,
    sample_synthesis_config: SynthesisConfig,
    sample_classifier_config: ClassifierConfig,
) -> AppConfig:
    backends = {
        key: BackendConfig(
            kind=key,
            sdk="anthropic" if key.value.startswith("claude") else "openai",
            display_name=key.value,
            model=f"{key.value}-model",
            max_tokens=1024,
            confidence=0.8,
            capabilities=sorted(_capabilities(key)),
        )
        for key in [*STANDARD, *LIGHT, *SYNTH]
    }
    return AppConfig(
        defaults=sample_defaults_config,
        backends=backends,
        synthesis=sample_synthesis_config,
        classifier=sample_classifier_config,
        prompts=sample_prompts_config,
        available_backends=set(backends),
    )
