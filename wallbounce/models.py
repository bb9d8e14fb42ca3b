"""Dataclasses and enums for the wall-bounce pipeline. No logic, no deps."""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum


class BackendKind(str, Enum):
    """Identity tag of a registered backend. Routing is keyed on this, never on display names."""

    GEMINI_PRO = "gemini-pro"
    GEMINI_FLASH = "gemini-flash"
    GPT_CODEX = "gpt-codex"
    GPT = "gpt"
    GPT_MINI = "gpt-mini"
    CLAUDE_SONNET = "claude-sonnet"
    CLAUDE_HAIKU = "claude-haiku"
    CLAUDE_OPUS = "claude-opus"
    CLAUDE_SONNET_LATEST = "claude-sonnet-latest"


class TaskType(str, Enum):
    BASIC = "basic"
    PREMIUM = "premium"
    CRITICAL = "critical"
    SIMPLE = "simple"


class ExecutionMode(str, Enum):
    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"


class CallState(str, Enum):
    CLASSIFYING = "classifying"
    SELECTING = "selecting"
    DISPATCHING = "dispatching"
    FALLING_BACK = "falling_back"
    SYNTHESIZING = "synthesizing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class TokenUsage:
    input: int = 0
    output: int = 0

    @property
    def total(self) -> int:
        return self.input + self.output


@dataclass(frozen=True)
class BackendResponse:
    content: str
    confidence: float          # self-reported, 0..1
    reasoning: str
    cost: Decimal
    tokens: TokenUsage = field(default_factory=TokenUsage)


@dataclass(frozen=True)
class Vote:
    backend: BackendKind
    display_name: str
    model: str
    response: BackendResponse
    agreement_score: float     # currently the backend's own confidence
    step: int = 1              # chain position; always 1 in parallel mode


@dataclass(frozen=True)
class ExecutionOptions:
    task_type: TaskType = TaskType.BASIC
    mode: ExecutionMode = ExecutionMode.PARALLEL
    depth: int | None = None
    min_backends: int | None = None
    max_backends: int | None = None
    enable_fallback: bool | None = None  # None -> configured default


@dataclass(frozen=True)
class Classification:
    task_type: TaskType
    is_simple: bool


@dataclass(frozen=True)
class ComplexityScore:
    structural: int
    cognitive: int
    domain: int

    @property
    def total(self) -> int:
        return self.structural + self.cognitive + self.domain


@dataclass(frozen=True)
class StepRecord:
    step: int
    backend: BackendKind
    input_prompt: str
    output: str
    confidence: float
    processing_time_ms: int
    accumulated_context: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class Consensus:
    content: str
    confidence: float
    reasoning: str


@dataclass(frozen=True)
class AnalysisDebug:
    verified: bool
    backends_used: list[str]
    errors: list[str]
    synthesizer: str
    task_type: TaskType
    mode: ExecutionMode
    depth_executed: int | None = None
    fallback_used: bool = False
    fallback_backends: list[str] = field(default_factory=list)
    is_simple: bool = False
    complexity: ComplexityScore | None = None
    steps: list[StepRecord] = field(default_factory=list)
    synthesis_prompt: str = ""


@dataclass(frozen=True)
class AnalysisResult:
    consensus: Consensus
    votes: list[Vote]
    total_cost: Decimal
    processing_time_ms: int
    debug: AnalysisDebug


@dataclass(frozen=True)
class DispatchEvent:
    """Progress notification published to an optional event sink."""

    name: str                  # "state", "backend:start", "backend:complete", ...
    backend: BackendKind | None = None
    state: CallState | None = None
    step: int | None = None
    detail: str = ""
