"""Load settings.yaml into typed dataclasses. Checks API keys at startup."""

import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path

import yaml

from wallbounce.errors import ConfigurationError
from wallbounce.models import BackendKind, ExecutionMode, TaskType

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class BackendConfig:
    kind: BackendKind
    sdk: str
    display_name: str
    model: str
    max_tokens: int
    confidence: float
    api_key_env: str | None = None
    timeout_sec: float | None = None   # None -> no timeout
    input_cost_per_mtok: Decimal = Decimal("0")
    output_cost_per_mtok: Decimal = Decimal("0")
    capabilities: list[str] = field(default_factory=list)
    base_url: str | None = None
    command: list[str] = field(default_factory=list)


@dataclass
class GuidanceConfig:
    parallel: list[str] = field(default_factory=list)
    sequential: str = ""


@dataclass
class PromptsConfig:
    generic_parallel: list[str]
    generic_sequential: str
    synthesis_instructions: list[str]
    guidance: dict[BackendKind, GuidanceConfig] = field(default_factory=dict)


@dataclass
class SynthesisConfig:
    default: BackendKind
    complex: BackendKind
    complexity_threshold: int = 6
    task_overrides: dict[TaskType, BackendKind] = field(default_factory=dict)


@dataclass
class ClassifierConfig:
    max_simple_length: int = 60
    technical_keywords: list[str] = field(default_factory=list)
    simple_patterns: list[str] = field(default_factory=list)


@dataclass
class DefaultsConfig:
    output_dir: Path
    mode: ExecutionMode = ExecutionMode.PARALLEL
    task_type: TaskType = TaskType.BASIC
    min_backends: int = 2
    depth: int = 3
    enable_fallback: bool = True
    reserve_backends: list[BackendKind] = field(default_factory=list)
    sequential_allow_reuse: bool = True
    simple_fast_path: bool = True


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    backends: dict[BackendKind, BackendConfig]
    synthesis: SynthesisConfig
    classifier: ClassifierConfig
    prompts: PromptsConfig
    available_backends: set[BackendKind] = field(default_factory=set)


def _kind(value: str, where: str) -> BackendKind:
    try:
        return BackendKind(str(value))
    except ValueError as exc:
        raise ConfigurationError(f"Unknown backend '{value}' in {where}") from exc


def _decimal(value: object) -> Decimal:
    return Decimal(str(value)) if value is not None else Decimal("0")


def _load_backend(kind: BackendKind, raw: dict) -> BackendConfig:
    timeout = raw.get("timeout_sec")
    return BackendConfig(
        kind=kind,
        sdk=str(raw["sdk"]),
        display_name=str(raw.get("display_name", kind.value)),
        model=str(raw["model"]),
        max_tokens=int(raw.get("max_tokens", 4096)),
        confidence=float(raw.get("confidence", 0.8)),
        api_key_env=raw.get("api_key_env"),
        timeout_sec=float(timeout) if timeout is not None else None,
        input_cost_per_mtok=_decimal(raw.get("input_cost_per_mtok")),
        output_cost_per_mtok=_decimal(raw.get("output_cost_per_mtok")),
        capabilities=[str(c) for c in raw.get("capabilities", [])],
        base_url=raw.get("base_url"),
        command=[str(part) for part in raw.get("command", [])],
    )


def _apply_env_overrides(defaults: DefaultsConfig) -> None:
    fallback_env = os.environ.get("WALL_BOUNCE_ENABLE_FALLBACK", "").strip()
    if fallback_env:
        defaults.enable_fallback = fallback_env.lower() in _TRUTHY
    min_env = os.environ.get("WALL_BOUNCE_MIN_BACKENDS", "").strip()
    if min_env:
        try:
            defaults.min_backends = max(int(min_env), 1)
        except ValueError:
            logger.warning("Ignoring non-integer WALL_BOUNCE_MIN_BACKENDS=%r", min_env)


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if the settings file is missing and
    ConfigurationError for unknown backend kinds or an unresolvable
    synthesizer. Backends without an API key are logged and left out of
    available_backends; callers decide whether that leaves enough to run.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    defaults_raw = raw["defaults"]
    defaults = DefaultsConfig(
        output_dir=Path(defaults_raw.get("output_dir", "./output")),
        mode=ExecutionMode(defaults_raw.get("mode", "parallel")),
        task_type=TaskType(defaults_raw.get("task_type", "basic")),
        min_backends=max(int(defaults_raw.get("min_backends", 2)), 1),
        depth=int(defaults_raw.get("depth", 3)),
        enable_fallback=bool(defaults_raw.get("enable_fallback", True)),
        reserve_backends=[
            _kind(k, "defaults.reserve_backends") for k in defaults_raw.get("reserve_backends", [])
        ],
        sequential_allow_reuse=bool(defaults_raw.get("sequential_allow_reuse", True)),
        simple_fast_path=bool(defaults_raw.get("simple_fast_path", True)),
    )
    _apply_env_overrides(defaults)

    backends: dict[BackendKind, BackendConfig] = {}
    available_backends: set[BackendKind] = set()
    for key, backend_raw in raw["backends"].items():
        kind = _kind(key, "backends")
        backend_cfg = _load_backend(kind, backend_raw)
        backends[kind] = backend_cfg

        if not backend_cfg.api_key_env:
            available_backends.add(kind)
            logger.info("Backend available (no key required): %s", kind.value)
        elif os.environ.get(backend_cfg.api_key_env, "").strip():
            available_backends.add(kind)
            logger.info("Backend available: %s", kind.value)
        else:
            logger.info(
                "Backend skipped (no API key): %s (set %s in .env)",
                kind.value,
                backend_cfg.api_key_env,
            )

    synthesis_raw = raw["synthesis"]
    synthesis = SynthesisConfig(
        default=_kind(synthesis_raw["default"], "synthesis.default"),
        complex=_kind(synthesis_raw["complex"], "synthesis.complex"),
        complexity_threshold=int(synthesis_raw.get("complexity_threshold", 6)),
        task_overrides={
            TaskType(task): _kind(target, "synthesis.task_overrides")
            for task, target in (synthesis_raw.get("task_overrides") or {}).items()
        },
    )
    for synth_kind in {synthesis.default, synthesis.complex, *synthesis.task_overrides.values()}:
        if synth_kind not in backends:
            raise ConfigurationError(f"Synthesizer '{synth_kind.value}' has no backend entry")

    classifier_raw = raw.get("classifier", {})
    classifier = ClassifierConfig(
        max_simple_length=int(classifier_raw.get("max_simple_length", 60)),
        technical_keywords=[str(w) for w in classifier_raw.get("technical_keywords", [])],
        simple_patterns=[str(p) for p in classifier_raw.get("simple_patterns", [])],
    )

    prompts_raw = raw["prompts"]
    guidance = {
        _kind(key, "prompts.guidance"): GuidanceConfig(
            parallel=[str(line) for line in value.get("parallel", [])],
            sequential=str(value.get("sequential", "")),
        )
        for key, value in (prompts_raw.get("guidance") or {}).items()
    }
    prompts = PromptsConfig(
        generic_parallel=[str(line) for line in prompts_raw["generic_parallel"]],
        generic_sequential=str(prompts_raw["generic_sequential"]),
        synthesis_instructions=[str(line) for line in prompts_raw["synthesis_instructions"]],
        guidance=guidance,
    )

    return AppConfig(
        defaults=defaults,
        backends=backends,
        synthesis=synthesis,
        classifier=classifier,
        prompts=prompts,
        available_backends=available_backends,
    )
