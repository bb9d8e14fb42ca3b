"""Prompt builders for parallel, chained and synthesis calls."""

from collections.abc import Sequence

from config.config_loader import PromptsConfig
from wallbounce.models import BackendKind, TaskType, Vote

# Per-response digest length inside chained prompts and summary entries
DIGEST_CHARS = 600
# Accumulated summary shown to the next chain step
SUMMARY_CHARS = 800
# Per-vote excerpt handed to the synthesizer
SYNTHESIS_EXCERPT_CHARS = 1200


def truncate(text: str, length: int) -> str:
    return f"{text[: length - 3]}..." if len(text) > length else text


def _bullets(lines: Sequence[str]) -> str:
    return "\n".join(f"- {line}" for line in lines)


def build_parallel_prompt(prompt: str, backend: BackendKind, prompts: PromptsConfig) -> str:
    """Base prompt plus the backend's role lines (generic lines when it has none)."""
    guidance = prompts.guidance.get(backend)
    lines = guidance.parallel if guidance and guidance.parallel else prompts.generic_parallel
    return f"{prompt}\n\nAdditional instructions:\n{_bullets(lines)}"


def build_sequential_prompt(
    prompt: str,
    backend: BackendKind,
    prompts: PromptsConfig,
    previous: Sequence[tuple[BackendKind, str]],
    accumulated_summary: str,
    current_depth: int,
    total_depth: int,
) -> str:
    guidance = prompts.guidance.get(backend)
    continuation = guidance.sequential if guidance and guidance.sequential else prompts.generic_sequential

    if previous:
        digest = "\n\n".join(
            f"[{key.value}]\n{truncate(content, DIGEST_CHARS)}" for key, content in previous
        )
    else:
        digest = "(no analysis yet)"

    history = ""
    if accumulated_summary:
        history = f"\n\nAccumulated notes so far:\n{truncate(accumulated_summary, SUMMARY_CHARS)}"

    progress = f"\n\n[Wall-Bounce progress: {current_depth}/{total_depth}]"

    return (
        f"{prompt}\n\nAnalysis so far:\n{digest}{history}{progress}"
        f"\n\nAdditional instructions:\n- {continuation}"
    )


def summary_entry(backend: BackendKind, content: str, depth: int) -> str:
    return f"[{backend.value}][depth {depth}] {truncate(content, DIGEST_CHARS)}"


def extend_summary(previous: str, backend: BackendKind, content: str, depth: int) -> str:
    entry = summary_entry(backend, content, depth)
    return f"{previous}\n\n{entry}" if previous else entry


def build_synthesis_prompt(
    prompt: str,
    votes: Sequence[Vote],
    prompts: PromptsConfig,
    task_type: TaskType | None = None,
    depth: int | None = None,
) -> str:
    header = _bullets(prompts.synthesis_instructions)
    task_info = f"\nTask type: {task_type.value}" if task_type else ""
    depth_info = f"\nWall-Bounce depth: {depth}" if depth else ""
    answers = "\n\n".join(
        f"[{vote.display_name}] (confidence: {vote.response.confidence:.2f})\n"
        f"{truncate(vote.response.content, SYNTHESIS_EXCERPT_CHARS)}"
        for vote in votes
    )
    return f"{header}{task_info}{depth_info}\n\nOriginal request:\n{prompt}\n\nIndividual answers:\n{answers}"
