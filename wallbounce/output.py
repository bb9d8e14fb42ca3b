"""Rich console output, JSON conversion and markdown file save for analysis results."""

import dataclasses
import logging
import re
from datetime import datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.text import Text

from wallbounce.models import AnalysisResult, Vote

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len] or "analysis"


def _vote_preview(vote: Vote, words: int = 50) -> str:
    """Return first N words of a vote's content."""
    all_words = vote.response.content.split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


def _vote_label(vote: Vote, chained: bool) -> str:
    label = f"{vote.display_name} ({vote.model})"
    return f"Step {vote.step}: {label}" if chained else label


def print_vote_summary(result: AnalysisResult) -> None:
    """Print a brief summary of every primary vote to the console."""
    chained = result.debug.depth_executed is not None
    console.print(Rule(f"[bold cyan]Backend Responses ({result.debug.mode.value})[/bold cyan]"))
    for vote in result.votes:
        console.print(
            Panel(
                _vote_preview(vote),
                title=f"[bold]{_vote_label(vote, chained)}[/bold]",
                subtitle=f"confidence {vote.agreement_score:.2f} | ${vote.response.cost:.6f}",
                border_style="dim",
            )
        )
    for error in result.debug.errors:
        console.print(f"[red]FAIL[/red] {error}")


def print_consensus(result: AnalysisResult) -> None:
    """Print the consensus answer using Rich markdown."""
    console.print(Rule("[bold green]Wall-Bounce Consensus[/bold green]"))
    debug = result.debug
    flags = []
    if debug.fallback_used:
        flags.append(f"fallback: {', '.join(debug.fallback_backends)}")
    if debug.is_simple:
        flags.append("simple query")
    if debug.complexity is not None:
        flags.append(f"complexity {debug.complexity.total}")
    console.print(
        Text(
            f"Synthesized by: {debug.synthesizer} | "
            f"Confidence: {result.consensus.confidence:.2f} | "
            f"Duration: {result.processing_time_ms / 1000:.1f}s | "
            f"Cost: ${result.total_cost:.6f} | "
            f"Verified: {'yes' if debug.verified else 'no'}"
            + (f" | {'; '.join(flags)}" if flags else ""),
            style="dim",
        )
    )
    console.print(Markdown(result.consensus.content))


def _jsonable(value: object) -> object:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(_jsonable(k)): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def result_to_dict(result: AnalysisResult) -> dict:
    """Plain-data view of a result; Decimals become strings, enums their values."""
    return {key: _jsonable(value) for key, value in dataclasses.asdict(result).items()}


def save_to_file(
    result: AnalysisResult,
    question: str,
    output_dir: Path,
    slug_override: str | None = None,
) -> Path:
    """Save the full analysis as a markdown report.

    Args:
        result: The completed AnalysisResult.
        question: The original prompt.
        output_dir: Directory to save the file in.
        slug_override: If provided, use this as the filename stem instead of
            deriving one from the question text.

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    slug = slug_override if slug_override is not None else _slug(question)
    filepath = output_dir / f"{timestamp}_{slug}.md"

    debug = result.debug
    chained = debug.depth_executed is not None
    lines: list[str] = [
        f"# Wall-Bounce Analysis: {question[:80]}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Task type:** {debug.task_type.value}" + (" (simple query)" if debug.is_simple else ""),
        f"**Mode:** {debug.mode.value}" + (f" (depth {debug.depth_executed})" if chained else ""),
        f"**Backends:** {', '.join(debug.backends_used[:-1])}",
        f"**Synthesizer:** {debug.synthesizer}",
        f"**Verified:** {'yes' if debug.verified else 'no'}",
        f"**Duration:** {result.processing_time_ms / 1000:.1f}s",
        f"**Total cost:** ${result.total_cost:.6f}",
    ]
    if debug.fallback_used:
        lines.append(f"**Fallback:** {', '.join(debug.fallback_backends)}")
    if debug.complexity is not None:
        c = debug.complexity
        lines.append(
            f"**Complexity:** {c.total} (structural {c.structural}, cognitive {c.cognitive}, domain {c.domain})"
        )
    lines += ["", "---", ""]

    lines.append("## Backend Responses")
    lines.append("")
    for vote in result.votes:
        lines.append(f"### {_vote_label(vote, chained)}")
        lines.append("")
        lines.append(vote.response.content)
        lines.append("")
        tokens = vote.response.tokens
        lines.append(
            f"*Confidence: {vote.agreement_score:.2f} | Cost: ${vote.response.cost:.6f}"
            + (f" | Tokens: {tokens.input}/{tokens.output}" if tokens.total else "")
            + "*"
        )
        lines.append("")

    if debug.errors:
        lines.append("## Errors")
        lines.append("")
        lines.extend(f"- {error}" for error in debug.errors)
        lines.append("")

    lines += [
        f"## Consensus (by {debug.synthesizer}, confidence {result.consensus.confidence:.2f})",
        "",
        result.consensus.content,
        "",
    ]

    filepath.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Analysis saved to: %s", filepath)
    return filepath
