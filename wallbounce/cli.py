"""Click CLI: config loading, registry construction, analysis run, and output."""

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from config.config_loader import AppConfig, load_config
from wallbounce.backends.anthropic import AnthropicBackend
from wallbounce.backends.base import Backend
from wallbounce.backends.cli_backend import CliBackend
from wallbounce.backends.gemini import GeminiBackend
from wallbounce.backends.openai_provider import OpenAIBackend
from wallbounce.errors import InsufficientBackends, SynthesisError, WallBounceError
from wallbounce.healthcheck import run_health_checks
from wallbounce.models import (
    AnalysisResult,
    BackendKind,
    DispatchEvent,
    ExecutionMode,
    ExecutionOptions,
    TaskType,
)
from wallbounce.orchestrator import WallBounceOrchestrator
from wallbounce.output import print_consensus, print_vote_summary, result_to_dict, save_to_file
from wallbounce.registry import BackendDescriptor, BackendRegistry

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

BACKEND_CLASSES: dict[str, type[Backend]] = {
    "anthropic": AnthropicBackend,
    "openai": OpenAIBackend,
    "gemini": GeminiBackend,
    "cli": CliBackend,
}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
    )


def _build_backends(config: AppConfig) -> dict[BackendKind, Backend]:
    """Instantiate every available backend, in settings order."""
    backends: dict[BackendKind, Backend] = {}
    for kind, backend_cfg in config.backends.items():
        if kind not in config.available_backends:
            continue
        backend_class = BACKEND_CLASSES.get(backend_cfg.sdk)
        if backend_class is None:
            logger.warning("Backend '%s' uses unknown sdk '%s', skipping", kind.value, backend_cfg.sdk)
            continue
        try:
            backends[kind] = backend_class(backend_cfg)
        except Exception as exc:
            logger.warning("Failed to instantiate backend '%s': %s", kind.value, exc)
    return backends


def _build_registry(config: AppConfig, backends: dict[BackendKind, Backend]) -> BackendRegistry:
    descriptors = [
        BackendDescriptor(
            key=kind,
            display_name=config.backends[kind].display_name,
            model=config.backends[kind].model,
            invoker=backend,
            capabilities=frozenset(config.backends[kind].capabilities),
        )
        for kind, backend in backends.items()
    ]
    return BackendRegistry(descriptors, reserve=config.defaults.reserve_backends)


def _check_and_filter_backends(backends: dict[BackendKind, Backend]) -> dict[BackendKind, Backend]:
    """Run health checks, print results, and ask the user what to do on failures.

    Returns the filtered dict of working backends. Exits if the user declines
    to continue or no backend passes.
    """
    console.print("\n[bold]Checking backends...[/bold]")
    results = asyncio.run(run_health_checks(backends))

    failed: list[BackendKind] = []
    for kind, (ok, err) in results.items():
        if ok:
            console.print(f"  [green]OK  [/green] {kind.value}")
        else:
            short_err = err.splitlines()[0][:120] if err else "unknown error"
            console.print(f"  [red]FAIL[/red] {kind.value}: {short_err}")
            failed.append(kind)

    if not failed:
        console.print()
        return backends

    working = {k: b for k, b in backends.items() if k not in failed}
    if not working:
        console.print("\n[bold red]Error:[/bold red] No backends passed the health check.")
        sys.exit(1)

    console.print(f"\n[yellow]{len(failed)} backend(s) failed:[/yellow] {', '.join(k.value for k in failed)}")
    console.print(f"Working backends: {', '.join(k.value for k in working)}")

    if not click.confirm("Continue with working backends only?", default=True, err=True):
        sys.exit(0)

    console.print()
    return working


def _describe_event(event: DispatchEvent) -> str | None:
    """Spinner text for an event, or None when the event should not change it."""
    if event.name == "state" and event.state is not None:
        return f"{event.state.value.replace('_', ' ').capitalize()}..."
    if event.name == "backend:start" and event.backend is not None:
        return f"Waiting on {event.backend.value} (step {event.step})..."
    if event.name == "chain:step" and event.backend is not None:
        return f"Chain step {event.detail}: {event.backend.value}..."
    if event.name == "fallback:start" and event.backend is not None:
        return f"Falling back to {event.backend.value}..."
    return None


async def _run_analysis(
    prompt: str,
    config: AppConfig,
    registry: BackendRegistry,
    options: ExecutionOptions,
    quiet: bool,
) -> AnalysisResult:
    if quiet:
        orchestrator = WallBounceOrchestrator.from_config(config, registry)
        return await orchestrator.execute_analysis(prompt, options)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        task_id = progress.add_task("Starting wall-bounce...", total=None)

        def on_event(event: DispatchEvent) -> None:
            if event.name == "backend:complete" and event.backend is not None:
                progress.print(f"[green]OK[/green] {event.backend.value} (step {event.step})")
            elif event.name == "backend:error" and event.backend is not None:
                progress.print(f"[red]FAIL[/red] {event.backend.value}: {event.detail[:120]}")
            description = _describe_event(event)
            if description:
                progress.update(task_id, description=description)

        orchestrator = WallBounceOrchestrator.from_config(config, registry, event_sink=on_event)
        return await orchestrator.execute_analysis(prompt, options)


@click.command()
@click.argument("question", required=False)
@click.option("--file", "question_file", type=click.Path(exists=True), help="Read the prompt from a file")
@click.option(
    "--task-type",
    type=click.Choice([t.value for t in TaskType]),
    default=None,
    help="basic, premium, critical or simple (default: from config)",
)
@click.option(
    "--mode",
    type=click.Choice([m.value for m in ExecutionMode]),
    default=None,
    help="parallel or sequential (default: from config)",
)
@click.option("--depth", default=None, type=int, help="Sequential chain length, clamped to 3-5")
@click.option("--min-backends", default=None, type=int, help="Quorum of successful backends")
@click.option("--max-backends", default=None, type=int, help="Upper bound on primary backends")
@click.option("--no-fallback", is_flag=True, default=False, help="Disable reserve-backend fallback")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the result as JSON, no file saved")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.option("--skip-health-check", is_flag=True, default=False, help="Skip the API connectivity check at startup")
def main(
    question: str | None,
    question_file: str | None,
    task_type: str | None,
    mode: str | None,
    depth: int | None,
    min_backends: int | None,
    max_backends: int | None,
    no_fallback: bool,
    output_path: str | None,
    as_json: bool,
    verbose: bool,
    skip_health_check: bool,
) -> None:
    """Wall-Bounce -- send one prompt to several LLM backends and merge the answers.

    \b
    Examples:
      wallbounce "Why does my Redis cache miss after deploy?"
      wallbounce "Design a rate limiter" --task-type premium
      wallbounce "Review this migration plan" --mode sequential --depth 4
      wallbounce --file question.md --json
    """
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)
    if as_json:
        # keep stdout clean for the JSON document
        console.stderr = True

    try:
        config = load_config()
    except (FileNotFoundError, WallBounceError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    if question_file:
        prompt = Path(question_file).read_text(encoding="utf-8").strip()
    elif question:
        prompt = question
    else:
        console.print("[bold red]Error:[/bold red] Provide a QUESTION argument or --file.")
        sys.exit(1)

    backends = _build_backends(config)
    if not backends:
        console.print("[bold red]Error:[/bold red] No backends available. Check API keys in .env.")
        sys.exit(1)

    if not skip_health_check:
        backends = _check_and_filter_backends(backends)

    options = ExecutionOptions(
        task_type=TaskType(task_type) if task_type else config.defaults.task_type,
        mode=ExecutionMode(mode) if mode else config.defaults.mode,
        depth=depth if depth is not None else config.defaults.depth,
        min_backends=min_backends,
        max_backends=max_backends,
        enable_fallback=False if no_fallback else None,
    )

    try:
        registry = _build_registry(config, backends)
        result = asyncio.run(_run_analysis(prompt, config, registry, options, quiet=as_json))
    except (InsufficientBackends, SynthesisError) as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        for error in exc.errors:
            console.print(f"  [red]-[/red] {error}")
        sys.exit(1)
    except WallBounceError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(result_to_dict(result), indent=2, ensure_ascii=False))
        return

    print_vote_summary(result)
    print_consensus(result)

    output_dir = Path(output_path) if output_path else config.defaults.output_dir
    saved_path = save_to_file(result, prompt, output_dir)
    console.print(f"\n[dim]Saved to: {saved_path}[/dim]")


if __name__ == "__main__":
    main()
