"""GameFoundry CLI - typer application entry point."""

from __future__ import annotations

import asyncio
import atexit
import contextlib
import signal
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.progress import BarColumn, Progress, TaskID, TextColumn
from rich.table import Table
from rich.tree import Tree

from gamefoundry.observability import close_file_logging, configure_logging, get_logger

# Load environment variables from .env file
load_dotenv()

if TYPE_CHECKING:
    from gamefoundry.models.concept import GenerationConcept
    from gamefoundry.models.lineage import PromptNode
    from gamefoundry.models.pipeline import PipelineEvent
    from gamefoundry.pipeline import (
        Checkpoint,
        EventBus,
        PhaseOrchestrator,
        ProjectConfig,
        RunResult,
    )

app = typer.Typer(
    name="gf",
    help="GameFoundry: cascade AI generation of game projects.",
    no_args_is_help=True,
)
console = Console()

DEFAULT_PROJECTS_DIR = Path("projects")

# Global state for logging flags (set by callback, used by commands)
_verbose: int = 0
_log_enabled: bool = False
_projects_dir: Path = DEFAULT_PROJECTS_DIR

_STATUS_ICONS = {
    "complete": "[green]✓[/green] complete",
    "pending": "[dim]○[/dim] pending",
    "running": "[yellow]…[/yellow] running",
    "failed": "[red]✗[/red] failed",
}

_NODE_STYLES = {
    "succeeded": "green",
    "failed": "red",
    "stale": "yellow",
    "pending": "dim",
}


@app.callback()
def main(
    verbose: Annotated[
        int,
        typer.Option(
            "-v",
            "--verbose",
            count=True,
            help="Increase verbosity: -v for INFO, -vv for DEBUG.",
        ),
    ] = 0,
    log: Annotated[
        bool,
        typer.Option(
            "--log",
            help="Enable file logging to {project}/logs/ (debug.jsonl, provider_calls.jsonl).",
        ),
    ] = False,
    projects_dir: Annotated[
        Path,
        typer.Option(
            "--projects-dir",
            "-d",
            help="Base directory for projects (default: ./projects).",
            envvar="GF_PROJECTS_DIR",
        ),
    ] = DEFAULT_PROJECTS_DIR,
) -> None:
    """GameFoundry: cascade AI generation of game projects."""
    global _verbose, _log_enabled, _projects_dir
    _verbose = verbose
    _log_enabled = log
    _projects_dir = projects_dir

    # Configure console logging (file logging configured later when project is known)
    configure_logging(verbosity=verbose)


def _configure_project_logging(project_path: Path) -> None:
    """Configure file logging if --log flag was set."""
    if _log_enabled:
        configure_logging(verbosity=_verbose, log_to_file=True, project_path=project_path)
        atexit.register(close_file_logging)


def _project_config(project_path: Path, name: str) -> ProjectConfig:
    """Load ``project.yaml`` if present, otherwise offline defaults."""
    from gamefoundry.pipeline.config import (
        ProjectConfigError,
        create_default_config,
        load_project_config,
    )

    if not (project_path / "project.yaml").exists():
        return create_default_config(name)
    try:
        return load_project_config(project_path)
    except ProjectConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None


def _load_project_checkpoint(project_id: str) -> tuple[Path, Checkpoint]:
    """Resolve a project id to its directory and checkpoint, or exit."""
    from gamefoundry.pipeline.checkpoint import CHECKPOINT_NAME, load_checkpoint
    from gamefoundry.pipeline.errors import CheckpointError

    project_path = _projects_dir / project_id
    if not project_path.exists() and Path(project_id).exists():
        project_path = Path(project_id)
    try:
        checkpoint = load_checkpoint(project_path / CHECKPOINT_NAME)
    except CheckpointError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None
    if checkpoint is None:
        console.print(
            f"[red]Error:[/red] No checkpoint for project '{project_id}'. "
            "Run 'gf generate <concept-file>' first."
        )
        raise typer.Exit(1)
    return project_path, checkpoint


# =============================================================================
# generate
# =============================================================================


async def _render_events(
    events: EventBus, queue: asyncio.Queue[PipelineEvent], progress: Progress
) -> None:
    """Drive one progress bar per phase until the terminal event."""
    from gamefoundry.models.pipeline import PhaseStateEvent, ProgressEvent, TerminalEvent

    tasks: dict[str, TaskID] = {}

    def _task(phase: str) -> TaskID:
        if phase not in tasks:
            tasks[phase] = progress.add_task(phase, total=1.0, status="")
        return tasks[phase]

    try:
        while True:
            event = await queue.get()
            if isinstance(event, ProgressEvent):
                progress.update(
                    _task(event.phase),
                    completed=event.fraction_complete,
                    status=event.current_task_label,
                )
            elif isinstance(event, PhaseStateEvent):
                status = event.state.value if event.detail is None else event.detail
                progress.update(_task(event.phase), status=status)
                if event.state.value == "complete":
                    progress.update(_task(event.phase), completed=1.0)
            elif isinstance(event, TerminalEvent):
                return
    finally:
        events.unsubscribe(queue)


def _install_interrupt_handler(orchestrator: PhaseOrchestrator) -> bool:
    """Route Ctrl-C to a graceful cancel. Returns False where signals are unsupported."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel, "interrupted (Ctrl-C)")
    except (NotImplementedError, RuntimeError):
        return False
    return True


async def _run_generate(orchestrator: PhaseOrchestrator) -> RunResult:
    with Progress(
        TextColumn("[bold cyan]{task.description:<12}"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        TextColumn("[dim]{task.fields[status]}"),
        console=console,
        transient=False,
    ) as progress:
        queue = orchestrator.events.subscribe()
        renderer = asyncio.create_task(_render_events(orchestrator.events, queue, progress))
        installed = _install_interrupt_handler(orchestrator)
        try:
            result = await orchestrator.run()
            await renderer
            return result
        finally:
            if installed:
                asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)
            if not renderer.done():
                renderer.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await renderer
            await orchestrator.runtime.aclose()


def _print_result(result: RunResult) -> None:
    table = Table(title="Run summary")
    table.add_column("Phase", style="cyan")
    table.add_column("Status", style="bold")
    table.add_column("Artifacts", justify="right")
    for name, state in result.phase_status.items():
        table.add_row(
            name,
            _STATUS_ICONS.get(state.value, state.value),
            str(result.produced.get(name, 0)),
        )
    console.print()
    console.print(table)

    for line in result.summary_lines():
        console.print(f"[yellow]![/yellow] {line}")

    console.print(
        f"[dim]Provider calls: {result.provider_calls}, cache hits: {result.cache_hits}, "
        f"cost: ${result.total_cost_usd:.4f}[/dim]"
    )
    messages = {
        0: "[green]✓[/green] [bold]Generation complete[/bold]",
        2: "[red]✗[/red] Generation failed",
        130: "[yellow]Generation cancelled[/yellow]; resume with --resume",
    }
    console.print(messages.get(result.exit_code, str(result.status)))


@app.command()
def generate(
    concept_file: Annotated[
        Path,
        typer.Argument(help="Concept file (YAML or JSON) describing the game."),
    ],
    resume: Annotated[
        str | None,
        typer.Option("--resume", help="Resume the given project id from its checkpoint."),
    ] = None,
    cache_dir: Annotated[
        Path | None,
        typer.Option("--cache-dir", help="Response cache directory (shared across projects)."),
    ] = None,
    project_dir: Annotated[
        Path | None,
        typer.Option("--project-dir", help="Project directory (default: <projects-dir>/<id>)."),
    ] = None,
    provider_text: Annotated[
        str | None,
        typer.Option(
            "--provider-text",
            help="Text provider chain, comma-separated (e.g. openai/gpt-4o-mini,ollama/qwen3:8b).",
        ),
    ] = None,
    max_parallel: Annotated[
        int | None,
        typer.Option("--max-parallel", min=1, help="Concurrent sub-generations per phase."),
    ] = None,
) -> None:
    """Generate a game project from a concept file.

    Exits 0 when every phase completes, 2 on failure and 130 when cancelled.
    """
    from gamefoundry.models.concept import ConceptError, load_concept
    from gamefoundry.pipeline.errors import CheckpointError, PipelineError
    from gamefoundry.pipeline.orchestrator import create_orchestrator
    from gamefoundry.providers.errors import ProviderError

    log = get_logger(__name__)
    try:
        concept: GenerationConcept = load_concept(concept_file)
    except ConceptError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    project_id = resume or concept.project_id
    project_path = project_dir or _projects_dir / project_id
    project_path.mkdir(parents=True, exist_ok=True)
    _configure_project_logging(project_path)

    config = _project_config(project_path, concept.name)
    if provider_text:
        config.providers.text = [s.strip() for s in provider_text.split(",") if s.strip()]
    if max_parallel is not None:
        config.max_parallel = max_parallel

    try:
        orchestrator = create_orchestrator(
            concept,
            config,
            project_dir=project_path,
            cache_dir=cache_dir,
            resume=resume is not None,
            log_calls=_log_enabled,
        )
    except (CheckpointError, PipelineError, ProviderError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    log.debug("project_resolved", project=project_id, path=str(project_path))
    console.print(f"[dim]Generating [bold]{concept.name}[/bold] in {project_path}[/dim]")
    result = asyncio.run(_run_generate(orchestrator))
    _print_result(result)
    raise typer.Exit(result.exit_code)


# =============================================================================
# status / lineage / invalidate
# =============================================================================


@app.command()
def status(
    project_id: Annotated[str, typer.Argument(help="Project id (or directory).")],
) -> None:
    """Show phase states, node counts and cost summary for a project."""
    _, checkpoint = _load_project_checkpoint(project_id)

    table = Table(title=f"Project Status: {checkpoint.project_id}")
    table.add_column("Phase", style="cyan")
    table.add_column("Status", style="bold")
    table.add_column("Artifacts", justify="right")
    for name, state in checkpoint.phase_status.items():
        output = checkpoint.context.outputs.get(name) or checkpoint.partial.get(name)
        count = len(output.artifacts) if output else 0
        table.add_row(name, _STATUS_ICONS.get(state.value, state.value), str(count))

    console.print()
    console.print(table)

    counts: dict[str, int] = {}
    for node in checkpoint.lineage.nodes:
        counts[node.status.value] = counts.get(node.status.value, 0) + 1
    summary = ", ".join(f"{n} {s}" for s, n in sorted(counts.items())) or "none"
    console.print(f"Lineage nodes: {summary}")

    if checkpoint.costs:
        costs = Table(title="Provider usage")
        costs.add_column("Provider", style="cyan")
        costs.add_column("Calls", justify="right")
        costs.add_column("Tokens", justify="right")
        costs.add_column("Cost (USD)", justify="right")
        for provider, usage in sorted(checkpoint.costs.items()):
            tokens = int(usage.get("input_tokens", 0)) + int(usage.get("output_tokens", 0))
            costs.add_row(
                provider,
                str(int(usage.get("calls", 0))),
                str(tokens),
                f"{float(usage.get('cost_usd', 0.0)):.4f}",
            )
        console.print(costs)

    if checkpoint.failures:
        console.print()
        for failure in checkpoint.failures:
            marker = "[red]✗[/red]" if failure.required else "[yellow]![/yellow]"
            console.print(f"{marker} {failure}")
    console.print()


def _node_label(node: PromptNode) -> str:
    style = _NODE_STYLES.get(node.status.value, "")
    flags = []
    if node.cached:
        flags.append("cached")
    if node.status.value == "succeeded" and not node.provider_call and not node.cached:
        flags.append("local")
    suffix = f" [dim]({', '.join(flags)})[/dim]" if flags else ""
    where = f"{node.phase}/{node.label}" if node.phase else node.label
    return (
        f"[bold]{node.id}[/bold] [{style}]{node.status.value}[/{style}] "
        f"{node.level.value} {where}{suffix}"
    )


@app.command()
def lineage(
    project_id: Annotated[str, typer.Argument(help="Project id (or directory).")],
    node: Annotated[
        str | None,
        typer.Option("--node", "-n", help="Only show the subtree rooted at this node."),
    ] = None,
) -> None:
    """Render the prompt lineage tree."""
    _, checkpoint = _load_project_checkpoint(project_id)
    nodes = {n.id: n for n in checkpoint.lineage.nodes}

    if node is not None and node not in nodes:
        console.print(f"[red]Error:[/red] Unknown node '{node}'")
        raise typer.Exit(1)

    roots = [node] if node is not None else [n.id for n in nodes.values() if n.parent_id is None]
    tree = Tree(f"[bold]{checkpoint.project_id}[/bold]")

    def _add(parent: Tree, node_id: str) -> None:
        branch = parent.add(_node_label(nodes[node_id]))
        for child in nodes[node_id].children:
            if child in nodes:
                _add(branch, child)

    for root in roots:
        _add(tree, root)
    console.print(tree)


@app.command()
def invalidate(
    project_id: Annotated[str, typer.Argument(help="Project id (or directory).")],
    node_id: Annotated[str, typer.Argument(help="Lineage node to invalidate.")],
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Only show which phases would regenerate."),
    ] = False,
) -> None:
    """Mark a node's subtree stale; the next 'gf generate --resume' regenerates it."""
    from gamefoundry.lineage.tracker import LineageError
    from gamefoundry.pipeline.errors import CheckpointError, PipelineError
    from gamefoundry.pipeline.orchestrator import create_orchestrator
    from gamefoundry.providers.errors import ProviderError

    project_path, checkpoint = _load_project_checkpoint(project_id)
    config = _project_config(project_path, checkpoint.concept.name)
    try:
        orchestrator = create_orchestrator(
            checkpoint.concept, config, project_dir=project_path, resume=True
        )
        phases = (
            orchestrator.impact(node_id) if dry_run else orchestrator.invalidate(node_id)
        )
    except LineageError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None
    except (CheckpointError, PipelineError, ProviderError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    ordered = [name for name in orchestrator.order if name in phases]
    verb = "Would regenerate" if dry_run else "Invalidated; will regenerate"
    if ordered:
        console.print(f"{verb}: {', '.join(ordered)}")
    else:
        console.print("No phases affected.")
    if not dry_run:
        console.print(f"[dim]Run 'gf generate <concept-file> --resume {project_id}'.[/dim]")


@app.command()
def version() -> None:
    """Show version information."""
    from gamefoundry import __version__

    console.print(f"GameFoundry v{__version__}")


if __name__ == "__main__":
    app()
