#!/usr/bin/env python3
"""StageForge CLI - drive the staged generation pipeline from a terminal.

Usage:
    # Create a project and make it current
    python main.py new "Habit tracker"

    # Stream a research draft and keep it
    python main.py generate research "Research the habit-tracking market" --provider gemini

    # Browse and edit versions
    python main.py show research
    python main.py cycle research -1
    python main.py edit research ./research.md
    python main.py shell
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

try:
    import click
    from rich.console import Console
    from rich.logging import RichHandler
    from rich.markdown import Markdown
    from rich.panel import Panel
    from rich.table import Table
except ImportError:
    print("Missing dependencies. Run: pip install click rich")
    sys.exit(1)

from config import settings
from contracts import (
    GenerationCancelled,
    GenerationError,
    GenerationSettings,
    ReasoningEffort,
    SaveStatus,
    Stage,
    StorageQuotaExceeded,
)
from orchestrator import (
    WorkflowEngine,
    context_status,
    context_usage_percent,
    format_cost,
    format_token_count,
)
from persistence import PersistenceManager
from providers import (
    PROVIDER_INFO,
    get_model,
    get_models_for_provider,
    list_providers as get_available_providers,
    validate_key_format,
)
from providers.openrouter_catalog import OpenRouterCatalog, default_cache_path


console = Console()

STAGE_CHOICES = [stage.value for stage in Stage]


def current_project_file() -> Path:
    return settings.get_workspace_path() / "current_project"


def remember_project(project_id: str) -> None:
    path = current_project_file()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(project_id, encoding="utf-8")


def resolve_project_id(project_id: Optional[str]) -> str:
    if project_id:
        return project_id
    path = current_project_file()
    if path.exists():
        stored = path.read_text(encoding="utf-8").strip()
        if stored:
            return stored
    console.print("[red]Error: no current project. Run 'new NAME' or pass --project[/red]")
    sys.exit(1)


def open_engine(project_id: Optional[str]) -> WorkflowEngine:
    project_id = resolve_project_id(project_id)
    try:
        return WorkflowEngine.open_project(project_id, settings)
    except FileNotFoundError:
        console.print(f"[red]Error: project {project_id} not found[/red]")
        sys.exit(1)


def read_text_argument(value: str) -> str:
    """Treat ``value`` as a path when it names a file, otherwise as literal text."""
    path = Path(value)
    if path.is_file():
        return path.read_text(encoding="utf-8", errors="replace")
    return value


def report_save(status: SaveStatus) -> None:
    if status == SaveStatus.ERROR:
        console.print("[red]Storage full: project could not be saved[/red]")
    elif status == SaveStatus.SAVED:
        console.print("[dim]Saved.[/dim]")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
def cli(verbose: bool):
    """StageForge: staged LLM content pipeline with versioned artifacts."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


@cli.command()
def providers():
    """List providers and whether a key is configured."""
    table = Table(title="LLM Providers")
    table.add_column("Provider")
    table.add_column("Status")
    table.add_column("Key format")
    table.add_column("Env var", style="dim")
    for provider_id, available in get_available_providers(settings).items():
        info = PROVIDER_INFO[provider_id]
        status = "[green]✓ Ready[/green]" if available else "[red]✗ No API key[/red]"
        key = settings.credential_for(provider_id)
        if not key:
            shape = "-"
        elif validate_key_format(provider_id, key):
            shape = "[green]ok[/green]"
        else:
            shape = f"[yellow]expected {info.key_prefix}...[/yellow]"
        table.add_row(info.display_name, status, shape, info.env_var)
    console.print(table)


@cli.command()
@click.option("--provider", "-p", type=click.Choice(list(PROVIDER_INFO)), default=None, help="Only this provider")
@click.option("--refresh", is_flag=True, help="Refetch the OpenRouter catalog")
def models(provider: Optional[str], refresh: bool):
    """List models with pricing and context limits."""
    provider_list = [provider] if provider else list(PROVIDER_INFO)
    table = Table(title="Models")
    for column in ("Provider", "Model", "Tier", "In $/M", "Out $/M", "Context"):
        table.add_column(column)
    for provider_id in provider_list:
        if provider_id == "openrouter":
            entries = OpenRouterCatalog(cache_path=default_cache_path(settings)).models(refresh=refresh)
        else:
            entries = get_models_for_provider(provider_id)
        for model in entries:
            table.add_row(
                provider_id,
                f"{model.label} [dim]({model.id})[/dim]",
                model.tier.value,
                f"{model.input_cost_per_million:.2f}",
                f"{model.output_cost_per_million:.2f}",
                format_token_count(model.input_context_limit),
            )
    console.print(table)


@cli.command()
@click.argument("name")
def new(name: str):
    """Create a project and make it current."""
    async def run():
        manager = PersistenceManager(settings)
        return await manager.create_project(name), manager.status

    state, status = asyncio.run(run())
    remember_project(state.id)
    console.print(f"[green]Created project[/green] {state.name} [dim]({state.id})[/dim]")
    report_save(status)


@cli.command()
def projects():
    """List stored projects."""
    summaries = PersistenceManager(settings).list_projects()
    if not summaries:
        console.print("[dim]No projects yet.[/dim]")
        return
    current = current_project_file().read_text(encoding="utf-8").strip() if current_project_file().exists() else ""
    table = Table(title="Projects")
    table.add_column("")
    table.add_column("Name")
    table.add_column("Id", style="dim")
    for summary in summaries:
        table.add_row("*" if summary.id == current else "", summary.name, summary.id)
    console.print(table)


@cli.command()
@click.argument("project_id")
def use(project_id: str):
    """Make PROJECT_ID the current project."""
    engine = open_engine(project_id)
    remember_project(engine.state.id)
    console.print(f"Current project: {engine.state.name}")


@cli.command()
@click.argument("stage", type=click.Choice(STAGE_CHOICES))
@click.argument("prompt")
@click.option("--project", default=None, help="Project id (default: current)")
@click.option("--provider", "-p", type=click.Choice(list(PROVIDER_INFO)), default=None, help="LLM provider")
@click.option("--model", "-m", default=None, help="Model id or alias")
@click.option("--system", "-s", "system_instruction", default="", help="System instruction (text or file)")
@click.option("--temperature", type=float, default=None)
@click.option("--thinking-budget", type=int, default=None, help="Reasoning budget in tokens")
@click.option("--grounding/--no-grounding", default=None, help="Use search grounding where supported")
@click.option("--reasoning-effort", type=click.Choice([e.value for e in ReasoningEffort]), default=None)
@click.option("--refine", is_flag=True, help="Treat PROMPT as revision instructions for the current draft")
@click.option("--accept/--no-accept", default=True, help="Commit the result as a new version")
def generate(
    stage: str,
    prompt: str,
    project: Optional[str],
    provider: Optional[str],
    model: Optional[str],
    system_instruction: str,
    temperature: Optional[float],
    thinking_budget: Optional[int],
    grounding: Optional[bool],
    reasoning_effort: Optional[str],
    refine: bool,
    accept: bool,
):
    """Stream a draft for STAGE from PROMPT (text or file)."""
    engine = open_engine(project)
    overrides = {
        "temperature": temperature,
        "thinking_budget": thinking_budget,
        "use_grounding": grounding,
        "reasoning_effort": reasoning_effort,
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    generation_settings = None
    if overrides:
        generation_settings = GenerationSettings.model_validate(
            {**engine.state.settings.generation.model_dump(), **overrides}
        )

    def on_chunk(text: str) -> None:
        console.print(text, end="", markup=False, highlight=False)

    def on_status(label: str) -> None:
        console.print(f"[dim]{label}[/dim]")

    async def run():
        kwargs = dict(
            on_chunk=on_chunk,
            on_status=on_status,
            provider_id=provider,
            model_id=model,
            generation_settings=generation_settings,
        )
        system = read_text_argument(system_instruction) if system_instruction else ""
        if refine:
            result = await engine.refine(stage, read_text_argument(prompt), system, **kwargs)
        else:
            result = await engine.generate(stage, read_text_argument(prompt), system, **kwargs)
        console.print()
        if accept:
            engine.commit(stage, result.text)
        status = await engine.close()
        return result, status

    try:
        result, status = asyncio.run(run())
    except GenerationCancelled:
        console.print("\n[yellow]Cancelled.[/yellow]")
        return
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        return
    except GenerationError as exc:
        console.print(f"\n[red]Error ({exc.kind.value}):[/red] {exc.message}")
        sys.exit(1)
    except ValueError as exc:
        console.print(f"\n[red]Error:[/red] {exc}")
        sys.exit(1)

    if result.sources:
        console.print("\n[bold]Sources:[/bold]")
        for source in result.sources:
            console.print(f"  - {source.title or source.uri}: {source.uri}")
    usage = engine.state.token_usage
    console.print(
        f"\n[dim]{result.provider}/{result.model}: "
        f"{format_token_count(result.input_tokens)} in, {format_token_count(result.output_tokens)} out. "
        f"Session total {format_cost(usage.estimated_cost)}[/dim]"
    )
    if accept:
        history = engine.history(stage)
        console.print(f"[green]Committed version {history.current_index + 1}/{len(history.versions)}[/green]")
    report_save(status)


@cli.command()
@click.argument("stage", type=click.Choice(STAGE_CHOICES))
@click.option("--project", default=None, help="Project id (default: current)")
@click.option("--raw", is_flag=True, help="Print plain text instead of rendered markdown")
def show(stage: str, project: Optional[str], raw: bool):
    """Show the current version of STAGE."""
    engine = open_engine(project)
    history = engine.history(stage)
    content = engine.current_content(stage)
    if content is None:
        console.print(f"[dim]{stage}: no versions yet[/dim]")
        return
    title = f"{stage} - version {history.current_index + 1}/{len(history.versions)}"
    if raw:
        console.print(content, markup=False, highlight=False)
    else:
        console.print(Panel(Markdown(content), title=title))


async def _mutate_and_save(engine: WorkflowEngine, mutate) -> SaveStatus:
    mutate()
    return await engine.close()


@cli.command()
@click.argument("stage", type=click.Choice(STAGE_CHOICES))
@click.argument("delta", type=int)
@click.option("--project", default=None, help="Project id (default: current)")
def cycle(stage: str, delta: int, project: Optional[str]):
    """Move STAGE's version cursor by DELTA (clamped)."""
    engine = open_engine(project)
    status = asyncio.run(_mutate_and_save(engine, lambda: engine.cycle(stage, delta)))
    history = engine.history(stage)
    if history.is_empty:
        console.print(f"[dim]{stage}: no versions yet[/dim]")
    else:
        console.print(f"{stage}: version {history.current_index + 1}/{len(history.versions)}")
    report_save(status)


@cli.command()
@click.argument("stage", type=click.Choice(STAGE_CHOICES))
@click.argument("source")
@click.option("--project", default=None, help="Project id (default: current)")
def edit(stage: str, source: str, project: Optional[str]):
    """Record SOURCE (file or text) as a manual edit of STAGE."""
    engine = open_engine(project)
    content = read_text_argument(source)
    status = asyncio.run(_mutate_and_save(engine, lambda: engine.manual_edit(stage, content)))
    history = engine.history(stage)
    console.print(f"{stage}: saved as version {history.current_index + 1}/{len(history.versions)}")
    report_save(status)


@cli.command()
@click.argument("key")
@click.argument("value")
@click.option("--project", default=None, help="Project id (default: current)")
def answer(key: str, value: str, project: Optional[str]):
    """Set the questionnaire answer KEY to VALUE."""
    engine = open_engine(project)
    status = asyncio.run(_mutate_and_save(engine, lambda: engine.set_answer(key, value)))
    report_save(status)


@cli.command()
@click.option("--provider", "-p", type=click.Choice(list(PROVIDER_INFO)), default=None)
@click.option("--model", "-m", default=None, help="Model id or alias")
@click.option("--project", default=None, help="Project id (default: current)")
def select(provider: Optional[str], model: Optional[str], project: Optional[str]):
    """Change the project's active provider and model."""
    engine = open_engine(project)
    status = asyncio.run(_mutate_and_save(engine, lambda: engine.update_settings(provider, model)))
    current = engine.state.settings
    console.print(f"Active model: {current.provider_id}/{current.model_id}")
    report_save(status)


SHELL_HELP = """Commands:
  show STAGE            print the current version
  edit STAGE TEXT       record TEXT as a new version
  cycle STAGE DELTA     move the version cursor
  answer KEY VALUE      set a questionnaire answer
  undo | redo           step through this session's changes
  save                  write now
  quit                  save and exit"""


async def run_shell(engine: WorkflowEngine) -> SaveStatus:
    """Interactive loop; undo history lives for the length of the session."""
    console.print(Panel.fit(f"[bold]{engine.state.name}[/bold]\n[dim]{SHELL_HELP}[/dim]", border_style="blue"))
    while True:
        line = await asyncio.to_thread(input, f"[{engine.save_status.value}] > ")
        parts = line.strip().split(" ", 2)
        command, args = parts[0].lower(), parts[1:]
        try:
            if command in ("quit", "exit"):
                return await engine.close()
            elif command == "undo":
                if not engine.can_undo():
                    console.print("[dim]Nothing to undo.[/dim]")
                engine.undo()
            elif command == "redo":
                if not engine.can_redo():
                    console.print("[dim]Nothing to redo.[/dim]")
                engine.redo()
            elif command == "save":
                report_save(await engine.save())
            elif command == "show" and len(args) == 1:
                content = engine.current_content(args[0])
                console.print(content if content is not None else "[dim]no versions yet[/dim]", markup=False)
            elif command == "edit" and len(args) == 2:
                engine.manual_edit(args[0], args[1])
            elif command == "cycle" and len(args) == 2:
                engine.cycle(args[0], int(args[1]))
                history = engine.history(args[0])
                if not history.is_empty:
                    console.print(f"{args[0]}: version {history.current_index + 1}/{len(history.versions)}")
            elif command == "answer" and len(args) == 2:
                engine.set_answer(args[0], args[1])
            elif command:
                console.print(SHELL_HELP)
        except ValueError as exc:
            console.print(f"[red]Error:[/red] {exc}")


@cli.command()
@click.option("--project", default=None, help="Project id (default: current)")
def shell(project: Optional[str]):
    """Interactive editing session with undo/redo."""
    engine = open_engine(project)
    try:
        status = asyncio.run(run_shell(engine))
    except (EOFError, KeyboardInterrupt):
        status = asyncio.run(engine.close())
    report_save(status)


@cli.command()
@click.option("--project", default=None, help="Project id (default: current)")
@click.option("--reset", is_flag=True, help="Zero the usage counters")
def cost(project: Optional[str], reset: bool):
    """Show usage counters and the estimated cost of the next call."""
    engine = open_engine(project)
    if reset:
        report_save(asyncio.run(_mutate_and_save(engine, engine.reset_usage)))
    summary = engine.usage_summary()
    current = engine.state.settings
    table = Table(title=f"Usage - {engine.state.name}")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Input tokens", f"{summary['input_tokens']:,}")
    table.add_row("Output tokens", f"{summary['output_tokens']:,}")
    table.add_row("Grounding requests", str(summary["grounding_requests"]))
    table.add_row("Estimated cost", format_cost(summary["estimated_cost"]))
    table.add_row("Context (est.)", format_token_count(summary["context_tokens"]))
    model = get_model(current.model_id)
    if model is not None:
        percent = context_usage_percent(model, summary["context_tokens"])
        table.add_row("Context used", f"{percent:.1f}% ({context_status(percent)})")
        table.add_row("Next call input cost", format_cost(engine.cost(model, summary["context_tokens"], 0)))
    console.print(table)


@cli.command()
@click.argument("source")
@click.option("--exact", is_flag=True, help="Ask the provider for an exact count")
@click.option("--project", default=None, help="Project id (default: current)")
def tokens(source: str, exact: bool, project: Optional[str]):
    """Count tokens in SOURCE (file or text)."""
    text = read_text_argument(source)
    engine = open_engine(project)
    console.print(f"Estimate: {engine.estimate_tokens(text):,}")
    if exact:
        current = engine.state.settings
        count = asyncio.run(engine.cost_controller.count_now(text, current.provider_id, current.model_id))
        console.print(f"Exact ({engine.state.settings.model_id}): {count:,}")


@cli.command()
@click.argument("project_id")
@click.confirmation_option(prompt="Delete this project?")
def delete(project_id: str):
    """Delete a stored project."""
    if PersistenceManager(settings).delete_project(project_id):
        console.print(f"Deleted {project_id}")
    else:
        console.print(f"[red]No project {project_id}[/red]")


def main():
    try:
        cli()
    except StorageQuotaExceeded as exc:
        console.print(f"[red]{exc.message}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
