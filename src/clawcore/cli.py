"""
Command-line interface for clawcore.

Provides commands for chatting with the agent, running workflows and
scheduled jobs, and inspecting status and configuration.
"""

import asyncio
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table

from . import __version__
from .core.config import get_config
from .core.persistence import Database
from .exceptions import ClawError, PersistenceError
from .memory.multimodal import part_from_file
from .models.contracts import MessagePart
from .models.enums import WorkflowStatus
from .utils.logging import setup_logging

app = typer.Typer(
    name="clawcore",
    help="Agent orchestration core for a personal AI assistant",
    add_completion=False,
)

console = Console()


def _runtime():
    from .core.runtime import build_runtime

    config = get_config()
    setup_logging(config)
    try:
        return build_runtime(config)
    except PersistenceError as e:
        console.print(f"[bold red]✗ Storage initialization failed:[/bold red] {e}")
        sys.exit(1)


async def _with_runtime(work):
    runtime = _runtime()
    try:
        return await work(runtime)
    finally:
        await runtime.shutdown(timeout=60)


@app.command()
def version():
    """Show version information."""
    console.print(f"[bold cyan]clawcore[/bold cyan] version {__version__}")
    console.print("Agent orchestration core")


@app.command("init-db")
def init_db():
    """
    Create the database schema.

    Exits non-zero when the schema or the health-check write fails.
    """
    config = get_config()
    setup_logging(config)
    db = Database(config.db_path)
    try:
        db.initialize()
    except PersistenceError as e:
        console.print(f"[bold red]✗ Database initialization failed:[/bold red] {e}")
        sys.exit(1)
    finally:
        db.close()
    console.print(f"[bold green]✓[/bold green] Database ready at {config.db_path}")


@app.command()
def status():
    """Show environment, storage, providers and today's usage."""
    from .core.config import resolve_credentials
    from .core.status import StatusReporter
    from .llm.router import build_default_router

    config = get_config()
    setup_logging(config)
    router = build_default_router(config, resolve_credentials(config=config))
    console.print(StatusReporter(config.db_path, router.active_providers).report())


@app.command()
def chat(
    message: str = typer.Argument(..., help="Message for the agent"),
    role: str = typer.Option("generalist", "--role", "-r", help="Trait to answer with"),
    attach: Optional[list[Path]] = typer.Option(None, "--attach", "-a", help="File to attach (repeatable)"),
):
    """Send one message to the agent and print the reply."""
    payload: str | list[MessagePart] = message
    if attach:
        missing = [p for p in attach if not p.exists()]
        if missing:
            console.print(f"[bold red]✗ File not found:[/bold red] {missing[0]}")
            sys.exit(1)
        payload = [MessagePart(text=message), *(part_from_file(p) for p in attach)]

    async def work(runtime):
        return await runtime.agent.run(payload, role=role)

    result = asyncio.run(_with_runtime(work))
    console.print(Markdown(result.text))
    if result.stop_reason.value not in ("complete", "status_bypass"):
        console.print(f"[dim]stop reason: {result.stop_reason.value}[/dim]")


@app.command()
def job(name: str = typer.Argument(..., help="Job name, e.g. run_daily_briefing")):
    """Run one scheduled job now."""
    from .core.jobs import ScheduledJobs

    if name not in ScheduledJobs.JOB_NAMES:
        console.print(f"[bold red]✗ Unknown job:[/bold red] {name}")
        console.print(f"[dim]Available: {', '.join(ScheduledJobs.JOB_NAMES)}[/dim]")
        sys.exit(1)

    async def work(runtime):
        return await runtime.jobs.run(name)

    text = asyncio.run(_with_runtime(work))
    if text:
        console.print(Markdown(text))
    else:
        console.print(f"[dim]{name}: nothing to report[/dim]")


# Workflow subcommand group
workflow_app = typer.Typer(help="Multi-step workflow commands")
app.add_typer(workflow_app, name="workflow")


@workflow_app.command("run")
def workflow_run(task: str = typer.Argument(..., help="High-level request to plan and execute")):
    """Plan a workflow and drive it until it completes or blocks."""

    async def work(runtime):
        workflow = await runtime.workflows.create_plan(task)
        console.print(f"[cyan]Planned[/cyan] #{workflow.id} {workflow.name} ({len(workflow.plan)} steps)")
        return await runtime.workflows.run_to_completion(workflow.id)

    try:
        report = asyncio.run(_with_runtime(work))
    except ClawError as e:
        console.print(f"[bold red]✗ Workflow failed:[/bold red] {e}")
        sys.exit(1)
    console.print(Markdown(report))


@workflow_app.command("resume")
def workflow_resume(
    workflow_id: int = typer.Argument(..., help="Blocked workflow id"),
    user_input: str = typer.Argument(..., help="Answer to the pending question"),
):
    """Resume a blocked workflow with the user's answer."""

    async def work(runtime):
        runtime.background.spawn(runtime.reflector.learn_preference(user_input), name="learn_preference")
        return await runtime.workflows.resume(workflow_id, user_input)

    try:
        report = asyncio.run(_with_runtime(work))
    except ClawError as e:
        console.print(f"[bold red]✗ Resume failed:[/bold red] {e}")
        sys.exit(1)
    console.print(Markdown(report))


@workflow_app.command("list")
def workflow_list(
    status_filter: Optional[WorkflowStatus] = typer.Option(None, "--status", help="Only this status"),
):
    """List persisted workflows."""

    async def work(runtime):
        return runtime.workflows.list_workflows(status_filter)

    workflows = asyncio.run(_with_runtime(work))
    table = Table(title="Workflows")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Status", style="yellow")
    table.add_column("Step")
    for wf in workflows:
        table.add_row(str(wf.id), wf.name, wf.status.value, f"{wf.current_step}/{len(wf.plan)}")
    console.print(table)


# Configuration subcommand group
config_app = typer.Typer(help="Configuration commands")
app.add_typer(config_app, name="config")


@config_app.command("export")
def config_export(
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Output file path (default: .clawcore/config.yaml)"
    ),
    include_secrets: bool = typer.Option(
        False, "--include-secrets", help="Include API and encryption keys (WARNING: sensitive data)"
    ),
):
    """
    Export current configuration to YAML file.

    API and encryption keys are excluded unless --include-secrets is given.
    """
    from .utils.config_export import export_config

    try:
        output_path = export_config(get_config(), output, include_secrets)
    except Exception as e:
        console.print(f"[bold red]✗[/bold red] Export failed: {e}")
        sys.exit(1)

    console.print(f"[bold green]✓[/bold green] Configuration exported to: {output_path}")
    if not include_secrets:
        console.print("[dim]Note: keys excluded. Use --include-secrets to include them.[/dim]")


@config_app.command("load")
def config_load(
    config_file: Path = typer.Argument(..., help="Path to configuration YAML file"),
):
    """
    Load and validate configuration from YAML file.

    To use the file, copy its values into the environment or .env.
    """
    import yaml
    from pydantic import ValidationError

    from .utils.config_export import import_config

    try:
        config = import_config(config_file)
    except FileNotFoundError as e:
        console.print(f"[bold red]✗[/bold red] {e}")
        sys.exit(1)
    except (ValidationError, yaml.YAMLError) as e:
        console.print(f"[bold red]✗[/bold red] Invalid configuration file: {e}")
        sys.exit(1)

    console.print(f"[bold green]✓[/bold green] Configuration loaded from: {config_file}")
    table = Table(show_header=False, box=None)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="yellow")
    table.add_row("Database", str(config.db_path))
    table.add_row("Max Agent Iterations", str(config.max_agent_iterations))
    table.add_row("Prune Threshold", f"{config.prune_threshold} (batch {config.prune_batch_size})")
    table.add_row("Delegation Depth", str(config.max_delegation_depth))
    table.add_row("Log Level", config.log_level.value)
    console.print(table)


@config_app.command("show")
def config_show():
    """
    Display current configuration settings.

    Shows all non-secret configuration values currently in use.
    """
    try:
        config = get_config()
    except Exception as e:
        console.print(f"[bold red]✗[/bold red] Failed to load config: {e}")
        sys.exit(1)

    table = Table(title="Active Settings")
    table.add_column("Setting", style="cyan", no_wrap=True)
    table.add_column("Value", style="yellow")

    config_dict = config.model_dump(exclude=set(config.SECRET_FIELDS), exclude_none=True)
    for key, value in sorted(config_dict.items()):
        table.add_row(key, str(value))
    console.print(table)


if __name__ == "__main__":
    app()
