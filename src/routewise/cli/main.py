"""
Rich CLI interface for Routewise.

Operator tooling: route a prompt and inspect the decision, view executors
and policies, replay decision logs, and run the API server.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from routewise import __version__
from routewise.core.config import Settings, get_settings
from routewise.core.errors import RoutingError
from routewise.core.models import RoutingDecision
from routewise.observability.decision_log import read_decisions
from routewise.routing.router import Router, build_router

app = typer.Typer(
    name="routewise",
    help="Routewise - cost-aware LLM request routing",
    no_args_is_help=True,
)
console = Console()

CONFIG_OPTION = typer.Option(None, "--config", "-c", help="YAML settings file")


def load_settings(config: Path | None) -> Settings:
    """Settings from a YAML file, or from the environment."""
    if config is None:
        return get_settings()
    return Settings.from_yaml(config)


def print_decision(decision: RoutingDecision) -> None:
    classification = decision.classification
    label = f"{classification.domain}/{classification.action}"
    if classification.fallback:
        label += f" [yellow](fallback: {classification.fallback_reason})[/yellow]"

    console.print(Panel(
        f"[bold]Model:[/bold] [cyan]{decision.selected_model}[/cyan] "
        f"via [green]{decision.selected.executor_id}[/green]\n"
        f"[bold]Task:[/bold] {label} (confidence {classification.confidence:.2f})\n"
        f"[bold]Policy:[/bold] {'/'.join(decision.policy_key) if decision.policy_key else '-'}",
        title=f"[bold cyan]Decision {decision.decision_id}[/bold cyan]",
        subtitle=f"[dim]{decision.latency_ms:.1f}ms | attempt {decision.attempt}[/dim]",
    ))

    table = Table(title="Ranked Candidates", show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right")
    table.add_column("Model", style="cyan")
    table.add_column("Executor", style="green")
    table.add_column("p(success)", justify="right")
    table.add_column("Cost $/M", justify="right")
    table.add_column("Score", justify="right", style="bold")
    table.add_column("Note", style="dim")

    for i, c in enumerate(decision.candidates, 1):
        table.add_row(
            str(i),
            c.model_id,
            c.executor_id,
            f"{c.probability:.4f}",
            f"${c.cost_per_million:.2f}",
            f"{c.score:.4f}",
            "no ability data" if c.ability_missing else "",
        )
    console.print(table)


@app.command()
def version():
    """Show version information."""
    console.print(f"[bold cyan]Routewise[/bold cyan] v{__version__}")


@app.command()
def route(
    prompt: str = typer.Argument(..., help="The prompt to route"),
    context: Optional[list[str]] = typer.Option(None, "--context", help="Earlier turn, oldest first (repeatable)"),
    exclude: Optional[list[str]] = typer.Option(None, "--exclude", "-x", help="Model id to exclude (repeatable)"),
    deadline: Optional[float] = typer.Option(None, "--deadline", "-d", help="Deadline in seconds"),
    as_json: bool = typer.Option(False, "--json", help="Print the decision as JSON"),
    config: Optional[Path] = CONFIG_OPTION,
):
    """Route a prompt and show the ranked candidates."""
    router = build_router(load_settings(config))

    async def run() -> RoutingDecision:
        await router.start()
        try:
            return await router.route(
                prompt,
                context=context or [],
                excluded_model_ids=exclude or [],
                deadline=deadline,
            )
        finally:
            await router.close()

    try:
        decision = asyncio.run(run())
    except RoutingError as e:
        console.print(f"[red]{type(e).__name__}:[/red] {e.message}")
        raise typer.Exit(code=1)

    if as_json:
        console.print_json(json.dumps(decision.to_dict()))
    else:
        print_decision(decision)


@app.command()
def executors(config: Optional[Path] = CONFIG_OPTION):
    """Probe executors and show their liveness and models."""
    router: Router = build_router(load_settings(config))

    async def run() -> None:
        await router.registry.probe_all()
        await router.registry.stop()

    asyncio.run(run())

    table = Table(title="Executors", show_header=True, header_style="bold magenta")
    table.add_column("Executor", style="cyan")
    table.add_column("Transport", style="blue")
    table.add_column("Liveness")
    table.add_column("Models", style="green")
    table.add_column("Last Error", style="dim")

    for executor in router.registry.executors():
        liveness = executor.liveness.value
        colour = "green" if executor.is_healthy else "red"
        table.add_row(
            executor.id,
            executor.transport.value,
            f"[{colour}]{liveness}[/{colour}]",
            ", ".join(m.id for m in executor.models) or "-",
            executor.last_error or "",
        )

    console.print(table)
    snapshot = router.registry.snapshot()
    console.print(f"\n[dim]{len(snapshot)} live models (snapshot v{snapshot.version})[/dim]")


@app.command()
def policies(config: Optional[Path] = CONFIG_OPTION):
    """List routing policies."""
    router = build_router(load_settings(config))

    async def run():
        try:
            return await router.policies.list_policies()
        finally:
            await router.policies.close()

    try:
        listed = asyncio.run(run())
    except RoutingError as e:
        console.print(f"[red]{type(e).__name__}:[/red] {e.message}")
        raise typer.Exit(code=1)

    table = Table(title="Routing Policies", show_header=True, header_style="bold magenta")
    table.add_column("Domain", style="cyan")
    table.add_column("Action", style="green")
    table.add_column("Candidates (in order)")
    table.add_column("Priority", justify="right")

    for policy in listed:
        table.add_row(policy.domain, policy.action, ", ".join(policy.models), str(policy.priority))

    console.print(table)


@app.command()
def decisions(
    path: Path = typer.Argument(..., help="JSONL decision log"),
    limit: int = typer.Option(20, "--limit", "-n", help="Show the last N decisions"),
):
    """Replay a decision log with outcomes."""
    if not path.exists():
        console.print(f"[red]No such file: {path}[/red]")
        raise typer.Exit(code=1)

    records = list(read_decisions(path))[-limit:]

    table = Table(title=f"Decisions ({path.name})", show_header=True, header_style="bold magenta")
    table.add_column("Decided", style="dim")
    table.add_column("Request", style="cyan")
    table.add_column("Task")
    table.add_column("Selected", style="green")
    table.add_column("Attempt", justify="right")
    table.add_column("Outcome")

    for record in records:
        classification = record.get("classification", {})
        outcome = record.get("outcome")
        if outcome is None:
            result = "[dim]-[/dim]"
        elif outcome.get("success"):
            result = "[green]success[/green]"
        else:
            result = f"[red]failed[/red] {outcome.get('error') or ''}"
        table.add_row(
            record.get("decided_at", ""),
            record.get("request_id", ""),
            f"{classification.get('domain')}/{classification.get('action')}",
            record.get("selected_model", ""),
            str(record.get("attempt", 1)),
            result,
        )

    console.print(table)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", "-h", help="Host to bind"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port to bind"),
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable auto-reload"),
):
    """Start the API server."""
    from routewise.api.server import run_server

    settings = get_settings()
    host = host or settings.server.host
    port = port or settings.server.port

    console.print(Panel(
        f"Starting Routewise API server\n"
        f"Host: [cyan]{host}[/cyan]\n"
        f"Port: [cyan]{port}[/cyan]\n"
        f"Docs: [link]http://{host}:{port}/docs[/link]",
        title="Routewise Server",
    ))

    run_server(host=host, port=port, reload=reload)


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
