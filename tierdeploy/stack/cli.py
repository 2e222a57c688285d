"""CLI for tiered stack deployment."""

import asyncio
import json
import signal
from pathlib import Path
from typing import List, Optional

import typer
import yaml
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..cluster import InMemoryCluster, KubectlClient
from ..config import settings
from ..core.exceptions import OrchestratorError
from ..observability.logging import setup_logging
from .loader import StackLoader, StackLoadError
from .models import DeploymentReport, StackDefinition, UnitState
from .orchestrator import PreparedStack, StackOrchestrator, prepare_stack
from .params import parse_assignments

app = typer.Typer(
    name="tierdeploy",
    help="Tiered multi-namespace deployment orchestrator",
    add_completion=False,
)
console = Console()

STATE_STYLES = {
    UnitState.READY: "green",
    UnitState.PENDING: "dim",
    UnitState.PROGRESSING: "yellow",
    UnitState.TIMED_OUT: "red",
    UnitState.FAILED: "red",
}


@app.callback()
def main_callback(
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Logging level (default from TIERDEPLOY_LOG_LEVEL)"
    ),
    log_json: bool = typer.Option(False, "--log-json", help="Emit JSON logs"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Also log to file"),
):
    """Configure logging for every command."""
    setup_logging(
        level=log_level or settings.log_level,
        json_format=log_json or settings.log_json,
        log_file=log_file,
    )


def _load(stack_file: Path) -> StackDefinition:
    try:
        return StackLoader().load(stack_file)
    except StackLoadError as e:
        console.print(f"[red]✗ Validation failed:[/red]\n{escape(str(e))}")
        raise typer.Exit(code=1)


def _prepare(
    stack: StackDefinition, overlays: Optional[List[str]], assignments: Optional[List[str]]
) -> PreparedStack:
    try:
        overrides = parse_assignments(assignments or [])
        return prepare_stack(stack, overlays or [], overrides, settings.cluster_domain)
    except OrchestratorError as e:
        console.print(f"[red]✗ Pre-flight failed:[/red]\n{escape(str(e))}")
        raise typer.Exit(code=1)


# ============================================================================
# Validate Command
# ============================================================================


@app.command()
def validate(
    stack_file: Path = typer.Argument(..., help="Path to stack YAML file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Validate a stack definition file."""
    console.print(f"[bold]Validating stack:[/bold] {stack_file}")

    stack = _load(stack_file)
    console.print("[green]✓ Stack definition is valid[/green]")

    if verbose:
        console.print(f"\n[bold]Stack:[/bold] {stack.stack.name} v{stack.stack.version}")
        console.print(f"[bold]Description:[/bold] {stack.stack.description}")
        console.print(f"[bold]Overlays:[/bold] {', '.join(o.name for o in stack.overlays) or 'none'}")

        table = Table(title="Units")
        table.add_column("Unit", style="cyan")
        table.add_column("Namespace", style="green")
        table.add_column("Resources", style="yellow")
        table.add_column("Depends On", style="magenta")

        for unit in stack.units:
            table.add_row(
                unit.name,
                unit.namespace,
                str(len(unit.resources)),
                ", ".join(unit.depends_on) or "-",
            )

        console.print(table)


# ============================================================================
# Plan Command
# ============================================================================


@app.command()
def plan(
    stack_file: Path = typer.Argument(..., help="Path to stack YAML file"),
    overlay: Optional[List[str]] = typer.Option(
        None, "--overlay", "-o", help="Overlay to apply (repeatable, in order)"
    ),
    assignments: Optional[List[str]] = typer.Option(
        None, "--set", help="Parameter override KEY=VALUE (repeatable)"
    ),
    output_format: str = typer.Option(
        "table", "--format", "-f", help="Output format: table, json"
    ),
):
    """Generate deployment plan (dry run)."""
    stack = _load(stack_file)
    prepared = _prepare(stack, overlay, assignments)
    deployment_plan = prepared.plan

    if output_format == "json":
        plan_dict = {
            "stack": stack.stack.name,
            "overlays": prepared.overlays,
            "parameters": prepared.params.as_dict(),
            "layers": deployment_plan.layers,
            "namespaces": deployment_plan.namespaces,
            "service_addresses": deployment_plan.service_addresses,
            "dependents": deployment_plan.dependents,
        }
        console.print_json(json.dumps(plan_dict))
        return

    console.print(f"[bold]Deployment Plan for {stack.stack.name}[/bold]")

    layer_table = Table(title="Layers")
    layer_table.add_column("Layer", style="cyan")
    layer_table.add_column("Units", style="green")
    layer_table.add_column("Resources", style="yellow")

    for idx, layer in enumerate(deployment_plan.layers):
        count = sum(len(prepared.composed.get(name, [])) for name in layer)
        layer_table.add_row(str(idx + 1), ", ".join(layer), str(count))

    console.print(layer_table)

    address_table = Table(title="Services")
    address_table.add_column("Unit", style="cyan")
    address_table.add_column("Namespace", style="green")
    address_table.add_column("Address", style="yellow")

    for name in deployment_plan.order:
        unit = stack.get_unit(name)
        address_table.add_row(name, unit.namespace, deployment_plan.service_addresses[name])

    console.print(address_table)


# ============================================================================
# Render Command
# ============================================================================


@app.command()
def render(
    stack_file: Path = typer.Argument(..., help="Path to stack YAML file"),
    overlay: Optional[List[str]] = typer.Option(
        None, "--overlay", "-o", help="Overlay to apply (repeatable, in order)"
    ),
    assignments: Optional[List[str]] = typer.Option(
        None, "--set", help="Parameter override KEY=VALUE (repeatable)"
    ),
):
    """Print the composed resources as multi-document YAML."""
    stack = _load(stack_file)
    prepared = _prepare(stack, overlay, assignments)

    documents = [
        resource
        for name in prepared.plan.order
        for resource in prepared.composed.get(name, [])
    ]
    typer.echo(yaml.safe_dump_all(documents, sort_keys=False), nl=False)


# ============================================================================
# Deploy Command
# ============================================================================


def _print_report(report: DeploymentReport) -> None:
    unit_table = Table(title="Units")
    unit_table.add_column("Layer", style="cyan")
    unit_table.add_column("Unit", style="cyan")
    unit_table.add_column("Namespace", style="green")
    unit_table.add_column("Replicas", style="yellow")
    unit_table.add_column("State")

    for name, unit in report.units.items():
        style = STATE_STYLES.get(unit.state, "")
        unit_table.add_row(
            str(unit.layer + 1),
            name,
            unit.namespace,
            f"{unit.ready_replicas}/{unit.desired_replicas}",
            f"[{style}]{unit.state.value}[/{style}]",
        )
    for name in report.skipped_units:
        unit_table.add_row("-", name, "-", "-", "[dim]not applied[/dim]")

    console.print(unit_table)

    if report.checks:
        check_table = Table(title="Connectivity")
        check_table.add_column("Check", style="cyan")
        check_table.add_column("Expect", style="yellow")
        check_table.add_column("DNS")
        check_table.add_column("Latency")
        check_table.add_column("Result")

        for check in report.checks:
            check_table.add_row(
                check.id,
                check.expect,
                "yes" if check.dns_resolved else "no",
                f"{check.latency_ms:.1f} ms" if check.latency_ms is not None else "-",
                "[green]pass[/green]" if check.passed else f"[red]{check.diagnosis}[/red]",
            )
        console.print(check_table)

    if report.endpoints:
        endpoint_table = Table(title="Endpoints")
        endpoint_table.add_column("Check", style="cyan")
        endpoint_table.add_column("URL", style="green")
        endpoint_table.add_column("Result")

        for endpoint in report.endpoints:
            endpoint_table.add_row(
                endpoint.name,
                endpoint.url or "-",
                "[green]pass[/green]" if endpoint.passed else f"[red]{escape(endpoint.error or 'failed')}[/red]",
            )
        console.print(endpoint_table)

    if report.succeeded:
        console.print(
            Panel(
                f"[green]✓ Stack deployed successfully[/green]\n\n{escape(report.summary())}",
                title="Deployment Complete",
            )
        )
    else:
        console.print(
            Panel(Text(report.summary()), title=f"Deployment {report.status}", border_style="red")
        )


@app.command()
def deploy(
    stack_file: Path = typer.Argument(..., help="Path to stack YAML file"),
    overlay: Optional[List[str]] = typer.Option(
        None, "--overlay", "-o", help="Overlay to apply (repeatable, in order)"
    ),
    assignments: Optional[List[str]] = typer.Option(
        None, "--set", help="Parameter override KEY=VALUE (repeatable)"
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Per-unit readiness deadline in seconds"
    ),
    parallel: Optional[bool] = typer.Option(
        None, "--parallel/--sequential", help="Deploy units of one layer concurrently"
    ),
    simulate: bool = typer.Option(
        False, "--simulate", help="Run against an in-memory cluster"
    ),
    check_endpoints: Optional[bool] = typer.Option(
        None, "--check-endpoints/--no-check-endpoints", help="HTTP-check external routes"
    ),
    report_file: Optional[Path] = typer.Option(
        None, "--report-file", help="Write the JSON report to this file"
    ),
    output_format: str = typer.Option(
        "table", "--format", "-f", help="Output format: table, json"
    ),
):
    """Deploy a stack and verify it."""
    stack = _load(stack_file)
    prepared = _prepare(stack, overlay, assignments)

    async def _deploy() -> DeploymentReport:
        if simulate:
            cluster = InMemoryCluster(cluster_domain=settings.cluster_domain)
        else:
            cluster = KubectlClient(settings.cli_binary, settings.context)
            await cluster.check_connection()

        orchestrator = StackOrchestrator(cluster, settings)
        try:
            asyncio.get_running_loop().add_signal_handler(signal.SIGINT, orchestrator.cancel)
        except (NotImplementedError, RuntimeError):
            pass  # no signal support on this platform or thread

        return await orchestrator.execute(
            prepared, timeout=timeout, parallel=parallel, check_endpoints=check_endpoints
        )

    if output_format != "json":
        console.print(f"[bold]Deploying stack:[/bold] {stack.stack.name}")
        console.print(f"[dim]Layers: {' -> '.join(', '.join(layer) for layer in prepared.plan.layers)}[/dim]")

    try:
        report = asyncio.run(_deploy())
    except OrchestratorError as e:
        console.print(f"[red]✗ Deployment failed:[/red]\n{escape(str(e))}")
        raise typer.Exit(code=1)

    if report_file:
        report_file.parent.mkdir(parents=True, exist_ok=True)
        report_file.write_text(report.model_dump_json(indent=2))

    if output_format == "json":
        console.print_json(report.model_dump_json())
    else:
        _print_report(report)

    raise typer.Exit(code=report.exit_code)


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
