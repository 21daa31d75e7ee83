"""CLI entry point for nodeflow.

Commands:
- nodeflow run: Execute a flow file and print node states and outputs
- nodeflow validate: Check a flow file without running it
- nodeflow version: Show version information
"""

from __future__ import annotations

import asyncio
import logging
import sys

import click
import pydantic
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel

from nodeflow import __version__
from nodeflow.cli_ui.live_monitor import LiveExecutionMonitor
from nodeflow.cli_ui.status_table import StatusTableRenderer
from nodeflow.core.config import load_config
from nodeflow.core.errors import FlowError
from nodeflow.core.graph_schema import FlowGraph, load_flow
from nodeflow.core.models import FlowResult
from nodeflow.core.runner import FlowRunner

console = Console()


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=verbose, show_path=verbose)],
        force=True,
    )


def _load_flow_or_exit(flow_file: str) -> FlowGraph:
    try:
        return load_flow(flow_file)
    except yaml.YAMLError as e:
        console.print(f"[red]Error parsing flow file '{escape(flow_file)}':[/red]")
        console.print(f"  {escape(str(e))}")
    except pydantic.ValidationError as e:
        console.print("[red]Error validating flow schema:[/red]")
        for err in e.errors():
            loc = ".".join(str(x) for x in err["loc"])
            console.print(f"  - {escape(loc)}: {escape(err['msg'])}")
    except (ValueError, FlowError) as e:
        console.print("[red]Error loading flow:[/red]")
        console.print(f"  {escape(str(e))}")
    sys.exit(1)


def _print_errors(errors: list[str]) -> None:
    console.print("[red]Validation errors:[/red]")
    for error in errors:
        console.print(f"  - {escape(error)}")


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """Nodeflow - run AI node graphs from the terminal."""
    pass


@main.command()
@click.argument("flow_file", type=click.Path(exists=True))
@click.option("--input", "-i", "initial_input", help="Initial input passed to input nodes")
@click.option("--config", "-c", "config_path", type=click.Path(), help="Path to config YAML")
@click.option("--live", is_flag=True, help="Show live execution monitor")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def run(
    flow_file: str, initial_input: str | None, config_path: str | None, live: bool, verbose: bool
) -> None:
    """Execute a flow graph from YAML or JSON."""
    _configure_logging(verbose)
    graph = _load_flow_or_exit(flow_file)

    errors = graph.validate_graph()
    if errors:
        _print_errors(errors)
        sys.exit(1)

    try:
        config = load_config(config_path)
    except FlowError as e:
        console.print(f"[red]Config error:[/red] {escape(str(e))}")
        sys.exit(1)

    runner = FlowRunner(config)

    async def execute() -> FlowResult:
        try:
            if live:
                return await LiveExecutionMonitor(runner, console).run(graph, initial_input)
            return await runner.run(graph, initial_input)
        finally:
            await runner.aclose()

    renderer = StatusTableRenderer(console)
    try:
        result = asyncio.run(execute())
    except FlowError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("[yellow]Run cancelled[/yellow]")
        sys.exit(130)

    if not live:
        console.print(renderer.render_status_table(graph, runner.projector.views))

    for node_id, output in result.outputs.items():
        node = graph.get_node(node_id)
        title = escape(node.label if node else node_id)
        console.print(Panel(escape(output), title=f"[bold]{title}[/bold]"))

    if result.failed or result.skipped:
        console.print(
            f"[red]Flow finished with {len(result.failed)} failed and "
            f"{len(result.skipped)} skipped node(s)[/red]"
        )
        sys.exit(1)
    console.print("[green]Flow completed successfully[/green]")


@main.command()
@click.argument("flow_file", type=click.Path(exists=True))
def validate(flow_file: str) -> None:
    """Validate a flow file without executing it."""
    graph = _load_flow_or_exit(flow_file)
    errors = graph.validate_graph()
    if errors:
        _print_errors(errors)
        sys.exit(1)

    console.print("[green]Flow validation passed[/green]")
    console.print(f"  Nodes: {len(graph.nodes)}")
    console.print(f"  Edges: {len(graph.edges)}")
    console.print(f"  Roots: {', '.join(escape(n.id) for n in graph.roots())}")
    levels = graph.analyze_parallelism()
    if levels:
        console.print(f"  Parallel levels: {len(levels)}")


@main.command()
def version() -> None:
    """Show version information."""
    console.print(f"Nodeflow v{__version__}")
    console.print("AI node graph execution engine")


if __name__ == "__main__":
    main()
