"""Rich tables for node status and terminal outputs."""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from nodeflow.core.graph_schema import FlowGraph
from nodeflow.core.models import BinaryEnvelope, NodeStatus
from nodeflow.core.projector import NodeView, PreviewEntry

OUTPUT_WIDTH = 60


def summarize_output(output: str | None, width: int = OUTPUT_WIDTH) -> str:
    """One-line, markup-safe summary of an edge value."""
    if not output:
        return ""
    envelope = BinaryEnvelope.parse(output)
    if envelope is not None:
        return escape(f"<{envelope.kind} {envelope.mime_type}, {len(envelope.value)} b64 chars>")
    text = " ".join(output.split())
    if len(text) > width:
        text = text[: width - 3] + "..."
    # SECURITY: Escape to prevent Rich markup injection from model output
    return escape(text)


class StatusTableRenderer:
    """Renders node views and preview entries as Rich tables."""

    STATUS_TEXT = {
        NodeStatus.PENDING: "[dim]○ Pending[/]",
        NodeStatus.RUNNING: "[blue]⟳ Running[/]",
        NodeStatus.SUCCESS: "[green]✓ Success[/]",
        NodeStatus.ERROR: "[red]✗ Error[/]",
        NodeStatus.SKIPPED: "[dim]⊘ Skipped[/]",
    }

    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    def render_status_table(self, graph: FlowGraph, views: dict[str, NodeView]) -> Table:
        table = Table(title="Node Status")
        table.add_column("Node", style="cyan")
        table.add_column("Type", style="magenta")
        table.add_column("Status", justify="center")
        table.add_column("Output / Error", max_width=OUTPUT_WIDTH)

        for node in graph.executable_nodes():
            view = views.get(node.id) or NodeView()
            if view.status in (NodeStatus.ERROR, NodeStatus.SKIPPED) and view.error:
                detail = f"[red]{escape(view.error)}[/]"
                if view.reason:
                    detail += f" [dim]({escape(view.reason)})[/]"
            else:
                detail = summarize_output(view.output)
            table.add_row(
                escape(node.label),
                escape(node.type),
                self.STATUS_TEXT.get(view.status, escape(str(view.status))),
                detail,
            )
        return table

    def render_preview_table(self, entries: list[PreviewEntry]) -> Table:
        table = Table(title="Outputs")
        table.add_column("Node", style="cyan")
        table.add_column("Status", justify="center")
        table.add_column("Output")

        for entry in entries:
            detail = escape(entry.error) if entry.error else summarize_output(entry.output, 200)
            table.add_row(
                escape(entry.node_label),
                self.STATUS_TEXT.get(entry.status, escape(str(entry.status))),
                detail,
            )
        return table
