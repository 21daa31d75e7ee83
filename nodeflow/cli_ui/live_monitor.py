"""Live execution monitoring for flow runs.

Provides a real-time terminal display of node states while a run is active.
"""

from __future__ import annotations

from typing import Any

from rich.console import Console, Group
from rich.live import Live
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn

from nodeflow.cli_ui.status_table import StatusTableRenderer
from nodeflow.core.graph_schema import FlowGraph
from nodeflow.core.models import FlowResult
from nodeflow.core.projector import NodeView, PreviewEntry
from nodeflow.core.runner import FlowRunner


class LiveExecutionMonitor:
    """
    Real-time terminal UI for one flow run.

    The display is redrawn from projector events rather than by polling, so
    streamed partial output shows up as it arrives.
    """

    def __init__(self, runner: FlowRunner, console: Console | None = None):
        self.runner = runner
        self.console = console or Console()
        self.renderer = StatusTableRenderer(self.console)
        self._live: Live | None = None
        self._graph: FlowGraph | None = None
        # Reuse progress widget to avoid flicker
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        )
        self._task_id: Any = None
        runner.projector.add_listener(self._on_change)

    def _render(self) -> Group:
        views = self.runner.projector.views
        graph = self._graph or FlowGraph()
        total = len(graph.executable_nodes())
        done = sum(1 for v in views.values() if v.status.is_terminal)
        if self._task_id is not None:
            self._progress.update(
                self._task_id, completed=done, total=total, description=f"Nodes: {done}/{total}"
            )
        parts: list[Any] = [self.renderer.render_status_table(graph, views), self._progress]
        if self.runner.projector.entries:
            parts.insert(1, self.renderer.render_preview_table(self.runner.projector.entries))
        return Group(*parts)

    def _on_change(self, node_id: str, view: NodeView, entry: PreviewEntry | None) -> None:
        if self._live is not None:
            self._live.update(self._render())

    async def run(self, graph: FlowGraph, initial_input: Any = None) -> FlowResult:
        """Run ``graph`` through the runner while rendering live updates."""
        self._graph = graph
        self._task_id = self._progress.add_task(
            "Nodes: 0/0", total=len(graph.executable_nodes())
        )
        with Live(self._render(), console=self.console, refresh_per_second=4) as live:
            self._live = live
            try:
                result = await self.runner.run(graph, initial_input)
            finally:
                live.update(self._render())
                self._live = None
        return result
