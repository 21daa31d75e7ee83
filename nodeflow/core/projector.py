"""Projection of scheduler events into UI-facing state.

The projector consumes ``(node_id, NodeExecutionState)`` events and keeps:

- one ``NodeView`` per node (status, output, error)
- the preview log: an ordered, one-entry-per-node list for output nodes and
  nodes flagged ``data.preview``. The entry is created at the node's first
  ``running`` event; later events (streamed partial output, success, error)
  update it in place. When the node runs again, its entry is cleared and
  moved to the end of the log. The log is capacity-bounded, oldest entry first out.

Sibling branches complete in any order, so ``apply`` never assumes an event
follows another one for a different node.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Callable

from pydantic import BaseModel

from nodeflow.core.graph_schema import FlowGraph, Node
from nodeflow.core.ids import IdGenerator
from nodeflow.core.models import NodeExecutionState, NodeStatus

logger = logging.getLogger(__name__)

Listener = Callable[[str, "NodeView", "PreviewEntry | None"], None]


class NodeView(BaseModel):
    """Visual state of one node."""

    status: NodeStatus = NodeStatus.PENDING
    output: str | None = None
    error: str | None = None
    reason: str | None = None


class PreviewEntry(BaseModel):
    """One row of the terminal-output log."""

    id: str
    node_id: str
    node_label: str
    node_type: str
    status: NodeStatus
    output: str | None = None
    error: str | None = None
    timestamp: float
    source_type: str | None = None


class ExecutionStateProjector:
    """Applies node state events to node views and the preview log."""

    def __init__(self, ids: IdGenerator | None = None, capacity: int = 200):
        self.ids = ids or IdGenerator()
        self.capacity = capacity
        self.views: dict[str, NodeView] = {}
        self._nodes: dict[str, Node] = {}
        self._entries: OrderedDict[str, PreviewEntry] = OrderedDict()  # node_id -> entry
        self._stale: set[str] = set()  # Entries left over from a previous run
        self._listeners: list[Listener] = []

    def bind(self, graph: FlowGraph) -> None:
        """Register the nodes of the graph about to run."""
        self._nodes = graph.node_map()

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    @property
    def entries(self) -> list[PreviewEntry]:
        return list(self._entries.values())

    def entry_for(self, node_id: str) -> PreviewEntry | None:
        return self._entries.get(node_id)

    def apply(self, node_id: str, state: NodeExecutionState) -> None:
        view = self.views.setdefault(node_id, NodeView())
        view.status = state.status
        view.reason = state.reason
        if state.status == NodeStatus.PENDING:
            view.output = None
            view.error = None
        if state.output is not None:
            view.output = state.output
        if state.error is not None:
            view.error = state.error

        entry = self._project_preview(node_id, state)
        for listener in list(self._listeners):
            try:
                listener(node_id, view, entry)
            except Exception:
                logger.exception(f"Projector listener failed for node '{node_id}'")

    def _project_preview(self, node_id: str, state: NodeExecutionState) -> PreviewEntry | None:
        node = self._nodes.get(node_id)
        if node is None or not node.is_preview:
            return None

        entry = self._entries.get(node_id)
        if entry is None:
            if state.status != NodeStatus.RUNNING:
                return None
            entry = PreviewEntry(
                id=self.ids.next_id("preview"),
                node_id=node_id,
                node_label=node.label,
                node_type=node.type,
                status=NodeStatus.RUNNING,
                output=state.output,
                timestamp=time.time(),
                source_type=state.source_type,
            )
            self._entries[node_id] = entry
            self._prune()
            return entry
        if state.status == NodeStatus.PENDING:
            self._stale.add(node_id)
            return None
        if node_id in self._stale:
            # First event of a new run: the entry starts over at the end of the log
            self._stale.discard(node_id)
            entry.output = None
            entry.error = None
            entry.source_type = None
            entry.timestamp = time.time()
            self._entries.move_to_end(node_id)

        entry.status = state.status
        if state.output is not None:
            entry.output = state.output
        if state.status == NodeStatus.SUCCESS:
            entry.error = None
        elif state.error is not None:
            entry.error = state.error
        if state.source_type is not None:
            entry.source_type = state.source_type
        return entry

    def _prune(self) -> None:
        while len(self._entries) > self.capacity:
            node_id, _ = self._entries.popitem(last=False)
            logger.debug(f"Preview log full, dropped entry for node '{node_id}'")

    def reset(self) -> None:
        self.views.clear()
        self._entries.clear()
        self._stale.clear()
