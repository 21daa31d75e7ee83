"""Flow graph schema definitions using Pydantic models.

A flow is a directed acyclic graph of typed AI-operation nodes connected by
optionally-ported edges. The editor supplies it as a ``{nodes, edges}``
snapshot; this module validates it and answers the topology questions the
scheduler needs (roots, incoming/outgoing edges, port resolution).
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import networkx as nx
import yaml
from pydantic import BaseModel, Field, model_validator

from nodeflow.core.errors import FlowValidationError
from nodeflow.core.ids import IdGenerator
from nodeflow.core.models import OperationClass


class NodeType(str, Enum):
    """Supported node types in flow graphs"""

    INPUT = "input"  # Entry point, passes the run's initial input through
    OUTPUT = "output"  # Terminal node, captures its resolved value
    PROMPT = "prompt"  # Text generation
    IMAGE = "image"  # Image generation
    CODE = "code"  # Custom logic transform via the sandboxed evaluator
    AUDIO_INPUT = "audio-input"  # Suspends until a recording is delivered
    REALTIME = "realtime"  # Long-lived duplex session, started but not awaited
    COMMENT = "comment"  # Canvas annotation, never executed


class EdgeDataType(str, Enum):
    """Data-kind tag carried by an edge"""

    STRING = "string"
    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    RESPONSE = "response"


@dataclass(frozen=True)
class PortSpec:
    """A named input port on a node type."""

    name: str
    required: bool = True
    inline_keys: tuple[str, ...] = ()  # Node data keys used when unconnected


DEFAULT_PORT = "input"

NODE_PORTS: dict[str, tuple[PortSpec, ...]] = {
    NodeType.PROMPT.value: (
        PortSpec("prompt", required=True, inline_keys=("input", "userPrompt")),
        PortSpec("system", required=False, inline_keys=("prompt", "system")),
        PortSpec("image", required=False, inline_keys=("image",)),
    ),
    NodeType.IMAGE.value: (
        PortSpec("prompt", required=True, inline_keys=("prompt",)),
        PortSpec("image", required=False, inline_keys=("image",)),
    ),
    NodeType.CODE.value: (PortSpec(DEFAULT_PORT, required=True),),
    NodeType.REALTIME.value: (
        PortSpec("instructions", required=False, inline_keys=("instructions",)),
    ),
    # Entry nodes take no upstream data
    NodeType.INPUT.value: (),
    NodeType.AUDIO_INPUT.value: (),
}

OPERATION_CLASSES: dict[str, OperationClass] = {
    NodeType.PROMPT.value: OperationClass.TEXT,
    NodeType.IMAGE.value: OperationClass.IMAGE,
    NodeType.AUDIO_INPUT.value: OperationClass.USER_INPUT,
    NodeType.REALTIME.value: OperationClass.AUDIO,
    NodeType.CODE.value: OperationClass.CODE,
}


def ports_for(node_type: str) -> tuple[PortSpec, ...]:
    """Input ports for a node type; unknown types get one required ``input`` port."""
    return NODE_PORTS.get(node_type, (PortSpec(DEFAULT_PORT, required=True),))


def port_for_edge(edge: Edge, node_type: str) -> str:
    """Target port an edge feeds; handle-less edges feed the first port."""
    if edge.target_handle:
        return edge.target_handle
    ports = ports_for(node_type)
    return ports[0].name if ports else DEFAULT_PORT


def operation_class_for(node_type: str) -> OperationClass:
    return OPERATION_CLASSES.get(node_type, OperationClass.DEFAULT)


class Node(BaseModel):
    """Graph node with a type tag and a type-specific data payload"""

    id: str
    type: str
    data: dict[str, Any] = Field(default_factory=dict)
    parent_id: str | None = Field(default=None, alias="parentId")

    model_config = {"populate_by_name": True}

    @property
    def label(self) -> str:
        return str(self.data.get("label") or self.id)

    @property
    def is_executable(self) -> bool:
        return self.type != NodeType.COMMENT.value

    @property
    def is_preview(self) -> bool:
        """Whether this node's output belongs in the terminal-output log."""
        return self.type == NodeType.OUTPUT.value or bool(self.data.get("preview"))


class Edge(BaseModel):
    """Directed, optionally-ported data dependency between two nodes"""

    id: str
    source: str
    target: str
    source_handle: str | None = Field(default=None, alias="sourceHandle")
    target_handle: str | None = Field(default=None, alias="targetHandle")
    data_type: str = Field(default=EdgeDataType.STRING.value, alias="dataType")

    model_config = {"populate_by_name": True}

    @model_validator(mode="before")
    @classmethod
    def lift_editor_data_type(cls, values: Any) -> Any:
        """Accept the editor's ``data: {dataType: ...}`` shape."""
        if isinstance(values, dict) and isinstance(values.get("data"), dict):
            values = dict(values)
            data = values.pop("data")
            if "dataType" in data and "dataType" not in values and "data_type" not in values:
                values["dataType"] = data["dataType"]
        return values


class FlowGraph(BaseModel):
    """Point-in-time snapshot of a flow: nodes and edges"""

    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)

    def snapshot(self) -> FlowGraph:
        """Deep copy, so concurrent editor mutations never reach a running walk."""
        return self.model_copy(deep=True)

    # ========== Lookups ==========

    def node_map(self) -> dict[str, Node]:
        return {n.id: n for n in self.nodes}

    def get_node(self, node_id: str) -> Node | None:
        return next((n for n in self.nodes if n.id == node_id), None)

    def executable_nodes(self) -> list[Node]:
        return [n for n in self.nodes if n.is_executable]

    def outgoing(self, node_id: str) -> list[Edge]:
        return [e for e in self.edges if e.source == node_id]

    def incoming(self, node_id: str) -> list[Edge]:
        return [e for e in self.edges if e.target == node_id]

    def roots(self) -> list[Node]:
        """Executable nodes with no incoming edges, in declaration order."""
        targets = {e.target for e in self.edges}
        return [n for n in self.executable_nodes() if n.id not in targets]

    def terminal_nodes(self) -> list[Node]:
        return [n for n in self.executable_nodes() if n.type == NodeType.OUTPUT.value]

    def providers_used(self) -> set[str]:
        """Providers referenced by network-backed generation nodes."""
        providers = set()
        for node in self.nodes:
            if node.type in (NodeType.PROMPT.value, NodeType.IMAGE.value):
                providers.add(str(node.data.get("provider") or "openai"))
        return providers

    # ========== Editing ==========

    def add_node(self, node_type: str, ids: IdGenerator, **data: Any) -> Node:
        node = Node(id=ids.next_id(node_type), type=node_type, data=data)
        self.nodes.append(node)
        return node

    def add_edge(
        self,
        source: str,
        target: str,
        ids: IdGenerator,
        source_handle: str | None = None,
        target_handle: str | None = None,
        data_type: str = EdgeDataType.STRING.value,
    ) -> Edge:
        edge = Edge(
            id=ids.next_id("edge"),
            source=source,
            target=target,
            source_handle=source_handle,
            target_handle=target_handle,
            data_type=data_type,
        )
        self.edges.append(edge)
        return edge

    # ========== Validation ==========

    def validate_graph(self) -> list[str]:
        """
        Validate graph structure using NetworkX.
        Returns list of validation errors.
        """
        errors = []

        seen_node_ids = set()
        for node in self.nodes:
            if node.id in seen_node_ids:
                errors.append(f"Duplicate node ID: '{node.id}'")
            seen_node_ids.add(node.id)
        node_ids = seen_node_ids

        seen_edge_ids = set()
        for edge in self.edges:
            if edge.id in seen_edge_ids:
                errors.append(f"Duplicate edge ID: '{edge.id}'")
            seen_edge_ids.add(edge.id)

        comment_ids = {n.id for n in self.nodes if not n.is_executable}
        for edge in self.edges:
            if edge.source not in node_ids:
                errors.append(f"Edge {edge.id}: source '{edge.source}' not found")
            if edge.target not in node_ids:
                errors.append(f"Edge {edge.id}: target '{edge.target}' not found")
            if edge.source in comment_ids or edge.target in comment_ids:
                errors.append(f"Edge {edge.id}: comment nodes cannot be connected")

        for node in self.executable_nodes():
            known_ports = {p.name for p in ports_for(node.type)}
            for edge in self.incoming(node.id):
                if edge.target_handle and edge.target_handle not in known_ports:
                    errors.append(
                        f"Edge {edge.id}: node '{node.id}' ({node.type}) has no "
                        f"input port '{edge.target_handle}'"
                    )

        G = self._to_networkx()
        try:
            cycle = nx.find_cycle(G)
            cycle_path = " -> ".join(edge[0] for edge in cycle)
            errors.append(f"Cycle detected: {cycle_path}")
        except nx.NetworkXNoCycle:
            pass

        if self.executable_nodes() and not self.roots():
            errors.append("No root nodes found (every node has an incoming edge)")

        return errors

    def ensure_valid(self) -> None:
        errors = self.validate_graph()
        if errors:
            raise FlowValidationError("Invalid flow graph: " + "; ".join(errors))

    def _to_networkx(self) -> nx.DiGraph:
        """Convert to NetworkX DiGraph for analysis"""
        G = nx.DiGraph()
        for node in self.nodes:
            G.add_node(node.id)
        for edge in self.edges:
            G.add_edge(edge.source, edge.target)
        return G

    def reachable_from_roots(self) -> set[str]:
        G = self._to_networkx()
        reachable: set[str] = set()
        for root in self.roots():
            reachable.add(root.id)
            reachable |= nx.descendants(G, root.id)
        return reachable

    def analyze_parallelism(self) -> list[list[str]]:
        """Find nodes that can execute in parallel (topological levels)"""
        G = self._to_networkx()
        try:
            return [list(level) for level in nx.topological_generations(G)]
        except nx.NetworkXError:
            return []  # Has cycles


def load_flow(path: str | Path) -> FlowGraph:
    """Load a flow snapshot from a YAML or JSON file."""
    path = Path(path)
    text = path.read_text()
    if path.suffix == ".json":
        raw = json.loads(text)
    else:
        raw = yaml.safe_load(text)
    if not isinstance(raw, dict):
        raise FlowValidationError(f"Flow file {path} must contain a mapping with nodes and edges")
    return FlowGraph.model_validate({"nodes": raw.get("nodes", []), "edges": raw.get("edges", [])})
