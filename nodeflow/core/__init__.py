"""Core modules for the nodeflow execution engine."""

from nodeflow.core.cancellation import CancellationToken, TimeoutCoordinator
from nodeflow.core.config import EngineConfig, load_config
from nodeflow.core.graph_schema import Edge, FlowGraph, Node, NodeType, load_flow
from nodeflow.core.models import FlowResult, NodeExecutionState, NodeStatus
from nodeflow.core.runner import FlowRunner
from nodeflow.core.scheduler import FlowExecutor

__all__ = [
    "CancellationToken",
    "Edge",
    "EngineConfig",
    "FlowExecutor",
    "FlowGraph",
    "FlowResult",
    "FlowRunner",
    "Node",
    "NodeExecutionState",
    "NodeStatus",
    "NodeType",
    "TimeoutCoordinator",
    "load_config",
    "load_flow",
]
