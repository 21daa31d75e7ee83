# conftest.py - Shared pytest fixtures for all tests
"""Shared pytest fixtures for the nodeflow test suite.

This module provides:
- A scripted in-memory provider client (no network)
- Graph construction helpers
- Engine wiring fixtures (config, dispatch, executor, runner)

Usage:
    Fixtures are discovered implicitly by pytest.
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from nodeflow.core.cancellation import CancellationToken
from nodeflow.core.config import EngineConfig
from nodeflow.core.executors import NodeExecutorDispatch
from nodeflow.core.graph_schema import Edge, FlowGraph, Node
from nodeflow.core.models import NodeExecutionState
from nodeflow.core.providers import ProviderRequest, ProviderResponse
from nodeflow.core.runner import FlowRunner
from nodeflow.core.scheduler import FlowExecutor

HANG = object()  # Scripted response: never completes


class FakeProvider:
    """Provider client answering from a per-node script.

    Script values:
        str           -> returned as output
        list[str]     -> streamed as chunks, then the joined text is returned
        Exception     -> raised
        HANG          -> waits forever (until the token aborts the call)
        callable      -> called with the request, result used as above
    Unscripted nodes echo ``"<model>:<prompt>"``.
    """

    requires_api_keys = False

    def __init__(self, script: dict[str, Any] | None = None, delay: float = 0.0):
        self.script = dict(script or {})
        self.delay = delay
        self.requests: list[ProviderRequest] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def calls_for(self, node_id: str) -> list[ProviderRequest]:
        return [r for r in self.requests if r.node_id == node_id]

    async def execute(self, request, token: CancellationToken, on_chunk=None) -> ProviderResponse:
        self.requests.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            value = self.script.get(request.node_id)
            if callable(value) and not isinstance(value, type):
                value = value(request)
            if value is None:
                value = f"{request.model}:{request.inputs.get('prompt', '')}"
            if value is HANG:
                await asyncio.Event().wait()
            if isinstance(value, BaseException):
                raise value
            if isinstance(value, list):
                text = ""
                for chunk in value:
                    text += chunk
                    if on_chunk is not None:
                        result = on_chunk(text)
                        if result is not None:
                            await result
                return ProviderResponse(output=text)
            return ProviderResponse(output=str(value))
        finally:
            self.in_flight -= 1


class StateRecorder:
    """Collects (node_id, state) events in arrival order."""

    def __init__(self) -> None:
        self.events: list[tuple[str, NodeExecutionState]] = []

    def __call__(self, node_id: str, state: NodeExecutionState) -> None:
        self.events.append((node_id, state))

    def statuses(self, node_id: str) -> list[str]:
        return [s.status.value for nid, s in self.events if nid == node_id]

    def last(self, node_id: str) -> NodeExecutionState:
        return [s for nid, s in self.events if nid == node_id][-1]


def make_graph(nodes: list[dict[str, Any]], edges: list[tuple] = ()) -> FlowGraph:
    """Build a FlowGraph from node dicts and ``(source, target[, target_handle])`` tuples."""
    graph_edges = []
    for i, edge in enumerate(edges, start=1):
        source, target = edge[0], edge[1]
        handle = edge[2] if len(edge) > 2 else None
        graph_edges.append(Edge(id=f"e{i}", source=source, target=target, target_handle=handle))
    return FlowGraph(nodes=[Node(**n) for n in nodes], edges=graph_edges)


def node(node_id: str, node_type: str, **data: Any) -> dict[str, Any]:
    return {"id": node_id, "type": node_type, "data": data}


# =============================================================================
# Engine Fixtures
# =============================================================================


@pytest.fixture
def engine_config() -> EngineConfig:
    """Default config with pacing disabled."""
    return EngineConfig(pacing_delay=0.0)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def recorder() -> StateRecorder:
    return StateRecorder()


@pytest.fixture
def dispatch(provider: FakeProvider, engine_config: EngineConfig) -> NodeExecutorDispatch:
    return NodeExecutorDispatch(provider)


@pytest.fixture
def executor(dispatch: NodeExecutorDispatch, engine_config: EngineConfig) -> FlowExecutor:
    return FlowExecutor(dispatch, engine_config)


@pytest.fixture
def runner(provider: FakeProvider, engine_config: EngineConfig) -> FlowRunner:
    return FlowRunner(engine_config, provider=provider)


@pytest.fixture
def hello_graph() -> FlowGraph:
    """input('hello') -> prompt -> output"""
    return make_graph(
        [
            node("in", "input", inputValue="hello"),
            node("gen", "prompt", model="test-model", provider="openai"),
            node("out", "output", label="Result"),
        ],
        [("in", "gen"), ("gen", "out")],
    )
