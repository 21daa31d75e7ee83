"""Run orchestration: one flow run at a time, plus its side resources.

``FlowRunner`` wires the executor to its collaborators and owns everything
that outlives a single node: the run-level cancellation token, the pending
input registry, realtime sessions, and the state projector.
"""

from __future__ import annotations

import logging
from typing import Any

from nodeflow.core.cancellation import CancellationToken, TimeoutCoordinator
from nodeflow.core.config import EngineConfig
from nodeflow.core.errors import FlowValidationError, RunInProgressError
from nodeflow.core.executors import NodeExecutorDispatch
from nodeflow.core.graph_schema import FlowGraph
from nodeflow.core.ids import IdGenerator
from nodeflow.core.models import FlowResult, NodeExecutionState
from nodeflow.core.pending_inputs import PendingInputRegistry
from nodeflow.core.projector import ExecutionStateProjector
from nodeflow.core.providers import HttpProviderClient, ProviderClient
from nodeflow.core.scheduler import FlowExecutor, StateCallback
from nodeflow.core.sessions import SessionFactory, SessionRegistry
from nodeflow.sandbox.evaluator import SandboxedEvaluator

logger = logging.getLogger(__name__)


class FlowRunner:
    """
    Owns at most one active run.

    Example:
        runner = FlowRunner(load_config())
        result = await runner.run(load_flow("flow.yaml"), "hello")
        runner.projector.entries  # terminal-output log
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        provider: ProviderClient | None = None,
        evaluator: SandboxedEvaluator | None = None,
        ids: IdGenerator | None = None,
        session_factory: SessionFactory | None = None,
    ):
        self.config = config or EngineConfig()
        self.provider = provider or HttpProviderClient(self.config.provider)
        self.ids = ids or IdGenerator()
        self.pending_inputs = PendingInputRegistry()
        self.sessions = SessionRegistry(session_factory)
        self.projector = ExecutionStateProjector(self.ids, self.config.preview_capacity)
        self.dispatch = NodeExecutorDispatch(
            self.provider,
            evaluator=evaluator or SandboxedEvaluator(self.config.sandbox),
            pending_inputs=self.pending_inputs,
            sessions=self.sessions,
        )
        self.executor = FlowExecutor(
            self.dispatch, self.config, TimeoutCoordinator(self.config)
        )
        self._token: CancellationToken | None = None

    @property
    def is_running(self) -> bool:
        return self._token is not None

    def missing_credentials(self, graph: FlowGraph) -> list[str]:
        """Providers used by the graph that have no API key configured."""
        if not self.config.provider.require_keys:
            return []
        if not getattr(self.provider, "requires_api_keys", True):
            return []
        keys = self.config.provider.api_keys
        return sorted(p for p in graph.providers_used() if not keys.get(p))

    async def run(
        self,
        graph: FlowGraph,
        initial_input: Any = None,
        on_state: StateCallback | None = None,
    ) -> FlowResult:
        """Execute ``graph``; raises RunInProgressError if a run is active."""
        if self._token is not None:
            raise RunInProgressError("A flow run is already in progress")

        missing = self.missing_credentials(graph)
        if missing:
            raise FlowValidationError(f"Missing API key(s) for provider(s): {', '.join(missing)}")

        token = CancellationToken()
        self._token = token
        self.projector.bind(graph)

        async def on_change(node_id: str, state: NodeExecutionState) -> None:
            self.projector.apply(node_id, state)
            if on_state is not None:
                result = on_state(node_id, state)
                if result is not None:
                    await result

        try:
            return await self.executor.execute_flow(graph, initial_input, on_change, token)
        finally:
            self._token = None

    async def cancel(self) -> bool:
        """Stop the active run. Returns False when nothing was running."""
        token = self._token
        if token is not None:
            logger.warning("Cancelling flow run")
            token.cancel()
        self.pending_inputs.clear()
        await self.sessions.close_all()
        return token is not None

    async def reset(self) -> None:
        """Cancel any active run and drop all projected state."""
        await self.cancel()
        self.projector.reset()

    def resolve_input(self, node_id: str, data: Any) -> bool:
        return self.pending_inputs.resolve_input(node_id, data)

    async def aclose(self) -> None:
        await self.cancel()
        close = getattr(self.provider, "aclose", None)
        if close is not None:
            await close()
