"""Flow walker: executes a flow graph end to end.

Execution model:
- Roots (executable nodes with no incoming edges) start concurrently.
- A node runs once every upstream source has resolved (join barrier). Its
  ports are filled from upstream outputs in the ExecutionContext, falling
  back to the node's inline data for unconnected optional ports.
- After a node succeeds its output is written to the context and every
  downstream branch is started at once; the node then waits for all of them
  to finish (fan-in on completion, not on success).
- Failures are caught at the failing node and recorded as an error state for
  that node only. Dependents whose required inputs came from it resolve to an
  error state (reason ``upstream_failed``) without running;
  unrelated branches keep running.
- Cancellation is checked at node entry. Once the run token trips no new
  node is scheduled; nodes already past scheduling fail with a cancellation
  error and in-flight handlers abort through their node token.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable

from nodeflow.core.cancellation import CancellationToken, TimeoutCoordinator
from nodeflow.core.config import EngineConfig
from nodeflow.core.errors import ErrorReason, FlowValidationError, reason_for
from nodeflow.core.executors import NodeExecutorDispatch
from nodeflow.core.graph_schema import FlowGraph, Node, NodeType, port_for_edge, ports_for
from nodeflow.core.models import ExecutionContext, FlowResult, NodeExecutionState

logger = logging.getLogger(__name__)

StateCallback = Callable[[str, NodeExecutionState], Awaitable[None] | None]


class FlowExecutor:
    """
    Executes flow graphs against a node executor dispatch.

    Example:
        executor = FlowExecutor(NodeExecutorDispatch(provider_client))
        result = await executor.execute_flow(graph, "hello", on_state, token)
        result.outputs  # {output_node_id: value}
    """

    def __init__(
        self,
        dispatch: NodeExecutorDispatch,
        config: EngineConfig | None = None,
        coordinator: TimeoutCoordinator | None = None,
    ):
        self.dispatch = dispatch
        self.config = config or EngineConfig()
        self.coordinator = coordinator or TimeoutCoordinator(self.config)

    async def execute_flow(
        self,
        graph: FlowGraph,
        initial_input: object = None,
        on_node_state_change: StateCallback | None = None,
        token: CancellationToken | None = None,
    ) -> FlowResult:
        """Run the whole graph and return the terminal outputs and node states.

        The graph is snapshotted first, so edits made while the run is in
        flight never affect it.
        """
        snapshot = graph.snapshot()
        snapshot.ensure_valid()
        run = _FlowRun(
            executor=self,
            graph=snapshot,
            context=ExecutionContext(initial_input=initial_input),
            callback=on_node_state_change,
            token=token or CancellationToken(),
        )
        return await run.walk()


class _FlowRun:
    """State of one execute_flow invocation."""

    def __init__(
        self,
        executor: FlowExecutor,
        graph: FlowGraph,
        context: ExecutionContext,
        callback: StateCallback | None,
        token: CancellationToken,
    ):
        self.executor = executor
        self.graph = graph
        self.context = context
        self.callback = callback
        self.token = token

        self.nodes: dict[str, Node] = {n.id: n for n in graph.executable_nodes()}
        self.states: dict[str, NodeExecutionState] = {}
        self.outputs: dict[str, str] = {}
        self._started: set[str] = set()

        # Join barrier bookkeeping: target -> distinct upstream sources
        self._sources: dict[str, set[str]] = defaultdict(set)
        self._arrived: dict[str, set[str]] = defaultdict(set)
        self._failed_sources: dict[str, set[str]] = defaultdict(set)
        for edge in graph.edges:
            if edge.source in self.nodes and edge.target in self.nodes:
                self._sources[edge.target].add(edge.source)

    # ========== Walk ==========

    async def walk(self) -> FlowResult:
        roots = self.graph.roots()
        logger.info(f"Starting flow run: {len(self.nodes)} node(s), {len(roots)} root(s)")

        for node_id in self.nodes:
            await self._emit(node_id, NodeExecutionState.pending())

        tasks = [asyncio.create_task(self._visit(root)) for root in roots]
        for outcome in await asyncio.gather(*tasks, return_exceptions=True):
            if isinstance(outcome, Exception):
                logger.error(f"Unexpected error in branch: {outcome}")

        # Anything never reached (only possible when a branch died unexpectedly)
        for node_id in self.nodes:
            if not self.states[node_id].status.is_terminal:
                if self.token.is_tripped:
                    state = NodeExecutionState.skipped("Not executed", ErrorReason.CANCELLED)
                else:
                    state = NodeExecutionState.failed("Not executed", ErrorReason.UPSTREAM_FAILED)
                await self._emit(node_id, state)

        result = FlowResult(
            outputs=dict(self.outputs),
            states=dict(self.states),
            cancelled=self.token.is_tripped,
        )
        logger.info(
            f"Flow run finished: {len(result.succeeded)} succeeded, "
            f"{len(result.failed)} failed, {len(result.skipped)} skipped"
        )
        return result

    async def _visit(self, node: Node) -> None:
        if node.id in self._started:
            return
        self._started.add(node.id)

        await self._emit(node.id, NodeExecutionState.running(source_type=self._source_type(node)))
        try:
            await self.token.sleep(self.executor.config.pacing_delay, node_id=node.id)
            self.token.raise_if_tripped(node.id)

            inputs = self._resolve_inputs(node)

            async def on_partial(text: str) -> None:
                await self._emit(node.id, NodeExecutionState.running(output=text))

            with self.executor.coordinator.node_scope(self.token, node.id, node.type) as node_token:
                result = await self.executor.dispatch.execute(
                    node, inputs, self.context, node_token, on_partial=on_partial
                )

            self.context.set(node.id, result.output)
            if node.type == NodeType.OUTPUT.value:
                self.outputs[node.id] = result.output
            await self._emit(node.id, NodeExecutionState.success(result.output))
        except Exception as e:
            reason = reason_for(e)
            message = str(e) or type(e).__name__
            if reason == ErrorReason.CANCELLED:
                logger.warning(f"Node '{node.id}' cancelled")
            else:
                logger.error(f"Node '{node.id}' failed ({reason}): {message}")
            await self._emit(node.id, NodeExecutionState.failed(message, reason))
            await self._propagate(node, succeeded=False)
            return

        await self._propagate(node, succeeded=True)

    async def _resolve_unrun(self, node: Node, state: NodeExecutionState) -> None:
        """Settle a node that will never run, then release its dependents."""
        if node.id in self._started:
            return
        self._started.add(node.id)
        logger.warning(f"Not running node '{node.id}': {state.error}")
        await self._emit(node.id, state)
        await self._propagate(node, succeeded=False)

    async def _propagate(self, node: Node, succeeded: bool) -> None:
        """Record arrival at every downstream node and start those now ready."""
        branches = []
        for target_id in dict.fromkeys(e.target for e in self.graph.outgoing(node.id)):
            target = self.nodes.get(target_id)
            if target is None:
                continue
            self._arrived[target_id].add(node.id)
            if not succeeded:
                self._failed_sources[target_id].add(node.id)
            if self._arrived[target_id] < self._sources[target_id]:
                continue  # Join barrier: other upstreams still pending

            if self.token.is_tripped:
                branches.append(
                    self._resolve_unrun(
                        target, NodeExecutionState.skipped("Run cancelled", ErrorReason.CANCELLED)
                    )
                )
                continue
            blocking = self._blocking_failures(target)
            if blocking:
                branches.append(
                    self._resolve_unrun(
                        target,
                        NodeExecutionState.failed(
                            f"Upstream node(s) failed: {', '.join(sorted(blocking))}",
                            ErrorReason.UPSTREAM_FAILED,
                        ),
                    )
                )
            else:
                branches.append(self._visit(target))

        if not branches:
            return
        tasks = [asyncio.create_task(branch) for branch in branches]
        # Isolate-and-continue: wait for every branch, never short-circuit
        for outcome in await asyncio.gather(*tasks, return_exceptions=True):
            if isinstance(outcome, Exception):
                logger.error(f"Unexpected error in branch below '{node.id}': {outcome}")

    # ========== Inputs ==========

    def _blocking_failures(self, node: Node) -> set[str]:
        """Failed upstreams that feed a required port of ``node``."""
        failed = self._failed_sources.get(node.id)
        if not failed:
            return set()
        required = {p.name for p in ports_for(node.type) if p.required}
        ports = {p.name for p in ports_for(node.type)}
        blocking = set()
        for edge in self.graph.incoming(node.id):
            if edge.source not in failed:
                continue
            port = port_for_edge(edge, node.type)
            if port in required or port not in ports:
                blocking.add(edge.source)
        return blocking

    def _resolve_inputs(self, node: Node) -> dict[str, str]:
        connected: dict[str, list[str]] = defaultdict(list)
        for edge in self.graph.incoming(node.id):
            if edge.source not in self.nodes:
                continue
            value = self.context.get(edge.source)
            if value is not None:
                connected[port_for_edge(edge, node.type)].append(value)

        inputs: dict[str, str] = {}
        for port in ports_for(node.type):
            values = connected.pop(port.name, None)
            if values:
                inputs[port.name] = values[0] if len(values) == 1 else "\n\n".join(values)
                continue
            inline = next(
                (node.data[k] for k in port.inline_keys if node.data.get(k) not in (None, "")),
                None,
            )
            if inline is not None:
                inputs[port.name] = str(inline)
            elif port.required:
                raise FlowValidationError(
                    f"Missing required input '{port.name}' for node '{node.label}'",
                    node_id=node.id,
                )
        # Undeclared ports pass through untouched
        for port_name, values in connected.items():
            inputs[port_name] = values[0] if len(values) == 1 else "\n\n".join(values)
        return inputs

    def _source_type(self, node: Node) -> str | None:
        if node.type != NodeType.OUTPUT.value:
            return None
        for edge in self.graph.incoming(node.id):
            source = self.nodes.get(edge.source)
            if source is not None:
                return source.type
        return None

    # ========== State events ==========

    async def _emit(self, node_id: str, state: NodeExecutionState) -> None:
        self.states[node_id] = state
        if self.callback is None:
            return
        try:
            result = self.callback(node_id, state)
            if result is not None:
                await result
        except Exception:
            logger.exception(f"State callback failed for node '{node_id}'")
