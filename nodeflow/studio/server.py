"""FastAPI backend for the flow editor.

This module provides:
- POST /runs: execute a graph snapshot, streaming node state changes as NDJSON
- POST /runs/cancel: cancel the active run
- POST /inputs/{node_id}: deliver data to a node suspended for input
- GET /preview: the terminal-output log
- GET /nodes: current visual state of every node

Architecture Notes:
- One FlowRunner per server process; a second concurrent run is rejected
  with 409 rather than queued.
- Stream consumers that disconnect mid-run cancel the run.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from nodeflow.core.config import load_config
from nodeflow.core.errors import FlowError, RunInProgressError
from nodeflow.core.graph_schema import Edge, FlowGraph, Node
from nodeflow.core.models import NodeExecutionState
from nodeflow.core.pending_inputs import AudioInputData
from nodeflow.core.runner import FlowRunner

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Nodeflow API",
    description="Execution API for AI node graphs",
    version="0.1.0",
)

_runner: FlowRunner | None = None


def get_runner() -> FlowRunner:
    """Process-wide runner, created on first use from the default config."""
    global _runner
    if _runner is None:
        _runner = FlowRunner(load_config())
    return _runner


class RunRequest(BaseModel):
    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)
    input: Any = None


class InputRequest(BaseModel):
    """Either plain text or a recorded audio buffer."""

    text: str | None = None
    buffer: str | None = None
    mime_type: str = Field(default="audio/webm", alias="mimeType")
    duration: float | None = None

    model_config = {"populate_by_name": True}

    def payload(self) -> Any:
        if self.buffer is not None:
            return AudioInputData(
                buffer=self.buffer, mime_type=self.mime_type, duration=self.duration
            )
        return self.text


def _line(event: dict[str, Any]) -> str:
    return json.dumps(event) + "\n"


@app.post("/runs")
async def start_run(request: RunRequest, runner: FlowRunner = Depends(get_runner)) -> StreamingResponse:
    graph = FlowGraph(nodes=request.nodes, edges=request.edges)
    if runner.is_running:
        raise HTTPException(status_code=409, detail="A flow run is already in progress")
    errors = graph.validate_graph()
    if errors:
        raise HTTPException(status_code=400, detail={"validation_errors": errors})
    missing = runner.missing_credentials(graph)
    if missing:
        raise HTTPException(status_code=400, detail={"missing_credentials": missing})

    queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()

    def on_state(node_id: str, state: NodeExecutionState) -> None:
        queue.put_nowait(
            {"event": "state", "node_id": node_id, "state": state.model_dump(mode="json")}
        )

    async def execute() -> None:
        try:
            result = await runner.run(graph, request.input, on_state)
            queue.put_nowait(
                {
                    "event": "result",
                    "outputs": result.outputs,
                    "cancelled": result.cancelled,
                    "failed": result.failed,
                    "skipped": result.skipped,
                }
            )
        except RunInProgressError as e:
            queue.put_nowait({"event": "error", "error": str(e), "reason": e.reason})
        except FlowError as e:
            logger.error(f"Run failed before start: {e}")
            queue.put_nowait({"event": "error", "error": str(e), "reason": e.reason})
        finally:
            queue.put_nowait(None)

    async def event_stream():
        task = asyncio.create_task(execute())
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield _line(event)
        finally:
            if not task.done():
                logger.warning("Run stream closed by client; cancelling run")
                await runner.cancel()
                await asyncio.gather(task, return_exceptions=True)

    return StreamingResponse(event_stream(), media_type="application/x-ndjson")


@app.post("/runs/cancel")
async def cancel_run(runner: FlowRunner = Depends(get_runner)) -> dict[str, bool]:
    return {"cancelled": await runner.cancel()}


@app.post("/reset")
async def reset(runner: FlowRunner = Depends(get_runner)) -> dict[str, str]:
    await runner.reset()
    return {"status": "reset"}


@app.post("/inputs/{node_id}")
def resolve_input(
    node_id: str, request: InputRequest, runner: FlowRunner = Depends(get_runner)
) -> dict[str, str]:
    if request.text is None and request.buffer is None:
        raise HTTPException(status_code=400, detail="Provide either 'text' or 'buffer'")
    if not runner.resolve_input(node_id, request.payload()):
        raise HTTPException(status_code=404, detail=f"Node '{node_id}' is not awaiting input")
    return {"status": "delivered"}


@app.get("/preview")
def get_preview(runner: FlowRunner = Depends(get_runner)) -> list[dict[str, Any]]:
    return [entry.model_dump(mode="json") for entry in runner.projector.entries]


@app.get("/nodes")
def get_nodes(runner: FlowRunner = Depends(get_runner)) -> dict[str, Any]:
    return {
        "running": runner.is_running,
        "waiting_for_input": runner.pending_inputs.waiting_nodes(),
        "nodes": {nid: view.model_dump(mode="json") for nid, view in runner.projector.views.items()},
    }
