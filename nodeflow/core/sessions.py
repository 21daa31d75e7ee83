"""Long-lived duplex sessions started by realtime nodes.

A realtime node starts its session and returns immediately; the session keeps
running beside the flow walk as a side resource until it ends on its own or
the registry closes it (run cancel or reset).
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

SessionFactory = Callable[[str, dict[str, Any], dict[str, str]], Awaitable[None]]


@dataclass
class SessionHandle:
    session_id: str
    node_id: str
    task: asyncio.Task
    config: dict[str, Any] = field(default_factory=dict)

    @property
    def active(self) -> bool:
        return not self.task.done()


async def idle_session(node_id: str, config: dict[str, Any], inputs: dict[str, str]) -> None:
    """Default factory: holds the session open until it is closed."""
    await asyncio.Event().wait()


class SessionRegistry:
    """Tracks running sessions by id."""

    def __init__(self, factory: SessionFactory | None = None):
        self.factory = factory or idle_session
        self._sessions: dict[str, SessionHandle] = {}

    def start(self, node_id: str, config: dict[str, Any], inputs: dict[str, str]) -> SessionHandle:
        session_id = uuid.uuid4().hex
        task = asyncio.create_task(
            self.factory(node_id, config, inputs), name=f"session-{node_id}"
        )
        handle = SessionHandle(session_id=session_id, node_id=node_id, task=task, config=config)
        self._sessions[session_id] = handle
        task.add_done_callback(lambda t: self._on_done(session_id, t))
        logger.info(f"Started realtime session {session_id} for node '{node_id}'")
        return handle

    def _on_done(self, session_id: str, task: asyncio.Task) -> None:
        self._sessions.pop(session_id, None)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Realtime session {session_id} failed: {exc}")

    def get(self, session_id: str) -> SessionHandle | None:
        return self._sessions.get(session_id)

    def active_sessions(self) -> list[SessionHandle]:
        return [h for h in self._sessions.values() if h.active]

    async def close(self, session_id: str) -> None:
        handle = self._sessions.pop(session_id, None)
        if handle is None:
            return
        handle.task.cancel()
        await asyncio.gather(handle.task, return_exceptions=True)

    async def close_all(self) -> None:
        handles = list(self._sessions.values())
        self._sessions.clear()
        for handle in handles:
            handle.task.cancel()
        if handles:
            await asyncio.gather(*(h.task for h in handles), return_exceptions=True)
            logger.info(f"Closed {len(handles)} realtime session(s)")
