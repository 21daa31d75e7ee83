"""Registry for nodes awaiting external input during a run.

A suspend-for-input node (e.g. audio capture) registers a waiter and the flow
walk pauses on that branch until the UI delivers the value with
``resolve_input``. ``clear()`` releases every waiter with ``None`` on cancel or
reset so no branch is left hanging.

At most one waiter per node id: a second ``wait_for_input`` while one is
outstanding raises ``PendingInputConflictError`` instead of silently
replacing the first waiter.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from nodeflow.core.errors import PendingInputConflictError

logger = logging.getLogger(__name__)


class AudioInputData(BaseModel):
    """Recording delivered by an audio-input node when capture completes."""

    buffer: str  # base64
    mime_type: str = "audio/webm"
    duration: float | None = None


@dataclass
class _Waiter:
    loop: asyncio.AbstractEventLoop
    future: asyncio.Future


def _deliver(future: asyncio.Future, value: Any) -> None:
    if not future.done():
        future.set_result(value)


class PendingInputRegistry:
    """Node id -> single outstanding waiter.

    ``resolve_input`` and ``clear`` may be called from any thread; the value is
    handed to the waiter's own event loop.
    """

    def __init__(self) -> None:
        self._waiters: dict[str, _Waiter] = {}
        self._lock = threading.Lock()

    async def wait_for_input(self, node_id: str) -> Any | None:
        """Suspend until data is delivered for ``node_id``; None if cleared."""
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        with self._lock:
            if node_id in self._waiters:
                raise PendingInputConflictError(
                    f"Node '{node_id}' is already awaiting input", node_id=node_id
                )
            self._waiters[node_id] = _Waiter(loop, future)
        logger.debug(f"Node '{node_id}' waiting for input")

        try:
            return await future
        finally:
            with self._lock:
                current = self._waiters.get(node_id)
                if current is not None and current.future is future:
                    del self._waiters[node_id]

    def resolve_input(self, node_id: str, data: Any) -> bool:
        """Deliver ``data`` to the waiter for ``node_id``.

        Returns False (no-op) if nothing is waiting.
        """
        with self._lock:
            waiter = self._waiters.pop(node_id, None)
        if waiter is None:
            logger.debug(f"No pending input for node '{node_id}'")
            return False
        self._hand_off(waiter, data)
        return True

    def is_waiting(self, node_id: str) -> bool:
        with self._lock:
            return node_id in self._waiters

    def waiting_nodes(self) -> list[str]:
        with self._lock:
            return list(self._waiters)

    def clear(self) -> None:
        """Release every outstanding waiter with None and empty the registry."""
        with self._lock:
            waiters = list(self._waiters.values())
            self._waiters.clear()
        if waiters:
            logger.info(f"Releasing {len(waiters)} pending input waiter(s)")
        for waiter in waiters:
            self._hand_off(waiter, None)

    @staticmethod
    def _hand_off(waiter: _Waiter, value: Any) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is waiter.loop:
            _deliver(waiter.future, value)
        elif not waiter.loop.is_closed():
            waiter.loop.call_soon_threadsafe(_deliver, waiter.future, value)
