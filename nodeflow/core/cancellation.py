"""Cancellation and timeout coordination.

A run owns one root ``CancellationToken`` tripped by user action. Each node
invocation composes a child token from it plus a deadline chosen by the node's
operation class. A child trips when its parent trips (reason ``cancelled``) or
when its deadline elapses (reason ``timeout``); once tripped it stays tripped.

Cancellation is cooperative: the scheduler checks the token at node entry, and
network-backed handlers wrap their transport call in ``token.guard(...)`` so an
in-flight call is aborted as soon as the token trips.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from contextlib import contextmanager
from typing import Any, Iterator, TypeVar

from nodeflow.core.config import EngineConfig
from nodeflow.core.errors import CancellationError, DeadlineExceededError, ErrorReason, FlowError
from nodeflow.core.graph_schema import operation_class_for

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Terminal stop signal. Must be used from the event loop thread."""

    def __init__(
        self,
        parent: CancellationToken | None = None,
        timeout: float | None = None,
        label: str = "run",
    ):
        self.label = label
        self.timeout = timeout
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._parent = parent
        self._children: list[CancellationToken] = []
        self._timer: asyncio.TimerHandle | None = None

        if parent is not None:
            parent._children.append(self)
            if parent.is_tripped:
                self._trip(ErrorReason.CANCELLED)
                return
        if timeout is not None:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(timeout, self._trip, ErrorReason.TIMEOUT)

    @property
    def is_tripped(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self) -> None:
        """Trip the token (and every child) with the ``cancelled`` reason."""
        self._trip(ErrorReason.CANCELLED)

    def cancel_threadsafe(self, loop: asyncio.AbstractEventLoop) -> None:
        loop.call_soon_threadsafe(self.cancel)

    def _trip(self, reason: str) -> None:
        if self._reason is not None:
            return
        self._reason = reason
        self._event.set()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if reason == ErrorReason.TIMEOUT:
            logger.debug(f"Token '{self.label}' deadline of {self.timeout}s exceeded")
        for child in list(self._children):
            child._trip(ErrorReason.CANCELLED)

    def child(self, timeout: float | None = None, label: str | None = None) -> CancellationToken:
        return CancellationToken(parent=self, timeout=timeout, label=label or self.label)

    def dispose(self) -> None:
        """Stop the deadline timer and detach from the parent."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._parent is not None and self in self._parent._children:
            self._parent._children.remove(self)

    def error(self, node_id: str | None = None) -> FlowError:
        """The error matching the trip reason."""
        if self._reason == ErrorReason.TIMEOUT:
            return DeadlineExceededError(
                f"Operation timed out after {self.timeout}s", node_id=node_id
            )
        return CancellationError("Execution cancelled", node_id=node_id)

    def raise_if_tripped(self, node_id: str | None = None) -> None:
        if self.is_tripped:
            raise self.error(node_id)

    async def wait(self) -> str:
        await self._event.wait()
        return self._reason or ErrorReason.CANCELLED

    async def guard(self, awaitable: Awaitable[T], node_id: str | None = None) -> T:
        """Await ``awaitable`` unless the token trips first.

        If the token is already tripped the awaitable is never started. If it
        trips mid-flight the underlying task is cancelled and the matching
        cancellation or deadline error is raised.
        """
        if self.is_tripped:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise self.error(node_id)

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        # Let the aborted call unwind its transport before surfacing the error
        await asyncio.gather(task, return_exceptions=True)
        raise self.error(node_id)

    async def sleep(self, delay: float, node_id: str | None = None) -> None:
        if delay <= 0:
            self.raise_if_tripped(node_id)
            return
        await self.guard(asyncio.sleep(delay), node_id=node_id)


class TimeoutCoordinator:
    """Composes the run token with per-operation-class deadlines."""

    def __init__(self, config: EngineConfig | None = None):
        self.config = config or EngineConfig()

    def compose(self, token: CancellationToken, timeout: float | None) -> CancellationToken:
        return token.child(timeout=timeout)

    def timeout_for_node(self, node_type: str) -> float | None:
        return self.config.timeout_for(operation_class_for(node_type))

    @contextmanager
    def node_scope(self, token: CancellationToken, node_id: str, node_type: str) -> Iterator[Any]:
        """Child token for one node invocation, disposed on exit."""
        child = token.child(timeout=self.timeout_for_node(node_type), label=node_id)
        try:
            yield child
        finally:
            child.dispose()
