"""Runtime data models for flow execution.

These types are transient: they exist only for the duration of one run.
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError


class NodeStatus(str, Enum):
    """Lifecycle status of a node during one run"""

    PENDING = "pending"  # Not yet reached
    RUNNING = "running"  # Handler in progress (may repeat with partial output)
    SUCCESS = "success"  # Output produced
    ERROR = "error"  # Handler failed, cancelled or timed out, or a required upstream failed
    SKIPPED = "skipped"  # Never started: run cancelled

    @property
    def is_terminal(self) -> bool:
        return self in (NodeStatus.SUCCESS, NodeStatus.ERROR, NodeStatus.SKIPPED)


class OperationClass(str, Enum):
    """Operation classes used to select per-node deadlines."""

    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    CODE = "code"
    USER_INPUT = "user_input"  # Waits on a person; no deadline unless configured
    DEFAULT = "default"


class NodeExecutionState(BaseModel):
    """State event emitted by the scheduler for one node."""

    status: NodeStatus
    output: str | None = None
    error: str | None = None
    reason: str | None = None  # Machine-readable failure reason on ERROR/SKIPPED
    source_type: str | None = None  # Type of the upstream node feeding an output node

    @classmethod
    def pending(cls) -> NodeExecutionState:
        return cls(status=NodeStatus.PENDING)

    @classmethod
    def running(cls, output: str | None = None, source_type: str | None = None):
        return cls(status=NodeStatus.RUNNING, output=output, source_type=source_type)

    @classmethod
    def success(cls, output: str) -> NodeExecutionState:
        return cls(status=NodeStatus.SUCCESS, output=output)

    @classmethod
    def failed(cls, error: str, reason: str) -> NodeExecutionState:
        return cls(status=NodeStatus.ERROR, error=error, reason=reason)

    @classmethod
    def skipped(cls, error: str, reason: str) -> NodeExecutionState:
        return cls(status=NodeStatus.SKIPPED, error=error, reason=reason)


class BinaryEnvelope(BaseModel):
    """Binary payload carried over text-typed edges.

    Serialized as ``{"type": kind, "value": base64, "mimeType": media_type}``
    so image and audio outputs travel through the same string edges as text.
    """

    kind: Literal["image", "audio", "session"] = Field(alias="type")
    value: str
    mime_type: str = Field(default="application/octet-stream", alias="mimeType")

    model_config = {"populate_by_name": True}

    @classmethod
    def from_bytes(cls, kind: str, data: bytes, mime_type: str) -> BinaryEnvelope:
        return cls(kind=kind, value=base64.b64encode(data).decode("ascii"), mime_type=mime_type)

    def to_bytes(self) -> bytes:
        return base64.b64decode(self.value)

    def dumps(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def parse(cls, text: str | None) -> BinaryEnvelope | None:
        """Parse an envelope from an edge value, or None if it is plain text."""
        if not text or not text.lstrip().startswith("{"):
            return None
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            return None
        if not isinstance(data, dict) or not data.get("value"):
            return None
        try:
            return cls.model_validate(data)
        except ValidationError:
            return None

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.value}"


@dataclass
class NodeOutput:
    """Result of one node handler invocation."""

    output: str


@dataclass
class ExecutionContext:
    """Mutable per-run mapping from node id to its last produced output.

    Exclusively owned by one run. Concurrent branches write disjoint keys and a
    node's downstream walk only starts after its write, so no lock is needed.
    """

    initial_input: Any = None
    outputs: dict[str, str] = field(default_factory=dict)

    def get(self, node_id: str) -> str | None:
        return self.outputs.get(node_id)

    def set(self, node_id: str, output: str) -> None:
        self.outputs[node_id] = output

    def __contains__(self, node_id: str) -> bool:
        return node_id in self.outputs


@dataclass
class FlowResult:
    """Overall outcome of a run.

    ``outputs`` maps every terminal (output) node id to its resolved value, in
    the order the terminal nodes completed.
    """

    outputs: dict[str, str] = field(default_factory=dict)
    states: dict[str, NodeExecutionState] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def succeeded(self) -> list[str]:
        return [nid for nid, s in self.states.items() if s.status == NodeStatus.SUCCESS]

    @property
    def failed(self) -> list[str]:
        return [nid for nid, s in self.states.items() if s.status == NodeStatus.ERROR]

    @property
    def skipped(self) -> list[str]:
        return [nid for nid, s in self.states.items() if s.status == NodeStatus.SKIPPED]
