"""Node executor dispatch.

Every node type is served by a handler behind one signature::

    await handler.execute(node, inputs, context, token, on_partial=None) -> NodeOutput

``inputs`` maps the node's port names to resolved upstream values (or inline
fallbacks). Handlers raise on failure; the scheduler converts errors into a
node-scoped error state. Network-backed handlers pass the cancellation token
down to the transport so an in-flight call aborts as soon as it trips.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from nodeflow.core.cancellation import CancellationToken
from nodeflow.core.errors import CancellationError, FlowValidationError
from nodeflow.core.graph_schema import DEFAULT_PORT, Node, NodeType
from nodeflow.core.models import BinaryEnvelope, ExecutionContext, NodeOutput
from nodeflow.core.pending_inputs import AudioInputData, PendingInputRegistry
from nodeflow.core.providers import ProviderClient, ProviderRequest
from nodeflow.core.sessions import SessionRegistry
from nodeflow.sandbox.evaluator import SandboxedEvaluator

logger = logging.getLogger(__name__)

PartialCallback = Callable[[str], Awaitable[None] | None]

DEFAULT_TEXT_MODEL = ("openai", "gpt-5.2-2025-12-11")
DEFAULT_IMAGE_MODEL = ("google", "gemini-2.5-flash-image")

TEXT_OPTION_KEYS = ("verbosity", "thinking", "temperature", "maxTokens")
IMAGE_OPTION_KEYS = ("outputFormat", "size", "quality", "partialImages", "aspectRatio")


def _options(node: Node, keys: tuple[str, ...]) -> dict[str, Any]:
    return {k: node.data[k] for k in keys if node.data.get(k) is not None}


class NodeHandler(ABC):
    """Base class for per-type handlers."""

    @abstractmethod
    async def execute(
        self,
        node: Node,
        inputs: dict[str, str],
        context: ExecutionContext,
        token: CancellationToken,
        on_partial: PartialCallback | None = None,
    ) -> NodeOutput:
        """Produce the node output or raise a FlowError."""


class PassthroughHandler(NodeHandler):
    """Entry and exit nodes: forward the value unchanged.

    An input node emits the run's initial input (or, for a mapping of initial
    inputs, the entry under its node id), falling back to its inline value.
    """

    async def execute(self, node, inputs, context, token, on_partial=None):
        if node.type == NodeType.INPUT.value:
            initial = context.initial_input
            if isinstance(initial, dict):
                initial = initial.get(node.id)
            if initial is None:
                initial = node.data.get("inputValue", node.data.get("input_value", ""))
            return NodeOutput(output=str(initial))
        value = inputs.get(DEFAULT_PORT)
        if value is None and inputs:
            value = next(iter(inputs.values()))
        return NodeOutput(output=value or "")


class TextGenerationHandler(NodeHandler):
    """Prompt nodes: one text completion from the provider backend.

    ``prompt`` is the user message, ``system`` the system prompt, and an
    optional ``image`` envelope is attached for vision-capable models.
    Streamed chunks are surfaced through ``on_partial``.
    """

    def __init__(self, provider: ProviderClient):
        self.provider = provider

    async def execute(self, node, inputs, context, token, on_partial=None):
        provider = node.data.get("provider") or DEFAULT_TEXT_MODEL[0]
        model = node.data.get("model") or DEFAULT_TEXT_MODEL[1]

        request_inputs: dict[str, Any] = {"prompt": inputs.get("prompt", "")}
        if inputs.get("system"):
            request_inputs["system"] = inputs["system"].strip()
        image = BinaryEnvelope.parse(inputs.get("image"))
        if image is not None and image.kind == "image":
            request_inputs["image"] = image.model_dump(by_alias=True)

        request = ProviderRequest(
            operation=NodeType.PROMPT.value,
            provider=provider,
            model=model,
            inputs=request_inputs,
            options=_options(node, TEXT_OPTION_KEYS),
            node_id=node.id,
        )
        response = await token.guard(
            self.provider.execute(request, token, on_chunk=on_partial), node_id=node.id
        )
        return NodeOutput(output=response.output)


class ImageGenerationHandler(NodeHandler):
    """Image nodes: generate an image and emit it as a base64 envelope."""

    def __init__(self, provider: ProviderClient):
        self.provider = provider

    async def execute(self, node, inputs, context, token, on_partial=None):
        provider = node.data.get("provider") or DEFAULT_IMAGE_MODEL[0]
        model = node.data.get("model") or DEFAULT_IMAGE_MODEL[1]

        request_inputs: dict[str, Any] = {"prompt": inputs.get("prompt", "")}
        source = BinaryEnvelope.parse(inputs.get("image"))
        if source is not None and source.kind == "image":
            request_inputs["image"] = source.model_dump(by_alias=True)

        request = ProviderRequest(
            operation=NodeType.IMAGE.value,
            provider=provider,
            model=model,
            inputs=request_inputs,
            options=_options(node, IMAGE_OPTION_KEYS),
            node_id=node.id,
        )
        response = await token.guard(self.provider.execute(request, token), node_id=node.id)
        envelope = BinaryEnvelope.parse(response.output)
        if envelope is None:
            # Bare base64 payload
            fmt = node.data.get("outputFormat") or "png"
            envelope = BinaryEnvelope(kind="image", value=response.output, mime_type=f"image/{fmt}")
        return NodeOutput(output=envelope.dumps())


class CodeTransformHandler(NodeHandler):
    """Code nodes: run the node's previously generated code in the sandbox."""

    def __init__(self, evaluator: SandboxedEvaluator):
        self.evaluator = evaluator

    async def execute(self, node, inputs, context, token, on_partial=None):
        code = node.data.get("code")
        if not isinstance(code, str) or not code.strip():
            raise FlowValidationError(
                f"Node '{node.label}' has no generated code to run", node_id=node.id
            )
        output = await self.evaluator.evaluate(code, inputs, token=token, node_id=node.id)
        return NodeOutput(output=output)


class SuspendForInputHandler(NodeHandler):
    """Audio-input nodes: pause the branch until a recording is delivered."""

    def __init__(self, registry: PendingInputRegistry):
        self.registry = registry

    async def execute(self, node, inputs, context, token, on_partial=None):
        data = await token.guard(self.registry.wait_for_input(node.id), node_id=node.id)
        if data is None:
            raise CancellationError("Input was cancelled", node_id=node.id)
        if isinstance(data, str):
            return NodeOutput(output=data)
        if isinstance(data, dict):
            data = AudioInputData.model_validate(data)
        if isinstance(data, AudioInputData):
            envelope = BinaryEnvelope(kind="audio", value=data.buffer, mime_type=data.mime_type)
            return NodeOutput(output=envelope.dumps())
        raise FlowValidationError(
            f"Unsupported input payload for node '{node.label}': {type(data).__name__}",
            node_id=node.id,
        )


class RealtimeSessionHandler(NodeHandler):
    """Realtime nodes: start a duplex session and return its handle at once.

    The session is a side resource; the walk does not wait for it to end.
    """

    SESSION_KEYS = ("instructions", "voice", "vadMode", "model", "provider")

    def __init__(self, sessions: SessionRegistry):
        self.sessions = sessions

    async def execute(self, node, inputs, context, token, on_partial=None):
        token.raise_if_tripped(node.id)
        config = {k: node.data[k] for k in self.SESSION_KEYS if k in node.data}
        if inputs.get("instructions"):
            config["instructions"] = inputs["instructions"]
        handle = self.sessions.start(node.id, config, inputs)
        envelope = BinaryEnvelope(
            kind="session", value=handle.session_id, mime_type="application/x-realtime-session"
        )
        return NodeOutput(output=envelope.dumps())


class NodeExecutorDispatch:
    """Routes a node to the handler registered for its type."""

    def __init__(
        self,
        provider: ProviderClient,
        evaluator: SandboxedEvaluator | None = None,
        pending_inputs: PendingInputRegistry | None = None,
        sessions: SessionRegistry | None = None,
    ):
        self.provider = provider
        self.evaluator = evaluator or SandboxedEvaluator()
        self.pending_inputs = pending_inputs or PendingInputRegistry()
        self.sessions = sessions or SessionRegistry()

        passthrough = PassthroughHandler()
        self._default = passthrough
        self._handlers: dict[str, NodeHandler] = {
            NodeType.INPUT.value: passthrough,
            NodeType.OUTPUT.value: passthrough,
            NodeType.PROMPT.value: TextGenerationHandler(provider),
            NodeType.IMAGE.value: ImageGenerationHandler(provider),
            NodeType.CODE.value: CodeTransformHandler(self.evaluator),
            NodeType.AUDIO_INPUT.value: SuspendForInputHandler(self.pending_inputs),
            NodeType.REALTIME.value: RealtimeSessionHandler(self.sessions),
        }

    def register(self, node_type: str, handler: NodeHandler) -> None:
        self._handlers[node_type] = handler

    def handler_for(self, node_type: str) -> NodeHandler:
        return self._handlers.get(node_type, self._default)

    async def execute(
        self,
        node: Node,
        inputs: dict[str, str],
        context: ExecutionContext,
        token: CancellationToken,
        on_partial: PartialCallback | None = None,
    ) -> NodeOutput:
        handler = self.handler_for(node.type)
        logger.debug(f"Dispatching node '{node.id}' ({node.type}) to {type(handler).__name__}")
        return await handler.execute(node, inputs, context, token, on_partial=on_partial)
