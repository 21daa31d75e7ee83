"""Transport to the AI provider backend.

One request per node invocation. The backend answers either with a complete
JSON ``{"output": ...}`` body or with a streamed ``text/plain`` body whose
chunks are forwarded as partial output. Non-success responses carry
``{"error": ..., "reason": ...}``.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, Field

from nodeflow.core.cancellation import CancellationToken
from nodeflow.core.config import ProviderSettings
from nodeflow.core.errors import NetworkError

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], Awaitable[None] | None]


class ProviderRequest(BaseModel):
    """Payload sent to the provider backend for one node invocation."""

    operation: str  # "prompt", "image", ...
    provider: str
    model: str
    inputs: dict[str, Any] = Field(default_factory=dict)
    options: dict[str, Any] = Field(default_factory=dict)
    node_id: str | None = None


class ProviderResponse(BaseModel):
    output: str


class ProviderClient(Protocol):
    """Anything that can serve provider requests."""

    requires_api_keys: bool

    async def execute(
        self,
        request: ProviderRequest,
        token: CancellationToken,
        on_chunk: ChunkCallback | None = None,
    ) -> ProviderResponse: ...


async def _emit(on_chunk: ChunkCallback | None, text: str) -> None:
    if on_chunk is None:
        return
    result = on_chunk(text)
    if result is not None:
        await result


class HttpProviderClient:
    """Provider client speaking JSON/streamed text over HTTP via httpx.

    The request is raced against the cancellation token: when the token trips
    the httpx call is cancelled and the token's error (timeout or cancelled)
    is raised instead of a network error.
    """

    EXECUTE_PATH = "/api/execute"

    def __init__(
        self,
        settings: ProviderSettings | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.settings = settings or ProviderSettings()
        self._client = client
        self._owns_client = client is None
        self.requires_api_keys = self.settings.require_keys

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            # Deadlines come from the cancellation token, not httpx
            self._client = httpx.AsyncClient(base_url=self.settings.base_url, timeout=None)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _headers(self, provider: str) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        key = self.settings.api_keys.get(provider)
        if key:
            headers["X-Provider-Key"] = key
        return headers

    async def execute(
        self,
        request: ProviderRequest,
        token: CancellationToken,
        on_chunk: ChunkCallback | None = None,
    ) -> ProviderResponse:
        return await token.guard(self._send(request, on_chunk), node_id=request.node_id)

    async def _send(self, request: ProviderRequest, on_chunk: ChunkCallback | None) -> ProviderResponse:
        client = self._get_client()
        body = request.model_dump(exclude={"node_id"})
        logger.debug(f"Provider request {request.operation} {request.provider}/{request.model}")
        try:
            async with client.stream(
                "POST",
                self.EXECUTE_PATH,
                json=body,
                headers=self._headers(request.provider),
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise self._failure(response, request.node_id)

                content_type = response.headers.get("content-type", "")
                if content_type.startswith("application/json"):
                    await response.aread()
                    return self._parse_json(response, request.node_id)

                text = ""
                async for chunk in response.aiter_text():
                    if not chunk:
                        continue
                    text += chunk
                    await _emit(on_chunk, text)
                return ProviderResponse(output=text)
        except httpx.HTTPError as e:
            raise NetworkError(
                f"Provider request failed: {e}", node_id=request.node_id
            ) from e

    @staticmethod
    def _parse_json(response: httpx.Response, node_id: str | None) -> ProviderResponse:
        try:
            data = response.json()
        except ValueError as e:
            raise NetworkError("Provider returned invalid JSON", node_id=node_id) from e
        if not isinstance(data, dict) or "output" not in data:
            raise NetworkError("Provider response missing 'output'", node_id=node_id)
        output = data["output"]
        return ProviderResponse(output=output if isinstance(output, str) else str(output))

    @staticmethod
    def _failure(response: httpx.Response, node_id: str | None) -> NetworkError:
        message = f"Provider returned HTTP {response.status_code}"
        remote_reason = None
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict):
            message = str(data.get("error") or message)
            remote_reason = data.get("reason")
        return NetworkError(
            message,
            node_id=node_id,
            status_code=response.status_code,
            remote_reason=remote_reason,
        )
