"""
Ollama provider.

Talks to a local Ollama instance via its ``/api/chat`` endpoint.  Streams
arrive as newline-delimited JSON objects.  This backend is configured
without tool calling, so tool definitions are never sent.

Dependencies: ``httpx``.
"""

from __future__ import annotations

import json
import logging
import time
from typing import AsyncIterator

import httpx

from chatgate.llm.providers.base import Provider
from chatgate.llm.stream import (
    StreamControl,
    StreamingChatResponse,
    iter_lines,
    open_stream,
    post_json,
)
from chatgate.llm.types import (
    ChatRequest,
    ChatResponse,
    ProviderConfig,
    ProviderKind,
    ResponseMetadata,
    StreamChunk,
)

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "http://localhost:11434"
DEFAULT_MODEL = "llama3.1"


class OllamaProvider(Provider):
    """
    Provider for a local `Ollama <https://ollama.com>`_ instance.

    Parameters
    ----------
    config:
        Backend description; defaults to ``default_config()``.
    timeout:
        HTTP request timeout in seconds.
    transport:
        Optional httpx transport (tests).
    """

    def __init__(
        self,
        config: ProviderConfig | None = None,
        *,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(config or self.default_config(), timeout=timeout, transport=transport)
        self._url = (self._config.endpoint or DEFAULT_ENDPOINT).rstrip("/")

    @staticmethod
    def default_config(
        endpoint: str | None = None,
        model: str | None = None,
    ) -> ProviderConfig:
        return ProviderConfig(
            kind=ProviderKind.OLLAMA,
            name="Ollama",
            description="Local models via Ollama",
            endpoint=endpoint or DEFAULT_ENDPOINT,
            model=model or DEFAULT_MODEL,
            is_local=True,
            supports_streaming=True,
            supports_tool_calls=False,
        )

    # ------------------------------------------------------------------
    # Provider interface
    # ------------------------------------------------------------------

    async def is_available(self) -> bool:
        try:
            async with self._client(timeout=5.0) as client:
                resp = await client.get(f"{self._url}/api/tags")
            return resp.is_success
        except httpx.HTTPError as exc:
            logger.debug("Ollama not reachable at %s: %s", self._url, exc)
            return False

    async def list_models(self) -> list[str]:
        try:
            async with self._client(timeout=10.0) as client:
                resp = await client.get(f"{self._url}/api/tags")
            if not resp.is_success:
                return []
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.debug("Ollama model listing failed: %s", exc)
            return []
        if not isinstance(data, dict) or not isinstance(data.get("models"), list):
            logger.debug("Ollama model listing has unexpected shape")
            return []
        return [m["name"] for m in data["models"] if isinstance(m, dict) and m.get("name")]

    async def chat(self, request: ChatRequest) -> ChatResponse:
        start = time.monotonic()
        body = self._build_body(request, stream=False)

        async with self._client() as client:
            data = await post_json(client, "Ollama", f"{self._url}/api/chat", json=body)

        message = data.get("message") or {}
        return ChatResponse(
            content=message.get("content") or "",
            tool_calls=[],
            metadata=ResponseMetadata(
                model=data.get("model") or body["model"],
                tokens=data.get("eval_count") or 0,
                provider=self.kind,
                duration_ms=round((time.monotonic() - start) * 1000),
            ),
        )

    async def stream_chat(self, request: ChatRequest) -> StreamingChatResponse:
        body = self._build_body(request, stream=True)
        response, control = await open_stream(
            self._client(), "Ollama streaming", f"{self._url}/api/chat", json=body
        )
        return StreamingChatResponse(
            self._stream(response, control, body["model"]), control
        )

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def _build_body(self, request: ChatRequest, stream: bool) -> dict:
        wire_messages: list[dict] = []
        if request.system_prompt:
            wire_messages.append({"role": "system", "content": request.system_prompt})
        wire_messages.extend(msg.to_wire() for msg in request.messages)

        return {
            "model": self._model_for(request),
            "messages": wire_messages,
            "stream": stream,
            "options": {
                "temperature": self._temperature_for(request),
                "num_predict": self._max_tokens_for(request),
            },
        }

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def _stream(
        self,
        response: httpx.Response,
        control: StreamControl,
        model: str,
    ) -> AsyncIterator[StreamChunk]:
        """
        Each line of the response body is a complete JSON object::

            {"message": {"content": "..."}, "done": false}
        """
        try:
            async for line in iter_lines(response, control):
                try:
                    data = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Ollama: failed to parse line: %s", line[:200])
                    continue
                if not isinstance(data, dict):
                    logger.warning("Ollama: unexpected line: %s", line[:200])
                    continue
                if data.get("error"):
                    logger.warning("Ollama: stream reported error: %s", data["error"])

                chunk = self._data_to_chunk(data, model)
                if control.aborted:
                    return
                if chunk.content or chunk.is_complete:
                    yield chunk
                if chunk.is_complete:
                    return

            if not control.aborted:
                # Stream ended without a done line.
                yield StreamChunk(
                    is_complete=True,
                    metadata=ResponseMetadata(model=model, provider=self.kind),
                )
        finally:
            await control.aclose()

    def _data_to_chunk(self, data: dict, model: str) -> StreamChunk:
        """Convert a single Ollama JSON object to a ``StreamChunk``."""
        message = data.get("message") or {}
        return StreamChunk(
            content=message.get("content") or "",
            is_complete=bool(data.get("done", False)),
            metadata=ResponseMetadata(
                model=data.get("model") or model,
                tokens=data.get("eval_count"),
                provider=self.kind,
            ),
        )
