"""
Claude API provider.

Talks to the Anthropic Messages API directly over HTTP.  Requests are
authenticated with a static ``x-api-key`` header.  Streams are
server-sent events whose ``data`` payloads carry a ``type`` field; only
``content_block_delta``, ``content_block_start`` and ``message_stop`` drive
chunk production.

Tool-use blocks announced in a stream open a ToolCall with empty
parameters: ``input_json_delta`` fragments are not folded back into the
call.

Dependencies: ``httpx``.  No ``anthropic`` SDK needed.
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
    ToolCall,
    ToolCallStatus,
    new_call_id,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.anthropic.com/v1"
DEFAULT_MODEL = "claude-3-5-sonnet-20240620"
ANTHROPIC_VERSION = "2023-06-01"


class ClaudeProvider(Provider):
    """
    Provider for the Anthropic Messages API.

    Parameters
    ----------
    config:
        Backend description.  ``config.api_key`` is required;
        ``config.endpoint`` overrides the API base URL (proxies).
    timeout:
        HTTP request timeout in seconds.
    transport:
        Optional httpx transport (tests).
    """

    def __init__(
        self,
        config: ProviderConfig,
        *,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not config.api_key:
            raise ValueError("Claude API provider requires an API key")
        super().__init__(config, timeout=timeout, transport=transport)
        self._url = (self._config.endpoint or DEFAULT_BASE_URL).rstrip("/")

    @staticmethod
    def default_config(
        api_key: str,
        model: str | None = None,
        base_url: str | None = None,
    ) -> ProviderConfig:
        return ProviderConfig(
            kind=ProviderKind.CLAUDE_API,
            name="Claude API",
            description="Anthropic Claude via direct API access",
            endpoint=base_url or DEFAULT_BASE_URL,
            api_key=api_key,
            model=model or DEFAULT_MODEL,
            is_local=False,
            supports_streaming=True,
            supports_tool_calls=True,
        )

    # ------------------------------------------------------------------
    # Provider interface
    # ------------------------------------------------------------------

    async def is_available(self) -> bool:
        try:
            async with self._client(timeout=10.0) as client:
                resp = await client.get(f"{self._url}/models", headers=self._build_headers())
        except httpx.HTTPError as exc:
            logger.debug("Claude API not reachable: %s", exc)
            return False
        return resp.status_code != 401

    async def list_models(self) -> list[str]:
        try:
            async with self._client(timeout=10.0) as client:
                resp = await client.get(f"{self._url}/models", headers=self._build_headers())
            if not resp.is_success:
                return []
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.debug("Claude model listing failed: %s", exc)
            return []
        if not isinstance(data, dict) or not isinstance(data.get("data"), list):
            logger.debug("Claude model listing has unexpected shape")
            return []
        return [m["id"] for m in data["data"] if isinstance(m, dict) and m.get("id")]

    async def chat(self, request: ChatRequest) -> ChatResponse:
        start = time.monotonic()
        body = self._build_body(request, stream=False)

        async with self._client() as client:
            data = await post_json(
                client,
                "Claude API",
                f"{self._url}/messages",
                json=body,
                headers=self._build_headers(),
            )

        blocks = data.get("content") or []
        tool_calls = [
            ToolCall(
                id=block.get("id") or new_call_id("toolu"),
                name=block.get("name", ""),
                parameters=block.get("input") or {},
                # A tool_use block carries the whole call at once.
                status=ToolCallStatus.COMPLETED,
            )
            for block in blocks
            if block.get("type") == "tool_use"
        ]
        text = "\n".join(
            block.get("text", "") for block in blocks if block.get("type") == "text"
        )

        usage = data.get("usage") or {}
        return ChatResponse(
            content=text,
            tool_calls=tool_calls,
            metadata=ResponseMetadata(
                model=data.get("model") or body["model"],
                tokens=usage.get("output_tokens") or 0,
                provider=self.kind,
                duration_ms=round((time.monotonic() - start) * 1000),
            ),
        )

    async def stream_chat(self, request: ChatRequest) -> StreamingChatResponse:
        body = self._build_body(request, stream=True)
        response, control = await open_stream(
            self._client(),
            "Claude API streaming",
            f"{self._url}/messages",
            json=body,
            headers=self._build_headers(),
        )
        return StreamingChatResponse(
            self._stream(response, control, body["model"]), control
        )

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def _build_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self._config.api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
        }

    def _build_body(self, request: ChatRequest, stream: bool) -> dict:
        body: dict = {
            "model": self._model_for(request),
            "max_tokens": self._max_tokens_for(request),
            "messages": [msg.to_wire() for msg in request.messages],
            "temperature": self._temperature_for(request),
        }
        if stream:
            body["stream"] = True
        if request.system_prompt:
            body["system"] = request.system_prompt
        if request.tools:
            body["tools"] = [t.to_anthropic_schema() for t in request.tools]
        return body

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def _stream(
        self,
        response: httpx.Response,
        control: StreamControl,
        model: str,
    ) -> AsyncIterator[StreamChunk]:
        tool_calls: list[ToolCall] = []
        tokens: int | None = None
        try:
            async for line in iter_lines(response, control):
                # "event:" lines repeat the type already present in the data.
                if not line.startswith("data:"):
                    continue
                data_str = line[len("data:"):].strip()
                if data_str == "[DONE]":
                    continue

                try:
                    data = json.loads(data_str)
                except json.JSONDecodeError:
                    logger.warning("Claude API: failed to parse SSE data: %s", data_str[:200])
                    continue
                if not isinstance(data, dict):
                    logger.warning("Claude API: unexpected SSE data: %s", data_str[:200])
                    continue

                chunk: StreamChunk | None = None
                event_type = data.get("type")

                if event_type == "content_block_delta":
                    text = (data.get("delta") or {}).get("text")
                    if text:
                        chunk = StreamChunk(content=text, metadata=self._meta(model))
                elif event_type == "content_block_start":
                    block = data.get("content_block") or {}
                    if block.get("type") == "tool_use":
                        call = ToolCall(
                            id=block.get("id") or new_call_id("toolu"),
                            name=block.get("name", ""),
                            parameters={},
                            status=ToolCallStatus.EXECUTING,
                        )
                        tool_calls.append(call)
                        chunk = StreamChunk(tool_calls=[call], metadata=self._meta(model))
                elif event_type == "message_delta":
                    usage = data.get("usage") or {}
                    tokens = usage.get("output_tokens", tokens)
                elif event_type == "error":
                    logger.warning("Claude API: stream reported error: %s", data.get("error"))
                elif event_type == "message_stop":
                    chunk = StreamChunk(
                        is_complete=True,
                        tool_calls=list(tool_calls),
                        metadata=self._meta(model, tokens),
                    )

                if control.aborted:
                    return
                if chunk is not None:
                    yield chunk
                    if chunk.is_complete:
                        return

            if not control.aborted:
                yield StreamChunk(
                    is_complete=True,
                    tool_calls=list(tool_calls),
                    metadata=self._meta(model, tokens),
                )
        finally:
            await control.aclose()

    def _meta(self, model: str, tokens: int | None = None) -> ResponseMetadata:
        return ResponseMetadata(model=model, tokens=tokens, provider=self.kind)
