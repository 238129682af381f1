"""
LM Studio provider.

Speaks the OpenAI ``/v1/chat/completions`` wire protocol that LM Studio
(and other OpenAI-compatible local servers) expose.  Non-streaming tool
calls arrive fully formed in ``choices[0].message.tool_calls``; streamed
tool calls arrive as deltas and are put together by a
``ToolCallAssembler`` that lives for one stream.

Dependencies: ``httpx`` (async HTTP client).  No ``openai`` SDK needed.
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
from chatgate.llm.tool_call_assembler import ToolCallAssembler
from chatgate.llm.types import (
    ChatRequest,
    ChatResponse,
    ProviderConfig,
    ProviderKind,
    RawToolDelta,
    ResponseMetadata,
    StreamChunk,
    ToolCall,
    ToolCallStatus,
    new_call_id,
)

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "http://localhost:1234"
DEFAULT_MODEL = "local-model"


class LMStudioProvider(Provider):
    """
    Stream-capable provider for an OpenAI-API-compatible local server.

    Parameters
    ----------
    config:
        Backend description; defaults to ``default_config()``.  The
        endpoint is the server root, e.g. ``"http://localhost:1234"``.
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
            kind=ProviderKind.LMSTUDIO,
            name="LM Studio",
            description="Local models via LM Studio",
            endpoint=endpoint or DEFAULT_ENDPOINT,
            # LM Studio answers with whatever model is loaded.
            model=model or DEFAULT_MODEL,
            is_local=True,
            supports_streaming=True,
            supports_tool_calls=True,
        )

    # ------------------------------------------------------------------
    # Provider interface
    # ------------------------------------------------------------------

    async def is_available(self) -> bool:
        try:
            async with self._client(timeout=5.0) as client:
                resp = await client.get(f"{self._url}/v1/models", headers=self._build_headers())
            return resp.is_success
        except httpx.HTTPError as exc:
            logger.debug("LM Studio not reachable at %s: %s", self._url, exc)
            return False

    async def list_models(self) -> list[str]:
        try:
            async with self._client(timeout=10.0) as client:
                resp = await client.get(f"{self._url}/v1/models", headers=self._build_headers())
            if not resp.is_success:
                return []
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.debug("LM Studio model listing failed: %s", exc)
            return []
        if not isinstance(data, dict) or not isinstance(data.get("data"), list):
            logger.debug("LM Studio model listing has unexpected shape")
            return []
        return [m["id"] for m in data["data"] if isinstance(m, dict) and m.get("id")]

    async def chat(self, request: ChatRequest) -> ChatResponse:
        start = time.monotonic()
        body = self._build_body(request, stream=False)

        async with self._client() as client:
            data = await post_json(
                client,
                "LM Studio",
                f"{self._url}/v1/chat/completions",
                json=body,
                headers=self._build_headers(),
            )

        return self._parse_non_stream(
            data, body["model"], round((time.monotonic() - start) * 1000)
        )

    async def stream_chat(self, request: ChatRequest) -> StreamingChatResponse:
        body = self._build_body(request, stream=True)
        response, control = await open_stream(
            self._client(),
            "LM Studio streaming",
            f"{self._url}/v1/chat/completions",
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
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._config.api_key:
            headers["Authorization"] = f"Bearer {self._config.api_key}"
        return headers

    def _build_body(self, request: ChatRequest, stream: bool) -> dict:
        wire_messages: list[dict] = []
        if request.system_prompt:
            wire_messages.append({"role": "system", "content": request.system_prompt})
        wire_messages.extend(msg.to_wire() for msg in request.messages)

        body: dict = {
            "model": self._model_for(request),
            "messages": wire_messages,
            "max_tokens": self._max_tokens_for(request),
            "temperature": self._temperature_for(request),
            "stream": stream,
        }
        if stream:
            body["stream_options"] = {"include_usage": True}
        if request.tools and self.supports_tool_calls:
            body["tools"] = [t.to_openai_schema() for t in request.tools]
        logger.debug(
            "REQUEST: model=%s tools=%d messages=%d",
            body["model"],
            len(body.get("tools", [])),
            len(wire_messages),
        )
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
        """
        Parse Server-Sent Events from the response.

        Each SSE event has the form::

            data: {json}\\n\\n

        A non-null ``finish_reason`` marks the end of the reply, but the
        terminal chunk is held back until the trailing usage-only event,
        the sentinel ``data: [DONE]`` or the end of the body, so that it
        carries the completion token count.
        """
        assembler = ToolCallAssembler()
        finish: dict | None = None
        try:
            async for line in iter_lines(response, control):
                if not line.startswith("data:"):
                    continue
                data_str = line[len("data:"):].strip()

                if data_str == "[DONE]":
                    break

                try:
                    data = json.loads(data_str)
                except json.JSONDecodeError:
                    logger.warning("LM Studio: failed to parse SSE data: %s", data_str[:200])
                    continue
                if not isinstance(data, dict):
                    logger.warning("LM Studio: unexpected SSE data: %s", data_str[:200])
                    continue

                usage = data.get("usage") or {}
                choices = data.get("choices")
                if not choices:
                    if finish is not None and usage.get("completion_tokens") is not None:
                        finish["tokens"] = usage["completion_tokens"]
                        break
                    continue
                if finish is not None:
                    continue

                choice = choices[0]
                delta = choice.get("delta") or {}
                for raw_tc in delta.get("tool_calls") or []:
                    assembler.feed(self._raw_delta(raw_tc))

                text = delta.get("content") or ""
                chunk_model = data.get("model") or model
                if control.aborted:
                    return

                if choice.get("finish_reason") is not None:
                    finish = {
                        "model": chunk_model,
                        "content": text,
                        "tokens": usage.get("completion_tokens"),
                    }
                    if finish["tokens"] is not None:
                        break
                    continue

                if text:
                    yield StreamChunk(
                        content=text,
                        metadata=ResponseMetadata(model=chunk_model, provider=self.kind),
                    )

            if not control.aborted:
                yield self._terminal_chunk(assembler, **(finish or {"model": model}))
        finally:
            await control.aclose()

    @staticmethod
    def _raw_delta(raw_tc: dict) -> RawToolDelta:
        func = raw_tc.get("function") or {}
        args = func.get("arguments") or ""
        if isinstance(args, dict):
            args = json.dumps(args)
        return RawToolDelta(
            call_index=raw_tc.get("index"),
            id=raw_tc.get("id"),
            name=func.get("name") or "",
            args_delta=args,
        )

    def _terminal_chunk(
        self,
        assembler: ToolCallAssembler,
        model: str,
        content: str = "",
        tokens: int | None = None,
    ) -> StreamChunk:
        tool_calls = assembler.flush()
        if assembler.errors:
            logger.warning("Tool-call assembly errors: %s", assembler.errors)
        return StreamChunk(
            content=content,
            is_complete=True,
            tool_calls=tool_calls,
            metadata=ResponseMetadata(model=model, tokens=tokens, provider=self.kind),
        )

    # ------------------------------------------------------------------
    # Non-streaming
    # ------------------------------------------------------------------

    def _parse_non_stream(self, data: dict, model: str, duration_ms: int) -> ChatResponse:
        """Convert a non-streaming completion into a ``ChatResponse``."""
        choices = data.get("choices") or []
        message = (choices[0].get("message") or {}) if choices else {}

        tool_calls: list[ToolCall] = []
        for raw_tc in message.get("tool_calls") or []:
            func = raw_tc.get("function") or {}
            tool_calls.append(
                ToolCall(
                    id=raw_tc.get("id") or new_call_id(),
                    name=func.get("name", ""),
                    parameters=self._parse_arguments(func.get("arguments")),
                    status=ToolCallStatus.COMPLETED,
                )
            )

        usage = data.get("usage") or {}
        return ChatResponse(
            content=message.get("content") or "",
            tool_calls=tool_calls,
            metadata=ResponseMetadata(
                model=data.get("model") or model,
                tokens=usage.get("completion_tokens") or 0,
                provider=self.kind,
                duration_ms=duration_ms,
            ),
        )

    @staticmethod
    def _parse_arguments(raw: str | dict | None) -> dict:
        if isinstance(raw, dict):
            return raw
        try:
            args = json.loads(raw or "{}")
        except (json.JSONDecodeError, ValueError):
            logger.warning("LM Studio: unparseable tool arguments: %s", str(raw)[:200])
            return {}
        return args if isinstance(args, dict) else {}
