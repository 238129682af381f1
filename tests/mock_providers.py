"""
Mock chat providers for testing.

Provides canned responses so tests can exercise the manager and the tool
executor without hitting real backends.
"""

from __future__ import annotations

from typing import AsyncIterator

from chatgate.llm.providers.base import Provider
from chatgate.llm.stream import StreamControl, StreamingChatResponse
from chatgate.llm.types import (
    ChatRequest,
    ChatResponse,
    ProviderConfig,
    ProviderKind,
    ResponseMetadata,
    StreamChunk,
    ToolCall,
)


class MockProvider(Provider):
    """
    A provider that returns a pre-configured response and chunk sequence.

    Usage::

        chunks = [
            StreamChunk(content="Hello "),
            StreamChunk(content="world!"),
            StreamChunk(is_complete=True),
        ]
        provider = MockProvider(chunks=chunks)

    Parameters
    ----------
    response:
        Returned by ``chat``.
    chunks:
        The exact sequence of ``StreamChunk`` objects ``stream_chat`` yields.
    available:
        Result of ``is_available``.
    models:
        Result of ``list_models``.
    """

    def __init__(
        self,
        response: ChatResponse | None = None,
        chunks: list[StreamChunk] | None = None,
        *,
        kind: ProviderKind = ProviderKind.LMSTUDIO,
        available: bool = True,
        models: list[str] | None = None,
        supports_streaming: bool = True,
        supports_tool_calls: bool = True,
    ) -> None:
        super().__init__(
            ProviderConfig(
                kind=kind,
                name="Mock",
                model="mock-model",
                supports_streaming=supports_streaming,
                supports_tool_calls=supports_tool_calls,
            )
        )
        self._response = response or ChatResponse(content="")
        self._chunks = chunks or [StreamChunk(is_complete=True)]
        self._available = available
        self._models = models or []
        self.chat_calls = 0
        self.stream_calls = 0
        self.last_request: ChatRequest | None = None
        self.last_control: StreamControl | None = None

    async def is_available(self) -> bool:
        return self._available

    async def list_models(self) -> list[str]:
        return list(self._models)

    async def chat(self, request: ChatRequest) -> ChatResponse:
        self.chat_calls += 1
        self.last_request = request
        return self._response

    async def stream_chat(self, request: ChatRequest) -> StreamingChatResponse:
        self.stream_calls += 1
        self.last_request = request
        control = StreamControl()
        self.last_control = control
        return StreamingChatResponse(self._stream(control), control)

    async def _stream(self, control: StreamControl) -> AsyncIterator[StreamChunk]:
        for chunk in self._chunks:
            if control.aborted:
                return
            yield chunk


def make_text_provider(text: str, **kwargs) -> MockProvider:
    """
    Convenience: create a ``MockProvider`` that answers *text*, streamed one
    word at a time.
    """
    words = text.split(" ")
    chunks: list[StreamChunk] = []
    for i, word in enumerate(words):
        suffix = " " if i < len(words) - 1 else ""
        chunks.append(StreamChunk(content=word + suffix))
    chunks.append(StreamChunk(is_complete=True))
    return MockProvider(
        response=ChatResponse(content=text, metadata=ResponseMetadata(model="mock-model")),
        chunks=chunks,
        **kwargs,
    )


def make_tool_call_provider(
    tool_name: str,
    tool_args: dict,
    call_id: str = "call_abc123",
    content: str = "",
) -> MockProvider:
    """
    Convenience: a ``MockProvider`` whose answer carries one tool call.

    The streamed form announces the call on its own chunk and repeats the
    same object on the terminal chunk, the way the Claude adapter does.
    """

    def _call() -> ToolCall:
        return ToolCall(id=call_id, name=tool_name, parameters=dict(tool_args))

    streamed = _call()
    chunks = []
    if content:
        chunks.append(StreamChunk(content=content))
    chunks.append(StreamChunk(tool_calls=[streamed]))
    chunks.append(StreamChunk(is_complete=True, tool_calls=[streamed]))

    return MockProvider(
        response=ChatResponse(content=content, tool_calls=[_call()]),
        chunks=chunks,
    )
