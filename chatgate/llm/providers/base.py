"""Abstract base class for chat providers."""

from __future__ import annotations

from abc import ABC, abstractmethod

import httpx

from chatgate.llm.stream import StreamingChatResponse
from chatgate.llm.types import ChatRequest, ChatResponse, ProviderConfig, ProviderKind


class Provider(ABC):
    """
    A provider adapts one backend wire protocol to the gateway contract.

    Implementations must support:
      - A best-effort reachability probe (``is_available``) that never raises.
      - Request/response chat (``chat``).
      - Streamed chat with abort (``stream_chat``).
      - Model listing (``list_models``) that returns ``[]`` on failure.

    Parameters
    ----------
    config:
        Immutable description of the backend instance.
    timeout:
        HTTP request timeout in seconds.
    transport:
        Optional httpx transport, used by tests to serve canned responses.
    """

    def __init__(
        self,
        config: ProviderConfig,
        *,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._timeout = timeout
        self._transport = transport

    # ------------------------------------------------------------------
    # Capability flags
    # ------------------------------------------------------------------

    @property
    def config(self) -> ProviderConfig:
        return self._config

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def kind(self) -> ProviderKind:
        return self._config.kind

    @property
    def supports_streaming(self) -> bool:
        return self._config.supports_streaming

    @property
    def supports_tool_calls(self) -> bool:
        return self._config.supports_tool_calls

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    @abstractmethod
    async def is_available(self) -> bool:
        """Probe the backend.  Returns ``False`` instead of raising."""
        ...

    @abstractmethod
    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Send *request* and wait for the complete response."""
        ...

    @abstractmethod
    async def stream_chat(self, request: ChatRequest) -> StreamingChatResponse:
        """
        Start a streamed response.

        HTTP errors are raised here, before the stream is handed back.
        The last chunk of a naturally finished stream has ``is_complete=True``.
        """
        ...

    @abstractmethod
    async def list_models(self) -> list[str]:
        """Return the model identifiers the backend offers, or ``[]``."""
        ...

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    def _client(self, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout or self._timeout,
            transport=self._transport,
        )

    def _model_for(self, request: ChatRequest) -> str:
        return request.model or self._config.model

    def _max_tokens_for(self, request: ChatRequest) -> int:
        return request.max_tokens or self._config.max_tokens

    def _temperature_for(self, request: ChatRequest) -> float:
        if request.temperature is not None:
            return request.temperature
        return self._config.temperature
