"""
Provider manager -- holds the configured providers and resolves tool calls.

The manager is the primary entry point for callers that need a chat
response.  It:

  1. Resolves which provider handles a call (explicit id, else the active one).
  2. Attaches the default tool catalog when the provider supports tools and
     the caller left ``tools`` unset.
  3. Runs every tool call the provider returns through the ``ToolExecutor``
     before handing the response (or stream chunk) back, so callers never
     see a call that is still ``executing``.

A process-wide instance is managed with ``initialize()`` / ``shutdown()``;
nothing is registered or probed at import time.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, AsyncIterator, Mapping

import httpx

from chatgate.llm.errors import CapabilityError, NoProviderError
from chatgate.llm.providers.base import Provider
from chatgate.llm.providers.claude import ClaudeProvider
from chatgate.llm.providers.lmstudio import LMStudioProvider
from chatgate.llm.providers.ollama import OllamaProvider
from chatgate.llm.stream import StreamingChatResponse
from chatgate.llm.types import (
    ChatRequest,
    ChatResponse,
    ProviderKind,
    StreamChunk,
    ToolCall,
)
from chatgate.tools.catalog import check_definition, default_tools
from chatgate.tools.executor import ToolExecutor

if TYPE_CHECKING:
    from chatgate.config import ChatgateConfig

logger = logging.getLogger(__name__)

CLAUDE_DEFAULT_ID = "claude-default"
OLLAMA_DEFAULT_ID = "ollama-default"
LMSTUDIO_DEFAULT_ID = "lmstudio-default"


@dataclass
class ProviderStatus:
    id: str
    provider: Provider
    available: bool


@dataclass
class ProviderStats:
    total: int
    active_provider_id: str | None
    provider_types: dict[ProviderKind, int]


class ProviderManager:
    """
    Routes chat requests to a registered provider and executes tool calls.

    The registry is mutated only through the add/remove/select methods and
    assumes a single writer.
    """

    def __init__(self, executor: ToolExecutor | None = None) -> None:
        self._providers: dict[str, Provider] = {}
        self._active: str | None = None
        self.executor = executor or ToolExecutor()

    # ------------------------------------------------------------------
    # Provider management
    # ------------------------------------------------------------------

    def add_provider(self, provider_id: str, provider: Provider) -> None:
        """Register *provider* under *provider_id*.  Overwrites any existing entry."""
        self._providers[provider_id] = provider
        logger.info("Registered provider %s (%s)", provider_id, provider.kind.value)

    def add_claude_provider(
        self,
        api_key: str,
        model: str | None = None,
        provider_id: str = CLAUDE_DEFAULT_ID,
        *,
        base_url: str | None = None,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> ClaudeProvider:
        provider = ClaudeProvider(
            ClaudeProvider.default_config(api_key, model, base_url),
            timeout=timeout,
            transport=transport,
        )
        self.add_provider(provider_id, provider)
        return provider

    def add_ollama_provider(
        self,
        endpoint: str | None = None,
        model: str | None = None,
        provider_id: str = OLLAMA_DEFAULT_ID,
        *,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> OllamaProvider:
        provider = OllamaProvider(
            OllamaProvider.default_config(endpoint, model),
            timeout=timeout,
            transport=transport,
        )
        self.add_provider(provider_id, provider)
        return provider

    def add_lmstudio_provider(
        self,
        endpoint: str | None = None,
        model: str | None = None,
        provider_id: str = LMSTUDIO_DEFAULT_ID,
        *,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> LMStudioProvider:
        provider = LMStudioProvider(
            LMStudioProvider.default_config(endpoint, model),
            timeout=timeout,
            transport=transport,
        )
        self.add_provider(provider_id, provider)
        return provider

    def remove_provider(self, provider_id: str) -> None:
        """Forget *provider_id*.  Clears the active selection if it pointed there."""
        self._providers.pop(provider_id, None)
        if self._active == provider_id:
            self._active = None

    def set_active_provider(self, provider_id: str) -> None:
        """
        Switch the active provider.

        Raises ``KeyError`` if *provider_id* has not been registered.
        """
        if provider_id not in self._providers:
            raise KeyError(
                f"Unknown provider {provider_id!r}. "
                f"Registered: {list(self._providers)}"
            )
        self._active = provider_id

    @property
    def active_provider_id(self) -> str | None:
        return self._active

    def get_active_provider(self) -> Provider | None:
        if self._active is None:
            return None
        return self._providers.get(self._active)

    def get_provider(self, provider_id: str) -> Provider | None:
        return self._providers.get(provider_id)

    @property
    def providers(self) -> dict[str, Provider]:
        """A snapshot of the registry, keyed by provider id."""
        return dict(self._providers)

    async def get_available_providers(self) -> list[ProviderStatus]:
        """Probe every registered provider concurrently."""
        items = list(self._providers.items())
        results = await asyncio.gather(*(p.is_available() for _, p in items))
        return [
            ProviderStatus(id=pid, provider=p, available=ok)
            for (pid, p), ok in zip(items, results)
        ]

    def get_provider_stats(self) -> ProviderStats:
        counts = {kind: 0 for kind in ProviderKind}
        for provider in self._providers.values():
            counts[provider.kind] += 1
        return ProviderStats(
            total=len(self._providers),
            active_provider_id=self._active,
            provider_types=counts,
        )

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def chat(
        self,
        request: ChatRequest,
        provider_id: str | None = None,
    ) -> ChatResponse:
        """
        Send *request* and return the response with every tool call resolved.

        Tool calls are executed concurrently; each result is attached to
        its own call object.
        """
        provider = self._resolve(provider_id)
        request = self._prepare_request(provider, request)

        response = await provider.chat(request)
        if response.tool_calls:
            await self._resolve_tool_calls(response.tool_calls)
        return response

    async def stream_chat(
        self,
        request: ChatRequest,
        provider_id: str | None = None,
    ) -> StreamingChatResponse:
        """
        Start a streamed response.

        A chunk carrying tool calls is held back until every call on it has
        been resolved.  Calls repeated on a later chunk (e.g. the terminal
        one) are passed through as already resolved.
        """
        provider = self._resolve(provider_id)
        if not provider.supports_streaming:
            raise CapabilityError(f"Provider {provider.name} does not support streaming")
        request = self._prepare_request(provider, request)

        inner = await provider.stream_chat(request)
        return StreamingChatResponse(self._wrap_stream(inner), inner.control)

    async def _wrap_stream(
        self, inner: StreamingChatResponse
    ) -> AsyncIterator[StreamChunk]:
        async for chunk in inner.stream:
            if inner.aborted:
                return
            if chunk.tool_calls:
                await self._resolve_tool_calls(chunk.tool_calls)
                if inner.aborted:
                    return
            yield chunk

    async def _resolve_tool_calls(self, calls: list[ToolCall]) -> None:
        pending = [c for c in calls if not c.resolved]
        if pending:
            await asyncio.gather(*(self.executor.execute(c) for c in pending))

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------

    async def list_models_for_provider(self, provider_id: str) -> list[str]:
        provider = self.get_provider(provider_id)
        if provider is None:
            return []
        return await provider.list_models()

    async def list_all_available_models(self) -> dict[str, list[str]]:
        """Models of every reachable provider, keyed by provider id."""

        async def _models(provider: Provider) -> list[str]:
            if not await provider.is_available():
                return []
            return await provider.list_models()

        items = list(self._providers.items())
        results = await asyncio.gather(*(_models(p) for _, p in items))
        return {pid: models for (pid, _), models in zip(items, results) if models}

    # ------------------------------------------------------------------
    # Auto-detection
    # ------------------------------------------------------------------

    async def auto_detect_providers(
        self,
        env: Mapping[str, str] | None = None,
    ) -> str | None:
        """
        Register one provider of each kind from the environment.

        ``ANTHROPIC_API_KEY`` enables the Claude provider; ``OLLAMA_HOST``
        and ``LMSTUDIO_ENDPOINT`` override the local endpoints.  When no
        provider is active the first available one is selected.  Returns
        the active provider id.
        """
        env = os.environ if env is None else env

        api_key = env.get("ANTHROPIC_API_KEY")
        if api_key and CLAUDE_DEFAULT_ID not in self._providers:
            self.add_claude_provider(api_key)
        if OLLAMA_DEFAULT_ID not in self._providers:
            self.add_ollama_provider(env.get("OLLAMA_HOST") or None)
        if LMSTUDIO_DEFAULT_ID not in self._providers:
            self.add_lmstudio_provider(env.get("LMSTUDIO_ENDPOINT") or None)

        if self._active is None:
            for status in await self.get_available_providers():
                if status.available:
                    self.set_active_provider(status.id)
                    logger.info("Auto-selected provider %s", status.id)
                    break
            else:
                logger.warning("Auto-detection found no available provider")
        return self._active

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve(self, provider_id: str | None) -> Provider:
        if provider_id is not None:
            provider = self._providers.get(provider_id)
            if provider is None:
                raise NoProviderError(f"Unknown provider {provider_id!r}")
            return provider
        provider = self.get_active_provider()
        if provider is None:
            raise NoProviderError("No provider specified or active")
        return provider

    @staticmethod
    def _prepare_request(provider: Provider, request: ChatRequest) -> ChatRequest:
        if not provider.supports_tool_calls:
            if request.tools:
                return replace(request, tools=None)
            return request
        if request.tools is None:
            return replace(request, tools=default_tools())
        for definition in request.tools:
            check_definition(definition)
        return request


# ---------------------------------------------------------------------------
# Process-wide instance
# ---------------------------------------------------------------------------

_manager: ProviderManager | None = None


async def initialize(
    config: ChatgateConfig | None = None,
    *,
    manager: ProviderManager | None = None,
    auto_detect: bool | None = None,
    env: Mapping[str, str] | None = None,
) -> ProviderManager:
    """
    Install the process-wide manager.

    With a *config* the providers it enables are registered (see
    ``chatgate.config.build_manager``); a pre-built *manager* is installed
    as-is; with neither an empty manager is created.  ``auto_detect``
    defaults to ``config.gateway.auto_detect`` and runs
    ``auto_detect_providers`` once.
    """
    global _manager
    if _manager is not None:
        raise RuntimeError("chatgate is already initialized; call shutdown() first")

    if manager is None:
        if config is not None:
            from chatgate.config import build_manager

            manager = build_manager(config, env=env)
        else:
            manager = ProviderManager()
    if auto_detect is None:
        auto_detect = config.gateway.auto_detect if config is not None else False

    _manager = manager
    if auto_detect:
        await manager.auto_detect_providers(env)
    return manager


def get_manager() -> ProviderManager:
    if _manager is None:
        raise RuntimeError("chatgate is not initialized; call initialize() first")
    return _manager


async def shutdown() -> None:
    """Drop the process-wide manager and its registered providers."""
    global _manager
    if _manager is None:
        return
    for provider_id in list(_manager.providers):
        _manager.remove_provider(provider_id)
    _manager = None
