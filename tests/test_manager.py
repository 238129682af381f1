"""Tests for chatgate.llm.manager.ProviderManager and the process-wide lifecycle."""

from __future__ import annotations

import json

import httpx
import pytest

from chatgate.config import ChatgateConfig
from chatgate.llm import manager as manager_module
from chatgate.llm.errors import CapabilityError, NoProviderError
from chatgate.llm.manager import ProviderManager, get_manager, initialize, shutdown
from chatgate.llm.types import (
    ChatRequest,
    ChatResponse,
    Message,
    ProviderKind,
    ToolCall,
    ToolCallStatus,
    ToolDefinition,
)
from chatgate.tools.catalog import TOOL_CATALOG
from chatgate.tools.executor import ToolExecutor
from chatgate.types import ErrorCode
from tests.mock_providers import MockProvider, make_text_provider, make_tool_call_provider


def _request(**kwargs) -> ChatRequest:
    return ChatRequest(messages=[Message(role="user", content="hi")], **kwargs)


class CountingExecutor(ToolExecutor):
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.executed: list[str] = []

    async def execute(self, call: ToolCall) -> ToolCall:
        self.executed.append(call.id)
        return await super().execute(call)


@pytest.fixture
def manager(tmp_path):
    return ProviderManager(CountingExecutor(cwd=str(tmp_path), bash_timeout=5.0))


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestRegistry:
    def test_set_active_unknown_raises(self, manager):
        with pytest.raises(KeyError):
            manager.set_active_provider("ghost")

    def test_remove_active_clears_selection(self, manager):
        manager.add_provider("m", MockProvider())
        manager.set_active_provider("m")
        assert manager.get_active_provider() is manager.get_provider("m")

        manager.remove_provider("m")
        assert manager.active_provider_id is None
        assert manager.get_active_provider() is None

    def test_add_convenience_providers(self, manager):
        manager.add_claude_provider("sk-test")
        manager.add_ollama_provider(model="qwen2")
        manager.add_lmstudio_provider("http://box:1234")

        assert set(manager.providers) == {"claude-default", "ollama-default", "lmstudio-default"}
        assert manager.get_provider("ollama-default").config.model == "qwen2"
        assert manager.get_provider("lmstudio-default").config.endpoint == "http://box:1234"

    def test_stats(self, manager):
        manager.add_provider("a", MockProvider(kind=ProviderKind.OLLAMA))
        manager.add_provider("b", MockProvider(kind=ProviderKind.OLLAMA))
        manager.add_provider("c", MockProvider(kind=ProviderKind.CLAUDE_API))
        manager.set_active_provider("c")

        stats = manager.get_provider_stats()
        assert stats.total == 3
        assert stats.active_provider_id == "c"
        assert stats.provider_types[ProviderKind.OLLAMA] == 2
        assert stats.provider_types[ProviderKind.LMSTUDIO] == 0

    async def test_available_providers(self, manager):
        manager.add_provider("up", MockProvider(available=True))
        manager.add_provider("down", MockProvider(available=False))

        statuses = {s.id: s.available for s in await manager.get_available_providers()}
        assert statuses == {"up": True, "down": False}

    async def test_models(self, manager):
        manager.add_provider("up", MockProvider(models=["m1", "m2"]))
        manager.add_provider("down", MockProvider(available=False, models=["x"]))
        manager.add_provider("empty", MockProvider(models=[]))

        assert await manager.list_models_for_provider("up") == ["m1", "m2"]
        assert await manager.list_models_for_provider("ghost") == []
        assert await manager.list_all_available_models() == {"up": ["m1", "m2"]}


# ---------------------------------------------------------------------------
# Resolution and tool defaulting
# ---------------------------------------------------------------------------


class TestResolution:
    async def test_no_provider(self, manager):
        with pytest.raises(NoProviderError, match="No provider specified or active"):
            await manager.chat(_request())

    async def test_unknown_explicit_provider(self, manager):
        manager.add_provider("m", MockProvider())
        manager.set_active_provider("m")
        with pytest.raises(NoProviderError):
            await manager.chat(_request(), provider_id="ghost")

    async def test_explicit_overrides_active(self, manager):
        active = make_text_provider("active")
        other = make_text_provider("other")
        manager.add_provider("a", active)
        manager.add_provider("o", other)
        manager.set_active_provider("a")

        resp = await manager.chat(_request(), provider_id="o")
        assert resp.content == "other"
        assert active.chat_calls == 0


class TestToolDefaulting:
    async def test_catalog_attached_when_unset(self, manager):
        provider = MockProvider(supports_tool_calls=True)
        manager.add_provider("m", provider)
        manager.set_active_provider("m")

        request = _request()
        await manager.chat(request)

        sent = provider.last_request.tools
        assert [t.name for t in sent] == [d.name for d in TOOL_CATALOG]
        assert request.tools is None

    async def test_empty_list_is_respected(self, manager):
        provider = MockProvider(supports_tool_calls=True)
        manager.add_provider("m", provider)
        manager.set_active_provider("m")

        await manager.chat(_request(tools=[]))
        assert provider.last_request.tools == []

    async def test_never_sent_to_tool_less_provider(self, manager):
        provider = MockProvider(supports_tool_calls=False)
        manager.add_provider("m", provider)
        manager.set_active_provider("m")

        await manager.chat(_request())
        assert provider.last_request.tools is None

        await manager.chat(_request(tools=[TOOL_CATALOG[0]]))
        assert provider.last_request.tools is None

    async def test_invalid_caller_tool_rejected(self, manager):
        manager.add_provider("m", MockProvider(supports_tool_calls=True))
        manager.set_active_provider("m")
        bad = ToolDefinition("Broken", "d", {"type": "string"})

        with pytest.raises(ValueError):
            await manager.chat(_request(tools=[bad]))


# ---------------------------------------------------------------------------
# Chat with tool execution
# ---------------------------------------------------------------------------


class TestChatToolExecution:
    async def test_every_call_is_resolved(self, manager, tmp_path):
        target = tmp_path / "notes.txt"
        target.write_text("remember")
        provider = MockProvider(
            response=ChatResponse(
                content="",
                tool_calls=[
                    ToolCall(id="r", name="Read", parameters={"file_path": str(target)},
                             status=ToolCallStatus.COMPLETED),
                    ToolCall(id="x", name="Teleport", parameters={}),
                ],
            )
        )
        manager.add_provider("m", provider)
        manager.set_active_provider("m")

        resp = await manager.chat(_request())

        read, unknown = resp.tool_calls
        assert read.status is ToolCallStatus.COMPLETED
        assert "remember" in read.result.content
        assert unknown.status is ToolCallStatus.ERROR
        assert unknown.result.error_code == ErrorCode.UNKNOWN_TOOL
        assert all(c.status is not ToolCallStatus.EXECUTING for c in resp.tool_calls)
        assert sorted(manager.executor.executed) == ["r", "x"]

    async def test_text_only_response(self, manager):
        manager.add_provider("m", make_text_provider("plain answer"))
        manager.set_active_provider("m")

        resp = await manager.chat(_request())
        assert resp.content == "plain answer"
        assert resp.tool_calls == []
        assert manager.executor.executed == []


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


class TestStreamChat:
    async def test_capability_checked_before_request(self, manager):
        provider = MockProvider(supports_streaming=False)
        manager.add_provider("m", provider)
        manager.set_active_provider("m")

        with pytest.raises(CapabilityError):
            await manager.stream_chat(_request())
        assert provider.stream_calls == 0

    async def test_text_passthrough(self, manager):
        manager.add_provider("m", make_text_provider("a b c"))
        manager.set_active_provider("m")

        stream = await manager.stream_chat(_request())
        chunks = [c async for c in stream]

        assert "".join(c.content for c in chunks) == "a b c"
        assert chunks[-1].is_complete

    async def test_tool_calls_resolved_once_before_yield(self, manager, tmp_path):
        provider = make_tool_call_provider("Bash", {"command": "echo streamed"}, call_id="s1")
        manager.add_provider("m", provider)
        manager.set_active_provider("m")

        stream = await manager.stream_chat(_request())
        seen = []
        async for chunk in stream:
            for call in chunk.tool_calls:
                assert call.status is not ToolCallStatus.EXECUTING
                seen.append(call)

        assert len(seen) == 2
        assert seen[0] is seen[1]
        assert seen[0].result.content == "streamed\n"
        assert manager.executor.executed == ["s1"]

    async def test_abort_stops_wrapped_stream(self, manager):
        provider = make_text_provider("one two three four")
        manager.add_provider("m", provider)
        manager.set_active_provider("m")

        stream = await manager.stream_chat(_request())
        received = []
        async for chunk in stream:
            received.append(chunk)
            stream.abort()

        assert len(received) == 1
        assert provider.last_control.aborted
        assert not any(c.is_complete for c in received)


# ---------------------------------------------------------------------------
# End to end over HTTP
# ---------------------------------------------------------------------------


async def test_ollama_scenario_over_http(manager):
    def handler(request: httpx.Request) -> httpx.Response:
        assert "tools" not in json.loads(request.content)
        return httpx.Response(200, json={"message": {"content": "Hello"}, "eval_count": 3})

    manager.add_ollama_provider(transport=httpx.MockTransport(handler))
    manager.set_active_provider("ollama-default")

    resp = await manager.chat(_request())
    assert resp.content == "Hello"
    assert resp.tool_calls == []
    assert resp.metadata.provider is ProviderKind.OLLAMA


async def test_lmstudio_stream_tool_call_over_http(manager, tmp_path):
    (tmp_path / "found.py").write_text("")
    events = [
        {"choices": [{"delta": {"tool_calls": [
            {"index": 0, "id": "g1", "function": {"name": "Glob", "arguments": '{"pattern"'}}]},
            "finish_reason": None}]},
        {"choices": [{"delta": {"tool_calls": [
            {"index": 0, "function": {"arguments": ': "*.py"}'}}]}, "finish_reason": None}]},
        {"choices": [{"delta": {}, "finish_reason": "tool_calls"}]},
    ]
    body = "".join(f"data: {json.dumps(e)}\n\n" for e in events) + "data: [DONE]\n\n"

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=body.encode())

    manager.add_lmstudio_provider(transport=httpx.MockTransport(handler))
    stream = await manager.stream_chat(_request(), provider_id="lmstudio-default")
    chunks = [c async for c in stream]

    terminal = chunks[-1]
    assert terminal.is_complete
    (call,) = terminal.tool_calls
    assert call.status is ToolCallStatus.COMPLETED
    assert call.result.data == [str(tmp_path / "found.py")]


# ---------------------------------------------------------------------------
# Auto-detection and lifecycle
# ---------------------------------------------------------------------------


async def test_auto_detect_registers_and_activates(manager, monkeypatch):
    async def fake_available(self):
        return self.kind is ProviderKind.LMSTUDIO

    from chatgate.llm.providers.base import Provider

    for cls in Provider.__subclasses__():
        monkeypatch.setattr(cls, "is_available", fake_available)

    active = await manager.auto_detect_providers(
        {"ANTHROPIC_API_KEY": "sk-env", "OLLAMA_HOST": "http://gpu:11434"}
    )

    assert set(manager.providers) == {"claude-default", "ollama-default", "lmstudio-default"}
    assert manager.get_provider("ollama-default").config.endpoint == "http://gpu:11434"
    assert active == "lmstudio-default"


async def test_auto_detect_without_key_skips_claude(manager, monkeypatch):
    async def unavailable(self):
        return False

    from chatgate.llm.providers.base import Provider

    for cls in Provider.__subclasses__():
        monkeypatch.setattr(cls, "is_available", unavailable)

    active = await manager.auto_detect_providers({})
    assert "claude-default" not in manager.providers
    assert active is None


class TestLifecycle:
    @pytest.fixture(autouse=True)
    async def _reset(self):
        await shutdown()
        yield
        await shutdown()

    async def test_nothing_at_import(self):
        assert manager_module._manager is None
        with pytest.raises(RuntimeError, match="not initialized"):
            get_manager()

    async def test_initialize_and_shutdown(self):
        mgr = await initialize()
        assert get_manager() is mgr
        with pytest.raises(RuntimeError, match="already initialized"):
            await initialize()

        await shutdown()
        with pytest.raises(RuntimeError):
            get_manager()

    async def test_initialize_from_config(self):
        cfg = ChatgateConfig()
        cfg.lmstudio.enabled = False
        cfg.gateway.active_provider = "ollama-default"

        mgr = await initialize(cfg, env={})

        assert set(mgr.providers) == {"ollama-default"}
        assert mgr.active_provider_id == "ollama-default"

    async def test_initialize_with_prebuilt_manager(self):
        prebuilt = ProviderManager()
        assert await initialize(manager=prebuilt) is prebuilt


async def test_claude_stream_tool_then_text_over_http(manager):
    events = [
        {"type": "content_block_start", "index": 0,
         "content_block": {"type": "tool_use", "id": "toolu_1", "name": "Read", "input": {}}},
        {"type": "content_block_delta", "index": 1, "delta": {"type": "text_delta", "text": "Reading."}},
        {"type": "message_stop"},
    ]
    body = "".join(f"event: {e['type']}\ndata: {json.dumps(e)}\n\n" for e in events)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=body.encode())

    manager.add_claude_provider("sk-test", transport=httpx.MockTransport(handler))
    stream = await manager.stream_chat(_request(), provider_id="claude-default")
    chunks = [c async for c in stream]

    assert len(chunks) == 3
    announce, text, terminal = chunks
    assert [c.id for c in announce.tool_calls] == ["toolu_1"]
    assert announce.tool_calls[0].status is ToolCallStatus.ERROR
    assert announce.tool_calls[0].result.error_code == ErrorCode.INVALID_ARGUMENTS
    assert text.content == "Reading."
    assert terminal.is_complete
    assert terminal.tool_calls[0] is announce.tool_calls[0]
    assert manager.executor.executed == ["toolu_1"]


async def test_write_then_read_creates_directories(manager, tmp_path):
    target = tmp_path / "x" / "y" / "z.txt"
    provider = MockProvider(
        response=ChatResponse(
            content="",
            tool_calls=[
                ToolCall(id="w", name="Write",
                         parameters={"file_path": str(target), "content": "first\nsecond"}),
            ],
        )
    )
    manager.add_provider("m", provider)
    resp = await manager.chat(_request(), provider_id="m")
    assert resp.tool_calls[0].status is ToolCallStatus.COMPLETED

    result = await manager.executor.run("Read", {"file_path": str(target)})
    assert result.content == "    1→first\n    2→second"
