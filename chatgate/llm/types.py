"""Core types for the chat gateway."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum

from chatgate.types import ToolResult


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ProviderKind(str, Enum):
    CLAUDE_API = "claude-api"
    OLLAMA = "ollama"
    LMSTUDIO = "lmstudio"


@dataclass(frozen=True)
class ProviderConfig:
    """Identifies one configured backend instance."""

    kind: ProviderKind
    name: str
    model: str
    description: str = ""
    endpoint: str | None = None
    api_key: str | None = field(default=None, repr=False)
    is_local: bool = False
    supports_streaming: bool = True
    supports_tool_calls: bool = False
    max_tokens: int = 4000
    temperature: float = 0.7

    def with_overrides(self, **changes) -> ProviderConfig:
        """Return a copy with the non-``None`` entries of *changes* applied."""
        changes = {k: v for k, v in changes.items() if v is not None}
        if not changes:
            return self
        return replace(self, **changes)


@dataclass
class ToolDefinition:
    """A tool the model may call, with a JSON-schema parameter object."""

    name: str
    description: str
    parameters: dict

    def to_anthropic_schema(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.parameters,
        }

    def to_openai_schema(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ToolCallStatus(str, Enum):
    EXECUTING = "executing"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class ToolCall:
    """
    A structured tool invocation requested by a model.

    Adapters create calls once the backend has announced the name and
    arguments.  ``resolve`` attaches the execution result exactly once;
    after that the call is final.
    """

    id: str
    name: str
    parameters: dict = field(default_factory=dict)
    status: ToolCallStatus = ToolCallStatus.EXECUTING
    result: ToolResult | None = None
    timestamp: datetime = field(default_factory=_now)

    @property
    def resolved(self) -> bool:
        return self.result is not None

    def resolve(self, result: ToolResult) -> None:
        if self.result is not None:
            raise RuntimeError(f"Tool call {self.id} is already resolved")
        self.result = result
        self.status = ToolCallStatus.COMPLETED if result.success else ToolCallStatus.ERROR


@dataclass
class RawToolDelta:
    """
    An incremental fragment of a streamed tool call.

    OpenAI-style streams announce a call with its function name and then
    send argument text in further fragments for the same ``call_index``.
    The ToolCallAssembler turns these into ``ToolCall`` objects.
    """

    call_index: int | None
    id: str | None = None
    name: str = ""
    args_delta: str = ""


def new_call_id(prefix: str = "call") -> str:
    return f"{prefix}_{uuid.uuid4().hex[:24]}"


@dataclass
class Message:
    """A single message in a conversation."""

    role: str  # "user" or "assistant"
    content: str
    timestamp: datetime = field(default_factory=_now)
    tool_calls: list[ToolCall] | None = None

    def to_wire(self) -> dict:
        return {"role": self.role, "content": self.content}


@dataclass
class ChatRequest:
    """
    A chat request as handed to a provider.

    ``tools=None`` means "unset" and lets the manager attach the default
    catalog; an empty list means the caller explicitly wants no tools.
    """

    messages: list[Message]
    tools: list[ToolDefinition] | None = None
    system_prompt: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    model: str | None = None


@dataclass
class ResponseMetadata:
    model: str | None = None
    tokens: int | None = None
    provider: ProviderKind | None = None
    duration_ms: int | None = None


@dataclass
class ChatResponse:
    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    metadata: ResponseMetadata = field(default_factory=ResponseMetadata)


@dataclass
class StreamChunk:
    """
    A single chunk yielded while streaming a chat completion.

    *content* carries new text.  *tool_calls* carries the calls attached
    to this chunk.  ``is_complete=True`` marks the terminal chunk.
    """

    content: str = ""
    is_complete: bool = False
    tool_calls: list[ToolCall] = field(default_factory=list)
    metadata: ResponseMetadata = field(default_factory=ResponseMetadata)
