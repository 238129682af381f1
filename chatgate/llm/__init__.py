"""LLM subsystem -- wire types, stream plumbing, and streaming tool-call assembly.

The provider manager lives in ``chatgate.llm.manager``.
"""

from chatgate.llm.errors import CapabilityError, NoProviderError, ProviderError, ProviderHTTPError
from chatgate.llm.stream import StreamingChatResponse
from chatgate.llm.tool_call_assembler import ToolCallAssembler
from chatgate.llm.types import (
    ChatRequest,
    ChatResponse,
    Message,
    ProviderConfig,
    ProviderKind,
    StreamChunk,
    ToolCall,
    ToolCallStatus,
    ToolDefinition,
)

__all__ = [
    "CapabilityError",
    "ChatRequest",
    "ChatResponse",
    "Message",
    "NoProviderError",
    "ProviderConfig",
    "ProviderError",
    "ProviderHTTPError",
    "ProviderKind",
    "StreamChunk",
    "StreamingChatResponse",
    "ToolCall",
    "ToolCallAssembler",
    "ToolCallStatus",
    "ToolDefinition",
]
