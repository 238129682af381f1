"""Errors raised by tool handlers."""

from __future__ import annotations

from chatgate.types import ErrorCode


class ToolError(Exception):
    """Structured error from a tool operation."""

    def __init__(self, message: str, code: str = ErrorCode.TOOL_EXCEPTION):
        super().__init__(message)
        self.code = code


class UnknownToolError(ToolError):
    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}", code=ErrorCode.UNKNOWN_TOOL)
        self.name = name


class ToolExecutionError(ToolError):
    """A known tool ran and failed."""
