from dataclasses import dataclass


@dataclass
class ToolResult:
    success: bool
    content: str
    data: dict | list | None = None
    error: str | None = None
    error_code: str | None = None
    duration_ms: int | None = None

    @classmethod
    def failure(cls, message: str, code: str, duration_ms: int | None = None) -> "ToolResult":
        return cls(
            success=False,
            content=message,
            error=message,
            error_code=code,
            duration_ms=duration_ms,
        )


class ErrorCode:
    UNKNOWN_TOOL = "unknown_tool"
    INVALID_ARGUMENTS = "invalid_arguments"
    IO_ERROR = "io_error"
    STRING_NOT_FOUND = "string_not_found"
    COMMAND_FAILED = "command_failed"
    TIMEOUT = "timeout"
    SEARCH_ERROR = "search_error"
    TOOL_EXCEPTION = "tool_exception"
