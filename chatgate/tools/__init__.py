"""Tool catalog and executor."""

from chatgate.tools.catalog import TOOL_CATALOG, ToolKind, default_tools, get_definition
from chatgate.tools.errors import ToolError, ToolExecutionError, UnknownToolError
from chatgate.tools.executor import ToolExecutor

__all__ = [
    "TOOL_CATALOG",
    "ToolError",
    "ToolExecutionError",
    "ToolExecutor",
    "ToolKind",
    "UnknownToolError",
    "default_tools",
    "get_definition",
]
