"""The fixed catalog of tools a model may call."""

from __future__ import annotations

import copy
from enum import Enum

import jsonschema

from chatgate.llm.types import ToolDefinition


class ToolKind(str, Enum):
    READ = "Read"
    WRITE = "Write"
    EDIT = "Edit"
    BASH = "Bash"
    GLOB = "Glob"
    GREP = "Grep"

    @classmethod
    def lookup(cls, name: str) -> ToolKind | None:
        try:
            return cls(name)
        except ValueError:
            return None


def _schema(properties: dict, required: list[str]) -> dict:
    return {"type": "object", "properties": properties, "required": required}


TOOL_CATALOG: tuple[ToolDefinition, ...] = (
    ToolDefinition(
        name=ToolKind.READ.value,
        description="Read a file from the filesystem",
        parameters=_schema(
            {
                "file_path": {
                    "type": "string",
                    "description": "The absolute path to the file to read",
                },
                "offset": {
                    "type": "integer",
                    "description": "Number of lines to skip before reading",
                },
                "limit": {
                    "type": "integer",
                    "description": "Maximum number of lines to read",
                },
            },
            ["file_path"],
        ),
    ),
    ToolDefinition(
        name=ToolKind.WRITE.value,
        description="Write content to a file",
        parameters=_schema(
            {
                "file_path": {
                    "type": "string",
                    "description": "The absolute path to the file to write",
                },
                "content": {
                    "type": "string",
                    "description": "The content to write",
                },
            },
            ["file_path", "content"],
        ),
    ),
    ToolDefinition(
        name=ToolKind.EDIT.value,
        description="Edit a file by replacing text",
        parameters=_schema(
            {
                "file_path": {
                    "type": "string",
                    "description": "The absolute path to the file to edit",
                },
                "old_string": {"type": "string", "description": "The text to replace"},
                "new_string": {"type": "string", "description": "The new text"},
                "replace_all": {
                    "type": "boolean",
                    "description": "Replace every occurrence instead of the first",
                },
            },
            ["file_path", "old_string", "new_string"],
        ),
    ),
    ToolDefinition(
        name=ToolKind.BASH.value,
        description="Execute a bash command",
        parameters=_schema(
            {
                "command": {
                    "type": "string",
                    "description": "The bash command to execute",
                },
                "description": {
                    "type": "string",
                    "description": "Description of what the command does",
                },
            },
            ["command"],
        ),
    ),
    ToolDefinition(
        name=ToolKind.GLOB.value,
        description="Search for files using glob patterns",
        parameters=_schema(
            {
                "pattern": {
                    "type": "string",
                    "description": "The glob pattern to search for",
                },
                "path": {
                    "type": "string",
                    "description": "The directory to search in (optional)",
                },
            },
            ["pattern"],
        ),
    ),
    ToolDefinition(
        name=ToolKind.GREP.value,
        description="Search for text in files using ripgrep",
        parameters=_schema(
            {
                "pattern": {"type": "string", "description": "The search pattern"},
                "path": {
                    "type": "string",
                    "description": "File or directory to search in",
                },
                "glob": {
                    "type": "string",
                    "description": "Glob pattern to filter files",
                },
                "output_mode": {
                    "type": "string",
                    "enum": ["content", "files_with_matches", "count"],
                    "description": "What to return; defaults to files_with_matches",
                },
                "-n": {
                    "type": "boolean",
                    "description": "Show line numbers (content mode only)",
                },
                "-C": {
                    "type": "integer",
                    "description": "Lines of context around each match (content mode only)",
                },
                "-A": {
                    "type": "integer",
                    "description": "Lines of context after each match (content mode only)",
                },
                "-B": {
                    "type": "integer",
                    "description": "Lines of context before each match (content mode only)",
                },
            },
            ["pattern"],
        ),
    ),
)

_BY_NAME = {d.name: d for d in TOOL_CATALOG}


def default_tools() -> list[ToolDefinition]:
    """Return a fresh copy of the catalog, safe for callers to mutate."""
    return [copy.deepcopy(d) for d in TOOL_CATALOG]


def get_definition(name: str) -> ToolDefinition | None:
    return _BY_NAME.get(name)


def check_definition(definition: ToolDefinition) -> None:
    """
    Raise ``ValueError`` if *definition* is not a usable tool description.

    The parameter block must be a JSON-schema object; the schema itself is
    checked against the Draft 7 meta-schema.
    """
    if not definition.name:
        raise ValueError("Tool definition has no name")
    params = definition.parameters
    if not isinstance(params, dict) or params.get("type") != "object":
        raise ValueError(f"Tool {definition.name!r}: parameters must be an object schema")
    try:
        jsonschema.Draft7Validator.check_schema(params)
    except jsonschema.SchemaError as e:
        raise ValueError(f"Tool {definition.name!r}: invalid schema: {e.message}") from e
    missing = set(params.get("required", [])) - set(params.get("properties", {}))
    if missing:
        raise ValueError(
            f"Tool {definition.name!r}: required fields not declared: {sorted(missing)}"
        )
