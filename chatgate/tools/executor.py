"""
Tool executor.

Performs the side effect behind each catalog tool and reports the outcome
as a ``ToolResult``.  The executor knows nothing about chat protocols and
can be driven directly::

    executor = ToolExecutor()
    result = await executor.run("Read", {"file_path": "/etc/hostname"})
"""

from __future__ import annotations

import asyncio
import contextlib
import glob as globlib
import logging
import os
import shutil
import tempfile
import time
from pathlib import Path
from typing import Awaitable, Callable

from chatgate.llm.types import ToolCall
from chatgate.tools.catalog import ToolKind
from chatgate.tools.errors import ToolError, ToolExecutionError, UnknownToolError
from chatgate.tools.shell import DEFAULT_MAX_OUTPUT_BYTES, run_process
from chatgate.types import ErrorCode, ToolResult

logger = logging.getLogger(__name__)

BASH_TIMEOUT_SECONDS = 30.0
GREP_OUTPUT_MODES = ("files_with_matches", "content", "count")

Handler = Callable[[dict], Awaitable[str | list[str]]]


class ToolExecutor:
    """
    Dispatches tool invocations to one handler per ``ToolKind``.

    Parameters
    ----------
    bash_timeout : float
        Hard limit for Bash commands (and Grep searches), in seconds.
    grep_command : str
        Executable used for Grep; must accept ripgrep's flags.
    cwd : str | None
        Working directory for Bash, Grep and relative Glob patterns.
    max_output_bytes : int
        Per-stream cap on captured process output.
    """

    def __init__(
        self,
        *,
        bash_timeout: float = BASH_TIMEOUT_SECONDS,
        grep_command: str = "rg",
        cwd: str | None = None,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
    ) -> None:
        self.bash_timeout = bash_timeout
        self.grep_command = grep_command
        self.cwd = cwd
        self.max_output_bytes = max_output_bytes
        self._handlers: dict[ToolKind, Handler] = {
            ToolKind.READ: self._read,
            ToolKind.WRITE: self._write,
            ToolKind.EDIT: self._edit,
            ToolKind.BASH: self._bash,
            ToolKind.GLOB: self._glob,
            ToolKind.GREP: self._grep,
        }
        missing = set(ToolKind) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for tools: {sorted(k.value for k in missing)}")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self, name: str, parameters: dict | None = None) -> ToolResult:
        """
        Run one tool and return its successful result.

        Raises ``UnknownToolError`` for names outside the catalog and
        ``ToolExecutionError`` when the operation fails.
        """
        kind = ToolKind.lookup(name)
        if kind is None:
            raise UnknownToolError(name)

        start = time.monotonic()
        output = await self._handlers[kind](parameters or {})
        duration_ms = round((time.monotonic() - start) * 1000)

        if isinstance(output, list):
            return ToolResult(
                success=True,
                content="\n".join(output) if output else "No files found",
                data=output,
                duration_ms=duration_ms,
            )
        return ToolResult(success=True, content=output, duration_ms=duration_ms)

    async def execute(self, call: ToolCall) -> ToolCall:
        """Run *call* and resolve it in place.  Tool failures never raise."""
        logger.info("Executing tool: %s (%s)", call.name, call.id)
        start = time.monotonic()
        try:
            result = await self.run(call.name, call.parameters)
        except ToolError as e:
            logger.warning("Tool %s failed: %s", call.name, e)
            result = ToolResult.failure(str(e), e.code, _elapsed_ms(start))
        except Exception as e:
            logger.exception("Tool %s raised", call.name)
            result = ToolResult.failure(
                f"Tool exception: {e}", ErrorCode.TOOL_EXCEPTION, _elapsed_ms(start)
            )
        call.resolve(result)
        return call

    # ------------------------------------------------------------------
    # File tools
    # ------------------------------------------------------------------

    async def _read(self, params: dict) -> str:
        path = _require_path(params)
        offset = _optional_int(params, "offset") or 0
        limit = _optional_int(params, "limit")

        try:
            content = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ToolExecutionError(f"Failed to read file {path}: {e}", ErrorCode.IO_ERROR) from e

        lines = content.split("\n")
        start = max(0, offset)
        end = len(lines) if limit is None else min(len(lines), start + max(0, limit))
        return "\n".join(
            f"{start + i + 1:>5}→{line}" for i, line in enumerate(lines[start:end])
        )

    async def _write(self, params: dict) -> str:
        path = _require_path(params)
        content = _require_str(params, "content", allow_empty=True)
        try:
            await asyncio.to_thread(_atomic_write, path, content)
        except OSError as e:
            raise ToolExecutionError(f"Failed to write file {path}: {e}", ErrorCode.IO_ERROR) from e
        return f"File written successfully to {path}"

    async def _edit(self, params: dict) -> str:
        path = _require_path(params)
        old = _require_str(params, "old_string")
        new = _require_str(params, "new_string", allow_empty=True)
        replace_all = bool(params.get("replace_all", False))

        try:
            content = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ToolExecutionError(f"Failed to edit file {path}: {e}", ErrorCode.IO_ERROR) from e

        count = content.count(old) if replace_all else int(old in content)
        if count == 0:
            raise ToolExecutionError(f"String not found: {old}", ErrorCode.STRING_NOT_FOUND)
        updated = content.replace(old, new) if replace_all else content.replace(old, new, 1)

        try:
            await asyncio.to_thread(_atomic_write, path, updated)
        except OSError as e:
            raise ToolExecutionError(f"Failed to edit file {path}: {e}", ErrorCode.IO_ERROR) from e
        plural = "" if count == 1 else "s"
        return f"File {path} edited successfully ({count} replacement{plural})"

    # ------------------------------------------------------------------
    # Process tools
    # ------------------------------------------------------------------

    async def _bash(self, params: dict) -> str:
        command = _require_str(params, "command")
        description = params.get("description")
        if description:
            logger.info("Bash: %s", description)

        try:
            result = await run_process(
                ["bash", "-c", command],
                timeout=self.bash_timeout,
                cwd=self.cwd,
                max_output_bytes=self.max_output_bytes,
            )
        except OSError as e:
            raise ToolExecutionError(
                f"Failed to execute command: {e}", ErrorCode.COMMAND_FAILED
            ) from e

        if result["timed_out"]:
            raise ToolExecutionError(
                f"Command timed out after {self.bash_timeout:g} seconds", ErrorCode.TIMEOUT
            )
        if result["exit_code"] == 0:
            return result["stdout"] or "Command executed successfully"
        raise ToolExecutionError(
            f"Command failed with exit code {result['exit_code']}: "
            f"{result['stderr'] or result['stdout']}",
            ErrorCode.COMMAND_FAILED,
        )

    async def _glob(self, params: dict) -> list[str]:
        pattern = _require_str(params, "pattern")
        base = params.get("path") or self.cwd
        if base and not os.path.isdir(base):
            raise ToolExecutionError(
                f"Glob search failed: not a directory: {base}", ErrorCode.SEARCH_ERROR
            )
        full = os.path.join(base, pattern) if base else pattern

        try:
            return await asyncio.to_thread(_glob_by_mtime, full)
        except (OSError, ValueError) as e:
            raise ToolExecutionError(f"Glob search failed: {e}", ErrorCode.SEARCH_ERROR) from e

    async def _grep(self, params: dict) -> str:
        pattern = _require_str(params, "pattern")
        search_path = params.get("path") or "."
        output_mode = params.get("output_mode") or "files_with_matches"
        if output_mode not in GREP_OUTPUT_MODES:
            raise ToolExecutionError(
                f"Invalid output_mode: {output_mode}", ErrorCode.INVALID_ARGUMENTS
            )

        args = [self.grep_command, "--color=never"]
        if output_mode == "files_with_matches":
            args.append("-l")
        elif output_mode == "count":
            args.append("-c")
        else:
            if params.get("-n"):
                args.append("-n")
            context = _optional_int(params, "-C")
            if context is not None:
                args.append(f"-C{context}")
            else:
                after = _optional_int(params, "-A")
                before = _optional_int(params, "-B")
                if after is not None:
                    args.append(f"-A{after}")
                if before is not None:
                    args.append(f"-B{before}")

        if params.get("glob"):
            args.extend(["--glob", params["glob"]])
        args.extend(["--", pattern, search_path])

        try:
            result = await run_process(
                args,
                timeout=self.bash_timeout,
                cwd=self.cwd,
                max_output_bytes=self.max_output_bytes,
            )
        except OSError as e:
            raise ToolExecutionError(f"Failed to execute grep: {e}", ErrorCode.SEARCH_ERROR) from e

        if result["timed_out"]:
            raise ToolExecutionError(
                f"Grep timed out after {self.bash_timeout:g} seconds", ErrorCode.TIMEOUT
            )
        # ripgrep exits 1 when nothing matched.
        if result["exit_code"] in (0, 1):
            return result["stdout"] or "No matches found"
        raise ToolExecutionError(
            f"Grep failed with exit code {result['exit_code']}: {result['stderr']}",
            ErrorCode.SEARCH_ERROR,
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _elapsed_ms(start: float) -> int:
    return round((time.monotonic() - start) * 1000)


def _require_str(params: dict, key: str, *, allow_empty: bool = False) -> str:
    value = params.get(key)
    if not isinstance(value, str):
        raise ToolExecutionError(
            f"Missing required parameter: {key}", ErrorCode.INVALID_ARGUMENTS
        )
    if not value and not allow_empty:
        raise ToolExecutionError(
            f"Parameter must not be empty: {key}", ErrorCode.INVALID_ARGUMENTS
        )
    return value


def _require_path(params: dict) -> Path:
    raw = _require_str(params, "file_path")
    path = Path(raw).expanduser()
    if not path.is_absolute():
        raise ToolExecutionError(
            f"file_path must be absolute: {raw}", ErrorCode.INVALID_ARGUMENTS
        )
    return path


def _optional_int(params: dict, key: str) -> int | None:
    value = params.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise ToolExecutionError(f"Parameter {key} must be an integer", ErrorCode.INVALID_ARGUMENTS)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ToolExecutionError(
            f"Parameter {key} must be an integer", ErrorCode.INVALID_ARGUMENTS
        ) from None


def _atomic_write(path: Path, content: str) -> None:
    """Write via a temp file in the target directory, then rename over *path*."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        if path.exists():
            shutil.copymode(path, tmp)
        else:
            os.chmod(tmp, 0o644)
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp)
        raise


def _glob_by_mtime(pattern: str) -> list[str]:
    def mtime(p: str) -> float:
        try:
            return os.stat(p).st_mtime
        except OSError:
            return 0.0

    return sorted(globlib.glob(pattern, recursive=True), key=mtime, reverse=True)
