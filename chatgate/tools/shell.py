"""Subprocess runner shared by the Bash and Grep tools."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import time

logger = logging.getLogger(__name__)

# Cap output per stream to prevent memory issues.
DEFAULT_MAX_OUTPUT_BYTES = 100 * 1024  # 100 KB


async def run_process(
    args: list[str],
    *,
    timeout: float | None = None,
    cwd: str | None = None,
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
) -> dict:
    """
    Run *args* without a shell and capture its output.

    The child gets its own process group.  When *timeout* expires the whole
    group is killed and the result has ``timed_out=True``.  A missing
    executable raises ``FileNotFoundError``.
    """
    t0 = time.monotonic()
    proc = await asyncio.create_subprocess_exec(
        *args,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=cwd,
        start_new_session=True,
    )
    try:
        stdout_raw, stderr_raw = await asyncio.wait_for(
            proc.communicate(), timeout=timeout
        )
    except asyncio.TimeoutError:
        _kill_group(proc)
        try:
            await asyncio.wait_for(proc.wait(), timeout=5)
        except asyncio.TimeoutError:
            logger.warning("Process %s did not exit after SIGKILL", proc.pid)
        duration_ms = round((time.monotonic() - t0) * 1000)
        return {
            "exit_code": -1,
            "stdout": "",
            "stderr": f"Command timed out after {timeout}s",
            "duration_ms": duration_ms,
            "timed_out": True,
        }

    duration_ms = round((time.monotonic() - t0) * 1000)

    stdout = stdout_raw[:max_output_bytes].decode("utf-8", errors="replace")
    stderr = stderr_raw[:max_output_bytes].decode("utf-8", errors="replace")

    truncated = {}
    if len(stdout_raw) > max_output_bytes:
        truncated["stdout"] = True
    if len(stderr_raw) > max_output_bytes:
        truncated["stderr"] = True

    result: dict = {
        "exit_code": proc.returncode,
        "stdout": stdout,
        "stderr": stderr,
        "duration_ms": duration_ms,
        "timed_out": False,
    }
    if truncated:
        result["truncated"] = truncated
    return result


def _kill_group(proc: asyncio.subprocess.Process) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    except PermissionError:
        proc.kill()
