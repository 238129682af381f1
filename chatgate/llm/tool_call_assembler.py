"""
Assembles streaming tool-call deltas into ToolCall objects.

Design goals:
  - A delta that carries a function name opens a new call.
  - Argument fragments are appended to the open call with the same
    ``call_index``, or to the most recent call when no index is given.
    A nameless delta for an index that was never opened is recorded as an
    error and dropped.
  - ``flush()`` JSON-parses each call's accumulated arguments.  If parsing
    fails the call is still emitted with empty parameters and an error is
    recorded, so the executor resolves it instead of it vanishing.
"""

from __future__ import annotations

import json

from chatgate.llm.types import RawToolDelta, ToolCall, ToolCallStatus, new_call_id


class ToolCallAssembler:
    """Buffers raw tool-call deltas for the lifetime of one stream."""

    def __init__(self) -> None:
        self._calls: list[dict] = []
        self._by_index: dict[int, dict] = {}
        self.errors: list[str] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def feed(self, delta: RawToolDelta) -> None:
        """Feed a single ``RawToolDelta`` into the assembler."""
        if delta.name:
            buf = {"id": delta.id, "name": delta.name, "args": ""}
            self._calls.append(buf)
            if delta.call_index is not None:
                self._by_index[delta.call_index] = buf
        else:
            if delta.call_index is not None:
                buf = self._by_index.get(delta.call_index)
            else:
                buf = self._calls[-1] if self._calls else None
            if buf is None:
                self.errors.append(
                    f"tool_call_delta_without_name idx={delta.call_index}"
                )
                return
            if delta.id and not buf["id"]:
                buf["id"] = delta.id

        if delta.args_delta:
            buf["args"] += delta.args_delta

    @property
    def pending(self) -> int:
        """Number of calls opened but not yet flushed."""
        return len(self._calls)

    def flush(self) -> list[ToolCall]:
        """Finalize every buffered call, in the order they were opened."""
        calls = [self._finalize(idx, buf) for idx, buf in enumerate(self._calls)]
        self._calls.clear()
        self._by_index.clear()
        return calls

    def reset(self) -> None:
        """Discard all accumulated state."""
        self._calls.clear()
        self._by_index.clear()
        self.errors.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _finalize(self, idx: int, buf: dict) -> ToolCall:
        raw_args = buf["args"].strip() or "{}"
        try:
            args = json.loads(raw_args)
        except (json.JSONDecodeError, ValueError) as exc:
            self.errors.append(
                f"tool_call_json_parse_failed idx={idx} err={exc}"
            )
            args = {}
        if not isinstance(args, dict):
            self.errors.append(f"tool_call_args_not_object idx={idx}")
            args = {}

        return ToolCall(
            id=buf["id"] or new_call_id(),
            name=buf["name"].strip(),
            parameters=args,
            status=ToolCallStatus.EXECUTING,
        )
