"""
Stream plumbing shared by the providers.

A streamed chat response is a lazy, single-pass sequence of
``StreamChunk`` objects paired with an ``abort()`` callback.  Aborting
sets a flag that every provider checks before each read and before each
yield, and releases the underlying httpx response on the running loop.
After an abort the sequence simply ends; no terminal chunk is produced.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

import httpx

from chatgate.llm.errors import ProviderHTTPError
from chatgate.llm.types import StreamChunk

logger = logging.getLogger(__name__)


class StreamControl:
    """Abort flag plus the network resources held by one stream."""

    def __init__(
        self,
        response: httpx.Response | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._response = response
        self._client = client
        self._aborted = False
        self._closed = False
        self._release_task: asyncio.Task | None = None

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def closed(self) -> bool:
        return self._closed

    def abort(self) -> None:
        """Stop delivery.  Idempotent, and a no-op once the stream has finished."""
        if self._aborted or self._closed:
            return
        self._aborted = True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the stream releases its reader when next resumed.
            return
        self._release_task = loop.create_task(self.aclose())

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._response is not None:
            await self._response.aclose()
        if self._client is not None:
            await self._client.aclose()


class StreamingChatResponse:
    """
    The result of ``stream_chat``.

    Iterate it (or its ``stream`` attribute) with ``async for``; call
    ``abort()`` to stop listening.  The connection is released when the
    iteration finishes.  A response that may be dropped before it is
    fully consumed must be closed with ``aclose()``, or used as an async
    context manager::

        async with await manager.stream_chat(request) as response:
            async for chunk in response:
                ...
    """

    def __init__(
        self,
        stream: AsyncIterator[StreamChunk],
        control: StreamControl,
    ) -> None:
        self.stream = stream
        self.control = control

    @property
    def aborted(self) -> bool:
        return self.control.aborted

    def abort(self) -> None:
        self.control.abort()

    async def aclose(self) -> None:
        self.control.abort()
        await self.control.aclose()

    async def __aenter__(self) -> StreamingChatResponse:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def __aiter__(self) -> AsyncIterator[StreamChunk]:
        return self.stream.__aiter__()


# ------------------------------------------------------------------
# HTTP helpers
# ------------------------------------------------------------------

async def post_json(
    client: httpx.AsyncClient,
    provider: str,
    url: str,
    *,
    json: dict,
    headers: dict[str, str] | None = None,
) -> dict:
    """POST *json* and return the decoded body, raising on non-success status."""
    resp = await client.post(url, json=json, headers=headers)
    if not resp.is_success:
        raise ProviderHTTPError(provider, resp.status_code, resp.text)
    return resp.json()


async def open_stream(
    client: httpx.AsyncClient,
    provider: str,
    url: str,
    *,
    json: dict,
    headers: dict[str, str] | None = None,
) -> tuple[httpx.Response, StreamControl]:
    """
    Send a streaming POST and hand back the open response.

    The returned ``StreamControl`` owns both the response and *client*.
    On a non-success status the body is read, everything is closed and
    ``ProviderHTTPError`` is raised before any chunk is produced.
    """
    try:
        request = client.build_request("POST", url, json=json, headers=headers)
        response = await client.send(request, stream=True)
    except BaseException:
        await client.aclose()
        raise

    if response.is_success:
        return response, StreamControl(response, client)

    try:
        await response.aread()
        body = response.text
    finally:
        await response.aclose()
        await client.aclose()
    raise ProviderHTTPError(provider, response.status_code, body)


async def iter_lines(
    response: httpx.Response,
    control: StreamControl,
) -> AsyncIterator[str]:
    """
    Yield non-empty decoded lines from *response*.

    The abort flag is checked before every read.  A read that fails
    because the response was released by ``abort()`` ends the iteration
    without an error.
    """
    lines = response.aiter_lines()
    try:
        while not control.aborted:
            try:
                line = await lines.__anext__()
            except StopAsyncIteration:
                return
            line = line.strip()
            if line:
                yield line
    except (httpx.HTTPError, httpx.StreamError):
        if control.aborted:
            logger.debug("Stream read interrupted by abort")
            return
        raise
