"""Pull-based stream handle returned by ``invoke_stream``."""

from __future__ import annotations

import inspect
import logging
from typing import TYPE_CHECKING, Any

from llmbridge.types import Response, TextContent, ToolCall, Usage

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable
    from types import TracebackType

    from llmbridge.providers.base import StreamReconstructor

log = logging.getLogger(__name__)


class ResponseStream:
    """Single-consumer stream of normalized response chunks.

    Each step pulls exactly one chunk from the provider; nothing is
    prefetched. The underlying transport is released on exhaustion, on
    error, on cancellation, and on early exit via ``aclose()`` or
    ``async with``::

        async with bridge.invoke_stream(prompt) as stream:
            async for chunk in stream:
                if done(chunk):
                    break
    """

    def __init__(
        self,
        source: AsyncIterator[Response],
        *,
        on_close: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self._source = source
        self._on_close = on_close
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> ResponseStream:
        return self

    async def __anext__(self) -> Response:
        if self._closed:
            raise StopAsyncIteration
        try:
            return await self._source.__anext__()
        except BaseException:
            # StopAsyncIteration, provider errors, and CancelledError alike.
            await self.aclose()
            raise

    async def aclose(self) -> None:
        """Release the transport. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        try:
            aclose = getattr(self._source, "aclose", None)
            if aclose is not None:
                await aclose()
        finally:
            if self._on_close is not None:
                await self._on_close()

    async def __aenter__(self) -> ResponseStream:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def collect(self) -> Response:
        """Drain the stream into one response: text concatenated, calls in order."""
        text: list[str] = []
        tool_calls: list[ToolCall] = []
        usage: Usage | None = None
        async with self:
            async for chunk in self:
                text.append(chunk.content.value)
                tool_calls.extend(chunk.tool_calls)
                if chunk.usage is not None:
                    usage = chunk.usage
        return Response(
            content=TextContent("".join(text)),
            usage=usage,
            tool_calls=tuple(tool_calls),
        )


async def reconstruct(
    chunks: AsyncIterable[Any], reconstructor: StreamReconstructor
) -> AsyncIterator[Response]:
    """Feed provider chunks through *reconstructor*, yielding only payload-bearing responses."""
    async for chunk in chunks:
        for response in reconstructor.feed(chunk):
            if response.has_payload:
                yield response
    for response in reconstructor.finish():
        if response.has_payload:
            yield response


async def release(resource: Any) -> None:
    """Close an SDK stream, httpx response, or client; failures are logged, not raised."""
    if resource is None:
        return
    close = getattr(resource, "aclose", None) or getattr(resource, "close", None)
    if close is None:
        return
    try:
        result = close()
        if inspect.isawaitable(result):
            await result
    except Exception as e:  # noqa: BLE001
        log.warning("Failed to close %s: %s", type(resource).__name__, e)
