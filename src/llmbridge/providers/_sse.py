"""Line-oriented stream decoding: server-sent events and newline-delimited JSON."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, AsyncIterator

log = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


def _decode(payload: str) -> Any:
    try:
        return json.loads(payload)
    except ValueError:
        log.debug("Skipping malformed stream event (%d bytes)", len(payload))
        return None


async def iter_sse_json(lines: AsyncIterable[str]) -> AsyncIterator[Any]:
    """Yield the decoded JSON ``data`` of each server-sent event.

    Events end at a blank line; multi-line ``data:`` fields are joined with
    newlines. A ``[DONE]`` data line ends iteration at once, without reading
    further. Malformed events are skipped.
    """
    data_lines: list[str] = []
    async for raw_line in lines:
        line = raw_line.rstrip("\r\n")
        if not line:
            if data_lines:
                decoded = _decode("\n".join(data_lines))
                data_lines = []
                if decoded is not None:
                    yield decoded
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field != "data":
            continue
        if not data_lines and value.strip() == DONE_SENTINEL:
            return
        data_lines.append(value)

    if data_lines:
        decoded = _decode("\n".join(data_lines))
        if decoded is not None:
            yield decoded


async def iter_ndjson(lines: AsyncIterable[str]) -> AsyncIterator[Any]:
    """Yield one decoded object per non-empty line."""
    async for raw_line in lines:
        line = raw_line.strip()
        if not line:
            continue
        decoded = _decode(line)
        if decoded is not None:
            yield decoded
