"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: fake SDK streams, an httpx transport
that replays canned bodies, and a collector for reconstructor output.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
from typing import TYPE_CHECKING, Any

import httpx

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from llmbridge.providers.base import StreamReconstructor
    from llmbridge.types import Response


@dataclass
class FakeAsyncStream:
    """SDK-style async stream over canned events that records ``close()``."""

    events: list[Any]
    error: BaseException | None = None
    pulled: int = 0
    closed: bool = False

    def __aiter__(self) -> FakeAsyncStream:
        return self

    async def __anext__(self) -> Any:
        if self.pulled >= len(self.events):
            if self.error is not None:
                raise self.error
            raise StopAsyncIteration
        event = self.events[self.pulled]
        self.pulled += 1
        return event

    async def close(self) -> None:
        self.closed = True


@dataclass
class RecordingTransport:
    """``httpx.MockTransport`` handler that records requests and replays a body."""

    status_code: int = 200
    body: bytes = b"{}"
    headers: dict[str, str] = field(default_factory=dict)
    requests: list[httpx.Request] = field(default_factory=list)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, content=self.body, headers=self.headers)

    @property
    def last_json(self) -> Any:
        return json.loads(self.requests[-1].content)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def json_body(payload: Any) -> bytes:
    return json.dumps(payload).encode()


def sse_body(events: Iterable[Any], *, done: bool = True) -> bytes:
    lines = [f"data: {json.dumps(e)}\n\n" for e in events]
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode()


def ndjson_body(lines: Iterable[Any]) -> bytes:
    return "".join(json.dumps(line) + "\n" for line in lines).encode()


def run_reconstructor(
    make: Callable[[], StreamReconstructor], chunks: Iterable[Any]
) -> list[Response]:
    """Feed every chunk through a fresh reconstructor, keeping payload-bearing output."""
    reconstructor = make()
    out: list[Response] = []
    for chunk in chunks:
        out.extend(reconstructor.feed(chunk))
    out.extend(reconstructor.finish())
    return [r for r in out if r.has_payload]


def joined_text(responses: Iterable[Response]) -> str:
    return "".join(r.text for r in responses)


def all_calls(responses: Iterable[Response]) -> list[Any]:
    return [call for r in responses for call in r.tool_calls]
