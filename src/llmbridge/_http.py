"""HTTP helpers shared by the error classifier and the raw-HTTP bridges."""

from __future__ import annotations

import httpx

# Status codes a caller-side retry policy may safely retry.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504})

JSON_HEADERS: dict[str, str] = {
    "content-type": "application/json",
    "accept": "application/json",
}

SSE_HEADERS: dict[str, str] = {
    "content-type": "application/json",
    "accept": "text/event-stream",
}


def new_async_client(timeout_s: float) -> httpx.AsyncClient:
    """An ``httpx.AsyncClient`` whose every phase is bounded by *timeout_s*."""
    return httpx.AsyncClient(timeout=httpx.Timeout(timeout_s))


async def raise_for_status(response: httpx.Response) -> None:
    """Raise ``httpx.HTTPStatusError`` with the body loaded, so the classifier can read it."""
    if response.is_error:
        await response.aread()
        response.raise_for_status()
