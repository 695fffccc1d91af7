"""Bridge protocol: the caller-facing contract every provider bridge implements."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from llmbridge.options import InvokeOptions
    from llmbridge.streaming import ResponseStream
    from llmbridge.types import BridgeMetadata, Prompt, Response


@dataclass(frozen=True)
class ProviderCapabilities:
    """Feature flags exposed by bridges."""

    modalities: tuple[str, ...] = ("text",)
    tool_calls: bool = False
    streaming: bool = False
    vision: bool = False
    multi_turn: bool = True


@runtime_checkable
class Bridge(Protocol):
    """Minimal bridge protocol: invoke, optionally stream, and describe itself."""

    async def invoke(
        self, prompt: Prompt, options: InvokeOptions | None = None
    ) -> Response:
        """Run one non-streaming call and return the normalized response."""
        ...

    def invoke_stream(
        self, prompt: Prompt, options: InvokeOptions | None = None
    ) -> ResponseStream:
        """Start a streaming call; chunks are pulled lazily from the handle."""
        ...

    def get_metadata(self) -> BridgeMetadata:
        """Static model facts; never requires a network call."""
        ...

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Feature capabilities for this bridge and model."""
        ...

    async def aclose(self) -> None:
        """Release owned client resources."""
        ...


class StreamReconstructor(Protocol):
    """Turns provider deltas into normalized chunks, one call per delta."""

    def feed(self, chunk: object) -> list[Response]: ...

    def finish(self) -> list[Response]: ...
