"""Normalized content, message, and response values shared by every bridge.

All values are frozen: they are built by the caller (or a response mapper),
never mutated afterwards, and safe to share between concurrent calls.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, BinaryIO, Literal, Union

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

Role = Literal["user", "assistant", "system", "tool"]
ContentKind = Literal["text", "image", "audio", "video", "file"]
BinaryInput = Union[bytes, bytearray, memoryview, BinaryIO]

_ROLES: frozenset[str] = frozenset({"user", "assistant", "system", "tool"})


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, bytes):
        return value
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    read = getattr(value, "read", None)
    if callable(read):
        data = read()
        if isinstance(data, (bytes, bytearray)):
            return bytes(data)
    raise TypeError(
        f"binary content must be bytes or a readable binary stream, got {type(value).__name__}"
    )


@dataclass(frozen=True)
class TextContent:
    """A run of text."""

    value: str = ""
    kind: Literal["text"] = field(default="text", init=False)

    def __post_init__(self) -> None:
        if not isinstance(self.value, str):
            raise TypeError("TextContent.value must be a string")


@dataclass(frozen=True)
class _BinaryContent:
    #: Raw bytes. Readable streams are drained once, at construction.
    value: bytes
    #: Declared media type; mappers fall back to a per-kind default when unset.
    media_type: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", _to_bytes(self.value))


@dataclass(frozen=True)
class ImageContent(_BinaryContent):
    """Image bytes. Unset ``media_type`` is sent as ``image/jpeg``."""

    kind: Literal["image"] = field(default="image", init=False)


@dataclass(frozen=True)
class AudioContent(_BinaryContent):
    """Audio bytes."""

    kind: Literal["audio"] = field(default="audio", init=False)


@dataclass(frozen=True)
class VideoContent(_BinaryContent):
    """Video bytes."""

    kind: Literal["video"] = field(default="video", init=False)


@dataclass(frozen=True)
class FileContent(_BinaryContent):
    """Arbitrary document bytes."""

    kind: Literal["file"] = field(default="file", init=False)


Content = Union[TextContent, ImageContent, AudioContent, VideoContent, FileContent]


@dataclass(frozen=True)
class ToolCall:
    """A tool call requested by the model."""

    tool_call_id: str
    name: str
    arguments: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Message:
    """One conversational turn.

    Tool messages carry the ``name`` and ``tool_call_id`` of the call they
    answer. Assistant messages may carry the ``tool_calls`` they requested so
    a tool loop can be replayed to the provider.
    """

    role: Role
    content: tuple[Content, ...] = ()
    name: str | None = None
    tool_call_id: str | None = None
    tool_calls: tuple[ToolCall, ...] | None = None

    def __post_init__(self) -> None:
        if self.role not in _ROLES:
            raise ValueError(f"Unknown message role: {self.role!r}")
        content: Any = self.content
        if isinstance(content, str):
            content = (TextContent(content),)
        elif not isinstance(content, tuple):
            content = tuple(content)
        object.__setattr__(self, "content", content)
        if self.tool_calls is not None and not isinstance(self.tool_calls, tuple):
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))
        if self.role == "tool" and (not self.name or not self.tool_call_id):
            raise ValueError("tool messages require name and tool_call_id")

    @property
    def text(self) -> str:
        """Text entries joined by newlines; non-text entries are skipped."""
        return "\n".join(c.value for c in self.content if c.kind == "text")

    @classmethod
    def user(cls, *content: str | Content) -> Message:
        return cls("user", _coerce(content))

    @classmethod
    def system(cls, text: str) -> Message:
        return cls("system", (TextContent(text),))

    @classmethod
    def assistant(
        cls, text: str = "", *, tool_calls: Iterable[ToolCall] | None = None
    ) -> Message:
        content = (TextContent(text),) if text else ()
        return cls(
            "assistant",
            content,
            tool_calls=tuple(tool_calls) if tool_calls is not None else None,
        )

    @classmethod
    def tool(cls, text: str, *, name: str, tool_call_id: str) -> Message:
        return cls("tool", (TextContent(text),), name=name, tool_call_id=tool_call_id)


def _coerce(content: Iterable[str | Content]) -> tuple[Content, ...]:
    return tuple(TextContent(c) if isinstance(c, str) else c for c in content)


@dataclass(frozen=True)
class Prompt:
    """An ordered conversation."""

    messages: tuple[Message, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.messages, tuple):
            object.__setattr__(self, "messages", tuple(self.messages))

    @classmethod
    def from_text(cls, text: str, *, system: str | None = None) -> Prompt:
        """Build a single-turn prompt, optionally preceded by a system message."""
        messages = [Message.system(system)] if system else []
        messages.append(Message.user(text))
        return cls(tuple(messages))


@dataclass(frozen=True)
class ToolDeclaration:
    """A function the model may call; ``parameters`` is an opaque JSON schema."""

    name: str
    description: str = ""
    parameters: Mapping[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


@dataclass(frozen=True)
class Usage:
    """Token accounting for one invocation. ``total_tokens`` is always derived."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        if self.prompt_tokens < 0 or self.completion_tokens < 0:
            raise ValueError("token counts must be non-negative")
        object.__setattr__(
            self, "total_tokens", self.prompt_tokens + self.completion_tokens
        )

    @classmethod
    def from_counts(cls, prompt: Any, completion: Any) -> Usage | None:
        """Build from provider counts, or ``None`` when neither was reported."""
        if prompt is None and completion is None:
            return None
        return cls(_as_count(prompt), _as_count(completion))


def _as_count(value: Any) -> int:
    try:
        count = int(value)
    except (TypeError, ValueError):
        return 0
    return max(count, 0)


@dataclass(frozen=True)
class Response:
    """A normalized (possibly partial) model response."""

    content: TextContent = field(default_factory=TextContent)
    usage: Usage | None = None
    tool_calls: tuple[ToolCall, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.tool_calls, tuple):
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))

    @property
    def text(self) -> str:
        return self.content.value

    @property
    def has_payload(self) -> bool:
        """Whether this response carries text, tool calls, or usage."""
        return bool(self.content.value or self.tool_calls or self.usage is not None)


@dataclass(frozen=True)
class ModelPricing:
    """Price per ``unit`` tokens."""

    prompt: float
    completion: float
    unit: int = 1_000_000
    currency: str = "USD"


@dataclass(frozen=True)
class ModelInfo:
    """Static per-model facts used for metadata and request defaults."""

    family: str
    context_window: int
    max_tokens: int
    version: str = ""
    pricing: ModelPricing | None = None
    supports_long_context: bool = False
    long_context_pricing: ModelPricing | None = None


@dataclass(frozen=True)
class BridgeMetadata:
    """What ``get_metadata()`` reports; computed without a network call."""

    name: str
    version: str
    description: str
    model: str
    context_window: int
    max_tokens: int
    pricing: ModelPricing | None = None
