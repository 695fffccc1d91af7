"""Shared helpers for mapping normalized content into provider payloads."""

from __future__ import annotations

import base64
from collections.abc import Mapping
import json
import logging
import re
from typing import TYPE_CHECKING, Any
import uuid

from llmbridge.errors import InvalidRequestError
from llmbridge.types import Message, TextContent

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from llmbridge.types import Content, Prompt, ToolDeclaration

log = logging.getLogger(__name__)

#: Media types sent when a binary content entry does not declare one.
#: Sending ``image/jpeg`` for an unlabelled PNG is a known fidelity gap.
DEFAULT_MEDIA_TYPES: dict[str, str] = {
    "image": "image/jpeg",
    "audio": "audio/wav",
    "video": "video/mp4",
    "file": "application/pdf",
}


def get(obj: Any, key: str, default: Any = None) -> Any:
    """Read *key* from a decoded JSON dict or an SDK object alike."""
    if obj is None:
        return default
    if isinstance(obj, Mapping):
        value = obj.get(key, default)
    else:
        value = getattr(obj, key, default)
    return default if value is None else value


def collect_text(content: Iterable[Content]) -> str:
    """Join text entries with newlines; non-text entries are skipped."""
    return "\n".join(c.value for c in content if c.kind == "text")


def text_only(message: Message, *, provider: str) -> str:
    """Flatten a message for providers that carry text only."""
    dropped = [c.kind for c in message.content if c.kind != "text"]
    if dropped:
        log.debug(
            "Dropping %d non-text part(s) for %s: %s",
            len(dropped),
            provider,
            ", ".join(dropped),
        )
    return collect_text(message.content)


def media_type_of(content: Content) -> str:
    declared = getattr(content, "media_type", None)
    if isinstance(declared, str) and declared:
        return declared
    return DEFAULT_MEDIA_TYPES.get(content.kind, "application/octet-stream")


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def new_tool_call_id() -> str:
    """A fresh correlation id for providers that do not supply one."""
    return f"call_{uuid.uuid4().hex}"


def parse_tool_arguments(raw: Any) -> dict[str, Any]:
    """Parse tool-call arguments without ever failing the whole response.

    Objects pass through, other JSON values are wrapped as ``{"value": ...}``,
    and undecodable strings are kept under ``{"__raw": ...}``.
    """
    if raw is None or raw == "":
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    if not isinstance(raw, (str, bytes, bytearray)):
        return {"value": raw}
    try:
        parsed = json.loads(raw)
    except ValueError:
        log.debug("Keeping undecodable tool arguments as raw text")
        text = raw if isinstance(raw, str) else bytes(raw).decode("utf-8", "replace")
        return {"__raw": text}
    if isinstance(parsed, dict):
        return parsed
    return {"value": parsed}


def require_messages(prompt: Prompt, *, provider: str) -> Sequence[Message]:
    if not prompt.messages:
        raise InvalidRequestError(
            f"{provider} requires at least one message",
            invalid_fields=["messages"],
            provider=provider,
        )
    return prompt.messages


def object_schema(tool: ToolDeclaration, *, provider: str) -> dict[str, Any]:
    """Return the tool's parameters as a plain dict, rejecting non-object schemas."""
    params = tool.parameters
    if not isinstance(params, Mapping) or params.get("type", "object") != "object":
        raise InvalidRequestError(
            f"Tool {tool.name!r} parameters must be an object schema",
            invalid_fields=[f"tools.{tool.name}.parameters"],
            provider=provider,
        )
    return dict(params)


def system_text(messages: Iterable[Message]) -> str | None:
    """Text of the first system message, or ``None`` when there is none."""
    for message in messages:
        if message.role == "system":
            return collect_text(message.content)
    return None


def fold_system(messages: Sequence[Message]) -> list[tuple[Message, str]]:
    """Pair each non-system message with its text, system text folded into the first.

    For providers without a system slot: system text is prepended to the
    first non-system message, separated by a blank line.
    """
    system = "\n\n".join(
        collect_text(m.content) for m in messages if m.role == "system"
    )
    out: list[tuple[Message, str]] = []
    for message in messages:
        if message.role == "system":
            continue
        text = collect_text(message.content)
        if system and not out:
            text = f"{system}\n\n{text}" if text else system
        out.append((message, text))
    if system and not out:
        log.debug("Prompt holds only system messages; sending them as a user turn")
        out.append((Message("user", (TextContent(system),)), system))
    return out


_CAMEL_RE = re.compile(r"([a-z0-9])([A-Z])")
_SEP_RE = re.compile(r"[\s-]+")


def snake_case(name: str) -> str:
    return _SEP_RE.sub("_", _CAMEL_RE.sub(r"\1_\2", name)).lower()
