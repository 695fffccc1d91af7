"""Chat Completions wire format shared by the OpenAI, Grok, and OpenAI-compatible bridges.

Request building is pure and deterministic; response parsing accepts SDK
objects and decoded JSON alike. :class:`ChatStreamState` reassembles
streamed deltas so that the concatenated chunk text equals the text
:func:`parse_chat_completion` returns for the same answer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from typing import TYPE_CHECKING, Any, Literal, TypedDict

from llmbridge.errors import ContentBlockedError
from llmbridge.options import tool_choice_name
from llmbridge.providers._content import (
    b64,
    get,
    media_type_of,
    new_tool_call_id,
    object_schema,
    parse_tool_arguments,
    text_only,
)
from llmbridge.types import Response, TextContent, ToolCall, Usage

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from llmbridge.types import Message, ToolDeclaration

log = logging.getLogger(__name__)


class ChatFunction(TypedDict):
    name: str
    arguments: str


class ChatToolCall(TypedDict):
    id: str
    type: Literal["function"]
    function: ChatFunction


class ChatMessage(TypedDict, total=False):
    role: Literal["system", "user", "assistant", "tool"]
    content: str | list[dict[str, Any]]
    tool_call_id: str
    tool_calls: list[ChatToolCall]


class ChatFunctionSpec(TypedDict, total=False):
    name: str
    description: str
    parameters: dict[str, Any]


class ChatTool(TypedDict):
    type: Literal["function"]
    function: ChatFunctionSpec


class ChatRequest(TypedDict, total=False):
    model: str
    messages: list[ChatMessage]
    temperature: float
    top_p: float
    max_tokens: int
    frequency_penalty: float
    presence_penalty: float
    stop: list[str]
    tools: list[ChatTool]
    tool_choice: str | dict[str, Any]
    parallel_tool_calls: bool
    response_format: dict[str, Any]
    reasoning_effort: str
    search_parameters: dict[str, Any]
    user: str
    seed: int
    stream: bool
    stream_options: dict[str, Any]


# --- Request mapping ---


def _user_content(message: Message, *, provider: str) -> str | list[dict[str, Any]]:
    """Plain text, or content parts when the message carries images."""
    if not any(c.kind == "image" for c in message.content):
        return text_only(message, provider=provider)
    parts: list[dict[str, Any]] = []
    for c in message.content:
        if c.kind == "text":
            parts.append({"type": "text", "text": c.value})
        elif c.kind == "image":
            url = f"data:{media_type_of(c)};base64,{b64(c.value)}"
            parts.append({"type": "image_url", "image_url": {"url": url}})
        else:
            log.debug("Dropping %s part for %s", c.kind, provider)
    return parts


def chat_tool_call(call: ToolCall) -> ChatToolCall:
    return {
        "id": call.tool_call_id,
        "type": "function",
        "function": {"name": call.name, "arguments": json.dumps(dict(call.arguments))},
    }


def chat_messages(
    messages: Sequence[Message], *, provider: str, multimodal: bool = False
) -> list[ChatMessage]:
    """Map normalized turns 1:1; the Chat Completions format has every role natively."""
    out: list[ChatMessage] = []
    for message in messages:
        if message.role == "tool":
            out.append(
                {
                    "role": "tool",
                    "tool_call_id": message.tool_call_id or "",
                    "content": text_only(message, provider=provider),
                }
            )
        elif message.role == "assistant":
            item: ChatMessage = {
                "role": "assistant",
                "content": text_only(message, provider=provider),
            }
            if message.tool_calls:
                item["tool_calls"] = [chat_tool_call(c) for c in message.tool_calls]
            out.append(item)
        elif message.role == "user" and multimodal:
            out.append(
                {"role": "user", "content": _user_content(message, provider=provider)}
            )
        else:
            out.append(
                {
                    "role": message.role,
                    "content": text_only(message, provider=provider),
                }
            )
    return out


def chat_tools(
    tools: Iterable[ToolDeclaration] | None, *, provider: str
) -> list[ChatTool] | None:
    if not tools:
        return None
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": object_schema(tool, provider=provider),
            },
        }
        for tool in tools
    ]


def chat_tool_choice(choice: str | dict[str, Any] | None) -> str | dict[str, Any] | None:
    """``"auto" | "none" | "required"`` pass through; a named choice becomes a function choice."""
    if choice is None or isinstance(choice, str):
        return choice
    name = tool_choice_name(choice) or choice.get("tool_name")
    if not name:
        return None
    return {"type": "function", "function": {"name": name}}


def response_format_payload(fmt: Any) -> dict[str, Any] | None:
    """Map a response format (config model, type string, or JSON schema dict)."""
    if fmt is None:
        return None
    if isinstance(fmt, str):
        return {"type": fmt}
    fmt_type = get(fmt, "type")
    if fmt_type in ("text", "json_object"):
        return {"type": fmt_type}
    if fmt_type == "json_schema":
        schema = get(fmt, "json_schema") or get(fmt, "schema")
        payload: dict[str, Any] = {
            "name": get(fmt, "name", "response"),
            "schema": schema,
        }
        strict = get(fmt, "strict")
        if strict is not None:
            payload["strict"] = strict
        return {"type": "json_schema", "json_schema": payload}
    # A bare JSON schema dict.
    return {
        "type": "json_schema",
        "json_schema": {"name": "response", "schema": dict(fmt)},
    }


# --- Response mapping ---


def _tool_calls(raw_calls: Any) -> tuple[ToolCall, ...]:
    calls: list[ToolCall] = []
    for raw in raw_calls or ():
        function = get(raw, "function")
        if function is None:
            continue
        calls.append(
            ToolCall(
                tool_call_id=get(raw, "id") or new_tool_call_id(),
                name=get(function, "name", ""),
                arguments=parse_tool_arguments(get(function, "arguments")),
            )
        )
    return tuple(calls)


def chat_usage(raw_usage: Any) -> Usage | None:
    if raw_usage is None:
        return None
    return Usage.from_counts(
        get(raw_usage, "prompt_tokens"), get(raw_usage, "completion_tokens")
    )


def combine_sections(text: str, reasoning: str, citations: Sequence[str]) -> str:
    """Answer text, then ``Reasoning:`` and ``Citations:`` sections, blank-line separated."""
    segments: list[str] = []
    if text:
        segments.append(text)
    if reasoning.strip():
        segments.append(f"Reasoning:\n{reasoning}")
    if citations:
        segments.append("Citations:\n" + "\n".join(citations))
    return "\n\n".join(segments)


def _citations(raw: Any) -> list[str]:
    return [str(c) for c in (get(raw, "citations") or ()) if c]


def _blocked(provider: str) -> ContentBlockedError:
    return ContentBlockedError(
        f"{provider} blocked the response (finish_reason=content_filter)",
        reason="content_filter",
        provider=provider,
    )


def parse_chat_completion(
    raw: Any, *, provider: str, with_sections: bool = False
) -> Response:
    """Normalize one complete chat completion."""
    choices = get(raw, "choices") or ()
    choice = choices[0] if choices else None
    message = get(choice, "message")
    content = get(message, "content", "")
    text = content if isinstance(content, str) else ""
    tool_calls = _tool_calls(get(message, "tool_calls"))

    if get(choice, "finish_reason") == "content_filter" and not text and not tool_calls:
        raise _blocked(provider)

    if with_sections:
        reasoning = get(message, "reasoning_content", "")
        text = combine_sections(
            text, reasoning if isinstance(reasoning, str) else "", _citations(raw)
        )

    return Response(
        content=TextContent(text),
        usage=chat_usage(get(raw, "usage")),
        tool_calls=tool_calls,
    )


# --- Streaming ---


@dataclass
class _PendingCall:
    tool_call_id: str | None = None
    name: str = ""
    arguments: list[str] = field(default_factory=list)


@dataclass
class ChatStreamState:
    """Reassemble Chat Completions deltas into normalized chunks.

    Text deltas pass straight through. Tool-call fragments are keyed by
    ``index`` and emitted together once the choice finishes. With
    ``with_sections`` set, reasoning and citations are held back and emitted
    as the same trailing sections :func:`combine_sections` builds.
    """

    provider: str
    with_sections: bool = False
    _calls: dict[int, _PendingCall] = field(default_factory=dict)
    _reasoning: list[str] = field(default_factory=list)
    _citations: list[str] = field(default_factory=list)
    _reasoning_flushed: bool = False
    _emitted_text: bool = False

    def feed(self, chunk: Any) -> list[Response]:
        out: list[Response] = []
        if self.with_sections:
            citations = _citations(chunk)
            if citations:
                self._citations = citations

        choices = get(chunk, "choices") or ()
        choice = choices[0] if choices else None
        delta = get(choice, "delta")

        piece = get(delta, "content", "")
        if isinstance(piece, str) and piece:
            self._emitted_text = True
            out.append(Response(content=TextContent(piece)))

        if self.with_sections:
            reasoning = get(delta, "reasoning_content", "")
            if isinstance(reasoning, str) and reasoning:
                self._reasoning.append(reasoning)

        for position, raw in enumerate(get(delta, "tool_calls") or ()):
            index = get(raw, "index", position)
            pending = self._calls.setdefault(index, _PendingCall())
            call_id = get(raw, "id")
            if call_id:
                pending.tool_call_id = call_id
            function = get(raw, "function")
            name = get(function, "name")
            if name:
                pending.name = name
            fragment = get(function, "arguments")
            if isinstance(fragment, str) and fragment:
                pending.arguments.append(fragment)

        finish_reason = get(choice, "finish_reason")
        if finish_reason == "content_filter" and not self._emitted_text and not self._calls:
            raise _blocked(self.provider)
        if finish_reason is not None:
            out.extend(self._flush_calls())
            out.extend(self._flush_reasoning())

        usage = chat_usage(get(chunk, "usage"))
        if usage is not None:
            out.append(Response(usage=usage))
        return out

    def finish(self) -> list[Response]:
        out = self._flush_calls()
        out.extend(self._flush_reasoning())
        if self._citations:
            section = "Citations:\n" + "\n".join(self._citations)
            out.append(Response(content=TextContent(self._sectioned(section))))
            self._citations = []
        return out

    def _sectioned(self, section: str) -> str:
        text = f"\n\n{section}" if self._emitted_text else section
        self._emitted_text = True
        return text

    def _flush_calls(self) -> list[Response]:
        if not self._calls:
            return []
        calls = tuple(
            ToolCall(
                tool_call_id=pending.tool_call_id or new_tool_call_id(),
                name=pending.name,
                arguments=parse_tool_arguments("".join(pending.arguments)),
            )
            for _, pending in sorted(self._calls.items())
        )
        self._calls = {}
        return [Response(tool_calls=calls)]

    def _flush_reasoning(self) -> list[Response]:
        if self._reasoning_flushed:
            return []
        self._reasoning_flushed = True
        reasoning = "".join(self._reasoning)
        if not reasoning.strip():
            return []
        section = f"Reasoning:\n{reasoning}"
        return [Response(content=TextContent(self._sectioned(section)))]
