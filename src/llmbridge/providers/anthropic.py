"""Anthropic Messages API bridge.

The message mapping here is shared with Bedrock's Anthropic family, which
sends the same body through ``invoke_model``.
"""

from __future__ import annotations

import asyncio
from contextlib import aclosing
from dataclasses import dataclass, field
import logging
from typing import TYPE_CHECKING, Any, Literal, TypedDict

from llmbridge.catalog import ANTHROPIC_DEFAULT, ANTHROPIC_MODELS, lookup
from llmbridge.config import AnthropicConfig, build_config
from llmbridge.errors import (
    BridgeError,
    ConfigurationError,
    ContentBlockedError,
    InvalidRequestError,
)
from llmbridge.options import InvokeOptions, prune_none, resolve, tool_choice_name
from llmbridge.providers._content import (
    b64,
    collect_text,
    get,
    media_type_of,
    new_tool_call_id,
    object_schema,
    parse_tool_arguments,
    require_messages,
)
from llmbridge.providers._errors import classify
from llmbridge.providers.base import ProviderCapabilities
from llmbridge.streaming import ResponseStream, reconstruct, release
from llmbridge.types import BridgeMetadata, Response, TextContent, ToolCall, Usage

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable, Sequence

    from llmbridge.config import BridgeConfig
    from llmbridge.types import Message, Prompt, ToolDeclaration

log = logging.getLogger(__name__)

PROVIDER = "anthropic"

LONG_CONTEXT_BETA = "context-1m-2025-08-07"
EXTENDED_OUTPUT_BETA = "output-128k-2025-02-19"


class AnthropicMessage(TypedDict):
    role: Literal["user", "assistant"]
    content: list[dict[str, Any]]


class AnthropicTool(TypedDict, total=False):
    name: str
    description: str
    input_schema: dict[str, Any]


class AnthropicRequest(TypedDict, total=False):
    model: str
    messages: list[AnthropicMessage]
    system: str
    max_tokens: int
    temperature: float
    top_p: float
    top_k: int
    stop_sequences: list[str]
    tools: list[AnthropicTool]
    tool_choice: dict[str, str]
    extra_headers: dict[str, str]


# --- Request mapping ---


def _content_block(part: Any, *, provider: str) -> dict[str, Any] | None:
    if part.kind == "text":
        return {"type": "text", "text": part.value} if part.value else None
    if part.kind == "image":
        return {
            "type": "image",
            "source": {
                "type": "base64",
                "media_type": media_type_of(part),
                "data": b64(part.value),
            },
        }
    if part.kind == "file" and media_type_of(part) == "application/pdf":
        return {
            "type": "document",
            "source": {
                "type": "base64",
                "media_type": "application/pdf",
                "data": b64(part.value),
            },
        }
    log.debug("Dropping %s part for %s", part.kind, provider)
    return None


def _append_message(messages: list[AnthropicMessage], msg: AnthropicMessage) -> None:
    """Append *msg*, merging into the previous message when roles match.

    Anthropic requires strict user/assistant alternation, so consecutive
    same-role turns (a tool result followed by a user turn, say) become one
    message with the blocks of both.
    """
    if messages and messages[-1]["role"] == msg["role"]:
        messages[-1]["content"] = messages[-1]["content"] + msg["content"]
    else:
        messages.append(msg)


def anthropic_messages(
    messages: Sequence[Message], *, provider: str = PROVIDER
) -> tuple[str | None, list[AnthropicMessage]]:
    """Split a conversation into the ``system`` slot and alternating turns.

    The first system message fills the slot; later system messages are sent
    as user text. A prompt holding only system text sends it as the user turn.
    User turns with no content are dropped, since the API rejects empty text.
    """
    system: str | None = None
    out: list[AnthropicMessage] = []
    for message in messages:
        if message.role == "system":
            text = collect_text(message.content)
            if system is None:
                system = text
            elif text:
                _append_message(out, {"role": "user", "content": [_text(text)]})
        elif message.role == "tool":
            block = {
                "type": "tool_result",
                "tool_use_id": message.tool_call_id,
                "content": collect_text(message.content),
            }
            _append_message(out, {"role": "user", "content": [block]})
        elif message.role == "assistant":
            blocks = [
                b
                for b in (_content_block(c, provider=provider) for c in message.content)
                if b is not None and b["type"] == "text"
            ]
            for call in message.tool_calls or ():
                blocks.append(
                    {
                        "type": "tool_use",
                        "id": call.tool_call_id,
                        "name": call.name,
                        "input": dict(call.arguments),
                    }
                )
            if blocks:
                _append_message(out, {"role": "assistant", "content": blocks})
        else:
            blocks = [
                b
                for b in (_content_block(c, provider=provider) for c in message.content)
                if b is not None
            ]
            if blocks:
                _append_message(out, {"role": "user", "content": blocks})
            else:
                log.debug("Dropping empty user turn for %s", provider)

    if not out:
        if system:
            return None, [{"role": "user", "content": [_text(system)]}]
        raise InvalidRequestError(
            f"{provider} requires at least one message with content",
            invalid_fields=["messages"],
            provider=provider,
        )
    return system, out


def _text(text: str) -> dict[str, Any]:
    return {"type": "text", "text": text}


def anthropic_tools(
    tools: Iterable[ToolDeclaration] | None, *, provider: str = PROVIDER
) -> list[AnthropicTool] | None:
    if not tools:
        return None
    return [
        {
            "name": tool.name,
            "description": tool.description,
            "input_schema": object_schema(tool, provider=provider),
        }
        for tool in tools
    ]


def anthropic_tool_choice(
    tool_choice: str | dict[str, Any] | None,
) -> dict[str, str] | None:
    """Map tool_choice to Anthropic format."""
    if tool_choice is None:
        return None
    if isinstance(tool_choice, str):
        if tool_choice == "required":
            return {"type": "any"}
        if tool_choice in ("auto", "none"):
            return {"type": tool_choice}
        return None
    name = tool_choice_name(tool_choice)
    return {"type": "tool", "name": name} if name else None


def anthropic_body(
    prompt: Prompt,
    options: InvokeOptions | None,
    config: BridgeConfig,
    *,
    default_max_tokens: int,
    provider: str = PROVIDER,
) -> dict[str, Any]:
    """Everything but the model id: messages, system slot, sampling, and tools."""
    opts = options or InvokeOptions()
    system, messages = anthropic_messages(
        require_messages(prompt, provider=provider), provider=provider
    )
    tools = anthropic_tools(opts.tools, provider=provider)
    stop = resolve(opts.stop_sequences, config.stop_sequences)
    return prune_none(
        {
            "messages": messages,
            "system": system or None,
            "max_tokens": resolve(opts.max_tokens, config.max_tokens, default_max_tokens),
            "temperature": resolve(opts.temperature, config.temperature),
            "top_p": resolve(opts.top_p, config.top_p),
            "top_k": resolve(opts.top_k, config.top_k),
            "stop_sequences": list(stop) if stop else None,
            "tools": tools,
            "tool_choice": anthropic_tool_choice(opts.tool_choice) if tools else None,
        }
    )


def beta_headers(config: AnthropicConfig) -> dict[str, str]:
    """``anthropic-beta`` flags; the 1M-context flag only for models that support it."""
    flags: list[str] = []
    if config.use_long_context:
        info = lookup(ANTHROPIC_MODELS, config.model, ANTHROPIC_DEFAULT)
        if info.supports_long_context:
            flags.append(LONG_CONTEXT_BETA)
        else:
            log.debug("Model %s has no long-context beta; header omitted", config.model)
    if config.use_extended_output:
        flags.append(EXTENDED_OUTPUT_BETA)
    return {"anthropic-beta": ",".join(flags)} if flags else {}


def build_request(
    prompt: Prompt, options: InvokeOptions | None, config: AnthropicConfig
) -> AnthropicRequest:
    info = lookup(ANTHROPIC_MODELS, config.model, ANTHROPIC_DEFAULT)
    request: dict[str, Any] = {
        "model": config.model,
        **anthropic_body(prompt, options, config, default_max_tokens=info.max_tokens),
    }
    headers = beta_headers(config)
    if headers:
        request["extra_headers"] = headers
    return request  # type: ignore[return-value]


# --- Response mapping ---


def anthropic_usage(raw_usage: Any) -> Usage | None:
    if raw_usage is None:
        return None
    return Usage.from_counts(
        get(raw_usage, "input_tokens"), get(raw_usage, "output_tokens")
    )


def _blocked(provider: str) -> ContentBlockedError:
    return ContentBlockedError(
        f"{provider} refused to answer (stop_reason=refusal)",
        reason="refusal",
        provider=provider,
    )


def parse_response(raw: Any, *, provider: str = PROVIDER) -> Response:
    """Text blocks concatenated in order; every ``tool_use`` block becomes a call."""
    text_parts: list[str] = []
    tool_calls: list[ToolCall] = []
    for block in get(raw, "content") or ():
        block_type = get(block, "type")
        if block_type == "text":
            text_parts.append(get(block, "text", ""))
        elif block_type == "tool_use":
            tool_calls.append(
                ToolCall(
                    tool_call_id=get(block, "id") or new_tool_call_id(),
                    name=get(block, "name", ""),
                    arguments=parse_tool_arguments(get(block, "input")),
                )
            )
    text = "".join(text_parts)
    if get(raw, "stop_reason") == "refusal" and not text and not tool_calls:
        raise _blocked(provider)
    return Response(
        content=TextContent(text),
        usage=anthropic_usage(get(raw, "usage")),
        tool_calls=tuple(tool_calls),
    )


# --- Streaming ---


@dataclass
class _PendingToolUse:
    tool_call_id: str
    name: str
    initial_input: Any = None
    fragments: list[str] = field(default_factory=list)

    def to_call(self) -> ToolCall:
        raw = "".join(self.fragments) if self.fragments else self.initial_input
        return ToolCall(
            tool_call_id=self.tool_call_id,
            name=self.name,
            arguments=parse_tool_arguments(raw),
        )


@dataclass
class AnthropicStreamReconstructor:
    """Reassemble Messages API stream events.

    Tool-use blocks collect their ``input_json_delta`` fragments and are
    emitted whole on ``content_block_stop``. Input tokens from
    ``message_start`` and output tokens from ``message_delta`` make one
    usage chunk.
    """

    provider: str = PROVIDER
    _tools: dict[int, _PendingToolUse] = field(default_factory=dict)
    _prompt_tokens: int | None = None
    _emitted: bool = False

    def feed(self, event: Any) -> list[Response]:
        event_type = get(event, "type")
        index = get(event, "index", 0)
        out: list[Response] = []

        if event_type == "message_start":
            usage = get(get(event, "message"), "usage")
            self._prompt_tokens = get(usage, "input_tokens")
        elif event_type == "content_block_start":
            block = get(event, "content_block")
            if get(block, "type") == "tool_use":
                self._tools[index] = _PendingToolUse(
                    tool_call_id=get(block, "id") or new_tool_call_id(),
                    name=get(block, "name", ""),
                    initial_input=get(block, "input"),
                )
            elif get(block, "type") == "text" and get(block, "text"):
                out.append(Response(content=TextContent(get(block, "text"))))
        elif event_type == "content_block_delta":
            delta = get(event, "delta")
            delta_type = get(delta, "type")
            if delta_type == "text_delta":
                out.append(Response(content=TextContent(get(delta, "text", ""))))
            elif delta_type == "input_json_delta" and index in self._tools:
                self._tools[index].fragments.append(get(delta, "partial_json", ""))
        elif event_type == "content_block_stop":
            pending = self._tools.pop(index, None)
            if pending is not None:
                out.append(Response(tool_calls=(pending.to_call(),)))
        elif event_type == "message_delta":
            delta = get(event, "delta")
            if get(delta, "stop_reason") == "refusal" and not self._emitted:
                raise _blocked(self.provider)
            usage = Usage.from_counts(
                self._prompt_tokens, get(get(event, "usage"), "output_tokens")
            )
            if usage is not None:
                out.append(Response(usage=usage))

        if any(r.content.value or r.tool_calls for r in out):
            self._emitted = True
        return out

    def finish(self) -> list[Response]:
        calls = tuple(p.to_call() for _, p in sorted(self._tools.items()))
        self._tools = {}
        return [Response(tool_calls=calls)] if calls else []


# --- Bridge ---


class AnthropicBridge:
    """Bridge onto ``AsyncAnthropic().messages``."""

    def __init__(
        self,
        config: AnthropicConfig | None = None,
        *,
        client: Any = None,
        **fields: Any,
    ) -> None:
        self.config = build_config(AnthropicConfig, config, fields)
        self._client: Any = client
        self._owns_client = client is None
        self._info = lookup(ANTHROPIC_MODELS, self.config.model, ANTHROPIC_DEFAULT)

    def _get_client(self) -> Any:
        """Lazily initialize and return the async Anthropic client."""
        if self._client is None:
            try:
                from anthropic import AsyncAnthropic
            except ImportError as e:
                raise ConfigurationError(
                    "anthropic package not installed",
                    hint="pip install 'llmbridge[anthropic]'",
                    cause=e,
                ) from e
            kwargs: dict[str, Any] = {
                "api_key": self.config.api_key_value(),
                "timeout": self.config.timeout_s,
            }
            if self.config.base_url:
                kwargs["base_url"] = self.config.base_url
            if self.config.max_retries is not None:
                kwargs["max_retries"] = self.config.max_retries
            self._client = AsyncAnthropic(**kwargs)
        return self._client

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(
            modalities=("text", "image", "file"),
            tool_calls=True,
            streaming=True,
            vision=True,
        )

    def get_metadata(self) -> BridgeMetadata:
        family = self._info.family
        return BridgeMetadata(
            name=f"Anthropic {family}",
            version=self._info.version,
            description=f"Anthropic {family} Bridge Implementation",
            model=self.config.model,
            context_window=self._info.context_window,
            max_tokens=self._info.max_tokens,
            pricing=self._info.pricing,
        )

    def _classify(self, e: BaseException) -> Exception:
        return classify(
            e,
            provider=PROVIDER,
            model=self.config.model,
            timeout_s=self.config.timeout_s,
            supported_models=tuple(ANTHROPIC_MODELS),
        )

    async def invoke(
        self, prompt: Prompt, options: InvokeOptions | None = None
    ) -> Response:
        request = build_request(prompt, options, self.config)
        try:
            raw = await self._get_client().messages.create(**request)
            return parse_response(raw)
        except (asyncio.CancelledError, BridgeError):
            raise
        except Exception as e:
            raise self._classify(e) from e

    def invoke_stream(
        self, prompt: Prompt, options: InvokeOptions | None = None
    ) -> ResponseStream:
        request = build_request(prompt, options, self.config)
        return ResponseStream(self._stream(request))

    async def _stream(self, request: AnthropicRequest) -> AsyncIterator[Response]:
        stream: Any = None
        try:
            stream = await self._get_client().messages.create(**request, stream=True)
            async with aclosing(
                reconstruct(stream, AnthropicStreamReconstructor())
            ) as chunks:
                async for chunk in chunks:
                    yield chunk
        except (asyncio.CancelledError, BridgeError):
            raise
        except Exception as e:
            raise self._classify(e) from e
        finally:
            await release(stream)

    async def aclose(self) -> None:
        """Close the client if this bridge created it."""
        client = self._client
        if client is None or not self._owns_client:
            return
        self._client = None
        await release(client)
