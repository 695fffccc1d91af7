"""Google Gemini bridge (google-genai SDK)."""

from __future__ import annotations

import asyncio
from contextlib import aclosing
from dataclasses import dataclass
import json
from typing import TYPE_CHECKING, Any, Literal, TypedDict

from llmbridge.catalog import GEMINI_DEFAULT, GEMINI_MODELS, lookup
from llmbridge.config import GeminiConfig, build_config
from llmbridge.errors import BridgeError, ConfigurationError, ContentBlockedError
from llmbridge.options import InvokeOptions, prune_none, resolve, tool_choice_name
from llmbridge.providers._content import (
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
    from collections.abc import AsyncIterator, Sequence

    from llmbridge.types import Message, Prompt

PROVIDER = "gemini"

BLOCKING_FINISH_REASONS = frozenset(
    {
        "SAFETY",
        "RECITATION",
        "BLOCKLIST",
        "PROHIBITED_CONTENT",
        "SPII",
        "MALFORMED_FUNCTION_CALL",
        "OTHER",
    }
)

_TOOL_MODES = {"auto": "AUTO", "none": "NONE", "required": "ANY"}


class GeminiContent(TypedDict):
    role: Literal["user", "model"]
    parts: list[dict[str, Any]]


class GeminiRequest(TypedDict):
    model: str
    contents: list[GeminiContent]
    config: dict[str, Any]


# --- Request mapping ---


def _tool_response(message: Message) -> dict[str, Any]:
    """Tool output as a JSON object when it parses as one, else ``{"result": text}``."""
    text = collect_text(message.content)
    try:
        parsed = json.loads(text)
    except ValueError:
        parsed = None
    response = parsed if isinstance(parsed, dict) else {"result": text}
    return {"function_response": {"name": message.name, "response": response}}


def _parts(message: Message) -> list[dict[str, Any]]:
    parts: list[dict[str, Any]] = []
    for c in message.content:
        if c.kind == "text":
            if c.value:
                parts.append({"text": c.value})
        else:
            parts.append(
                {"inline_data": {"mime_type": media_type_of(c), "data": c.value}}
            )
    return parts


def gemini_contents(
    messages: Sequence[Message],
) -> tuple[str | None, list[GeminiContent]]:
    """Split out the system instruction and map turns onto ``user``/``model`` contents."""
    system = "\n\n".join(
        collect_text(m.content) for m in messages if m.role == "system"
    )
    contents: list[GeminiContent] = []
    for message in messages:
        if message.role == "system":
            continue
        if message.role == "tool":
            contents.append({"role": "user", "parts": [_tool_response(message)]})
            continue
        parts = _parts(message)
        if message.role == "assistant":
            for call in message.tool_calls or ():
                parts.append(
                    {"function_call": {"name": call.name, "args": dict(call.arguments)}}
                )
            if parts:
                contents.append({"role": "model", "parts": parts})
            continue
        contents.append({"role": "user", "parts": parts or [{"text": ""}]})

    if not contents and system:
        return None, [{"role": "user", "parts": [{"text": system}]}]
    return system or None, contents


def _tool_config(choice: str | dict[str, Any] | None) -> dict[str, Any] | None:
    if choice is None:
        return None
    if isinstance(choice, str):
        return {"function_calling_config": {"mode": _TOOL_MODES.get(choice, "AUTO")}}
    name = tool_choice_name(choice)
    return {
        "function_calling_config": {
            "mode": "ANY",
            "allowed_function_names": [name] if name else None,
        }
    }


def _structured_output(
    response_format: str | dict[str, Any] | None, config: GeminiConfig
) -> tuple[str | None, dict[str, Any] | None]:
    if isinstance(response_format, dict):
        return "application/json", response_format
    if response_format == "json_object":
        return "application/json", config.response_schema
    if response_format == "text":
        return "text/plain", None
    return config.response_mime_type, config.response_schema


def build_request(
    prompt: Prompt, options: InvokeOptions | None, config: GeminiConfig
) -> GeminiRequest:
    """Map a prompt onto ``generate_content(model=, contents=, config=)`` arguments."""
    opts = options or InvokeOptions()
    system, contents = gemini_contents(require_messages(prompt, provider=PROVIDER))
    stop = resolve(opts.stop_sequences, config.stop_sequences)
    mime_type, schema = _structured_output(opts.response_format, config)

    tools = None
    tool_config = None
    if opts.tools:
        tools = [
            {
                "function_declarations": [
                    {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": object_schema(tool, provider=PROVIDER),
                    }
                    for tool in opts.tools
                ]
            }
        ]
        tool_config = _tool_config(resolve(opts.tool_choice, "auto"))

    generation_config = prune_none(
        {
            "system_instruction": system,
            "temperature": resolve(opts.temperature, config.temperature),
            "top_p": resolve(opts.top_p, config.top_p),
            "top_k": resolve(opts.top_k, config.top_k),
            "max_output_tokens": resolve(opts.max_tokens, config.max_tokens),
            "stop_sequences": list(stop) if stop else None,
            "candidate_count": config.candidate_count,
            "response_mime_type": mime_type,
            "response_schema": schema,
            "presence_penalty": resolve(opts.presence_penalty, config.presence_penalty),
            "frequency_penalty": resolve(
                opts.frequency_penalty, config.frequency_penalty
            ),
            "safety_settings": (
                [dict(s) for s in config.safety_settings]
                if config.safety_settings
                else None
            ),
            "tools": tools,
            "tool_config": tool_config,
        }
    )
    return {"model": config.model, "contents": contents, "config": generation_config}


# --- Response mapping ---


def _enum_name(value: Any) -> str | None:
    if value is None:
        return None
    return str(getattr(value, "value", value)).upper()


def ensure_allowed(raw: Any) -> None:
    """Raise :class:`ContentBlockedError` on a prompt block or a blocking finish reason."""
    block_reason = _enum_name(get(get(raw, "prompt_feedback"), "block_reason"))
    if block_reason and block_reason != "BLOCKED_REASON_UNSPECIFIED":
        raise ContentBlockedError(
            f"Gemini request blocked: {block_reason}",
            reason=block_reason,
            provider=PROVIDER,
        )
    for candidate in get(raw, "candidates") or ():
        finish_reason = _enum_name(get(candidate, "finish_reason"))
        if finish_reason in BLOCKING_FINISH_REASONS:
            raise ContentBlockedError(
                f"Gemini response blocked: {finish_reason}",
                reason=finish_reason,
                provider=PROVIDER,
            )


def _candidate_parts(raw: Any) -> Sequence[Any]:
    candidates = get(raw, "candidates") or ()
    if not candidates:
        return ()
    return get(get(candidates[0], "content"), "parts") or ()


def _text_of(raw: Any) -> str:
    return "".join(
        get(p, "text", "")
        for p in _candidate_parts(raw)
        if isinstance(get(p, "text"), str) and not get(p, "thought", False)
    )


def _call_of(part: Any) -> ToolCall | None:
    call = get(part, "function_call")
    if call is None:
        return None
    return ToolCall(
        tool_call_id=get(call, "id") or new_tool_call_id(),
        name=get(call, "name", ""),
        arguments=parse_tool_arguments(get(call, "args")),
    )


def gemini_usage(raw: Any) -> Usage | None:
    metadata = get(raw, "usage_metadata")
    if metadata is None:
        return None
    return Usage.from_counts(
        get(metadata, "prompt_token_count"), get(metadata, "candidates_token_count")
    )


def parse_response(raw: Any) -> Response:
    ensure_allowed(raw)
    calls = [c for c in (_call_of(p) for p in _candidate_parts(raw)) if c is not None]
    return Response(
        content=TextContent(_text_of(raw)),
        usage=gemini_usage(raw),
        tool_calls=tuple(calls),
    )


# --- Streaming ---


@dataclass
class GeminiStreamReconstructor:
    """Each chunk carries only new text; usage metadata is cumulative, so it is emitted once at the end."""

    _usage: Usage | None = None

    def feed(self, chunk: Any) -> list[Response]:
        ensure_allowed(chunk)
        out: list[Response] = []
        text = _text_of(chunk)
        if text:
            out.append(Response(content=TextContent(text)))

        calls = [c for c in (_call_of(p) for p in _candidate_parts(chunk)) if c is not None]
        if calls:
            out.append(Response(tool_calls=tuple(calls)))

        usage = gemini_usage(chunk)
        if usage is not None:
            self._usage = usage
        return out

    def finish(self) -> list[Response]:
        if self._usage is None:
            return []
        usage, self._usage = self._usage, None
        return [Response(usage=usage)]


# --- Bridge ---


class GeminiBridge:
    """Bridge onto ``genai.Client().aio.models``."""

    def __init__(
        self,
        config: GeminiConfig | None = None,
        *,
        client: Any = None,
        **fields: Any,
    ) -> None:
        self.config = build_config(GeminiConfig, config, fields)
        self._client: Any = client
        self._owns_client = client is None
        self._info = lookup(GEMINI_MODELS, self.config.model, GEMINI_DEFAULT)

    def _get_client(self) -> Any:
        """Lazy-initialize the Gemini client."""
        if self._client is None:
            try:
                from google import genai
            except ImportError as e:
                raise ConfigurationError(
                    "google-genai package not installed",
                    hint="pip install 'llmbridge[gemini]'",
                    cause=e,
                ) from e
            self._client = genai.Client(
                api_key=self.config.api_key_value(),
                http_options={"timeout": int(self.config.timeout_s * 1000)},
            )
        return self._client

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(
            modalities=("text", "image", "audio", "video", "file"),
            tool_calls=True,
            streaming=True,
            vision=True,
        )

    def get_metadata(self) -> BridgeMetadata:
        family = self._info.family
        return BridgeMetadata(
            name=f"Google {family}",
            version=self._info.version,
            description=f"Google {family} Bridge Implementation",
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
            supported_models=tuple(GEMINI_MODELS),
        )

    async def invoke(
        self, prompt: Prompt, options: InvokeOptions | None = None
    ) -> Response:
        request = build_request(prompt, options, self.config)
        try:
            raw = await self._get_client().aio.models.generate_content(**request)
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

    async def _stream(self, request: GeminiRequest) -> AsyncIterator[Response]:
        stream: Any = None
        try:
            stream = await self._get_client().aio.models.generate_content_stream(
                **request
            )
            async with aclosing(
                reconstruct(stream, GeminiStreamReconstructor())
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
        client = self._client
        if client is None or not self._owns_client:
            return
        self._client = None
        await release(getattr(client, "aio", None))
