"""Ollama bridge over the local ``/api/chat`` endpoint.

The model family (Llama, Gemma, GPT-OSS) is resolved once from the model id
when the bridge is built; it decides the ``num_predict`` default and whether
system text is folded into the first turn (Gemma has no system role).
"""

from __future__ import annotations

import asyncio
from contextlib import aclosing
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, TypedDict

from llmbridge._http import JSON_HEADERS, new_async_client, raise_for_status
from llmbridge.catalog import (
    OLLAMA_DEFAULT_NUM_PREDICT,
    OllamaFamily,
    ollama_family,
    ollama_model_info,
)
from llmbridge.config import OllamaConfig, build_config
from llmbridge.errors import APIError, BridgeError
from llmbridge.options import InvokeOptions, prune_none, resolve
from llmbridge.providers._chat_completions import chat_tools
from llmbridge.providers._content import (
    b64,
    collect_text,
    fold_system,
    get,
    new_tool_call_id,
    parse_tool_arguments,
    require_messages,
)
from llmbridge.providers._errors import classify
from llmbridge.providers._sse import iter_ndjson
from llmbridge.providers.base import ProviderCapabilities
from llmbridge.streaming import ResponseStream, reconstruct, release
from llmbridge.types import BridgeMetadata, Response, TextContent, ToolCall, Usage

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from llmbridge.types import Message, Prompt

PROVIDER = "ollama"


class OllamaMessage(TypedDict, total=False):
    role: Literal["system", "user", "assistant", "tool"]
    content: str
    images: list[str]
    tool_calls: list[dict[str, Any]]
    tool_name: str


class OllamaRequest(TypedDict, total=False):
    model: str
    messages: list[OllamaMessage]
    tools: list[dict[str, Any]]
    options: dict[str, Any]
    stream: bool


# --- Request mapping ---


def _ollama_message(message: Message, text: str) -> OllamaMessage:
    item: OllamaMessage = {"role": message.role, "content": text}
    images = [b64(c.value) for c in message.content if c.kind == "image"]
    if images:
        item["images"] = images
    if message.role == "tool" and message.name:
        item["tool_name"] = message.name
    if message.tool_calls:
        item["tool_calls"] = [
            {"function": {"name": c.name, "arguments": dict(c.arguments)}}
            for c in message.tool_calls
        ]
    return item


def ollama_messages(
    messages: Sequence[Message], family: OllamaFamily
) -> list[OllamaMessage]:
    if family is OllamaFamily.GEMMA:
        return [_ollama_message(m, text) for m, text in fold_system(messages)]
    return [_ollama_message(m, collect_text(m.content)) for m in messages]


def build_request(
    prompt: Prompt,
    options: InvokeOptions | None,
    config: OllamaConfig,
    family: OllamaFamily | None = None,
) -> OllamaRequest:
    opts = options or InvokeOptions()
    family = family or ollama_family(config.model)
    messages = require_messages(prompt, provider=PROVIDER)
    stop = resolve(opts.stop_sequences, config.stop_sequences)
    request: dict[str, Any] = {
        "model": config.model,
        "messages": ollama_messages(messages, family),
        "tools": chat_tools(opts.tools, provider=PROVIDER),
        "options": prune_none(
            {
                "temperature": resolve(opts.temperature, config.temperature),
                "top_p": resolve(opts.top_p, config.top_p),
                "top_k": resolve(opts.top_k, config.top_k),
                "num_predict": resolve(
                    opts.max_tokens,
                    config.max_tokens,
                    OLLAMA_DEFAULT_NUM_PREDICT[family],
                ),
                "stop": list(stop) if stop else None,
                "presence_penalty": resolve(
                    opts.presence_penalty, config.presence_penalty
                ),
                "frequency_penalty": resolve(
                    opts.frequency_penalty, config.frequency_penalty
                ),
                "seed": config.seed,
            }
        ),
    }
    return prune_none(request)  # type: ignore[return-value]


# --- Response mapping ---


def _tool_calls(message: Any) -> tuple[ToolCall, ...]:
    calls: list[ToolCall] = []
    for raw in get(message, "tool_calls") or ():
        function = get(raw, "function")
        calls.append(
            ToolCall(
                tool_call_id=get(raw, "id") or new_tool_call_id(),
                name=get(function, "name", ""),
                arguments=parse_tool_arguments(get(function, "arguments")),
            )
        )
    return tuple(calls)


def ollama_usage(raw: Any) -> Usage | None:
    return Usage.from_counts(get(raw, "prompt_eval_count"), get(raw, "eval_count"))


def _raise_on_error(raw: Any) -> None:
    error = get(raw, "error")
    if error:
        raise APIError(f"ollama error: {error}", provider=PROVIDER)


def parse_response(raw: Any) -> Response:
    _raise_on_error(raw)
    message = get(raw, "message")
    content = get(message, "content", "")
    return Response(
        content=TextContent(content if isinstance(content, str) else ""),
        usage=ollama_usage(raw),
        tool_calls=_tool_calls(message),
    )


# --- Streaming ---


@dataclass
class OllamaStreamReconstructor:
    """One NDJSON line per chunk; the ``done`` line carries the token counts."""

    def feed(self, line: Any) -> list[Response]:
        _raise_on_error(line)
        message = get(line, "message")
        out: list[Response] = []
        content = get(message, "content", "")
        if isinstance(content, str) and content:
            out.append(Response(content=TextContent(content)))
        calls = _tool_calls(message)
        if calls:
            out.append(Response(tool_calls=calls))
        if get(line, "done", False):
            usage = ollama_usage(line)
            if usage is not None:
                out.append(Response(usage=usage))
        return out

    def finish(self) -> list[Response]:
        return []


# --- Bridge ---


class OllamaBridge:
    """Bridge onto a local Ollama server."""

    def __init__(
        self,
        config: OllamaConfig | None = None,
        *,
        client: Any = None,
        **fields: Any,
    ) -> None:
        self.config = build_config(OllamaConfig, config, fields)
        self.family = ollama_family(self.config.model)
        self._info = ollama_model_info(self.config.model, self.family)
        self._client: Any = client
        self._owns_client = client is None

    @property
    def url(self) -> str:
        return f"{self.config.host.rstrip('/')}/api/chat"

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = new_async_client(self.config.timeout_s)
        return self._client

    @property
    def capabilities(self) -> ProviderCapabilities:
        if self.family is OllamaFamily.GEMMA:
            return ProviderCapabilities(
                modalities=("text", "image"),
                tool_calls=True,
                streaming=True,
                vision=True,
            )
        return ProviderCapabilities(tool_calls=True, streaming=True)

    def get_metadata(self) -> BridgeMetadata:
        family = self._info.family
        return BridgeMetadata(
            name=family,
            version=self._info.version,
            description=f"Ollama {family} Bridge ({self.config.model})",
            model=self.config.model,
            context_window=self._info.context_window,
            max_tokens=self._info.max_tokens,
        )

    def _classify(self, e: BaseException) -> Exception:
        return classify(
            e,
            provider=PROVIDER,
            model=self.config.model,
            timeout_s=self.config.timeout_s,
        )

    async def invoke(
        self, prompt: Prompt, options: InvokeOptions | None = None
    ) -> Response:
        request = build_request(prompt, options, self.config, self.family)
        try:
            response = await self._get_client().post(
                self.url, json={**request, "stream": False}, headers=JSON_HEADERS
            )
            await raise_for_status(response)
            return parse_response(response.json())
        except (asyncio.CancelledError, BridgeError):
            raise
        except Exception as e:
            raise self._classify(e) from e

    def invoke_stream(
        self, prompt: Prompt, options: InvokeOptions | None = None
    ) -> ResponseStream:
        request = build_request(prompt, options, self.config, self.family)
        return ResponseStream(self._stream(request))

    async def _stream(self, request: OllamaRequest) -> AsyncIterator[Response]:
        try:
            async with self._get_client().stream(
                "POST", self.url, json={**request, "stream": True}, headers=JSON_HEADERS
            ) as response:
                await raise_for_status(response)
                lines = iter_ndjson(response.aiter_lines())
                async with aclosing(
                    reconstruct(lines, OllamaStreamReconstructor())
                ) as chunks:
                    async for chunk in chunks:
                        yield chunk
        except (asyncio.CancelledError, BridgeError):
            raise
        except Exception as e:
            raise self._classify(e) from e

    async def aclose(self) -> None:
        client = self._client
        if client is None or not self._owns_client:
            return
        self._client = None
        await release(client)
