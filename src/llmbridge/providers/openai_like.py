"""Bridge for self-hosted OpenAI-compatible endpoints (vLLM and similar)."""

from __future__ import annotations

import asyncio
from contextlib import aclosing
from typing import TYPE_CHECKING, Any

from llmbridge._http import JSON_HEADERS, SSE_HEADERS, new_async_client, raise_for_status
from llmbridge.catalog import OPENAI_LIKE_DEFAULT
from llmbridge.config import OpenAILikeConfig, build_config
from llmbridge.errors import BridgeError
from llmbridge.options import InvokeOptions, prune_none, resolve
from llmbridge.providers._chat_completions import (
    ChatRequest,
    ChatStreamState,
    chat_messages,
    chat_tool_choice,
    chat_tools,
    parse_chat_completion,
)
from llmbridge.providers._content import require_messages
from llmbridge.providers._errors import classify
from llmbridge.providers._sse import iter_sse_json
from llmbridge.providers.base import ProviderCapabilities
from llmbridge.streaming import ResponseStream, reconstruct, release
from llmbridge.types import BridgeMetadata

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from llmbridge.types import Prompt, Response

PROVIDER = "openai_like"


def build_request(
    prompt: Prompt, options: InvokeOptions | None, config: OpenAILikeConfig
) -> ChatRequest:
    """Map a prompt onto a text-only Chat Completions request.

    With ``config.strict`` (the default) absent fields are omitted; otherwise
    they are sent as ``null`` for servers that expect every key.
    """
    opts = options or InvokeOptions()
    messages = require_messages(prompt, provider=PROVIDER)
    tools = chat_tools(opts.tools, provider=PROVIDER)
    stop = resolve(opts.stop_sequences, config.stop_sequences)
    request: dict[str, Any] = {
        "model": config.model,
        "messages": chat_messages(messages, provider=PROVIDER),
        "temperature": resolve(opts.temperature, config.temperature),
        "top_p": resolve(opts.top_p, config.top_p),
        "max_tokens": resolve(opts.max_tokens, config.max_tokens),
        "stop": list(stop) if stop else None,
        "presence_penalty": resolve(opts.presence_penalty, config.presence_penalty),
        "frequency_penalty": resolve(opts.frequency_penalty, config.frequency_penalty),
    }
    if tools:
        request["tools"] = tools
        request["tool_choice"] = chat_tool_choice(resolve(opts.tool_choice, "auto"))
    if config.strict:
        return prune_none(request)  # type: ignore[return-value]
    return request  # type: ignore[return-value]


def parse_response(raw: Any) -> Response:
    return parse_chat_completion(raw, provider=PROVIDER)


class OpenAILikeStreamReconstructor(ChatStreamState):
    def __init__(self) -> None:
        super().__init__(provider=PROVIDER)


class OpenAILikeBridge:
    """Bridge onto ``POST {base_url}/chat/completions`` of any compatible server."""

    def __init__(
        self,
        config: OpenAILikeConfig | None = None,
        *,
        client: Any = None,
        **fields: Any,
    ) -> None:
        self.config = build_config(OpenAILikeConfig, config, fields)
        self._client: Any = client
        self._owns_client = client is None

    @property
    def url(self) -> str:
        return f"{self.config.base_url}/chat/completions"

    def _headers(self, *, stream: bool = False) -> dict[str, str]:
        headers = dict(SSE_HEADERS if stream else JSON_HEADERS)
        api_key = self.config.api_key_value()
        if api_key:
            headers["authorization"] = f"Bearer {api_key}"
        if self.config.organization:
            headers["openai-organization"] = self.config.organization
        headers.update(self.config.headers or {})
        return headers

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = new_async_client(self.config.timeout_s)
        return self._client

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(tool_calls=True, streaming=True)

    def get_metadata(self) -> BridgeMetadata:
        return BridgeMetadata(
            name="OpenAI-Compatible Chat Completions",
            version=OPENAI_LIKE_DEFAULT.version,
            description="Generic OpenAI-like bridge (vLLM and similar)",
            model=self.config.model,
            context_window=OPENAI_LIKE_DEFAULT.context_window,
            max_tokens=OPENAI_LIKE_DEFAULT.max_tokens,
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
        request = build_request(prompt, options, self.config)
        try:
            response = await self._get_client().post(
                self.url, json={**request, "stream": False}, headers=self._headers()
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
        request = build_request(prompt, options, self.config)
        return ResponseStream(self._stream(request))

    async def _stream(self, request: ChatRequest) -> AsyncIterator[Response]:
        try:
            async with self._get_client().stream(
                "POST",
                self.url,
                json={**request, "stream": True},
                headers=self._headers(stream=True),
            ) as response:
                await raise_for_status(response)
                events = iter_sse_json(response.aiter_lines())
                async with aclosing(
                    reconstruct(events, OpenAILikeStreamReconstructor())
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
