"""xAI Grok bridge over the raw Chat Completions HTTP endpoint.

Grok speaks the Chat Completions wire format with a few extensions: live
search parameters, ``reasoning_effort``, and reasoning/citation material
returned beside the answer. Reasoning and citations are appended to the
answer text as ``Reasoning:`` and ``Citations:`` sections, both for
:func:`parse_response` and for the stream, so the two agree.
"""

from __future__ import annotations

import asyncio
from contextlib import aclosing
import logging
from typing import TYPE_CHECKING, Any

from llmbridge._http import JSON_HEADERS, SSE_HEADERS, new_async_client, raise_for_status
from llmbridge.catalog import GROK_DEFAULT, GROK_MODELS, lookup
from llmbridge.config import GrokConfig, build_config
from llmbridge.errors import BridgeError
from llmbridge.options import InvokeOptions, prune_none, resolve
from llmbridge.providers._chat_completions import (
    ChatRequest,
    ChatStreamState,
    chat_messages,
    chat_tool_choice,
    chat_tools,
    parse_chat_completion,
    response_format_payload,
)
from llmbridge.providers._content import require_messages, snake_case
from llmbridge.providers._errors import classify
from llmbridge.providers._sse import iter_sse_json
from llmbridge.providers.base import ProviderCapabilities
from llmbridge.streaming import ResponseStream, reconstruct, release
from llmbridge.types import BridgeMetadata

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from llmbridge.types import Prompt, Response

log = logging.getLogger(__name__)

PROVIDER = "grok"

_REASONING_EFFORTS = frozenset({"low", "high"})
_SEARCH_FIELDS = (
    "mode",
    "return_citations",
    "from_date",
    "to_date",
    "max_search_results",
)


def _search_source(source: Any) -> dict[str, Any]:
    if hasattr(source, "model_dump"):
        source = source.model_dump(exclude_none=True)
    return prune_none({snake_case(k): v for k, v in dict(source).items()})


def search_parameters(search: Any) -> dict[str, Any] | None:
    """Map live-search settings (config model or dict, any key case) onto ``search_parameters``."""
    if search is None:
        return None
    if hasattr(search, "model_dump"):
        search = search.model_dump(exclude_none=True)
    normalized = {snake_case(k): v for k, v in dict(search).items()}
    payload: dict[str, Any] = {k: normalized.get(k) for k in _SEARCH_FIELDS}
    sources = normalized.get("sources")
    if sources:
        payload["sources"] = [_search_source(s) for s in sources]
    return prune_none(payload) or None


def build_request(
    prompt: Prompt, options: InvokeOptions | None, config: GrokConfig
) -> ChatRequest:
    """Map a prompt onto Grok's Chat Completions request (text content only)."""
    opts = options or InvokeOptions()
    messages = require_messages(prompt, provider=PROVIDER)
    tools = chat_tools(opts.tools, provider=PROVIDER)
    stop = resolve(opts.stop_sequences, config.stop_sequences)

    effort = resolve(opts.reasoning_effort, config.reasoning_effort)
    if effort is not None and effort not in _REASONING_EFFORTS:
        log.debug("Omitting reasoning_effort=%r; Grok accepts low or high", effort)
        effort = None

    tool_choice = None
    if tools:
        tool_choice = chat_tool_choice(
            resolve(opts.tool_choice, config.tool_choice, "auto")
        )

    request: dict[str, Any] = {
        "model": config.model,
        "messages": chat_messages(messages, provider=PROVIDER),
        "temperature": resolve(opts.temperature, config.temperature),
        "top_p": resolve(opts.top_p, config.top_p),
        "max_tokens": resolve(opts.max_tokens, config.max_tokens),
        "frequency_penalty": resolve(opts.frequency_penalty, config.frequency_penalty),
        "presence_penalty": resolve(opts.presence_penalty, config.presence_penalty),
        "stop": list(stop) if stop else None,
        "tools": tools,
        "tool_choice": tool_choice,
        "parallel_tool_calls": config.parallel_tool_calls if tools else None,
        "response_format": response_format_payload(
            resolve(opts.response_format, config.response_format)
        ),
        "reasoning_effort": effort,
        "search_parameters": search_parameters(resolve(opts.search, config.search)),
        "user": config.user,
        "seed": config.seed,
    }
    return prune_none(request)  # type: ignore[return-value]


def parse_response(raw: Any) -> Response:
    return parse_chat_completion(raw, provider=PROVIDER, with_sections=True)


class GrokStreamReconstructor(ChatStreamState):
    def __init__(self) -> None:
        super().__init__(provider=PROVIDER, with_sections=True)


class GrokBridge:
    """Bridge onto ``POST {base_url}/chat/completions`` at xAI."""

    def __init__(
        self,
        config: GrokConfig | None = None,
        *,
        client: Any = None,
        **fields: Any,
    ) -> None:
        self.config = build_config(GrokConfig, config, fields)
        self._client: Any = client
        self._owns_client = client is None
        self._info = lookup(GROK_MODELS, self.config.model, GROK_DEFAULT)

    @property
    def url(self) -> str:
        return f"{self.config.base_url.rstrip('/')}/chat/completions"

    def _headers(self, *, stream: bool = False) -> dict[str, str]:
        headers = dict(SSE_HEADERS if stream else JSON_HEADERS)
        headers["authorization"] = f"Bearer {self.config.api_key_value()}"
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
            name="xAI Grok Chat Completions",
            version=self._info.version,
            description="xAI Grok bridge over the Chat Completions API",
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
            supported_models=tuple(GROK_MODELS),
        )

    async def invoke(
        self, prompt: Prompt, options: InvokeOptions | None = None
    ) -> Response:
        request = build_request(prompt, options, self.config)
        try:
            response = await self._get_client().post(
                self.url, json=request, headers=self._headers()
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
        payload = {**request, "stream": True, "stream_options": {"include_usage": True}}
        try:
            async with self._get_client().stream(
                "POST", self.url, json=payload, headers=self._headers(stream=True)
            ) as response:
                await raise_for_status(response)
                events = iter_sse_json(response.aiter_lines())
                async with aclosing(
                    reconstruct(events, GrokStreamReconstructor())
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

