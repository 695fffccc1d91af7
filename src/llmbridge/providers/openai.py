"""OpenAI Chat Completions bridge."""

from __future__ import annotations

import asyncio
from contextlib import aclosing
from typing import TYPE_CHECKING, Any

from llmbridge.catalog import OPENAI_DEFAULT, OPENAI_MODELS, lookup
from llmbridge.config import OpenAIConfig, build_config
from llmbridge.errors import BridgeError, ConfigurationError
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
from llmbridge.providers._content import require_messages
from llmbridge.providers._errors import classify
from llmbridge.providers.base import ProviderCapabilities
from llmbridge.streaming import ResponseStream, reconstruct, release
from llmbridge.types import BridgeMetadata

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from llmbridge.types import Prompt, Response

PROVIDER = "openai"


def build_request(
    prompt: Prompt, options: InvokeOptions | None, config: OpenAIConfig
) -> ChatRequest:
    """Map a prompt onto a Chat Completions request; user images ride as data URLs."""
    opts = options or InvokeOptions()
    messages = require_messages(prompt, provider=PROVIDER)
    tools = chat_tools(opts.tools, provider=PROVIDER)
    stop = resolve(opts.stop_sequences, config.stop_sequences)
    request: dict[str, Any] = {
        "model": config.model,
        "messages": chat_messages(messages, provider=PROVIDER, multimodal=True),
        "temperature": resolve(opts.temperature, config.temperature),
        "top_p": resolve(opts.top_p, config.top_p),
        "max_tokens": resolve(opts.max_tokens, config.max_tokens),
        "stop": list(stop) if stop else None,
        "presence_penalty": resolve(opts.presence_penalty, config.presence_penalty),
        "frequency_penalty": resolve(opts.frequency_penalty, config.frequency_penalty),
        "tools": tools,
        "tool_choice": (
            resolve(chat_tool_choice(opts.tool_choice), "auto") if tools else None
        ),
        "reasoning_effort": opts.reasoning_effort,
        "response_format": response_format_payload(opts.response_format),
    }
    return prune_none(request)  # type: ignore[return-value]


def parse_response(raw: Any) -> Response:
    return parse_chat_completion(raw, provider=PROVIDER)


class OpenAIStreamReconstructor(ChatStreamState):
    def __init__(self) -> None:
        super().__init__(provider=PROVIDER)


class OpenAIBridge:
    """Bridge onto ``AsyncOpenAI().chat.completions``."""

    def __init__(
        self,
        config: OpenAIConfig | None = None,
        *,
        client: Any = None,
        **fields: Any,
    ) -> None:
        self.config = build_config(OpenAIConfig, config, fields)
        self._client: Any = client
        self._owns_client = client is None
        self._info = lookup(OPENAI_MODELS, self.config.model, OPENAI_DEFAULT)

    def _get_client(self) -> Any:
        """Lazily initialize and return the async OpenAI client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError as e:
                raise ConfigurationError(
                    "openai package not installed",
                    hint="pip install 'llmbridge[openai]'",
                    cause=e,
                ) from e
            self._client = AsyncOpenAI(
                api_key=self.config.api_key_value(),
                base_url=self.config.base_url,
                organization=self.config.organization,
                project=self.config.project,
                timeout=self.config.timeout_s,
            )
        return self._client

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(
            modalities=("text", "image"),
            tool_calls=True,
            streaming=True,
            vision=True,
        )

    def get_metadata(self) -> BridgeMetadata:
        family = self._info.family
        return BridgeMetadata(
            name=f"OpenAI {family}",
            version=self._info.version,
            description=f"OpenAI {family} Bridge Implementation",
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
            supported_models=tuple(OPENAI_MODELS),
        )

    async def invoke(
        self, prompt: Prompt, options: InvokeOptions | None = None
    ) -> Response:
        request = build_request(prompt, options, self.config)
        try:
            raw = await self._get_client().chat.completions.create(**request)
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

    async def _stream(self, request: ChatRequest) -> AsyncIterator[Response]:
        stream: Any = None
        try:
            stream = await self._get_client().chat.completions.create(
                **request, stream=True, stream_options={"include_usage": True}
            )
            async with aclosing(
                reconstruct(stream, OpenAIStreamReconstructor())
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
