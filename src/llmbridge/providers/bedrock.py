"""Amazon Bedrock bridge (``bedrock-runtime`` via boto3).

The model family is resolved once from the model id: Anthropic models take
the Messages body (plus ``anthropic_version``), Meta Llama models take a
Llama 3 chat-template prompt. boto3 is synchronous, so each client call runs
in a worker thread; streamed events are pulled one at a time the same way.
"""

from __future__ import annotations

import asyncio
from contextlib import aclosing
from dataclasses import dataclass
import json
import logging
from typing import TYPE_CHECKING, Any, TypedDict

from llmbridge.catalog import (
    BEDROCK_DEFAULTS,
    BEDROCK_MODELS,
    BedrockFamily,
    bedrock_family,
)
from llmbridge.config import BedrockConfig, build_config
from llmbridge.errors import BridgeError, ConfigurationError
from llmbridge.options import InvokeOptions, prune_none, resolve
from llmbridge.providers import anthropic as anthropic_mapping
from llmbridge.providers._content import collect_text, get, require_messages
from llmbridge.providers._errors import classify
from llmbridge.providers.base import ProviderCapabilities
from llmbridge.streaming import ResponseStream, reconstruct, release
from llmbridge.types import BridgeMetadata, Response, TextContent, Usage

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator, Sequence

    from llmbridge.providers.base import StreamReconstructor
    from llmbridge.types import Message, Prompt

log = logging.getLogger(__name__)

PROVIDER = "bedrock"

ANTHROPIC_DEFAULT_MAX_TOKENS = 4096
INVOCATION_METRICS_KEY = "amazon-bedrock-invocationMetrics"

_END = object()


class BedrockRequest(TypedDict):
    modelId: str
    body: dict[str, Any]


# --- Meta Llama mapping ---


def _header(role: str) -> str:
    return f"<|start_header_id|>{role}<|end_header_id|>\n\n"


def llama3_prompt(messages: Sequence[Message]) -> str:
    """Render turns with the Llama 3 chat template, ending on an open assistant header.

    Tool results have no role of their own in the template and are sent as
    user turns.
    """
    pieces = ["<|begin_of_text|>"]
    for message in messages:
        role = "user" if message.role == "tool" else message.role
        pieces.append(f"{_header(role)}{collect_text(message.content)}<|eot_id|>")
    pieces.append(_header("assistant"))
    return "".join(pieces)


def meta_body(
    prompt: Prompt, options: InvokeOptions | None, config: BedrockConfig
) -> dict[str, Any]:
    opts = options or InvokeOptions()
    if opts.tools:
        log.debug("Meta Llama on Bedrock takes no tool declarations; omitting them")
    return prune_none(
        {
            "prompt": llama3_prompt(require_messages(prompt, provider=PROVIDER)),
            "max_gen_len": resolve(opts.max_tokens, config.max_tokens),
            "temperature": resolve(opts.temperature, config.temperature),
            "top_p": resolve(opts.top_p, config.top_p),
        }
    )


def parse_meta_response(raw: Any) -> Response:
    generation = get(raw, "generation", "")
    return Response(
        content=TextContent(generation if isinstance(generation, str) else ""),
        usage=Usage.from_counts(
            get(raw, "prompt_token_count"), get(raw, "generation_token_count")
        ),
    )


@dataclass
class MetaStreamReconstructor:
    """``generation`` deltas; the final chunk's invocation metrics carry the token counts."""

    _prompt_tokens: int | None = None
    _generation_tokens: int | None = None
    _usage_emitted: bool = False

    def feed(self, chunk: Any) -> list[Response]:
        out: list[Response] = []
        generation = get(chunk, "generation", "")
        if isinstance(generation, str) and generation:
            out.append(Response(content=TextContent(generation)))
        if get(chunk, "prompt_token_count") is not None:
            self._prompt_tokens = get(chunk, "prompt_token_count")
        if get(chunk, "generation_token_count") is not None:
            self._generation_tokens = get(chunk, "generation_token_count")
        metrics = get(chunk, INVOCATION_METRICS_KEY)
        if metrics is not None and not self._usage_emitted:
            usage = Usage.from_counts(
                get(metrics, "inputTokenCount", self._prompt_tokens),
                get(metrics, "outputTokenCount", self._generation_tokens),
            )
            if usage is not None:
                self._usage_emitted = True
                out.append(Response(usage=usage))
        return out

    def finish(self) -> list[Response]:
        if self._usage_emitted:
            return []
        usage = Usage.from_counts(self._prompt_tokens, self._generation_tokens)
        return [Response(usage=usage)] if usage is not None else []


# --- Family dispatch ---


def build_request(
    prompt: Prompt,
    options: InvokeOptions | None,
    config: BedrockConfig,
    family: BedrockFamily | None = None,
) -> BedrockRequest:
    family = family or bedrock_family(config.model)
    if family is BedrockFamily.ANTHROPIC:
        body = {
            "anthropic_version": config.anthropic_version,
            **anthropic_mapping.anthropic_body(
                prompt,
                options,
                config,
                default_max_tokens=ANTHROPIC_DEFAULT_MAX_TOKENS,
                provider=PROVIDER,
            ),
        }
    else:
        body = meta_body(prompt, options, config)
    return {"modelId": config.model, "body": body}


def parse_response(raw: Any, family: BedrockFamily) -> Response:
    if family is BedrockFamily.ANTHROPIC:
        return anthropic_mapping.parse_response(raw, provider=PROVIDER)
    return parse_meta_response(raw)


def stream_reconstructor(family: BedrockFamily) -> StreamReconstructor:
    if family is BedrockFamily.ANTHROPIC:
        return anthropic_mapping.AnthropicStreamReconstructor(provider=PROVIDER)
    return MetaStreamReconstructor()


async def _chunk_payloads(events: Iterator[Any]) -> AsyncIterator[Any]:
    """Pull one event-stream event per step and decode its ``chunk.bytes`` as JSON."""
    while True:
        event = await asyncio.to_thread(next, events, _END)
        if event is _END:
            return
        data = get(get(event, "chunk"), "bytes")
        if data:
            yield json.loads(data)


# --- Bridge ---


class BedrockBridge:
    """Bridge onto ``bedrock-runtime`` ``invoke_model``."""

    def __init__(
        self,
        config: BedrockConfig | None = None,
        *,
        client: Any = None,
        **fields: Any,
    ) -> None:
        self.config = build_config(BedrockConfig, config, fields)
        self.family = bedrock_family(self.config.model)
        self._info = BEDROCK_MODELS.get(self.config.model, BEDROCK_DEFAULTS[self.family])
        self._client: Any = client
        self._owns_client = client is None

    def _get_client(self) -> Any:
        if self._client is None:
            try:
                import boto3
                from botocore.config import Config as BotoConfig
            except ImportError as e:
                raise ConfigurationError(
                    "boto3 package not installed",
                    hint="pip install 'llmbridge[bedrock]'",
                    cause=e,
                ) from e
            session = boto3.Session(
                profile_name=self.config.profile, region_name=self.config.region
            )
            self._client = session.client(
                "bedrock-runtime",
                endpoint_url=self.config.endpoint_url,
                config=BotoConfig(
                    connect_timeout=self.config.timeout_s,
                    read_timeout=self.config.timeout_s,
                ),
            )
        return self._client

    @property
    def capabilities(self) -> ProviderCapabilities:
        if self.family is BedrockFamily.ANTHROPIC:
            return ProviderCapabilities(
                modalities=("text", "image"),
                tool_calls=True,
                streaming=True,
                vision=True,
            )
        return ProviderCapabilities(streaming=True)

    def get_metadata(self) -> BridgeMetadata:
        name = "Anthropic Claude" if self.family is BedrockFamily.ANTHROPIC else "Meta Llama"
        return BridgeMetadata(
            name=name,
            version=self._info.version,
            description=f"Amazon Bedrock {name} Bridge",
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
            supported_models=tuple(BEDROCK_MODELS),
        )

    def _call_kwargs(self, request: BedrockRequest) -> dict[str, Any]:
        return {
            "modelId": request["modelId"],
            "body": json.dumps(request["body"]),
            "contentType": "application/json",
            "accept": "application/json",
        }

    async def invoke(
        self, prompt: Prompt, options: InvokeOptions | None = None
    ) -> Response:
        request = build_request(prompt, options, self.config, self.family)
        try:
            raw = await asyncio.to_thread(
                self._get_client().invoke_model, **self._call_kwargs(request)
            )
            payload = json.loads(raw["body"].read())
            return parse_response(payload, self.family)
        except (asyncio.CancelledError, BridgeError):
            raise
        except Exception as e:
            raise self._classify(e) from e

    def invoke_stream(
        self, prompt: Prompt, options: InvokeOptions | None = None
    ) -> ResponseStream:
        request = build_request(prompt, options, self.config, self.family)
        return ResponseStream(self._stream(request))

    async def _stream(self, request: BedrockRequest) -> AsyncIterator[Response]:
        event_stream: Any = None
        try:
            raw = await asyncio.to_thread(
                self._get_client().invoke_model_with_response_stream,
                **self._call_kwargs(request),
            )
            event_stream = raw["body"]
            payloads = _chunk_payloads(iter(event_stream))
            async with aclosing(
                reconstruct(payloads, stream_reconstructor(self.family))
            ) as chunks:
                async for chunk in chunks:
                    yield chunk
        except (asyncio.CancelledError, BridgeError):
            raise
        except Exception as e:
            raise self._classify(e) from e
        finally:
            await release(event_stream)

    async def aclose(self) -> None:
        client = self._client
        if client is None or not self._owns_client:
            return
        self._client = None
        await release(client)
