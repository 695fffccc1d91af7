"""Embedding bridges: turn text into vectors through a hosted API or a local pipeline.

Only text is embeddable. A single input yields one vector; a sequence input
yields one vector per item, in order.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
import inspect
import logging
from typing import TYPE_CHECKING, Any, Protocol, Union, runtime_checkable

from llmbridge.config import LocalEmbeddingConfig, OpenAIEmbeddingConfig, build_config
from llmbridge.errors import (
    BridgeError,
    ConfigurationError,
    InvalidRequestError,
    ResponseParsingError,
)
from llmbridge.providers._content import get
from llmbridge.providers._errors import classify
from llmbridge.streaming import release
from llmbridge.types import Content, TextContent

if TYPE_CHECKING:
    from collections.abc import Callable

log = logging.getLogger(__name__)

EmbeddingInput = Union[str, Content, Sequence[Union[str, Content]]]
Vector = list[float]

OPENAI_LARGE_MODEL = "text-embedding-3-large"
OPENAI_DIMENSIONS = {OPENAI_LARGE_MODEL: 3072}
OPENAI_DEFAULT_DIMENSION = 1536

# Keys a model config may use for its output width, in lookup order.
_DIMENSION_KEYS = (
    "hidden_size",
    "embedding_dim",
    "projection_dim",
    "output_dim",
    "dim",
    "d_model",
)


@dataclass(frozen=True)
class EmbeddingRequest:
    input: EmbeddingInput


@dataclass(frozen=True)
class EmbeddingUsage:
    prompt_tokens: int


@dataclass(frozen=True)
class EmbeddingResponse:
    """``embeddings`` is one vector for a single input, a list of vectors for a batch."""

    embeddings: Vector | list[Vector]
    usage: EmbeddingUsage | None = None


@dataclass(frozen=True)
class EmbeddingMetadata:
    model: str
    dimension: int


@runtime_checkable
class EmbeddingBridge(Protocol):
    async def embed(self, request: EmbeddingRequest) -> EmbeddingResponse: ...

    def get_metadata(self) -> EmbeddingMetadata: ...


def _text_of(item: str | Content) -> str:
    if isinstance(item, str):
        return item
    if isinstance(item, TextContent):
        return item.value
    raise InvalidRequestError(
        f"Only text content is supported for embeddings (received {item.kind!r})",
        invalid_fields=("input",),
    )


def normalize_input(value: EmbeddingInput) -> str | list[str]:
    """Return the input text, or a non-empty list of texts for a batch."""
    if isinstance(value, (str, TextContent)) or hasattr(value, "kind"):
        return _text_of(value)  # type: ignore[arg-type]
    items = list(value)
    if not items:
        raise InvalidRequestError(
            "Embedding request must include at least one input item",
            invalid_fields=("input",),
        )
    return [_text_of(item) for item in items]


# --- OpenAI ---


class OpenAIEmbeddingBridge:
    """Embeddings via the OpenAI ``embeddings.create`` endpoint."""

    def __init__(
        self,
        config: OpenAIEmbeddingConfig | None = None,
        *,
        client: Any = None,
        **fields: Any,
    ) -> None:
        self.config = build_config(OpenAIEmbeddingConfig, config, fields)
        self.dimension = self.config.dimension or OPENAI_DIMENSIONS.get(
            self.config.model, OPENAI_DEFAULT_DIMENSION
        )
        self._client: Any = client
        self._owns_client = client is None

    def _get_client(self) -> Any:
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
                timeout=self.config.timeout_s,
            )
        return self._client

    def get_metadata(self) -> EmbeddingMetadata:
        return EmbeddingMetadata(model=self.config.model, dimension=self.dimension)

    async def embed(self, request: EmbeddingRequest) -> EmbeddingResponse:
        text = normalize_input(request.input)
        try:
            raw = await self._get_client().embeddings.create(
                model=self.config.model, input=text, dimensions=self.dimension
            )
        except (asyncio.CancelledError, BridgeError):
            raise
        except Exception as e:
            raise classify(
                e,
                provider="openai",
                model=self.config.model,
                timeout_s=self.config.timeout_s,
            ) from e
        vectors = [list(get(item, "embedding") or ()) for item in get(raw, "data") or ()]
        if not vectors:
            raise ResponseParsingError("openai returned no embeddings", raw_response=raw)
        usage = get(raw, "usage")
        return EmbeddingResponse(
            embeddings=vectors if isinstance(text, list) else vectors[0],
            usage=(
                EmbeddingUsage(prompt_tokens=get(usage, "prompt_tokens") or 0)
                if usage is not None
                else None
            ),
        )

    async def aclose(self) -> None:
        client = self._client
        if client is None or not self._owns_client:
            return
        self._client = None
        await release(client)


# --- Local feature-extraction pipeline ---


def _as_floats(value: Any) -> Vector:
    if hasattr(value, "tolist") and not isinstance(value, list):
        value = value.tolist()
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise ResponseParsingError(
            "Unsupported embedding value type from pipeline output",
            raw_response=value,
        )
    out: Vector = []
    for item in value:
        if isinstance(item, bool) or not isinstance(item, (int, float)) or item != item:
            raise ResponseParsingError(
                "Expected numeric embedding values from pipeline output",
                raw_response=value,
            )
        out.append(float(item))
    return out


def _is_tensor_like(value: Any) -> bool:
    return hasattr(value, "data") and hasattr(value, "dims")


def _tensor_vectors(tensor: Any, input_count: int) -> Vector | list[Vector]:
    dims = list(getattr(tensor, "dims", None) or ())
    if len(dims) > 2:
        raise ResponseParsingError(
            "Received tensor output with more than two dimensions; "
            "set pooling (e.g. 'mean') to obtain fixed-size embeddings",
            raw_response=dims,
        )
    data = _as_floats(list(tensor.data))
    if input_count <= 1 or (dims and dims[0] == 1):
        width = dims[1] if len(dims) > 1 else len(data)
        return data[:width]

    batch = dims[0] if dims else input_count
    width = dims[1] if len(dims) > 1 else len(data) // batch
    if width <= 0:
        raise ResponseParsingError("Unable to determine embedding dimension from pipeline output")
    if len(data) != width * batch:
        raise ResponseParsingError(
            "Unexpected pipeline output length for the provided input batch"
        )
    return [data[i * width : (i + 1) * width] for i in range(batch)]


def parse_pipeline_output(result: Any, input_count: int) -> Vector | list[Vector]:
    """Convert tensor-like, ``tolist()``-able, or nested-list output into float vectors."""
    if _is_tensor_like(result):
        return _tensor_vectors(result, input_count)
    if hasattr(result, "tolist") and not isinstance(result, list):
        result = result.tolist()
    if not isinstance(result, list):
        raise ResponseParsingError(
            "Unsupported pipeline output format for embeddings", raw_response=result
        )
    if not result:
        return []

    first = result[0]
    if isinstance(first, (int, float)):
        if input_count > 1:
            raise ResponseParsingError(
                "Expected batched embeddings but received a single vector"
            )
        return _as_floats(result)
    if _is_tensor_like(first):
        vectors = [_tensor_vectors(t, 1) for t in result]
    else:
        vectors = [_as_floats(item) for item in result]
    if input_count <= 1 and len(vectors) == 1:
        return vectors[0]  # type: ignore[return-value]
    return vectors  # type: ignore[return-value]


def _dimension_in(source: Any, seen: set[int]) -> int | None:
    if source is None or id(source) in seen:
        return None
    seen.add(id(source))
    if isinstance(source, Mapping):
        fields = dict(source)
    elif hasattr(source, "to_dict"):
        fields = source.to_dict()
    elif hasattr(source, "__dict__"):
        fields = vars(source)
    else:
        return None
    for key in _DIMENSION_KEYS:
        value = fields.get(key)
        if isinstance(value, int) and not isinstance(value, bool) and value > 0:
            return value
    # Composite configs nest the text tower's settings (e.g. ``text_config``).
    for value in fields.values():
        if isinstance(value, Mapping) or hasattr(value, "to_dict"):
            nested = _dimension_in(value, seen)
            if nested is not None:
                return nested
    return None


def pipeline_dimension(pipeline: Any) -> int | None:
    """Look for an output width on the pipeline's config or its model's config."""
    model = getattr(pipeline, "model", None)
    for source in (getattr(pipeline, "config", None), getattr(model, "config", None), model):
        found = _dimension_in(source, set())
        if found is not None:
            return found
    return None


class LocalEmbeddingBridge:
    """Embeddings from an injected feature-extraction pipeline.

    ``pipeline`` is called as ``pipeline(text_or_texts, pooling=..., normalize=...)``
    (plus ``batch_size`` when configured) and may be sync or async. Sync
    pipelines run in a worker thread.
    """

    def __init__(
        self,
        pipeline: Callable[..., Any],
        config: LocalEmbeddingConfig | None = None,
        **fields: Any,
    ) -> None:
        self.config = build_config(LocalEmbeddingConfig, config, fields)
        self._pipeline = pipeline
        self._dimension = self.config.dimension

    def _call_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {
            "pooling": self.config.pooling,
            "normalize": self.config.normalize,
        }
        if self.config.batch_size is not None:
            options["batch_size"] = self.config.batch_size
        return options

    async def _run(self, text: str | list[str]) -> Any:
        if inspect.iscoroutinefunction(self._pipeline) or inspect.iscoroutinefunction(
            getattr(self._pipeline, "__call__", None)
        ):
            return await self._pipeline(text, **self._call_options())
        result = await asyncio.to_thread(self._pipeline, text, **self._call_options())
        if inspect.isawaitable(result):
            result = await result
        return result

    async def embed(self, request: EmbeddingRequest) -> EmbeddingResponse:
        text = normalize_input(request.input)
        try:
            result = await self._run(text)
        except (asyncio.CancelledError, BridgeError):
            raise
        except Exception as e:
            raise classify(e, provider="local", model=self.config.model) from e
        embeddings = parse_pipeline_output(
            result, len(text) if isinstance(text, list) else 1
        )
        if embeddings:
            first = embeddings[0]
            width = len(first) if isinstance(first, list) else len(embeddings)
            if width > 0:
                self._dimension = width
        return EmbeddingResponse(embeddings=embeddings)

    def get_metadata(self) -> EmbeddingMetadata:
        if self._dimension is None:
            self._dimension = pipeline_dimension(self._pipeline)
            if self._dimension is None:
                log.debug("Embedding dimension for %s not known yet", self.config.model)
        return EmbeddingMetadata(model=self.config.model, dimension=self._dimension or 0)
