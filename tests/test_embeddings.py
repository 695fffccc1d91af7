"""Embedding bridges: input validation, OpenAI call path, and local pipeline parsing."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from llmbridge.embeddings import (
    EmbeddingBridge,
    EmbeddingRequest,
    EmbeddingUsage,
    LocalEmbeddingBridge,
    OpenAIEmbeddingBridge,
    normalize_input,
    parse_pipeline_output,
    pipeline_dimension,
)
from llmbridge.errors import (
    BridgeError,
    ErrorKind,
    InvalidRequestError,
    RateLimitError,
    RequestTimeoutError,
    ResponseParsingError,
)
from llmbridge.types import ImageContent, TextContent

pytestmark = pytest.mark.unit


# =============================================================================
# Input validation
# =============================================================================


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("hello", "hello"),
        (TextContent("hi"), "hi"),
        (["a", TextContent("b")], ["a", "b"]),
        (("only",), ["only"]),
    ],
)
def test_normalize_input(value, expected) -> None:
    assert normalize_input(value) == expected


def test_non_text_content_is_rejected() -> None:
    with pytest.raises(InvalidRequestError, match="image"):
        normalize_input(["ok", ImageContent(b"x")])


def test_empty_batch_is_rejected() -> None:
    with pytest.raises(InvalidRequestError):
        normalize_input([])


# =============================================================================
# OpenAI
# =============================================================================


def _embedding_client(create: AsyncMock) -> MagicMock:
    client = MagicMock()
    client.embeddings.create = create
    return client


def _embeddings(*vectors: list[float], tokens: int = 4) -> SimpleNamespace:
    return SimpleNamespace(
        data=[SimpleNamespace(embedding=v, index=i) for i, v in enumerate(vectors)],
        usage=SimpleNamespace(prompt_tokens=tokens, total_tokens=tokens),
    )


@pytest.mark.asyncio
async def test_openai_single_input_returns_one_vector() -> None:
    create = AsyncMock(return_value=_embeddings([0.1, 0.2]))
    bridge = OpenAIEmbeddingBridge(api_key="sk-test", client=_embedding_client(create))

    response = await bridge.embed(EmbeddingRequest("hello"))

    assert response.embeddings == [0.1, 0.2]
    assert response.usage == EmbeddingUsage(prompt_tokens=4)
    assert create.await_args.kwargs == {
        "model": "text-embedding-3-small",
        "input": "hello",
        "dimensions": 1536,
    }


@pytest.mark.asyncio
async def test_openai_batch_returns_vectors_in_order() -> None:
    create = AsyncMock(return_value=_embeddings([1.0], [2.0]))
    bridge = OpenAIEmbeddingBridge(api_key="sk-test", client=_embedding_client(create))

    response = await bridge.embed(EmbeddingRequest(["a", "b"]))

    assert response.embeddings == [[1.0], [2.0]]


@pytest.mark.asyncio
async def test_openai_empty_data_is_a_parsing_error() -> None:
    create = AsyncMock(return_value=SimpleNamespace(data=[], usage=None))
    bridge = OpenAIEmbeddingBridge(api_key="sk-test", client=_embedding_client(create))

    with pytest.raises(ResponseParsingError):
        await bridge.embed(EmbeddingRequest("hello"))


@pytest.mark.asyncio
async def test_openai_errors_are_classified() -> None:
    class RateLimitedError(Exception):
        status_code = 429

    bridge = OpenAIEmbeddingBridge(
        api_key="sk-test",
        client=_embedding_client(AsyncMock(side_effect=RateLimitedError("slow"))),
    )

    with pytest.raises(RateLimitError):
        await bridge.embed(EmbeddingRequest("hello"))


def test_openai_dimension_by_model_and_override() -> None:
    large = OpenAIEmbeddingBridge(api_key="k", model="text-embedding-3-large", client=MagicMock())
    custom = OpenAIEmbeddingBridge(api_key="k", dimension=256, client=MagicMock())

    assert large.get_metadata().dimension == 3072
    assert custom.get_metadata().dimension == 256
    assert isinstance(large, EmbeddingBridge)


# =============================================================================
# Local pipeline output
# =============================================================================


class _Tensor:
    def __init__(self, data: list[float], dims: list[int]) -> None:
        self.data = data
        self.dims = dims


class _Array:
    def __init__(self, value: list) -> None:
        self.value = value

    def tolist(self) -> list:
        return self.value


def test_parse_tensor_batch_splits_rows() -> None:
    out = parse_pipeline_output(_Tensor([1, 2, 3, 4, 5, 6], [2, 3]), input_count=2)
    assert out == [[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]]


def test_parse_single_row_tensor() -> None:
    assert parse_pipeline_output(_Tensor([0.5, 0.25], [1, 2]), input_count=1) == [0.5, 0.25]


def test_parse_unpooled_tensor_is_rejected() -> None:
    with pytest.raises(ResponseParsingError, match="pooling"):
        parse_pipeline_output(_Tensor([0.0] * 8, [1, 2, 4]), input_count=1)


def test_parse_tolist_and_nested_lists() -> None:
    assert parse_pipeline_output(_Array([[1, 2]]), input_count=1) == [1.0, 2.0]
    assert parse_pipeline_output([[1, 2], [3, 4]], input_count=2) == [[1.0, 2.0], [3.0, 4.0]]


@pytest.mark.parametrize("bad", ["text", [["a", "b"]], [[float("nan")]], {"x": 1}])
def test_parse_rejects_non_numeric_output(bad) -> None:
    with pytest.raises(ResponseParsingError):
        parse_pipeline_output(bad, input_count=1)


def test_single_vector_for_a_batch_is_rejected() -> None:
    with pytest.raises(ResponseParsingError, match="batched"):
        parse_pipeline_output([0.1, 0.2], input_count=2)


def test_pipeline_dimension_reads_nested_model_config() -> None:
    pipeline = SimpleNamespace(
        model=SimpleNamespace(config={"text_config": {"hidden_size": 768}})
    )
    assert pipeline_dimension(pipeline) == 768


# =============================================================================
# LocalEmbeddingBridge
# =============================================================================


@pytest.mark.asyncio
async def test_local_sync_pipeline_receives_configured_options() -> None:
    calls = []

    def pipeline(text, **options):
        calls.append((text, options))
        return [[0.1, 0.2, 0.3]]

    bridge = LocalEmbeddingBridge(pipeline, pooling="cls", batch_size=8)

    response = await bridge.embed(EmbeddingRequest("hello"))

    assert response.embeddings == [0.1, 0.2, 0.3]
    assert response.usage is None
    assert calls == [("hello", {"pooling": "cls", "normalize": True, "batch_size": 8})]
    assert bridge.get_metadata().dimension == 3


@pytest.mark.asyncio
async def test_local_async_pipeline_batch() -> None:
    async def pipeline(texts, **options):
        return _Tensor([1, 0, 0, 1], [2, 2])

    bridge = LocalEmbeddingBridge(pipeline)

    response = await bridge.embed(EmbeddingRequest(["a", "b"]))

    assert response.embeddings == [[1.0, 0.0], [0.0, 1.0]]
    assert bridge.get_metadata().dimension == 2


@pytest.mark.asyncio
async def test_local_pipeline_failure_is_classified() -> None:
    def pipeline(text, **options):
        raise RuntimeError("CUDA out of memory")

    bridge = LocalEmbeddingBridge(pipeline)

    with pytest.raises(BridgeError) as exc:
        await bridge.embed(EmbeddingRequest("hello"))

    assert exc.value.kind is ErrorKind.GENERIC
    assert "CUDA out of memory" in str(exc.value)
    assert isinstance(exc.value.__cause__, RuntimeError)


@pytest.mark.asyncio
async def test_local_async_pipeline_timeout_is_classified() -> None:
    async def pipeline(text, **options):
        raise TimeoutError

    bridge = LocalEmbeddingBridge(pipeline)

    with pytest.raises(RequestTimeoutError):
        await bridge.embed(EmbeddingRequest(["a", "b"]))


def test_local_metadata_before_first_call() -> None:
    def pipeline(text, **options):
        return [[0.0]]

    unknown = LocalEmbeddingBridge(pipeline)
    configured = LocalEmbeddingBridge(pipeline, dimension=384)

    assert unknown.get_metadata().dimension == 0
    assert configured.get_metadata().dimension == 384
    assert unknown.get_metadata().model == "google/embedding-gemma-002"
