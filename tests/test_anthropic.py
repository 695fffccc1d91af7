"""Anthropic Messages API mapping, stream reconstruction, and bridge call path."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

from hypothesis import given, settings
from hypothesis import strategies as st
import pytest

from llmbridge.config import AnthropicConfig
from llmbridge.errors import ContentBlockedError, InvalidRequestError
from llmbridge.options import InvokeOptions
from llmbridge.providers.anthropic import (
    EXTENDED_OUTPUT_BETA,
    LONG_CONTEXT_BETA,
    AnthropicBridge,
    AnthropicStreamReconstructor,
    anthropic_messages,
    anthropic_tool_choice,
    build_request,
    parse_response,
)
from llmbridge.types import (
    FileContent,
    ImageContent,
    Message,
    Prompt,
    ToolCall,
    ToolDeclaration,
    Usage,
)
from tests.helpers import FakeAsyncStream, all_calls, joined_text, run_reconstructor

pytestmark = pytest.mark.unit


@pytest.fixture
def config() -> AnthropicConfig:
    return AnthropicConfig(api_key="sk-ant-test", model="claude-haiku-3.5")


def _message(*blocks: dict, stop_reason: str = "end_turn", usage=(10, 4)) -> dict:
    return {
        "type": "message",
        "role": "assistant",
        "content": list(blocks),
        "stop_reason": stop_reason,
        "usage": {"input_tokens": usage[0], "output_tokens": usage[1]},
    }


def _text_events(*pieces: str, usage=(10, 4)) -> list[dict]:
    events: list[dict] = [
        {"type": "message_start", "message": {"usage": {"input_tokens": usage[0]}}},
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
    ]
    events += [
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": p}}
        for p in pieces
    ]
    events += [
        {"type": "content_block_stop", "index": 0},
        {"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": usage[1]}},
        {"type": "message_stop"},
    ]
    return events


# =============================================================================
# Message mapping
# =============================================================================


def test_first_system_message_fills_the_system_slot() -> None:
    system, turns = anthropic_messages(
        [Message.system("rule one"), Message.user("hi"), Message.system("rule two")]
    )

    assert system == "rule one"
    assert turns == [
        {
            "role": "user",
            "content": [{"type": "text", "text": "hi"}, {"type": "text", "text": "rule two"}],
        }
    ]


def test_system_only_prompt_becomes_the_user_turn() -> None:
    system, turns = anthropic_messages([Message.system("just this")])

    assert system is None
    assert turns == [{"role": "user", "content": [{"type": "text", "text": "just this"}]}]


def test_empty_user_turns_are_dropped() -> None:
    _, turns = anthropic_messages(
        [Message.user("hi"), Message.assistant("hello"), Message.user(""), Message.user("again")]
    )

    assert turns == [
        {"role": "user", "content": [{"type": "text", "text": "hi"}]},
        {"role": "assistant", "content": [{"type": "text", "text": "hello"}]},
        {"role": "user", "content": [{"type": "text", "text": "again"}]},
    ]
    assert all(block["text"] for turn in turns for block in turn["content"])


def test_prompt_with_only_empty_content_is_rejected() -> None:
    with pytest.raises(InvalidRequestError):
        anthropic_messages([Message.user("")])


def test_tool_loop_maps_to_tool_use_and_merged_tool_result() -> None:
    call = ToolCall("toolu_1", "add", {"a": 1})
    _, turns = anthropic_messages(
        [
            Message.user("add"),
            Message.assistant("Let me add.", tool_calls=[call]),
            Message.tool("1", name="add", tool_call_id="toolu_1"),
            Message.user("thanks"),
        ]
    )

    assert [t["role"] for t in turns] == ["user", "assistant", "user"]
    assert turns[1]["content"] == [
        {"type": "text", "text": "Let me add."},
        {"type": "tool_use", "id": "toolu_1", "name": "add", "input": {"a": 1}},
    ]
    assert turns[2]["content"] == [
        {"type": "tool_result", "tool_use_id": "toolu_1", "content": "1"},
        {"type": "text", "text": "thanks"},
    ]


def test_images_and_pdfs_become_base64_blocks() -> None:
    _, (turn,) = anthropic_messages(
        [Message.user("look", ImageContent(b"abc"), FileContent(b"%PDF", media_type="application/pdf"))]
    )

    text, image, document = turn["content"]
    assert text == {"type": "text", "text": "look"}
    assert image["source"] == {"type": "base64", "media_type": "image/jpeg", "data": "YWJj"}
    assert document["type"] == "document"


@pytest.mark.parametrize(
    ("choice", "expected"),
    [
        ("auto", {"type": "auto"}),
        ("required", {"type": "any"}),
        ("none", {"type": "none"}),
        ({"name": "add"}, {"type": "tool", "name": "add"}),
        (None, None),
    ],
)
def test_tool_choice_mapping(choice, expected) -> None:
    assert anthropic_tool_choice(choice) == expected


# =============================================================================
# build_request
# =============================================================================


def test_max_tokens_defaults_to_the_model_limit(config: AnthropicConfig) -> None:
    request = build_request(Prompt.from_text("hi", system="sys"), None, config)

    assert request["model"] == "claude-haiku-3.5"
    assert request["max_tokens"] == 8192
    assert request["system"] == "sys"
    assert "extra_headers" not in request


def test_options_override_sampling(config: AnthropicConfig) -> None:
    opts = InvokeOptions(max_tokens=100, temperature=0.5, top_k=40, stop_sequences=("###",))

    request = build_request(Prompt.from_text("hi"), opts, config)

    assert (request["max_tokens"], request["temperature"], request["top_k"]) == (100, 0.5, 40)
    assert request["stop_sequences"] == ["###"]


def test_tools_need_object_schemas(config: AnthropicConfig) -> None:
    bad = InvokeOptions(tools=(ToolDeclaration("f", parameters={"type": "string"}),))

    with pytest.raises(InvalidRequestError):
        build_request(Prompt.from_text("hi"), bad, config)


def test_long_context_beta_only_for_supporting_models() -> None:
    sonnet = AnthropicConfig(api_key="k", model="claude-sonnet-4", use_long_context=True)
    haiku = AnthropicConfig(
        api_key="k", model="claude-haiku-3.5", use_long_context=True, use_extended_output=True
    )

    assert build_request(Prompt.from_text("x"), None, sonnet)["extra_headers"] == {
        "anthropic-beta": LONG_CONTEXT_BETA
    }
    assert build_request(Prompt.from_text("x"), None, haiku)["extra_headers"] == {
        "anthropic-beta": EXTENDED_OUTPUT_BETA
    }


def test_empty_prompt_is_rejected(config: AnthropicConfig) -> None:
    with pytest.raises(InvalidRequestError):
        build_request(Prompt(), None, config)


# =============================================================================
# parse_response
# =============================================================================


def test_parse_joins_text_blocks_and_collects_tool_use() -> None:
    raw = _message(
        {"type": "text", "text": "Sure. "},
        {"type": "tool_use", "id": "toolu_9", "name": "add", "input": {"a": 2}},
        {"type": "text", "text": "Done."},
    )

    response = parse_response(raw)

    assert response.text == "Sure. Done."
    assert response.tool_calls == (ToolCall("toolu_9", "add", {"a": 2}),)
    assert response.usage == Usage(10, 4)


def test_refusal_without_content_is_blocked() -> None:
    with pytest.raises(ContentBlockedError) as exc:
        parse_response(_message(stop_reason="refusal"))

    assert exc.value.reason == "refusal"


# =============================================================================
# Stream reconstruction
# =============================================================================


def test_stream_assembles_tool_use_from_json_fragments() -> None:
    events = [
        {"type": "message_start", "message": {"usage": {"input_tokens": 12}}},
        {
            "type": "content_block_start",
            "index": 1,
            "content_block": {"type": "tool_use", "id": "toolu_2", "name": "add", "input": {}},
        },
        {"type": "content_block_delta", "index": 1, "delta": {"type": "input_json_delta", "partial_json": '{"a": '}},
        {"type": "content_block_delta", "index": 1, "delta": {"type": "input_json_delta", "partial_json": "5}"}},
        {"type": "content_block_stop", "index": 1},
        {"type": "message_delta", "delta": {"stop_reason": "tool_use"}, "usage": {"output_tokens": 9}},
    ]

    out = run_reconstructor(AnthropicStreamReconstructor, events)

    assert all_calls(out) == [ToolCall("toolu_2", "add", {"a": 5})]
    assert out[-1].usage == Usage(12, 9)


def test_stream_refusal_before_any_content_is_blocked() -> None:
    reconstructor = AnthropicStreamReconstructor()
    reconstructor.feed({"type": "message_start", "message": {"usage": {"input_tokens": 1}}})

    with pytest.raises(ContentBlockedError):
        reconstructor.feed({"type": "message_delta", "delta": {"stop_reason": "refusal"}, "usage": {}})


@given(pieces=st.lists(st.text(max_size=6), max_size=10))
@settings(max_examples=60, deadline=None, derandomize=True)
def test_stream_text_concatenates_to_the_parsed_text(pieces: list[str]) -> None:
    out = run_reconstructor(AnthropicStreamReconstructor, _text_events(*pieces))
    whole = parse_response(_message(*({"type": "text", "text": p} for p in pieces)))

    assert joined_text(out) == whole.text
    assert out[-1].usage == whole.usage


# =============================================================================
# Bridge
# =============================================================================


def _fake_client(create: AsyncMock) -> MagicMock:
    client = MagicMock()
    client.messages.create = create
    return client


@pytest.mark.asyncio
async def test_invoke_passes_request_to_sdk(config: AnthropicConfig) -> None:
    create = AsyncMock(return_value=_message({"type": "text", "text": "Hi!"}))
    bridge = AnthropicBridge(config, client=_fake_client(create))

    response = await bridge.invoke(Prompt.from_text("hello", system="be nice"))

    assert response.text == "Hi!"
    kwargs = create.await_args.kwargs
    assert kwargs["system"] == "be nice"
    assert kwargs["messages"] == [{"role": "user", "content": [{"type": "text", "text": "hello"}]}]


@pytest.mark.asyncio
async def test_stream_through_sdk_closes_the_stream(config: AnthropicConfig) -> None:
    sdk_stream = FakeAsyncStream(_text_events("Hel", "lo"))
    create = AsyncMock(return_value=sdk_stream)
    bridge = AnthropicBridge(config, client=_fake_client(create))

    collected = await bridge.invoke_stream(Prompt.from_text("hi")).collect()

    assert collected.text == "Hello"
    assert collected.usage == Usage(10, 4)
    assert create.await_args.kwargs["stream"] is True
    assert sdk_stream.closed


@pytest.mark.asyncio
async def test_refusal_in_stream_is_raised_and_releases(config: AnthropicConfig) -> None:
    sdk_stream = FakeAsyncStream(
        [{"type": "message_delta", "delta": {"stop_reason": "refusal"}, "usage": {}}]
    )
    bridge = AnthropicBridge(config, client=_fake_client(AsyncMock(return_value=sdk_stream)))

    with pytest.raises(ContentBlockedError):
        await bridge.invoke_stream(Prompt.from_text("hi")).collect()

    assert sdk_stream.closed


def test_metadata_for_catalog_model(config: AnthropicConfig) -> None:
    meta = AnthropicBridge(config, client=MagicMock()).get_metadata()

    assert meta.name == "Anthropic Claude Haiku"
    assert meta.version == "3.5"
    assert meta.pricing is not None
