"""Chat Completions wire format shared by the OpenAI, Grok, and OpenAI-compatible bridges."""

from __future__ import annotations

from types import SimpleNamespace

from hypothesis import given, settings
from hypothesis import strategies as st
import pytest

from llmbridge.config import ResponseFormat
from llmbridge.errors import ContentBlockedError, InvalidRequestError
from llmbridge.providers._chat_completions import (
    ChatStreamState,
    chat_messages,
    chat_tool_choice,
    chat_tools,
    combine_sections,
    parse_chat_completion,
    response_format_payload,
)
from llmbridge.types import ImageContent, Message, ToolCall, ToolDeclaration, Usage
from tests.helpers import all_calls, joined_text, run_reconstructor

pytestmark = pytest.mark.unit


def _completion(
    content: str | None = "",
    *,
    tool_calls: list | None = None,
    finish_reason: str = "stop",
    usage: dict | None = None,
    **extra,
) -> dict:
    message = {"role": "assistant", "content": content, **extra.pop("message", {})}
    if tool_calls is not None:
        message["tool_calls"] = tool_calls
    return {
        "choices": [{"index": 0, "message": message, "finish_reason": finish_reason}],
        "usage": usage,
        **extra,
    }


def _delta_chunk(delta: dict, finish_reason: str | None = None) -> dict:
    return {"choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}]}


# =============================================================================
# Request mapping
# =============================================================================


def test_messages_map_every_role() -> None:
    call = ToolCall("call_1", "add", {"a": 1, "b": 2})
    messages = [
        Message.system("be brief"),
        Message.user("add 1 and 2"),
        Message.assistant(tool_calls=[call]),
        Message.tool("3", name="add", tool_call_id="call_1"),
    ]

    mapped = chat_messages(messages, provider="openai")

    assert mapped == [
        {"role": "system", "content": "be brief"},
        {"role": "user", "content": "add 1 and 2"},
        {
            "role": "assistant",
            "content": "",
            "tool_calls": [
                {
                    "id": "call_1",
                    "type": "function",
                    "function": {"name": "add", "arguments": '{"a": 1, "b": 2}'},
                }
            ],
        },
        {"role": "tool", "tool_call_id": "call_1", "content": "3"},
    ]


def test_multimodal_user_images_become_data_urls() -> None:
    message = Message.user("what is this?", ImageContent(b"abc", media_type="image/png"))

    (mapped,) = chat_messages([message], provider="openai", multimodal=True)

    assert mapped["content"] == [
        {"type": "text", "text": "what is this?"},
        {"type": "image_url", "image_url": {"url": "data:image/png;base64,YWJj"}},
    ]


def test_images_are_dropped_for_text_only_mapping() -> None:
    message = Message.user("caption", ImageContent(b"abc"))
    (mapped,) = chat_messages([message], provider="grok")
    assert mapped == {"role": "user", "content": "caption"}


def test_tools_require_object_schemas() -> None:
    bad = ToolDeclaration("f", parameters={"type": "array"})
    with pytest.raises(InvalidRequestError):
        chat_tools([bad], provider="openai")


@pytest.mark.parametrize(
    ("choice", "expected"),
    [
        ("auto", "auto"),
        ("required", "required"),
        ({"name": "add"}, {"type": "function", "function": {"name": "add"}}),
        (None, None),
    ],
)
def test_tool_choice_mapping(choice, expected) -> None:
    assert chat_tool_choice(choice) == expected


@pytest.mark.parametrize(
    ("fmt", "expected"),
    [
        ("json_object", {"type": "json_object"}),
        ({"type": "text"}, {"type": "text"}),
        (
            {"type": "object", "properties": {}},
            {
                "type": "json_schema",
                "json_schema": {
                    "name": "response",
                    "schema": {"type": "object", "properties": {}},
                },
            },
        ),
        (
            ResponseFormat(
                type="json_schema", name="answer", schema={"type": "object"}, strict=True
            ),
            {
                "type": "json_schema",
                "json_schema": {
                    "name": "answer",
                    "schema": {"type": "object"},
                    "strict": True,
                },
            },
        ),
    ],
)
def test_response_format_payload(fmt, expected) -> None:
    assert response_format_payload(fmt) == expected


# =============================================================================
# Response mapping
# =============================================================================


def test_parse_text_and_usage() -> None:
    raw = _completion(
        "Hello", usage={"prompt_tokens": 3, "completion_tokens": 2, "total_tokens": 99}
    )

    response = parse_chat_completion(raw, provider="openai")

    assert response.text == "Hello"
    assert response.usage == Usage(3, 2)
    assert response.usage.total_tokens == 5


def test_parse_accepts_sdk_objects() -> None:
    raw = SimpleNamespace(
        choices=[
            SimpleNamespace(
                message=SimpleNamespace(content="hi", tool_calls=None),
                finish_reason="stop",
            )
        ],
        usage=SimpleNamespace(prompt_tokens=1, completion_tokens=1),
    )

    assert parse_chat_completion(raw, provider="openai").text == "hi"


def test_parse_tool_calls_with_malformed_arguments() -> None:
    raw = _completion(
        None,
        tool_calls=[
            {"id": "call_1", "type": "function", "function": {"name": "a", "arguments": '{"x": 1}'}},
            {"type": "function", "function": {"name": "b", "arguments": "{broken"}},
        ],
        finish_reason="tool_calls",
    )

    response = parse_chat_completion(raw, provider="openai")

    first, second = response.tool_calls
    assert (first.tool_call_id, first.name, dict(first.arguments)) == ("call_1", "a", {"x": 1})
    assert second.tool_call_id.startswith("call_")
    assert dict(second.arguments) == {"__raw": "{broken"}
    assert response.text == ""
    assert response.usage is None


def test_calls_without_ids_get_distinct_ids() -> None:
    same = {"type": "function", "function": {"name": "add", "arguments": "{}"}}
    raw = _completion(None, tool_calls=[same, same, same], finish_reason="tool_calls")

    calls = parse_chat_completion(raw, provider="openai_like").tool_calls

    assert len(calls) == 3
    assert len({c.tool_call_id for c in calls}) == len(calls)


def test_content_filter_without_payload_is_blocked() -> None:
    with pytest.raises(ContentBlockedError):
        parse_chat_completion(_completion(None, finish_reason="content_filter"), provider="openai")


def test_sections_append_reasoning_and_citations() -> None:
    raw = _completion(
        "42",
        message={"reasoning_content": "thought hard"},
        citations=["https://a.example", "https://b.example"],
    )

    response = parse_chat_completion(raw, provider="grok", with_sections=True)

    assert response.text == (
        "42\n\nReasoning:\nthought hard\n\nCitations:\nhttps://a.example\nhttps://b.example"
    )


def test_combine_sections_skips_blank_reasoning() -> None:
    assert combine_sections("x", "   ", []) == "x"
    assert combine_sections("", "why", []) == "Reasoning:\nwhy"


# =============================================================================
# Streaming
# =============================================================================


def test_stream_reassembles_tool_call_fragments_on_finish_reason() -> None:
    chunks = [
        _delta_chunk(
            {"tool_calls": [{"index": 0, "id": "call_9", "function": {"name": "add", "arguments": '{"a"'}}]}
        ),
        _delta_chunk({"tool_calls": [{"index": 0, "function": {"arguments": ": 1}"}}]}),
        _delta_chunk({}, finish_reason="tool_calls"),
        {"choices": [], "usage": {"prompt_tokens": 4, "completion_tokens": 6}},
    ]

    out = run_reconstructor(lambda: ChatStreamState(provider="openai"), chunks)

    (call,) = all_calls(out)
    assert (call.tool_call_id, call.name, dict(call.arguments)) == ("call_9", "add", {"a": 1})
    assert out[-1].usage == Usage(4, 6)


def test_streamed_calls_without_ids_get_distinct_ids() -> None:
    chunks = [
        _delta_chunk(
            {
                "tool_calls": [
                    {"index": 0, "function": {"name": "add", "arguments": "{}"}},
                    {"index": 1, "function": {"name": "add", "arguments": "{}"}},
                ]
            }
        ),
        _delta_chunk({"tool_calls": [{"index": 2, "function": {"name": "mul", "arguments": "{}"}}]}),
        _delta_chunk({}, finish_reason="tool_calls"),
    ]

    calls = all_calls(run_reconstructor(lambda: ChatStreamState(provider="openai_like"), chunks))

    assert [c.name for c in calls] == ["add", "add", "mul"]
    assert len({c.tool_call_id for c in calls}) == len(calls)


def test_stream_content_filter_without_payload_is_blocked() -> None:
    state = ChatStreamState(provider="openai")

    with pytest.raises(ContentBlockedError) as exc:
        state.feed(_delta_chunk({}, finish_reason="content_filter"))

    assert exc.value.reason == "content_filter"


def test_stream_content_filter_after_text_keeps_the_text() -> None:
    chunks = [_delta_chunk({"content": "partial"}), _delta_chunk({}, finish_reason="content_filter")]

    out = run_reconstructor(lambda: ChatStreamState(provider="openai"), chunks)

    assert joined_text(out) == "partial"


def test_stream_sections_match_whole_response() -> None:
    chunks = [
        _delta_chunk({"content": "4"}),
        _delta_chunk({"content": "2", "reasoning_content": "thought"}),
        {**_delta_chunk({}, finish_reason="stop"), "citations": ["https://a.example"]},
    ]
    whole = parse_chat_completion(
        _completion("42", message={"reasoning_content": "thought"}, citations=["https://a.example"]),
        provider="grok",
        with_sections=True,
    )

    out = run_reconstructor(
        lambda: ChatStreamState(provider="grok", with_sections=True), chunks
    )

    assert joined_text(out) == whole.text


@given(pieces=st.lists(st.text(min_size=0, max_size=8), max_size=12))
@settings(max_examples=60, deadline=None, derandomize=True)
def test_concatenated_deltas_equal_the_whole_text(pieces: list[str]) -> None:
    chunks = [_delta_chunk({"content": p}) for p in pieces]
    chunks.append(_delta_chunk({}, finish_reason="stop"))

    out = run_reconstructor(lambda: ChatStreamState(provider="openai"), chunks)

    assert joined_text(out) == "".join(pieces)
    assert all(r.has_payload for r in out)
