"""Content model tests: coercion, validation, and the usage invariant."""

from __future__ import annotations

import io

from hypothesis import given, settings
from hypothesis import strategies as st
import pytest

from llmbridge.types import (
    FileContent,
    ImageContent,
    Message,
    Prompt,
    Response,
    TextContent,
    ToolCall,
    Usage,
)

pytestmark = pytest.mark.unit


# =============================================================================
# Content
# =============================================================================


def test_binary_stream_is_drained_once_at_construction() -> None:
    image = ImageContent(io.BytesIO(b"\x89PNG"), media_type="image/png")

    assert image.value == b"\x89PNG"
    assert image.kind == "image"


def test_binary_content_rejects_text() -> None:
    with pytest.raises(TypeError):
        FileContent("not bytes")  # type: ignore[arg-type]


def test_text_content_rejects_non_strings() -> None:
    with pytest.raises(TypeError):
        TextContent(42)  # type: ignore[arg-type]


# =============================================================================
# Messages and prompts
# =============================================================================


def test_message_coerces_plain_string_content() -> None:
    message = Message("user", "hello")  # type: ignore[arg-type]
    assert message.content == (TextContent("hello"),)


def test_message_text_joins_text_parts_and_skips_binary() -> None:
    message = Message.user("a", ImageContent(b"x"), "b")
    assert message.text == "a\nb"


def test_unknown_role_is_rejected() -> None:
    with pytest.raises(ValueError, match="role"):
        Message("robot", ())  # type: ignore[arg-type]


def test_tool_message_requires_name_and_call_id() -> None:
    with pytest.raises(ValueError):
        Message("tool", (TextContent("42"),), name="add")

    message = Message.tool("42", name="add", tool_call_id="call_1")
    assert message.tool_call_id == "call_1"


def test_assistant_message_keeps_requested_tool_calls() -> None:
    call = ToolCall("call_1", "add", {"a": 1})
    message = Message.assistant(tool_calls=[call])

    assert message.content == ()
    assert message.tool_calls == (call,)


def test_prompt_from_text_puts_system_first() -> None:
    prompt = Prompt.from_text("hi", system="be brief")

    assert [m.role for m in prompt.messages] == ["system", "user"]
    assert prompt.messages[1].text == "hi"


def test_prompt_messages_are_a_tuple() -> None:
    prompt = Prompt([Message.user("hi")])  # type: ignore[arg-type]
    assert isinstance(prompt.messages, tuple)


# =============================================================================
# Usage and Response
# =============================================================================


@given(
    prompt=st.integers(min_value=0, max_value=10**9),
    completion=st.integers(min_value=0, max_value=10**9),
)
@settings(max_examples=50, deadline=None, derandomize=True)
def test_usage_total_is_always_the_sum(prompt: int, completion: int) -> None:
    usage = Usage(prompt, completion)
    assert usage.total_tokens == prompt + completion


def test_usage_rejects_negative_counts() -> None:
    with pytest.raises(ValueError):
        Usage(-1, 0)


def test_usage_from_counts_absent_when_nothing_reported() -> None:
    assert Usage.from_counts(None, None) is None
    assert Usage.from_counts(7, None) == Usage(7, 0)
    assert Usage.from_counts("3", "bogus") == Usage(3, 0)


@pytest.mark.parametrize(
    ("response", "expected"),
    [
        (Response(), False),
        (Response(content=TextContent("x")), True),
        (Response(usage=Usage(0, 0)), True),
        (Response(tool_calls=(ToolCall("c", "f"),)), True),
    ],
)
def test_has_payload(response: Response, expected: bool) -> None:
    assert response.has_payload is expected
