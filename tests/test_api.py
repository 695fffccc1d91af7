"""Real provider calls.

Compact on purpose: one invoke and one stream per provider.
- ENABLE_API_TESTS=1 is required to run any of these
- each provider also needs its key (ANTHROPIC_API_KEY, OPENAI_API_KEY,
  GEMINI_API_KEY, XAI_API_KEY) or is skipped
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any

import pytest
import pytest_asyncio

from llmbridge import InvokeOptions, Prompt, create_bridge

if TYPE_CHECKING:
    from llmbridge.factory import ProviderName

pytestmark = pytest.mark.api

_PROVIDERS: list[tuple[ProviderName, str, dict[str, Any]]] = [
    ("anthropic", "ANTHROPIC_API_KEY", {"model": "claude-haiku-3.5"}),
    ("openai", "OPENAI_API_KEY", {"model": "gpt-4o-mini"}),
    ("gemini", "GEMINI_API_KEY", {"model": "gemini-1.5-flash"}),
    ("grok", "XAI_API_KEY", {"model": "grok-3-mini"}),
]

_PROMPT = Prompt.from_text("Reply with the single word: pong", system="Be terse.")
_OPTIONS = InvokeOptions(max_tokens=16, temperature=0)


@pytest_asyncio.fixture(params=_PROVIDERS, ids=[p[0] for p in _PROVIDERS])
async def bridge(request):
    provider, env_key, fields = request.param
    if not os.getenv(env_key):
        pytest.skip(f"{env_key} not set")
    bridge = create_bridge(provider, **fields)
    yield bridge
    await bridge.aclose()


@pytest.mark.asyncio
async def test_invoke_returns_text_and_usage(bridge) -> None:
    response = await bridge.invoke(_PROMPT, _OPTIONS)

    assert "pong" in response.text.lower()
    assert response.usage is not None
    assert response.usage.total_tokens > 0


@pytest.mark.asyncio
async def test_stream_concatenates_to_an_answer(bridge) -> None:
    collected = await bridge.invoke_stream(_PROMPT, _OPTIONS).collect()

    assert "pong" in collected.text.lower()
