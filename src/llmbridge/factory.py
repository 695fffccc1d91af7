"""Closed dispatch from a provider name to its bridge class."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Literal, get_args

from llmbridge.embeddings import LocalEmbeddingBridge, OpenAIEmbeddingBridge
from llmbridge.errors import ConfigurationError
from llmbridge.providers.anthropic import AnthropicBridge
from llmbridge.providers.bedrock import BedrockBridge
from llmbridge.providers.gemini import GeminiBridge
from llmbridge.providers.grok import GrokBridge
from llmbridge.providers.ollama import OllamaBridge
from llmbridge.providers.openai import OpenAIBridge
from llmbridge.providers.openai_like import OpenAILikeBridge

if TYPE_CHECKING:
    from llmbridge.embeddings import EmbeddingBridge
    from llmbridge.providers.base import Bridge

ProviderName = Literal[
    "anthropic", "openai", "gemini", "ollama", "grok", "openai_like", "bedrock"
]
EmbeddingProviderName = Literal["openai", "local"]

_BRIDGES: dict[str, Any] = {
    "anthropic": AnthropicBridge,
    "openai": OpenAIBridge,
    "gemini": GeminiBridge,
    "ollama": OllamaBridge,
    "grok": GrokBridge,
    "openai_like": OpenAILikeBridge,
    "bedrock": BedrockBridge,
}


def _unknown(kind: str, name: str, known: tuple[str, ...]) -> ConfigurationError:
    return ConfigurationError(
        f"Unknown {kind}: {name!r}",
        violations=[f"provider: expected one of {', '.join(known)}"],
        hint=f"Use one of: {', '.join(known)}",
    )


def create_bridge(
    provider: ProviderName,
    config: Any = None,
    *,
    client: Any = None,
    **fields: Any,
) -> Bridge:
    """Build a chat bridge by name.

    Example::

        bridge = create_bridge("ollama", model="gemma3:4b")
        response = await bridge.invoke(Prompt.from_text("hi"))
    """
    try:
        cls = _BRIDGES[provider]
    except KeyError:
        raise _unknown("provider", provider, get_args(ProviderName)) from None
    return cls(config, client=client, **fields)  # type: ignore[no-any-return]


def create_embedding_bridge(
    provider: EmbeddingProviderName,
    config: Any = None,
    *,
    client: Any = None,
    pipeline: Any = None,
    **fields: Any,
) -> EmbeddingBridge:
    """Build an embedding bridge; ``"local"`` requires a feature-extraction *pipeline*."""
    if provider == "openai":
        return OpenAIEmbeddingBridge(config, client=client, **fields)
    if provider == "local":
        if pipeline is None:
            raise ConfigurationError(
                "local embeddings need a feature-extraction pipeline",
                violations=["pipeline: required"],
            )
        return LocalEmbeddingBridge(pipeline, config, **fields)
    raise _unknown("embedding provider", provider, get_args(EmbeddingProviderName))
