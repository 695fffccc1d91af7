"""Static model tables: context windows, output limits, and pricing.

Lookups never touch the network. Ids missing from a table fall back to
that provider's default entry so ``get_metadata()`` always answers.
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING

from llmbridge.errors import ModelNotSupportedError
from llmbridge.types import ModelInfo, ModelPricing

if TYPE_CHECKING:
    from collections.abc import Mapping


def _usd(prompt: float, completion: float, unit: int = 1_000_000) -> ModelPricing:
    return ModelPricing(prompt=prompt, completion=completion, unit=unit)


# --- Anthropic ---

ANTHROPIC_MODELS: Mapping[str, ModelInfo] = MappingProxyType(
    {
        "claude-opus-4.1": ModelInfo(
            family="Claude Opus",
            version="4.1",
            context_window=200_000,
            max_tokens=128_000,
            pricing=_usd(15.0, 75.0),
        ),
        "claude-sonnet-4": ModelInfo(
            family="Claude Sonnet",
            version="4",
            context_window=200_000,
            max_tokens=128_000,
            pricing=_usd(3.0, 15.0),
            supports_long_context=True,
            long_context_pricing=_usd(6.0, 22.5),
        ),
        "claude-sonnet-3.7": ModelInfo(
            family="Claude Sonnet",
            version="3.7",
            context_window=200_000,
            max_tokens=8192,
            pricing=_usd(3.0, 15.0),
        ),
        "claude-haiku-3.5": ModelInfo(
            family="Claude Haiku",
            version="3.5",
            context_window=200_000,
            max_tokens=8192,
            pricing=_usd(0.8, 4.0),
        ),
    }
)
ANTHROPIC_DEFAULT = ModelInfo(
    family="Anthropic",
    version="unknown",
    context_window=200_000,
    max_tokens=8192,
    pricing=_usd(0, 0),
)

# --- OpenAI ---

OPENAI_MODELS: Mapping[str, ModelInfo] = MappingProxyType(
    {
        "gpt-4o": ModelInfo("GPT-4o", 128_000, 16_384, version="4"),
        "gpt-4o-mini": ModelInfo("GPT-4o Mini", 128_000, 16_384, version="4"),
        "gpt-4-turbo": ModelInfo("GPT-4 Turbo", 128_000, 4096, version="4"),
        "gpt-4-turbo-preview": ModelInfo(
            "GPT-4 Turbo Preview", 128_000, 4096, version="4"
        ),
        "gpt-4": ModelInfo("GPT-4", 8192, 4096, version="4"),
        "gpt-3.5-turbo": ModelInfo("GPT-3.5 Turbo", 16_385, 4096, version="3.5"),
        "gpt-3.5-turbo-16k": ModelInfo(
            "GPT-3.5 Turbo 16K", 16_385, 4096, version="3.5"
        ),
        "o1-preview": ModelInfo("o1 Preview", 128_000, 32_768, version="1"),
        "o1-mini": ModelInfo("o1 Mini", 128_000, 65_536, version="1"),
    }
)
OPENAI_DEFAULT = ModelInfo("OpenAI", 4096, 4096, version="unknown")

# --- Gemini ---

GEMINI_MODELS: Mapping[str, ModelInfo] = MappingProxyType(
    {
        "gemini-1.5-flash": ModelInfo(
            "Gemini 1.5 Flash", 1_000_000, 8192, version="1.5", pricing=_usd(0, 0)
        ),
        "gemini-1.5-pro": ModelInfo(
            "Gemini 1.5 Pro", 1_000_000, 8192, version="1.5", pricing=_usd(0, 0)
        ),
        "gemini-1.0-pro": ModelInfo(
            "Gemini 1.0 Pro", 32_000, 8192, version="1.0", pricing=_usd(0, 0)
        ),
    }
)
GEMINI_DEFAULT = ModelInfo("Gemini", 32_000, 8192, version="unknown")

# --- xAI Grok ---

GROK_MODELS: Mapping[str, ModelInfo] = MappingProxyType(
    {
        "grok-3-latest": ModelInfo(
            "Grok", 131_072, 32_768, version="3", pricing=_usd(0, 0, 1000)
        ),
        "grok-3-mini": ModelInfo(
            "Grok Mini", 65_536, 32_768, version="3", pricing=_usd(0, 0, 1000)
        ),
        "grok-2-latest": ModelInfo(
            "Grok", 131_072, 32_768, version="2", pricing=_usd(0, 0, 1000)
        ),
    }
)
GROK_DEFAULT = ModelInfo("Grok", 131_072, 32_768, version="unknown")

# --- OpenAI-compatible endpoints ---

OPENAI_LIKE_DEFAULT = ModelInfo(
    "OpenAI-compatible", 128_000, 4096, version="1", pricing=_usd(0, 0, 1000)
)


# --- Ollama ---


class OllamaFamily(str, Enum):
    """Model families served through Ollama."""

    LLAMA = "llama"
    GEMMA = "gemma"
    GPT_OSS = "gpt-oss"


SUPPORTED_OLLAMA_MODELS: Mapping[OllamaFamily, tuple[str, ...]] = MappingProxyType(
    {
        OllamaFamily.LLAMA: ("llama3.2", "llama3.1", "llama3", "llama2", "llama"),
        OllamaFamily.GEMMA: (
            "gemma3n:latest",
            "gemma3n:7b",
            "gemma3n:2b",
            "gemma2:latest",
            "gemma2:7b",
            "gemma2:2b",
            "gemma:latest",
            "gemma:7b",
            "gemma:2b",
        ),
        OllamaFamily.GPT_OSS: ("gpt-oss-20:b", "gpt-oss-20b"),
    }
)

# Default num_predict per family when neither option nor config sets one.
OLLAMA_DEFAULT_NUM_PREDICT: Mapping[OllamaFamily, int] = MappingProxyType(
    {OllamaFamily.LLAMA: 4096, OllamaFamily.GEMMA: 2048, OllamaFamily.GPT_OSS: 4096}
)


def ollama_family(model: str) -> OllamaFamily:
    """Resolve an Ollama model id to its family, once, at bridge construction."""
    name = model.strip().lower()
    if name.startswith("gpt-oss"):
        return OllamaFamily.GPT_OSS
    if name.startswith("gemma"):
        return OllamaFamily.GEMMA
    if name.startswith("llama"):
        return OllamaFamily.LLAMA
    supported = [m for models in SUPPORTED_OLLAMA_MODELS.values() for m in models]
    raise ModelNotSupportedError(model, supported_models=supported)


def ollama_model_info(model: str, family: OllamaFamily) -> ModelInfo:
    """Derive context window and output limit from the Ollama model tag."""
    if family is OllamaFamily.GEMMA:
        version, context, max_tokens = "3n", 8192, 2048
        if "3n" not in model and "2" in model:
            version, context = "2", 4096
        if "2b" in model:
            max_tokens = 1024
        return ModelInfo("Gemma", context, max_tokens, version=version)
    if family is OllamaFamily.GPT_OSS:
        return ModelInfo("GPT-OSS", 4096, 4096, version="20b")
    if "3.2" in model:
        return ModelInfo("Llama", 8192, 4096, version="3.2")
    if "3.1" in model:
        return ModelInfo("Llama", 32_768, 8192, version="3.1")
    if "3" in model:
        return ModelInfo("Llama", 8192, 4096, version="3.0")
    if "2" in model:
        return ModelInfo("Llama", 4096, 2048, version="2.0")
    return ModelInfo("Llama", 8192, 4096, version="3.2")


# --- Bedrock ---


class BedrockFamily(str, Enum):
    """Model families hosted on Bedrock, keyed by model-id prefix."""

    ANTHROPIC = "anthropic"
    META = "meta"


BEDROCK_MODELS: Mapping[str, ModelInfo] = MappingProxyType(
    {
        "anthropic.claude-3-5-sonnet-20241022-v2:0": ModelInfo(
            "Claude Sonnet", 200_000, 8192, version="3.5", pricing=_usd(3.0, 15.0)
        ),
        "anthropic.claude-3-haiku-20240307-v1:0": ModelInfo(
            "Claude Haiku", 200_000, 4096, version="3", pricing=_usd(0.25, 1.25)
        ),
        "meta.llama3-8b-instruct-v1:0": ModelInfo(
            "Llama", 8192, 2048, version="3", pricing=_usd(0.3, 0.6)
        ),
        "meta.llama3-70b-instruct-v1:0": ModelInfo(
            "Llama", 8192, 2048, version="3", pricing=_usd(2.65, 3.5)
        ),
    }
)
BEDROCK_DEFAULTS: Mapping[BedrockFamily, ModelInfo] = MappingProxyType(
    {
        BedrockFamily.ANTHROPIC: ModelInfo("Claude", 200_000, 4096, version="unknown"),
        BedrockFamily.META: ModelInfo("Llama", 8192, 2048, version="unknown"),
    }
)


def bedrock_family(model_id: str) -> BedrockFamily:
    """Resolve a Bedrock model id (optionally region-prefixed) to its family."""
    name = model_id.strip().lower()
    # Cross-region inference profiles look like ``us.anthropic.claude-...``.
    head, _, rest = name.partition(".")
    if len(head) == 2 and rest:
        name = rest
    if name.startswith("anthropic.claude"):
        return BedrockFamily.ANTHROPIC
    if name.startswith("meta.llama"):
        return BedrockFamily.META
    raise ModelNotSupportedError(model_id, supported_models=list(BEDROCK_MODELS))


def lookup(table: Mapping[str, ModelInfo], model: str, default: ModelInfo) -> ModelInfo:
    return table.get(model, default)
