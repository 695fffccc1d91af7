"""Provider bridges."""

from .anthropic import AnthropicBridge
from .base import Bridge, ProviderCapabilities, StreamReconstructor
from .bedrock import BedrockBridge
from .gemini import GeminiBridge
from .grok import GrokBridge
from .ollama import OllamaBridge
from .openai import OpenAIBridge
from .openai_like import OpenAILikeBridge

__all__ = [
    "AnthropicBridge",
    "BedrockBridge",
    "Bridge",
    "GeminiBridge",
    "GrokBridge",
    "OllamaBridge",
    "OpenAIBridge",
    "OpenAILikeBridge",
    "ProviderCapabilities",
    "StreamReconstructor",
]
