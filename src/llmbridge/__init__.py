"""llmbridge: one request and response shape across LLM providers.

Public API:
    - create_bridge(): chat bridge by provider name
    - Prompt / Message / content types: the vendor-neutral request model
    - InvokeOptions: per-call overrides of the bridge config
    - Response / ResponseStream: normalized results, whole or streamed
    - create_embedding_bridge(): text embeddings

Example:
    bridge = create_bridge("anthropic", model="claude-sonnet-4")
    response = await bridge.invoke(Prompt.from_text("Hello"))
    print(response.text)
"""

from __future__ import annotations

import logging

from llmbridge.config import (
    AnthropicConfig,
    BedrockConfig,
    BridgeConfig,
    GeminiConfig,
    GrokConfig,
    LocalEmbeddingConfig,
    OllamaConfig,
    OpenAIConfig,
    OpenAIEmbeddingConfig,
    OpenAILikeConfig,
)
from llmbridge.embeddings import (
    EmbeddingBridge,
    EmbeddingMetadata,
    EmbeddingRequest,
    EmbeddingResponse,
    EmbeddingUsage,
    LocalEmbeddingBridge,
    OpenAIEmbeddingBridge,
)
from llmbridge.errors import (
    APIError,
    AuthenticationError,
    BridgeError,
    ConfigurationError,
    ContentBlockedError,
    ErrorKind,
    InsufficientCreditsError,
    InvalidRequestError,
    ModelNotSupportedError,
    NetworkError,
    QuotaExceededError,
    RateLimitError,
    RequestTimeoutError,
    ResponseParsingError,
    ServiceUnavailableError,
)
from llmbridge.factory import ProviderName, create_bridge, create_embedding_bridge
from llmbridge.options import InvokeOptions
from llmbridge.providers import (
    AnthropicBridge,
    BedrockBridge,
    Bridge,
    GeminiBridge,
    GrokBridge,
    OllamaBridge,
    OpenAIBridge,
    OpenAILikeBridge,
    ProviderCapabilities,
)
from llmbridge.streaming import ResponseStream
from llmbridge.types import (
    AudioContent,
    BridgeMetadata,
    Content,
    FileContent,
    ImageContent,
    Message,
    ModelPricing,
    Prompt,
    Response,
    TextContent,
    ToolCall,
    ToolDeclaration,
    Usage,
    VideoContent,
)

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("llmbridge")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("llmbridge").addHandler(logging.NullHandler())

__all__ = [
    "APIError",
    "AnthropicBridge",
    "AnthropicConfig",
    "AudioContent",
    "AuthenticationError",
    "BedrockBridge",
    "BedrockConfig",
    "Bridge",
    "BridgeConfig",
    "BridgeError",
    "BridgeMetadata",
    "ConfigurationError",
    "Content",
    "ContentBlockedError",
    "EmbeddingBridge",
    "EmbeddingMetadata",
    "EmbeddingRequest",
    "EmbeddingResponse",
    "EmbeddingUsage",
    "ErrorKind",
    "FileContent",
    "GeminiBridge",
    "GeminiConfig",
    "GrokBridge",
    "GrokConfig",
    "ImageContent",
    "InsufficientCreditsError",
    "InvalidRequestError",
    "InvokeOptions",
    "LocalEmbeddingBridge",
    "LocalEmbeddingConfig",
    "Message",
    "ModelNotSupportedError",
    "ModelPricing",
    "NetworkError",
    "OllamaBridge",
    "OllamaConfig",
    "OpenAIBridge",
    "OpenAIConfig",
    "OpenAIEmbeddingBridge",
    "OpenAIEmbeddingConfig",
    "OpenAILikeBridge",
    "OpenAILikeConfig",
    "Prompt",
    "ProviderCapabilities",
    "ProviderName",
    "QuotaExceededError",
    "RateLimitError",
    "RequestTimeoutError",
    "Response",
    "ResponseParsingError",
    "ResponseStream",
    "ServiceUnavailableError",
    "TextContent",
    "ToolCall",
    "ToolDeclaration",
    "Usage",
    "VideoContent",
    "create_bridge",
    "create_embedding_bridge",
]
