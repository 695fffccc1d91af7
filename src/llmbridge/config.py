"""Bridge configuration: frozen pydantic schemas validated once at construction.

Each bridge takes one config object. Construction validates every field at
once and raises :class:`~llmbridge.errors.ConfigurationError` listing all
violations, so a caller fixes a bad config in one pass. API keys left unset
are resolved from the provider's standard environment variable (``.env`` is
honoured via python-dotenv).
"""

from __future__ import annotations

import os
from typing import Any, ClassVar, Literal, TypeVar

from dotenv import load_dotenv
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationError,
    ValidationInfo,
    field_validator,
)

from llmbridge.catalog import (
    ANTHROPIC_MODELS,
    GEMINI_MODELS,
    OPENAI_MODELS,
    bedrock_family,
)
from llmbridge.errors import ConfigurationError, ModelNotSupportedError

load_dotenv()

C = TypeVar("C", bound="_Schema")


def format_violations(exc: ValidationError) -> list[str]:
    """Render every pydantic error as ``"field: message"``."""
    violations: list[str] = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ())) or "<root>"
        msg = str(err.get("msg", "invalid value"))
        # Strip pydantic's wrapper prefix on ValueError messages.
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, ") :]
        violations.append(f"{loc}: {msg}")
    return violations


def configuration_error(exc: ValidationError, *, title: str) -> ConfigurationError:
    violations = format_violations(exc)
    return ConfigurationError(
        f"{title} validation failed: " + "; ".join(violations),
        violations=violations,
        cause=exc,
    )


class _Schema(BaseModel):
    """Base for config schemas: frozen, closed, and raising ConfigurationError."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except ValidationError as e:
            raise configuration_error(e, title=type(self).__name__) from e


class BridgeConfig(_Schema):
    """Defaults shared by chat bridges; per-call options override them."""

    model: str = Field(min_length=1)
    temperature: float | None = Field(default=None, ge=0, le=2)
    top_p: float | None = Field(default=None, ge=0, le=1)
    top_k: int | None = Field(default=None, ge=0)
    max_tokens: int | None = Field(default=None, ge=1)
    stop_sequences: tuple[str, ...] | None = None
    presence_penalty: float | None = Field(default=None, ge=-2, le=2)
    frequency_penalty: float | None = Field(default=None, ge=-2, le=2)
    #: Transport timeout in seconds; reported back on RequestTimeoutError.
    timeout_s: float = Field(default=60.0, gt=0)

    @field_validator("model", mode="before")
    @classmethod
    def _strip_model(cls, v: Any) -> Any:
        """Trim surrounding whitespace on model identifiers."""
        if isinstance(v, str):
            return v.strip()
        return v


class _KeyedConfig(BridgeConfig):
    """Config with an API key resolved from the environment when omitted."""

    api_key_env: ClassVar[str | None] = None
    api_key_required: ClassVar[bool] = True

    api_key: SecretStr | None = Field(default=None, validate_default=True)

    @field_validator("api_key", mode="before")
    @classmethod
    def _resolve_api_key(cls, v: Any) -> Any:
        if isinstance(v, SecretStr):
            v = v.get_secret_value()
        if isinstance(v, str):
            v = v.strip() or None
        if v is None and cls.api_key_env:
            v = os.environ.get(cls.api_key_env) or None
        return v

    @field_validator("api_key")
    @classmethod
    def _require_api_key(cls, v: SecretStr | None) -> SecretStr | None:
        if v is None and cls.api_key_required:
            where = f"set {cls.api_key_env} or " if cls.api_key_env else ""
            raise ValueError(f"API key required ({where}pass api_key=...)")
        return v

    def api_key_value(self) -> str | None:
        return self.api_key.get_secret_value() if self.api_key is not None else None


def _check_enum_model(v: str, table: Any, provider: str) -> str:
    if v not in table:
        raise ValueError(
            f"unknown {provider} model {v!r}; expected one of: {', '.join(table)}"
        )
    return v


class AnthropicConfig(_KeyedConfig):
    api_key_env: ClassVar[str | None] = "ANTHROPIC_API_KEY"

    model: str = "claude-sonnet-4"
    temperature: float | None = Field(default=None, ge=0, le=1)
    base_url: str | None = None
    #: Send the 1M-context beta header (only for models that support it).
    use_long_context: bool = False
    #: Send the 128k-output beta header.
    use_extended_output: bool = False
    max_retries: int | None = Field(default=None, ge=0)

    @field_validator("model")
    @classmethod
    def _known_model(cls, v: str) -> str:
        return _check_enum_model(v, ANTHROPIC_MODELS, "Anthropic")


class OpenAIConfig(_KeyedConfig):
    api_key_env: ClassVar[str | None] = "OPENAI_API_KEY"

    model: str = "gpt-4o"
    base_url: str | None = None
    organization: str | None = None
    project: str | None = None

    @field_validator("model")
    @classmethod
    def _known_model(cls, v: str) -> str:
        return _check_enum_model(v, OPENAI_MODELS, "OpenAI")


class GeminiConfig(_KeyedConfig):
    api_key_env: ClassVar[str | None] = "GEMINI_API_KEY"

    model: str = "gemini-1.5-flash"
    candidate_count: int | None = Field(default=None, ge=1, le=8)
    response_mime_type: str | None = None
    response_schema: dict[str, Any] | None = None
    safety_settings: tuple[dict[str, Any], ...] | None = None

    @field_validator("model")
    @classmethod
    def _known_model(cls, v: str) -> str:
        return _check_enum_model(v, GEMINI_MODELS, "Gemini")


class OllamaConfig(BridgeConfig):
    model: str = "llama3.2"
    host: str = "http://localhost:11434"
    temperature: float | None = Field(default=None, ge=0, le=1)
    top_k: int | None = Field(default=None, ge=1)
    seed: int | None = None


class GrokSearchSource(_Schema):
    """One live-search source; extra keys pass through snake-cased."""

    model_config = ConfigDict(frozen=True, extra="allow")

    type: Literal["web", "x", "news", "rss"]


class GrokSearch(_Schema):
    mode: Literal["off", "auto", "on"] | None = None
    return_citations: bool | None = None
    from_date: str | None = None
    to_date: str | None = None
    max_search_results: int | None = Field(default=None, ge=1, le=50)
    sources: tuple[GrokSearchSource, ...] | None = None


class ResponseFormat(_Schema):
    """``text``, ``json_object``, or ``json_schema`` with a named schema."""

    type: Literal["text", "json_object", "json_schema"]
    name: str | None = Field(default=None, min_length=1)
    json_schema: dict[str, Any] | None = Field(
        default=None, alias="schema", validate_default=True
    )
    strict: bool | None = None

    @field_validator("json_schema")
    @classmethod
    def _schema_for_json_schema(
        cls, v: dict[str, Any] | None, info: ValidationInfo
    ) -> dict[str, Any] | None:
        if info.data.get("type") == "json_schema" and v is None:
            raise ValueError("schema is required when type is 'json_schema'")
        return v


class GrokConfig(_KeyedConfig):
    api_key_env: ClassVar[str | None] = "XAI_API_KEY"

    model: str = "grok-3-latest"
    base_url: str = "https://api.x.ai/v1"
    headers: dict[str, str] | None = None
    stop_sequences: tuple[str, ...] | None = Field(default=None, max_length=4)
    reasoning_effort: Literal["low", "high"] | None = None
    search: GrokSearch | None = None
    #: ``"auto" | "none" | "required"`` or ``{"name": ...}``.
    tool_choice: str | dict[str, Any] | None = None
    parallel_tool_calls: bool | None = None
    response_format: ResponseFormat | None = None
    user: str | None = None
    seed: int | None = Field(default=None, ge=0)

    @field_validator("tool_choice")
    @classmethod
    def _valid_tool_choice(cls, v: Any) -> Any:
        if isinstance(v, str) and v not in {"auto", "none", "required"}:
            raise ValueError("must be 'auto', 'none', 'required', or a function name")
        if isinstance(v, dict) and not (v.get("name") or v.get("tool_name")):
            raise ValueError("function tool_choice must carry a name")
        return v


class OpenAILikeConfig(_KeyedConfig):
    api_key_required: ClassVar[bool] = False

    base_url: str
    organization: str | None = None
    headers: dict[str, str] | None = None
    #: Omit absent fields instead of sending them as null.
    strict: bool = True

    @field_validator("base_url")
    @classmethod
    def _http_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("must be an http(s) URL")
        return v.rstrip("/")


class BedrockConfig(BridgeConfig):
    model: str = Field(min_length=1, alias="model_id")
    region: str = "us-east-1"
    endpoint_url: str | None = None
    profile: str | None = None
    anthropic_version: str = "bedrock-2023-05-31"

    @field_validator("model")
    @classmethod
    def _known_family(cls, v: str) -> str:
        try:
            bedrock_family(v)
        except ModelNotSupportedError as e:
            raise ValueError(
                "expected an 'anthropic.claude*' or 'meta.llama*' model id"
            ) from e
        return v


class OpenAIEmbeddingConfig(_KeyedConfig):
    api_key_env: ClassVar[str | None] = "OPENAI_API_KEY"

    model: str = "text-embedding-3-small"
    dimension: int | None = Field(default=None, ge=1)
    base_url: str | None = None
    organization: str | None = None


class LocalEmbeddingConfig(_Schema):
    model: str = Field(default="google/embedding-gemma-002", min_length=1)
    pooling: Literal["mean", "max", "cls"] = "mean"
    normalize: bool = True
    batch_size: int | None = Field(default=None, ge=1)
    dimension: int | None = Field(default=None, ge=1)


def build_config(schema: type[C], config: C | None, fields: dict[str, Any]) -> C:
    """Return *config*, or build one from keyword fields; fields override a given config."""
    if config is None:
        return schema(**fields)
    if not fields:
        return config
    return schema(**{**config.model_dump(exclude_unset=True), **fields})
