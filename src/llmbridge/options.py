"""Per-call invoke options and the precedence rule shared by every bridge."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, TypeVar

from llmbridge.errors import ConfigurationError
from llmbridge.types import ToolDeclaration

if TYPE_CHECKING:
    from collections.abc import Mapping

T = TypeVar("T")

ToolChoice = Literal["auto", "none", "required"] | dict[str, Any]
ReasoningEffort = Literal["low", "medium", "high"]

_TOOL_CHOICES = {"auto", "none", "required"}
_REASONING_EFFORTS = {"low", "medium", "high"}


@dataclass(frozen=True)
class InvokeOptions:
    """Optional per-call overrides.

    Every field left as ``None`` falls back to the bridge's configured
    default, then to the provider's own default.
    """

    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    max_tokens: int | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    stop_sequences: tuple[str, ...] | None = None
    tools: tuple[ToolDeclaration, ...] | None = None

    #: Provider extensions; bridges that cannot carry them leave them out.
    tool_choice: ToolChoice | None = None
    reasoning_effort: ReasoningEffort | None = None
    #: ``"text"``, ``"json_object"``, or a JSON schema dict for structured output.
    response_format: str | dict[str, Any] | None = None
    #: Live search parameters (Grok).
    search: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        """Validate option shapes early for clear errors."""
        if self.max_tokens is not None and (
            not isinstance(self.max_tokens, int) or self.max_tokens <= 0
        ):
            raise ConfigurationError(
                "max_tokens must be a positive integer",
                violations=["max_tokens: must be a positive integer"],
            )
        if self.top_k is not None and (
            not isinstance(self.top_k, int) or self.top_k < 0
        ):
            raise ConfigurationError(
                "top_k must be a non-negative integer",
                violations=["top_k: must be a non-negative integer"],
            )

        if self.stop_sequences is not None:
            if isinstance(self.stop_sequences, str):
                object.__setattr__(self, "stop_sequences", (self.stop_sequences,))
            elif not isinstance(self.stop_sequences, tuple):
                object.__setattr__(self, "stop_sequences", tuple(self.stop_sequences))

        if self.tools is not None:
            tools = tuple(self.tools)
            for tool in tools:
                if not isinstance(tool, ToolDeclaration):
                    raise ConfigurationError(
                        "tools must be ToolDeclaration instances",
                        hint="Pass tools=[ToolDeclaration(name=..., parameters={...})].",
                    )
            object.__setattr__(self, "tools", tools)

        if isinstance(self.tool_choice, str) and self.tool_choice not in _TOOL_CHOICES:
            raise ConfigurationError(
                f"Unsupported tool_choice: {self.tool_choice!r}",
                hint="Use 'auto', 'none', 'required', or {'name': 'tool_name'}.",
            )
        if isinstance(self.tool_choice, dict) and not tool_choice_name(
            self.tool_choice
        ):
            raise ConfigurationError(
                "tool_choice dict must name a function",
                hint="Pass tool_choice={'name': 'get_weather'}.",
            )

        if (
            self.reasoning_effort is not None
            and self.reasoning_effort not in _REASONING_EFFORTS
        ):
            allowed = ", ".join(sorted(_REASONING_EFFORTS))
            raise ConfigurationError(
                f"Unsupported reasoning_effort: {self.reasoning_effort!r}",
                hint=f"Use one of: {allowed}.",
            )


def resolve(option: T | None, configured: T | None, default: T | None = None) -> T | None:
    """Return the first value that is set: option, then configured, then default."""
    if option is not None:
        return option
    if configured is not None:
        return configured
    return default


def prune_none(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Drop absent fields so they are omitted rather than sent as null."""
    return {k: v for k, v in payload.items() if v is not None}


def tool_choice_name(choice: Mapping[str, Any]) -> str | None:
    """Extract the function name from ``{"name": ...}`` or the OpenAI nested form."""
    name = choice.get("name")
    if isinstance(name, str) and name:
        return name
    function = choice.get("function")
    if isinstance(function, dict):
        nested = function.get("name")
        if isinstance(nested, str) and nested:
            return nested
    return None
