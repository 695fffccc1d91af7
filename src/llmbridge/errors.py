"""Exception hierarchy for llmbridge.

Every failure that reaches a caller is one of the kinds below. Kind-specific
fields carry enough structure for a caller to implement its own retry or
fallback policy without introspecting the provider's original exception,
which is kept on ``cause`` (and ``__cause__``).
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator


class ErrorKind(str, Enum):
    """Closed set of failure kinds shared by every bridge."""

    CONFIGURATION = "configuration"
    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    QUOTA_EXCEEDED = "quota_exceeded"
    INVALID_REQUEST = "invalid_request"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    SERVICE_UNAVAILABLE = "service_unavailable"
    NETWORK = "network"
    MODEL_NOT_SUPPORTED = "model_not_supported"
    RESPONSE_PARSING = "response_parsing"
    TIMEOUT = "timeout"
    GENERIC = "generic"


class BridgeError(Exception):
    """Base exception for all llmbridge errors."""

    kind: ErrorKind = ErrorKind.GENERIC

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause


class ConfigurationError(BridgeError):
    """Configuration validation or resolution failed.

    ``violations`` lists every field-level problem, not just the first.
    """

    kind = ErrorKind.CONFIGURATION

    def __init__(
        self,
        message: str,
        *,
        violations: Iterable[str] = (),
        hint: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, hint=hint, cause=cause)
        self.violations = tuple(violations)


class AuthenticationError(BridgeError):
    """Credentials were missing, invalid, or lacked permission."""

    kind = ErrorKind.AUTHENTICATION


class APIError(BridgeError):
    """The provider rejected or failed a call.

    Subclasses narrow the kind; a bare ``APIError`` is a provider failure
    that carried a status code nothing more specific matched.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        cause: BaseException | None = None,
        status_code: int | None = None,
        api_error_code: str | None = None,
        retryable: bool | None = None,
        provider: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint, cause=cause)
        self.status_code = status_code
        self.api_error_code = api_error_code
        self.retryable = retryable
        self.provider = provider


class RateLimitError(APIError):
    """Rate limit exceeded (HTTP 429)."""

    kind = ErrorKind.RATE_LIMIT

    def __init__(
        self,
        message: str,
        *,
        retry_after_s: float | None = None,
        limit: int | None = None,
        remaining: int | None = None,
        reset_time: str | None = None,
        **kwargs: object,
    ) -> None:
        kwargs.setdefault("status_code", 429)
        kwargs.setdefault("api_error_code", "rate_limit_exceeded")
        kwargs.setdefault("retryable", True)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]
        self.retry_after_s = retry_after_s
        self.limit = limit
        self.remaining = remaining
        self.reset_time = reset_time


class QuotaExceededError(APIError):
    """Account or project quota exhausted."""

    kind = ErrorKind.QUOTA_EXCEEDED

    def __init__(
        self,
        message: str,
        *,
        quota_type: str | None = None,
        used_quota: int | None = None,
        total_quota: int | None = None,
        reset_time: str | None = None,
        **kwargs: object,
    ) -> None:
        kwargs.setdefault("status_code", 429)
        kwargs.setdefault("api_error_code", "quota_exceeded")
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]
        self.quota_type = quota_type
        self.used_quota = used_quota
        self.total_quota = total_quota
        self.reset_time = reset_time


class InvalidRequestError(APIError):
    """The request was malformed or rejected as invalid."""

    kind = ErrorKind.INVALID_REQUEST

    def __init__(
        self,
        message: str,
        *,
        invalid_fields: Iterable[str] = (),
        **kwargs: object,
    ) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]
        self.invalid_fields = tuple(invalid_fields)


class ContentBlockedError(InvalidRequestError):
    """The provider's moderation layer blocked the prompt or the answer."""

    def __init__(self, message: str, *, reason: str | None = None, **kwargs: object) -> None:
        kwargs.setdefault("api_error_code", "content_blocked")
        super().__init__(message, **kwargs)  # type: ignore[arg-type]
        self.reason = reason


class InsufficientCreditsError(APIError):
    """The account has no remaining credit (HTTP 402)."""

    kind = ErrorKind.INSUFFICIENT_CREDITS

    def __init__(
        self,
        message: str,
        *,
        current_credits: float | None = None,
        required_credits: float | None = None,
        **kwargs: object,
    ) -> None:
        kwargs.setdefault("status_code", 402)
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]
        self.current_credits = current_credits
        self.required_credits = required_credits


class ServiceUnavailableError(APIError):
    """The provider (or a local server) is unreachable or overloaded."""

    kind = ErrorKind.SERVICE_UNAVAILABLE

    def __init__(
        self, message: str, *, retry_after_s: float | None = None, **kwargs: object
    ) -> None:
        kwargs.setdefault("retryable", True)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]
        self.retry_after_s = retry_after_s


class NetworkError(BridgeError):
    """Transport failed below HTTP (DNS, reset connection)."""

    kind = ErrorKind.NETWORK


class ModelNotSupportedError(BridgeError):
    """The requested model id is unknown to the bridge or the provider."""

    kind = ErrorKind.MODEL_NOT_SUPPORTED

    def __init__(
        self,
        requested_model: str,
        *,
        supported_models: Iterable[str] | None = None,
        message: str | None = None,
        hint: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        supported = tuple(supported_models) if supported_models is not None else None
        if message is None:
            message = f"Model {requested_model!r} is not supported"
            if supported:
                message += f". Supported models: {', '.join(supported)}"
        super().__init__(message, hint=hint, cause=cause)
        self.requested_model = requested_model
        self.supported_models = supported


class ResponseParsingError(BridgeError):
    """A top-level provider payload could not be decoded."""

    kind = ErrorKind.RESPONSE_PARSING

    def __init__(
        self,
        message: str,
        *,
        raw_response: object = None,
        hint: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, hint=hint, cause=cause)
        self.raw_response = raw_response


class RequestTimeoutError(BridgeError):
    """The call exceeded its configured timeout."""

    kind = ErrorKind.TIMEOUT

    def __init__(
        self,
        timeout_s: float | None = None,
        *,
        message: str | None = None,
        hint: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        if message is None:
            message = (
                f"Request timed out after {timeout_s:g}s"
                if timeout_s is not None
                else "Request timed out"
            )
        super().__init__(message, hint=hint, cause=cause)
        self.timeout_s = timeout_s


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
