"""Error classifier: map SDK, HTTP, and transport failures onto the shared taxonomy.

Bridges call :func:`classify` at the client-invocation boundary only::

    except (asyncio.CancelledError, BridgeError):
        raise
    except Exception as e:
        raise classify(e, provider="openai", model=model) from e

An error that is already a :class:`~llmbridge.errors.BridgeError` is returned
unchanged, never re-wrapped.
"""

from __future__ import annotations

import asyncio
import errno
import json
import logging
import re
import socket
from typing import Any

import httpx
from pydantic import ValidationError

from llmbridge._http import RETRYABLE_STATUS_CODES
from llmbridge.config import configuration_error
from llmbridge.errors import (
    APIError,
    AuthenticationError,
    BridgeError,
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
    _walk_exception_chain,
)

log = logging.getLogger(__name__)

_API_KEY_ENV_VARS: dict[str, str] = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "grok": "XAI_API_KEY",
}

# Exception class names and provider error codes, as raised by the
# anthropic/openai SDKs, google-genai, and botocore.
_NAMED_KINDS: dict[str, ErrorKind] = {
    "AuthenticationError": ErrorKind.AUTHENTICATION,
    "PermissionDeniedError": ErrorKind.AUTHENTICATION,
    "UnauthorizedException": ErrorKind.AUTHENTICATION,
    "AccessDeniedException": ErrorKind.AUTHENTICATION,
    "UnrecognizedClientException": ErrorKind.AUTHENTICATION,
    "ExpiredTokenException": ErrorKind.AUTHENTICATION,
    "NoCredentialsError": ErrorKind.AUTHENTICATION,
    "invalid_api_key": ErrorKind.AUTHENTICATION,
    "authentication_error": ErrorKind.AUTHENTICATION,
    "permission_error": ErrorKind.AUTHENTICATION,
    "RateLimitError": ErrorKind.RATE_LIMIT,
    "ThrottlingException": ErrorKind.RATE_LIMIT,
    "TooManyRequestsException": ErrorKind.RATE_LIMIT,
    "rate_limit_error": ErrorKind.RATE_LIMIT,
    "rate_limit_exceeded": ErrorKind.RATE_LIMIT,
    "ServiceQuotaExceededException": ErrorKind.QUOTA_EXCEEDED,
    "insufficient_quota": ErrorKind.QUOTA_EXCEEDED,
    "RESOURCE_EXHAUSTED": ErrorKind.RATE_LIMIT,
    "BadRequestError": ErrorKind.INVALID_REQUEST,
    "UnprocessableEntityError": ErrorKind.INVALID_REQUEST,
    "ValidationException": ErrorKind.INVALID_REQUEST,
    "invalid_request_error": ErrorKind.INVALID_REQUEST,
    "INVALID_ARGUMENT": ErrorKind.INVALID_REQUEST,
    "NotFoundError": ErrorKind.MODEL_NOT_SUPPORTED,
    "ResourceNotFoundException": ErrorKind.MODEL_NOT_SUPPORTED,
    "ModelNotFoundException": ErrorKind.MODEL_NOT_SUPPORTED,
    "model_not_found": ErrorKind.MODEL_NOT_SUPPORTED,
    "not_found_error": ErrorKind.MODEL_NOT_SUPPORTED,
    "NOT_FOUND": ErrorKind.MODEL_NOT_SUPPORTED,
    "InternalServerError": ErrorKind.SERVICE_UNAVAILABLE,
    "ServiceUnavailableException": ErrorKind.SERVICE_UNAVAILABLE,
    "InternalServerException": ErrorKind.SERVICE_UNAVAILABLE,
    "ModelNotReadyException": ErrorKind.SERVICE_UNAVAILABLE,
    "overloaded_error": ErrorKind.SERVICE_UNAVAILABLE,
    "api_error": ErrorKind.SERVICE_UNAVAILABLE,
    "UNAVAILABLE": ErrorKind.SERVICE_UNAVAILABLE,
    "APITimeoutError": ErrorKind.TIMEOUT,
    "ModelTimeoutException": ErrorKind.TIMEOUT,
    "ReadTimeoutError": ErrorKind.TIMEOUT,
    "ConnectTimeoutError": ErrorKind.TIMEOUT,
    "DEADLINE_EXCEEDED": ErrorKind.TIMEOUT,
    "APIConnectionError": ErrorKind.NETWORK,
    "EndpointConnectionError": ErrorKind.NETWORK,
}

_NETWORK_ERRNOS = frozenset(
    {
        errno.ECONNRESET,
        errno.ENETUNREACH,
        errno.EHOSTUNREACH,
        errno.EPIPE,
        errno.ECONNABORTED,
    }
)
_DNS_MARKERS = ("ENOTFOUND", "EAI_AGAIN", "getaddrinfo", "Name or service not known")
_REFUSED_MARKERS = ("ECONNREFUSED", "Connection refused", "connection refused")


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in _walk_exception_chain(exc):
        for attr in ("status_code", "status", "code"):
            value = getattr(e, attr, None)
            if isinstance(value, int) and 100 <= value <= 599:
                return value
        response = getattr(e, "response", None)
        value = getattr(response, "status_code", None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
        # botocore ClientError keeps the status in its parsed response dict.
        if isinstance(response, dict):
            meta = response.get("ResponseMetadata")
            value = meta.get("HTTPStatusCode") if isinstance(meta, dict) else None
            if isinstance(value, int) and 100 <= value <= 599:
                return value
    return None


_PROTO_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)s$")


def _extract_retry_info_seconds(exc: BaseException) -> float | None:
    """Extract retry delay from Google API-style RetryInfo in error details.

    google-genai ``ClientError`` exposes the parsed JSON body via ``.details``
    shaped like ``{"error": {"details": [{"@type": "...RetryInfo",
    "retryDelay": "8s"}]}}``.
    """
    details: Any = getattr(exc, "details", None)
    if not isinstance(details, dict):
        return None
    error: Any = details.get("error")
    detail_list: Any = error.get("details") if isinstance(error, dict) else None
    if not isinstance(detail_list, list):
        return None
    for entry in detail_list:
        if not isinstance(entry, dict):
            continue
        at_type = entry.get("@type", "")
        if not isinstance(at_type, str) or "RetryInfo" not in at_type:
            continue
        delay_raw = entry.get("retryDelay")
        m = _PROTO_DURATION_RE.match(delay_raw) if isinstance(delay_raw, str) else None
        if m:
            return float(m.group(1))
    return None


def _headers(exc: BaseException) -> Any:
    response = getattr(exc, "response", None)
    return getattr(response, "headers", None)


def _header(headers: Any, name: str) -> str | None:
    if headers is None:
        return None
    try:
        raw = headers.get(name)
    except (AttributeError, TypeError):
        return None
    return raw if isinstance(raw, str) and raw.strip() else None


def extract_retry_after_s(exc: BaseException) -> float | None:
    """Walk the exception chain to find a retry-after delay in seconds."""
    for e in _walk_exception_chain(exc):
        value = getattr(e, "retry_after", None)
        if isinstance(value, (int, float)) and value >= 0:
            return float(value)

        raw = _header(_headers(e), "retry-after") or _header(_headers(e), "Retry-After")
        if raw is not None:
            try:
                seconds = float(raw)
            except ValueError:
                seconds = -1.0
            if seconds >= 0:
                return seconds

        retry_info = _extract_retry_info_seconds(e)
        if retry_info is not None:
            return retry_info
    return None


def _rate_limit_headers(exc: BaseException) -> dict[str, Any]:
    for e in _walk_exception_chain(exc):
        headers = _headers(e)
        if headers is None:
            continue
        limit = _header(headers, "x-ratelimit-limit-requests")
        remaining = _header(headers, "x-ratelimit-remaining-requests")
        reset = _header(headers, "x-ratelimit-reset-requests")
        return {
            "limit": int(limit) if limit and limit.isdigit() else None,
            "remaining": int(remaining) if remaining and remaining.isdigit() else None,
            "reset_time": reset,
        }
    return {}


def _body(exc: BaseException) -> Any:
    """Best-effort parsed error body (SDK ``.body`` or an httpx response)."""
    for e in _walk_exception_chain(exc):
        for attr in ("body", "details"):
            body = getattr(e, attr, None)
            if isinstance(body, dict):
                return body
        response = getattr(e, "response", None)
        if isinstance(response, dict):
            return response
        if isinstance(response, httpx.Response):
            try:
                return response.json()
            except (ValueError, httpx.ResponseNotRead):
                return None
    return None


def extract_error_code(exc: BaseException) -> str | None:
    """Provider error code: SDK ``.code``, JSON body ``error.type/code``, or botocore ``Error.Code``."""
    for e in _walk_exception_chain(exc):
        for attr in ("code", "status"):
            code = getattr(e, attr, None)
            if isinstance(code, str) and code:
                return code
    body = _body(exc)
    if isinstance(body, dict):
        err = body.get("error", body.get("Error"))
        if isinstance(err, dict):
            for key in ("code", "type", "status", "Code"):
                value = err.get(key)
                if isinstance(value, str) and value:
                    return value
    return None


def _named_kind(exc: BaseException, code: str | None) -> ErrorKind | None:
    if code is not None and code in _NAMED_KINDS:
        return _NAMED_KINDS[code]
    for e in _walk_exception_chain(exc):
        for cls in type(e).__mro__:
            kind = _NAMED_KINDS.get(cls.__name__)
            if kind is not None:
                return kind
    return None


def _is_timeout(exc: BaseException) -> bool:
    for e in _walk_exception_chain(exc):
        if isinstance(e, (httpx.TimeoutException, TimeoutError, asyncio.TimeoutError)):
            return True
    return False


def _is_refused(exc: BaseException) -> bool:
    for e in _walk_exception_chain(exc):
        if isinstance(e, ConnectionRefusedError):
            return True
        if getattr(e, "errno", None) == errno.ECONNREFUSED:
            return True
        if isinstance(e, httpx.ConnectError) and any(
            marker in str(e) for marker in _REFUSED_MARKERS
        ):
            return True
    return False


def _is_dns_failure(exc: BaseException) -> bool:
    for e in _walk_exception_chain(exc):
        if isinstance(e, socket.gaierror):
            return True
        if isinstance(e, (httpx.ConnectError, OSError)) and any(
            marker in str(e) for marker in _DNS_MARKERS
        ):
            return True
    return False


def _is_network(exc: BaseException) -> bool:
    for e in _walk_exception_chain(exc):
        if isinstance(e, (httpx.TransportError, ConnectionError)):
            return True
        if isinstance(e, OSError) and e.errno in _NETWORK_ERRNOS:
            return True
    return False


def _is_quota(code: str | None, text: str) -> bool:
    lowered = text.lower()
    return (code or "").lower() in {"insufficient_quota", "quota_exceeded"} or (
        "quota" in lowered and "rate" not in lowered
    )


def _auth_hint(provider: str) -> str:
    env_var = _API_KEY_ENV_VARS.get(provider)
    if env_var is None:
        return "Check credentials and permissions for this endpoint."
    return f"Check credentials/permissions (try setting {env_var} or api_key=...)."


def classify(
    exc: BaseException,
    *,
    provider: str,
    model: str | None = None,
    timeout_s: float | None = None,
    supported_models: list[str] | tuple[str, ...] | None = None,
) -> BridgeError:
    """Map *exc* to exactly one error kind, keeping it as the cause."""
    if isinstance(exc, asyncio.CancelledError):
        raise exc
    if isinstance(exc, BridgeError):
        return exc
    if isinstance(exc, ValidationError):
        return configuration_error(exc, title=f"{provider} configuration")

    err = _classify(
        exc,
        provider=provider,
        model=model,
        timeout_s=timeout_s,
        supported_models=supported_models,
    )
    log.debug(
        "Classified %s from %s as %s", type(exc).__name__, provider, err.kind.value
    )
    return err


def _classify(
    exc: BaseException,
    *,
    provider: str,
    model: str | None,
    timeout_s: float | None,
    supported_models: list[str] | tuple[str, ...] | None,
) -> BridgeError:
    cause_text = str(exc)
    status_code = extract_status_code(exc)
    code = extract_error_code(exc)
    status_note = f" (status={status_code})" if status_code is not None else ""
    message = f"{provider} request failed{status_note}"
    if cause_text:
        message = f"{message}: {cause_text}"

    if _is_timeout(exc):
        return RequestTimeoutError(timeout_s, cause=exc)
    if _is_refused(exc):
        return ServiceUnavailableError(
            f"{provider} service is not reachable (connection refused)",
            hint="Check that the server is running and the host/port are correct.",
            cause=exc,
            provider=provider,
        )
    if _is_dns_failure(exc):
        return NetworkError(f"{provider} host lookup failed: {cause_text}", cause=exc)

    kind = _named_kind(exc, code)
    if kind is None and status_code is not None:
        kind = _kind_for_status(status_code, cause_text)
    if kind is ErrorKind.RATE_LIMIT and _is_quota(code, cause_text):
        kind = ErrorKind.QUOTA_EXCEEDED

    api_kwargs: dict[str, Any] = {
        "cause": exc,
        "status_code": status_code,
        "api_error_code": code,
        "provider": provider,
    }

    if kind is ErrorKind.AUTHENTICATION:
        return AuthenticationError(message, hint=_auth_hint(provider), cause=exc)
    if kind is ErrorKind.RATE_LIMIT:
        api_kwargs["status_code"] = status_code or 429
        api_kwargs["api_error_code"] = code or "rate_limit_exceeded"
        return RateLimitError(
            message,
            retry_after_s=extract_retry_after_s(exc),
            **_rate_limit_headers(exc),
            **api_kwargs,
        )
    if kind is ErrorKind.QUOTA_EXCEEDED:
        api_kwargs["status_code"] = status_code or 429
        api_kwargs["api_error_code"] = code or "quota_exceeded"
        return QuotaExceededError(message, quota_type=code, **api_kwargs)
    if kind is ErrorKind.INVALID_REQUEST:
        return InvalidRequestError(message, **api_kwargs)
    if kind is ErrorKind.INSUFFICIENT_CREDITS:
        return InsufficientCreditsError(message, **api_kwargs)
    if kind is ErrorKind.SERVICE_UNAVAILABLE:
        return ServiceUnavailableError(
            message, retry_after_s=extract_retry_after_s(exc), **api_kwargs
        )
    if kind is ErrorKind.MODEL_NOT_SUPPORTED:
        return ModelNotSupportedError(
            model or "<unknown>",
            supported_models=supported_models,
            cause=exc,
        )
    if kind is ErrorKind.TIMEOUT:
        return RequestTimeoutError(timeout_s, cause=exc)
    if kind is ErrorKind.NETWORK or _is_network(exc):
        return NetworkError(message, cause=exc)

    for e in _walk_exception_chain(exc):
        if isinstance(e, json.JSONDecodeError):
            return ResponseParsingError(
                f"{provider} returned an unparseable payload: {e}",
                raw_response=e.doc,
                cause=exc,
            )

    if status_code is not None:
        return APIError(
            message,
            retryable=status_code in RETRYABLE_STATUS_CODES,
            **api_kwargs,
        )
    return BridgeError(message, cause=exc)


def _kind_for_status(status_code: int, text: str) -> ErrorKind | None:
    lowered = text.lower()
    if status_code in {401, 403}:
        return ErrorKind.AUTHENTICATION
    if status_code == 400 and ("api key" in lowered or "api_key" in lowered):
        return ErrorKind.AUTHENTICATION
    if status_code == 402:
        return ErrorKind.INSUFFICIENT_CREDITS
    if status_code == 404:
        return ErrorKind.MODEL_NOT_SUPPORTED
    if status_code == 408:
        return ErrorKind.TIMEOUT
    if status_code == 429:
        return ErrorKind.RATE_LIMIT
    if status_code in {400, 413, 422}:
        return ErrorKind.INVALID_REQUEST
    if status_code >= 500:
        return ErrorKind.SERVICE_UNAVAILABLE
    return None
