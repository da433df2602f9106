"""
Provider error taxonomy.

Every fault raised by a provider is converted into a ``ProviderError`` carrying
an ``ErrorKind`` before it leaves the adapter. Only the transient kinds are
retried by ``RetryController``.
"""
from __future__ import annotations

import asyncio
import json
from enum import Enum
from typing import Any, Optional

import aiohttp


class ErrorKind(str, Enum):
    TRANSIENT_NETWORK = "transient_network"
    RATE_LIMITED = "rate_limited"
    SERVICE_UNAVAILABLE = "service_unavailable"
    CONTENT_BLOCKED = "content_blocked"
    TOKEN_BUDGET_EXCEEDED = "token_budget_exceeded"
    MALFORMED_RESPONSE = "malformed_response"
    UNSUPPORTED_CAPABILITY = "unsupported_capability"
    FATAL = "fatal"


RETRYABLE_KINDS = frozenset({
    ErrorKind.TRANSIENT_NETWORK,
    ErrorKind.RATE_LIMITED,
    ErrorKind.SERVICE_UNAVAILABLE,
})

# Stable strings callers can map to user-facing messages
PROHIBITED_CONTENT = "PROHIBITED_CONTENT"
MAX_TOKENS = "MAX_TOKENS"
MULTI_PROVIDER = "MULTI_PROVIDER"

# Statuses that mean "this endpoint/model cannot stream"
STREAM_UNSUPPORTED_STATUSES = frozenset({400, 404, 405, 501})


class ProviderError(RuntimeError):
    """A classified provider failure."""

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind,
        provider: str = "",
        status_code: int | None = None,
        classification: str | None = None,
        raw_cause: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.provider = provider
        self.status_code = status_code
        self.classification = classification
        self.raw_cause = raw_cause

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(kind={self.kind.value!r}, provider={self.provider!r}, "
            f"status={self.status_code!r}, message={self.message!r})"
        )


class MultiProviderError(ProviderError):
    """Both the primary and the secondary provider failed."""

    def __init__(
        self,
        *,
        primary_error: BaseException,
        secondary_error: BaseException,
        primary_provider: str,
        secondary_provider: str,
    ) -> None:
        message = (
            f"Primary ({primary_provider}) failed: {describe_error(primary_error)}\n"
            f"Secondary ({secondary_provider}) failed: {describe_error(secondary_error)}"
        )
        super().__init__(
            message,
            kind=ErrorKind.FATAL,
            provider=f"{primary_provider}+{secondary_provider}",
            classification=MULTI_PROVIDER,
            raw_cause=(primary_error, secondary_error),
        )
        self.primary_error = primary_error
        self.secondary_error = secondary_error
        self.primary_provider = primary_provider
        self.secondary_provider = secondary_provider


def describe_error(error: BaseException | None) -> str:
    if error is None:
        return "Unknown error"
    if isinstance(error, ProviderError):
        return error.message
    return str(error) or error.__class__.__name__


def extract_error_message(body: Any) -> Optional[str]:
    """Pull a human readable message out of a vendor error payload."""
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except ValueError:
            text = body.strip()
            return text[:300] if text else None
    if isinstance(body, list) and body:
        body = body[0]
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str) and error:
        return error
    if body.get("message"):
        return str(body["message"])
    return None


def error_from_status(
    status: int,
    body: Any = None,
    *,
    provider: str = "",
    streaming: bool = False,
) -> ProviderError:
    detail = extract_error_message(body)
    suffix = f": {detail}" if detail else ""

    if streaming and status in STREAM_UNSUPPORTED_STATUSES:
        return ProviderError(
            f"{provider}: streaming not supported (HTTP {status}){suffix}",
            kind=ErrorKind.UNSUPPORTED_CAPABILITY,
            provider=provider,
            status_code=status,
        )
    if status == 429:
        return ProviderError(
            f"{provider}: rate limit exceeded (HTTP 429){suffix}",
            kind=ErrorKind.RATE_LIMITED,
            provider=provider,
            status_code=status,
            classification="429",
        )
    if status >= 500:
        return ProviderError(
            f"{provider}: service unavailable (HTTP {status}){suffix}",
            kind=ErrorKind.SERVICE_UNAVAILABLE,
            provider=provider,
            status_code=status,
            classification="503" if status == 503 else None,
        )
    if status in (401, 403):
        return ProviderError(
            f"{provider}: authentication failed (HTTP {status}){suffix}",
            kind=ErrorKind.FATAL,
            provider=provider,
            status_code=status,
            classification="403",
        )
    if status == 456:
        return ProviderError(
            f"{provider}: quota exceeded (HTTP 456){suffix}",
            kind=ErrorKind.FATAL,
            provider=provider,
            status_code=status,
            classification="QUOTA",
        )
    return ProviderError(
        f"{provider}: request failed (HTTP {status}){suffix}",
        kind=ErrorKind.FATAL,
        provider=provider,
        status_code=status,
    )


def classify_exception(exc: BaseException, *, provider: str = "") -> ProviderError:
    """Map a transport or decoding exception onto the taxonomy."""
    if isinstance(exc, ProviderError):
        return exc
    if isinstance(exc, aiohttp.ClientResponseError) and not isinstance(exc, aiohttp.ContentTypeError):
        error = error_from_status(exc.status, exc.message, provider=provider)
        error.raw_cause = exc
        error.__cause__ = exc
        return error
    if isinstance(exc, (asyncio.TimeoutError, aiohttp.ServerTimeoutError)):
        kind, message = ErrorKind.TRANSIENT_NETWORK, f"{provider}: request timed out"
    elif isinstance(exc, (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError, ConnectionError)):
        kind, message = ErrorKind.TRANSIENT_NETWORK, f"{provider}: network error: {exc}"
    elif isinstance(exc, (aiohttp.ContentTypeError, ValueError)):
        kind, message = ErrorKind.MALFORMED_RESPONSE, f"{provider}: unparsable response: {exc}"
    elif isinstance(exc, aiohttp.ClientError):
        kind, message = ErrorKind.TRANSIENT_NETWORK, f"{provider}: client error: {exc}"
    else:
        kind, message = ErrorKind.FATAL, f"{provider}: {exc}"
    error = ProviderError(message, kind=kind, provider=provider, raw_cause=exc)
    error.__cause__ = exc
    return error


def is_retryable(exc: BaseException) -> bool:
    return classify_exception(exc).retryable
