from __future__ import annotations

from collections.abc import Mapping

import httpx

from skillmaster_core.errors import (
    UpstreamError,
    UpstreamRateLimitError,
    UpstreamRequestError,
    UpstreamTransientError,
)


def build_timeout(seconds: float) -> httpx.Timeout:
    return httpx.Timeout(seconds, connect=min(10.0, seconds))


def parse_retry_after(headers: Mapping[str, str] | None) -> float | None:
    if not headers:
        return None
    value = headers.get("retry-after")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        # HTTP-date form; fall back to our own backoff.
        return None


def error_for_status(status_code: int, message: str, headers: Mapping[str, str] | None = None) -> UpstreamError:
    if status_code == 429:
        return UpstreamRateLimitError(message, retry_after=parse_retry_after(headers))
    if status_code == 408 or status_code >= 500:
        return UpstreamTransientError(message, status_code=status_code)
    return UpstreamRequestError(message, status_code=status_code)


def response_headers(ex: Exception) -> Mapping[str, str] | None:
    response = getattr(ex, "response", None)
    return getattr(response, "headers", None)
