from __future__ import annotations

from typing import Literal

import requests

from .errors import (
    ProviderAuthError,
    ProviderRateLimitError,
    ProviderResponseError,
)

FailureKind = Literal["auth", "rate_limited", "transient", "malformed", "unexpected"]


def _extract_status_code(exc: BaseException) -> int | None:
    for attr in ("status_code", "status", "http_status"):
        val = getattr(exc, attr, None)
        if val is None:
            continue
        try:
            return int(val)
        except (TypeError, ValueError):
            continue

    response = getattr(exc, "response", None)
    code = getattr(response, "status_code", None)
    if isinstance(code, int):
        return code
    return None


def _looks_like_timeout_or_connection(exc: BaseException) -> bool:
    name = type(exc).__name__.casefold()
    return "timeout" in name or "connection" in name or "connect" in name


def classify_fetch_failure(exc: BaseException) -> FailureKind:
    """
    Map a fetch exception onto the failure taxonomy used in run logs.

    Auth failures are separated out because retrying them on the next cycle won't help.
    """
    if isinstance(exc, ProviderAuthError):
        return "auth"
    if isinstance(exc, ProviderRateLimitError):
        return "rate_limited"
    if isinstance(exc, ProviderResponseError):
        return "malformed"

    if isinstance(exc, (requests.Timeout, requests.ConnectionError)):
        return "transient"
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return "transient"
    if isinstance(exc, ValueError) and not isinstance(exc, requests.RequestException):
        # Includes JSON decode errors from the response body.
        return "malformed"

    code = _extract_status_code(exc)
    if code in (401, 403):
        return "auth"
    if code == 429:
        return "rate_limited"
    if isinstance(code, int) and code >= 500:
        return "transient"

    if isinstance(exc, requests.RequestException) or _looks_like_timeout_or_connection(exc):
        return "transient"

    return "unexpected"
