"""Classification of upstream failures into a closed set of error kinds.

Everything that can go wrong when talking to the Graph API ends up here:
non-2xx responses, requests that never got a response, and problems found
locally before dispatch. ``classify`` is pure, so it can be exercised without
any network I/O.
"""

from enum import Enum
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, Field

DEFAULT_RETRY_AFTER_SECONDS = 60


class ErrorKind(str, Enum):
    INVALID_REQUEST = "InvalidRequest"
    UNAUTHENTICATED = "Unauthenticated"
    FORBIDDEN = "Forbidden"
    NOT_FOUND = "NotFound"
    RATE_LIMITED = "RateLimited"
    UPSTREAM_UNAVAILABLE = "UpstreamUnavailable"
    NETWORK_ERROR = "NetworkError"
    UNKNOWN = "Unknown"


class ProxyError(BaseModel):
    kind: ErrorKind
    message: str
    retry_after_seconds: Optional[int] = None
    provider_detail: Any = None

    def to_body(self) -> Dict[str, Any]:
        """Response body for the HTTP layer."""
        body = {
            "error": STATUS_TITLES[self.kind],
            "message": self.message,
            "kind": self.kind.value,
        }
        if self.retry_after_seconds is not None:
            body["retryAfterSeconds"] = self.retry_after_seconds
        if self.provider_detail is not None:
            body["details"] = self.provider_detail
        return body


class FailureSource(str, Enum):
    RESPONSE = "response"
    NETWORK = "network"
    LOCAL = "local"


class UpstreamFailure(BaseModel):
    """One failed upstream interaction, as handed to ``classify``."""

    source: FailureSource
    status_code: Optional[int] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Any = None
    reason: str = ""

    @classmethod
    def from_response(cls, status_code: int, headers: Optional[Mapping[str, str]] = None, body: Any = None):
        return cls(
            source=FailureSource.RESPONSE,
            status_code=status_code,
            headers={str(k).lower(): str(v) for k, v in (headers or {}).items()},
            body=body,
        )

    @classmethod
    def network(cls, reason: str):
        return cls(source=FailureSource.NETWORK, reason=reason)

    @classmethod
    def local(cls, reason: str):
        return cls(source=FailureSource.LOCAL, reason=reason)


# kind -> (HTTP status returned to our own callers, short title)
HTTP_STATUS_FOR_KIND = {
    ErrorKind.INVALID_REQUEST: 400,
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.UPSTREAM_UNAVAILABLE: 502,
    ErrorKind.NETWORK_ERROR: 504,
    ErrorKind.UNKNOWN: 500,
}

STATUS_TITLES = {
    ErrorKind.INVALID_REQUEST: "Invalid request",
    ErrorKind.UNAUTHENTICATED: "Not authenticated",
    ErrorKind.FORBIDDEN: "Forbidden",
    ErrorKind.NOT_FOUND: "Not found",
    ErrorKind.RATE_LIMITED: "Rate limited",
    ErrorKind.UPSTREAM_UNAVAILABLE: "Upstream unavailable",
    ErrorKind.NETWORK_ERROR: "Network error",
    ErrorKind.UNKNOWN: "Unknown error",
}


def status_for_kind(kind: ErrorKind) -> int:
    return HTTP_STATUS_FOR_KIND[kind]


def provider_message(body: Any) -> Optional[str]:
    """Pull the human message out of a Graph API error envelope, if any."""
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict):
            msg = err.get("message") or err.get("error_user_msg")
            if msg:
                return str(msg)
        elif isinstance(err, str) and err:
            return body.get("error_description") or err
        if body.get("message"):
            return str(body["message"])
    if isinstance(body, str) and body.strip():
        return body.strip()[:300]
    return None


def _retry_after(headers: Mapping[str, str]) -> int:
    raw = headers.get("retry-after")
    if raw is None:
        return DEFAULT_RETRY_AFTER_SECONDS
    try:
        value = int(float(raw))
    except (TypeError, ValueError):
        # HTTP-date form is not worth parsing here
        return DEFAULT_RETRY_AFTER_SECONDS
    return value if value >= 0 else DEFAULT_RETRY_AFTER_SECONDS


def classify(failure: UpstreamFailure) -> ProxyError:
    """Map a failed upstream interaction to exactly one ``ProxyError``."""
    if failure.source == FailureSource.NETWORK:
        return ProxyError(
            kind=ErrorKind.NETWORK_ERROR,
            message=f"No response from the advertising API: {failure.reason or 'connection failed'}",
        )

    if failure.source == FailureSource.LOCAL:
        return ProxyError(
            kind=ErrorKind.UNKNOWN,
            message=f"Request could not be prepared: {failure.reason or 'unknown setup failure'}",
        )

    status = failure.status_code
    detail = failure.body if failure.body not in (None, "") else None
    upstream_msg = provider_message(failure.body)

    if status == 400:
        return ProxyError(
            kind=ErrorKind.INVALID_REQUEST,
            message=upstream_msg or "The advertising API rejected the request.",
            provider_detail=detail,
        )
    if status == 401:
        return ProxyError(
            kind=ErrorKind.UNAUTHENTICATED,
            message="Access token is invalid or expired. Please sign in again.",
            provider_detail=detail,
        )
    if status == 403:
        return ProxyError(
            kind=ErrorKind.FORBIDDEN,
            message=upstream_msg or "Permission denied for this ad account.",
            provider_detail=detail,
        )
    if status == 404:
        return ProxyError(
            kind=ErrorKind.NOT_FOUND,
            message=upstream_msg or "Ad account or resource not found.",
            provider_detail=detail,
        )
    if status == 429:
        return ProxyError(
            kind=ErrorKind.RATE_LIMITED,
            message="Rate limit reached on the advertising API. Try again later.",
            retry_after_seconds=_retry_after(failure.headers),
            provider_detail=detail,
        )
    if status is not None and 500 <= status <= 599:
        return ProxyError(
            kind=ErrorKind.UPSTREAM_UNAVAILABLE,
            message=f"The advertising API is unavailable (HTTP {status}).",
            provider_detail=detail,
        )
    if status is not None and 200 <= status <= 299:
        return ProxyError(
            kind=ErrorKind.UNKNOWN,
            message="The advertising API returned a malformed payload.",
            provider_detail=detail,
        )
    return ProxyError(
        kind=ErrorKind.UNKNOWN,
        message=upstream_msg or f"Unexpected response from the advertising API (HTTP {status}).",
        provider_detail=detail,
    )
