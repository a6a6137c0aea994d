from typing import Any, Mapping, Optional


class IntegrationError(Exception):
    """Base exception for integration-level failures (config, connectivity, auth)."""


class UpstreamAPIError(Exception):
    """Represents an upstream API call failure (4xx/5xx, malformed response)."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        headers: Optional[Mapping[str, str]] = None,
        body: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.headers = dict(headers or {})
        self.body = body
