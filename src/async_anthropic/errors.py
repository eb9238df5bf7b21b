"""Error taxonomy for the Anthropic client.

Every failure the client reports is one of the classes below. Only the
response classifier looks at HTTP status codes; everything downstream
decides what to do from the exception type and its structured fields.

Kinds:
- NetworkError: the request never produced a response (connect, timeout)
- BadRequestError: 400, raw body text attached
- UnauthorizedError: 401
- RateLimitedError: 429 / 529, optional server Retry-After in seconds
- DeserializationError: body or event payload failed to decode
- StreamTransportError: error reported by, or about, an SSE stream
- UnknownError: any other status, raw body text attached
"""

from __future__ import annotations

import json

from pydantic import BaseModel, ValidationError


class ApiError(BaseModel):
    """Structured error object from the Anthropic error envelope.

    The client does not require it: non-2xx bodies are surfaced as raw
    text. Use `ApiError.from_body` to parse a body when structure is wanted.
    """

    type: str
    message: str | None = None

    def __str__(self) -> str:
        return f"{self.type}: {self.message or '(no message)'}"

    @classmethod
    def from_body(cls, body: str) -> ApiError | None:
        """Parse `{"type": "error", "error": {...}}` (or a bare error object)."""
        try:
            payload = json.loads(body)
        except json.JSONDecodeError:
            return None
        if not isinstance(payload, dict):
            return None
        inner = payload.get("error", payload)
        try:
            return cls.model_validate(inner)
        except ValidationError:
            return None


class StreamError(BaseModel):
    """Payload of a named `error` event on an SSE stream."""

    type: str
    message: str | None = None
    error: ApiError | None = None

    def __str__(self) -> str:
        if self.error is not None:
            return str(self.error)
        return f"{self.type}: {self.message or '(no message)'}"


class AnthropicError(Exception):
    """Base class for all client failures."""

    #: Whether the failure is transient and may succeed on a later attempt.
    retryable: bool = False


class NetworkError(AnthropicError):
    """The request failed before a response was received."""


class BadRequestError(AnthropicError):
    """400: the request was malformed. `body` holds the server's text."""

    def __init__(self, body: str):
        super().__init__(f"bad request: {body}")
        self.body = body


class UnauthorizedError(AnthropicError):
    """401: missing or invalid API key."""

    def __init__(self) -> None:
        super().__init__("unauthorized")


class RateLimitedError(AnthropicError):
    """429 or 529: the service asked us to slow down.

    `retry_after` is the server-requested wait in seconds, or None when the
    computed backoff should be used.
    """

    retryable = True

    def __init__(self, retry_after: float | None = None):
        if retry_after is None:
            super().__init__("rate limited")
        else:
            super().__init__(f"rate limited (retry after {retry_after:g} seconds)")
        self.retry_after = retry_after


class DeserializationError(AnthropicError):
    """A response body or stream event did not match the expected shape."""

    def __init__(self, message: str, body: str = ""):
        super().__init__(f"failed to deserialize response: {message}")
        self.body = body


class StreamTransportError(AnthropicError):
    """An SSE stream ended with an error."""

    def __init__(self, error: StreamError):
        super().__init__(f"stream transport error: {error}")
        self.error = error

    @classmethod
    def create(cls, error_type: str, message: str | None = None) -> StreamTransportError:
        """Build from a type/message pair."""
        return cls(StreamError(type=error_type, message=message))


class UnknownError(AnthropicError):
    """Any status the classifier has no dedicated kind for."""

    def __init__(self, body: str, status_code: int | None = None):
        super().__init__(f"unknown error: {body}")
        self.body = body
        self.status_code = status_code
