"""Async Anthropic client.

Two call styles:
- client.messages.create(...) / client.models.list(): one decoded reply,
  retried automatically while the API reports rate limiting
- client.messages.create_stream(...): an async iterator of typed stream
  events bridged from Server-Sent Events, with reconnects
"""

from .backoff import BackoffPolicy, RetryState
from .classifier import classify_error, classify_response, parse_retry_after
from .client import AnthropicClient, MessagesAPI, ModelsAPI, create_client
from .config import ClientConfig
from .errors import (
    AnthropicError,
    ApiError,
    BadRequestError,
    DeserializationError,
    NetworkError,
    RateLimitedError,
    StreamError,
    StreamTransportError,
    UnauthorizedError,
    UnknownError,
)
from .retry import RequestRetrier
from .sse import EventSource, ServerSentEvent, SSEDecoder, StreamState
from .stream import EventStream, StreamBridge

__all__ = [
    # Client
    "AnthropicClient",
    "MessagesAPI",
    "ModelsAPI",
    "ClientConfig",
    "create_client",
    # Errors
    "AnthropicError",
    "ApiError",
    "BadRequestError",
    "DeserializationError",
    "NetworkError",
    "RateLimitedError",
    "StreamError",
    "StreamTransportError",
    "UnauthorizedError",
    "UnknownError",
    # Request execution
    "BackoffPolicy",
    "RetryState",
    "RequestRetrier",
    "classify_error",
    "classify_response",
    "parse_retry_after",
    # Streaming
    "EventSource",
    "EventStream",
    "ServerSentEvent",
    "SSEDecoder",
    "StreamBridge",
    "StreamState",
]
