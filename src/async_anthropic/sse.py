"""Server-Sent Events client.

Handles:
- Parsing SSE framing (event:/data:/id:/retry:, comments, multi-line data)
- Reconnection on failed or rate-limited (re)connects
- Ending the stream with an error when an open connection drops
- Retry-After aware backoff, with a reconnect budget separate from request retries
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

import httpx

from .backoff import BackoffPolicy, RetryState
from .classifier import classify_error
from .errors import RateLimitedError, StreamTransportError
from .retry import SleepFn, rate_limit_delay

logger = logging.getLogger(__name__)

RequestFactory = Callable[[dict[str, str]], httpx.Request]


def _stream_error(error: Exception) -> StreamTransportError:
    return StreamTransportError.create("sse_error", str(error) or type(error).__name__)


class StreamState(str, Enum):
    """Connection state machine."""

    OPENING = "opening"
    OPEN = "open"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


@dataclass
class ServerSentEvent:
    """One dispatched SSE message."""

    event: str = "message"
    data: str = ""
    id: str | None = None
    retry: int | None = None


class SSEDecoder:
    """Incremental line decoder for the `text/event-stream` format."""

    def __init__(self, last_event_id: str | None = None) -> None:
        self._event = ""
        self._data: list[str] = []
        self._retry: int | None = None
        self.last_event_id = last_event_id

    def decode(self, line: str) -> ServerSentEvent | None:
        """Feed one line (without terminator). Returns an event on blank lines."""
        if not line:
            return self._dispatch()

        if line.startswith(":"):
            return None

        name, sep, value = line.partition(":")
        if not sep:
            value = ""
        elif value.startswith(" "):
            value = value[1:]

        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        elif name == "id":
            if "\0" not in value:
                self.last_event_id = value
        elif name == "retry":
            if value.isdigit():
                self._retry = int(value)
        # other field names are ignored

        return None

    def _dispatch(self) -> ServerSentEvent | None:
        retry, self._retry = self._retry, None
        if not self._data:
            self._event = ""
            if retry is not None:
                return ServerSentEvent(event="", retry=retry, id=self.last_event_id)
            return None

        sse = ServerSentEvent(
            event=self._event or "message",
            data="\n".join(self._data),
            id=self.last_event_id,
            retry=retry,
        )
        self._event = ""
        self._data = []
        return sse


class EventSource:
    """A reconnecting SSE connection.

    `events()` yields every dispatched message in receipt order. It returns
    normally when the server closes the stream cleanly, and raises an
    `AnthropicError` on a terminal failure.

    Reconnects happen when a connection cannot be opened (an
    `httpx.TransportError` while connecting, or a 429/529 reply) and when a
    body drops before it has produced any message. A body that drops after
    producing a message is not resumed, since the request would be replayed
    from the start; that raises `StreamTransportError` with type `sse_error`.
    Other `httpx.RequestError`s are terminal the same way.

    The pause is the server's Retry-After when given, else the reconnect
    policy's delay. A `retry:` field from the server replaces the policy's
    starting delay. Reconnect requests carry `Last-Event-ID` once the server
    has sent an id.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        request_factory: RequestFactory,
        policy: BackoffPolicy,
        *,
        sleep: SleepFn = asyncio.sleep,
        on_state: Callable[[StreamState], None] | None = None,
    ):
        self._client = client
        self._request_factory = request_factory
        self.policy = policy
        self._sleep = sleep
        self._on_state = on_state
        self._state = StreamState.OPENING
        self._last_event_id: str | None = None

    @property
    def state(self) -> StreamState:
        """Current connection state."""
        return self._state

    def _set_state(self, state: StreamState) -> None:
        if state != self._state:
            logger.debug(f"SSE state {self._state.value} -> {state.value}")
        self._state = state
        if self._on_state:
            self._on_state(state)

    def _build_request(self) -> httpx.Request:
        headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache"}
        if self._last_event_id is not None:
            headers["Last-Event-ID"] = self._last_event_id
        return self._request_factory(headers)

    async def _connect(self) -> httpx.Response:
        response = await self._client.send(self._build_request(), stream=True)
        if not response.is_success:
            try:
                raise await classify_error(response)
            finally:
                await response.aclose()

        content_type = response.headers.get("content-type", "")
        if not content_type.startswith("text/event-stream"):
            await response.aclose()
            raise StreamTransportError.create(
                "invalid_content_type", f"Expected text/event-stream, got {content_type!r}"
            )
        return response

    async def _pause(self, state: RetryState, delay: float | None, error: Exception) -> None:
        if delay is None:
            if isinstance(error, RateLimitedError):
                raise error
            raise _stream_error(error) from error
        logger.warning(
            f"SSE connection lost: {error}. Reconnecting in {delay:.2f}s "
            f"(attempt {state.attempt + 1})"
        )
        self._set_state(StreamState.RECONNECTING)
        await self._sleep(delay)
        state.advance(delay)

    def _transport_delay(self, state: RetryState) -> float | None:
        if not self.policy.has_attempts_left(state):
            return None
        return self.policy.next_delay(state.attempt)

    async def events(self) -> AsyncIterator[ServerSentEvent]:
        """Iterate over messages, reconnecting as the policy allows."""
        retry_state = RetryState()
        try:
            while True:
                try:
                    response = await self._connect()
                except RateLimitedError as e:
                    await self._pause(retry_state, rate_limit_delay(e, self.policy, retry_state), e)
                    continue
                except httpx.TransportError as e:
                    await self._pause(retry_state, self._transport_delay(retry_state), e)
                    continue
                except httpx.RequestError as e:
                    raise _stream_error(e) from e

                self._set_state(StreamState.OPEN)
                retry_state.reset()
                decoder = SSEDecoder(last_event_id=self._last_event_id)
                delivered = False
                fault: httpx.TransportError | None = None
                try:
                    async for line in response.aiter_lines():
                        sse = decoder.decode(line.rstrip("\r\n"))
                        if sse is None:
                            continue
                        self._last_event_id = sse.id
                        if sse.retry:
                            self.policy = self.policy.with_min_delay(sse.retry / 1000)
                        if not sse.event:
                            # retry-only frame
                            continue
                        delivered = True
                        yield sse
                except httpx.TransportError as e:
                    if delivered:
                        logger.warning(f"SSE connection lost mid-stream: {e}")
                        raise _stream_error(e) from e
                    fault = e
                except httpx.RequestError as e:
                    raise _stream_error(e) from e
                finally:
                    await response.aclose()

                if fault is None:
                    logger.debug("SSE stream ended")
                    return
                await self._pause(retry_state, self._transport_delay(retry_state), fault)
        finally:
            self._set_state(StreamState.CLOSED)
