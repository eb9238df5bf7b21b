"""Shared test doubles: SSE frames, tracked response bodies, recorded sleeps."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Callable, Iterable
from typing import Any

import httpx

from async_anthropic import AnthropicClient, BackoffPolicy, ClientConfig


def sse(event: str, data: str | dict[str, Any], *, event_id: str | None = None) -> bytes:
    """Encode one SSE frame."""
    if not isinstance(data, str):
        data = json.dumps(data)
    lines = [f"event: {event}"]
    if event_id is not None:
        lines.append(f"id: {event_id}")
    lines.extend(f"data: {line}" for line in data.split("\n"))
    return ("\n".join(lines) + "\n\n").encode()


class ConnectionTracker:
    """Counts response bodies opened and closed."""

    def __init__(self) -> None:
        self.opened = 0
        self.closed = 0

    @property
    def open_connections(self) -> int:
        return self.opened - self.closed


class TrackedStream(httpx.AsyncByteStream):
    """Response body fed from an async iterator, reporting open/close to a tracker."""

    def __init__(self, chunks: AsyncIterator[bytes], tracker: ConnectionTracker):
        self._chunks = chunks
        self._tracker = tracker
        self._closed = False
        tracker.opened += 1

    async def __aiter__(self) -> AsyncIterator[bytes]:
        async for chunk in self._chunks:
            yield chunk

    async def aclose(self) -> None:
        if not self._closed:
            self._closed = True
            self._tracker.closed += 1


async def chunks_of(frames: Iterable[bytes]) -> AsyncIterator[bytes]:
    for frame in frames:
        await asyncio.sleep(0)
        yield frame


async def pings_forever() -> AsyncIterator[bytes]:
    while True:
        await asyncio.sleep(0)
        yield sse("ping", {"type": "ping"})


def event_stream_response(
    body: Iterable[bytes] | AsyncIterator[bytes], tracker: ConnectionTracker
) -> httpx.Response:
    chunks = body if hasattr(body, "__aiter__") else chunks_of(body)
    return httpx.Response(
        200,
        headers={"content-type": "text/event-stream"},
        stream=TrackedStream(chunks, tracker),
    )


class RecordingSleep:
    """Stand-in for asyncio.sleep that records delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


def make_client(
    handler: Callable[[httpx.Request], Any],
    *,
    sleep: RecordingSleep | None = None,
    backoff: BackoffPolicy | None = None,
    **config: Any,
) -> AnthropicClient:
    """Client wired to an httpx.MockTransport handler."""
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AnthropicClient(
        config=ClientConfig(
            api_key="test-key",
            base_url="https://api.test",
            backoff=backoff or BackoffPolicy(min_delay=1.0, max_delay=30.0, jitter=False),
            **config,
        ),
        _http_client=http_client,
        _sleep=sleep or RecordingSleep(),
    )


MESSAGE_START = {
    "type": "message_start",
    "message": {
        "id": "msg_01",
        "model": "claude-test",
        "role": "assistant",
        "content": [],
        "usage": {"input_tokens": 10, "output_tokens": 1},
    },
}

TEXT_DELTA = {
    "type": "content_block_delta",
    "index": 0,
    "delta": {"type": "text_delta", "text": "Hello"},
}
