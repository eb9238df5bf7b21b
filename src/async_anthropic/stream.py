"""Bridge from a push-based SSE connection to a pull-based event stream.

A background pump task reads the `EventSource`, decodes each message and
hands results to the consumer one at a time: an item is only queued once the
consumer asks for it, so the pump holds at most one decoded event that the
consumer has not taken.

Termination rules:
- clean end of the SSE body ends the stream without an error
- any error (server `error` event, undecodable payload, unknown event name,
  exhausted reconnects, rejected connection) is raised to the consumer once
  and ends the stream
- closing or dropping the `EventStream` cancels the pump, which closes the
  HTTP response
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Collection
from types import TracebackType
from typing import Any, Generic, TypeVar

from pydantic import TypeAdapter, ValidationError

from .errors import AnthropicError, DeserializationError, StreamError, StreamTransportError
from .sse import EventSource, ServerSentEvent, StreamState

logger = logging.getLogger(__name__)

T = TypeVar("T")

PING_EVENT = "ping"
ERROR_EVENT = "error"

# Marks a clean end of stream in the hand-off queue
_END = object()


class StreamBridge(Generic[T]):
    """Decodes SSE messages into typed events and runs the pump.

    Args:
        source_factory: Builds a fresh `EventSource` for each `open()`.
        event_model: Type each allow-listed event's data is validated against.
        event_types: Event names accepted as data events.
    """

    def __init__(
        self,
        source_factory: Callable[[], EventSource],
        event_model: Any,
        event_types: Collection[str],
    ):
        self._source_factory = source_factory
        self._adapter: TypeAdapter[T] = TypeAdapter(event_model)
        self.event_types = frozenset(event_types)

    def dispatch(self, message: ServerSentEvent) -> T | AnthropicError | None:
        """Map one SSE message to an event, a terminal error, or None (skip)."""
        name = message.event

        if name == PING_EVENT:
            return None

        if name == ERROR_EVENT:
            try:
                return StreamTransportError(StreamError.model_validate_json(message.data))
            except ValidationError as e:
                return DeserializationError(str(e), body=message.data)

        if name in self.event_types:
            try:
                return self._adapter.validate_json(message.data)
            except ValidationError as e:
                return DeserializationError(str(e), body=message.data)

        return StreamTransportError.create("unknown_event_type", f"Unknown event type: {name}")

    def open(self) -> EventStream[T]:
        """Start the pump and return the consumer side.

        Must be called from a running event loop.
        """
        queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=1)
        demand = asyncio.Event()
        source = self._source_factory()
        task = asyncio.create_task(self._pump(source, queue, demand))
        return EventStream(task, queue, demand, source)

    @staticmethod
    async def _hand_off(queue: asyncio.Queue[Any], demand: asyncio.Event, item: Any) -> None:
        # Wait until the consumer asks for an item
        await demand.wait()
        demand.clear()
        await queue.put(item)

    async def _pump(
        self, source: EventSource, queue: asyncio.Queue[Any], demand: asyncio.Event
    ) -> None:
        terminal: Any = _END
        try:
            async with contextlib.aclosing(source.events()) as messages:
                async for message in messages:
                    result = self.dispatch(message)
                    if result is None:
                        continue
                    if isinstance(result, AnthropicError):
                        logger.debug(f"Stream ended with error: {result}")
                        terminal = result
                        break
                    await self._hand_off(queue, demand, result)
        except Exception as e:
            # Forwarded to the consumer, which raises it
            terminal = e
        # The connection is closed before the terminal item is handed off
        await self._hand_off(queue, demand, terminal)


class EventStream(Generic[T]):
    """Consumer side of a stream: an async iterator of decoded events.

    Usage:
        async with client.messages.create_stream(request) as stream:
            async for event in stream:
                ...

    Iteration raises the stream's terminal error, if any, after the events
    that preceded it. Leaving the `async with` block, calling `aclose()`, or
    dropping the last reference cancels the underlying connection.
    """

    def __init__(
        self,
        task: asyncio.Task[None],
        queue: asyncio.Queue[Any],
        demand: asyncio.Event,
        source: EventSource,
    ):
        self._task = task
        self._queue = queue
        self._demand = demand
        self._source = source
        self._done = False

    @property
    def state(self) -> StreamState:
        """State of the underlying connection."""
        return self._source.state

    @property
    def closed(self) -> bool:
        """True once the pump has finished."""
        return self._task.done()

    def __aiter__(self) -> EventStream[T]:
        return self

    async def __anext__(self) -> T:
        if self._done:
            raise StopAsyncIteration

        self._demand.set()
        item = await self._queue.get()
        if item is _END:
            self._done = True
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            self._done = True
            raise item
        return item

    async def aclose(self) -> None:
        """Stop the pump and close the connection."""
        self._done = True
        if not self._task.done():
            self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task

    async def __aenter__(self) -> EventStream[T]:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    def __del__(self) -> None:
        # Abandoned without aclose(): the pump may be blocked on a full queue
        task = getattr(self, "_task", None)
        if task is not None and not task.done():
            with contextlib.suppress(RuntimeError):  # loop already closed
                task.cancel()
