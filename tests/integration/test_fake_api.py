"""Integration tests against an in-process fake of the Anthropic API.

A small Starlette app stands in for the service and is reached through
httpx.ASGITransport, so requests go through the real client stack:
- header handling and auth rejection
- rate-limit retries on non-streaming calls
- SSE streaming, including reconnects and server error events
"""

import json

import httpx
import pytest
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route

from async_anthropic import (
    AnthropicClient,
    BackoffPolicy,
    ClientConfig,
    StreamTransportError,
    UnauthorizedError,
)
from async_anthropic.types import CreateMessagesRequest, Message, TextDelta
from tests.support import MESSAGE_START, RecordingSleep, sse

API_KEY = "test-key"

MODELS = [
    {
        "id": "claude-test",
        "display_name": "Claude Test",
        "created_at": "2025-02-19T00:00:00Z",
        "type": "model",
    }
]


def _delta(text: str) -> dict:
    return {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": text}}


class FakeAnthropic:
    """Scriptable fake service.

    `rate_limit_first` makes the first N calls to /v1/messages answer 429.
    `stream_error_after` sends an `error` event after that many deltas.
    """

    def __init__(self, rate_limit_first: int = 0, stream_error_after: int | None = None):
        self.rate_limit_first = rate_limit_first
        self.stream_error_after = stream_error_after
        self.message_calls = 0

    def app(self) -> Starlette:
        return Starlette(
            routes=[
                Route("/v1/models", self.list_models, methods=["GET"]),
                Route("/v1/models/{model_id}", self.get_model, methods=["GET"]),
                Route("/v1/messages", self.create_message, methods=["POST"]),
            ]
        )

    def _authorized(self, request: Request) -> bool:
        return request.headers.get("x-api-key") == API_KEY

    async def list_models(self, request: Request) -> Response:
        if not self._authorized(request):
            return JSONResponse({"type": "error"}, status_code=401)
        return JSONResponse({"data": MODELS, "has_more": False})

    async def get_model(self, request: Request) -> Response:
        model_id = request.path_params["model_id"]
        for model in MODELS:
            if model["id"] == model_id:
                return JSONResponse(model)
        return JSONResponse(
            {"type": "error", "error": {"type": "not_found_error", "message": model_id}},
            status_code=404,
        )

    async def create_message(self, request: Request) -> Response:
        if not self._authorized(request):
            return JSONResponse({"type": "error"}, status_code=401)

        self.message_calls += 1
        if self.message_calls <= self.rate_limit_first:
            return JSONResponse(
                {"type": "error", "error": {"type": "rate_limit_error", "message": "slow down"}},
                status_code=429,
                headers={"retry-after": "2"},
            )

        body = await request.json()
        prompt = body["messages"][0]["content"]
        words = prompt.split()

        if not body.get("stream"):
            return JSONResponse(
                {
                    "id": "msg_fake",
                    "type": "message",
                    "role": "assistant",
                    "model": body["model"],
                    "content": [{"type": "text", "text": " ".join(words)}],
                    "stop_reason": "end_turn",
                    "usage": {"input_tokens": len(words), "output_tokens": len(words)},
                }
            )

        async def frames():
            yield sse("message_start", MESSAGE_START)
            yield b": keep-alive\n\n"
            for i, word in enumerate(words):
                if i == self.stream_error_after:
                    yield sse("error", {"type": "overloaded_error", "message": "Overloaded"})
                    return
                yield sse("ping", {"type": "ping"})
                yield sse("content_block_delta", _delta(word if i == 0 else f" {word}"))
            yield sse("message_stop", {"type": "message_stop"})

        return StreamingResponse(frames(), media_type="text/event-stream")


def _client(fake: FakeAnthropic, sleep: RecordingSleep, api_key: str = API_KEY) -> AnthropicClient:
    return AnthropicClient(
        config=ClientConfig(
            api_key=api_key,
            base_url="http://fake.anthropic",
            backoff=BackoffPolicy(min_delay=1.0, max_delay=10.0, jitter=False),
        ),
        _http_client=httpx.AsyncClient(transport=httpx.ASGITransport(app=fake.app())),
        _sleep=sleep,
    )


def _request(prompt: str) -> CreateMessagesRequest:
    return CreateMessagesRequest(model="claude-test", messages=[Message.user(prompt)])


# =============================================================================
# Tests: Models
# =============================================================================


class TestModelsEndpoints:
    @pytest.mark.asyncio
    async def test_list_and_get(self, recorded_sleep):
        async with _client(FakeAnthropic(), recorded_sleep) as client:
            listing = await client.models.list()
            model = await client.models.get("claude-test")

        assert [m.id for m in listing.data] == ["claude-test"]
        assert model.display_name == "Claude Test"

    @pytest.mark.asyncio
    async def test_wrong_key_rejected(self, recorded_sleep):
        async with _client(FakeAnthropic(), recorded_sleep, api_key="nope") as client:
            with pytest.raises(UnauthorizedError):
                await client.models.list()


# =============================================================================
# Tests: Messages
# =============================================================================


class TestMessagesEndpoint:
    @pytest.mark.asyncio
    async def test_create(self, recorded_sleep):
        async with _client(FakeAnthropic(), recorded_sleep) as client:
            response = await client.messages.create(_request("hello there"))

        assert response.text() == "hello there"
        assert recorded_sleep.delays == []

    @pytest.mark.asyncio
    async def test_create_after_rate_limit(self, recorded_sleep):
        fake = FakeAnthropic(rate_limit_first=2)
        async with _client(fake, recorded_sleep) as client:
            response = await client.messages.create(_request("hello"))

        assert response.id == "msg_fake"
        assert fake.message_calls == 3
        assert recorded_sleep.delays == [2.0, 2.0]


class TestStreaming:
    @pytest.mark.asyncio
    async def test_full_stream(self, recorded_sleep):
        async with _client(FakeAnthropic(), recorded_sleep) as client:
            async with client.messages.create_stream(_request("streamed reply here")) as stream:
                events = [event async for event in stream]

        text = "".join(
            e.delta.text
            for e in events
            if e.type == "content_block_delta" and isinstance(e.delta, TextDelta)
        )
        assert text == "streamed reply here"
        assert events[0].type == "message_start"
        assert events[-1].type == "message_stop"

    @pytest.mark.asyncio
    async def test_stream_reconnects_after_rate_limit(self, recorded_sleep):
        fake = FakeAnthropic(rate_limit_first=1)
        async with _client(fake, recorded_sleep) as client:
            async with client.messages.create_stream(_request("hi")) as stream:
                events = [event async for event in stream]

        assert [e.type for e in events] == ["message_start", "content_block_delta", "message_stop"]
        assert recorded_sleep.delays == [2.0]

    @pytest.mark.asyncio
    async def test_stream_error_after_partial_output(self, recorded_sleep):
        fake = FakeAnthropic(stream_error_after=2)
        received = []
        async with _client(fake, recorded_sleep) as client:
            async with client.messages.create_stream(_request("one two three")) as stream:
                with pytest.raises(StreamTransportError) as exc_info:
                    async for event in stream:
                        received.append(event)

        assert [e.type for e in received] == [
            "message_start",
            "content_block_delta",
            "content_block_delta",
        ]
        assert exc_info.value.error.type == "overloaded_error"
        assert json.loads(exc_info.value.error.model_dump_json())["message"] == "Overloaded"
