"""Anthropic API client.

Non-streaming calls go through `RequestRetrier` (rate-limit aware retries).
Streaming calls go through `StreamBridge` over a reconnecting `EventSource`.
Both share the client's `BackoffPolicy`; every call keeps its own counters.
"""

from __future__ import annotations

import asyncio
from collections.abc import Collection, Mapping
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, TypeAdapter

from .config import ClientConfig
from .retry import RequestRetrier, SleepFn
from .sse import EventSource
from .stream import EventStream, StreamBridge
from .types import (
    MESSAGES_STREAM_EVENT_TYPES,
    CreateMessagesRequest,
    CreateMessagesResponse,
    ListModelsResponse,
    MessagesStreamEvent,
    Model,
)

T = TypeVar("T")

MESSAGES_PATH = "/v1/messages"
MODELS_PATH = "/v1/models"


@dataclass
class MessagesAPI:
    """Messages operations."""

    _client: AnthropicClient

    async def create(self, request: CreateMessagesRequest) -> CreateMessagesResponse:
        """Send a message and wait for the complete reply."""
        if request.stream:
            request = request.model_copy(update={"stream": False})
        return await self._client.post(MESSAGES_PATH, request, CreateMessagesResponse)

    def create_stream(self, request: CreateMessagesRequest) -> EventStream[MessagesStreamEvent]:
        """Send a message and stream the reply as it is generated.

        Usage:
            async with client.messages.create_stream(request) as stream:
                async for event in stream:
                    if event.type == "content_block_delta":
                        ...
        """
        return self._client.post_stream(
            MESSAGES_PATH, request, MessagesStreamEvent, MESSAGES_STREAM_EVENT_TYPES
        )


@dataclass
class ModelsAPI:
    """Model listing operations."""

    _client: AnthropicClient

    async def list(self) -> ListModelsResponse:
        """List available models."""
        return await self._client.get(MODELS_PATH, ListModelsResponse)

    async def get(self, model_id: str) -> Model:
        """Get a model by ID or alias."""
        return await self._client.get(f"{MODELS_PATH}/{model_id}", Model)


@dataclass
class AnthropicClient:
    """Async client for the Anthropic API.

    An `httpx.AsyncClient` is created on first use unless one is injected
    (tests inject one backed by `httpx.MockTransport`). `sleep` is the wait
    used between attempts.
    """

    config: ClientConfig = field(default_factory=ClientConfig)
    _http_client: httpx.AsyncClient | None = field(default=None, repr=False)
    _sleep: SleepFn = field(default=asyncio.sleep, repr=False)
    _owns_http_client: bool = field(default=False, init=False, repr=False)

    @classmethod
    def from_api_key(cls, api_key: str, **kwargs: Any) -> AnthropicClient:
        """Build a client for the given key; other settings from the environment."""
        return cls(config=ClientConfig.from_env(api_key=api_key), **kwargs)

    @property
    def messages(self) -> MessagesAPI:
        """Messages operations."""
        return MessagesAPI(_client=self)

    @property
    def models(self) -> ModelsAPI:
        """Model operations."""
        return ModelsAPI(_client=self)

    def headers(self) -> dict[str, str]:
        """Headers sent with every request."""
        headers = {
            "x-api-key": self.config.api_key.get_secret_value(),
            "anthropic-version": self.config.version,
        }
        if self.config.beta:
            headers["anthropic-beta"] = self.config.beta
        return headers

    def format_url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/{path.lstrip('/')}"

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=httpx.Timeout(self.config.timeout))
            self._owns_http_client = True
        return self._http_client

    def _retrier(self) -> RequestRetrier:
        return RequestRetrier(self.config.backoff, sleep=self._sleep)

    @staticmethod
    def _serialize(body: BaseModel | Mapping[str, Any]) -> dict[str, Any]:
        if isinstance(body, BaseModel):
            return body.model_dump(mode="json", exclude_none=True)
        return dict(body)

    async def get(self, path: str, response_model: Any) -> Any:
        """GET `path` and decode the body as `response_model`, retrying on rate limits."""
        client = self._client()
        url = self.format_url(path)
        adapter = TypeAdapter(response_model)

        async def send() -> httpx.Response:
            return await client.get(url, headers=self.headers())

        return await self._retrier().execute(send, adapter.validate_json)

    async def post(
        self, path: str, body: BaseModel | Mapping[str, Any], response_model: Any
    ) -> Any:
        """POST `body` as JSON and decode the reply, retrying on rate limits."""
        client = self._client()
        url = self.format_url(path)
        payload = self._serialize(body)
        adapter = TypeAdapter(response_model)

        async def send() -> httpx.Response:
            return await client.post(url, headers=self.headers(), json=payload)

        return await self._retrier().execute(send, adapter.validate_json)

    def post_stream(
        self,
        path: str,
        body: BaseModel | Mapping[str, Any],
        event_model: Any,
        event_types: Collection[str],
    ) -> EventStream[Any]:
        """POST `body` with `"stream": true` and stream the decoded events.

        Must be called with a running event loop; the connection is opened
        by a background task.
        """
        client = self._client()
        url = self.format_url(path)
        payload = {**self._serialize(body), "stream": True}
        timeout = httpx.Timeout(self.config.timeout, read=None)  # No read timeout for SSE

        def build_request(extra_headers: dict[str, str]) -> httpx.Request:
            return client.build_request(
                "POST",
                url,
                headers={**self.headers(), **extra_headers},
                json=payload,
                timeout=timeout,
            )

        def new_source() -> EventSource:
            return EventSource(
                client, build_request, self.config.reconnect_policy(), sleep=self._sleep
            )

        return StreamBridge(new_source, event_model, event_types).open()

    async def close(self) -> None:
        """Close the HTTP client if this client created it."""
        if self._http_client is not None and self._owns_http_client:
            await self._http_client.aclose()
            self._http_client = None
            self._owns_http_client = False

    async def __aenter__(self) -> AnthropicClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()


def create_client(
    api_key: str | None = None,
    *,
    base_url: str | None = None,
    http_client: httpx.AsyncClient | None = None,
    **config: Any,
) -> AnthropicClient:
    """Create a client, filling unset options from ANTHROPIC_* variables.

    Args:
        api_key: API key; defaults to ANTHROPIC_API_KEY.
        base_url: API root; defaults to ANTHROPIC_BASE_URL or the public endpoint.
        http_client: Optional pre-configured httpx client (not closed by `close()`).
        **config: Any other `ClientConfig` field.

    Returns:
        AnthropicClient ready to use
    """
    if api_key is not None:
        config["api_key"] = api_key
    if base_url is not None:
        config["base_url"] = base_url
    return AnthropicClient(config=ClientConfig.from_env(**config), _http_client=http_client)
