"""Retried execution of a single (non-streaming) request."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx

from .backoff import BackoffPolicy, RetryState
from .classifier import classify_response
from .errors import NetworkError, RateLimitedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


def rate_limit_delay(
    error: RateLimitedError, policy: BackoffPolicy, state: RetryState
) -> float | None:
    """Wait before the next attempt, or None when the policy is exhausted.

    A server-provided Retry-After wins over the computed backoff.
    """
    if not policy.has_attempts_left(state):
        return None
    if error.retry_after is not None:
        return error.retry_after
    return policy.next_delay(state.attempt)


class RequestRetrier:
    """Drives one request through transport, classification and backoff.

    Only `RateLimitedError` is retried. Any `httpx.RequestError` (connect,
    timeout, undecodable body, redirect loop) is raised as `NetworkError`;
    it and every other classified error end the call on the first occurrence.
    """

    def __init__(self, policy: BackoffPolicy, *, sleep: SleepFn = asyncio.sleep):
        self.policy = policy
        self._sleep = sleep

    async def execute(
        self,
        send: Callable[[], Awaitable[httpx.Response]],
        decode: Callable[[bytes], T],
    ) -> T:
        """Run `send` until it yields a decoded value or a terminal error.

        Args:
            send: Performs exactly one network attempt.
            decode: Decodes a successful body.

        Raises:
            AnthropicError: The final classified error. When retries run out
                this is the last `RateLimitedError` seen.
        """
        state = RetryState()
        while True:
            try:
                response = await send()
            except httpx.RequestError as e:
                raise NetworkError(str(e) or type(e).__name__) from e

            try:
                return await classify_response(response, decode)
            except RateLimitedError as e:
                delay = rate_limit_delay(e, self.policy, state)
                if delay is None:
                    logger.warning(f"Rate limited, giving up after {state.attempt + 1} attempts")
                    raise
                logger.warning(
                    f"Rate limited (attempt {state.attempt + 1}), retrying in {delay:.2f}s"
                )
                await self._sleep(delay)
                state.advance(delay)
