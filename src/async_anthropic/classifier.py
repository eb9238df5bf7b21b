"""Response classification.

Maps a completed HTTP exchange to a decoded value, or raises the matching
error from `errors`. This is the only place that looks at status codes.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TypeVar

import httpx
from pydantic import ValidationError

from .errors import (
    AnthropicError,
    BadRequestError,
    DeserializationError,
    NetworkError,
    RateLimitedError,
    UnauthorizedError,
    UnknownError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Anthropic-specific "overloaded" status
HTTP_OVERLOADED = 529

RATE_LIMIT_STATUSES = frozenset({httpx.codes.TOO_MANY_REQUESTS, HTTP_OVERLOADED})


def parse_retry_after(headers: httpx.Headers) -> float | None:
    """Read `Retry-After` as whole seconds. HTTP-date values are ignored."""
    value = headers.get("retry-after")
    if value is None:
        return None
    value = value.strip()
    if not value.isdigit():
        return None
    return float(int(value))


async def _read_text(response: httpx.Response) -> str:
    try:
        await response.aread()
    except httpx.RequestError as e:
        raise NetworkError(f"failed to read response body: {e}") from e
    return response.text


async def classify_error(response: httpx.Response) -> AnthropicError:
    """Build the error for a non-2xx response, consuming its body."""
    status = response.status_code

    if status == httpx.codes.BAD_REQUEST:
        return BadRequestError(await _read_text(response))

    if status == httpx.codes.UNAUTHORIZED:
        return UnauthorizedError()

    if status in RATE_LIMIT_STATUSES:
        retry_after = parse_retry_after(response.headers)
        text = await _read_text(response)
        logger.warning(f"Rate limited ({status}): {text}")
        return RateLimitedError(retry_after)

    return UnknownError(await _read_text(response), status_code=status)


async def classify_response(response: httpx.Response, decode: Callable[[bytes], T]) -> T:
    """Decode a successful response or raise its classified error.

    Args:
        response: Completed response; its body is read exactly once here.
        decode: Turns the raw body into the caller's type. pydantic
            `ValidationError` and `ValueError` are reported as
            `DeserializationError`.
    """
    if not response.is_success:
        raise await classify_error(response)

    await _read_text(response)
    try:
        return decode(response.content)
    except (ValidationError, ValueError) as e:
        raise DeserializationError(str(e), body=response.text) from e
