"""Client configuration.

Values come from keyword arguments or, through `ClientConfig.from_env()`,
from `ANTHROPIC_*` environment variables.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

from pydantic import SecretStr

from .backoff import BackoffPolicy

logger = logging.getLogger(__name__)

BASE_URL = "https://api.anthropic.com"
DEFAULT_VERSION = "2023-06-01"
DEFAULT_TIMEOUT = 600.0


def default_api_key() -> SecretStr:
    """API key from ANTHROPIC_API_KEY, or an empty secret (with a warning)."""
    key = os.getenv("ANTHROPIC_API_KEY")
    if not key:
        logger.warning("Anthropic client initialized without api key")
        return SecretStr("")
    return SecretStr(key)


@dataclass
class ClientConfig:
    """Configuration for `AnthropicClient`.

    `backoff` is shared by every call made through the client. Streaming
    reconnects use the same schedule with their own attempt bound,
    `reconnect_max_attempts` (None means reconnect until the consumer stops).
    """

    api_key: SecretStr = field(default_factory=default_api_key)
    base_url: str = BASE_URL
    version: str = DEFAULT_VERSION
    beta: str | None = None

    # Seconds; streaming responses have no read timeout
    timeout: float = DEFAULT_TIMEOUT

    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    reconnect_max_attempts: int | None = None

    def __post_init__(self) -> None:
        if isinstance(self.api_key, str):
            self.api_key = SecretStr(self.api_key)
        if self.timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {self.timeout}")
        if self.reconnect_max_attempts is not None and self.reconnect_max_attempts < 1:
            raise ValueError(
                f"reconnect_max_attempts must be >= 1 or None, got {self.reconnect_max_attempts}"
            )

    def reconnect_policy(self) -> BackoffPolicy:
        """Backoff used between stream reconnects."""
        return self.backoff.with_max_attempts(self.reconnect_max_attempts)

    @classmethod
    def from_env(cls, **overrides) -> ClientConfig:
        """Build from ANTHROPIC_* environment variables; keyword arguments win.

        Reads ANTHROPIC_API_KEY, ANTHROPIC_BASE_URL, ANTHROPIC_VERSION,
        ANTHROPIC_BETA, ANTHROPIC_TIMEOUT and ANTHROPIC_MAX_RETRIES (retries
        after the first attempt).
        """
        values: dict = {}
        if base_url := os.getenv("ANTHROPIC_BASE_URL"):
            values["base_url"] = base_url
        if version := os.getenv("ANTHROPIC_VERSION"):
            values["version"] = version
        if beta := os.getenv("ANTHROPIC_BETA"):
            values["beta"] = beta
        if timeout := os.getenv("ANTHROPIC_TIMEOUT"):
            values["timeout"] = float(timeout)
        if max_retries := os.getenv("ANTHROPIC_MAX_RETRIES"):
            values["backoff"] = BackoffPolicy(max_attempts=int(max_retries) + 1)
        values.update(overrides)
        return cls(**values)
