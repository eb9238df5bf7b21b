"""Pytest configuration and shared fixtures."""

import pytest

from tests.support import ConnectionTracker, RecordingSleep


@pytest.fixture
def tracker() -> ConnectionTracker:
    """Counts SSE response bodies opened and closed."""
    return ConnectionTracker()


@pytest.fixture
def recorded_sleep() -> RecordingSleep:
    """Records backoff waits instead of sleeping."""
    return RecordingSleep()
