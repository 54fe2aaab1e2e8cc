"""Pytest configuration and fixtures."""

import os
from unittest.mock import AsyncMock

import pytest

# Set before augment_engine is imported so cached settings pick them up
os.environ.setdefault("AUGMENT_ENV", "test")
os.environ.setdefault("ANTHROPIC_API_KEY", "sk-ant-test-" + "k" * 40)

from augment_engine.core.config import Settings  # noqa: E402
from tests.fakes.fake_producer import VALID_KEY  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    os.environ["AUGMENT_ENV"] = "test"
    yield


@pytest.fixture
def settings() -> Settings:
    """Settings with pacing delays disabled."""
    return Settings(
        ANTHROPIC_API_KEY=VALID_KEY,
        AUGMENT_ENV="test",
        PHASE_COOLDOWN_SECONDS=0,
        EMPTY_OUTPUT_COOLDOWN_SECONDS=0,
        RETRY_BASE_DELAY_SECONDS=0,
        WEB_SEARCH_ENABLED=True,
    )


@pytest.fixture
def no_sleep() -> AsyncMock:
    """Awaitable stand-in for asyncio.sleep that records requested delays."""
    return AsyncMock(return_value=None)
