"""
Pytest configuration and shared fixtures
"""

import os

import pytest
import pytest_asyncio

# Set test environment
os.environ["ENVIRONMENT"] = "development"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ.pop("SENTRY_DSN", None)

from stableguard.guard import StableGuard  # noqa: E402
from stableguard.storage import MemoryStore  # noqa: E402
from tests.factories import FakeClock, healthy_source  # noqa: E402


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def price_source():
    """All registry assets on peg with healthy turnover"""
    return healthy_source()


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest_asyncio.fixture
async def guard(memory_store, price_source, clock):
    """Guard with default settings on in-memory collaborators"""
    return await StableGuard.create(
        memory_store, price_source=price_source, clock=clock
    )


@pytest.fixture(autouse=True)
def isolated_test_env():
    """Ensure tests run in isolated environment"""
    original_env = dict(os.environ)

    os.environ.update(
        {
            "ENVIRONMENT": "development",
            "DATABASE_URL": "sqlite://",
            "LOG_LEVEL": "WARNING",
        }
    )

    yield

    os.environ.clear()
    os.environ.update(original_env)
