"""Shared test fixtures.

In-process rate window, cache store and lock driven by a fake clock, an
aiosqlite database per test and a mocked Anthropic client. No test talks to
Redis, PostgreSQL or the network, and no test waits in real time.
"""

from __future__ import annotations

from typing import List, Sequence
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from packages.common.logging_config import configure_logging

# Before any module configures logging with cached loggers
configure_logging("DEBUG", "console", cache_loggers=False)

from packages.common.classification_cache import ClassificationCache, InMemoryCacheStore  # noqa: E402
from packages.common.config import DEFAULT_KEYWORDS_PATH, Settings  # noqa: E402
from packages.common.database import DatabaseSessionManager  # noqa: E402
from packages.common.overlap_lock import InMemoryOverlapLock  # noqa: E402
from packages.common.product_repository import product_repository  # noqa: E402
from packages.domain.classification.keywords import load_keyword_config  # noqa: E402
from packages.domain.classification.rate_limiter import InMemoryRateWindow, RateLimiter  # noqa: E402
from packages.domain.classification.schemas import ClassifiableProduct  # noqa: E402
from tests.helpers import FakeClock, FakeSleep, make_anthropic_response, make_product  # noqa: E402


# === FIXTURES: Time ===


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_sleep(fake_clock: FakeClock) -> FakeSleep:
    return FakeSleep(fake_clock)


# === FIXTURES: Configuration ===


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Test settings, isolated from .env and the process environment defaults."""
    return Settings(
        _env_file=None,
        environment="test",
        classifier="rules",
        anthropic_api_key=None,
        database_url_override=f"sqlite:///{tmp_path / 'settings.db'}",
        redis_url="redis://localhost:6379/15",
        job_batch_size=50,
        job_continuation_delay_seconds=2.0,
        job_lock_ttl_seconds=300,
    )


@pytest.fixture(scope="session")
def keyword_config():
    return load_keyword_config(DEFAULT_KEYWORDS_PATH)


# === FIXTURES: Shared state ===


@pytest.fixture
def rate_window(fake_clock: FakeClock) -> InMemoryRateWindow:
    return InMemoryRateWindow(clock=fake_clock)


@pytest.fixture
def rate_limiter(rate_window: InMemoryRateWindow, fake_sleep: FakeSleep) -> RateLimiter:
    return RateLimiter(rate_window, max_calls=15, window_seconds=60, wait_attempts=3,
                       poll_interval_seconds=5.0, sleep=fake_sleep)


@pytest.fixture
def cache_store(fake_clock: FakeClock) -> InMemoryCacheStore:
    return InMemoryCacheStore(clock=fake_clock)


@pytest.fixture
def classification_cache(cache_store: InMemoryCacheStore) -> ClassificationCache:
    return ClassificationCache(cache_store, ttl_seconds=3600)


@pytest.fixture
def overlap_lock(fake_clock: FakeClock) -> InMemoryOverlapLock:
    return InMemoryOverlapLock(clock=fake_clock)


# === FIXTURES: Anthropic client ===


@pytest.fixture
def anthropic_client() -> MagicMock:
    """Mocked AsyncAnthropic; set messages.create.return_value / side_effect per test."""
    client = MagicMock()
    client.messages.create = AsyncMock(return_value=make_anthropic_response('{"status": "LOW"}'))
    return client


# === FIXTURES: Database ===


@pytest_asyncio.fixture
async def db_manager(tmp_path):
    """Fresh SQLite database with the products table."""
    manager = DatabaseSessionManager()
    await manager.init(f"sqlite:///{tmp_path / 'products.db'}")
    await manager.create_schema()
    yield manager
    await manager.close()


@pytest.fixture
def seed_pending(db_manager):
    """Insert PENDING products by name; returns the ClassifiableProducts."""

    async def _seed(names: Sequence[str], category: str = "Uncategorized") -> List[ClassifiableProduct]:
        products = [make_product(name, category) for name in names]
        for product in products:
            # One transaction each so created_at follows insertion order
            async with db_manager.session() as db:
                await product_repository.insert_pending([product], db)
        return products

    return _seed
