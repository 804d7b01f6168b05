"""Shared test fixtures for the metals price service."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from metals.config import AppSettings, CacheSettings, HistoricalSettings
from metals.data import PriceDatabase, PriceDataStore, PriceLog
from metals.models import LiveQuote, Metal

# Wednesday 2025-03-12 15:00 UTC (11:00 New York): markets open
WEDNESDAY = datetime(2025, 3, 12, 15, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable replacement for datetime.now(timezone.utc)."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def mock_settings() -> AppSettings:
    """Return AppSettings with test defaults (no API keys, in-memory database)."""
    return AppSettings(
        log_level="DEBUG",
        cache=CacheSettings(refresh_timeout_seconds=1.0),
        historical=HistoricalSettings(tier_timeout_seconds=1.0),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(WEDNESDAY)


@pytest_asyncio.fixture
async def database():
    """Connected in-memory PriceDatabase, closed after the test."""
    db = PriceDatabase(":memory:")
    await db.connect()
    yield db
    await db.close()


@pytest.fixture
def price_log(database: PriceDatabase) -> PriceLog:
    return PriceLog(database)


@pytest.fixture
def store(database: PriceDatabase) -> PriceDataStore:
    return PriceDataStore(database)


def make_quote(
    gold: str = "2650.00",
    silver: str = "31.00",
    platinum: str | None = "950.00",
    palladium: str | None = "960.00",
) -> LiveQuote:
    prices = {Metal.GOLD: Decimal(gold), Metal.SILVER: Decimal(silver)}
    if platinum is not None:
        prices[Metal.PLATINUM] = Decimal(platinum)
    if palladium is not None:
        prices[Metal.PALLADIUM] = Decimal(palladium)
    return LiveQuote(prices=prices, source="fake", timestamp=WEDNESDAY)


@pytest.fixture
def live_source() -> AsyncMock:
    """Mock LiveSpotSource returning a full four-metal quote."""
    source = AsyncMock()
    source.name = "fake"
    source.fetch_live = AsyncMock(return_value=make_quote())
    return source


@pytest.fixture
def quote_factory():
    """The make_quote builder, for tests that need custom live quotes."""
    return make_quote
