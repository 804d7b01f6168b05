"""Read-through SQLite cache in front of an ETF bar provider.

Daily bars for a past date never change, so a stored bar is served
without touching the upstream again. Today's bar is never cached
because it is still forming.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

from metals.data.store import PriceDataStore
from metals.logging import get_logger
from metals.models import EtfBar
from metals.sources.client import EtfBarProvider

logger = get_logger(__name__)


class CachedEtfProvider(EtfBarProvider):
    """EtfBarProvider decorator backed by PriceDataStore.etf_daily_bars."""

    def __init__(self, upstream: EtfBarProvider, store: PriceDataStore) -> None:
        self._upstream = upstream
        self._store = store

    async def fetch_daily_bar(self, symbol: str, day: date) -> EtfBar | None:
        try:
            cached = await self._store.get_etf_bar(symbol, day)
        except Exception as e:
            logger.warning("etf_cache_read_failed", symbol=symbol, error=str(e))
            cached = None
        if cached is not None:
            return cached

        bar = await self._upstream.fetch_daily_bar(symbol, day)
        if bar is not None and day < datetime.now(timezone.utc).date():
            try:
                await self._store.insert_etf_bar(bar)
            except Exception as e:
                # The bar is still good; only the cache write is lost
                logger.warning(
                    "etf_cache_write_failed",
                    symbol=symbol,
                    date=day.isoformat(),
                    error=str(e),
                )
        return bar

    async def fetch_latest_close(self, symbol: str) -> Decimal | None:
        return await self._upstream.fetch_latest_close(symbol)
