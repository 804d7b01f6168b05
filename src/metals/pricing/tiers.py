"""Historical resolver tiers.

Each tier answers a HistoricalQuery from one kind of data and returns a
HistoricalResult, or None when it has nothing for that date. Tiers may
raise UpstreamUnavailable, including for datastore failures; the resolver
treats that the same as None.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import aiosqlite

from metals.data.price_log import PriceLog
from metals.exceptions import StoreError, UpstreamUnavailable
from metals.logging import get_logger
from metals.models import ALL_METALS, EtfBar, HistoricalQuery, HistoricalResult, Metal
from metals.pricing.calibration import CalibrationEngine
from metals.pricing.etf_converter import bar_to_spot, daily_range
from metals.pricing.static_table import MonthlyPriceTable
from metals.sources.client import EtfBarProvider, HistoricalSpotSource
from metals.sources.yahoo import PROXY_ETFS, has_etf_data

logger = get_logger(__name__)


def _full(prices: dict[Metal, Decimal]) -> dict[Metal, Decimal | None]:
    return {m: prices.get(m) for m in ALL_METALS}


class ResolverTier(ABC):
    """One candidate source in the resolver's fallback order."""

    name: str = "tier"

    @abstractmethod
    async def lookup(self, query: HistoricalQuery) -> HistoricalResult | None:
        """Resolve `query`, or return None on a miss."""


class PriceLogTier(ResolverTier):
    """Our own logged live snapshots.

    With a time: the closest snapshot within the window around that UTC
    minute. Without one: the last snapshot of the UTC day.
    """

    name = "price_log"

    def __init__(self, price_log: PriceLog, window_minutes: int = 5) -> None:
        self._price_log = price_log
        self._window = timedelta(minutes=window_minutes)

    async def lookup(self, query: HistoricalQuery) -> HistoricalResult | None:
        try:
            if query.time is not None:
                at = datetime.combine(query.date, query.time, tzinfo=timezone.utc)
                snapshots = await self._price_log.closest_all(at, self._window)
                granularity = "minute"
            else:
                snapshots = await self._price_log.on_day(query.date)
                granularity = "daily"
        except (StoreError, aiosqlite.Error) as e:
            raise UpstreamUnavailable(f"price log: {e}") from e

        if not snapshots:
            return None
        return HistoricalResult(
            date=query.date,
            time=query.time,
            prices=_full({m: s.price for m, s in snapshots.items()}),
            source="price_log",
            granularity=granularity,
        )


class EtfDerivedTier(ResolverTier):
    """Spot estimated from the proxy ETFs' daily bars and calibration ratios.

    With `intraday` set and a time in the query, OHLC is blended by time of
    day before conversion; otherwise the close is used.
    """

    name = "etf_derived"

    def __init__(
        self,
        etf_provider: EtfBarProvider,
        calibration: CalibrationEngine,
        *,
        intraday: bool = True,
    ) -> None:
        self._etf_provider = etf_provider
        self._calibration = calibration
        self._intraday = intraday

    async def _bars(self, metals: list[Metal], day: date) -> dict[Metal, EtfBar]:
        results = await asyncio.gather(
            *(self._etf_provider.fetch_daily_bar(PROXY_ETFS[m], day) for m in metals),
            return_exceptions=True,
        )
        bars: dict[Metal, EtfBar] = {}
        for metal, result in zip(metals, results):
            if isinstance(result, UpstreamUnavailable):
                logger.debug("etf_bar_unavailable", metal=metal.value, error=str(result))
                continue
            if isinstance(result, BaseException):
                raise result
            if result is not None:
                bars[metal] = result
        return bars

    async def lookup(self, query: HistoricalQuery) -> HistoricalResult | None:
        metals = [m for m in query.metals if has_etf_data(m, query.date)]
        if not metals:
            return None

        bars = await self._bars(metals, query.date)
        if not bars:
            return None

        ratios = await self._calibration.get_ratio_for_date(query.date)
        at = query.time if self._intraday else None
        prices = {m: bar_to_spot(bar, ratios[m], at) for m, bar in bars.items()}
        ranges = {m: daily_range(bar, ratios[m]) for m, bar in bars.items()}

        return HistoricalResult(
            date=query.date,
            time=query.time,
            prices=_full(prices),
            source="etf_derived",
            granularity="estimated_intraday" if at is not None else "daily",
            daily_range=ranges,
        )


class LiveApiHistoricalTier(ResolverTier):
    """Secondary historical API; successful answers are kept for good."""

    name = "live_api_historical"

    def __init__(self, source: HistoricalSpotSource) -> None:
        self._source = source
        self._cache: dict[date, dict[Metal, Decimal]] = {}

    async def lookup(self, query: HistoricalQuery) -> HistoricalResult | None:
        prices = self._cache.get(query.date)
        if prices is None:
            prices = await self._source.fetch_historical(query.date)
            if not prices:
                return None
            self._cache[query.date] = prices

        return HistoricalResult(
            date=query.date,
            time=query.time,
            prices=_full(prices),
            source="live_api_historical",
            granularity="daily",
        )


class MacroMonthlyTier(ResolverTier):
    """The static monthly table; `degraded` marks use past the ETF era."""

    name = "macro_monthly"

    def __init__(self, table: MonthlyPriceTable, *, degraded: bool = False) -> None:
        self._table = table
        self._degraded = degraded

    async def lookup(self, query: HistoricalQuery) -> HistoricalResult | None:
        prices = self._table.get(query.date)
        if prices is None:
            return None
        return HistoricalResult(
            date=query.date,
            time=query.time,
            prices=_full(prices),
            source="macro-monthly",
            granularity="monthly",
            note="Monthly average (higher-resolution sources unavailable)" if self._degraded else None,
        )
