"""Historical spot price resolution over an ordered list of tiers.

Routing for a single query:
  date >= today           -> current live cache price ("current-spot")
  date < ETF start date   -> static monthly table, NotFound on a miss
  otherwise               -> price log, ETF-derived, historical API,
                             degraded monthly table, then "unavailable"

Every tier call is bounded by a timeout; a timeout or UpstreamUnavailable
is a miss and the walk moves on. The walk stops at the first hit and never
substitutes the current price for a past date.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from collections.abc import Callable
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING

from metals.config import HistoricalSettings
from metals.data.price_log import PriceLog
from metals.exceptions import InvalidRequest, NotFound, UpstreamUnavailable
from metals.logging import get_logger, lookup_context
from metals.models import ALL_METALS, HistoricalQuery, HistoricalResult, Metal
from metals.pricing.calibration import CalibrationEngine
from metals.pricing.static_table import MonthlyPriceTable
from metals.pricing.tiers import (
    EtfDerivedTier,
    LiveApiHistoricalTier,
    MacroMonthlyTier,
    PriceLogTier,
    ResolverTier,
)
from metals.sources.client import EtfBarProvider, HistoricalSpotSource

if TYPE_CHECKING:
    from metals.market.spot_cache import LiveSpotCache

logger = get_logger(__name__)

UNAVAILABLE_NOTE = "No historical price available for this date"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_hit(query: HistoricalQuery, result: HistoricalResult | None) -> bool:
    """A single-metal query needs that metal; an all-metals query needs gold and silver."""
    if result is None:
        return False
    if query.metal is not None:
        return result.prices.get(query.metal) is not None
    return result.prices.get(Metal.GOLD) is not None and result.prices.get(Metal.SILVER) is not None


class HistoricalResolver:
    """Answers "what was the price on this date" from the best available tier.

    Args:
        spot_cache: Live cache used for today and future dates.
        tiers: Fallback order for dates in the ETF era.
        pre_etf_tiers: Fallback order for dates before `etf_start_date`.
        batch_tiers: Reduced fallback order for batch requests.
        settings: Timeouts, batch limits and the ETF start date.
        clock: Returns the current UTC time (injectable for tests).

    Usage:
        resolver = HistoricalResolver.build(spot_cache, price_log, etf_provider,
                                            calibration, historical_source, table)
        result = await resolver.resolve(HistoricalQuery.parse("2023-09-15"))
    """

    def __init__(
        self,
        spot_cache: LiveSpotCache,
        tiers: list[ResolverTier],
        *,
        pre_etf_tiers: list[ResolverTier] | None = None,
        batch_tiers: list[ResolverTier] | None = None,
        settings: HistoricalSettings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._spot_cache = spot_cache
        self._tiers = list(tiers)
        self._pre_etf_tiers = list(pre_etf_tiers or [])
        self._batch_tiers = list(batch_tiers) if batch_tiers is not None else list(tiers)
        self._settings = settings or HistoricalSettings()
        self._clock = clock
        self._batch_memo: OrderedDict[date, HistoricalResult] = OrderedDict()

    @classmethod
    def build(
        cls,
        spot_cache: LiveSpotCache,
        price_log: PriceLog,
        etf_provider: EtfBarProvider,
        calibration: CalibrationEngine,
        historical_source: HistoricalSpotSource | None,
        table: MonthlyPriceTable,
        *,
        settings: HistoricalSettings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> HistoricalResolver:
        """Wire the standard tier order."""
        settings = settings or HistoricalSettings()
        price_log_tier = PriceLogTier(price_log, settings.price_log_window_minutes)

        tiers: list[ResolverTier] = [
            price_log_tier,
            EtfDerivedTier(etf_provider, calibration, intraday=True),
        ]
        if historical_source is not None:
            tiers.append(LiveApiHistoricalTier(historical_source))
        tiers.append(MacroMonthlyTier(table, degraded=True))

        return cls(
            spot_cache,
            tiers,
            pre_etf_tiers=[MacroMonthlyTier(table)],
            batch_tiers=[
                price_log_tier,
                EtfDerivedTier(etf_provider, calibration, intraday=False),
            ],
            settings=settings,
            clock=clock,
        )

    @property
    def tier_names(self) -> list[str]:
        return [tier.name for tier in self._tiers]

    # ──────────────────────────────────────────────
    # Single lookups
    # ──────────────────────────────────────────────

    async def resolve(self, query: HistoricalQuery) -> HistoricalResult:
        """Resolve one query.

        Raises:
            NotFound: pre-ETF date with no static-table entry.
        """
        with lookup_context(
            date=query.date.isoformat(),
            time=query.time.strftime("%H:%M") if query.time else None,
            metal=query.metal.value if query.metal else None,
        ):
            return await self._resolve(query)

    async def _resolve(self, query: HistoricalQuery) -> HistoricalResult:
        today = self._clock().date()
        if query.date >= today:
            return await self._current_spot(query, today)

        if query.date < self._settings.etf_start_date:
            result = await self._walk(query, self._pre_etf_tiers)
            if result is None:
                raise NotFound(f"No price data available for {query.date.isoformat()}")
            return result

        result = await self._walk(query, self._tiers)
        if result is None:
            logger.info("historical_price_unavailable")
            return HistoricalResult.unavailable(query, UNAVAILABLE_NOTE)
        return result

    async def _current_spot(self, query: HistoricalQuery, today: date) -> HistoricalResult:
        state = await self._spot_cache.read()
        note = None
        if query.date > today:
            note = "Future date requested, using current spot price"
        return HistoricalResult(
            date=query.date,
            time=query.time,
            prices={m: state.prices.get(m) for m in ALL_METALS},
            source="current-spot",
            granularity="current",
            note=note,
        )

    async def _walk(
        self, query: HistoricalQuery, tiers: list[ResolverTier]
    ) -> HistoricalResult | None:
        for tier in tiers:
            try:
                result = await asyncio.wait_for(
                    tier.lookup(query), timeout=self._settings.tier_timeout_seconds
                )
            except asyncio.TimeoutError:
                logger.warning("resolver_tier_timeout", tier=tier.name)
                continue
            except UpstreamUnavailable as e:
                logger.info("resolver_tier_unavailable", tier=tier.name, error=str(e))
                continue

            if is_hit(query, result):
                logger.debug("resolver_tier_hit", tier=tier.name)
                return result
        return None

    # ──────────────────────────────────────────────
    # Batch lookups
    # ──────────────────────────────────────────────

    async def resolve_batch(
        self, date_strs: list[str]
    ) -> dict[str, HistoricalResult | InvalidRequest]:
        """Resolve up to `batch_max_dates` dates (all metals each).

        Uses only the batch tiers plus a bounded in-memory memo; dates on or
        after today resolve to the current spot price. A malformed date
        yields an InvalidRequest entry instead of failing the batch.

        Raises:
            InvalidRequest: empty or oversized batch.
        """
        if not date_strs:
            raise InvalidRequest("dates array required")
        if len(date_strs) > self._settings.batch_max_dates:
            raise InvalidRequest(
                f"Maximum {self._settings.batch_max_dates} dates per batch request"
            )

        semaphore = asyncio.Semaphore(self._settings.batch_concurrency)
        today = self._clock().date()

        async def one(date_str: str) -> HistoricalResult | InvalidRequest:
            try:
                query = HistoricalQuery.parse(date_str)
            except InvalidRequest as e:
                return e
            if query.date >= today:
                return await self._current_spot(query, today)
            async with semaphore:
                return await self._resolve_batch_date(query)

        unique = list(dict.fromkeys(date_strs))
        results = await asyncio.gather(*(one(d) for d in unique))
        logger.info(
            "historical_batch_resolved",
            dates=len(unique),
            hits=sum(1 for r in results if isinstance(r, HistoricalResult) and r.available),
        )
        return dict(zip(unique, results))

    async def _resolve_batch_date(self, query: HistoricalQuery) -> HistoricalResult:
        memo = self._batch_memo.get(query.date)
        if memo is not None:
            self._batch_memo.move_to_end(query.date)
            return memo

        with lookup_context(date=query.date.isoformat(), batch=True):
            if query.date < self._settings.etf_start_date:
                result = await self._walk(query, self._pre_etf_tiers)
            else:
                result = await self._walk(query, self._batch_tiers)

        if result is None:
            return HistoricalResult.unavailable(query, UNAVAILABLE_NOTE)
        self._batch_memo[query.date] = result
        while len(self._batch_memo) > self._settings.batch_memo_size:
            self._batch_memo.popitem(last=False)
        return result
