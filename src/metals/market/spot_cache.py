"""Live spot price cache with market-calendar freezing.

One LiveSpotCache instance owns the process-wide CacheState. Readers get
copies; only refresh() replaces the state. Concurrent refresh triggers
share a single in-flight task so the upstream is called once.

While the market is closed the cache serves the "Friday close" snapshot
verbatim (change zeroed) instead of polling. The snapshot is captured on
the first closed read, persisted so a weekend restart keeps it, and
cleared on the first read after the market reopens. A snapshot only
belongs to the closure it was captured in: one left over from an earlier
weekend or holiday is discarded and the prices are refreshed.
"""

import asyncio
from collections.abc import Callable
from datetime import date, datetime, timezone
from decimal import Decimal

from metals.config import CacheSettings
from metals.data.price_log import PriceLog
from metals.data.store import PriceDataStore
from metals.exceptions import UpstreamUnavailable
from metals.logging import get_logger
from metals.market.background import BackgroundTasks
from metals.market.trading_hours import MarketCalendar
from metals.models import (
    CacheState,
    Metal,
    PriceChange,
    PriceSnapshot,
    PriceSource,
    round_price,
)
from metals.pricing.calibration import CalibrationEngine
from metals.sources.client import LiveSpotSource

logger = get_logger(__name__)

_HUNDRED = Decimal("100")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def fallback_prices(settings: CacheSettings) -> dict[Metal, Decimal]:
    """Hardcoded last-resort prices."""
    return {
        Metal.GOLD: round_price(settings.fallback_gold),
        Metal.SILVER: round_price(settings.fallback_silver),
        Metal.PLATINUM: round_price(settings.fallback_platinum),
        Metal.PALLADIUM: round_price(settings.fallback_palladium),
    }


def compute_change(price: Decimal, prev_close: Decimal | None) -> PriceChange:
    """Day-over-day move against a previous close; zero when there is none."""
    if prev_close is None or prev_close <= 0:
        return PriceChange()
    amount = round_price(price - prev_close)
    percent = round_price(amount / prev_close * _HUNDRED)
    return PriceChange(amount=amount, percent=percent, prev_close=prev_close)


class LiveSpotCache:
    """Current best-known spot prices, refreshed on demand.

    Args:
        source: Live price source (usually a FallbackLiveSource chain).
        settings: Staleness threshold, refresh timeout and fallback prices.
        is_market_closed: Market-calendar predicate taking a UTC datetime.
        calendar: Optional MarketCalendar for the change baseline day and
            the closure a Friday-close snapshot belongs to.
        price_log: Optional PriceLog; successful refreshes are appended to it.
        store: Optional store used to persist the Friday-close snapshot.
        background: Runner for price-log writes, snapshot writes and calibration.
        calibration: Optional engine triggered after successful refreshes.
        clock: Returns the current UTC time (injectable for tests).

    Usage:
        cache = LiveSpotCache(source, settings=CacheSettings(), is_market_closed=calendar)
        await cache.warm_start()
        state = await cache.read()
    """

    def __init__(
        self,
        source: LiveSpotSource,
        *,
        settings: CacheSettings | None = None,
        is_market_closed: Callable[[datetime], bool],
        calendar: MarketCalendar | None = None,
        price_log: PriceLog | None = None,
        store: PriceDataStore | None = None,
        background: BackgroundTasks | None = None,
        calibration: CalibrationEngine | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._source = source
        self._settings = settings or CacheSettings()
        self._is_market_closed = is_market_closed
        self._calendar = calendar
        self._price_log = price_log
        self._store = store
        self._background = background or BackgroundTasks()
        self._calibration = calibration
        self._clock = clock

        self._state = CacheState(prices=fallback_prices(self._settings))
        self._close_snapshot: CacheState | None = None
        self._close_captured_at: datetime | None = None
        self._inflight: asyncio.Task | None = None  # type: ignore[type-arg]
        self._baseline_day: date | None = None
        self._baseline: dict[Metal, Decimal] = {}
        self._upstream_calls = 0

    # ──────────────────────────────────────────────
    # Read path
    # ──────────────────────────────────────────────

    @property
    def upstream_calls(self) -> int:
        """How many times the live source has been asked for prices."""
        return self._upstream_calls

    @property
    def close_snapshot(self) -> CacheState | None:
        return self._close_snapshot.copy() if self._close_snapshot is not None else None

    def get(self) -> CacheState:
        """Current state without side effects.

        While the market is closed and a Friday-close snapshot exists, the
        snapshot is returned with change zeroed and markets_closed set.
        """
        now = self._clock()
        closed = self._is_market_closed(now)
        snapshot = self._current_snapshot(now) if closed else None
        if snapshot is not None:
            frozen = snapshot.copy()
            frozen.change = {m: PriceChange() for m in frozen.prices}
            frozen.markets_closed = True
            return frozen

        state = self._state.copy()
        state.markets_closed = closed
        return state

    async def read(self, max_age_minutes: float | None = None) -> CacheState:
        """The request-path read: refresh if stale, or freeze while closed."""
        now = self._clock()
        if self._is_market_closed(now):
            if self._close_snapshot is not None and self._current_snapshot(now) is None:
                # the capture below overwrites the persisted row
                self._drop_close_snapshot("close_snapshot_expired", clear_store=False)
            if self._close_snapshot is None:
                if self._predates_last_session(now):
                    await self.refresh()
                if self._close_snapshot is None:
                    self._capture_close(now)
            return self.get()

        if self._close_snapshot is not None:
            self._drop_close_snapshot("market_reopened_close_snapshot_cleared")

        await self.refresh_if_stale(max_age_minutes)
        return self.get()

    def is_stale(self, max_age_minutes: float | None = None) -> bool:
        max_age = self._settings.max_age_minutes if max_age_minutes is None else max_age_minutes
        age = self._state.age_minutes(self._clock())
        return age is None or age > max_age

    async def refresh_if_stale(self, max_age_minutes: float | None = None) -> bool:
        """Refresh when older than `max_age_minutes`; returns whether it refreshed."""
        if not self.is_stale(max_age_minutes):
            return False
        await self.refresh()
        return True

    # ──────────────────────────────────────────────
    # Refresh
    # ──────────────────────────────────────────────

    async def refresh(self) -> CacheState:
        """Fetch live prices, falling back to cached or static prices on failure.

        Callers arriving while a refresh is running await that same refresh.
        Never raises for upstream failures.
        """
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._do_refresh())
            self._inflight.add_done_callback(self._clear_inflight)
        return await asyncio.shield(self._inflight)

    def _clear_inflight(self, task: asyncio.Task) -> None:  # type: ignore[type-arg]
        if self._inflight is task:
            self._inflight = None

    async def _do_refresh(self) -> CacheState:
        previous = self._state
        self._upstream_calls += 1
        try:
            quote = await asyncio.wait_for(
                self._source.fetch_live(),
                timeout=self._settings.refresh_timeout_seconds,
            )
        except (UpstreamUnavailable, asyncio.TimeoutError) as e:
            logger.warning("live_refresh_failed", error=str(e) or type(e).__name__)
            return self._fall_back(previous)
        except Exception:
            logger.warning("live_refresh_error", exc_info=True)
            return self._fall_back(previous)

        now = self._clock()
        prices = dict(previous.prices)
        for metal, price in quote.prices.items():
            prices[metal] = round_price(price)

        baseline = await self._change_baseline(now, previous)
        change = {m: compute_change(prices[m], baseline.get(m)) for m in prices}

        self._state = CacheState(
            prices=prices,
            last_updated=now,
            source="live",
            change=change,
        )
        logger.info(
            "live_prices_refreshed",
            upstream=quote.source,
            **{m.value: str(p) for m, p in prices.items()},
        )

        if self._price_log is not None:
            snapshots = [
                PriceSnapshot(timestamp=now, metal=m, price=prices[m], source=PriceSource.LIVE)
                for m in quote.prices
            ]
            self._background.submit("price_log_append", self._price_log.append(snapshots))

        if self._is_market_closed(now):
            self._capture_close(now)

        if self._calibration is not None and Metal.GOLD in quote.prices and Metal.SILVER in quote.prices:
            self._background.submit("calibration", self._calibrate(self._calibration, prices))

        return self._state.copy()

    def _fall_back(self, previous: CacheState) -> CacheState:
        if previous.last_updated is not None and previous.source != "static-fallback":
            self._state = CacheState(
                prices=dict(previous.prices),
                last_updated=previous.last_updated,
                source="cached",
                change=previous.change,
            )
            logger.info("live_refresh_serving_cached", last_updated=previous.last_updated.isoformat())
        else:
            self._state = CacheState(
                prices=fallback_prices(self._settings),
                last_updated=self._clock(),
                source="static-fallback",
            )
            logger.warning("live_refresh_serving_static_fallback")
        return self._state.copy()

    async def _change_baseline(self, now: datetime, previous: CacheState) -> dict[Metal, Decimal]:
        """Last trading day's closing prices, else the previously cached ones."""
        if self._price_log is not None and self._calendar is not None:
            day = self._calendar.last_trading_day(now.date())
            if self._baseline_day != day:
                try:
                    snapshots = await self._price_log.on_day(day)
                except Exception as e:
                    logger.warning("change_baseline_lookup_failed", date=day.isoformat(), error=str(e))
                    snapshots = {}
                self._baseline = {m: s.price for m, s in snapshots.items()}
                self._baseline_day = day if snapshots else None
            if self._baseline:
                return self._baseline

        if previous.source in ("live", "cached"):
            return dict(previous.prices)
        return {}

    @staticmethod
    async def _calibrate(calibration: CalibrationEngine, prices: dict[Metal, Decimal]) -> None:
        if not await calibration.needs_calibration():
            return
        await calibration.calibrate(
            prices[Metal.GOLD],
            prices[Metal.SILVER],
            prices.get(Metal.PLATINUM),
            prices.get(Metal.PALLADIUM),
        )

    # ──────────────────────────────────────────────
    # Friday-close snapshot
    # ──────────────────────────────────────────────

    def _current_snapshot(self, now: datetime) -> CacheState | None:
        """The close snapshot if it was captured during the closure in progress at `now`.

        Without a calendar there is no closure boundary to check against, so
        the snapshot lives until the next open read clears it.
        """
        if self._close_snapshot is None:
            return None
        if self._calendar is None or self._close_captured_at is None:
            return self._close_snapshot
        start = self._calendar.closure_start(now)
        if start is None or self._close_captured_at < start:
            return None
        return self._close_snapshot

    def _predates_last_session(self, now: datetime) -> bool:
        """Whether the cached prices are too old to stand in for the last close."""
        if self._state.last_updated is None or self._state.source == "static-fallback":
            return True
        if self._calendar is None:
            return False
        return self._state.last_updated < self._calendar.last_session_start(now)

    def _drop_close_snapshot(self, event: str, *, clear_store: bool = True) -> None:
        logger.info(
            event,
            captured_at=self._close_captured_at.isoformat() if self._close_captured_at else None,
        )
        self._close_snapshot = None
        self._close_captured_at = None
        if clear_store and self._store is not None:
            self._background.submit("clear_close_snapshot", self._store.clear_close_snapshot())

    def _capture_close(self, now: datetime) -> None:
        self._close_snapshot = self._state.copy()
        self._close_captured_at = now
        logger.info(
            "market_close_snapshot_captured",
            source=self._close_snapshot.source,
            **{m.value: str(p) for m, p in self._close_snapshot.prices.items()},
        )
        if self._store is not None:
            self._background.submit(
                "save_close_snapshot",
                self._store.save_close_snapshot(self._close_snapshot, now),
            )

    # ──────────────────────────────────────────────
    # Startup and diagnostics
    # ──────────────────────────────────────────────

    async def warm_start(self) -> None:
        """Restore the newest logged prices, and the persisted close snapshot
        if it was captured during the current closure.
        """
        if self._store is not None:
            try:
                restored = await self._store.load_close_snapshot()
            except Exception as e:
                logger.warning("close_snapshot_restore_failed", error=str(e))
                restored = None
            if restored is not None:
                captured_at, snapshot = restored
                self._close_snapshot = snapshot
                self._close_captured_at = captured_at
                if self._current_snapshot(self._clock()) is None:
                    # the next capture overwrites the persisted row
                    self._drop_close_snapshot("close_snapshot_discarded", clear_store=False)
                else:
                    logger.info("close_snapshot_restored", captured_at=captured_at.isoformat())

        if self._price_log is not None:
            try:
                latest = await self._price_log.latest()
            except Exception as e:
                logger.warning("warm_start_price_log_failed", error=str(e))
                latest = {}
            if latest:
                prices = fallback_prices(self._settings)
                prices.update({m: s.price for m, s in latest.items()})
                self._state = CacheState(
                    prices=prices,
                    last_updated=max(s.timestamp for s in latest.values()),
                    source="cached",
                )
                logger.info(
                    "cache_warm_started",
                    last_updated=self._state.last_updated.isoformat(),  # type: ignore[union-attr]
                    metals=len(latest),
                )

    def status(self) -> dict:
        """Diagnostic view for the debug endpoint."""
        now = self._clock()
        age = self._state.age_minutes(now)
        return {
            "source": self._state.source,
            "lastUpdated": self._state.last_updated.isoformat() if self._state.last_updated else None,
            "cacheAgeMinutes": round(age, 1) if age is not None else None,
            "marketsClosed": self._is_market_closed(now),
            "hasCloseSnapshot": self._close_snapshot is not None,
            "refreshInFlight": self._inflight is not None,
            "upstreamCalls": self._upstream_calls,
            "backgroundPending": self._background.pending,
            "backgroundFailed": self._background.failed,
        }
