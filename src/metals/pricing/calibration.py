"""Daily ETF-to-spot ratio calibration.

ETF share entitlements erode with the expense ratio (~0.4-0.5%/year), so
the ratio drifts. Once per UTC day, after a successful live refresh, the
engine compares each live spot price with its proxy ETF's latest close
and stores ratio = etf_close / spot. Conversions for any date use that
date's ratio, the nearest earlier one, or a hardcoded default, so ETF
conversion never waits on calibration data.
"""

import asyncio
from collections.abc import Callable
from datetime import date, datetime, timezone
from decimal import Decimal

from metals.config import CalibrationSettings
from metals.data.store import PriceDataStore
from metals.exceptions import UpstreamUnavailable
from metals.logging import get_logger
from metals.models import ALL_METALS, CalibrationRatio, Metal
from metals.sources.client import EtfBarProvider
from metals.sources.yahoo import PROXY_ETFS

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CalibrationEngine:
    """Computes, persists and serves per-metal ETF/spot ratios.

    Args:
        store: Persistence for CalibrationRatio rows.
        etf_provider: Source of the latest ETF closes.
        settings: Default ratios used when no calibration exists.
        clock: Returns the current UTC time (injectable for tests).
    """

    def __init__(
        self,
        store: PriceDataStore,
        etf_provider: EtfBarProvider,
        settings: CalibrationSettings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._etf_provider = etf_provider
        self._settings = settings or CalibrationSettings()
        self._clock = clock
        self._lock = asyncio.Lock()
        self._cache_date: date | None = None
        self._cached: dict[Metal, float] = {}
        self._last_calibrated_at: datetime | None = None

    @property
    def defaults(self) -> dict[Metal, float]:
        return {
            Metal.GOLD: self._settings.default_gold_ratio,
            Metal.SILVER: self._settings.default_silver_ratio,
            Metal.PLATINUM: self._settings.default_platinum_ratio,
            Metal.PALLADIUM: self._settings.default_palladium_ratio,
        }

    @property
    def last_calibrated_at(self) -> datetime | None:
        return self._last_calibrated_at

    async def needs_calibration(self) -> bool:
        """True iff no ratio has been recorded for today's UTC date."""
        today = self._clock().date()
        if self._cache_date == today:
            return False
        return not await self._store.has_ratios_for(today)

    async def calibrate(
        self,
        gold_spot: Decimal,
        silver_spot: Decimal,
        platinum_spot: Decimal | None = None,
        palladium_spot: Decimal | None = None,
    ) -> dict[Metal, float] | None:
        """Record today's ratios from live spot prices. No-op if today is done.

        Metals without a positive spot price or an ETF close are skipped and
        keep resolving to their previous ratio. Returns the ratios now in
        effect for today, or None when nothing could be calibrated.
        """
        spots: dict[Metal, Decimal | None] = {
            Metal.GOLD: gold_spot,
            Metal.SILVER: silver_spot,
            Metal.PLATINUM: platinum_spot,
            Metal.PALLADIUM: palladium_spot,
        }

        async with self._lock:
            today = self._clock().date()
            if self._cache_date == today or await self._store.has_ratios_for(today):
                logger.debug("calibration_already_done", date=today.isoformat())
                return await self.get_ratio_for_date(today)

            metals = [m for m in ALL_METALS if spots[m] is not None and spots[m] > 0]  # type: ignore[operator]
            closes = await asyncio.gather(
                *(self._etf_provider.fetch_latest_close(PROXY_ETFS[m]) for m in metals),
                return_exceptions=True,
            )

            rows: list[CalibrationRatio] = []
            for metal, close in zip(metals, closes):
                if isinstance(close, UpstreamUnavailable):
                    logger.warning(
                        "calibration_etf_quote_failed",
                        metal=metal.value,
                        etf=PROXY_ETFS[metal],
                        error=str(close),
                    )
                    continue
                if isinstance(close, BaseException):
                    raise close
                if close is None or close <= 0:
                    continue
                spot = Decimal(spots[metal])  # type: ignore[arg-type]
                rows.append(
                    CalibrationRatio(
                        date=today,
                        metal=metal,
                        ratio=float(close / spot),
                        etf_price=close,
                        spot_price=spot,
                    )
                )

            if not rows:
                logger.warning("calibration_skipped_no_etf_quotes", date=today.isoformat())
                return None

            inserted = await self._store.insert_ratios(rows)
            self._cache_date = today
            self._cached = {r.metal: r.ratio for r in rows}
            self._last_calibrated_at = self._clock()

            logger.info(
                "calibration_completed",
                date=today.isoformat(),
                inserted=inserted,
                **{r.metal.value: round(r.ratio, 6) for r in rows},
            )
            return await self.get_ratio_for_date(today)

    async def get_ratio_for_date(self, day: date) -> dict[Metal, float]:
        """Ratio per metal for `day`: exact, else nearest earlier, else default."""
        ratios = dict(self.defaults)
        for metal in ALL_METALS:
            if self._cache_date == day and metal in self._cached:
                ratios[metal] = self._cached[metal]
                continue
            try:
                row = await self._store.get_ratio_on_or_before(metal, day)
            except Exception as e:
                logger.warning(
                    "calibration_ratio_lookup_failed",
                    metal=metal.value,
                    date=day.isoformat(),
                    error=str(e),
                )
                continue
            if row is not None and row.ratio > 0:
                ratios[metal] = row.ratio
        return ratios

    async def override(self, day: date, metal: Metal, ratio: float) -> None:
        """Manually replace the ratio for (metal, day)."""
        if ratio <= 0:
            raise ValueError(f"ratio must be positive, got {ratio}")
        await self._store.replace_ratio(CalibrationRatio(date=day, metal=metal, ratio=ratio))
        if self._cache_date == day:
            self._cached[metal] = ratio
