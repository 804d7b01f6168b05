"""Downsampled daily price series for charts and sparklines."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from metals.config import ApiSettings
from metals.data.price_log import PriceLog
from metals.exceptions import InvalidRequest
from metals.logging import get_logger
from metals.models import ALL_METALS, SeriesPoint
from metals.pricing.sampler import fill_gaps, sample
from metals.pricing.static_table import MonthlyPriceTable

logger = get_logger(__name__)

RANGE_DAYS: dict[str, int | None] = {
    "1M": 30,
    "3M": 90,
    "6M": 180,
    "1Y": 365,
    "5Y": 5 * 365,
    "ALL": None,
}

_ZERO = Decimal("0")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PriceHistory:
    """A sampled chart series plus how many daily points it came from."""

    range_key: str
    total_points: int
    points: list[SeriesPoint]

    def to_dict(self) -> dict:
        return {
            "success": True,
            "range": self.range_key,
            "totalPoints": self.total_points,
            "sampledPoints": len(self.points),
            "data": [p.to_dict() for p in self.points],
        }


class PriceHistoryService:
    """Builds daily series from the price log and the static table.

    Logged daily closes win over the table. Days with no value for any
    metal are left out; missing metals on the remaining days are filled
    from their neighbours before sampling.
    """

    def __init__(
        self,
        price_log: PriceLog,
        table: MonthlyPriceTable,
        settings: ApiSettings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._price_log = price_log
        self._table = table
        self._settings = settings or ApiSettings()
        self._clock = clock

    def _clamp(self, max_points: int | None) -> int:
        if max_points is None:
            return self._settings.history_default_points
        return max(1, min(max_points, self._settings.history_max_points))

    async def _start_date(self, range_key: str, today: date) -> date:
        days = RANGE_DAYS[range_key]
        if days is not None:
            return today - timedelta(days=days)

        candidates = [d for d in (self._table.earliest_date, await self._price_log.earliest_date()) if d]
        return min(candidates) if candidates else today

    async def history(self, range_key: str = "1Y", max_points: int | None = None) -> PriceHistory:
        """Daily series for `range_key`, sampled down to `max_points`."""
        range_key = range_key.upper()
        if range_key not in RANGE_DAYS:
            raise InvalidRequest(f"Range must be one of {', '.join(RANGE_DAYS)}")
        limit = self._clamp(max_points)

        today = self._clock().date()
        start = await self._start_date(range_key, today)
        closes = await self._price_log.daily_closes(start, today)

        points: list[SeriesPoint] = []
        day = start
        while day <= today:
            logged = closes.get(day, {})
            static = self._table.get(day) or {}
            values = {m.value: logged.get(m) or static.get(m) or _ZERO for m in ALL_METALS}
            if any(values.values()):
                points.append(SeriesPoint(date=day, values=values))
            day += timedelta(days=1)

        for metal in ALL_METALS:
            points = fill_gaps(points, metal.value)
        sampled = sample(points, limit)

        logger.debug(
            "price_history_built",
            range=range_key,
            total=len(points),
            sampled=len(sampled),
        )
        return PriceHistory(range_key=range_key, total_points=len(points), points=sampled)
