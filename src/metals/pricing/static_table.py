"""Static monthly gold/silver price table, expanded to daily lookups.

The source file maps "YYYY-MM" to {"gold": x, "silver": y}; every day of
the month gets the month's value. When no file is configured, or it
cannot be read, a small built-in table of monthly averages is used.
Platinum and palladium are not covered.
"""

import calendar
import json
from datetime import date
from decimal import Decimal
from pathlib import Path

from metals.logging import get_logger
from metals.models import Metal, round_price

logger = get_logger(__name__)

# Monthly averages, 2022-01 .. 2024-12
_BUILTIN_GOLD = {
    "2024-12": 2650, "2024-11": 2700, "2024-10": 2750, "2024-09": 2650,
    "2024-08": 2500, "2024-07": 2400, "2024-06": 2350, "2024-05": 2350,
    "2024-04": 2350, "2024-03": 2200, "2024-02": 2050, "2024-01": 2050,
    "2023-12": 2050, "2023-11": 2000, "2023-10": 1980, "2023-09": 1920,
    "2023-08": 1940, "2023-07": 1960, "2023-06": 1920, "2023-05": 1980,
    "2023-04": 2000, "2023-03": 1980, "2023-02": 1850, "2023-01": 1920,
    "2022-12": 1800, "2022-11": 1750, "2022-10": 1650, "2022-09": 1680,
    "2022-08": 1750, "2022-07": 1730, "2022-06": 1830, "2022-05": 1850,
    "2022-04": 1920, "2022-03": 1950, "2022-02": 1900, "2022-01": 1820,
}  # fmt: skip

_BUILTIN_SILVER = {
    "2024-12": 31, "2024-11": 32, "2024-10": 33, "2024-09": 31,
    "2024-08": 28, "2024-07": 29, "2024-06": 29, "2024-05": 27,
    "2024-04": 27, "2024-03": 25, "2024-02": 23, "2024-01": 23,
    "2023-12": 24, "2023-11": 24, "2023-10": 23, "2023-09": 23,
    "2023-08": 24, "2023-07": 25, "2023-06": 23, "2023-05": 24,
    "2023-04": 25, "2023-03": 23, "2023-02": 22, "2023-01": 24,
    "2022-12": 24, "2022-11": 21, "2022-10": 19, "2022-09": 19,
    "2022-08": 20, "2022-07": 19, "2022-06": 21, "2022-05": 22,
    "2022-04": 24, "2022-03": 25, "2022-02": 24, "2022-01": 24,
}  # fmt: skip


def builtin_months() -> dict[str, dict[str, float]]:
    return {
        month: {"gold": gold, "silver": _BUILTIN_SILVER[month]}
        for month, gold in _BUILTIN_GOLD.items()
    }


class MonthlyPriceTable:
    """Exact-day lookups over month-level gold/silver prices.

    Usage:
        table = MonthlyPriceTable.from_file("data/historical-prices.json")
        prices = table.get(date(2023, 9, 15))  # {Metal.GOLD: ..., Metal.SILVER: ...}
    """

    def __init__(self, months: dict[str, dict[str, float]], *, builtin: bool = False) -> None:
        self._daily: dict[date, dict[Metal, Decimal]] = {}
        self._builtin = builtin
        for month, prices in months.items():
            self._expand_month(month, prices)

    @classmethod
    def from_file(cls, path: str | Path | None) -> "MonthlyPriceTable":
        """Load a JSON month table, falling back to the built-in one."""
        if path is None:
            logger.info("static_table_builtin_loaded", reason="no_path")
            return cls(builtin_months(), builtin=True)
        try:
            months = json.loads(Path(path).read_text(encoding="utf-8"))
            if not isinstance(months, dict):
                raise ValueError("top-level JSON value must be an object")
            table = cls(months)
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning("static_table_load_failed", path=str(path), error=str(e))
            return cls(builtin_months(), builtin=True)

        logger.info("static_table_loaded", path=str(path), days=len(table))
        return table

    def _expand_month(self, month: str, prices: dict[str, float]) -> None:
        try:
            year, month_num = (int(part) for part in month.split("-"))
            days = calendar.monthrange(year, month_num)[1]
        except ValueError:
            logger.warning("static_table_bad_month", month=month)
            return

        values: dict[Metal, Decimal] = {}
        for metal in (Metal.GOLD, Metal.SILVER):
            raw = prices.get(metal.value)
            if raw is not None and raw > 0:
                values[metal] = round_price(raw)
        if not values:
            return
        for day in range(1, days + 1):
            self._daily[date(year, month_num, day)] = values

    def __len__(self) -> int:
        return len(self._daily)

    @property
    def loaded(self) -> bool:
        return bool(self._daily)

    @property
    def builtin(self) -> bool:
        return self._builtin

    @property
    def earliest_date(self) -> date | None:
        return min(self._daily) if self._daily else None

    def get(self, day: date) -> dict[Metal, Decimal] | None:
        """Prices for an exact calendar day, or None when the day is not loaded."""
        values = self._daily.get(day)
        return dict(values) if values is not None else None
