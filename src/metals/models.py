"""Shared data models for the metals price service.

All prices use Decimal and are rounded to cents at the boundary with
round_price(). Ratios are floats: they are multipliers, not money.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from metals.exceptions import InvalidRequest

CENT = Decimal("0.01")

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_RE = re.compile(r"^\d{2}:\d{2}$")


class Metal(str, Enum):
    """Tracked metals."""

    GOLD = "gold"
    SILVER = "silver"
    PLATINUM = "platinum"
    PALLADIUM = "palladium"


ALL_METALS: tuple[Metal, ...] = (
    Metal.GOLD,
    Metal.SILVER,
    Metal.PLATINUM,
    Metal.PALLADIUM,
)


class PriceSource(str, Enum):
    """Where a logged price snapshot came from."""

    LIVE = "live"
    ETF_DERIVED = "etf-derived"
    MACRO_MONTHLY = "macro-monthly"
    CACHE = "cache"
    STATIC_FALLBACK = "static-fallback"


def round_price(value: Decimal | float | int | str) -> Decimal:
    """Round a price to cents, half away from zero.

    Floats go through str() first so 2650.125 rounds to 2650.13 rather
    than to whatever its binary expansion happens to be.
    """
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_date(value: str) -> date:
    """Parse a strict YYYY-MM-DD string, raising InvalidRequest otherwise."""
    value = value.strip()
    if not _DATE_RE.match(value):
        raise InvalidRequest("Date must be in YYYY-MM-DD format")
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise InvalidRequest(f"Invalid calendar date: {value}") from None


def parse_time(value: str) -> time:
    """Parse a strict HH:MM string, raising InvalidRequest otherwise."""
    value = value.strip()
    if not _TIME_RE.match(value):
        raise InvalidRequest("Time must be in HH:MM format")
    hour, minute = int(value[:2]), int(value[3:])
    if hour > 23 or minute > 59:
        raise InvalidRequest(f"Invalid time of day: {value}")
    return time(hour, minute)


@dataclass(frozen=True)
class PriceSnapshot:
    """One immutable price observation for a single metal."""

    timestamp: datetime  # UTC
    metal: Metal
    price: Decimal
    source: PriceSource = PriceSource.LIVE


@dataclass(frozen=True)
class CalibrationRatio:
    """ETF price / spot price for one metal on one day."""

    date: date
    metal: Metal
    ratio: float
    etf_price: Decimal | None = None
    spot_price: Decimal | None = None


@dataclass
class PriceChange:
    """Day-over-day move for one metal."""

    amount: Decimal = Decimal("0")
    percent: Decimal = Decimal("0")
    prev_close: Decimal | None = None

    def to_dict(self) -> dict:
        return {
            "amount": float(self.amount),
            "percent": float(self.percent),
            "prevClose": float(self.prev_close) if self.prev_close is not None else None,
        }


@dataclass
class CacheState:
    """Current best-known live prices.

    Owned and mutated only by LiveSpotCache.refresh(); readers get copies.
    """

    prices: dict[Metal, Decimal]
    last_updated: datetime | None = None
    source: str = "static-fallback"
    change: dict[Metal, PriceChange] = field(default_factory=dict)
    markets_closed: bool = False

    def copy(self) -> CacheState:
        return CacheState(
            prices=dict(self.prices),
            last_updated=self.last_updated,
            source=self.source,
            change={m: PriceChange(c.amount, c.percent, c.prev_close) for m, c in self.change.items()},
            markets_closed=self.markets_closed,
        )

    def age_minutes(self, now: datetime) -> float | None:
        """Minutes since the last update, or None if never updated."""
        if self.last_updated is None:
            return None
        return (now - self.last_updated).total_seconds() / 60


@dataclass(frozen=True)
class HistoricalQuery:
    """A single historical price request."""

    date: date
    time: time | None = None
    metal: Metal | None = None  # None means all metals

    @classmethod
    def parse(
        cls,
        date_str: str | None,
        time_str: str | None = None,
        metal_str: str | None = None,
    ) -> HistoricalQuery:
        """Build a query from raw request strings, validating each field."""
        if not date_str:
            raise InvalidRequest("Date parameter required (YYYY-MM-DD)")
        query_date = parse_date(date_str)
        query_time = parse_time(time_str) if time_str else None

        metal: Metal | None = None
        if metal_str and metal_str.lower() != "all":
            try:
                metal = Metal(metal_str.lower())
            except ValueError:
                raise InvalidRequest(
                    "Metal must be one of gold, silver, platinum, palladium or all"
                ) from None
        return cls(date=query_date, time=query_time, metal=metal)

    @property
    def metals(self) -> tuple[Metal, ...]:
        """Metals this query needs a price for."""
        return (self.metal,) if self.metal is not None else ALL_METALS


@dataclass
class HistoricalResult:
    """Outcome of resolving a HistoricalQuery through the tier chain.

    `prices` holds None for metals the winning tier could not price;
    an unavailable result has every price None and granularity "none".
    """

    date: date
    time: time | None
    prices: dict[Metal, Decimal | None]
    source: str
    granularity: str
    daily_range: dict[Metal, dict[str, Decimal]] | None = None
    note: str | None = None

    @property
    def available(self) -> bool:
        return any(p is not None for p in self.prices.values())

    @classmethod
    def unavailable(
        cls, query: HistoricalQuery, note: str, source: str = "unavailable"
    ) -> HistoricalResult:
        return cls(
            date=query.date,
            time=query.time,
            prices={m: None for m in ALL_METALS},
            source=source,
            granularity="none",
            note=note,
        )


@dataclass
class SeriesPoint:
    """One chart point: a day and a value per metal."""

    date: date
    values: dict[str, Decimal]

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            **{name: float(value) for name, value in self.values.items()},
        }


@dataclass(frozen=True)
class EtfBar:
    """One daily OHLC bar for a proxy ETF."""

    symbol: str
    date: date
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: int | None = None


@dataclass
class LiveQuote:
    """Prices returned by a live source.

    A source may omit metals it does not cover; the cache carries the
    previous value forward for those.
    """

    prices: dict[Metal, Decimal]
    source: str
    timestamp: datetime
