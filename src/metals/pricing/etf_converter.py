"""Proxy-ETF price to implied spot price conversion.

Each ETF share represents a slowly eroding fraction of an ounce, so
spot = etf_price / ratio where ratio = etf_price / spot on the
calibration day (GLD ~0.092, SLV ~0.92).

Intraday estimates blend the day's open/high/low/close by time of day
before converting:
  before 10:00  -> 0.7 * open + 0.3 * close
  14:00 onwards -> 0.3 * open + 0.7 * close
  otherwise     -> mean of open, high, low, close
"""

from datetime import time
from decimal import Decimal

from metals.models import EtfBar, round_price

_MORNING_CUTOFF_HOUR = 10
_AFTERNOON_START_HOUR = 14
_HEAVY = Decimal("0.7")
_LIGHT = Decimal("0.3")


def to_spot(etf_price: Decimal, ratio: float) -> Decimal:
    """Convert an ETF price to an implied spot price, rounded to cents."""
    if ratio <= 0:
        raise ValueError(f"ratio must be positive, got {ratio}")
    return round_price(Decimal(etf_price) / Decimal(str(ratio)))


def blend_ohlc(bar: EtfBar, at: time | None = None) -> Decimal:
    """ETF price estimate for a time of day; the close when no time is given."""
    if at is None:
        return bar.close
    if at.hour < _MORNING_CUTOFF_HOUR:
        return _HEAVY * bar.open + _LIGHT * bar.close
    if at.hour >= _AFTERNOON_START_HOUR:
        return _LIGHT * bar.open + _HEAVY * bar.close
    return (bar.open + bar.high + bar.low + bar.close) / 4


def bar_to_spot(bar: EtfBar, ratio: float, at: time | None = None) -> Decimal:
    """Blend a bar for `at` and convert it to spot."""
    return to_spot(blend_ohlc(bar, at), ratio)


def daily_range(bar: EtfBar, ratio: float) -> dict[str, Decimal]:
    """The bar's low/high converted to spot, as a hint for the caller."""
    return {"low": to_spot(bar.low, ratio), "high": to_spot(bar.high, ratio)}
