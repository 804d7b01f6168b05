"""Live market state: trading calendar, the live spot cache and its background runner."""

from metals.market.background import BackgroundTasks
from metals.market.spot_cache import LiveSpotCache, compute_change, fallback_prices
from metals.market.trading_hours import MarketCalendar

__all__ = [
    "BackgroundTasks",
    "LiveSpotCache",
    "MarketCalendar",
    "compute_change",
    "fallback_prices",
]
