"""Abstract upstream price source interfaces.

Pricing code depends only on these contracts, keeping vendor-specific
HTTP details isolated in the concrete implementations.

Implementations raise UpstreamUnavailable for timeouts, HTTP errors and
malformed payloads; "no data for that day" is a normal None/empty result.
"""

from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal

from metals.models import EtfBar, LiveQuote, Metal


class LiveSpotSource(ABC):
    """A source of current spot prices."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Short label recorded in logs and usage stats."""
        ...

    @abstractmethod
    async def fetch_live(self) -> LiveQuote:
        """Fetch current spot prices per troy ounce in USD."""
        ...


class HistoricalSpotSource(ABC):
    """A source of spot prices for a past calendar day."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    async def fetch_historical(self, day: date) -> dict[Metal, Decimal]:
        """Fetch per-metal prices for `day`. Empty dict when the day is not covered."""
        ...


class EtfBarProvider(ABC):
    """A source of proxy-ETF daily bars."""

    @abstractmethod
    async def fetch_daily_bar(self, symbol: str, day: date) -> EtfBar | None:
        """Daily OHLC bar for `symbol` on `day`, or None if the ETF did not trade."""
        ...

    @abstractmethod
    async def fetch_latest_close(self, symbol: str) -> Decimal | None:
        """Most recent available close (or last trade) for `symbol`."""
        ...
