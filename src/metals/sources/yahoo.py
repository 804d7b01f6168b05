"""Yahoo Finance chart API client for proxy-ETF daily bars -- fetched via httpx.

Proxy ETFs and their first trading days:
  GLD  2004-11-18 (gold)
  SLV  2006-04-28 (silver)
  PPLT 2010-01-06 (platinum)
  PALL 2010-01-08 (palladium)
"""

from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

import httpx

from metals.exceptions import UpstreamUnavailable
from metals.logging import get_logger
from metals.models import EtfBar, Metal
from metals.sources.client import EtfBarProvider
from metals.sources.http import get_json
from metals.sources.usage import UsageTracker

logger = get_logger(__name__)

_CHART_URL = "https://query1.finance.yahoo.com/v8/finance/chart/{symbol}"

PROXY_ETFS: dict[Metal, str] = {
    Metal.GOLD: "GLD",
    Metal.SILVER: "SLV",
    Metal.PLATINUM: "PPLT",
    Metal.PALLADIUM: "PALL",
}

ETF_LAUNCH_DATES: dict[str, date] = {
    "GLD": date(2004, 11, 18),
    "SLV": date(2006, 4, 28),
    "PPLT": date(2010, 1, 6),
    "PALL": date(2010, 1, 8),
}


def has_etf_data(metal: Metal, day: date) -> bool:
    """Whether the metal's proxy ETF was trading on `day`."""
    return day >= ETF_LAUNCH_DATES[PROXY_ETFS[metal]]


def _decimal(value) -> Decimal | None:  # type: ignore[no-untyped-def]
    return Decimal(str(value)) if value is not None else None


class YahooEtfProvider(EtfBarProvider):
    """Daily bars and latest closes from Yahoo's public chart endpoint."""

    def __init__(self, client: httpx.AsyncClient, usage: UsageTracker | None = None) -> None:
        self._client = client
        self._usage = usage

    def _record(self, kind: str, ok: bool) -> None:
        if self._usage is not None:
            self._usage.record("yahoo", kind, ok)

    async def _chart(self, symbol: str, params: dict, kind: str) -> dict:
        try:
            data = await get_json(
                self._client,
                _CHART_URL.format(symbol=symbol),
                source="yahoo",
                params=params,
            )
        except UpstreamUnavailable:
            self._record(kind, ok=False)
            raise

        chart = data.get("chart") or {}
        results = chart.get("result")
        if not results:
            self._record(kind, ok=False)
            raise UpstreamUnavailable(f"yahoo: no chart result for {symbol}: {chart.get('error')}")
        self._record(kind, ok=True)
        return results[0]

    async def fetch_daily_bar(self, symbol: str, day: date) -> EtfBar | None:
        start = datetime.combine(day, time(0, 0), tzinfo=timezone.utc)
        end = start + timedelta(days=1)
        result = await self._chart(
            symbol,
            {
                "period1": int(start.timestamp()),
                "period2": int(end.timestamp()),
                "interval": "1d",
                "includePrePost": "false",
            },
            kind="etf-bar",
        )

        timestamps = result.get("timestamp") or []
        quote = ((result.get("indicators") or {}).get("quote") or [{}])[0]
        opens = quote.get("open") or []
        highs = quote.get("high") or []
        lows = quote.get("low") or []
        closes = quote.get("close") or []
        volumes = quote.get("volume") or []

        for i, ts in enumerate(timestamps):
            if ts is None or datetime.fromtimestamp(ts, tz=timezone.utc).date() != day:
                continue
            values = [
                _decimal(series[i]) if i < len(series) else None
                for series in (opens, highs, lows, closes)
            ]
            if any(v is None or v <= 0 for v in values):
                continue
            open_, high, low, close = values
            volume = volumes[i] if i < len(volumes) else None
            return EtfBar(
                symbol=symbol,
                date=day,
                open=open_,  # type: ignore[arg-type]
                high=high,  # type: ignore[arg-type]
                low=low,  # type: ignore[arg-type]
                close=close,  # type: ignore[arg-type]
                volume=int(volume) if volume is not None else None,
            )

        logger.debug("yahoo_no_bar_for_day", symbol=symbol, date=day.isoformat())
        return None

    async def fetch_latest_close(self, symbol: str) -> Decimal | None:
        result = await self._chart(
            symbol, {"range": "5d", "interval": "1d"}, kind="etf-quote"
        )

        meta = result.get("meta") or {}
        market_price = meta.get("regularMarketPrice")
        if market_price:
            return Decimal(str(market_price))

        quote = ((result.get("indicators") or {}).get("quote") or [{}])[0]
        for close in reversed(quote.get("close") or []):
            if close:
                return Decimal(str(close))
        return None
