"""MetalPriceAPI client -- primary live source and historical-day source.

MetalPriceAPI quotes metals as inverse rates against the base currency
(troy ounces per USD), so a price per ounce is 1 / rate.
"""

from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation

import httpx

from metals.exceptions import UpstreamUnavailable
from metals.logging import get_logger
from metals.models import LiveQuote, Metal, round_price
from metals.sources.client import HistoricalSpotSource, LiveSpotSource
from metals.sources.http import get_json
from metals.sources.usage import UsageTracker

logger = get_logger(__name__)

BASE_URL = "https://api.metalpriceapi.com/v1"

METAL_CODES: dict[Metal, str] = {
    Metal.GOLD: "XAU",
    Metal.SILVER: "XAG",
    Metal.PLATINUM: "XPT",
    Metal.PALLADIUM: "XPD",
}


def parse_inverse_rates(data: dict, metals: tuple[Metal, ...]) -> dict[Metal, Decimal]:
    """Convert {"rates": {"XAU": 0.000377, ...}} into prices per ounce.

    Metals with a missing, zero or unparseable rate are left out.
    """
    rates = data.get("rates") or {}
    prices: dict[Metal, Decimal] = {}
    for metal in metals:
        raw = rates.get(METAL_CODES[metal])
        if raw is None:
            continue
        try:
            rate = Decimal(str(raw))
        except InvalidOperation:
            logger.warning("metalpriceapi_invalid_rate", metal=metal.value, raw=raw)
            continue
        if rate <= 0:
            continue
        prices[metal] = round_price(Decimal(1) / rate)
    return prices


class MetalPriceApiSource(LiveSpotSource, HistoricalSpotSource):
    """Live and historical spot prices from api.metalpriceapi.com."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        usage: UsageTracker | None = None,
    ) -> None:
        self._client = client
        self._api_key = api_key
        self._usage = usage

    @property
    def name(self) -> str:
        return "metalpriceapi"

    def _record(self, kind: str, ok: bool) -> None:
        if self._usage is not None:
            self._usage.record(self.name, kind, ok)

    async def fetch_live(self) -> LiveQuote:
        if not self._api_key:
            raise UpstreamUnavailable("metalpriceapi: no API key configured")

        try:
            data = await get_json(
                self._client,
                f"{BASE_URL}/latest",
                source=self.name,
                params={
                    "api_key": self._api_key,
                    "base": "USD",
                    "currencies": ",".join(METAL_CODES.values()),
                },
            )
        except UpstreamUnavailable:
            self._record("live", ok=False)
            raise

        prices = parse_inverse_rates(data, tuple(METAL_CODES))
        ok = Metal.GOLD in prices and Metal.SILVER in prices
        self._record("live", ok=ok)
        if not ok:
            raise UpstreamUnavailable(
                f"metalpriceapi: incomplete live response ({data.get('error', 'no rates')})"
            )

        logger.debug(
            "metalpriceapi_live_prices",
            **{m.value: str(p) for m, p in prices.items()},
        )
        return LiveQuote(
            prices=prices,
            source=self.name,
            timestamp=datetime.now(timezone.utc),
        )

    async def fetch_historical(self, day: date) -> dict[Metal, Decimal]:
        if not self._api_key:
            raise UpstreamUnavailable("metalpriceapi: no API key configured")

        try:
            data = await get_json(
                self._client,
                f"{BASE_URL}/{day.isoformat()}",
                source=self.name,
                params={
                    "api_key": self._api_key,
                    "base": "USD",
                    "currencies": ",".join(METAL_CODES.values()),
                },
            )
        except UpstreamUnavailable:
            self._record("historical", ok=False)
            raise

        if not data.get("success", True):
            self._record("historical", ok=False)
            raise UpstreamUnavailable(
                f"metalpriceapi: success=false for {day.isoformat()}: {data.get('error')}"
            )

        prices = parse_inverse_rates(data, tuple(METAL_CODES))
        self._record("historical", ok=bool(prices))
        logger.debug(
            "metalpriceapi_historical_prices",
            date=day.isoformat(),
            **{m.value: str(p) for m, p in prices.items()},
        )
        return prices
