"""GoldAPI.io client -- secondary live source.

Only gold and silver are requested; platinum and palladium are carried
over from the previous cached value when this source wins.
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

import httpx

from metals.exceptions import UpstreamUnavailable
from metals.logging import get_logger
from metals.models import LiveQuote, Metal, round_price
from metals.sources.client import LiveSpotSource
from metals.sources.http import get_json
from metals.sources.usage import UsageTracker

logger = get_logger(__name__)

BASE_URL = "https://www.goldapi.io/api"

_SYMBOLS: dict[Metal, str] = {
    Metal.GOLD: "XAU",
    Metal.SILVER: "XAG",
}


class GoldApiSource(LiveSpotSource):
    """Live gold and silver spot from goldapi.io."""

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
        return "goldapi-io"

    async def _fetch_one(self, metal: Metal) -> Decimal:
        data = await get_json(
            self._client,
            f"{BASE_URL}/{_SYMBOLS[metal]}/USD",
            source=self.name,
            headers={"x-access-token": self._api_key},
        )
        raw = data.get("price")
        if raw is None:
            raise UpstreamUnavailable(f"goldapi-io: no price for {metal.value}")
        try:
            price = Decimal(str(raw))
        except InvalidOperation:
            raise UpstreamUnavailable(f"goldapi-io: bad price for {metal.value}: {raw!r}") from None
        if price <= 0:
            raise UpstreamUnavailable(f"goldapi-io: no price for {metal.value}")
        return round_price(price)

    async def fetch_live(self) -> LiveQuote:
        if not self._api_key:
            raise UpstreamUnavailable("goldapi-io: no API key configured")

        try:
            gold, silver = await asyncio.gather(
                self._fetch_one(Metal.GOLD),
                self._fetch_one(Metal.SILVER),
            )
        except UpstreamUnavailable:
            if self._usage is not None:
                self._usage.record(self.name, "live", ok=False)
            raise

        if self._usage is not None:
            self._usage.record(self.name, "live", ok=True)

        return LiveQuote(
            prices={Metal.GOLD: gold, Metal.SILVER: silver},
            source=self.name,
            timestamp=datetime.now(timezone.utc),
        )
