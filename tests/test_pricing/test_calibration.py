"""Tests for CalibrationEngine -- daily ratios, defaults and nearest-earlier lookup."""

from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from metals.data import PriceDataStore
from metals.exceptions import UpstreamUnavailable
from metals.models import CalibrationRatio, Metal
from metals.pricing import CalibrationEngine

TODAY = date(2025, 3, 12)

CLOSES = {
    "GLD": Decimal("243.80"),
    "SLV": Decimal("28.52"),
    "PPLT": Decimal("91.20"),
    "PALL": Decimal("92.16"),
}


def _etf_provider(closes: dict[str, Decimal | Exception]) -> AsyncMock:
    async def latest_close(symbol: str) -> Decimal | None:
        value = closes.get(symbol)
        if isinstance(value, Exception):
            raise value
        return value

    provider = AsyncMock()
    provider.fetch_latest_close = AsyncMock(side_effect=latest_close)
    return provider


@pytest.fixture
def engine(store: PriceDataStore, clock) -> CalibrationEngine:
    return CalibrationEngine(store, _etf_provider(CLOSES), clock=clock)


class TestCalibrate:
    @pytest.mark.asyncio
    async def test_ratio_is_etf_over_spot(self, engine: CalibrationEngine, store: PriceDataStore) -> None:
        ratios = await engine.calibrate(
            Decimal("2650.00"), Decimal("31.00"), Decimal("950.00"), Decimal("960.00")
        )

        assert ratios is not None
        assert ratios[Metal.GOLD] == pytest.approx(0.092)
        assert ratios[Metal.SILVER] == pytest.approx(0.92)
        assert ratios[Metal.PLATINUM] == pytest.approx(0.096)
        rows = await store.get_ratios_for(TODAY)
        assert len(rows) == 4
        assert engine.last_calibrated_at is not None

    @pytest.mark.asyncio
    async def test_second_call_same_day_is_noop(self, engine: CalibrationEngine, store: PriceDataStore) -> None:
        await engine.calibrate(Decimal("2650.00"), Decimal("31.00"))
        ratios = await engine.calibrate(Decimal("3000.00"), Decimal("40.00"))

        rows = await store.get_ratios_for(TODAY)
        assert [r.metal for r in rows] == [Metal.GOLD, Metal.SILVER]
        assert ratios is not None
        assert ratios[Metal.GOLD] == pytest.approx(0.092)

    @pytest.mark.asyncio
    async def test_new_day_calibrates_again(self, engine: CalibrationEngine, store: PriceDataStore, clock) -> None:
        await engine.calibrate(Decimal("2650.00"), Decimal("31.00"))
        clock.advance(days=1)

        await engine.calibrate(Decimal("2438.00"), Decimal("31.00"))

        rows = await store.get_ratios_for(date(2025, 3, 13))
        assert rows[0].metal == Metal.GOLD
        assert rows[0].ratio == pytest.approx(0.1)

    @pytest.mark.asyncio
    async def test_failed_etf_quote_is_skipped(self, store: PriceDataStore, clock) -> None:
        closes: dict[str, Decimal | Exception] = {**CLOSES, "SLV": UpstreamUnavailable("yahoo down")}
        engine = CalibrationEngine(store, _etf_provider(closes), clock=clock)

        ratios = await engine.calibrate(Decimal("2650.00"), Decimal("31.00"))

        assert ratios is not None
        assert ratios[Metal.GOLD] == pytest.approx(0.092)
        assert ratios[Metal.SILVER] == engine.defaults[Metal.SILVER]
        assert [r.metal for r in await store.get_ratios_for(TODAY)] == [Metal.GOLD]

    @pytest.mark.asyncio
    async def test_no_quotes_returns_none(self, store: PriceDataStore, clock) -> None:
        engine = CalibrationEngine(store, _etf_provider({}), clock=clock)

        assert await engine.calibrate(Decimal("2650.00"), Decimal("31.00")) is None
        assert await engine.needs_calibration()

    @pytest.mark.asyncio
    async def test_needs_calibration(self, engine: CalibrationEngine) -> None:
        assert await engine.needs_calibration()
        await engine.calibrate(Decimal("2650.00"), Decimal("31.00"))
        assert not await engine.needs_calibration()


class TestRatioLookup:
    @pytest.mark.asyncio
    async def test_defaults_without_calibration(self, engine: CalibrationEngine) -> None:
        ratios = await engine.get_ratio_for_date(date(2020, 1, 2))
        assert ratios == engine.defaults

    @pytest.mark.asyncio
    async def test_nearest_earlier_ratio(self, engine: CalibrationEngine, store: PriceDataStore) -> None:
        await store.insert_ratios([
            CalibrationRatio(date=date(2025, 1, 10), metal=Metal.GOLD, ratio=0.0925),
            CalibrationRatio(date=date(2025, 2, 10), metal=Metal.GOLD, ratio=0.0921),
        ])

        assert (await engine.get_ratio_for_date(date(2025, 2, 1)))[Metal.GOLD] == 0.0925
        assert (await engine.get_ratio_for_date(date(2025, 3, 1)))[Metal.GOLD] == 0.0921
        assert (await engine.get_ratio_for_date(date(2025, 1, 1)))[Metal.GOLD] == 0.092

    @pytest.mark.asyncio
    async def test_override_replaces_ratio(self, engine: CalibrationEngine) -> None:
        await engine.calibrate(Decimal("2650.00"), Decimal("31.00"))

        await engine.override(TODAY, Metal.GOLD, 0.0915)

        assert (await engine.get_ratio_for_date(TODAY))[Metal.GOLD] == 0.0915

    @pytest.mark.asyncio
    async def test_override_rejects_non_positive(self, engine: CalibrationEngine) -> None:
        with pytest.raises(ValueError):
            await engine.override(TODAY, Metal.GOLD, 0)
