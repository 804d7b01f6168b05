"""Tests for PriceDataStore -- calibration ratios, ETF bars and the close snapshot."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from metals.data import PriceDatabase, PriceDataStore
from metals.exceptions import StoreError
from metals.models import CacheState, CalibrationRatio, EtfBar, Metal


def _ratio(day: date, metal: Metal = Metal.GOLD, ratio: float = 0.092) -> CalibrationRatio:
    return CalibrationRatio(
        date=day,
        metal=metal,
        ratio=ratio,
        etf_price=Decimal("244.00"),
        spot_price=Decimal("2650.00"),
    )


class TestCalibrationRatios:
    @pytest.mark.asyncio
    async def test_insert_is_once_per_metal_and_day(self, store: PriceDataStore) -> None:
        day = date(2025, 3, 12)
        assert await store.insert_ratios([_ratio(day)]) == 1
        assert await store.insert_ratios([_ratio(day, ratio=0.5)]) == 0

        rows = await store.get_ratios_for(day)
        assert len(rows) == 1
        assert rows[0].ratio == pytest.approx(0.092)
        assert rows[0].etf_price == Decimal("244.00")

    @pytest.mark.asyncio
    async def test_has_ratios_for(self, store: PriceDataStore) -> None:
        day = date(2025, 3, 12)
        assert not await store.has_ratios_for(day)
        await store.insert_ratios([_ratio(day)])
        assert await store.has_ratios_for(day)

    @pytest.mark.asyncio
    async def test_on_or_before_picks_nearest_earlier(self, store: PriceDataStore) -> None:
        await store.insert_ratios([
            _ratio(date(2025, 3, 1), ratio=0.0910),
            _ratio(date(2025, 3, 10), ratio=0.0915),
            _ratio(date(2025, 3, 20), ratio=0.0920),
        ])

        row = await store.get_ratio_on_or_before(Metal.GOLD, date(2025, 3, 15))

        assert row is not None
        assert row.date == date(2025, 3, 10)
        assert row.ratio == pytest.approx(0.0915)
        assert await store.get_ratio_on_or_before(Metal.GOLD, date(2025, 2, 1)) is None
        assert await store.get_ratio_on_or_before(Metal.SILVER, date(2025, 3, 15)) is None

    @pytest.mark.asyncio
    async def test_replace_ratio_overrides(self, store: PriceDataStore) -> None:
        day = date(2025, 3, 12)
        await store.insert_ratios([_ratio(day)])
        await store.replace_ratio(CalibrationRatio(date=day, metal=Metal.GOLD, ratio=0.1))

        row = await store.get_ratio_on_or_before(Metal.GOLD, day)
        assert row is not None
        assert row.ratio == pytest.approx(0.1)


class TestEtfBars:
    @pytest.mark.asyncio
    async def test_bar_round_trip_keeps_decimals(self, store: PriceDataStore) -> None:
        bar = EtfBar(
            symbol="GLD",
            date=date(2025, 3, 11),
            open=Decimal("240.10"),
            high=Decimal("242.55"),
            low=Decimal("239.80"),
            close=Decimal("241.95"),
            volume=8_000_000,
        )
        await store.insert_etf_bar(bar)

        assert await store.get_etf_bar("GLD", date(2025, 3, 11)) == bar
        assert await store.get_etf_bar("SLV", date(2025, 3, 11)) is None


class TestCloseSnapshot:
    @pytest.mark.asyncio
    async def test_save_load_clear(self, store: PriceDataStore) -> None:
        updated = datetime(2025, 3, 14, 21, 55, tzinfo=timezone.utc)
        captured = datetime(2025, 3, 14, 22, 0, tzinfo=timezone.utc)
        state = CacheState(
            prices={Metal.GOLD: Decimal("2650.13"), Metal.SILVER: Decimal("31.00")},
            last_updated=updated,
            source="live",
        )

        assert await store.load_close_snapshot() is None
        await store.save_close_snapshot(state, captured)

        loaded = await store.load_close_snapshot()
        assert loaded is not None
        captured_at, restored = loaded
        assert captured_at == captured
        assert restored.prices == state.prices
        assert restored.last_updated == updated
        assert restored.source == "live"

        await store.clear_close_snapshot()
        assert await store.load_close_snapshot() is None


class TestDatabase:
    def test_unconnected_access_raises(self) -> None:
        with pytest.raises(StoreError):
            PriceDatabase(":memory:").db

    @pytest.mark.asyncio
    async def test_context_manager_connects_and_closes(self) -> None:
        async with PriceDatabase(":memory:") as db:
            assert db.is_connected
        assert not db.is_connected
