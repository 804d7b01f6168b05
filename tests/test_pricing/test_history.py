"""Tests for PriceHistoryService -- range selection, merging and sampling."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from metals.config import ApiSettings
from metals.data import PriceLog
from metals.exceptions import InvalidRequest
from metals.models import Metal, PriceSnapshot
from metals.pricing import MonthlyPriceTable
from metals.pricing.history import PriceHistoryService


def _service(price_log: PriceLog, clock, table: MonthlyPriceTable | None = None) -> PriceHistoryService:
    return PriceHistoryService(price_log, table or MonthlyPriceTable.from_file(None), ApiSettings(), clock)


async def _log_close(price_log: PriceLog, day: date, gold: str, silver: str = "31.00") -> None:
    at = datetime(day.year, day.month, day.day, 20, 0, tzinfo=timezone.utc)
    await price_log.append([
        PriceSnapshot(timestamp=at, metal=Metal.GOLD, price=Decimal(gold)),
        PriceSnapshot(timestamp=at, metal=Metal.SILVER, price=Decimal(silver)),
    ])


class TestPriceHistory:
    @pytest.mark.asyncio
    async def test_invalid_range(self, price_log: PriceLog, clock) -> None:
        with pytest.raises(InvalidRequest, match="Range must be one of"):
            await _service(price_log, clock).history("2W")

    @pytest.mark.asyncio
    async def test_logged_closes_only(self, price_log: PriceLog, clock) -> None:
        await _log_close(price_log, date(2025, 3, 3), "2600.00")
        await _log_close(price_log, date(2025, 3, 10), "2640.00")

        history = await _service(price_log, clock).history("1m")

        assert history.range_key == "1M"
        assert history.total_points == 2
        assert [p.date for p in history.points] == [date(2025, 3, 3), date(2025, 3, 10)]
        assert history.points[1].values["gold"] == Decimal("2640.00")

    @pytest.mark.asyncio
    async def test_logged_close_wins_over_table(self, price_log: PriceLog, clock) -> None:
        table = MonthlyPriceTable({"2025-03": {"gold": 2500, "silver": 30}})
        await _log_close(price_log, date(2025, 3, 11), "2600.00")

        history = await _service(price_log, clock, table).history("1M", max_points=200)
        by_day = {p.date: p.values for p in history.points}

        assert history.total_points == 12  # 2025-03-01 .. 2025-03-12
        assert by_day[date(2025, 3, 11)]["gold"] == Decimal("2600.00")
        assert by_day[date(2025, 3, 10)]["gold"] == Decimal("2500.00")

    @pytest.mark.asyncio
    async def test_missing_metal_filled_from_neighbours(self, price_log: PriceLog, clock) -> None:
        table = MonthlyPriceTable({"2025-03": {"gold": 2500}})
        await _log_close(price_log, date(2025, 3, 5), "2550.00", silver="30.50")

        history = await _service(price_log, clock, table).history("1M", max_points=200)

        assert all(p.values["silver"] == Decimal("30.50") for p in history.points)

    @pytest.mark.asyncio
    async def test_default_and_capped_point_counts(self, price_log: PriceLog, clock) -> None:
        service = _service(price_log, clock)

        default = await service.history("5Y")
        capped = await service.history("5Y", max_points=5000)
        floor = await service.history("5Y", max_points=0)

        assert default.total_points == 1096  # built-in table, 2022 .. 2024
        assert len(default.points) == 60
        assert len(capped.points) == 200
        assert len(floor.points) == 1
        assert default.points[0].date == date(2022, 1, 1)
        assert default.points[-1].date == date(2024, 12, 31)

    @pytest.mark.asyncio
    async def test_all_starts_at_earliest_data(self, price_log: PriceLog, clock) -> None:
        table = MonthlyPriceTable({"2010-01": {"gold": 1100, "silver": 17}})

        history = await _service(price_log, clock, table).history("ALL", max_points=200)

        assert history.points[0].date == date(2010, 1, 1)
        assert history.total_points == 31

    @pytest.mark.asyncio
    async def test_to_dict(self, price_log: PriceLog, clock) -> None:
        await _log_close(price_log, date(2025, 3, 10), "2640.00")

        payload = (await _service(price_log, clock).history("1M")).to_dict()

        assert payload["success"] is True
        assert payload["range"] == "1M"
        assert payload["totalPoints"] == payload["sampledPoints"] == 1
        assert payload["data"][0]["date"] == "2025-03-10"
        assert payload["data"][0]["gold"] == 2640.0
