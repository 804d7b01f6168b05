"""Tests for shared models: price rounding, request parsing, value objects."""

from datetime import date, datetime, time, timezone
from decimal import Decimal

import pytest

from metals.exceptions import InvalidRequest
from metals.models import (
    ALL_METALS,
    CacheState,
    HistoricalQuery,
    HistoricalResult,
    Metal,
    PriceChange,
    parse_date,
    parse_time,
    round_price,
)


class TestRoundPrice:
    def test_half_rounds_away_from_zero(self) -> None:
        assert round_price(2650.125) == Decimal("2650.13")
        assert round_price(Decimal("-1.005")) == Decimal("-1.01")

    def test_rounds_down_below_half(self) -> None:
        assert round_price(31.004) == Decimal("31.00")

    def test_accepts_strings_and_ints(self) -> None:
        assert round_price("1.999") == Decimal("2.00")
        assert round_price(7) == Decimal("7.00")


class TestParsing:
    def test_parse_date_valid(self) -> None:
        assert parse_date(" 2024-02-29 ") == date(2024, 2, 29)

    @pytest.mark.parametrize("value", ["2024-1-01", "20240101", "2024/01/01", ""])
    def test_parse_date_bad_format(self, value: str) -> None:
        with pytest.raises(InvalidRequest, match="YYYY-MM-DD"):
            parse_date(value)

    def test_parse_date_impossible_day(self) -> None:
        with pytest.raises(InvalidRequest, match="Invalid calendar date"):
            parse_date("2023-02-30")

    def test_parse_time(self) -> None:
        assert parse_time("09:30") == time(9, 30)

    @pytest.mark.parametrize("value", ["9:30", "0930", "09:30:00"])
    def test_parse_time_bad_format(self, value: str) -> None:
        with pytest.raises(InvalidRequest, match="HH:MM"):
            parse_time(value)

    def test_parse_time_out_of_range(self) -> None:
        with pytest.raises(InvalidRequest):
            parse_time("24:00")


class TestHistoricalQuery:
    def test_missing_date(self) -> None:
        with pytest.raises(InvalidRequest, match="Date parameter required"):
            HistoricalQuery.parse(None)

    def test_all_metals_by_default(self) -> None:
        query = HistoricalQuery.parse("2023-09-15")
        assert query.metal is None
        assert query.metals == ALL_METALS

    def test_single_metal_case_insensitive(self) -> None:
        query = HistoricalQuery.parse("2023-09-15", "14:30", "Silver")
        assert query.metal == Metal.SILVER
        assert query.time == time(14, 30)
        assert query.metals == (Metal.SILVER,)

    def test_explicit_all(self) -> None:
        assert HistoricalQuery.parse("2023-09-15", metal_str="all").metal is None

    def test_unknown_metal(self) -> None:
        with pytest.raises(InvalidRequest, match="Metal must be"):
            HistoricalQuery.parse("2023-09-15", metal_str="copper")


class TestValueObjects:
    def test_unavailable_result(self) -> None:
        query = HistoricalQuery.parse("2010-05-05")
        result = HistoricalResult.unavailable(query, "nothing")
        assert not result.available
        assert result.granularity == "none"
        assert all(result.prices[m] is None for m in ALL_METALS)

    def test_price_change_to_dict(self) -> None:
        change = PriceChange(Decimal("12.50"), Decimal("0.47"), Decimal("2637.50"))
        assert change.to_dict() == {"amount": 12.5, "percent": 0.47, "prevClose": 2637.5}
        assert PriceChange().to_dict()["prevClose"] is None

    def test_cache_state_copy_is_independent(self) -> None:
        state = CacheState(prices={Metal.GOLD: Decimal("2650.00")})
        copied = state.copy()
        copied.prices[Metal.GOLD] = Decimal("1.00")
        assert state.prices[Metal.GOLD] == Decimal("2650.00")

    def test_age_minutes(self) -> None:
        updated = datetime(2025, 3, 12, 15, 0, tzinfo=timezone.utc)
        state = CacheState(prices={}, last_updated=updated)
        assert state.age_minutes(datetime(2025, 3, 12, 15, 30, tzinfo=timezone.utc)) == 30
        assert CacheState(prices={}).age_minutes(updated) is None
