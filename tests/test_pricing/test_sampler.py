"""Tests for series downsampling and gap filling."""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from metals.models import SeriesPoint
from metals.pricing import fill_gaps, sample

START = date(2024, 1, 1)


def _series(*golds: str) -> list[SeriesPoint]:
    return [
        SeriesPoint(date=START + timedelta(days=i), values={"gold": Decimal(g)})
        for i, g in enumerate(golds)
    ]


def _golds(points: list[SeriesPoint]) -> list[str]:
    return [str(p.values["gold"]) for p in points]


class TestSample:
    def test_short_series_unchanged(self) -> None:
        points = _series("1", "2", "3")
        assert sample(points, 5) == points

    @pytest.mark.parametrize("max_points", [2, 7, 60])
    def test_exact_count_keeps_endpoints(self, max_points: int) -> None:
        points = _series(*(str(i) for i in range(365)))

        sampled = sample(points, max_points)

        assert len(sampled) == max_points
        assert sampled[0] is points[0]
        assert sampled[-1] is points[-1]
        assert [p.date for p in sampled] == sorted(p.date for p in sampled)

    def test_even_spacing(self) -> None:
        points = _series(*(str(i) for i in range(10)))
        # step = 9 / 3 = 3
        assert _golds(sample(points, 4)) == ["0", "3", "6", "9"]

    def test_single_point(self) -> None:
        assert _golds(sample(_series("5", "6", "7"), 1)) == ["5"]

    def test_non_positive_limit(self) -> None:
        assert sample(_series("5", "6"), 0) == []


class TestFillGaps:
    def test_forward_fill(self) -> None:
        assert _golds(fill_gaps(_series("10", "0", "0", "12", "0"), "gold")) == ["10", "10", "10", "12", "12"]

    def test_leading_zeros_back_filled(self) -> None:
        assert _golds(fill_gaps(_series("0", "0", "11", "0"), "gold")) == ["11", "11", "11", "11"]

    def test_all_zero_left_alone(self) -> None:
        assert _golds(fill_gaps(_series("0", "0"), "gold")) == ["0", "0"]

    def test_input_not_mutated(self) -> None:
        points = _series("10", "0")
        fill_gaps(points, "gold")
        assert points[1].values["gold"] == Decimal("0")

    def test_missing_field_treated_as_gap(self) -> None:
        points = [
            SeriesPoint(date=START, values={"gold": Decimal("10")}),
            SeriesPoint(date=START + timedelta(days=1), values={}),
        ]
        assert fill_gaps(points, "gold")[1].values["gold"] == Decimal("10")
