"""Chart series helpers: even downsampling and gap filling.

Pure functions over ordered SeriesPoint lists; inputs are never mutated.
"""

from decimal import Decimal

from metals.models import SeriesPoint

_ZERO = Decimal("0")


def sample(points: list[SeriesPoint], max_points: int) -> list[SeriesPoint]:
    """Pick `max_points` evenly spaced points, keeping the first and last.

    Returns the input unchanged when it already fits. Indices use
    step = (n - 1) / (max_points - 1), rounded to the nearest index.
    """
    n = len(points)
    if max_points <= 0:
        return []
    if n <= max_points:
        return points
    if max_points == 1:
        return [points[0]]

    step = (n - 1) / (max_points - 1)
    return [points[min(int(i * step + 0.5), n - 1)] for i in range(max_points)]


def fill_gaps(points: list[SeriesPoint], field: str) -> list[SeriesPoint]:
    """Forward-fill zero `field` values, then back-fill any leading zeros.

    A series with no non-zero value for `field` is returned as is.
    """
    filled = [SeriesPoint(date=p.date, values=dict(p.values)) for p in points]

    last: Decimal | None = None
    for point in filled:
        value = point.values.get(field, _ZERO)
        if value:
            last = value
        elif last is not None:
            point.values[field] = last

    first = next((p.values[field] for p in filled if p.values.get(field, _ZERO)), None)
    if first is None:
        return filled
    for point in filled:
        if point.values.get(field, _ZERO):
            break
        point.values[field] = first
    return filled
