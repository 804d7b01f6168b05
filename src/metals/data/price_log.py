"""Append-only log of timestamped spot price snapshots.

Every successful live refresh lands here, which over time gives the
resolver a minute-level history of its own. Rows are never updated;
INSERT OR IGNORE keeps a repeated (metal, timestamp) write harmless.

CRITICAL: prices are stored as TEXT and restored as Decimal on read.
"""

from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

from metals.data.database import PriceDatabase
from metals.logging import get_logger
from metals.models import Metal, PriceSnapshot, PriceSource

logger = get_logger(__name__)

_DAY_MS = 86_400_000


def to_ms(moment: datetime) -> int:
    """UTC epoch milliseconds for an aware datetime (naive means UTC)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


def from_ms(timestamp_ms: int) -> datetime:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)


def day_start(day: date) -> datetime:
    """Midnight UTC at the start of a calendar day."""
    return datetime.combine(day, time(0, 0), tzinfo=timezone.utc)


def _row_to_snapshot(row: tuple) -> PriceSnapshot:
    return PriceSnapshot(
        timestamp=from_ms(row[1]),
        metal=Metal(row[0]),
        price=Decimal(row[2]),
        source=PriceSource(row[3]),
    )


class PriceLog:
    """Async SQLite-backed price snapshot log.

    Usage:
        async with PriceDatabase("data/prices.db") as database:
            price_log = PriceLog(database)
            await price_log.append(snapshots)
            nearest = await price_log.closest_all(moment, timedelta(minutes=5))
    """

    def __init__(self, database: PriceDatabase) -> None:
        self._database = database

    # ──────────────────────────────────────────────
    # Write methods
    # ──────────────────────────────────────────────

    async def append(self, snapshots: list[PriceSnapshot]) -> int:
        """Insert snapshots, returning how many rows were actually written."""
        if not snapshots:
            return 0

        data = [
            (s.metal.value, to_ms(s.timestamp), str(s.price), s.source.value)
            for s in snapshots
        ]
        cursor = await self._database.db.executemany(
            "INSERT OR IGNORE INTO price_log (metal, timestamp_ms, price, source) "
            "VALUES (?, ?, ?, ?)",
            data,
        )
        await self._database.db.commit()

        inserted = cursor.rowcount
        logger.debug("price_snapshots_logged", total=len(snapshots), inserted=inserted)
        return inserted

    # ──────────────────────────────────────────────
    # Read methods
    # ──────────────────────────────────────────────

    async def closest(
        self, metal: Metal, at: datetime, window: timedelta
    ) -> PriceSnapshot | None:
        """Snapshot for a metal nearest to `at`, no further away than `window`."""
        at_ms = to_ms(at)
        window_ms = int(window.total_seconds() * 1000)
        cursor = await self._database.db.execute(
            "SELECT metal, timestamp_ms, price, source FROM price_log "
            "WHERE metal = ? AND timestamp_ms BETWEEN ? AND ? "
            "ORDER BY ABS(timestamp_ms - ?) ASC LIMIT 1",
            (metal.value, at_ms - window_ms, at_ms + window_ms, at_ms),
        )
        row = await cursor.fetchone()
        return _row_to_snapshot(row) if row is not None else None

    async def closest_all(
        self, at: datetime, window: timedelta
    ) -> dict[Metal, PriceSnapshot]:
        """closest() for every metal, omitting metals with nothing in the window."""
        result: dict[Metal, PriceSnapshot] = {}
        for metal in Metal:
            snapshot = await self.closest(metal, at, window)
            if snapshot is not None:
                result[metal] = snapshot
        return result

    async def on_day(self, day: date) -> dict[Metal, PriceSnapshot]:
        """The last snapshot of each metal logged on a UTC calendar day."""
        start_ms = to_ms(day_start(day))
        cursor = await self._database.db.execute(
            "SELECT p.metal, p.timestamp_ms, p.price, p.source FROM price_log p "
            "JOIN (SELECT metal, MAX(timestamp_ms) AS ts FROM price_log "
            "      WHERE timestamp_ms >= ? AND timestamp_ms < ? GROUP BY metal) d "
            "ON p.metal = d.metal AND p.timestamp_ms = d.ts",
            (start_ms, start_ms + _DAY_MS),
        )
        rows = await cursor.fetchall()
        return {Metal(row[0]): _row_to_snapshot(row) for row in rows}

    async def latest(self) -> dict[Metal, PriceSnapshot]:
        """The newest snapshot of each metal."""
        cursor = await self._database.db.execute(
            "SELECT p.metal, p.timestamp_ms, p.price, p.source FROM price_log p "
            "JOIN (SELECT metal, MAX(timestamp_ms) AS ts FROM price_log GROUP BY metal) d "
            "ON p.metal = d.metal AND p.timestamp_ms = d.ts"
        )
        rows = await cursor.fetchall()
        return {Metal(row[0]): _row_to_snapshot(row) for row in rows}

    async def range(
        self, metal: Metal, start: datetime, end: datetime
    ) -> list[PriceSnapshot]:
        """Snapshots for a metal in [start, end), oldest first."""
        cursor = await self._database.db.execute(
            "SELECT metal, timestamp_ms, price, source FROM price_log "
            "WHERE metal = ? AND timestamp_ms >= ? AND timestamp_ms < ? "
            "ORDER BY timestamp_ms ASC",
            (metal.value, to_ms(start), to_ms(end)),
        )
        rows = await cursor.fetchall()
        return [_row_to_snapshot(row) for row in rows]

    async def daily_closes(
        self, start: date, end: date
    ) -> dict[date, dict[Metal, Decimal]]:
        """Last logged price per metal per UTC day for days in [start, end]."""
        start_ms = to_ms(day_start(start))
        end_ms = to_ms(day_start(end)) + _DAY_MS
        cursor = await self._database.db.execute(
            "SELECT p.metal, p.timestamp_ms, p.price FROM price_log p "
            "JOIN (SELECT metal, timestamp_ms / ? AS day, MAX(timestamp_ms) AS ts "
            "      FROM price_log WHERE timestamp_ms >= ? AND timestamp_ms < ? "
            "      GROUP BY metal, day) d "
            "ON p.metal = d.metal AND p.timestamp_ms = d.ts "
            "ORDER BY p.timestamp_ms ASC",
            (_DAY_MS, start_ms, end_ms),
        )
        rows = await cursor.fetchall()

        closes: dict[date, dict[Metal, Decimal]] = {}
        for metal, timestamp_ms, price in rows:
            day = from_ms(timestamp_ms).date()
            closes.setdefault(day, {})[Metal(metal)] = Decimal(price)
        return closes

    async def earliest_date(self) -> date | None:
        cursor = await self._database.db.execute("SELECT MIN(timestamp_ms) FROM price_log")
        row = await cursor.fetchone()
        if row is None or row[0] is None:
            return None
        return from_ms(row[0]).date()
