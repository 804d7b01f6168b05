"""Typed SQLite read/write abstraction for calibration and market data.

Provides PriceDataStore with typed methods for calibration ratios, cached
ETF daily bars and the persisted market-close snapshot. All SQL outside the
price log is isolated behind this interface.

CRITICAL: monetary values are stored as TEXT in SQLite and restored as Decimal.
"""

import json
import time
from datetime import date, datetime
from decimal import Decimal

from metals.data.database import PriceDatabase
from metals.data.price_log import from_ms, to_ms
from metals.logging import get_logger
from metals.models import CacheState, CalibrationRatio, EtfBar, Metal

logger = get_logger(__name__)


def _row_to_ratio(row: tuple) -> CalibrationRatio:
    return CalibrationRatio(
        metal=Metal(row[0]),
        date=date.fromisoformat(row[1]),
        ratio=float(row[2]),
        etf_price=Decimal(row[3]) if row[3] is not None else None,
        spot_price=Decimal(row[4]) if row[4] is not None else None,
    )


class PriceDataStore:
    """Async SQLite store for calibration ratios, ETF bars and the close snapshot.

    Usage:
        async with PriceDatabase("data/prices.db") as database:
            store = PriceDataStore(database)
            inserted = await store.insert_ratios(ratios)
    """

    def __init__(self, database: PriceDatabase) -> None:
        self._database = database

    # ──────────────────────────────────────────────
    # Calibration ratios
    # ──────────────────────────────────────────────

    async def insert_ratios(self, ratios: list[CalibrationRatio]) -> int:
        """Insert ratios, keeping any existing (metal, date) row untouched.

        Returns the number of actually inserted rows.
        """
        if not ratios:
            return 0

        now_ms = int(time.time() * 1000)
        data = [
            (
                r.metal.value,
                r.date.isoformat(),
                r.ratio,
                str(r.etf_price) if r.etf_price is not None else None,
                str(r.spot_price) if r.spot_price is not None else None,
                now_ms,
            )
            for r in ratios
        ]
        cursor = await self._database.db.executemany(
            "INSERT OR IGNORE INTO calibration_ratios "
            "(metal, date, ratio, etf_price, spot_price, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            data,
        )
        await self._database.db.commit()
        return cursor.rowcount

    async def replace_ratio(self, ratio: CalibrationRatio) -> None:
        """Overwrite the ratio for (metal, date). Manual override only."""
        await self._database.db.execute(
            "INSERT OR REPLACE INTO calibration_ratios "
            "(metal, date, ratio, etf_price, spot_price, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                ratio.metal.value,
                ratio.date.isoformat(),
                ratio.ratio,
                str(ratio.etf_price) if ratio.etf_price is not None else None,
                str(ratio.spot_price) if ratio.spot_price is not None else None,
                int(time.time() * 1000),
            ),
        )
        await self._database.db.commit()
        logger.info(
            "calibration_ratio_overridden",
            metal=ratio.metal.value,
            date=ratio.date.isoformat(),
            ratio=ratio.ratio,
        )

    async def has_ratios_for(self, day: date) -> bool:
        cursor = await self._database.db.execute(
            "SELECT 1 FROM calibration_ratios WHERE date = ? LIMIT 1",
            (day.isoformat(),),
        )
        return await cursor.fetchone() is not None

    async def get_ratios_for(self, day: date) -> list[CalibrationRatio]:
        """All ratio rows recorded for exactly this day."""
        cursor = await self._database.db.execute(
            "SELECT metal, date, ratio, etf_price, spot_price "
            "FROM calibration_ratios WHERE date = ? ORDER BY metal",
            (day.isoformat(),),
        )
        rows = await cursor.fetchall()
        return [_row_to_ratio(row) for row in rows]

    async def get_ratio_on_or_before(
        self, metal: Metal, day: date
    ) -> CalibrationRatio | None:
        """Most recent ratio for a metal dated on or before `day`."""
        cursor = await self._database.db.execute(
            "SELECT metal, date, ratio, etf_price, spot_price FROM calibration_ratios "
            "WHERE metal = ? AND date <= ? ORDER BY date DESC LIMIT 1",
            (metal.value, day.isoformat()),
        )
        row = await cursor.fetchone()
        return _row_to_ratio(row) if row is not None else None

    # ──────────────────────────────────────────────
    # ETF daily bars
    # ──────────────────────────────────────────────

    async def get_etf_bar(self, symbol: str, day: date) -> EtfBar | None:
        cursor = await self._database.db.execute(
            "SELECT symbol, date, open, high, low, close, volume "
            "FROM etf_daily_bars WHERE symbol = ? AND date = ?",
            (symbol, day.isoformat()),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return EtfBar(
            symbol=row[0],
            date=date.fromisoformat(row[1]),
            open=Decimal(row[2]),
            high=Decimal(row[3]),
            low=Decimal(row[4]),
            close=Decimal(row[5]),
            volume=row[6],
        )

    async def insert_etf_bar(self, bar: EtfBar) -> None:
        await self._database.db.execute(
            "INSERT OR REPLACE INTO etf_daily_bars "
            "(symbol, date, open, high, low, close, volume) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                bar.symbol,
                bar.date.isoformat(),
                str(bar.open),
                str(bar.high),
                str(bar.low),
                str(bar.close),
                bar.volume,
            ),
        )
        await self._database.db.commit()

    # ──────────────────────────────────────────────
    # Market-close snapshot
    # ──────────────────────────────────────────────

    async def save_close_snapshot(self, state: CacheState, captured_at: datetime) -> None:
        """Persist the frozen weekend snapshot (single row)."""
        prices_json = json.dumps({m.value: str(p) for m, p in state.prices.items()})
        await self._database.db.execute(
            "INSERT OR REPLACE INTO market_close_snapshot "
            "(id, captured_at_ms, last_updated_ms, source, prices_json) "
            "VALUES (1, ?, ?, ?, ?)",
            (
                to_ms(captured_at),
                to_ms(state.last_updated) if state.last_updated else None,
                state.source,
                prices_json,
            ),
        )
        await self._database.db.commit()

    async def load_close_snapshot(self) -> tuple[datetime, CacheState] | None:
        """Return (captured_at, state) for the persisted snapshot, if any."""
        cursor = await self._database.db.execute(
            "SELECT captured_at_ms, last_updated_ms, source, prices_json "
            "FROM market_close_snapshot WHERE id = 1"
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        prices = {Metal(k): Decimal(v) for k, v in json.loads(row[3]).items()}
        state = CacheState(
            prices=prices,
            last_updated=from_ms(row[1]) if row[1] is not None else None,
            source=row[2],
        )
        return from_ms(row[0]), state

    async def clear_close_snapshot(self) -> None:
        await self._database.db.execute("DELETE FROM market_close_snapshot")
        await self._database.db.commit()
