"""Async SQLite database manager for price persistence.

Uses aiosqlite for non-blocking database operations with WAL mode
so price-log writes never stall readers.
"""

import os
from typing import Self

import aiosqlite

from metals.exceptions import StoreError
from metals.logging import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS price_log (
    metal TEXT NOT NULL,
    timestamp_ms INTEGER NOT NULL,
    price TEXT NOT NULL,
    source TEXT NOT NULL DEFAULT 'live',
    PRIMARY KEY (metal, timestamp_ms)
);

CREATE TABLE IF NOT EXISTS calibration_ratios (
    metal TEXT NOT NULL,
    date TEXT NOT NULL,
    ratio REAL NOT NULL,
    etf_price TEXT,
    spot_price TEXT,
    created_at INTEGER NOT NULL,
    PRIMARY KEY (metal, date)
);

CREATE TABLE IF NOT EXISTS etf_daily_bars (
    symbol TEXT NOT NULL,
    date TEXT NOT NULL,
    open TEXT NOT NULL,
    high TEXT NOT NULL,
    low TEXT NOT NULL,
    close TEXT NOT NULL,
    volume INTEGER,
    PRIMARY KEY (symbol, date)
);

CREATE TABLE IF NOT EXISTS market_close_snapshot (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    captured_at_ms INTEGER NOT NULL,
    last_updated_ms INTEGER,
    source TEXT NOT NULL,
    prices_json TEXT NOT NULL
);
"""

_CREATE_INDEXES_SQL = """
CREATE INDEX IF NOT EXISTS idx_price_log_ts
    ON price_log(timestamp_ms);

CREATE INDEX IF NOT EXISTS idx_calibration_date
    ON calibration_ratios(date);
"""


class PriceDatabase:
    """Async SQLite connection manager for price data.

    Manages database lifecycle including schema creation, WAL mode
    configuration, and clean resource cleanup.

    Usage:
        async with PriceDatabase("data/prices.db") as db:
            await db.db.execute("SELECT ...")
    """

    def __init__(self, db_path: str = "data/prices.db") -> None:
        self._db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    @property
    def db(self) -> aiosqlite.Connection:
        """Access the raw aiosqlite connection.

        Raises StoreError if not connected.
        """
        if self._connection is None:
            raise StoreError("Database not connected. Call connect() first.")
        return self._connection

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    async def connect(self) -> None:
        """Open database connection, configure pragmas, and create schema."""
        db_dir = os.path.dirname(self._db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self._connection = await aiosqlite.connect(self._db_path)

        await self._connection.execute("PRAGMA journal_mode=WAL")
        await self._connection.execute("PRAGMA synchronous=NORMAL")

        await self._create_tables()
        await self._ensure_schema_version()

        logger.info("price_db_connected", db_path=self._db_path)

    async def close(self) -> None:
        """Close the database connection if open."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("price_db_closed", db_path=self._db_path)

    async def _create_tables(self) -> None:
        db = self.db
        await db.executescript(_CREATE_TABLES_SQL)
        await db.executescript(_CREATE_INDEXES_SQL)
        await db.commit()

    async def _ensure_schema_version(self) -> None:
        db = self.db
        cursor = await db.execute(
            "SELECT version FROM schema_version LIMIT 1"
        )
        row = await cursor.fetchone()
        if row is None:
            await db.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            await db.commit()
            logger.info("schema_version_set", version=SCHEMA_VERSION)

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()
