"""Price persistence layer.

Provides SQLite database management, the append-only price log, and the
typed store for calibration ratios, cached ETF bars and the market-close
snapshot.
"""

from metals.data.database import PriceDatabase
from metals.data.price_log import PriceLog
from metals.data.store import PriceDataStore

__all__ = ["PriceDataStore", "PriceDatabase", "PriceLog"]
