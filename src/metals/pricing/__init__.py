"""Price derivation: ETF conversion, calibration, historical resolution and chart series.

The resolver and history service are imported from their modules directly
(metals.pricing.resolver, metals.pricing.history).
"""

from metals.pricing.calibration import CalibrationEngine
from metals.pricing.etf_converter import bar_to_spot, blend_ohlc, daily_range, to_spot
from metals.pricing.sampler import fill_gaps, sample
from metals.pricing.static_table import MonthlyPriceTable

__all__ = [
    "CalibrationEngine",
    "MonthlyPriceTable",
    "bar_to_spot",
    "blend_ohlc",
    "daily_range",
    "fill_gaps",
    "sample",
    "to_spot",
]
