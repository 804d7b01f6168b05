"""Upstream price sources -- live APIs, historical API and proxy-ETF bars via httpx."""

from metals.sources.client import EtfBarProvider, HistoricalSpotSource, LiveSpotSource
from metals.sources.etf_cache import CachedEtfProvider
from metals.sources.goldapi import GoldApiSource
from metals.sources.http import create_http_client
from metals.sources.live import FallbackLiveSource
from metals.sources.metalpriceapi import MetalPriceApiSource
from metals.sources.usage import UsageTracker
from metals.sources.yahoo import PROXY_ETFS, YahooEtfProvider, has_etf_data

__all__ = [
    "PROXY_ETFS",
    "CachedEtfProvider",
    "EtfBarProvider",
    "FallbackLiveSource",
    "GoldApiSource",
    "HistoricalSpotSource",
    "LiveSpotSource",
    "MetalPriceApiSource",
    "UsageTracker",
    "YahooEtfProvider",
    "create_http_client",
    "has_etf_data",
]
