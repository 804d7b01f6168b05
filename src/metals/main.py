"""Entry point for the metals price service.

Wires all components together and serves the FastAPI app with uvicorn's
programmatic API. Component startup and shutdown happen in FastAPI's
lifespan context manager so everything shares one asyncio event loop.

Component wiring order (in _build_components):
1. PriceDatabase, PriceLog, PriceDataStore (persistence)
2. UsageTracker and the shared httpx client
3. Live sources (MetalPriceAPI, then GoldAPI) behind FallbackLiveSource
4. Yahoo ETF provider behind the SQLite bar cache
5. MarketCalendar and BackgroundTasks
6. CalibrationEngine
7. LiveSpotCache
8. MonthlyPriceTable, HistoricalResolver, PriceHistoryService
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI

from metals.api.app import create_app
from metals.config import AppSettings
from metals.data import PriceDatabase, PriceDataStore, PriceLog
from metals.logging import get_logger, setup_logging
from metals.market import BackgroundTasks, LiveSpotCache, MarketCalendar
from metals.pricing import CalibrationEngine, MonthlyPriceTable
from metals.pricing.history import PriceHistoryService
from metals.pricing.resolver import HistoricalResolver
from metals.sources import (
    CachedEtfProvider,
    FallbackLiveSource,
    GoldApiSource,
    MetalPriceApiSource,
    UsageTracker,
    YahooEtfProvider,
    create_http_client,
)


def _build_components(settings: AppSettings) -> dict[str, Any]:
    """Build all service components from settings.

    Note: Does NOT connect the database or warm the cache -- that happens
    in the lifespan.

    Args:
        settings: Application-wide settings.

    Returns:
        Dict mapping component names to instances.
    """
    logger = get_logger("metals.main")

    database = PriceDatabase(settings.database.path)
    price_log = PriceLog(database)
    store = PriceDataStore(database)

    usage = UsageTracker()
    http_client = create_http_client(settings.live.timeout_seconds)

    metalpriceapi_key = settings.live.metalpriceapi_key.get_secret_value()
    goldapi_key = settings.live.goldapi_key.get_secret_value()
    if not metalpriceapi_key and not goldapi_key:
        logger.warning(
            "no_live_api_keys_configured",
            note="Spot prices will come from the price log or static fallback.",
        )
    metalpriceapi = MetalPriceApiSource(http_client, metalpriceapi_key, usage)
    live_source = FallbackLiveSource([
        metalpriceapi,
        GoldApiSource(http_client, goldapi_key, usage),
    ])

    etf_provider = CachedEtfProvider(YahooEtfProvider(http_client, usage), store)

    calendar = MarketCalendar(settings.market)
    background = BackgroundTasks()
    calibration = CalibrationEngine(store, etf_provider, settings.calibration)

    spot_cache = LiveSpotCache(
        live_source,
        settings=settings.cache,
        is_market_closed=calendar.is_market_closed,
        calendar=calendar,
        price_log=price_log,
        store=store,
        background=background,
        calibration=calibration,
    )

    static_table = MonthlyPriceTable.from_file(settings.historical.static_table_path)
    resolver = HistoricalResolver.build(
        spot_cache,
        price_log,
        etf_provider,
        calibration,
        metalpriceapi if metalpriceapi_key else None,
        static_table,
        settings=settings.historical,
    )
    history = PriceHistoryService(price_log, static_table, settings.api)

    return {
        "database": database,
        "price_log": price_log,
        "store": store,
        "usage": usage,
        "http_client": http_client,
        "calibration": calibration,
        "background": background,
        "spot_cache": spot_cache,
        "static_table": static_table,
        "resolver": resolver,
        "history": history,
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage component lifecycle within the FastAPI application.

    On startup: stores components on app.state, connects the database and
    warm-starts the live cache from persisted state.

    On shutdown: drains background work, closes the HTTP client and the
    database.
    """
    logger = get_logger("metals.main")
    components = app.state.components

    # Store components on app.state for route handler access
    for name in ("spot_cache", "resolver", "history", "calibration", "static_table", "usage"):
        setattr(app.state, name, components[name])

    await components["database"].connect()
    await components["spot_cache"].warm_start()

    logger.info(
        "lifespan_started",
        tiers=components["resolver"].tier_names,
        static_table_days=len(components["static_table"]),
    )

    yield

    await components["background"].drain()
    await components["http_client"].aclose()
    await components["database"].close()

    logger.info("metals_service_stopped")


async def run() -> None:
    """Run the metals price service until the server exits."""
    # 1. Load settings
    settings = AppSettings()

    # 2. Setup logging
    setup_logging(settings.log_level)
    logger = get_logger("metals.main")

    # 3. Build all components
    components = _build_components(settings)

    app = create_app(lifespan=lifespan)
    app.state.settings = settings
    app.state.components = components

    logger.info("starting_api", host=settings.api.host, port=settings.api.port)

    config = uvicorn.Config(
        app,
        host=settings.api.host,
        port=settings.api.port,
        log_level="warning",  # Suppress uvicorn access logs
    )
    server = uvicorn.Server(config)
    await server.serve()


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
