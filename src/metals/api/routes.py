"""JSON endpoints for live prices, historical lookups, chart series and diagnostics.

Components are read from request.app.state (wired by main.py's lifespan):
spot_cache, resolver, history, calibration, static_table, usage.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from metals.exceptions import InvalidRequest, NotFound
from metals.logging import get_logger
from metals.models import ALL_METALS, HistoricalQuery, HistoricalResult

logger = get_logger(__name__)

router = APIRouter()


def _price(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


def _historical_payload(query: HistoricalQuery, result: HistoricalResult) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "success": True,
        "date": query.date.isoformat(),
        "time": query.time.strftime("%H:%M") if query.time else None,
        **{m.value: _price(result.prices.get(m)) for m in ALL_METALS},
        "granularity": result.granularity,
        "source": result.source,
    }
    if query.metal is not None:
        payload["metal"] = query.metal.value
        payload["price"] = _price(result.prices.get(query.metal))
    if result.daily_range:
        payload["dailyRange"] = {
            m.value: {"low": float(r["low"]), "high": float(r["high"])}
            for m, r in result.daily_range.items()
        }
    if result.note:
        payload["note"] = result.note
    return payload


@router.get("/spot-prices")
async def get_spot_prices(request: Request) -> JSONResponse:
    """Current prices; refreshes the cache first when it is stale."""
    spot_cache = request.app.state.spot_cache
    try:
        state = await spot_cache.read()
    except Exception:
        # read() absorbs upstream failures itself
        logger.error("spot_prices_read_failed", exc_info=True)
        state = spot_cache.get()

    now = datetime.now(timezone.utc)
    age = state.age_minutes(now)
    return JSONResponse(content={
        "success": True,
        **{m.value: float(state.prices[m]) for m in ALL_METALS if m in state.prices},
        "timestamp": (state.last_updated or now).isoformat(),
        "source": state.source,
        "cacheAgeMinutes": round(age, 1) if age is not None else None,
        "change": {m.value: c.to_dict() for m, c in state.change.items()},
        "marketsClosed": state.markets_closed,
    })


@router.get("/historical-spot")
async def get_historical_spot(request: Request) -> JSONResponse:
    """Price for a past date (optionally a time of day and a single metal)."""
    params = request.query_params
    query = HistoricalQuery.parse(params.get("date"), params.get("time"), params.get("metal"))

    try:
        result = await request.app.state.resolver.resolve(query)
    except NotFound as e:
        result = HistoricalResult.unavailable(query, str(e))

    payload = _historical_payload(query, result)
    if not result.available:
        payload["price"] = None
    return JSONResponse(content=payload)


@router.post("/historical-spot-batch")
async def post_historical_spot_batch(request: Request) -> JSONResponse:
    """Resolve many dates at once (all metals, daily precision)."""
    try:
        body = await request.json()
    except Exception:
        raise InvalidRequest("Invalid JSON body") from None

    dates = body.get("dates") if isinstance(body, dict) else None
    if not isinstance(dates, list) or not all(isinstance(d, str) for d in dates):
        raise InvalidRequest("dates must be an array of YYYY-MM-DD strings")

    resolved = await request.app.state.resolver.resolve_batch(dates)

    results: dict[str, Any] = {}
    for date_str, result in resolved.items():
        if isinstance(result, InvalidRequest):
            results[date_str] = {"success": False, "error": str(result)}
            continue
        results[date_str] = {
            "success": result.available,
            **{m.value: _price(result.prices.get(m)) for m in ALL_METALS},
            "source": result.source,
        }
        if result.note:
            results[date_str]["note"] = result.note

    return JSONResponse(content={"success": True, "count": len(results), "results": results})


@router.get("/spot-price-history")
async def get_spot_price_history(request: Request) -> JSONResponse:
    """Downsampled daily series for charts."""
    params = request.query_params
    max_points: int | None = None
    if params.get("maxPoints"):
        try:
            max_points = int(params["maxPoints"])
        except ValueError:
            raise InvalidRequest("maxPoints must be an integer") from None

    history = await request.app.state.history.history(params.get("range", "1Y"), max_points)
    return JSONResponse(content=history.to_dict())


@router.get("/health")
async def get_health(request: Request) -> JSONResponse:
    state = request.app.state.spot_cache.get()
    return JSONResponse(content={
        "status": "ok",
        "historicalDataLoaded": request.app.state.static_table.loaded,
        "spotPricesLastUpdated": state.last_updated.isoformat() if state.last_updated else None,
    })


@router.get("/debug/api-usage")
async def get_api_usage(request: Request) -> JSONResponse:
    """Upstream call counters and live cache status."""
    return JSONResponse(content={
        "success": True,
        **request.app.state.usage.summary(),
        "cache": request.app.state.spot_cache.status(),
    })


@router.get("/calibration")
async def get_calibration(request: Request) -> JSONResponse:
    """Ratios in effect today and whether today's calibration is still pending."""
    calibration = request.app.state.calibration
    today = datetime.now(timezone.utc).date()
    ratios = await calibration.get_ratio_for_date(today)
    last = calibration.last_calibrated_at
    return JSONResponse(content={
        "success": True,
        "date": today.isoformat(),
        "ratios": {m.value: ratios[m] for m in ALL_METALS},
        "defaults": {m.value: r for m, r in calibration.defaults.items()},
        "needsCalibration": await calibration.needs_calibration(),
        "lastCalibratedAt": last.isoformat() if last else None,
    })

