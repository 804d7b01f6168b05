"""FastAPI application factory for the metals price API."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from metals.api import routes
from metals.exceptions import InvalidRequest
from metals.logging import get_logger

logger = get_logger(__name__)


async def _invalid_request_handler(request: Request, exc: InvalidRequest) -> JSONResponse:
    logger.info("invalid_request", path=request.url.path, error=str(exc))
    return JSONResponse(content={"success": False, "error": str(exc)}, status_code=400)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(content={"success": False, "error": message}, status_code=400)


def create_app(lifespan: Any = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        lifespan: Optional async context manager for application lifespan events.
                  Used by main.py to build and tear down components; tests set
                  the components on app.state directly instead.

    Returns:
        Configured FastAPI application with all routes under /api.
    """
    app = FastAPI(
        title="Metals Price Service",
        lifespan=lifespan,
    )

    app.add_exception_handler(InvalidRequest, _invalid_request_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]

    app.include_router(routes.router, prefix="/api")

    return app
