"""
FastAPI application entry point for the Collective backend.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from collective.atproto import AtprotoError
from collective.config import get_settings
from collective.routes import router

logger = logging.getLogger(__name__)


async def atproto_exception_handler(request: Request, exc: AtprotoError) -> JSONResponse:
    """Upstream 400/404 pass through; every other PDS failure is a bad gateway."""
    status_code = exc.status_code if exc.status_code in (400, 404) else 502
    logger.warning("ATProto call failed (%s %s): %s", exc.status_code, exc.error, exc.message)
    return JSONResponse(status_code=status_code, content={"detail": exc.message, "error": exc.error})


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)
    app = FastAPI(title="Collective Backend", version="0.1.0")
    app.add_exception_handler(AtprotoError, atproto_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
