from __future__ import annotations
"""Photoglow: FastAPI application entry point.

Mounts the API and WebSocket routes, configures CORS, and renders pipeline
errors as ``{"ok": false, "error": code}``.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from photoglow import __version__
from photoglow.api.router import api_router
from photoglow.api.ws import router as ws_router
from photoglow.config import get_settings
from photoglow.database import close_db
from photoglow.services.errors import GenerationError
from photoglow.services.http import close_http_client
from photoglow.services.pubsub import close_pubsub
from photoglow.services.wiring import reset_services

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: log config on startup, release clients on shutdown."""
    logger.info("%s starting up...", settings.APP_NAME)
    logger.info("Database: %s@%s/%s", settings.DB_USER, settings.DB_HOST, settings.DB_NAME)
    logger.info(
        "Poll budget %.1fs (interval %.2fs), output bucket %s (public=%s)",
        settings.poll_budget_s, settings.POLL_INTERVAL_S, settings.BUCKET_IMAGES, settings.OUTPUT_PUBLIC,
    )

    yield

    reset_services()
    await close_http_client()
    await close_pubsub()
    await close_db()
    logger.info("%s shut down", settings.APP_NAME)


app = FastAPI(
    title="Photoglow API",
    description="Generation job orchestrator: credits, provider routing, durable outputs",
    version=__version__,
    lifespan=lifespan,
    redirect_slashes=False,
)

# Origin "null" (sandboxed plugin iframes) is allowed only when configured
_cors_origins = list(settings.cors_origins)
if settings.ALLOW_NULL_ORIGIN and "*" not in _cors_origins:
    _cors_origins.append("null")
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials="*" not in _cors_origins,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Idempotency-Key"],
    max_age=86400,
)


@app.exception_handler(GenerationError)
async def generation_error_handler(request: Request, exc: GenerationError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc.code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


# Mount API routes
app.include_router(api_router)
app.include_router(ws_router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"service": settings.APP_NAME, "status": "running", "version": __version__}
