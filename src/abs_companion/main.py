"""
Encoding Companion Main Application
===================================

FastAPI entry point for the encoding companion.

The companion itself runs as background tasks started in the application
lifespan; the HTTP surface is only for container health checks.

Endpoints:
    GET  /          - Service information
    GET  /health    - Liveness probe (is process alive?)
    GET  /ready     - Readiness probe (realtime session authenticated?)
    GET  /metrics   - Queue and session counters
"""

import logging
import os
import signal
import sys
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from abs_companion import __version__
from abs_companion.companion import Companion
from abs_companion.config import (
    ConfigurationError,
    Settings,
    load_config,
    log_settings,
    setup_logging,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Global State
# =============================================================================

_settings: Optional[Settings] = None
_companion: Optional[Companion] = None
_server: Optional[uvicorn.Server] = None
_startup_time: float = 0.0


def get_companion() -> Optional[Companion]:
    return _companion


def _request_exit() -> None:
    """
    Stop the uvicorn server; lifespan shutdown then closes the companion.

    When the app was launched by an external uvicorn command there is no
    server handle, so SIGTERM is sent to this process instead.
    """
    if _server is not None:
        _server.should_exit = True
    else:
        logger.info("No server handle, sending SIGTERM to self")
        os.kill(os.getpid(), signal.SIGTERM)


# =============================================================================
# Lifespan Management
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager with graceful shutdown."""
    global _settings, _companion, _startup_time

    _startup_time = time.time()
    if _settings is None:
        _settings = load_config()
        setup_logging(_settings)

    logger.info(f"Starting encoding companion {__version__}")
    log_settings(_settings)

    _companion = Companion(_settings, on_exit=_request_exit)
    _companion.start()

    yield

    logger.info("Shutting down gracefully...")
    await _companion.close()
    logger.info("Shutdown complete")


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="ABS Encoding Companion",
    description="Realtime-driven M4B encoding for Audiobookshelf",
    version=__version__,
    lifespan=lifespan,
)


@app.get("/")
async def root() -> JSONResponse:
    """Service information endpoint."""
    return JSONResponse({
        "service": "abs-companion",
        "version": __version__,
        "status": "running",
    })


@app.get("/health")
async def health() -> JSONResponse:
    """Liveness probe. Always returns 200 while the process is running."""
    return JSONResponse({
        "status": "healthy",
        "uptime_seconds": round(time.time() - _startup_time, 1),
    })


@app.get("/ready")
async def ready() -> JSONResponse:
    """
    Readiness probe.

    Returns 200 once the realtime session is authenticated, 503 otherwise.
    """
    companion = get_companion()
    authenticated = companion.session.authenticated if companion else False
    state = companion.session.state.value if companion else "NOT_STARTED"

    return JSONResponse(
        {
            "status": "ready" if authenticated else "not_ready",
            "session_state": state,
        },
        status_code=200 if authenticated else 503,
    )


@app.get("/metrics")
async def metrics() -> JSONResponse:
    """Detailed metrics for observability."""
    companion = get_companion()
    if companion is None:
        return JSONResponse({"error": "Companion not started"}, status_code=503)

    return JSONResponse({
        "uptime_seconds": round(time.time() - _startup_time, 1),
        **companion.metrics(),
    })


# =============================================================================
# Main Entry Point
# =============================================================================

def main() -> None:
    """Console entry point: validate configuration, then serve."""
    global _settings, _server

    try:
        _settings = load_config()
    except ConfigurationError as e:
        logging.basicConfig(level=logging.ERROR)
        logger.critical(f"Configuration error: {e}")
        sys.exit(1)

    setup_logging(_settings)

    config = uvicorn.Config(
        app,
        host=_settings.server.host,
        port=_settings.server.port,
        log_level=_settings.logging.level.lower(),
    )
    _server = uvicorn.Server(config)
    _server.run()


if __name__ == "__main__":
    main()
