"""
kinlink.api.main — FastAPI application entry point
===================================================

Run with::

    uvicorn kinlink.api.main:app --reload --port 8000

or ``python -m kinlink.api.main``, which listens on ``api_port`` from
config.yaml.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from kinlink.api.deps import get_config, get_engine  # noqa: E402
from kinlink.api.routes.connections import router as connections_router  # noqa: E402
from kinlink.constants import LOG_DATEFMT, LOG_FORMAT  # noqa: E402
from kinlink.exceptions import (  # noqa: E402
    AuthenticationError,
    CodeAllocationError,
    PermissionDeniedError,
    RequestStateError,
)

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the DB engine."""
    engine = get_engine()
    logger.info("Kinlink API started — engine ready (%s)", engine.url.database)
    yield
    logger.info("Kinlink API shutting down")


app = FastAPI(
    title="Kinlink Connections API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------
@app.exception_handler(AuthenticationError)
async def _authentication_error(request: Request, exc: AuthenticationError):
    return JSONResponse({"detail": str(exc)}, status_code=401)


@app.exception_handler(PermissionDeniedError)
async def _permission_denied(request: Request, exc: PermissionDeniedError):
    return JSONResponse({"detail": str(exc)}, status_code=403)


@app.exception_handler(RequestStateError)
async def _request_state_error(request: Request, exc: RequestStateError):
    return JSONResponse({"detail": str(exc)}, status_code=409)


@app.exception_handler(CodeAllocationError)
async def _code_allocation_error(request: Request, exc: CodeAllocationError):
    logger.error("Code allocation exhausted after %d attempts", exc.attempts)
    return JSONResponse({"detail": "Unable to allocate a connection code"}, status_code=503)


# Mount routers
app.include_router(connections_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}


def run() -> None:
    """Serve the API on the configured ``api_port``."""
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
    host = os.getenv("KINLINK_API_HOST", "127.0.0.1")
    uvicorn.run(app, host=host, port=get_config().api_port)


if __name__ == "__main__":
    run()
