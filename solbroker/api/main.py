"""FastAPI application entry point for solbroker.

The broker (catalog, artifact cache, invoker) is built in the lifespan and
torn down with it. Every error leaves the service as ``{ok: false, error}``.
"""

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from solbroker import __version__ as APP_VERSION
from solbroker.api.compile import router as compile_router
from solbroker.api.dependencies import get_broker
from solbroker.broker.errors import BrokerError
from solbroker.broker.service import CompilationBroker
from solbroker.config.settings import get_settings

settings = get_settings()

_LOG_NAME_TO_LEVEL: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# --- Structured logging ---
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer() if settings.ENVIRONMENT == "dev"
        else structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        _LOG_NAME_TO_LEVEL[settings.LOG_LEVEL.value],
    ),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)
logging.basicConfig(level=_LOG_NAME_TO_LEVEL[settings.LOG_LEVEL.value])

logger: structlog.stdlib.BoundLogger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    broker = CompilationBroker.from_settings(settings)
    app.state.broker = broker
    await broker.start()
    logger.info(
        "broker_started",
        artifact_dir=settings.ARTIFACT_DIR,
        catalog_loaded=broker.catalog.snapshot.is_loaded,
    )
    try:
        yield
    finally:
        await broker.close()
        app.state.broker = None


# --- FastAPI app ---
app = FastAPI(
    title="solbroker API",
    description="Version-aware Solidity compilation broker.",
    version=APP_VERSION,
    lifespan=lifespan,
)
app.state.max_request_bytes = settings.MAX_REQUEST_BYTES

# --- CORS middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.ENVIRONMENT == "dev" else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def limit_request_size(request: Request, call_next):
    """Reject bodies above ``MAX_REQUEST_BYTES`` before they are read."""
    length = request.headers.get("content-length")
    if length is not None and length.isdigit() and int(length) > request.app.state.max_request_bytes:
        return JSONResponse(
            status_code=413,
            content={"ok": False, "error": "request body too large"},
        )
    return await call_next(request)


# --- Error envelope ---


@app.exception_handler(BrokerError)
async def broker_error_handler(request: Request, exc: BrokerError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("compile_failed", error_type=type(exc).__name__, error=str(exc))
    return JSONResponse(status_code=exc.status_code, content={"ok": False, "error": str(exc)})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    violations = [
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"ok": False, "error": "invalid request: " + "; ".join(violations)},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unexpected_error", path=request.url.path)
    return JSONResponse(status_code=500, content={"ok": False, "error": f"failed to compile: {exc}"})


# --- Routers ---
app.include_router(compile_router)


# --- Infrastructure Endpoints ---


def _is_writable_dir(path: Path) -> bool:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False
    return os.access(path, os.W_OK)


@app.get("/health")
async def health_check(broker: CompilationBroker = Depends(get_broker)) -> dict:
    """Liveness probe with component health checks.

    Returns 200 always (degraded status if components are down).
    """
    snapshot = broker.catalog.snapshot
    checks: dict[str, bool] = {
        "api": True,
        "catalog": snapshot.is_loaded,
        "artifact_dir": _is_writable_dir(broker.cache.root),
    }
    traces = broker.recorder.recent()

    return {
        "status": "ok" if all(checks.values()) else "degraded",
        "version": APP_VERSION,
        "environment": settings.ENVIRONMENT.value,
        "checks": checks,
        "catalog": {
            "scripted": len(snapshot.scripted),
            "native": len(snapshot.native),
            "refreshed_at": snapshot.refreshed_at.isoformat() if snapshot.refreshed_at else None,
        },
        "invocations": {
            "recent": len(traces),
            "failed": sum(1 for trace in traces if not trace.ok),
        },
    }


@app.get("/api/version")
async def get_version() -> dict[str, str]:
    """Return application name, version, and environment."""
    return {
        "name": "solbroker",
        "version": APP_VERSION,
        "environment": settings.ENVIRONMENT.value,
    }
