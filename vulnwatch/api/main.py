"""vulnwatch FastAPI application entrypoint."""

import sys
import uuid
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from vulnwatch.api.dependencies import get_query_router
from vulnwatch.api.models.cve import ErrorResponse
from vulnwatch.api.routes import cves, search
from vulnwatch.config import settings
from vulnwatch.db.session import engine, init_models
from vulnwatch.errors import CacheReadError, StoreUnconfigured, UpstreamError
from vulnwatch.query.router import QueryRouter


def configure_logging() -> None:
    """Configure loguru for production or development."""
    # Remove default handler
    logger.remove()

    if settings.debug:
        # Development: human-readable format
        logger.add(
            sys.stdout,
            level="DEBUG",
            format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>",
            colorize=True,
        )
    else:
        # Production: JSON format for log aggregation
        logger.add(
            sys.stdout,
            level=settings.log_level,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {name}:{function}:{line} | {message}",
            serialize=True,
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    configure_logging()
    logger.info("vulnwatch API starting up")
    if engine is None:
        logger.warning("VULNWATCH_DATABASE_URL not set, caching disabled")
    else:
        try:
            await init_models(engine)
        except (SQLAlchemyError, OSError) as e:
            logger.error("Could not create cache tables, reads will miss: {}", e)
    yield
    if engine is not None:
        await engine.dispose()
    logger.info("vulnwatch API shutting down")


app = FastAPI(
    title="vulnwatch",
    version="0.1.0",
    description="Cached CVE aggregation over the NVD and EUVD feeds",
    lifespan=lifespan,
)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Add request ID to each request for log correlation."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
    request.state.request_id = request_id

    with logger.contextualize(request_id=request_id):
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError) -> JSONResponse:
    """Report a failed upstream fetch with the feed's own status when known."""
    logger.warning("Upstream failure: {} ({})", exc, exc.cause.value)
    status_code = exc.status_code if exc.status_code and exc.status_code >= 400 else 500
    body = ErrorResponse(**exc.to_dict())
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(StoreUnconfigured)
async def store_unconfigured_handler(request: Request, exc: StoreUnconfigured) -> JSONResponse:
    body = ErrorResponse(error="Database not configured", cause="store_unconfigured")
    return JSONResponse(status_code=503, content=body.model_dump())


@app.exception_handler(CacheReadError)
async def cache_read_error_handler(request: Request, exc: CacheReadError) -> JSONResponse:
    """Store-only reads have no upstream to fall back to."""
    logger.error("Cache store unavailable: {}", exc)
    body = ErrorResponse(error="Cache store unavailable", cause="cache_read")
    return JSONResponse(status_code=503, content=body.model_dump())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions with structured error response."""
    request_id = getattr(request.state, "request_id", "unknown")
    logger.error("Unhandled exception: {} (request_id={})", exc, request_id)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal server error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
            "request_id": request_id,
        },
    )


# Register route modules
app.include_router(cves.router, prefix="/api/v1")
app.include_router(search.router, prefix="/api/v1")


@app.get("/health")
async def health(query_router: QueryRouter = Depends(get_query_router)) -> dict[str, Any]:
    """Health check endpoint with cache status.

    Status is "ok" when the cache is reachable or deliberately disabled,
    "degraded" when a configured cache cannot be reached.
    """
    state = await query_router.health()

    if not state["configured"]:
        db_check = {"ok": True, "message": "Not configured (optional)"}
    elif state["connected"]:
        db_check = {"ok": True, "message": "Connected"}
    else:
        db_check = {"ok": False, "message": "Unreachable"}

    checks = {"db": db_check}
    all_ok = all(c["ok"] for c in checks.values())

    return {
        "status": "ok" if all_ok else "degraded",
        "checks": checks,
        "connected": state["connected"],
        "total_cached": state["total_cached"],
    }
