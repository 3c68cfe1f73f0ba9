"""
Main Application - FastAPI application setup.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import generate_latest
from starlette.middleware.base import BaseHTTPMiddleware

from app.api.admin_routes import router as admin_router
from app.api.dependencies import close_webhook_client
from app.api.partner_routes import router as partner_router
from app.api.public_routes import router as public_router
from app.api.routes import router
from app.config import settings
from app.db.migration_runner import run_migrations
from app.db.session import close_engines
from app.observability import get_logger, log_context, metrics, setup_logging, setup_tracing
from app.observability.tracing import instrument_fastapi

# Setup logging before anything else
setup_logging()
logger = get_logger(__name__)

# Path prefixes checked in order
SURFACES = (
    ("/v1/customers", "customer"),
    ("/v1/partners", "partner"),
    ("/admin", "admin"),
    ("/v1", "public"),
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    # Startup
    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        tracing_enabled=settings.tracing_enabled,
        metrics_enabled=settings.metrics_enabled,
        webhook_simulation_fallback=settings.webhook_simulation_fallback,
    )

    if settings.run_migrations_on_startup:
        # Alembic is synchronous
        await asyncio.to_thread(run_migrations)

    yield

    # Shutdown
    logger.info("application_shutting_down")
    await close_webhook_client()
    await close_engines()
    logger.info("database_engines_closed")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Return 422 with location and message for each field.

    Submitted values are left out of both the response and the log, since
    checkout and onboarding bodies carry phone numbers, emails and GST ids.
    """
    errors = []
    for error in exc.errors():
        item = {"type": error.get("type"), "loc": error.get("loc"), "msg": error.get("msg")}
        if "ctx" in error:
            item["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        errors.append(item)

    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        fields=[".".join(str(part) for part in e["loc"] or ()) for e in errors],
    )
    return JSONResponse(status_code=422, content={"detail": errors})


# Setup tracing
setup_tracing()
instrument_fastapi(app)


# Proxy headers middleware - trust X-Forwarded-* headers from nginx
class ProxyHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to handle X-Forwarded-* headers from reverse proxy."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        # Fix scheme based on X-Forwarded-Proto header
        forwarded_proto = request.headers.get("X-Forwarded-Proto")
        if forwarded_proto:
            # Update request scope to reflect actual protocol
            request.scope["scheme"] = forwarded_proto

        response = await call_next(request)
        return response


app.add_middleware(ProxyHeadersMiddleware)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request logging middleware
@app.middleware("http")
async def logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Log all HTTP requests with timing. The request id is bound to every log line."""
    request_id = request.headers.get("X-Request-ID", "unknown")
    with log_context(request_id=request_id):
        return await _timed_request(request, call_next, request_id)


def _surface(path: str) -> str:
    """Coarse API area for the in-progress gauge, known before routing."""
    for prefix, surface in SURFACES:
        if path.startswith(prefix):
            return surface
    return "service"


def _route_template(request: Request) -> str:
    """Matched route path (/v1/customers/{customer_id}), so ids stay out of labels."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or _surface(request.url.path)


async def _timed_request(
    request: Request, call_next: Callable[[Request], Awaitable[Response]], request_id: str
) -> Response:
    start_time = time.time()
    path = request.url.path
    method = request.method
    surface = _surface(path)

    logger.info("request_started", method=method, path=path, request_id=request_id)
    metrics.http_requests_in_progress.labels(endpoint=surface, method=method).inc()

    try:
        response = await call_next(request)
        duration = time.time() - start_time
        metrics.record_http_request(
            _route_template(request), method, response.status_code, duration
        )

        logger.info(
            "request_completed",
            method=method,
            path=path,
            status_code=response.status_code,
            duration_seconds=duration,
            request_id=request_id,
        )

        return response
    except Exception as e:
        duration = time.time() - start_time
        metrics.record_http_request(_route_template(request), method, 500, duration)
        metrics.record_error(type(e).__name__, "http_request")

        logger.error(
            "request_failed",
            method=method,
            path=path,
            error=str(e),
            duration_seconds=duration,
            request_id=request_id,
            exc_info=True,
        )
        raise
    finally:
        metrics.http_requests_in_progress.labels(endpoint=surface, method=method).dec()


# Register routes
app.include_router(router)  # Customer dashboard routes
app.include_router(public_router)  # Catalog, checkout, referral and gateway routes
app.include_router(partner_router)  # Partner portal routes
app.include_router(admin_router)  # Admin API routes


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "running",
    }


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    return PlainTextResponse(generate_latest())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
