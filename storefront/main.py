"""
Main Application - FastAPI application setup.
"""

import asyncio
import time
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import generate_latest
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.routing import Match

from storefront.api.admin_routes import router as admin_router
from storefront.api.auth_routes import router as auth_router
from storefront.api.dependencies import get_email_notifier, get_google_login
from storefront.api.limiter import limiter
from storefront.api.routes import router
from storefront.api.verify_routes import router as verify_router
from storefront.config import settings
from storefront.db.migration_runner import run_migrations
from storefront.db.session import close_engines, get_write_session
from storefront.observability import get_logger, metrics, setup_logging, setup_tracing
from storefront.observability.tracing import instrument_fastapi
from storefront.services.gpt_models import GptModelService

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Apply migrations when enabled and make sure every catalog product has
    its gpt_models row before the first purchase can be reconciled.
    """
    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        tracing_enabled=settings.tracing_enabled,
    )

    if settings.run_migrations_on_startup:
        # Alembic's env.py is synchronous; keep it off the event loop
        await asyncio.to_thread(run_migrations)

    async with get_write_session() as session:
        inserted = await GptModelService(session).sync_from_catalog()
    logger.info("gpt_models_synced", inserted=inserted)

    yield

    logger.info("application_shutting_down")
    await get_email_notifier().close()
    await get_google_login().oauth_provider.close()
    await close_engines()


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore[arg-type]

setup_tracing()
instrument_fastapi(app)


def _sanitize_validation_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    """Strip validator exceptions out of ``ctx`` so the errors are JSON-safe."""
    sanitized = []
    for error in exc.errors():
        entry: dict[str, Any] = {key: error.get(key) for key in ("type", "loc", "msg")}
        if "ctx" in error:
            entry["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        sanitized.append(entry)
    return sanitized


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = _sanitize_validation_errors(exc)
    logger.warning("validation_error", path=request.url.path, errors=errors)
    return JSONResponse(status_code=422, content={"detail": errors})


def _route_template(request: Request) -> str:
    """Matched route path, e.g. /api/gpt-verify/{gpt_name}; keeps metric labels bounded."""
    for route in request.app.router.routes:
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            return getattr(route, "path", request.url.path)
    return "unmatched"


@app.middleware("http")
async def request_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Proxy scheme, request id, timing and HTTP metrics for every request."""
    # Behind the reverse proxy; the OAuth callback URL must be built with https
    forwarded_proto = request.headers.get("X-Forwarded-Proto")
    if forwarded_proto:
        request.scope["scheme"] = forwarded_proto

    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    endpoint = _route_template(request)
    method = request.method
    structlog.contextvars.bind_contextvars(request_id=request_id)
    metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).inc()
    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-ID"] = request_id
        return response
    except Exception as exc:
        metrics.record_error(type(exc).__name__, "http_request")
        logger.error("request_failed", method=method, path=request.url.path, exc_info=True)
        raise
    finally:
        duration = time.perf_counter() - start
        metrics.record_http_request(endpoint, method, status_code, duration)
        metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).dec()
        logger.info(
            "request_completed",
            method=method,
            path=request.url.path,
            status_code=status_code,
            duration_seconds=round(duration, 4),
        )
        structlog.contextvars.unbind_contextvars("request_id")


# The GPT backends call the verification endpoints cross-origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

app.include_router(router)  # Storefront, checkout and webhook
app.include_router(auth_router)  # Accounts and sessions
app.include_router(verify_router)  # Cross-system access checks
app.include_router(admin_router)  # Admin


@app.get("/")
async def root() -> dict[str, str]:
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "running",
    }


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    """Prometheus metrics in text format."""
    return PlainTextResponse(generate_latest())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "storefront.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
