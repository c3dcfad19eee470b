import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from westroy.api.deps import get_notification_dispatcher
from westroy.api.v1 import auth, companies, guest_requests, offers, orders, requests, search, suggest
from westroy.core.config import settings
from westroy.core.database import create_all, engine
from westroy.core.exceptions import MarketplaceError
from westroy.core.logging import setup_logging
from westroy.core.redis import close_redis
from westroy.middleware.metrics import PrometheusMiddleware, metrics_endpoint
from westroy.middleware.rate_limit import RateLimitMiddleware, build_rate_limiter

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    setup_logging(settings.LOG_LEVEL)
    logger.info("Starting application...")

    if settings.DB_CREATE_ALL:
        await create_all()
        logger.info("Database tables ensured")

    yield

    logger.info("Shutting down, waiting for pending notifications")
    await get_notification_dispatcher().drain()
    await close_redis()
    await engine.dispose()


def _error_body(code: str, message: str) -> dict:
    return {"detail": {"code": code, "message": message}}


async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.code, exc.public_message),
        headers={"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None,
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Body/query validation failures: 400 with a `field: message` summary."""
    parts = []
    for error in exc.errors():
        loc = [str(p) for p in error.get("loc", ()) if p not in ("body", "query", "path")]
        field = ".".join(loc) or "request"
        parts.append(f"{field}: {error.get('msg', 'invalid value')}")
    return JSONResponse(
        status_code=400,
        content=_error_body("VALIDATION_ERROR", "; ".join(parts) or "Invalid request"),
    )


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error(f"Unhandled database error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content=_error_body("DEPENDENCY_ERROR", "Service temporarily unavailable"),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content=_error_body("INTERNAL_ERROR", "Internal server error"),
    )


def create_app() -> FastAPI:
    app = FastAPI(
        title="WESTROY Marketplace",
        version="1.0.0",
        description="Construction materials marketplace: requests, offers, orders and search",
        lifespan=lifespan,
    )

    app.add_exception_handler(MarketplaceError, marketplace_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # Middleware added later wraps earlier ones
    # Rate limiting on write endpoints, keyed by client address, runs before auth
    app.add_middleware(RateLimitMiddleware, limiter=build_rate_limiter(settings))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Prometheus metrics middleware, outermost so 429s are counted too
    app.add_middleware(PrometheusMiddleware)

    app.include_router(auth.router, prefix="/api/v1/auth", tags=["auth"])
    app.include_router(requests.router, prefix="/api/v1/requests", tags=["requests"])
    app.include_router(offers.router, prefix="/api/v1/offers", tags=["offers"])
    app.include_router(orders.router, prefix="/api/v1/orders", tags=["orders"])
    app.include_router(companies.router, prefix="/api/v1/companies", tags=["companies"])
    app.include_router(search.router, prefix="/api/v1/search", tags=["search"])
    app.include_router(suggest.router, prefix="/api/v1/suggest", tags=["search"])
    app.include_router(guest_requests.router, prefix="/api/v1/guest-requests", tags=["guest-requests"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    # Prometheus metrics endpoint
    app.add_route("/metrics", metrics_endpoint)

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    uvicorn.run("westroy.main:app", host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())
