"""FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from donation_ledger.core.config import get_settings
from donation_ledger.core.database import Database
from donation_ledger.core.errors import AuthenticationError, DomainError, FieldViolation, ValidationError
from donation_ledger.core.limiter import limiter
from donation_ledger.core.logging import setup_logging
from donation_ledger.routers import (
    analytics,
    audit,
    auth,
    categories,
    donations,
    health,
    reports,
    users,
)
from donation_ledger.services.access import AccessScopeFilter
from donation_ledger.services.audit import AuditTrailStore
from donation_ledger.services.notifications import NotificationDispatcher
from donation_ledger.services.transactions import TransactionCoordinator
from donation_ledger.services.users import UserService

settings = get_settings()
setup_logging(settings)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the store client and dispatcher once, dispose on shutdown."""
    database = Database(
        settings.database_url,
        pool_size=settings.db_pool_size,
        pool_timeout=settings.db_pool_timeout,
        echo=settings.debug,
    )
    await database.create_all()
    app.state.database = database
    app.state.notifier = NotificationDispatcher(
        settings.notification_webhook_url,
        timeout=settings.notification_timeout,
    )
    if settings.admin_email and settings.admin_password:
        audit_store = AuditTrailStore(database)
        coordinator = TransactionCoordinator(database, audit_store, timeout=settings.transaction_timeout)
        await UserService(database, coordinator, AccessScopeFilter()).ensure_admin(
            settings.admin_email, settings.admin_password
        )
    logger.info(f"{settings.app_name} started")
    try:
        yield
    finally:
        await database.close()


app = FastAPI(
    title=settings.app_name,
    description="Donation ledger with an atomic audit trail",
    version="0.1.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()}, headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    violations = [
        FieldViolation(
            field=".".join(str(p) for p in err["loc"] if p not in ("body", "query", "path")),
            message=err["msg"],
        )
        for err in exc.errors()
    ]
    error = ValidationError("Request validation failed", violations)
    return JSONResponse(status_code=error.status_code, content={"error": error.to_dict()})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"error": {"kind": "internal_error", "message": "Internal server error"}},
    )


# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(auth.router, prefix=settings.api_v1_prefix, tags=["auth"])
app.include_router(donations.router, prefix=settings.api_v1_prefix, tags=["donations"])
app.include_router(categories.router, prefix=settings.api_v1_prefix, tags=["categories"])
app.include_router(users.router, prefix=settings.api_v1_prefix, tags=["users"])
app.include_router(audit.router, prefix=settings.api_v1_prefix, tags=["audit"])
app.include_router(analytics.router, prefix=settings.api_v1_prefix, tags=["analytics"])
app.include_router(reports.router, prefix=settings.api_v1_prefix, tags=["reports"])
