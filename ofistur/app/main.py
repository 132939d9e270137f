"""
FastAPI Application Entry Point.

This is the main application file for the Ofistur Credit Ledger backend.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from ofistur.app.core.config import settings
from ofistur.app.core.observability import ObservabilityMiddleware, configure_logging
from ofistur.app.api.v1.router import router as api_v1_router
from ofistur.app.db.session import engine, Base
from ofistur.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Registered on Base.metadata for create_all
from ofistur.app.models.agency import Agency
from ofistur.app.models.user import User
from ofistur.app.models.subjects import Client, Operator
from ofistur.app.models.agency_counter import AgencyCounter
from ofistur.app.models.credit_account import CreditAccount
from ofistur.app.models.credit_entry import CreditEntry
from ofistur.app.models.audit_log import AuditLog

configure_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create missing ledger tables on startup; release the pool on shutdown."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()

# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Credit-account ledger for travel agencies: balances per client/operator and currency",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Also reports the ledger policy toggles in effect.
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "ledger_policy": {
            "block_negative_balance": settings.credit_block_negative_balance,
            "strict_doc_types": settings.credit_strict_doc_types,
        },
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to the Ofistur Credit Ledger API",
        "docs": "/docs",
        "health": "/health",
    }
