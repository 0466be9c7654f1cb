"""
FastAPI Application

Main application entry point for the Stripe to Conversions API relay.
Provides the Stripe webhook endpoint and health checks.
"""

from contextlib import asynccontextmanager

import stripe
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from relay.config import get_settings
from relay.routes import health, webhook
from relay.utils.exceptions import ConfigurationException, RelayException
from relay.utils.logging_config import (
    clear_correlation_id,
    get_logger,
    set_correlation_id,
    setup_logging,
)

settings = get_settings()

setup_logging(log_level=settings.log_level)
logger = get_logger(__name__)

# Network retries for Stripe re-fetches are handled by the SDK
stripe.max_network_retries = settings.stripe_max_network_retries


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan context manager.
    Handles startup and shutdown events.
    """
    logger.info(
        f"Starting {settings.app_name} v{settings.app_version}",
        extra={"environment": settings.environment},
    )

    missing = settings.missing_required()
    if missing:
        # Keep serving; the webhook answers 500 until configured
        logger.error(
            "Missing required configuration; webhook requests will be rejected",
            extra={"missing": missing},
        )
    if settings.fb_test_event_code:
        logger.warning("Test event code set; events go to the Test Events view")

    logger.info("Application startup complete")

    yield

    logger.info("Application shutdown complete")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Relays Stripe webhook events to the Meta Conversions API",
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    lifespan=lifespan,
)


@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    """Add correlation ID to all requests for tracing"""
    correlation_id = set_correlation_id(request.headers.get("X-Correlation-ID"))

    try:
        response = await call_next(request)
    finally:
        clear_correlation_id()

    response.headers["X-Correlation-ID"] = correlation_id

    return response


@app.exception_handler(ConfigurationException)
async def configuration_exception_handler(request: Request, exc: ConfigurationException):
    """Missing configuration: reject without contacting Stripe or Meta"""
    return JSONResponse(
        status_code=500,
        content={
            "error": exc.error_code,
            "message": exc.message,
        },
    )


@app.exception_handler(RelayException)
async def relay_exception_handler(request: Request, exc: RelayException):
    """Handle custom relay exceptions"""
    logger.error(
        f"Relay exception: {exc.message}",
        extra={"error": exc.to_dict()},
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": exc.error_code,
            "message": exc.message,
            "details": exc.details,
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions"""
    logger.error(
        f"Unexpected exception: {exc}",
        extra={"error": str(exc), "type": type(exc).__name__},
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred",
        },
    )


app.include_router(health.router)
app.include_router(webhook.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "relay.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level=settings.log_level.lower(),
    )
