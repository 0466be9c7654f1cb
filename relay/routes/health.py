"""
Health Check Endpoints

Liveness and readiness for the relay. The root path answers "OK" for
platform health checks regardless of configuration.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, PlainTextResponse

from relay.config import Settings, get_settings
from relay.handlers.event_router import get_supported_event_types

router = APIRouter(tags=["health"])


@router.get("/", response_class=PlainTextResponse)
async def root():
    """Platform health check; always 200 "OK" """
    return PlainTextResponse("OK", status_code=200)


@router.get("/health")
async def health_check(settings: Settings = Depends(get_settings)):
    """
    Basic health check endpoint.
    Returns 200 if application is running.
    """
    return JSONResponse(
        status_code=200,
        content={
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": settings.app_version,
        },
    )


@router.get("/health/live")
async def liveness_check():
    """Liveness check endpoint"""
    return JSONResponse(
        status_code=200,
        content={
            "status": "alive",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


@router.get("/health/ready")
async def readiness_check(settings: Settings = Depends(get_settings)):
    """
    Readiness check endpoint.
    503 until every required secret and id is configured. Only setting
    names are reported, never values.
    """
    missing = settings.missing_required()
    ready = not missing

    return JSONResponse(
        status_code=200 if ready else 503,
        content={
            "status": "ready" if ready else "not_ready",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "missing_configuration": missing,
            "test_mode": bool(settings.fb_test_event_code),
            "supported_event_types": get_supported_event_types(),
        },
    )
