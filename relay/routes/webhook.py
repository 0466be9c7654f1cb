"""
Stripe Webhook Endpoint

Verifies the Stripe signature, relays the event to the Conversions API and
acknowledges with 200 regardless of the delivery outcome.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from relay.config import Settings, get_settings
from relay.handlers.event_router import EventRouter
from relay.models.conversion import RequestContext
from relay.services.stripe_service import StripeService
from relay.utils.exceptions import (
    ConfigurationException,
    StripeException,
    StripeSignatureException,
    ValidationException,
)
from relay.utils.logging_config import get_correlation_id, get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/stripe", tags=["webhook"])


def get_stripe_service(settings: Settings = Depends(get_settings)) -> StripeService:
    return StripeService.from_settings(settings)


def get_event_router(settings: Settings = Depends(get_settings)) -> EventRouter:
    return EventRouter.from_settings(settings)


def get_request_context(request: Request) -> RequestContext:
    """Client IP (first X-Forwarded-For hop, else peer address) and user agent"""
    forwarded_for = request.headers.get("x-forwarded-for", "")
    client_ip: Optional[str] = forwarded_for.split(",")[0].strip() or None
    if not client_ip and request.client:
        client_ip = request.client.host

    return RequestContext(
        client_ip=client_ip,
        user_agent=request.headers.get("user-agent"),
    )


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    settings: Settings = Depends(get_settings),
    stripe_service: StripeService = Depends(get_stripe_service),
    event_router: EventRouter = Depends(get_event_router),
):
    """
    Stripe webhook endpoint.

    - 500 when required configuration is missing (nothing is verified or sent)
    - 400 when the signature does not verify
    - 200 {"received": true} otherwise, even if delivery failed, so Stripe
      does not redeliver the event
    """
    correlation_id = get_correlation_id()

    missing = settings.missing_required()
    if missing:
        logger.error(
            "Missing required configuration",
            extra={"missing": missing, "correlation_id": correlation_id},
        )
        raise ConfigurationException(missing=missing)

    try:
        payload, signature = await stripe_service.extract_webhook_data(request)
        stripe_event = stripe_service.verify_webhook_signature(payload, signature)
    except StripeSignatureException as e:
        logger.error(
            "Webhook signature verification failed",
            extra={"error": e.message, "correlation_id": correlation_id},
        )
        return PlainTextResponse(f"Webhook Error: {e.message}", status_code=400)
    except StripeException as e:
        logger.error(
            f"Stripe webhook error: {e.message}",
            extra={"error": e.to_dict(), "correlation_id": correlation_id},
        )
        return PlainTextResponse(f"Webhook Error: {e.message}", status_code=400)

    logger.info(
        "Received Stripe webhook event",
        extra={
            "event_id": stripe_event.id,
            "event_type": stripe_event.type,
            "correlation_id": correlation_id,
        },
    )

    try:
        inbound_event = stripe_service.parse_event(stripe_event)
        result = await event_router.route_event(
            inbound_event,
            context=get_request_context(request),
            event_type=stripe_event.type,
        )
        logger.info(
            f"Finished handling {stripe_event.type}: {result['status']}",
            extra={**result, "correlation_id": correlation_id},
        )
    except ValidationException as e:
        logger.error(
            f"Dropping malformed event: {e.message}",
            extra={"error": e.to_dict(), "correlation_id": correlation_id},
        )
    except Exception as e:
        # Acknowledge anyway: a non-2xx would make Stripe retry the whole event
        logger.error(
            f"Error handling event {stripe_event.id}: {e}",
            exc_info=True,
            extra={
                "event_id": stripe_event.id,
                "event_type": stripe_event.type,
                "correlation_id": correlation_id,
            },
        )

    return JSONResponse(status_code=200, content={"received": True})
