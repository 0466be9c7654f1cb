"""
Event Router

Runs one verified Stripe event through the relay pipeline:
mapping, payload construction and delivery to the Conversions API.

Every outcome is reported through the returned status dict. Re-fetch and
delivery failures are logged here and never propagated, so the webhook is
always acknowledged and Stripe does not redeliver (and double count) the
event.

Statuses:
- ignored: event type has no conversion mapping
- skipped: recognized type, but this event maps to no conversion
- fetch_failed: re-fetching the Stripe object failed
- delivered: Conversions API accepted the event
- delivery_failed: retries exhausted without a 2xx response
"""

from typing import Any, Dict, List, Optional

from relay.config import Settings
from relay.handlers.event_mapper import EventMapper
from relay.models.conversion import RequestContext
from relay.models.stripe_events import InboundEvent, RECOGNIZED_EVENT_TYPES
from relay.services.conversion_builder import build_conversion_payload
from relay.services.conversions_client import ConversionsApiClient
from relay.services.stripe_service import StripeService
from relay.utils.exceptions import UpstreamFetchException
from relay.utils.logging_config import get_logger

logger = get_logger(__name__)


class EventRouter:
    """
    Routes verified Stripe events through mapping and delivery.

    Attributes:
        mapper: Event mapper producing ExtractedFacts
        client: Conversions API delivery client
        event_source_url: Attribution URL attached to every event
        test_event_code: Optional Test Events code
    """

    def __init__(
        self,
        mapper: EventMapper,
        client: ConversionsApiClient,
        event_source_url: Optional[str] = None,
        test_event_code: Optional[str] = None,
    ):
        self.mapper = mapper
        self.client = client
        self.event_source_url = event_source_url
        self.test_event_code = test_event_code

    @classmethod
    def from_settings(cls, settings: Settings) -> "EventRouter":
        return cls(
            mapper=EventMapper(StripeService.from_settings(settings)),
            client=ConversionsApiClient.from_settings(settings),
            event_source_url=settings.event_source_url,
            test_event_code=settings.fb_test_event_code,
        )

    async def route_event(
        self,
        event: Optional[InboundEvent],
        context: Optional[RequestContext] = None,
        event_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Map, build and deliver one event.

        Args:
            event: Typed inbound event, or None for unrecognized types
            context: Client IP and user agent of the webhook request
            event_type: Raw Stripe event type, for logging unrecognized events

        Returns:
            Dictionary containing:
                - status (str): see module docstring
                - event_type (str): Stripe event type
                - event_id (str, optional): Stripe event ID
                - conversion_event / external_id (when mapped)
                - attempts / http_status (when delivery was attempted)
        """
        if event is None or not self.mapper.supports(event.kind):
            event_type = event.kind if event is not None else event_type
            logger.info(
                f"Ignoring event type {event_type}",
                extra={"event_type": event_type},
            )
            return {"status": "ignored", "event_type": event_type}

        result: Dict[str, Any] = {
            "event_type": event.kind,
            "event_id": event.event_id,
        }

        try:
            facts = await self.mapper.extract(event)
        except UpstreamFetchException as e:
            logger.error(
                f"Aborting {event.kind} ({event.event_id}): {e.message}",
                extra={
                    "event_id": event.event_id,
                    "event_type": event.kind,
                    "error": e.to_dict(),
                },
            )
            return {**result, "status": "fetch_failed", "error": e.message}

        if facts is None:
            return {**result, "status": "skipped"}

        result.update(
            {
                "conversion_event": facts.event_name,
                "external_id": facts.external_id,
            }
        )

        payload = build_conversion_payload(
            facts,
            context=context,
            event_source_url=self.event_source_url,
            test_event_code=self.test_event_code,
        )

        delivery = await self.client.send_event(payload, facts.event_name)

        result.update(
            {
                "status": "delivered" if delivery.succeeded else "delivery_failed",
                "attempts": delivery.attempts_made,
                "http_status": delivery.http_status,
            }
        )

        if not delivery.succeeded:
            logger.error(
                f"Dropped {facts.event_name} for {event.kind} ({event.event_id})",
                extra={
                    "event_id": event.event_id,
                    "event_type": event.kind,
                    "external_id": facts.external_id,
                    "conversion_event": facts.event_name,
                    "http_status": delivery.http_status,
                },
            )

        return result


def get_supported_event_types() -> List[str]:
    """
    Get list of all Stripe event types the relay maps.

    Useful for configuring the Stripe webhook endpoint.
    """
    return sorted(RECOGNIZED_EVENT_TYPES)
