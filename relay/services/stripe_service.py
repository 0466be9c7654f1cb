"""
Stripe Service

Handles Stripe webhook signature verification and re-fetching of richer
objects from the Stripe API.
"""

import asyncio
from typing import Any, Dict, List, Optional

import stripe
from fastapi import Request
from pydantic import ValidationError

from relay.config import Settings
from relay.models.stripe_events import (
    InboundEvent,
    LineItem,
    StripeCheckoutSession,
    StripeEvent,
    StripePaymentIntent,
    parse_inbound_event,
)
from relay.utils.exceptions import (
    StripeException,
    StripeSignatureException,
    UpstreamFetchException,
    ValidationException,
)
from relay.utils.logging_config import get_logger

logger = get_logger(__name__)

SIGNATURE_HEADER = "Stripe-Signature"
DEFAULT_TOLERANCE_SECONDS = 300

CHECKOUT_SESSION_EXPAND = ["customer", "payment_intent"]
PAYMENT_INTENT_EXPAND = ["latest_charge", "customer"]
LINE_ITEMS_PAGE_SIZE = 100


def _to_plain_dict(stripe_object: Any) -> Dict[str, Any]:
    """Convert an SDK object (or plain mapping) into nested dicts"""
    if hasattr(stripe_object, "to_dict"):
        return stripe_object.to_dict()
    return dict(stripe_object)


class StripeService:
    """Stripe webhook and API service"""

    def __init__(
        self,
        api_key: Optional[str],
        webhook_secret: Optional[str],
        tolerance: int = DEFAULT_TOLERANCE_SECONDS,
        api_version: Optional[str] = None,
    ):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance
        self.api_version = api_version

    @classmethod
    def from_settings(cls, settings: Settings) -> "StripeService":
        return cls(
            api_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
            tolerance=settings.webhook_tolerance_seconds,
            api_version=settings.stripe_api_version,
        )

    def verify_webhook_signature(self, payload: bytes, signature: str) -> StripeEvent:
        """
        Verify Stripe webhook signature using HMAC-SHA256.

        The check runs on the raw, undecoded request body; re-serialized
        JSON would not match the signature.

        Args:
            payload: Raw request body as bytes
            signature: Stripe-Signature header value

        Returns:
            Validated StripeEvent envelope

        Raises:
            StripeSignatureException: If signature verification fails
            StripeException: If the body is not a valid event
        """
        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise StripeException(
                "Webhook payload is not valid UTF-8",
                details={"error": str(e)},
            ) from e

        try:
            stripe.WebhookSignature.verify_header(
                body,
                signature,
                self.webhook_secret,
                self.tolerance,
            )
        except stripe.SignatureVerificationError as e:
            logger.error(
                f"Stripe signature verification failed: {e}",
                extra={"error": str(e)},
            )
            raise StripeSignatureException(str(e) or "Invalid Stripe webhook signature") from e

        try:
            stripe_event = StripeEvent.model_validate_json(body)
        except ValidationError as e:
            logger.error(f"Invalid webhook payload: {e}")
            raise StripeException(
                "Invalid webhook payload",
                details={"error": str(e)},
            ) from e

        logger.info(
            "Webhook signature verified successfully",
            extra={
                "event_id": stripe_event.id,
                "event_type": stripe_event.type,
            },
        )
        return stripe_event

    def parse_event(self, stripe_event: StripeEvent) -> Optional[InboundEvent]:
        """
        Convert a verified envelope into its typed variant.

        Returns:
            Typed inbound event, or None for unrecognized event types

        Raises:
            ValidationException: If a recognized event's object is malformed
        """
        try:
            inbound_event = parse_inbound_event(stripe_event)
        except ValidationError as e:
            raise ValidationException(
                f"Malformed {stripe_event.type} object",
                details={
                    "event_id": stripe_event.id,
                    "event_type": stripe_event.type,
                    "errors": e.error_count(),
                },
            ) from e

        if inbound_event is None:
            logger.debug(
                f"Event type not supported: {stripe_event.type}",
                extra={"event_type": stripe_event.type, "event_id": stripe_event.id},
            )
        return inbound_event

    async def extract_webhook_data(self, request: Request) -> tuple[bytes, str]:
        """
        Extract webhook payload and signature from request.

        Args:
            request: FastAPI request object

        Returns:
            Tuple of (payload bytes, signature string)

        Raises:
            StripeException: If required data is missing
        """
        payload = await request.body()
        signature = request.headers.get(SIGNATURE_HEADER)

        if not signature:
            raise StripeException(
                f"Missing {SIGNATURE_HEADER} header",
                details={"header": SIGNATURE_HEADER},
            )

        if not payload:
            raise StripeException(
                "Empty request body",
                details={"body": "empty"},
            )

        return payload, signature

    def _request_options(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {"api_key": self.api_key}
        if self.api_version:
            options["stripe_version"] = self.api_version
        return options

    async def _call(
        self,
        operation: Any,
        object_type: str,
        object_id: str,
        **params: Any,
    ) -> Any:
        """Run a blocking SDK call in a worker thread"""
        try:
            return await asyncio.to_thread(
                operation,
                object_id,
                **params,
                **self._request_options(),
            )
        except stripe.StripeError as e:
            logger.error(
                f"Failed to retrieve {object_type} {object_id}: {e}",
                extra={"object_type": object_type, "object_id": object_id, "error": str(e)},
            )
            raise UpstreamFetchException(
                f"Failed to retrieve {object_type}",
                object_type=object_type,
                object_id=object_id,
                details={"error": str(e)},
            ) from e

    async def _retrieve(
        self,
        resource: Any,
        object_type: str,
        object_id: str,
        expand: List[str],
    ) -> Dict[str, Any]:
        result = await self._call(resource.retrieve, object_type, object_id, expand=expand)

        logger.info(
            f"Retrieved {object_type} from Stripe",
            extra={"object_type": object_type, "object_id": object_id},
        )
        return _to_plain_dict(result)

    async def _list_all(
        self,
        operation: Any,
        object_type: str,
        object_id: str,
    ) -> List[Dict[str, Any]]:
        """Follow a Stripe list endpoint with ``starting_after`` while ``has_more`` is set"""
        items: List[Dict[str, Any]] = []
        params: Dict[str, Any] = {"limit": LINE_ITEMS_PAGE_SIZE}

        while True:
            page = _to_plain_dict(await self._call(operation, object_type, object_id, **params))
            data = page.get("data") or []
            items.extend(data)

            last_id = data[-1].get("id") if data else None
            if not page.get("has_more") or not last_id:
                break
            params["starting_after"] = last_id

        logger.info(
            f"Retrieved {len(items)} {object_type} from Stripe",
            extra={"object_type": object_type, "object_id": object_id, "count": len(items)},
        )
        return items

    async def list_checkout_line_items(self, session_id: str) -> List[Dict[str, Any]]:
        """
        Retrieve every line item of a checkout session.
        An expanded ``line_items`` only carries the first page.

        Raises:
            UpstreamFetchException: If any page fails
        """
        return await self._list_all(
            stripe.checkout.Session.list_line_items,
            "checkout_session_line_items",
            session_id,
        )

    async def list_invoice_lines(self, invoice_id: str) -> List[LineItem]:
        """
        Retrieve every line of an invoice; webhook payloads carry the first page only.

        Raises:
            UpstreamFetchException: If any page fails
        """
        lines = await self._list_all(stripe.Invoice.list_lines, "invoice_lines", invoice_id)
        return [LineItem.model_validate(line) for line in lines]

    async def retrieve_checkout_session(self, session_id: str) -> StripeCheckoutSession:
        """
        Retrieve a checkout session with customer and payment intent
        expanded, plus all of its line items.

        Raises:
            UpstreamFetchException: If retrieval fails
        """
        data = await self._retrieve(
            stripe.checkout.Session,
            "checkout_session",
            session_id,
            CHECKOUT_SESSION_EXPAND,
        )
        data["line_items"] = {
            "data": await self.list_checkout_line_items(session_id),
            "has_more": False,
        }
        return self._validate(StripeCheckoutSession, data, "checkout_session", session_id)

    async def retrieve_payment_intent(self, payment_intent_id: str) -> StripePaymentIntent:
        """
        Retrieve a payment intent with its latest charge (billing details)
        and customer expanded.

        Raises:
            UpstreamFetchException: If retrieval fails
        """
        data = await self._retrieve(
            stripe.PaymentIntent,
            "payment_intent",
            payment_intent_id,
            PAYMENT_INTENT_EXPAND,
        )
        return self._validate(StripePaymentIntent, data, "payment_intent", payment_intent_id)

    @staticmethod
    def _validate(model: Any, data: Dict[str, Any], object_type: str, object_id: str) -> Any:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise UpstreamFetchException(
                f"Unexpected {object_type} shape from Stripe",
                object_type=object_type,
                object_id=object_id,
                details={"errors": e.error_count()},
            ) from e
