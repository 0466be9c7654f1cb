"""
Event Mapper

Translates each recognized Stripe event into the facts of one conversion
event. Checkout completion and payment intent success re-fetch the Stripe
object first because the webhook payload lacks the customer email,
resolved payment intent and line items. Invoice lines are fetched from
the API only when the webhook copy is truncated.
"""

from typing import Awaitable, Callable, Dict, Iterable, Optional, Tuple

from relay.models.conversion import ExtractedFacts
from relay.models.stripe_events import (
    ChargeEvent,
    CheckoutSessionEvent,
    CustomerEvent,
    EventKind,
    InboundEvent,
    InvoiceEvent,
    LineItem,
    LineItemList,
    PaymentIntentEvent,
    StripeCheckoutSession,
    StripeCustomer,
    StripePaymentIntent,
    SubscriptionEvent,
)
from relay.services.stripe_service import StripeService
from relay.utils.logging_config import get_logger

logger = get_logger(__name__)


class ConversionEvent:
    """Conversion event names sent to the Conversions API"""

    INITIATE_CHECKOUT = "InitiateCheckout"
    PURCHASE = "Purchase"
    # Custom conversion; must be configured on the ad platform
    ABANDON_CHECKOUT = "AbandonCheckout"
    LEAD = "Lead"
    SUBSCRIBE = "Subscribe"
    RENEW_SUBSCRIPTION = "RenewSubscription"
    PAYMENT_FAILED = "PaymentFailed"
    CANCEL_SUBSCRIPTION = "CancelSubscription"
    REFUND = "Refund"


# customer.subscription.updated status -> conversion event
SUBSCRIPTION_STATUS_EVENTS = {
    "active": ConversionEvent.RENEW_SUBSCRIPTION,
    "past_due": ConversionEvent.PAYMENT_FAILED,
}


def _first(*values: Optional[str]) -> Optional[str]:
    """First truthy value"""
    for value in values:
        if value:
            return value
    return None


def summarize_line_items(items: Iterable[LineItem]) -> Tuple[Tuple[str, ...], Optional[int]]:
    """
    Collect product IDs and the total quantity of a set of line items.

    Items without a product ID are left out of the content IDs but still
    count toward the quantity.

    Returns:
        (content_ids, num_items); num_items is None when there are no items
    """
    content_ids = []
    num_items = 0
    seen_any = False

    for item in items:
        seen_any = True
        num_items += item.quantity or 0
        product_id = item.price.product_id if item.price else None
        if product_id:
            content_ids.append(product_id)

    return tuple(content_ids), (num_items if seen_any else None)


def _line_items(item_list: Optional[LineItemList]) -> Iterable[LineItem]:
    return item_list.data if item_list else ()


def _session_email(session: StripeCheckoutSession) -> Optional[str]:
    customer_email = (
        session.customer.email if isinstance(session.customer, StripeCustomer) else None
    )
    return _first(
        session.customer_details.email if session.customer_details else None,
        customer_email,
        session.customer_email,
    )


def _payment_intent_email(payment_intent: StripePaymentIntent) -> Optional[str]:
    charge = payment_intent.first_charge
    customer_email = (
        payment_intent.customer.email
        if isinstance(payment_intent.customer, StripeCustomer)
        else None
    )
    return _first(
        payment_intent.receipt_email,
        charge.billing_details.email if charge and charge.billing_details else None,
        customer_email,
    )


Extractor = Callable[[InboundEvent], Awaitable[Optional[ExtractedFacts]]]


class EventMapper:
    """
    Maps verified Stripe events to ExtractedFacts.

    Attributes:
        stripe_service: Used to re-fetch richer objects for purchase events
    """

    def __init__(self, stripe_service: StripeService):
        self.stripe_service = stripe_service
        self._extractors: Dict[str, Extractor] = {
            EventKind.CHECKOUT_SESSION_CREATED.value: self._initiate_checkout,
            EventKind.CHECKOUT_SESSION_COMPLETED.value: self._checkout_purchase,
            EventKind.CHECKOUT_SESSION_ASYNC_PAYMENT_SUCCEEDED.value: self._checkout_purchase,
            EventKind.CHECKOUT_SESSION_EXPIRED.value: self._abandon_checkout,
            EventKind.CHECKOUT_SESSION_ASYNC_PAYMENT_FAILED.value: self._abandon_checkout,
            EventKind.PAYMENT_INTENT_SUCCEEDED.value: self._payment_intent_purchase,
            EventKind.PAYMENT_INTENT_PAYMENT_FAILED.value: self._payment_intent_failed,
            EventKind.INVOICE_PAYMENT_SUCCEEDED.value: self._invoice_purchase,
            EventKind.INVOICE_PAYMENT_FAILED.value: self._invoice_failed,
            EventKind.CUSTOMER_CREATED.value: self._lead,
            EventKind.SUBSCRIPTION_CREATED.value: self._subscribe,
            EventKind.SUBSCRIPTION_UPDATED.value: self._subscription_updated,
            EventKind.SUBSCRIPTION_DELETED.value: self._cancel_subscription,
            EventKind.CHARGE_REFUNDED.value: self._refund,
        }

    def supports(self, kind: str) -> bool:
        return kind in self._extractors

    async def extract(self, event: Optional[InboundEvent]) -> Optional[ExtractedFacts]:
        """
        Extract conversion facts from an inbound event.

        Args:
            event: Typed inbound event (None for unrecognized types)

        Returns:
            ExtractedFacts, or None when the event maps to no conversion

        Raises:
            UpstreamFetchException: If a required Stripe re-fetch fails
        """
        if event is None:
            return None

        extractor = self._extractors.get(event.kind)
        if extractor is None:
            logger.info(
                f"No conversion mapping for event type: {event.kind}",
                extra={"event_id": event.event_id, "event_type": event.kind},
            )
            return None

        facts = await extractor(event)

        if facts is not None:
            logger.info(
                f"Mapped {event.kind} to {facts.event_name}",
                extra={
                    "event_id": event.event_id,
                    "event_type": event.kind,
                    "conversion_event": facts.event_name,
                    "external_id": facts.external_id,
                },
            )
        return facts

    # Checkout sessions

    def _checkout_facts(self, event_name: str, session: StripeCheckoutSession) -> ExtractedFacts:
        return ExtractedFacts(
            event_name=event_name,
            external_id=session.id,
            email=_session_email(session),
            amount_minor=session.amount_total,
            currency=session.currency,
        )

    async def _initiate_checkout(self, event: CheckoutSessionEvent) -> ExtractedFacts:
        return self._checkout_facts(ConversionEvent.INITIATE_CHECKOUT, event.record)

    async def _abandon_checkout(self, event: CheckoutSessionEvent) -> ExtractedFacts:
        return self._checkout_facts(ConversionEvent.ABANDON_CHECKOUT, event.record)

    async def _checkout_purchase(self, event: CheckoutSessionEvent) -> ExtractedFacts:
        session = event.record
        full_session = await self.stripe_service.retrieve_checkout_session(session.id)

        amount_total = (
            full_session.amount_total
            if full_session.amount_total is not None
            else session.amount_total
        )
        content_ids, num_items = summarize_line_items(_line_items(full_session.line_items))

        return ExtractedFacts(
            event_name=ConversionEvent.PURCHASE,
            # Webhook session id: the browser pixel uses the same id for dedup
            external_id=session.id,
            email=_session_email(full_session) or _session_email(session),
            amount_minor=amount_total,
            currency=_first(full_session.currency, session.currency),
            order_id=_first(full_session.payment_intent_id, full_session.id, session.id),
            content_ids=content_ids,
            num_items=num_items,
        )

    # Payment intents

    async def _payment_intent_purchase(self, event: PaymentIntentEvent) -> ExtractedFacts:
        payment_intent = await self.stripe_service.retrieve_payment_intent(event.record.id)

        amount = payment_intent.amount_received
        if amount is None:
            amount = payment_intent.amount

        return ExtractedFacts(
            event_name=ConversionEvent.PURCHASE,
            external_id=event.record.id,
            email=_payment_intent_email(payment_intent) or _payment_intent_email(event.record),
            amount_minor=amount,
            currency=_first(payment_intent.currency, event.record.currency),
            order_id=payment_intent.id,
        )

    async def _payment_intent_failed(self, event: PaymentIntentEvent) -> ExtractedFacts:
        payment_intent = event.record
        return ExtractedFacts(
            event_name=ConversionEvent.PAYMENT_FAILED,
            external_id=payment_intent.id,
            email=_payment_intent_email(payment_intent),
            amount_minor=payment_intent.amount,
            currency=payment_intent.currency,
            order_id=payment_intent.id,
        )

    # Invoices

    async def _invoice_purchase(self, event: InvoiceEvent) -> ExtractedFacts:
        invoice = event.record
        lines = _line_items(invoice.lines)
        if invoice.lines and invoice.lines.has_more:
            lines = await self.stripe_service.list_invoice_lines(invoice.id)
        content_ids, num_items = summarize_line_items(lines)
        return ExtractedFacts(
            event_name=ConversionEvent.PURCHASE,
            external_id=invoice.id,
            email=invoice.customer_email,
            amount_minor=invoice.amount_paid,
            currency=invoice.currency,
            order_id=_first(invoice.payment_intent, invoice.id),
            content_ids=content_ids,
            num_items=num_items,
        )

    async def _invoice_failed(self, event: InvoiceEvent) -> ExtractedFacts:
        invoice = event.record
        return ExtractedFacts(
            event_name=ConversionEvent.PAYMENT_FAILED,
            external_id=invoice.id,
            email=invoice.customer_email,
            amount_minor=invoice.amount_due,
            currency=invoice.currency,
            order_id=_first(invoice.payment_intent, invoice.id),
        )

    # Customers and subscriptions

    async def _lead(self, event: CustomerEvent) -> ExtractedFacts:
        return ExtractedFacts(
            event_name=ConversionEvent.LEAD,
            external_id=event.record.id,
            email=event.record.email,
        )

    def _subscription_facts(self, event_name: str, event: SubscriptionEvent) -> ExtractedFacts:
        subscription = event.record
        first_item = subscription.first_item
        price = first_item.price if first_item else None
        content_ids, _ = summarize_line_items(_line_items(subscription.items))

        return ExtractedFacts(
            event_name=event_name,
            external_id=subscription.id,
            amount_minor=price.unit_amount if price else None,
            currency=_first(price.currency if price else None, subscription.currency),
            order_id=subscription.id,
            content_ids=content_ids,
        )

    async def _subscribe(self, event: SubscriptionEvent) -> ExtractedFacts:
        return self._subscription_facts(ConversionEvent.SUBSCRIBE, event)

    async def _subscription_updated(self, event: SubscriptionEvent) -> Optional[ExtractedFacts]:
        status = event.record.status
        event_name = SUBSCRIPTION_STATUS_EVENTS.get(status)
        if event_name is None:
            logger.info(
                f"Skipping subscription update with unhandled status: {status}",
                extra={
                    "event_id": event.event_id,
                    "subscription_id": event.record.id,
                    "status": status,
                },
            )
            return None
        return self._subscription_facts(event_name, event)

    async def _cancel_subscription(self, event: SubscriptionEvent) -> ExtractedFacts:
        return self._subscription_facts(ConversionEvent.CANCEL_SUBSCRIPTION, event)

    # Charges

    async def _refund(self, event: ChargeEvent) -> ExtractedFacts:
        charge = event.record
        return ExtractedFacts(
            event_name=ConversionEvent.REFUND,
            external_id=charge.id,
            email=_first(
                charge.billing_details.email if charge.billing_details else None,
                charge.receipt_email,
            ),
            amount_minor=charge.amount_refunded,
            currency=charge.currency,
            order_id=charge.payment_intent,
        )
