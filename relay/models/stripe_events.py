"""
Stripe Event Models

Pydantic models for Stripe webhook events. The raw envelope is parsed
first; recognized event types are then converted into one typed variant
per object shape, with every field the mapper reads declared explicitly.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class EventKind(str, Enum):
    """Stripe event types the relay maps to conversion events"""

    CHECKOUT_SESSION_CREATED = "checkout.session.created"
    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
    CHECKOUT_SESSION_ASYNC_PAYMENT_SUCCEEDED = "checkout.session.async_payment_succeeded"
    CHECKOUT_SESSION_EXPIRED = "checkout.session.expired"
    CHECKOUT_SESSION_ASYNC_PAYMENT_FAILED = "checkout.session.async_payment_failed"
    PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_INTENT_PAYMENT_FAILED = "payment_intent.payment_failed"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
    CUSTOMER_CREATED = "customer.created"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    CHARGE_REFUNDED = "charge.refunded"


RECOGNIZED_EVENT_TYPES = frozenset(kind.value for kind in EventKind)


class StripeObject(BaseModel):
    """Base for Stripe object snapshots; unknown fields are ignored"""

    model_config = ConfigDict(extra="ignore", frozen=True)


# Nested objects


class BillingDetails(StripeObject):
    email: Optional[str] = None
    name: Optional[str] = None


class CustomerDetails(StripeObject):
    email: Optional[str] = None
    name: Optional[str] = None


class StripePrice(StripeObject):
    id: Optional[str] = None
    unit_amount: Optional[int] = None
    currency: Optional[str] = None
    product: Optional[Union[str, Dict[str, Any]]] = None

    @property
    def product_id(self) -> Optional[str]:
        """Product ID whether or not the product was expanded"""
        if isinstance(self.product, dict):
            return self.product.get("id")
        return self.product


class LineItem(StripeObject):
    """Checkout line item, invoice line or subscription item"""

    id: Optional[str] = None
    quantity: Optional[int] = None
    price: Optional[StripePrice] = None


class LineItemList(StripeObject):
    data: List[LineItem] = Field(default_factory=list)
    # Set when Stripe returned only the first page of the list
    has_more: bool = False


class StripeCharge(StripeObject):
    """Stripe charge data"""

    id: str = Field(description="Charge ID")
    amount: Optional[int] = None
    amount_refunded: Optional[int] = None
    currency: Optional[str] = None
    payment_intent: Optional[str] = None
    receipt_email: Optional[str] = None
    billing_details: Optional[BillingDetails] = None


class ChargeList(StripeObject):
    data: List[StripeCharge] = Field(default_factory=list)


class StripeCustomer(StripeObject):
    """Stripe customer data"""

    id: str = Field(description="Stripe customer ID")
    email: Optional[str] = Field(None, description="Customer email")
    name: Optional[str] = Field(None, description="Customer name")


class StripePaymentIntent(StripeObject):
    """Stripe payment intent data"""

    id: str = Field(description="Payment intent ID")
    amount: Optional[int] = Field(None, description="Amount in smallest currency unit")
    amount_received: Optional[int] = Field(None, description="Amount that was collected")
    currency: Optional[str] = Field(None, description="Three-letter ISO currency code")
    customer: Optional[Union[str, StripeCustomer]] = None
    receipt_email: Optional[str] = None
    latest_charge: Optional[Union[str, StripeCharge]] = None
    # Only present on older API versions
    charges: Optional[ChargeList] = None

    @property
    def first_charge(self) -> Optional[StripeCharge]:
        """Expanded latest charge, else the first listed charge"""
        if isinstance(self.latest_charge, StripeCharge):
            return self.latest_charge
        if self.charges and self.charges.data:
            return self.charges.data[0]
        return None


class StripeCheckoutSession(StripeObject):
    """Stripe checkout session data"""

    id: str = Field(description="Checkout session ID")
    amount_total: Optional[int] = None
    currency: Optional[str] = None
    customer: Optional[Union[str, StripeCustomer]] = None
    customer_email: Optional[str] = None
    customer_details: Optional[CustomerDetails] = None
    payment_intent: Optional[Union[str, StripePaymentIntent]] = None
    line_items: Optional[LineItemList] = None
    mode: Optional[str] = None
    status: Optional[str] = None
    payment_status: Optional[str] = None

    @property
    def payment_intent_id(self) -> Optional[str]:
        if isinstance(self.payment_intent, StripePaymentIntent):
            return self.payment_intent.id
        return self.payment_intent


class StripeInvoice(StripeObject):
    """Stripe invoice data"""

    id: str = Field(description="Invoice ID")
    customer: Optional[str] = None
    customer_email: Optional[str] = None
    subscription: Optional[str] = None
    payment_intent: Optional[str] = None
    amount_due: Optional[int] = None
    amount_paid: Optional[int] = None
    currency: Optional[str] = None
    lines: Optional[LineItemList] = None


class StripeSubscription(StripeObject):
    """Stripe subscription data"""

    id: str = Field(description="Stripe subscription ID")
    customer: Optional[str] = None
    status: Optional[str] = None
    currency: Optional[str] = None
    items: Optional[LineItemList] = None

    @property
    def first_item(self) -> Optional[LineItem]:
        if self.items and self.items.data:
            return self.items.data[0]
        return None


# Envelope


class StripeEventData(BaseModel):
    """Stripe event data wrapper"""

    object: Dict[str, Any] = Field(description="The Stripe object")
    previous_attributes: Optional[Dict[str, Any]] = Field(
        None, description="Previous object state for update events"
    )


class StripeEvent(BaseModel):
    """
    Stripe webhook event model.
    Represents the complete webhook payload from Stripe.
    """

    id: str = Field(description="Unique event identifier")
    type: str = Field(description="Event type (e.g., payment_intent.succeeded)")
    created: int = Field(description="Unix timestamp of event creation")
    livemode: bool = Field(default=False, description="Whether in live mode")
    data: StripeEventData = Field(description="Event data")
    api_version: Optional[str] = Field(None)

    @property
    def event_object(self) -> Dict[str, Any]:
        """Get the main event object"""
        return self.data.object

    @property
    def is_recognized(self) -> bool:
        return self.type in RECOGNIZED_EVENT_TYPES


# Typed inbound variants


class InboundEventBase(BaseModel):
    """Fields shared by every verified inbound event"""

    model_config = ConfigDict(frozen=True)

    event_id: str
    created: int
    livemode: bool = False
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CheckoutSessionEvent(InboundEventBase):
    kind: Literal[
        "checkout.session.created",
        "checkout.session.completed",
        "checkout.session.async_payment_succeeded",
        "checkout.session.expired",
        "checkout.session.async_payment_failed",
    ]
    record: StripeCheckoutSession


class PaymentIntentEvent(InboundEventBase):
    kind: Literal["payment_intent.succeeded", "payment_intent.payment_failed"]
    record: StripePaymentIntent


class InvoiceEvent(InboundEventBase):
    kind: Literal["invoice.payment_succeeded", "invoice.payment_failed"]
    record: StripeInvoice


class CustomerEvent(InboundEventBase):
    kind: Literal["customer.created"]
    record: StripeCustomer


class SubscriptionEvent(InboundEventBase):
    kind: Literal[
        "customer.subscription.created",
        "customer.subscription.updated",
        "customer.subscription.deleted",
    ]
    record: StripeSubscription


class ChargeEvent(InboundEventBase):
    kind: Literal["charge.refunded"]
    record: StripeCharge


InboundEvent = Annotated[
    Union[
        CheckoutSessionEvent,
        PaymentIntentEvent,
        InvoiceEvent,
        CustomerEvent,
        SubscriptionEvent,
        ChargeEvent,
    ],
    Field(discriminator="kind"),
]

_inbound_event_adapter = TypeAdapter(InboundEvent)


def parse_inbound_event(event: StripeEvent) -> Optional[InboundEvent]:
    """
    Convert a verified envelope into its typed variant.

    Args:
        event: Parsed Stripe event envelope

    Returns:
        The typed inbound event, or None for event types the relay ignores

    Raises:
        pydantic.ValidationError: If a recognized event's object is malformed
    """
    if not event.is_recognized:
        return None

    return _inbound_event_adapter.validate_python(
        {
            "kind": event.type,
            "event_id": event.id,
            "created": event.created,
            "livemode": event.livemode,
            "record": event.event_object,
        }
    )
