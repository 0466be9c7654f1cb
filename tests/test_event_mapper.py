"""
Unit tests for EventMapper.

Each recognized Stripe event type is mapped to the facts of one
conversion event; purchase events re-fetch their Stripe object first.
"""

import pytest

from relay.handlers.event_mapper import (
    ConversionEvent,
    EventMapper,
    summarize_line_items,
)
from relay.models.stripe_events import (
    RECOGNIZED_EVENT_TYPES,
    LineItem,
    StripeCheckoutSession,
    StripeEvent,
    StripePaymentIntent,
    parse_inbound_event,
)
from relay.utils.exceptions import UpstreamFetchException
from conftest import make_event


def inbound(event_type, obj):
    return parse_inbound_event(StripeEvent.model_validate(make_event(event_type, obj)))


@pytest.fixture
def mapper(mock_stripe_service) -> EventMapper:
    return EventMapper(mock_stripe_service)


@pytest.mark.asyncio
class TestCheckoutSessionEvents:
    """Test suite for checkout.session.* mapping."""

    async def test_completed_maps_to_purchase(
        self, mapper, mock_stripe_service, checkout_session_object, full_checkout_session
    ):
        mock_stripe_service.retrieve_checkout_session.return_value = (
            StripeCheckoutSession.model_validate(full_checkout_session)
        )

        facts = await mapper.extract(inbound("checkout.session.completed", checkout_session_object))

        mock_stripe_service.retrieve_checkout_session.assert_awaited_once_with("cs_test_123")
        assert facts.event_name == ConversionEvent.PURCHASE
        assert facts.external_id == "cs_test_123"
        assert facts.email == "a@example.com"
        assert facts.amount_minor == 2500
        assert facts.currency == "USD"
        assert facts.order_id == "pi_1"
        assert facts.content_ids == ("prod_A", "prod_C")
        assert facts.num_items == 6

    async def test_async_payment_succeeded_maps_to_purchase(
        self, mapper, mock_stripe_service, checkout_session_object, full_checkout_session
    ):
        mock_stripe_service.retrieve_checkout_session.return_value = (
            StripeCheckoutSession.model_validate(full_checkout_session)
        )

        facts = await mapper.extract(
            inbound("checkout.session.async_payment_succeeded", checkout_session_object)
        )

        assert facts.event_name == ConversionEvent.PURCHASE

    async def test_completed_falls_back_to_webhook_values(
        self, mapper, mock_stripe_service, checkout_session_object
    ):
        """Fields missing from the re-fetched session come from the webhook copy"""
        checkout_session_object["customer_email"] = "Webhook@Example.com"
        mock_stripe_service.retrieve_checkout_session.return_value = (
            StripeCheckoutSession.model_validate({"id": "cs_test_123"})
        )

        facts = await mapper.extract(inbound("checkout.session.completed", checkout_session_object))

        assert facts.email == "webhook@example.com"
        assert facts.amount_minor == 2500
        assert facts.currency == "USD"
        assert facts.order_id == "cs_test_123"
        assert facts.content_ids == ()
        assert facts.num_items is None

    async def test_email_preference_order(self, mapper, mock_stripe_service, checkout_session_object):
        """The expanded customer's email wins over the prefilled customer_email"""
        mock_stripe_service.retrieve_checkout_session.return_value = (
            StripeCheckoutSession.model_validate(
                {
                    "id": "cs_test_123",
                    "customer": {"id": "cus_1", "email": "customer@example.com"},
                    "customer_email": "prefill@example.com",
                }
            )
        )

        facts = await mapper.extract(inbound("checkout.session.completed", checkout_session_object))

        assert facts.email == "customer@example.com"

    async def test_fetch_failure_propagates(self, mapper, mock_stripe_service, checkout_session_object):
        mock_stripe_service.retrieve_checkout_session.side_effect = UpstreamFetchException(
            "Failed to retrieve checkout_session"
        )

        with pytest.raises(UpstreamFetchException):
            await mapper.extract(inbound("checkout.session.completed", checkout_session_object))

    async def test_created_maps_to_initiate_checkout(
        self, mapper, mock_stripe_service, checkout_session_object
    ):
        checkout_session_object["customer_details"] = {"email": " Early@Example.com "}

        facts = await mapper.extract(inbound("checkout.session.created", checkout_session_object))

        mock_stripe_service.retrieve_checkout_session.assert_not_awaited()
        assert facts.event_name == ConversionEvent.INITIATE_CHECKOUT
        assert facts.external_id == "cs_test_123"
        assert facts.email == "early@example.com"
        assert facts.amount_minor == 2500

    @pytest.mark.parametrize(
        "event_type",
        ["checkout.session.expired", "checkout.session.async_payment_failed"],
    )
    async def test_unfinished_checkout_maps_to_abandon(
        self, mapper, mock_stripe_service, checkout_session_object, event_type
    ):
        facts = await mapper.extract(inbound(event_type, checkout_session_object))

        mock_stripe_service.retrieve_checkout_session.assert_not_awaited()
        assert facts.event_name == ConversionEvent.ABANDON_CHECKOUT
        assert facts.external_id == "cs_test_123"


@pytest.mark.asyncio
class TestPaymentIntentEvents:
    """Test suite for payment_intent.* mapping."""

    async def test_succeeded_maps_to_purchase(self, mapper, mock_stripe_service):
        mock_stripe_service.retrieve_payment_intent.return_value = StripePaymentIntent.model_validate(
            {
                "id": "pi_1",
                "amount": 5000,
                "amount_received": 4500,
                "currency": "eur",
                "latest_charge": {"id": "ch_1", "billing_details": {"email": "Buyer@Example.com"}},
            }
        )

        facts = await mapper.extract(
            inbound("payment_intent.succeeded", {"id": "pi_1", "amount": 5000, "currency": "eur"})
        )

        mock_stripe_service.retrieve_payment_intent.assert_awaited_once_with("pi_1")
        assert facts.event_name == ConversionEvent.PURCHASE
        assert facts.external_id == "pi_1"
        assert facts.email == "buyer@example.com"
        assert facts.amount_minor == 4500
        assert facts.currency == "EUR"
        assert facts.order_id == "pi_1"

    async def test_succeeded_falls_back_to_amount(self, mapper, mock_stripe_service):
        mock_stripe_service.retrieve_payment_intent.return_value = StripePaymentIntent.model_validate(
            {"id": "pi_1", "amount": 5000, "currency": "usd", "receipt_email": "r@example.com"}
        )

        facts = await mapper.extract(inbound("payment_intent.succeeded", {"id": "pi_1"}))

        assert facts.amount_minor == 5000
        assert facts.email == "r@example.com"

    async def test_payment_failed(self, mapper, mock_stripe_service):
        facts = await mapper.extract(
            inbound(
                "payment_intent.payment_failed",
                {"id": "pi_2", "amount": 1200, "currency": "gbp", "receipt_email": "x@example.com"},
            )
        )

        mock_stripe_service.retrieve_payment_intent.assert_not_awaited()
        assert facts.event_name == ConversionEvent.PAYMENT_FAILED
        assert facts.external_id == "pi_2"
        assert facts.amount_minor == 1200
        assert facts.currency == "GBP"


@pytest.mark.asyncio
class TestInvoiceEvents:
    """Test suite for invoice.* mapping."""

    @pytest.fixture
    def invoice_object(self):
        return {
            "id": "in_1",
            "customer": "cus_1",
            "customer_email": "Payer@Example.com",
            "subscription": "sub_1",
            "payment_intent": "pi_9",
            "amount_due": 2999,
            "amount_paid": 2999,
            "currency": "usd",
            "lines": {
                "data": [
                    {"id": "il_1", "quantity": 1, "price": {"id": "price_1", "product": "prod_plan"}},
                ]
            },
        }

    async def test_payment_succeeded_maps_to_purchase(self, mapper, invoice_object):
        facts = await mapper.extract(inbound("invoice.payment_succeeded", invoice_object))

        assert facts.event_name == ConversionEvent.PURCHASE
        assert facts.external_id == "in_1"
        assert facts.email == "payer@example.com"
        assert facts.amount_minor == 2999
        assert facts.order_id == "pi_9"
        assert facts.content_ids == ("prod_plan",)
        assert facts.num_items == 1

    async def test_truncated_lines_are_fetched(self, mapper, mock_stripe_service, invoice_object):
        """Webhook invoices carry one page of lines; the rest come from the API"""
        invoice_object["lines"]["has_more"] = True
        mock_stripe_service.list_invoice_lines.return_value = [
            LineItem.model_validate({"id": f"il_{i}", "quantity": 1, "price": {"product": f"prod_{i}"}})
            for i in range(15)
        ]

        facts = await mapper.extract(inbound("invoice.payment_succeeded", invoice_object))

        mock_stripe_service.list_invoice_lines.assert_awaited_once_with("in_1")
        assert facts.num_items == 15
        assert len(facts.content_ids) == 15

    async def test_complete_lines_are_not_refetched(self, mapper, mock_stripe_service, invoice_object):
        await mapper.extract(inbound("invoice.payment_succeeded", invoice_object))

        mock_stripe_service.list_invoice_lines.assert_not_awaited()

    async def test_payment_failed_uses_amount_due(self, mapper, invoice_object):
        invoice_object["amount_paid"] = 0
        invoice_object["payment_intent"] = None

        facts = await mapper.extract(inbound("invoice.payment_failed", invoice_object))

        assert facts.event_name == ConversionEvent.PAYMENT_FAILED
        assert facts.amount_minor == 2999
        assert facts.order_id == "in_1"


@pytest.mark.asyncio
class TestCustomerAndSubscriptionEvents:
    """Test suite for customer.* mapping."""

    async def test_customer_created_maps_to_lead(self, mapper):
        facts = await mapper.extract(
            inbound("customer.created", {"id": "cus_1", "email": "Lead@Example.com"})
        )

        assert facts.event_name == ConversionEvent.LEAD
        assert facts.external_id == "cus_1"
        assert facts.email == "lead@example.com"
        assert facts.amount_minor is None
        assert facts.currency is None

    async def test_subscription_created_maps_to_subscribe(self, mapper, subscription_object):
        facts = await mapper.extract(inbound("customer.subscription.created", subscription_object))

        assert facts.event_name == ConversionEvent.SUBSCRIBE
        assert facts.external_id == "sub_test123"
        assert facts.amount_minor == 2999
        assert facts.currency == "USD"
        assert facts.content_ids == ("prod_plan",)

    @pytest.mark.parametrize(
        "status,expected",
        [
            ("active", ConversionEvent.RENEW_SUBSCRIPTION),
            ("past_due", ConversionEvent.PAYMENT_FAILED),
        ],
    )
    async def test_subscription_updated_by_status(self, mapper, subscription_object, status, expected):
        subscription_object["status"] = status

        facts = await mapper.extract(inbound("customer.subscription.updated", subscription_object))

        assert facts.event_name == expected

    @pytest.mark.parametrize("status", ["canceled", "trialing", "incomplete", "unpaid"])
    async def test_subscription_updated_other_status_is_skipped(
        self, mapper, subscription_object, status
    ):
        subscription_object["status"] = status

        facts = await mapper.extract(inbound("customer.subscription.updated", subscription_object))

        assert facts is None

    async def test_subscription_deleted_maps_to_cancel(self, mapper, subscription_object):
        subscription_object["status"] = "canceled"

        facts = await mapper.extract(inbound("customer.subscription.deleted", subscription_object))

        assert facts.event_name == ConversionEvent.CANCEL_SUBSCRIPTION

    async def test_subscription_without_items(self, mapper):
        facts = await mapper.extract(
            inbound("customer.subscription.created", {"id": "sub_2", "status": "active"})
        )

        assert facts.amount_minor is None
        assert facts.content_ids == ()


@pytest.mark.asyncio
class TestChargeEvents:
    """Test suite for charge.refunded mapping."""

    async def test_refund(self, mapper):
        facts = await mapper.extract(
            inbound(
                "charge.refunded",
                {
                    "id": "ch_1",
                    "amount": 5000,
                    "amount_refunded": 2000,
                    "currency": "usd",
                    "payment_intent": "pi_1",
                    "receipt_email": "receipt@example.com",
                    "billing_details": {"email": "Billing@Example.com"},
                },
            )
        )

        assert facts.event_name == ConversionEvent.REFUND
        assert facts.external_id == "ch_1"
        assert facts.amount_minor == 2000
        assert facts.order_id == "pi_1"
        assert facts.email == "billing@example.com"

    async def test_refund_email_falls_back_to_receipt(self, mapper):
        facts = await mapper.extract(
            inbound("charge.refunded", {"id": "ch_1", "receipt_email": "receipt@example.com"})
        )

        assert facts.email == "receipt@example.com"


@pytest.mark.asyncio
async def test_unrecognized_event_yields_nothing(mapper):
    assert await mapper.extract(None) is None


def test_mapper_supports_every_recognized_type(mapper):
    for event_type in RECOGNIZED_EVENT_TYPES:
        assert mapper.supports(event_type)
    assert not mapper.supports("product.created")


class TestSummarizeLineItems:
    """Test suite for content id and quantity aggregation."""

    def test_items_without_product_still_count(self):
        items = [
            LineItem.model_validate({"quantity": 2, "price": {"product": "prod_A"}}),
            LineItem.model_validate({"quantity": 1, "price": {"product": None}}),
            LineItem.model_validate({"quantity": 3, "price": {"product": {"id": "prod_C"}}}),
        ]

        assert summarize_line_items(items) == (("prod_A", "prod_C"), 6)

    def test_no_items(self):
        assert summarize_line_items([]) == ((), None)

    def test_missing_quantity_counts_as_zero(self):
        items = [LineItem.model_validate({"price": {"product": "prod_A"}})]

        assert summarize_line_items(items) == (("prod_A",), 0)
