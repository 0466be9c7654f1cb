"""
Pytest Configuration and Fixtures

Provides common fixtures and test utilities for relay tests.
"""

import hashlib
import hmac
import json
import time
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi.testclient import TestClient

from relay.config import Settings, get_settings
from relay.handlers.event_mapper import EventMapper
from relay.handlers.event_router import EventRouter
from relay.main import app
from relay.routes.webhook import get_event_router
from relay.services.conversions_client import ConversionsApiClient
from relay.services.stripe_service import StripeService
from relay.utils.retry import RetryPolicy

TEST_STRIPE_WEBHOOK_SECRET = "whsec_test_secret"
TEST_STRIPE_API_KEY = "sk_test_12345"
TEST_PIXEL_ID = "123456789012345"
TEST_ACCESS_TOKEN = "EAAB_test_token"


def generate_stripe_signature(
    payload: str,
    secret: str = TEST_STRIPE_WEBHOOK_SECRET,
    timestamp: Optional[int] = None,
) -> str:
    """
    Generate valid Stripe webhook signature for testing.

    Args:
        payload: JSON payload as string
        secret: Webhook secret
        timestamp: Signing time (defaults to now)

    Returns:
        Stripe-Signature header value
    """
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed_payload = f"{timestamp}.{payload}"

    signature = hmac.new(
        secret.encode("utf-8"),
        signed_payload.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()

    return f"t={timestamp},v1={signature}"


def make_event(event_type: str, obj: Dict[str, Any], event_id: str = "evt_test") -> Dict[str, Any]:
    """Wrap a Stripe object in a webhook event envelope"""
    return {
        "id": event_id,
        "object": "event",
        "api_version": "2024-06-20",
        "created": int(time.time()),
        "type": event_type,
        "livemode": False,
        "data": {"object": obj},
    }


@pytest.fixture
def test_settings() -> Settings:
    """Fully configured settings, isolated from the environment and .env"""
    return Settings(
        _env_file=None,
        environment="test",
        stripe_secret_key=TEST_STRIPE_API_KEY,
        stripe_webhook_secret=TEST_STRIPE_WEBHOOK_SECRET,
        fb_pixel_id=TEST_PIXEL_ID,
        fb_access_token=TEST_ACCESS_TOKEN,
        delivery_backoff="none",
        log_level="DEBUG",
    )


@pytest.fixture
def mock_stripe_service():
    """Stripe service whose API re-fetches are mocked"""
    mock = AsyncMock(spec=StripeService)
    return mock


class CapiRecorder:
    """MockTransport handler that records requests and replays responses"""

    def __init__(self, responses: Optional[List[Any]] = None):
        self.requests: List[httpx.Request] = []
        self.responses = list(responses or [])

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if self.responses else 200
        if isinstance(response, Exception):
            raise response
        if isinstance(response, httpx.Response):
            return response
        return httpx.Response(response, json={"events_received": 1, "fbtrace_id": "trace"})

    @property
    def bodies(self) -> List[Dict[str, Any]]:
        return [json.loads(request.content) for request in self.requests]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def capi_recorder() -> CapiRecorder:
    return CapiRecorder()


@pytest.fixture
def capi_client(capi_recorder) -> ConversionsApiClient:
    return ConversionsApiClient(
        pixel_id=TEST_PIXEL_ID,
        access_token=TEST_ACCESS_TOKEN,
        retry_policy=RetryPolicy(max_attempts=3, backoff="none"),
        transport=capi_recorder.transport(),
    )


@pytest.fixture
def event_router(mock_stripe_service, capi_client, test_settings) -> EventRouter:
    return EventRouter(
        mapper=EventMapper(mock_stripe_service),
        client=capi_client,
        event_source_url=test_settings.event_source_url,
    )


@pytest.fixture
def test_client(test_settings, event_router):
    """FastAPI test client wired to test settings and mocked downstreams"""
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_event_router] = lambda: event_router
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def signed_post(test_client) -> Callable[..., httpx.Response]:
    """Factory posting a correctly signed webhook delivery"""

    def _post(event: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        payload = json.dumps(event, separators=(",", ":"))
        all_headers = {
            "Stripe-Signature": generate_stripe_signature(payload),
            "Content-Type": "application/json",
        }
        all_headers.update(headers or {})
        return test_client.post("/stripe/webhook", content=payload, headers=all_headers)

    return _post


@pytest.fixture
def checkout_session_object() -> Dict[str, Any]:
    """checkout.session object as carried by the webhook"""
    return {
        "id": "cs_test_123",
        "object": "checkout.session",
        "amount_total": 2500,
        "currency": "usd",
        "customer": "cus_test123",
        "customer_email": None,
        "customer_details": None,
        "payment_intent": "pi_1",
        "payment_status": "paid",
        "status": "complete",
        "mode": "payment",
    }


@pytest.fixture
def full_checkout_session() -> Dict[str, Any]:
    """checkout.session as returned by a retrieve with expansions"""
    return {
        "id": "cs_test_123",
        "object": "checkout.session",
        "amount_total": 2500,
        "currency": "usd",
        "customer": {"id": "cus_test123", "object": "customer", "email": "other@example.com"},
        "customer_details": {"email": "A@Example.com", "name": "Ann Example"},
        "payment_intent": {"id": "pi_1", "object": "payment_intent", "amount": 2500},
        "line_items": {
            "object": "list",
            "data": [
                {"id": "li_1", "quantity": 2, "price": {"id": "price_1", "product": "prod_A"}},
                {"id": "li_2", "quantity": 1, "price": {"id": "price_2", "product": None}},
                {"id": "li_3", "quantity": 3, "price": {"id": "price_3", "product": "prod_C"}},
            ],
        },
        "payment_status": "paid",
        "status": "complete",
    }


@pytest.fixture
def subscription_object() -> Dict[str, Any]:
    """customer.subscription object"""
    return {
        "id": "sub_test123",
        "object": "subscription",
        "customer": "cus_test123",
        "status": "active",
        "currency": "usd",
        "items": {
            "object": "list",
            "data": [
                {
                    "id": "si_1",
                    "quantity": 1,
                    "price": {
                        "id": "price_test123",
                        "unit_amount": 2999,
                        "currency": "usd",
                        "product": "prod_plan",
                    },
                }
            ],
        },
    }
