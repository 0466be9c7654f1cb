"""
Conversion Payload Builder

Assembles the Conversions API event from extracted facts and request
context. This is the only place the customer's email is turned into the
hashed form that leaves the process.
"""

import time
from typing import Optional

from relay.models.conversion import (
    ConversionPayload,
    CustomData,
    ExtractedFacts,
    RequestContext,
    UserData,
)
from relay.utils.currency import normalize_amount
from relay.utils.hashing import hash_identifier

CONTENT_TYPE_PRODUCT = "product"
DEFAULT_CURRENCY = "USD"
ACTION_SOURCE_WEBSITE = "website"


def build_user_data(facts: ExtractedFacts, context: RequestContext) -> UserData:
    user_data = UserData()

    hashed_email = hash_identifier(facts.email)
    if hashed_email:
        user_data.em = [hashed_email]
    if context.client_ip:
        user_data.client_ip_address = context.client_ip
    if context.user_agent:
        user_data.client_user_agent = context.user_agent

    return user_data


def build_custom_data(facts: ExtractedFacts) -> CustomData:
    """
    Populate custom_data one field at a time.
    Fields without a source value stay unset so they are omitted on the
    wire; the Conversions API treats an omitted value differently from
    an explicit null or zero.
    """
    custom_data = CustomData()

    if facts.currency:
        custom_data.currency = facts.currency

    value = normalize_amount(facts.amount_minor, facts.currency)
    if value is not None:
        custom_data.value = value
        # A value is meaningless without a currency
        custom_data.currency = facts.currency or DEFAULT_CURRENCY

    if facts.order_id:
        custom_data.order_id = str(facts.order_id)

    if facts.content_ids:
        custom_data.content_ids = list(facts.content_ids)
        custom_data.content_type = CONTENT_TYPE_PRODUCT

    if facts.num_items:
        custom_data.num_items = facts.num_items

    return custom_data


def build_conversion_payload(
    facts: ExtractedFacts,
    context: Optional[RequestContext] = None,
    event_source_url: Optional[str] = None,
    test_event_code: Optional[str] = None,
) -> ConversionPayload:
    """
    Build a Conversions API event.

    event_time is taken at build time rather than from the Stripe event;
    delivery happens right after receipt.

    Args:
        facts: Facts extracted by the event mapper
        context: Client IP / user agent of the inbound request
        event_source_url: Attribution source URL
        test_event_code: Optional Test Events code

    Returns:
        ConversionPayload ready for delivery
    """
    context = context or RequestContext()

    return ConversionPayload(
        event_name=facts.event_name,
        event_time=int(time.time()),
        action_source=ACTION_SOURCE_WEBSITE,
        event_id=facts.external_id,
        event_source_url=event_source_url or None,
        user_data=build_user_data(facts, context),
        custom_data=build_custom_data(facts),
        test_event_code=test_event_code or None,
    )
