"""
Conversion Event Models

Pydantic models for the facts extracted from a Stripe event and the
Meta Conversions API payload built from them.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


class ExtractedFacts(BaseModel):
    """Fields pulled out of one Stripe event by the event mapper"""

    model_config = ConfigDict(frozen=True)

    event_name: str = Field(min_length=1, description="Conversion event name, e.g. Purchase")
    external_id: str = Field(min_length=1, description="Stripe object id used for dedup")
    email: Optional[str] = Field(None, description="Trimmed, lowercased email")
    amount_minor: Optional[int] = Field(None, description="Amount in the currency's minor unit")
    currency: Optional[str] = Field(None, description="Three-letter ISO currency code, upper case")
    order_id: Optional[str] = None
    content_ids: Tuple[str, ...] = Field(default_factory=tuple)
    num_items: Optional[int] = None

    @field_validator("currency", mode="before")
    @classmethod
    def upper_currency(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return str(v).strip().upper() or None

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = str(v).strip().lower()
        return v or None


class RequestContext(BaseModel):
    """Per-request metadata attached to the outbound event"""

    model_config = ConfigDict(frozen=True)

    client_ip: Optional[str] = None
    user_agent: Optional[str] = None


class UserData(BaseModel):
    """Conversions API user_data block; email is already hashed"""

    em: Optional[List[str]] = None
    client_ip_address: Optional[str] = None
    client_user_agent: Optional[str] = None


class CustomData(BaseModel):
    """Conversions API custom_data block"""

    currency: Optional[str] = None
    value: Optional[Decimal] = None
    order_id: Optional[str] = None
    content_ids: Optional[List[str]] = None
    num_items: Optional[int] = None
    content_type: Optional[str] = None

    @field_serializer("value")
    def serialize_value(self, value: Optional[Decimal]) -> Optional[float]:
        return float(value) if value is not None else None


class ConversionPayload(BaseModel):
    """One server event for the Conversions API"""

    event_name: str
    event_time: int = Field(description="Unix timestamp (seconds)")
    action_source: str = "website"
    event_id: Optional[str] = Field(None, description="Dedup identifier")
    event_source_url: Optional[str] = None
    user_data: UserData = Field(default_factory=UserData)
    custom_data: CustomData = Field(default_factory=CustomData)
    test_event_code: Optional[str] = None

    def to_event_dict(self) -> Dict[str, Any]:
        """Serialize one entry of the request's ``data`` array; absent fields are omitted"""
        return self.model_dump(mode="json", exclude_none=True, exclude={"test_event_code"})


class DeliveryResult(BaseModel):
    """Outcome of delivering one event; used for logging only"""

    succeeded: bool
    http_status: Optional[int] = None
    response_body: Optional[Any] = None
    attempts_made: int = 0
