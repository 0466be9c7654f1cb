"""Stripe event mapping and routing"""

from relay.handlers.event_mapper import EventMapper
from relay.handlers.event_router import EventRouter

__all__ = [
    "EventMapper",
    "EventRouter",
]
