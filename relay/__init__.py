"""
Stripe to Meta Conversions API Relay

Receives Stripe webhook events, verifies their signature, maps them to
marketing conversion events and forwards them to the Meta Conversions API.
"""

__version__ = "1.0.0"
