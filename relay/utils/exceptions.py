"""
Custom Exception Classes

Defines application-specific exceptions for better error handling and logging.
"""

from typing import Any, Dict, List, Optional


class RelayException(Exception):
    """Base exception for all relay errors"""

    def __init__(
        self,
        message: str,
        error_code: str = "RELAY_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/API responses"""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationException(RelayException):
    """Required configuration (secrets, pixel id) is missing"""

    def __init__(
        self,
        message: str = "Server misconfigured",
        missing: Optional[List[str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if missing:
            details["missing"] = list(missing)
        super().__init__(message, error_code="CONFIG_ERROR", details=details)


class StripeException(RelayException):
    """Stripe webhook or API related errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="STRIPE_ERROR", details=details)


class StripeSignatureException(StripeException):
    """Stripe webhook signature verification failed"""

    def __init__(self, message: str = "Invalid Stripe webhook signature"):
        super().__init__(message, details={"verification": "failed"})


class UpstreamFetchException(StripeException):
    """Re-fetching a richer object from the Stripe API failed"""

    def __init__(
        self,
        message: str,
        object_type: Optional[str] = None,
        object_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if object_type:
            details["object_type"] = object_type
        if object_id:
            details["object_id"] = object_id
        super().__init__(message, details=details)
        self.error_code = "UPSTREAM_FETCH_ERROR"
        self.object_type = object_type
        self.object_id = object_id


class ValidationException(RelayException):
    """Data validation errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="VALIDATION_ERROR", details=details)
