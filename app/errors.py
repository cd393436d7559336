"""
Exception hierarchy for push delivery.

Precondition errors (validation, configuration, store) abort a dispatch
call and are rendered to the caller by the exception handler in main.py.
Delivery errors are per subscription and never escape the dispatcher.
"""

from typing import Optional


class PushServiceError(Exception):
    """Base class for errors surfaced by the push service."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message, "type": type(self).__name__}


class ValidationError(PushServiceError):
    """Malformed notification request (missing title/body, bad urgency)."""

    status_code = 400


class ConfigurationError(PushServiceError):
    """VAPID signing keys are missing or unusable."""

    status_code = 500


class StoreError(PushServiceError):
    """Subscription store read or write failed."""

    status_code = 500


class DeliveryError(Exception):
    """Failure delivering to a single subscription."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class GoneDeliveryError(DeliveryError):
    """Push service reports the endpoint as permanently invalid (404/410)."""


class TransientDeliveryError(DeliveryError):
    """Any other transport failure. Recorded, not retried."""


class AgentDisplayError(Exception):
    """The background receiver could not render the primary notification."""
