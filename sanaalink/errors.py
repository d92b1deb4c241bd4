"""
Error taxonomy for slot lookup and checkout.

Every error carries a user-facing title and description so the
customer-facing entry points can turn any failure into a notification
without inspecting the exception type.
"""

from typing import Optional


class SanaaLinkError(Exception):
    """Base class for all recoverable booking-core failures."""

    title = "Something went wrong"

    def __init__(self, description: str, title: Optional[str] = None) -> None:
        super().__init__(description)
        self.description = description
        if title is not None:
            self.title = title


class ValidationError(SanaaLinkError):
    """Input missing or malformed before any I/O was attempted."""

    title = "Missing Information"


class StoreError(SanaaLinkError):
    """Raised by store implementations when a read or write fails."""

    title = "Storage Error"


class StoreReadFailure(SanaaLinkError):
    """Availability or bookings fetch failed or timed out."""

    title = "No Slots Available"


class StoreWriteFailure(SanaaLinkError):
    """Booking, order, or payment record could not be written."""

    title = "Booking Error"


class GatewayRejection(SanaaLinkError):
    """The mobile-money gateway answered with a non-zero response code."""

    title = "Payment Rejected"

    def __init__(self, response_code: str, description: str) -> None:
        super().__init__(description or f"Gateway responded with code {response_code}")
        self.response_code = response_code


class GatewayUnavailable(SanaaLinkError):
    """The gateway proxy could not be reached or did not answer in time."""

    title = "Payment Error"


class AsyncPaymentFailure(SanaaLinkError):
    """A realtime payment notification reported a failed payment."""

    title = "Payment Failed"


class InvalidTransitionError(SanaaLinkError):
    """Raised when a status transition is not valid from the current status."""

    title = "Invalid Status Change"
