"""Booking error taxonomy.

Every failure the checkout engine surfaces to a guest is one of the kinds
below. Each carries a user-facing ``message`` and, where there is something
the guest can do about it, ``guidance``. The HTTP layer turns them into
responses; the core only raises and catches them.
"""

from typing import Any


class BookingError(Exception):
    """Base class for all checkout failures."""

    kind: str = "booking_error"
    default_message: str = "Something went wrong with your booking."
    default_guidance: tuple[str, ...] = ()
    retryable: bool = True

    def __init__(
        self,
        message: str | None = None,
        *,
        guidance: tuple[str, ...] | list[str] | None = None,
        status_code: int | None = None,
        response: Any = None,
    ):
        self.message = message or self.default_message
        super().__init__(self.message)
        self.guidance = tuple(guidance) if guidance is not None else self.default_guidance
        self.status_code = status_code
        self.response = response

    def to_detail(self) -> dict[str, Any]:
        """Serialize for an API error body."""
        return {
            "kind": self.kind,
            "message": self.message,
            "guidance": list(self.guidance),
            "retryable": self.retryable,
        }


class BookingValidationError(BookingError):
    """Missing or invalid guest/stay fields. Never sent to the backend."""

    kind = "validation"
    default_message = "Please fix the highlighted fields to continue."

    def __init__(self, errors: dict[str, str], message: str | None = None):
        super().__init__(message)
        self.errors = dict(errors)

    def to_detail(self) -> dict[str, Any]:
        detail = super().to_detail()
        detail["errors"] = self.errors
        return detail


class AvailabilityConflict(BookingError):
    """The chosen site is no longer available for these dates."""

    kind = "availability_conflict"
    default_message = "That site was just booked by someone else."
    default_guidance = ("Pick another site or try the suggested dates.",)

    def __init__(self, message: str | None = None, *, suggestions: dict[str, Any] | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.suggestions = suggestions or {}

    def to_detail(self) -> dict[str, Any]:
        detail = super().to_detail()
        detail["suggestions"] = self.suggestions
        return detail


class QuoteUnavailable(BookingError):
    """Live pricing failed. Callers degrade to a fallback estimate."""

    kind = "quote_unavailable"
    default_message = "Live pricing is unavailable. Showing an estimated price."


class HoldFailure(BookingError):
    """The site could not be held. Checkout proceeds without a hold."""

    kind = "hold_failure"
    default_message = "We couldn't hold this site, but you can still book it."


class PromoInvalid(BookingError):
    """Promo code rejected."""

    kind = "promo_invalid"
    default_message = "Invalid promo code"
    default_guidance = ("Check the code and try again, or continue without it.",)


class ReservationCreationFailure(BookingError):
    """The reservation was not created. No partial reservation exists."""

    kind = "reservation_creation_failure"
    default_message = "Failed to create reservation"
    default_guidance = ("Please try again.",)


class PaymentInitializationFailure(BookingError):
    """The payment intent could not be created for an existing reservation."""

    kind = "payment_initialization_failure"
    default_message = "Failed to initialize payment. Please try again."
    default_guidance = ("Retry payment. Your reservation is saved while you do.",)

    def __init__(self, message: str | None = None, *, reservation_id: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.reservation_id = reservation_id

    def to_detail(self) -> dict[str, Any]:
        detail = super().to_detail()
        detail["reservation_id"] = self.reservation_id
        return detail


class PaymentConfirmationFailure(BookingError):
    """The payment processor declined or could not confirm the payment."""

    kind = "payment_confirmation_failure"
    default_message = "Payment failed"
    default_guidance = (
        "Check your card details are correct",
        "Verify you have sufficient funds",
        "Try a different card or payment method",
        "Contact your bank if the issue persists",
    )


class ReconciliationFailure(BookingError):
    """Backend did not acknowledge a payment the processor accepted. Logged only."""

    kind = "reconciliation_failure"
    default_message = "Payment recorded by the processor but not yet by the campground."


class CollaboratorError(BookingError):
    """A secondary platform call failed (guest update, cancellation, reporting...)."""

    kind = "collaborator_error"
    default_message = "The campground service did not respond."


class FlowTransitionError(BookingError):
    """An event was sent to the step machine that its current state cannot accept."""

    kind = "flow_transition"
    default_message = "This booking is already complete. Start a new booking."
    retryable = False


class SagaTransitionError(BookingError):
    """An event was sent to the payment saga out of order."""

    kind = "saga_transition"
    default_message = "This payment step is not available right now."
    retryable = False
