"""Payment saga: reservation, payment intent, confirmation, reconciliation.

Stage changes are pure ``transition(state, event)`` calls over frozen
dataclasses. ``PaymentSaga`` performs the platform calls and feeds the
results through ``transition`` so the ordering rules live in one place.
"""

import logging
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Any, Literal, Protocol

import stripe

from campflow.billing import stripe_client
from campflow.errors import (
    BookingError,
    BookingValidationError,
    PaymentConfirmationFailure,
    PaymentInitializationFailure,
    ReconciliationFailure,
    SagaTransitionError,
)
from campflow.schemas.guest import IN_PERSON_METHODS
from campflow.schemas.reservation import (
    PaymentIntent,
    Receipt,
    Reservation,
    ReservationDraft,
    ReservationStatus,
)

logger = logging.getLogger(__name__)

Settlement = Literal["card", "pay_later", "in_person"]


class SagaStage(StrEnum):
    IDLE = "idle"
    RESERVED = "reserved"
    INTENT_FAILED = "intent_failed"
    AWAITING_PAYMENT = "awaiting_payment"
    PAYMENT_FAILED = "payment_failed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Stages with a live reservation whose payment has not been confirmed.
OPEN_STAGES = frozenset(
    {SagaStage.RESERVED, SagaStage.INTENT_FAILED, SagaStage.AWAITING_PAYMENT, SagaStage.PAYMENT_FAILED}
)


@dataclass(frozen=True)
class SagaState:
    stage: SagaStage = SagaStage.IDLE
    settlement: Settlement | None = None
    reservation_id: str | None = None
    reservation_status: ReservationStatus | None = None
    intent_id: str | None = None
    client_secret: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class ReservationCreated:
    reservation_id: str
    status: ReservationStatus
    settlement: Settlement


@dataclass(frozen=True)
class IntentCreated:
    intent_id: str
    client_secret: str


@dataclass(frozen=True)
class IntentFailed:
    message: str


@dataclass(frozen=True)
class PaymentSucceeded:
    pass


@dataclass(frozen=True)
class PaymentFailed:
    message: str


@dataclass(frozen=True)
class Cancelled:
    pass


SagaEvent = ReservationCreated | IntentCreated | IntentFailed | PaymentSucceeded | PaymentFailed | Cancelled


def transition(state: SagaState, event: SagaEvent) -> SagaState:
    """Apply one event. Raises SagaTransitionError for out-of-order events."""
    stage = state.stage

    if isinstance(event, ReservationCreated) and stage == SagaStage.IDLE:
        next_stage = SagaStage.RESERVED if event.settlement == "card" else SagaStage.COMPLETED
        return replace(
            state,
            stage=next_stage,
            settlement=event.settlement,
            reservation_id=event.reservation_id,
            reservation_status=event.status,
            error=None,
        )

    if isinstance(event, IntentCreated) and stage in (SagaStage.RESERVED, SagaStage.INTENT_FAILED):
        return replace(
            state,
            stage=SagaStage.AWAITING_PAYMENT,
            intent_id=event.intent_id,
            client_secret=event.client_secret,
            error=None,
        )

    if isinstance(event, IntentFailed) and stage in (SagaStage.RESERVED, SagaStage.INTENT_FAILED):
        return replace(state, stage=SagaStage.INTENT_FAILED, error=event.message)

    if isinstance(event, PaymentSucceeded) and stage in (SagaStage.AWAITING_PAYMENT, SagaStage.PAYMENT_FAILED):
        return replace(state, stage=SagaStage.COMPLETED, reservation_status="confirmed", error=None)

    if isinstance(event, PaymentFailed) and stage in (SagaStage.AWAITING_PAYMENT, SagaStage.PAYMENT_FAILED):
        return replace(state, stage=SagaStage.PAYMENT_FAILED, error=event.message)

    if isinstance(event, Cancelled) and stage in OPEN_STAGES:
        return replace(state, stage=SagaStage.CANCELLED, reservation_status="cancelled", error=None)

    raise SagaTransitionError(f"Cannot apply {type(event).__name__} while {stage.value}")


class ReservationBackend(Protocol):
    async def update_guest(self, guest_id: str, patch: dict[str, Any]) -> None: ...

    async def create_reservation(self, draft: ReservationDraft) -> Reservation: ...

    async def update_reservation(self, reservation_id: str, patch: dict[str, Any]) -> Reservation: ...

    async def cancel_reservation(self, reservation_id: str) -> None: ...

    async def create_payment_intent(
        self, reservation_id: str, guest_email: str, amount_cents: int | None = None
    ) -> PaymentIntent: ...

    async def confirm_payment_intent(self, intent_id: str, reservation_id: str) -> None: ...


@dataclass
class SagaRequest:
    """Inputs for one checkout attempt."""

    draft: ReservationDraft
    guest_email: str
    guest_name: str = ""
    site_name: str = ""
    guest_update: dict[str, Any] | None = None
    pay_later: bool = False
    method: str = "card"
    cash_received_cents: int | None = None


def settlement_for(pay_later: bool, method: str) -> Settlement:
    if pay_later:
        return "pay_later"
    if method in IN_PERSON_METHODS:
        return "in_person"
    return "card"


def build_receipt(reservation_id: str, request: SagaRequest) -> Receipt:
    """Local receipt for a cash, check, or folio payment."""
    draft = request.draft
    change_due = None
    if request.method == "cash" and request.cash_received_cents is not None:
        change_due = max(0, request.cash_received_cents - draft.total_amount)
    return Receipt(
        reservation_id=reservation_id,
        guest_name=request.guest_name,
        site_name=request.site_name,
        arrival_date=draft.arrival_date,
        departure_date=draft.departure_date,
        amount_cents=draft.total_amount,
        method=request.method,
        cash_received_cents=request.cash_received_cents if request.method == "cash" else None,
        change_due_cents=change_due,
    )


class PaymentSaga:
    """Runs one checkout attempt against the platform.

    ``staff=True`` reconciles by marking the reservation confirmed; guest
    checkouts reconcile through the payment-intent confirm endpoint. Either
    way reconciliation is best-effort.
    """

    def __init__(self, backend: ReservationBackend, *, staff: bool = False):
        self._backend = backend
        self._staff = staff
        self.state = SagaState()
        self.receipt: Receipt | None = None
        self._request: SagaRequest | None = None

    def _apply(self, event: SagaEvent) -> SagaState:
        previous = self.state.stage
        self.state = transition(self.state, event)
        logger.debug("Saga %s -> %s", previous.value, self.state.stage.value)
        return self.state

    async def start(self, request: SagaRequest) -> SagaState:
        if self.state.stage != SagaStage.IDLE:
            raise SagaTransitionError("Checkout already started for this session")

        settlement = settlement_for(request.pay_later, request.method)
        draft = request.draft
        if settlement == "in_person" and request.method == "cash" and request.cash_received_cents is not None:
            if request.cash_received_cents < draft.total_amount:
                raise BookingValidationError({"cashReceived": "Cash received is less than the amount due"})

        if request.guest_update and draft.guest_id:
            try:
                await self._backend.update_guest(draft.guest_id, request.guest_update)
            except BookingError as exc:
                logger.warning("Guest %s update failed, continuing: %s", draft.guest_id, exc.message)

        if settlement == "in_person":
            draft = draft.model_copy(
                update={
                    "status": "confirmed",
                    "payment_method": request.method,
                    "paid_amount": draft.total_amount,
                    "balance_amount": 0,
                }
            )
        else:
            draft = draft.model_copy(
                update={
                    "status": "pending",
                    "payment_method": None if settlement == "pay_later" else request.method,
                    "paid_amount": 0,
                    "balance_amount": draft.total_amount,
                }
            )

        # Raises ReservationCreationFailure or AvailabilityConflict; nothing to undo.
        reservation = await self._backend.create_reservation(draft)
        self._request = request
        logger.info("Reservation %s created (%s)", reservation.id, settlement)
        self._apply(ReservationCreated(reservation.id, draft.status, settlement))

        if settlement == "in_person":
            self.receipt = build_receipt(reservation.id, request)
            return self.state
        if settlement == "pay_later":
            return self.state

        await self._create_intent()
        return self.state

    async def _create_intent(self) -> SagaState:
        reservation_id = self.state.reservation_id
        try:
            intent = await self._backend.create_payment_intent(
                reservation_id, self._request.guest_email, self._request.draft.total_amount
            )
        except BookingError as exc:
            logger.warning("Payment intent for reservation %s failed: %s", reservation_id, exc.message)
            self._apply(IntentFailed(exc.message))
            raise PaymentInitializationFailure(reservation_id=reservation_id) from exc
        return self._apply(IntentCreated(intent.id, intent.client_secret))

    async def retry_payment_init(self) -> SagaState:
        """Create a new payment intent for the reservation we already have."""
        if self.state.stage not in (SagaStage.RESERVED, SagaStage.INTENT_FAILED):
            raise SagaTransitionError("There is no payment to retry")
        return await self._create_intent()

    async def payment_succeeded(self) -> SagaState:
        """The processor accepted the payment. Reconcile, but never undo success."""
        self._apply(PaymentSucceeded())
        reservation_id = self.state.reservation_id
        try:
            if self._staff:
                amount = self._request.draft.total_amount if self._request else None
                await self._backend.update_reservation(
                    reservation_id,
                    {"status": "confirmed", "paidAmount": amount, "balanceAmount": 0},
                )
            else:
                await self._backend.confirm_payment_intent(self.state.intent_id, reservation_id)
        except BookingError as exc:
            logger.warning(
                "%s for reservation %s: %s", ReconciliationFailure.kind, reservation_id, exc.message
            )
        return self.state

    def payment_failed(self, message: str | None = None) -> PaymentConfirmationFailure:
        """Record a declined payment. Returns the error to surface; retry is allowed."""
        error = PaymentConfirmationFailure(message or None)
        self._apply(PaymentFailed(error.message))
        return error

    async def confirm_with_processor(self, payment_method: str) -> SagaState:
        """Confirm the intent server-side with a payment method entered by staff."""
        if self.state.stage not in (SagaStage.AWAITING_PAYMENT, SagaStage.PAYMENT_FAILED):
            raise SagaTransitionError("No payment is waiting for confirmation")

        try:
            intent = await stripe_client.confirm_payment_intent(self.state.intent_id, payment_method)
        except stripe.StripeError as exc:
            logger.warning("Stripe confirmation failed for %s: %s", self.state.intent_id, exc)
            raise self.payment_failed(getattr(exc, "user_message", None)) from exc

        if not stripe_client.intent_succeeded(intent):
            raise self.payment_failed(stripe_client.decline_message(intent))
        return await self.payment_succeeded()

    async def cancel(self) -> SagaState:
        """Compensate an unpaid reservation by cancelling it (best-effort)."""
        if self.state.stage in (SagaStage.IDLE, SagaStage.CANCELLED):
            return self.state
        if self.state.stage not in OPEN_STAGES:
            raise SagaTransitionError("This reservation is already paid")

        reservation_id = self.state.reservation_id
        try:
            await self._backend.cancel_reservation(reservation_id)
            logger.info("Reservation %s cancelled after payment was abandoned", reservation_id)
        except BookingError as exc:
            logger.warning("Cancelling reservation %s failed: %s", reservation_id, exc.message)
        return self._apply(Cancelled())
