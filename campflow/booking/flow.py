"""Checkout step machine.

Three layouts share the same rules: the ``standard`` guest flow
(dates, site, details, payment), the ``compact`` flow that picks dates and
site on one screen, and the staff ``express`` flow that captures the guest on
the payment screen. Moving forward requires every step up to the current one
to validate. Moving back is always allowed and never drops data.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import date
from enum import StrEnum

from campflow.errors import FlowTransitionError
from campflow.schemas.guest import GuestDraft

logger = logging.getLogger(__name__)


class Step(StrEnum):
    DATES = "dates"
    SITE = "site"
    STAY = "stay"
    DETAILS = "details"
    PAYMENT = "payment"
    COMPLETE = "complete"


class Variant(StrEnum):
    STANDARD = "standard"
    COMPACT = "compact"
    EXPRESS = "express"


SEQUENCES: dict[Variant, tuple[Step, ...]] = {
    Variant.STANDARD: (Step.DATES, Step.SITE, Step.DETAILS, Step.PAYMENT, Step.COMPLETE),
    Variant.COMPACT: (Step.STAY, Step.DETAILS, Step.PAYMENT, Step.COMPLETE),
    Variant.EXPRESS: (Step.STAY, Step.PAYMENT, Step.COMPLETE),
}


@dataclass(frozen=True)
class FlowContext:
    """Snapshot of everything the validators look at."""

    guest: GuestDraft = field(default_factory=GuestDraft)
    arrival_date: date | None = None
    departure_date: date | None = None
    today: date | None = None
    site_id: str | None = None
    site_class_id: str | None = None
    assign_specific_site: bool = False
    max_rig_length: int | None = None
    tax_waiver_required: bool = False
    required_policy_ids: tuple[str, ...] = ()
    amount_due_cents: int = 0
    staff: bool = False


Errors = dict[str, str]
Validator = Callable[[FlowContext], Errors]


def validate_dates(ctx: FlowContext) -> Errors:
    if ctx.arrival_date is None or ctx.departure_date is None:
        return {"dates": "Please select arrival and departure dates"}
    if ctx.departure_date <= ctx.arrival_date:
        return {"dates": "Departure date must be after arrival date"}
    if not ctx.staff and ctx.today is not None and ctx.arrival_date < ctx.today:
        return {"dates": "Arrival date cannot be in the past"}
    return {}


def validate_site(ctx: FlowContext) -> Errors:
    if ctx.site_id:
        return {}
    if not ctx.site_class_id:
        return {"site": "Please select a site class"}
    if ctx.assign_specific_site:
        return {"site": "Select a specific site or turn off manual assignment"}
    return {}


def validate_guest(ctx: FlowContext) -> Errors:
    guest = ctx.guest
    errors: Errors = {}
    if ctx.staff:
        if not guest.guest_id:
            errors["guest"] = "Please select or create a guest"
        return errors

    if not guest.first_name.strip():
        errors["firstName"] = "First name is required"
    if not guest.last_name.strip():
        errors["lastName"] = "Last name is required"
    if "@" not in guest.email:
        errors["email"] = "Enter a valid email address"
    if not guest.phone.strip():
        errors["phone"] = "Phone number is required"
    if len(guest.postal_code.strip()) < 5:
        errors["postalCode"] = "Enter a valid ZIP code"

    length = guest.equipment.length
    if ctx.max_rig_length and length and length > ctx.max_rig_length:
        errors["equipment"] = f"Equipment length exceeds site maximum of {ctx.max_rig_length}ft"
    return errors


def validate_requirements(ctx: FlowContext) -> Errors:
    """Tax waiver, pre-booking policies, and supplemental forms."""
    guest = ctx.guest
    errors: Errors = {}
    if ctx.tax_waiver_required and not guest.tax_waiver_signed:
        errors["taxWaiver"] = "Please sign the tax waiver to continue"
    if any(not guest.policy_acceptances.get(pid) for pid in ctx.required_policy_ids):
        errors["policies"] = "Please accept all required policies"
    if not guest.forms_complete:
        errors["forms"] = "Please complete the required forms"
    return errors


def validate_payment(ctx: FlowContext) -> Errors:
    """Staff payment collection. Guests pay by card, so there is nothing to check."""
    payment = ctx.guest.payment
    if not ctx.staff or not payment.collect_now:
        return {}
    amount = payment.amount_cents if payment.amount_cents is not None else ctx.amount_due_cents
    if amount <= 0:
        return {"payment": "Please enter a valid payment amount"}
    if payment.method == "cash":
        if payment.cash_received_cents is None or payment.cash_received_cents < amount:
            return {"payment": "Cash received must be at least the payment amount"}
    return {}


def _combine(*validators: Validator) -> Validator:
    def run(ctx: FlowContext) -> Errors:
        errors: Errors = {}
        for validator in validators:
            errors.update(validator(ctx))
        return errors

    return run


STEP_VALIDATORS: dict[Variant, dict[Step, Validator]] = {
    Variant.STANDARD: {
        Step.DATES: validate_dates,
        Step.SITE: validate_site,
        Step.DETAILS: _combine(validate_guest, validate_requirements),
        Step.PAYMENT: validate_payment,
    },
    Variant.COMPACT: {
        Step.STAY: _combine(validate_dates, validate_site),
        Step.DETAILS: _combine(validate_guest, validate_requirements),
        Step.PAYMENT: validate_payment,
    },
    Variant.EXPRESS: {
        Step.STAY: _combine(validate_dates, validate_site),
        Step.PAYMENT: _combine(validate_guest, validate_requirements, validate_payment),
    },
}


def validate_step(variant: Variant, step: Step, ctx: FlowContext) -> Errors:
    validator = STEP_VALIDATORS[variant].get(step)
    return validator(ctx) if validator else {}


def validate_through(variant: Variant, step: Step, ctx: FlowContext) -> Errors:
    """Errors for ``step`` and every step before it."""
    errors: Errors = {}
    for earlier in SEQUENCES[variant]:
        errors.update(validate_step(variant, earlier, ctx))
        if earlier == step:
            break
    return errors


@dataclass(frozen=True)
class FlowState:
    variant: Variant = Variant.STANDARD
    step: Step = Step.DATES
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def steps(self) -> tuple[Step, ...]:
        return SEQUENCES[self.variant]

    @property
    def index(self) -> int:
        return self.steps.index(self.step)

    @property
    def is_complete(self) -> bool:
        return self.step == Step.COMPLETE


@dataclass(frozen=True)
class Next:
    context: FlowContext


@dataclass(frozen=True)
class Back:
    pass


@dataclass(frozen=True)
class FieldChanged:
    context: FlowContext


@dataclass(frozen=True)
class PaymentCompleted:
    pass


FlowEvent = Next | Back | FieldChanged | PaymentCompleted


def start(variant: Variant = Variant.STANDARD) -> FlowState:
    return FlowState(variant=variant, step=SEQUENCES[variant][0])


def transition(state: FlowState, event: FlowEvent) -> FlowState:
    """Apply one event to the step machine."""
    if state.is_complete:
        raise FlowTransitionError()

    if isinstance(event, Next):
        if state.step == Step.PAYMENT:
            raise FlowTransitionError("Complete payment to finish your booking.")
        errors = validate_through(state.variant, state.step, event.context)
        if errors:
            return replace(state, errors=errors)
        return replace(state, step=state.steps[state.index + 1], errors={})

    if isinstance(event, Back):
        if state.index == 0:
            return replace(state, errors={})
        return replace(state, step=state.steps[state.index - 1], errors={})

    if isinstance(event, FieldChanged):
        if not state.errors:
            return state
        # Only clear errors that no longer apply; new ones wait for the next submit.
        still_failing = validate_through(state.variant, state.step, event.context)
        remaining = {key: msg for key, msg in state.errors.items() if key in still_failing}
        return replace(state, errors=remaining)

    if isinstance(event, PaymentCompleted):
        if state.step != Step.PAYMENT:
            raise FlowTransitionError("Payment is not in progress.")
        return replace(state, step=Step.COMPLETE, errors={})

    raise FlowTransitionError(f"Unknown event {type(event).__name__}")


def resume(variant: Variant, saved_step: str | None, ctx: FlowContext) -> FlowState:
    """Restore a saved position, stopping at the first step that no longer validates."""
    state = start(variant)
    try:
        target = Step(saved_step) if saved_step else state.step
    except ValueError:
        target = state.step
    if target not in state.steps or target == Step.COMPLETE:
        target = Step.PAYMENT if target == Step.COMPLETE else state.step

    while state.step != target and state.step != Step.PAYMENT:
        advanced = transition(state, Next(ctx))
        if advanced.step == state.step:
            logger.debug("Resume stopped at %s", state.step.value)
            return replace(advanced, errors={})
        state = advanced
    return state
