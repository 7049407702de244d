"""Checkout API router.

One checkout per browser session key. The browser (or staff console) drives
the flow step by step; every domain failure comes back as a JSON detail with
``kind``, ``message``, and ``guidance`` so the UI can always offer a retry or
a safe way out.
"""

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from campflow.api.deps import get_checkout, get_db, get_registry
from campflow.errors import BookingError
from campflow.schemas.checkout import (
    AvailabilityResponse,
    CheckoutOptions,
    CheckoutStart,
    CheckoutStartResponse,
    PaymentConfirm,
    PromoApply,
    SiteSelection,
)
from campflow.schemas.quote import PriceSummary
from campflow.schemas.stay import StayRequest
from campflow.services.checkout_service import CheckoutRegistry, CheckoutSession

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/checkout", tags=["checkout"])

_STATUS_BY_KIND: dict[str, int] = {
    "validation": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "availability_conflict": status.HTTP_409_CONFLICT,
    "promo_invalid": status.HTTP_400_BAD_REQUEST,
    "payment_confirmation_failure": status.HTTP_402_PAYMENT_REQUIRED,
    "payment_initialization_failure": status.HTTP_502_BAD_GATEWAY,
    "reservation_creation_failure": status.HTTP_502_BAD_GATEWAY,
    "collaborator_error": status.HTTP_502_BAD_GATEWAY,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _http_error(exc: BookingError) -> HTTPException:
    """Translate a booking error into an HTTP error with a structured detail."""
    code = _STATUS_BY_KIND.get(exc.kind, status.HTTP_400_BAD_REQUEST)
    if code >= 500:
        logger.warning("Checkout failed (%s): %s", exc.kind, exc.message)
    return HTTPException(status_code=code, detail=exc.to_detail())


def _validation_error(exc: ValidationError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=exc.errors(include_url=False, include_context=False),
    )


# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------


@router.post("/sessions", response_model=CheckoutStartResponse, status_code=status.HTTP_201_CREATED)
async def start_checkout(
    body: CheckoutStart,
    db: AsyncSession = Depends(get_db),
    registry: CheckoutRegistry = Depends(get_registry),
) -> CheckoutStartResponse:
    """Open the checkout for a session and offer to resume a saved draft."""
    session = registry.open(body.session_key, body.campground_id, variant=body.variant, staff=body.staff)
    offer = await session.resume_offer(db)
    return CheckoutStartResponse(session=session.snapshot(), resume_offer=offer)


@router.post("/sessions/{session_key}/resume")
async def resume_checkout(
    session: CheckoutSession = Depends(get_checkout),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    await session.resume(db)
    return session.snapshot()


@router.post("/sessions/{session_key}/discard")
async def discard_checkout(
    session: CheckoutSession = Depends(get_checkout),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    await session.discard(db)
    return session.snapshot()


@router.get("/sessions/{session_key}")
async def get_checkout_state(session: CheckoutSession = Depends(get_checkout)) -> dict[str, Any]:
    return session.snapshot()


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


@router.patch("/sessions/{session_key}/guest")
async def update_guest(
    changes: dict[str, Any] = Body(...),
    session: CheckoutSession = Depends(get_checkout),
) -> dict[str, Any]:
    """Merge guest-entered fields into the draft."""
    try:
        session.update_guest(changes)
    except ValidationError as e:
        raise _validation_error(e) from e
    return session.snapshot()


@router.put("/sessions/{session_key}/stay")
async def set_stay(
    stay: StayRequest,
    session: CheckoutSession = Depends(get_checkout),
) -> dict[str, Any]:
    session.set_stay(stay)
    return session.snapshot()


@router.get("/sessions/{session_key}/availability", response_model=AvailabilityResponse)
async def get_availability(
    include_unavailable: bool = Query(False),
    session: CheckoutSession = Depends(get_checkout),
) -> AvailabilityResponse:
    """Matching sites for the current stay, with suggestions when none match."""
    try:
        outcome = await session.availability(include_unavailable=include_unavailable)
    except BookingError as e:
        raise _http_error(e) from e
    return AvailabilityResponse.from_outcome(outcome)


@router.put("/sessions/{session_key}/site")
async def select_site(
    body: SiteSelection,
    session: CheckoutSession = Depends(get_checkout),
) -> dict[str, Any]:
    session.select_site(
        body.site_id,
        body.site_class_id,
        assign_specific_site=body.assign_specific_site,
        lock_site=body.lock_site,
    )
    return session.snapshot()


@router.put("/sessions/{session_key}/options")
async def set_options(
    body: CheckoutOptions,
    session: CheckoutSession = Depends(get_checkout),
) -> dict[str, Any]:
    session.set_options(pay_later=body.pay_later, charity_cents=body.charity_cents)
    return session.snapshot()


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------


@router.get("/sessions/{session_key}/price", response_model=PriceSummary)
async def get_price(session: CheckoutSession = Depends(get_checkout)) -> PriceSummary:
    """Running price. ``is_estimate`` is set while no live quote is available."""
    try:
        return await session.price()
    except BookingError as e:
        raise _http_error(e) from e


@router.post("/sessions/{session_key}/promo")
async def apply_promo(
    body: PromoApply,
    session: CheckoutSession = Depends(get_checkout),
) -> dict[str, Any]:
    try:
        promo = await session.apply_promo(body.code)
        price = await session.price()
    except BookingError as e:
        raise _http_error(e) from e
    return {"promo": promo.model_dump(), "price": price.model_dump()}


@router.delete("/sessions/{session_key}/promo")
async def remove_promo(session: CheckoutSession = Depends(get_checkout)) -> dict[str, Any]:
    promo = session.remove_promo()
    try:
        price = await session.price()
    except BookingError as e:
        raise _http_error(e) from e
    return {"promo": promo.model_dump(), "price": price.model_dump()}


# ---------------------------------------------------------------------------
# Navigation
# ---------------------------------------------------------------------------


@router.post("/sessions/{session_key}/next")
async def next_step(session: CheckoutSession = Depends(get_checkout)) -> dict[str, Any]:
    """Advance if every step so far validates; otherwise return the errors."""
    try:
        session.next()
    except BookingError as e:
        raise _http_error(e) from e
    return session.snapshot()


@router.post("/sessions/{session_key}/back")
async def previous_step(session: CheckoutSession = Depends(get_checkout)) -> dict[str, Any]:
    try:
        session.back()
    except BookingError as e:
        raise _http_error(e) from e
    return session.snapshot()


# ---------------------------------------------------------------------------
# Payment
# ---------------------------------------------------------------------------


@router.post("/sessions/{session_key}/checkout")
async def checkout(session: CheckoutSession = Depends(get_checkout)) -> dict[str, Any]:
    """Create the reservation and, for card payments, the payment intent."""
    try:
        return await session.checkout()
    except BookingError as e:
        raise _http_error(e) from e


@router.post("/sessions/{session_key}/payment/retry")
async def retry_payment(session: CheckoutSession = Depends(get_checkout)) -> dict[str, Any]:
    try:
        return await session.retry_payment()
    except BookingError as e:
        raise _http_error(e) from e


@router.post("/sessions/{session_key}/payment/confirm")
async def confirm_payment(
    body: PaymentConfirm,
    session: CheckoutSession = Depends(get_checkout),
) -> dict[str, Any]:
    try:
        if not body.succeeded:
            session.fail_payment(body.error)
        return await session.confirm_payment(body.payment_method_id)
    except BookingError as e:
        raise _http_error(e) from e


@router.post("/sessions/{session_key}/payment/cancel")
async def cancel_payment(session: CheckoutSession = Depends(get_checkout)) -> dict[str, Any]:
    """The payer dismissed payment: cancel the unpaid reservation."""
    try:
        return await session.cancel_payment()
    except BookingError as e:
        raise _http_error(e) from e


@router.get("/sessions/{session_key}/hold")
async def get_hold(session: CheckoutSession = Depends(get_checkout)) -> dict[str, Any]:
    return session.hold_status()
