"""Reservation, hold, payment intent, and receipt schemas."""

from datetime import date, datetime
from typing import Any, Literal

from pydantic import Field

from campflow.schemas.common import CamelModel

ReservationStatus = Literal["pending", "confirmed", "cancelled"]


class Hold(CamelModel):
    """A short-lived advisory claim on a site."""

    id: str
    site_id: str | None = None
    expires_at: datetime | None = None


class GuestContact(CamelModel):
    first_name: str
    last_name: str
    email: str
    phone: str | None = None
    zip_code: str | None = None


class ReservationDraft(CamelModel):
    """Everything submitted atomically to create a reservation."""

    campground_id: str
    guest_id: str | None = None
    guest: GuestContact | None = None
    site_id: str | None = None
    site_class_id: str | None = None
    site_locked: bool = False
    arrival_date: date
    departure_date: date
    adults: int = 1
    children: int = 0
    pet_count: int = 0
    pet_types: list[str] = Field(default_factory=list)
    additional_guests: list[dict[str, str]] | None = None
    equipment: dict[str, Any] | None = None
    needs_accessible: bool | None = None
    promo_code: str | None = None
    referral_code: str | None = None
    stay_reason_preset: str | None = None
    stay_reason_other: str | None = None
    tax_waiver_signed: bool | None = None
    policy_acceptances: list[dict[str, Any]] | None = None
    charity_donation: dict[str, Any] | None = None
    notes: str | None = None
    total_amount: int = Field(0, ge=0)
    paid_amount: int = Field(0, ge=0)
    balance_amount: int = Field(0, ge=0)
    status: ReservationStatus = "pending"
    payment_method: str | None = None
    payment_notes: str | None = None
    hold_id: str | None = None


class Reservation(CamelModel):
    """A reservation as persisted by the platform."""

    id: str
    status: ReservationStatus = "pending"
    site_id: str | None = None
    arrival_date: date | None = None
    departure_date: date | None = None
    total_amount: int | None = None
    guest_name: str | None = None
    site_name: str | None = None


class PaymentIntent(CamelModel):
    """Processor payment intent created against a reservation."""

    id: str
    client_secret: str
    amount_cents: int | None = None
    currency: str | None = None
    status: str | None = None


class Receipt(CamelModel):
    """Locally generated proof of an in-person payment."""

    reservation_id: str
    guest_name: str
    site_name: str
    arrival_date: date
    departure_date: date
    amount_cents: int
    method: str
    cash_received_cents: int | None = None
    change_due_cents: int | None = None
