"""Guest draft: everything the guest (or staff) types during checkout."""

from typing import Literal

from pydantic import BaseModel, Field

PaymentMethod = Literal["card", "ach", "cash", "check", "folio"]

IN_PERSON_METHODS: frozenset[str] = frozenset({"cash", "check", "folio"})


class AdditionalGuest(BaseModel):
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""


class Equipment(BaseModel):
    """Rig or shelter the party is bringing."""

    type: str = "tent"
    length: int | None = Field(None, ge=0)
    plate_number: str = ""
    plate_state: str = ""


class GuestAddress(BaseModel):
    address1: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""


class PaymentCollection(BaseModel):
    """Staff-side payment choices. Guests always pay by card."""

    collect_now: bool = True
    method: PaymentMethod = "card"
    amount_cents: int | None = Field(None, ge=0)
    cash_received_cents: int | None = Field(None, ge=0)
    notes: str = ""


class GuestDraft(BaseModel):
    """Mutable guest-entered state accumulated across checkout steps."""

    guest_id: str | None = None
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    postal_code: str = ""
    address: GuestAddress = Field(default_factory=GuestAddress)

    adults: int = Field(1, ge=1)
    children: int = Field(0, ge=0)
    pet_count: int = Field(0, ge=0)
    pet_types: list[str] = Field(default_factory=list)
    additional_guests: list[AdditionalGuest] = Field(default_factory=list)
    equipment: Equipment = Field(default_factory=Equipment)
    needs_accessible: bool = False

    promo_code: str = ""
    referral_code: str = ""
    stay_reason_preset: str = "vacation"
    stay_reason_other: str = ""

    tax_waiver_signed: bool = False
    policy_acceptances: dict[str, bool] = Field(default_factory=dict)
    forms_complete: bool = True
    notes: str = ""

    payment: PaymentCollection = Field(default_factory=PaymentCollection)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def has_contact(self) -> bool:
        return bool(self.email or self.phone)

    @property
    def stay_reason(self) -> str | None:
        if self.stay_reason_preset == "other":
            return self.stay_reason_other or None
        return self.stay_reason_preset or None
