"""Fee plans: per-booking service fee defaults and fee-mode resolution."""

from dataclasses import dataclass
from typing import Literal

from pydantic import Field

from campflow.schemas.common import CamelModel

FeeMode = Literal["absorbed", "pass_through"]


@dataclass(frozen=True)
class PlanFees:
    """Per-booking fee defaults for a campground billing plan."""

    name: str
    display_name: str
    per_booking_fee_cents: int  # in cents (e.g., 300 = $3.00)


PLANS: dict[str, PlanFees] = {
    "ota_only": PlanFees(
        name="ota_only",
        display_name="OTA Only",
        per_booking_fee_cents=300,
    ),
    "standard": PlanFees(
        name="standard",
        display_name="Standard",
        per_booking_fee_cents=200,
    ),
    "enterprise": PlanFees(
        name="enterprise",
        display_name="Enterprise",
        per_booking_fee_cents=100,
    ),
}

VALID_PLAN_NAMES: set[str] = set(PLANS.keys())


def get_plan(plan_name: str | None) -> PlanFees:
    """Get plan fees by name. Defaults to ota_only if unknown."""
    return PLANS.get(plan_name or "", PLANS["ota_only"])


class FeeSettings(CamelModel):
    """Campground payment settings that affect what the guest pays."""

    billing_plan: str | None = None
    per_booking_fee_cents: int | None = Field(None, ge=0)
    fee_mode: FeeMode = "absorbed"
    site_selection_fee_cents: int | None = Field(None, ge=0)

    @property
    def resolved_per_booking_fee_cents(self) -> int:
        """Campground override if set, else the billing plan default."""
        if self.per_booking_fee_cents is not None:
            return self.per_booking_fee_cents
        return get_plan(self.billing_plan).per_booking_fee_cents

    @property
    def pass_through_fee_cents(self) -> int:
        """Fee charged to the guest. Zero unless the campground passes it through."""
        if self.fee_mode == "pass_through":
            return self.resolved_per_booking_fee_cents
        return 0

    @property
    def absorbed_fee_cents(self) -> int:
        """Fee the operator pays on the guest's behalf."""
        if self.fee_mode == "pass_through":
            return 0
        return self.resolved_per_booking_fee_cents

    @property
    def site_lock_fee_cents(self) -> int:
        return self.site_selection_fee_cents or 0
