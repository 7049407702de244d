"""Quote, promo, and price-summary schemas."""

from typing import Any

from pydantic import BaseModel, Field, model_validator

from campflow.schemas.common import CamelModel


class Quote(CamelModel):
    """Authoritative server-computed price for a stay.

    ``total_after_discount_cents`` and ``total_with_taxes_cents`` are derived.
    They are filled in when the server omits them and rejected when they
    disagree with the other fields.
    """

    per_night_cents: int = 0
    nights: int = Field(1, ge=0)
    base_subtotal_cents: int = 0
    rules_delta_cents: int = 0
    discount_cents: int = Field(0, ge=0)
    referral_discount_cents: int = Field(0, ge=0)
    taxes_cents: int = Field(0, ge=0)
    total_cents: int = 0
    total_after_discount_cents: int | None = None
    total_with_taxes_cents: int | None = None
    tax_waiver_required: bool = False
    policy_requirements: list[dict[str, Any]] = Field(default_factory=list)
    promotion_id: str | None = None

    @model_validator(mode="after")
    def derive_totals(self) -> "Quote":
        """Fill or check the discount and tax totals."""
        after = max(0, self.total_cents - self.discount_cents)
        if self.total_after_discount_cents is None:
            self.total_after_discount_cents = after
        elif self.total_after_discount_cents != after:
            raise ValueError("total_after_discount_cents does not match total_cents - discount_cents")

        with_taxes = after + self.taxes_cents
        if self.total_with_taxes_cents is None:
            self.total_with_taxes_cents = with_taxes
        elif self.total_with_taxes_cents != with_taxes:
            raise ValueError("total_with_taxes_cents does not match total_after_discount_cents + taxes_cents")

        if self.referral_discount_cents > self.discount_cents:
            raise ValueError("referral_discount_cents cannot exceed discount_cents")
        return self


class PromoValidation(CamelModel):
    """Result of validating a promo code against a base total."""

    code: str
    discount_cents: int = Field(0, ge=0)
    promotion_id: str | None = None
    valid: bool = True


class PromoState(BaseModel):
    """Locally tracked promo code. Only ``applied`` codes affect price."""

    code: str = ""
    discount_cents: int = 0
    promotion_id: str | None = None
    applied: bool = False
    error: str | None = None


class PriceBreakdownLine(BaseModel):
    """One display line of the price breakdown."""

    label: str
    amount_cents: int
    is_discount: bool = False
    is_tax: bool = False


class PriceSummary(BaseModel):
    """Composed price: breakdown lines plus the final amount the payer owes."""

    lines: list[PriceBreakdownLine]
    nights: int
    per_night_cents: int
    subtotal_cents: int
    discount_cents: int
    taxes_cents: int
    lock_fee_cents: int
    pass_through_fee_cents: int
    absorbed_fee_cents: int
    charity_cents: int
    total_cents: int
    is_estimate: bool = False
    tax_waiver_required: bool = False
    policy_requirements: list[dict[str, Any]] = Field(default_factory=list)
