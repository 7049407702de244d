"""Pydantic v2 request/response schemas for checkout endpoints."""

from typing import Any

from pydantic import BaseModel, Field

from campflow.booking.availability import AvailabilityOutcome, NextAvailability, SiteGroup
from campflow.booking.flow import Variant
from campflow.schemas.catalog import SiteRecord

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class CheckoutStart(BaseModel):
    """Open (or reopen) the checkout for a browser session."""

    session_key: str = Field(..., min_length=8, max_length=128)
    campground_id: str = Field(..., min_length=1, max_length=64)
    variant: Variant = Variant.STANDARD
    staff: bool = False


class SiteSelection(BaseModel):
    site_id: str | None = None
    site_class_id: str | None = None
    assign_specific_site: bool | None = None
    lock_site: bool = False


class CheckoutOptions(BaseModel):
    pay_later: bool | None = None
    charity_cents: int | None = Field(None, ge=0)


class PromoApply(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)


class PaymentConfirm(BaseModel):
    """Outcome of the payer's confirmation, or a payment method for staff to confirm."""

    succeeded: bool = True
    payment_method_id: str | None = None
    error: str | None = None


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class CheckoutStartResponse(BaseModel):
    session: dict[str, Any]
    resume_offer: dict[str, Any] | None = None


class SiteGroupResponse(BaseModel):
    site_class_id: str | None
    name: str
    site_ids: list[str]

    @classmethod
    def from_group(cls, group: SiteGroup) -> "SiteGroupResponse":
        return cls(site_class_id=group.site_class_id, name=group.name, site_ids=[s.id for s in group.sites])


class AvailabilityResponse(BaseModel):
    sites: list[dict[str, Any]]
    groups: list[SiteGroupResponse]
    capacity: dict[str, dict[str, int]]
    catalog_empty: bool
    next_available: dict[str, Any] | None = None
    alternate_types: dict[str, int] = Field(default_factory=dict)

    @classmethod
    def from_outcome(cls, outcome: AvailabilityOutcome) -> "AvailabilityResponse":
        result = outcome.result
        return cls(
            sites=[site.to_wire() for site in result.sites],
            groups=[SiteGroupResponse.from_group(g) for g in result.groups],
            capacity={k: {"total": c.total, "available": c.available} for k, c in result.capacity.items()},
            catalog_empty=result.catalog_empty,
            next_available=next_available_wire(outcome.next_available),
            alternate_types={kind: len(sites) for kind, sites in outcome.alternate_types.items()},
        )


def next_available_wire(nxt: NextAvailability | None) -> dict[str, Any] | None:
    if nxt is None:
        return None
    return {
        "arrivalDate": nxt.arrival_date.isoformat(),
        "departureDate": nxt.departure_date.isoformat(),
        "siteId": nxt.site.id,
        "siteName": nxt.site.name,
    }


def conflict_suggestions(
    remaining: list[SiteRecord],
    alternate_types: dict[str, list[SiteRecord]],
    next_available: NextAvailability | None,
) -> dict[str, Any]:
    """What to offer after the chosen site was taken: other sites, other types, other dates."""
    return {
        "availableSiteIds": [site.id for site in remaining],
        "alternateTypes": {kind: [site.id for site in sites] for kind, sites in alternate_types.items()},
        "nextAvailable": next_available_wire(next_available),
    }
