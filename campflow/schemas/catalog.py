"""Catalog records consumed from the campground platform (read-only)."""

from typing import Literal

from pydantic import Field

from campflow.schemas.common import CamelModel

SiteStatus = Literal["available", "booked", "maintenance", "locked"]


class SiteClass(CamelModel):
    """A category of sites sharing a rate, type, and amenities."""

    id: str
    name: str
    site_type: str | None = None
    default_rate_cents: int | None = Field(None, alias="defaultRate")
    max_occupancy: int | None = None
    hookups_power: bool = False
    hookups_water: bool = False
    hookups_sewer: bool = False
    pet_friendly: bool = False
    accessible: bool = False
    photo_url: str | None = None
    rig_max_length: int | None = None


class SiteRecord(CamelModel):
    """A single bookable site and its status for the requested dates."""

    id: str
    name: str
    site_number: str | None = None
    site_class_id: str | None = None
    site_type: str | None = None
    status: SiteStatus = "available"
    default_rate_cents: int | None = Field(None, alias="defaultRate")
    rig_max_length: int | None = None
    accessible: bool | None = None
    site_class: SiteClass | None = None

    @property
    def is_available(self) -> bool:
        return self.status == "available"
