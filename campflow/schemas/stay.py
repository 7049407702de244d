"""Stay request schema and night arithmetic."""

import math
from datetime import date, datetime

from pydantic import Field, model_validator

from campflow.schemas.common import CamelModel

_SECONDS_PER_DAY = 24 * 60 * 60


def nights_between(arrival: date | datetime, departure: date | datetime) -> int:
    """Number of nights between two dates, rounded up, never less than 1."""
    if isinstance(arrival, datetime) or isinstance(departure, datetime):
        start = arrival if isinstance(arrival, datetime) else datetime.combine(arrival, datetime.min.time())
        end = departure if isinstance(departure, datetime) else datetime.combine(departure, datetime.min.time())
        days = (end - start).total_seconds() / _SECONDS_PER_DAY
    else:
        days = (departure - arrival).days
    return max(1, math.ceil(days))


def is_valid_range(arrival: date | None, departure: date | None) -> bool:
    """True when both dates are set and departure is strictly after arrival."""
    return arrival is not None and departure is not None and departure > arrival


class StayRequest(CamelModel):
    """What the guest is asking for: dates, party, and equipment."""

    arrival_date: date
    departure_date: date
    site_type: str = "all"
    adults: int = Field(1, ge=1)
    children: int = Field(0, ge=0)
    pet_count: int = Field(0, ge=0)
    pet_types: list[str] = Field(default_factory=list)
    rig_type: str | None = None
    rig_length: int | None = Field(None, ge=0)
    needs_accessible: bool = False

    @model_validator(mode="after")
    def check_dates(self) -> "StayRequest":
        """Validate that departure_date is strictly after arrival_date."""
        if self.departure_date <= self.arrival_date:
            raise ValueError("departure_date must be after arrival_date")
        return self

    @property
    def nights(self) -> int:
        return nights_between(self.arrival_date, self.departure_date)
