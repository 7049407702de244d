"""Availability matching: filter the catalog down to sites that fit a stay.

The platform tells us which sites exist for a date range and their status.
Everything else (type normalization, rig length, accessibility, grouping by
site class, and what to suggest when nothing fits) happens here.
"""

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import date, timedelta

from campflow.config import settings
from campflow.schemas.catalog import SiteRecord
from campflow.schemas.stay import StayRequest

logger = logging.getLogger(__name__)

CANONICAL_SITE_TYPES: frozenset[str] = frozenset(
    {"rv", "tent", "cabin", "glamping", "yurt", "group", "car", "other"}
)

_SITE_TYPE_ALIASES: dict[str, str] = {
    "trailer": "rv",
    "van": "car",
}

RV_RIG_TYPES: frozenset[str] = frozenset(
    {
        "class-a",
        "class-b",
        "class-c",
        "travel-trailer",
        "fifth-wheel",
        "toy-hauler",
        "pop-up",
        "truck-camper",
        "rv-other",
    }
)

AvailabilityFetcher = Callable[[StayRequest], Awaitable[list[SiteRecord]]]


def normalize_site_type(value: str | None) -> str:
    """Map a raw site type onto the canonical set. Unknown or empty is ``other``."""
    if not value:
        return "other"
    key = value.strip().lower()
    key = _SITE_TYPE_ALIASES.get(key, key)
    return key if key in CANONICAL_SITE_TYPES else "other"


def site_type_of(site: SiteRecord) -> str:
    """Normalized type of a site, falling back to its class."""
    raw = site.site_type
    if not raw and site.site_class is not None:
        raw = site.site_class.site_type
    return normalize_site_type(raw)


def is_rv_rig(rig_type: str | None) -> bool:
    return bool(rig_type) and rig_type.strip().lower() in RV_RIG_TYPES


def site_types_for_rig(rig_type: str | None) -> frozenset[str] | None:
    """Site types a rig can occupy, or None when the rig puts no restriction."""
    if not rig_type:
        return None
    rig = rig_type.strip().lower()
    if rig in RV_RIG_TYPES:
        return frozenset({"rv"})
    if rig == "tent":
        return frozenset({"tent"})
    if rig == "cabin":
        return frozenset({"cabin", "glamping"})
    if rig == "group":
        return frozenset({"group"})
    return None


def resolve_max_length(site: SiteRecord) -> int | None:
    """Site-level rig length override, else the site class default."""
    if site.rig_max_length is not None:
        return site.rig_max_length
    if site.site_class is not None:
        return site.site_class.rig_max_length
    return None


def is_accessible(site: SiteRecord) -> bool:
    return bool(site.accessible) or bool(site.site_class and site.site_class.accessible)


def resolve_rate_cents(site: SiteRecord) -> int | None:
    """Nightly rate for a site, falling back to its class rate."""
    if site.default_rate_cents is not None:
        return site.default_rate_cents
    if site.site_class is not None:
        return site.site_class.default_rate_cents
    return None


def matches_constraints(site: SiteRecord, stay: StayRequest, *, ignore_type: bool = False) -> bool:
    """Type, rig, and accessibility checks. Status is not considered here."""
    kind = site_type_of(site)

    if not ignore_type and stay.site_type and stay.site_type != "all":
        if kind != normalize_site_type(stay.site_type):
            return False

    allowed = site_types_for_rig(stay.rig_type)
    if not ignore_type and allowed is not None and kind not in allowed:
        return False

    if is_rv_rig(stay.rig_type) and stay.rig_length:
        max_length = resolve_max_length(site)
        if max_length is not None and stay.rig_length > max_length:
            return False

    if stay.needs_accessible and not is_accessible(site):
        return False

    return True


@dataclass(frozen=True)
class ClassCapacity:
    total: int = 0
    available: int = 0


@dataclass
class SiteGroup:
    """Matching sites that share a site class."""

    site_class_id: str | None
    name: str
    sites: list[SiteRecord] = field(default_factory=list)


@dataclass
class MatchResult:
    sites: list[SiteRecord]
    groups: list[SiteGroup]
    capacity: dict[str, ClassCapacity]
    catalog_empty: bool

    @property
    def filtered_to_zero(self) -> bool:
        """Sites exist for the dates, but none fit the stay."""
        return not self.sites and not self.catalog_empty


def _class_key(site: SiteRecord) -> str:
    return site.site_class_id or (site.site_class.id if site.site_class else "") or ""


def match_sites(
    sites: Iterable[SiteRecord],
    stay: StayRequest,
    include_unavailable: bool = False,
) -> MatchResult:
    """Filter, group, and count sites for a stay request."""
    catalog = list(sites)
    constrained = [s for s in catalog if matches_constraints(s, stay)]
    matched = constrained if include_unavailable else [s for s in constrained if s.is_available]

    capacity: dict[str, ClassCapacity] = {}
    for site in constrained:
        key = _class_key(site)
        current = capacity.get(key, ClassCapacity())
        capacity[key] = ClassCapacity(
            total=current.total + 1,
            available=current.available + (1 if site.is_available else 0),
        )

    groups: dict[str, SiteGroup] = {}
    for site in matched:
        key = _class_key(site)
        if key not in groups:
            name = site.site_class.name if site.site_class else "Sites"
            groups[key] = SiteGroup(site_class_id=site.site_class_id, name=name)
        groups[key].sites.append(site)

    return MatchResult(
        sites=matched,
        groups=list(groups.values()),
        capacity=capacity,
        catalog_empty=not catalog,
    )


def suggest_alternate_types(
    sites: Iterable[SiteRecord],
    current_type: str | None,
) -> dict[str, list[SiteRecord]]:
    """Available sites of every other type, keyed by normalized type."""
    current = normalize_site_type(current_type) if current_type and current_type != "all" else None
    alternates: dict[str, list[SiteRecord]] = {}
    for site in sites:
        if not site.is_available:
            continue
        kind = site_type_of(site)
        if kind == current:
            continue
        alternates.setdefault(kind, []).append(site)
    return alternates


@dataclass(frozen=True)
class NextAvailability:
    """The first later window, same length of stay, with a matching open site."""

    arrival_date: date
    departure_date: date
    site: SiteRecord


async def find_next_availability(
    fetch: AvailabilityFetcher,
    stay: StayRequest,
    lookahead_days: int | None = None,
) -> NextAvailability | None:
    """Probe later arrival dates, keeping the number of nights the same.

    A failing probe for one offset is skipped; the search continues with the
    next day.
    """
    days = lookahead_days if lookahead_days is not None else settings.next_availability_lookahead_days
    nights = stay.nights

    for offset in range(1, days + 1):
        arrival = stay.arrival_date + timedelta(days=offset)
        shifted = stay.model_copy(
            update={"arrival_date": arrival, "departure_date": arrival + timedelta(days=nights)}
        )
        try:
            sites = await fetch(shifted)
        except Exception:
            logger.debug("Availability probe failed for %s", arrival, exc_info=True)
            continue

        result = match_sites(sites, shifted)
        if result.sites:
            logger.info("Next availability for %s night(s) found at +%s day(s)", nights, offset)
            return NextAvailability(
                arrival_date=shifted.arrival_date,
                departure_date=shifted.departure_date,
                site=result.sites[0],
            )
    return None


@dataclass
class AvailabilityOutcome:
    """What the site step shows: matches, or suggestions when there are none."""

    result: MatchResult
    next_available: NextAvailability | None = None
    alternate_types: dict[str, list[SiteRecord]] = field(default_factory=dict)
    probed: bool = False


class AvailabilityMatcher:
    """Runs :func:`match_sites` and the zero-result probe for one checkout.

    The probe runs at most once per distinct filter result. Repeated renders of
    the same empty result reuse the cached answer.
    """

    def __init__(self, fetch: AvailabilityFetcher, lookahead_days: int | None = None):
        self._fetch = fetch
        self._lookahead_days = lookahead_days
        self._probes: dict[tuple, NextAvailability | None] = {}
        self.probe_count = 0

    @staticmethod
    def result_key(stay: StayRequest, result_count: int) -> tuple:
        return (
            stay.arrival_date,
            stay.departure_date,
            normalize_site_type(stay.site_type) if stay.site_type != "all" else "all",
            (stay.rig_type or "").lower(),
            stay.rig_length,
            stay.needs_accessible,
            result_count,
        )

    async def match(
        self,
        sites: list[SiteRecord],
        stay: StayRequest | None,
        include_unavailable: bool = False,
    ) -> AvailabilityOutcome:
        if stay is None:
            # No valid date range yet: nothing to filter against, nothing to probe.
            return AvailabilityOutcome(
                result=MatchResult(sites=[], groups=[], capacity={}, catalog_empty=not sites)
            )

        result = match_sites(sites, stay, include_unavailable=include_unavailable)
        if any(s.is_available for s in result.sites):
            return AvailabilityOutcome(result=result)

        alternates = suggest_alternate_types(sites, stay.site_type)
        key = self.result_key(stay, len(result.sites))
        probed = False
        if key not in self._probes:
            self.probe_count += 1
            probed = True
            self._probes[key] = await find_next_availability(self._fetch, stay, self._lookahead_days)

        return AvailabilityOutcome(
            result=result,
            next_available=self._probes[key],
            alternate_types=alternates,
            probed=probed,
        )
