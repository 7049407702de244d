"""Quote composition: turn a live quote (or a local estimate) into a price breakdown.

All money is integer cents. Rates are ``Decimal`` and rounded half-up back to
cents, so no float ever touches an amount.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from campflow.billing.fees import FeeSettings
from campflow.booking.requests import RequestTracker
from campflow.config import settings
from campflow.errors import PromoInvalid, QuoteUnavailable
from campflow.schemas.quote import (
    PriceBreakdownLine,
    PriceSummary,
    PromoState,
    PromoValidation,
    Quote,
)

logger = logging.getLogger(__name__)

QUOTE_CATEGORY = "quote"

PromoValidator = Callable[[str, str, int], Awaitable[PromoValidation]]


@dataclass(frozen=True)
class QuoteKey:
    """Everything a live quote depends on. Any change means a new quote."""

    campground_id: str
    site_id: str | None
    site_class_id: str | None
    arrival_date: date
    departure_date: date
    promo_code: str | None = None
    tax_waiver_signed: bool = False
    referral_code: str | None = None
    stay_reason: str | None = None
    adults: int = 1
    children: int = 0
    pet_count: int = 0


def format_cents(cents: int) -> str:
    """Format cents as dollars, e.g. 5000 -> "$50.00", -1500 -> "-$15.00"."""
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(cents), 100)
    return f"{sign}${whole:,}.{frac:02d}"


def round_half_up(amount: Decimal) -> int:
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def round_up_amount(total_cents: int) -> int:
    """Cents needed to round a total up to the next whole dollar (0 if already whole)."""
    remainder = total_cents % 100
    return 0 if remainder == 0 else 100 - remainder


def estimate_quote(per_night_cents: int, nights: int, tax_rate: Decimal | None = None) -> Quote:
    """Deterministic fallback used while no live quote is available."""
    rate = settings.fallback_tax_rate if tax_rate is None else tax_rate
    subtotal = per_night_cents * nights
    taxes = round_half_up(Decimal(subtotal) * rate)
    return Quote(
        per_night_cents=per_night_cents,
        nights=nights,
        base_subtotal_cents=subtotal,
        total_cents=subtotal,
        taxes_cents=taxes,
    )


def _night_label(per_night_cents: int, nights: int) -> str:
    unit = "night" if nights == 1 else "nights"
    return f"{format_cents(per_night_cents)} × {nights} {unit}"


def compose_quote(
    quote: Quote,
    *,
    fees: FeeSettings,
    promo: PromoState | None = None,
    specific_site: bool = False,
    lock_site: bool = False,
    charity_cents: int = 0,
    is_estimate: bool = False,
) -> PriceSummary:
    """Build the ordered breakdown and the final amount owed.

    Line order: base, rules adjustment, discounts, site lock fee, taxes,
    service fee, charity.
    """
    promo = promo or PromoState()
    lines: list[PriceBreakdownLine] = []

    base = quote.base_subtotal_cents or quote.per_night_cents * quote.nights
    lines.append(PriceBreakdownLine(label=_night_label(quote.per_night_cents, quote.nights), amount_cents=base))

    if quote.rules_delta_cents > 0:
        lines.append(PriceBreakdownLine(label="Peak season adjustment", amount_cents=quote.rules_delta_cents))
    elif quote.rules_delta_cents < 0:
        lines.append(
            PriceBreakdownLine(label="Off-season discount", amount_cents=quote.rules_delta_cents, is_discount=True)
        )

    # A discount reported by the quote already includes any promo we sent.
    if quote.discount_cents:
        discount = quote.discount_cents
        referral = quote.referral_discount_cents
        total_after_discount = quote.total_after_discount_cents
    else:
        discount = promo.discount_cents if promo.applied else 0
        referral = 0
        total_after_discount = max(0, quote.total_cents - discount)

    promo_amount = discount - referral
    if promo_amount > 0:
        label = f"Promo code ({promo.code})" if promo.applied and promo.code else "Discount"
        lines.append(PriceBreakdownLine(label=label, amount_cents=-promo_amount, is_discount=True))
    if referral > 0:
        lines.append(PriceBreakdownLine(label="Referral discount", amount_cents=-referral, is_discount=True))

    lock_fee = 0
    if specific_site and fees.site_lock_fee_cents > 0:
        if lock_site:
            lock_fee = fees.site_lock_fee_cents
            lines.append(PriceBreakdownLine(label="Site lock fee", amount_cents=lock_fee))
        else:
            lines.append(PriceBreakdownLine(label="Site lock fee (waived)", amount_cents=0))

    taxes = quote.taxes_cents
    if taxes:
        label = "Estimated taxes" if is_estimate else "Taxes"
        lines.append(PriceBreakdownLine(label=label, amount_cents=taxes, is_tax=True))

    pass_through = fees.pass_through_fee_cents
    if fees.resolved_per_booking_fee_cents > 0:
        lines.append(PriceBreakdownLine(label="Service fee", amount_cents=pass_through))

    charity = max(0, charity_cents)
    if charity:
        lines.append(PriceBreakdownLine(label="Charity round-up", amount_cents=charity))

    total = max(0, total_after_discount + taxes) + pass_through + lock_fee + charity

    return PriceSummary(
        lines=lines,
        nights=quote.nights,
        per_night_cents=quote.per_night_cents,
        subtotal_cents=quote.total_cents,
        discount_cents=discount,
        taxes_cents=taxes,
        lock_fee_cents=lock_fee,
        pass_through_fee_cents=pass_through,
        absorbed_fee_cents=fees.absorbed_fee_cents,
        charity_cents=charity,
        total_cents=total,
        is_estimate=is_estimate,
        tax_waiver_required=quote.tax_waiver_required,
        policy_requirements=quote.policy_requirements,
    )


async def apply_promo(
    validate: PromoValidator,
    campground_id: str,
    code: str,
    base_total_cents: int,
) -> PromoState:
    """Validate a promo code against the current base total.

    Raises:
        PromoInvalid: The code is empty, unknown, or not applicable.
    """
    normalized = code.strip().upper()
    if not normalized:
        raise PromoInvalid("Enter a promo code")

    result = await validate(campground_id, normalized, base_total_cents)
    if not result.valid:
        raise PromoInvalid()

    logger.info("Promo %s applied: %s cents off", result.code, result.discount_cents)
    return PromoState(
        code=result.code or normalized,
        discount_cents=min(result.discount_cents, base_total_cents),
        promotion_id=result.promotion_id,
        applied=True,
    )


def remove_promo() -> PromoState:
    return PromoState()


class QuoteComposer:
    """Keeps the live quote for the current key and falls back to an estimate."""

    def __init__(
        self,
        fetch_quote: Callable[[QuoteKey], Awaitable[Quote]],
        tracker: RequestTracker | None = None,
        tax_rate: Decimal | None = None,
    ):
        self._fetch_quote = fetch_quote
        self._tracker = tracker or RequestTracker()
        self._tax_rate = tax_rate
        self._key: QuoteKey | None = None
        self._quote: Quote | None = None

    def current(self, key: QuoteKey) -> Quote | None:
        """The cached quote, only if it was fetched for exactly this key."""
        return self._quote if self._key == key else None

    def invalidate(self) -> None:
        self._key = None
        self._quote = None
        self._tracker.invalidate(QUOTE_CATEGORY)

    async def refresh(self, key: QuoteKey) -> Quote | None:
        """Fetch a live quote. Returns None when unavailable or superseded."""
        if key.site_id is None:
            return None

        ticket = self._tracker.issue(QUOTE_CATEGORY, key)
        try:
            quote = await self._fetch_quote(key)
        except QuoteUnavailable as exc:
            logger.warning("Live quote unavailable for site %s: %s", key.site_id, exc.message)
            if self._tracker.accepts(ticket):
                self._key, self._quote = None, None
            return None

        if not self._tracker.accepts(ticket):
            logger.debug("Discarding stale quote for %s", key)
            return None

        self._key, self._quote = key, quote
        return quote

    async def price(
        self,
        key: QuoteKey,
        *,
        fallback_rate_cents: int | None,
        nights: int,
        fees: FeeSettings,
        promo: PromoState | None = None,
        lock_site: bool = False,
        charity_cents: int = 0,
    ) -> PriceSummary:
        quote = self.current(key)
        if quote is None:
            quote = await self.refresh(key)

        is_estimate = quote is None
        if quote is None:
            quote = estimate_quote(fallback_rate_cents or 0, nights, self._tax_rate)

        return compose_quote(
            quote,
            fees=fees,
            promo=promo,
            specific_site=key.site_id is not None,
            lock_site=lock_site,
            charity_cents=charity_cents,
            is_estimate=is_estimate,
        )
