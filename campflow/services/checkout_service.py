"""Checkout service: one ``CheckoutSession`` per browser session.

Wires the step machine, availability matcher, quote composer, hold manager,
payment saga, and draft persistence together around a single platform client.
"""

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from campflow.billing.fees import FeeSettings
from campflow.booking import flow
from campflow.booking.availability import (
    AvailabilityMatcher,
    AvailabilityOutcome,
    find_next_availability,
    match_sites,
    resolve_max_length,
    resolve_rate_cents,
    suggest_alternate_types,
)
from campflow.booking.flow import FlowContext, Step, Variant
from campflow.booking.holds import HoldManager, utcnow
from campflow.booking.quoting import QuoteComposer, QuoteKey, apply_promo, remove_promo
from campflow.booking.requests import RequestTracker
from campflow.booking.saga import PaymentSaga, SagaRequest, SagaStage
from campflow.booking.session import AbandonmentWatcher, DebouncedSaver, DraftPayload, SessionState
from campflow.config import settings
from campflow.clients.platform import PlatformClient
from campflow.database import async_session_factory
from campflow.errors import (
    AvailabilityConflict,
    BookingError,
    BookingValidationError,
    FlowTransitionError,
    PromoInvalid,
)
from campflow.schemas.catalog import SiteClass, SiteRecord
from campflow.schemas.checkout import conflict_suggestions
from campflow.schemas.guest import AdditionalGuest, Equipment, GuestDraft
from campflow.schemas.quote import PriceSummary, PromoState, Quote
from campflow.schemas.reservation import GuestContact, ReservationDraft
from campflow.schemas.stay import StayRequest, is_valid_range

logger = logging.getLogger(__name__)

AVAILABILITY_CATEGORY = "availability"

# Equipment types sent without a length.
UNMEASURED_EQUIPMENT = frozenset({"tent", "car"})

# Guest fields patched onto an existing guest record before booking.
_CONTACT_FIELDS = ("first_name", "last_name", "email", "phone", "postal_code")
_ADDRESS_FIELDS = ("address1", "city", "state", "postal_code")


def guest_update_patch(before: GuestDraft | None, after: GuestDraft) -> dict[str, Any]:
    """camelCase patch of contact and address fields that changed."""
    before = before or GuestDraft()
    patch: dict[str, Any] = {}
    for name in _CONTACT_FIELDS:
        value = getattr(after, name)
        if value != getattr(before, name):
            key = "zipCode" if name == "postal_code" else "".join(
                part.capitalize() if i else part for i, part in enumerate(name.split("_"))
            )
            patch[key] = value
    for name in _ADDRESS_FIELDS:
        value = getattr(after.address, name)
        if value != getattr(before.address, name):
            key = "addressPostalCode" if name == "postal_code" else name
            patch[key] = value
    return patch


def equipment_wire(equipment: Equipment) -> dict[str, Any]:
    """Tents and cars carry no length."""
    body: dict[str, Any] = {"type": equipment.type}
    if equipment.type not in UNMEASURED_EQUIPMENT and equipment.length is not None:
        body["length"] = equipment.length
    if equipment.plate_number:
        body["plateNumber"] = equipment.plate_number
    if equipment.plate_state:
        body["plateState"] = equipment.plate_state
    return body


def additional_guests_wire(guests: list[AdditionalGuest]) -> list[dict[str, str]] | None:
    rows = []
    for g in guests:
        row = {"firstName": g.first_name, "lastName": g.last_name, "email": g.email, "phone": g.phone}
        rows.append({key: value for key, value in row.items() if value})
    return rows or None


class CheckoutSession:
    """In-progress checkout for one browser session."""

    def __init__(
        self,
        session_key: str,
        campground_id: str,
        platform: PlatformClient,
        *,
        variant: Variant = Variant.STANDARD,
        staff: bool = False,
        session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
        today: date | None = None,
    ):
        self.session_key = session_key
        self.campground_id = campground_id
        self.variant = variant
        self.staff = staff
        self._platform = platform
        self._today = today

        self.payload = DraftPayload()
        self.flow = flow.start(variant)
        self.promo = PromoState()
        self.fees: FeeSettings | None = None
        self.sites: list[SiteRecord] = []
        self.last_price: PriceSummary | None = None
        self._loaded_guest: GuestDraft | None = None
        self._site_classes: dict[str, SiteClass] | None = None

        self.tracker = RequestTracker()
        self.matcher = AvailabilityMatcher(self._fetch_sites)
        self.composer = QuoteComposer(self._fetch_quote, tracker=self.tracker)
        self.holds = HoldManager(platform.create_hold)
        self.saga = PaymentSaga(platform, staff=staff)
        self.state = SessionState(session_key, campground_id, session_factory)
        self.saver = DebouncedSaver(self._persist)
        self.abandonment = AbandonmentWatcher(self._report_abandoned)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def resume_offer(self, db: AsyncSession | None = None) -> dict[str, Any] | None:
        offer = await self.state.resume_offer(db)
        if offer is None:
            return None
        step, payload = offer
        return {"step": step, "draft": payload.model_dump(mode="json")}

    async def resume(self, db: AsyncSession | None = None) -> None:
        step, payload = await self.state.load(db)
        self.payload = payload
        self._loaded_guest = payload.guest.model_copy(deep=True)
        self.flow = flow.resume(self.variant, step, self.context())
        logger.info("Resumed checkout %s at %s", self.session_key, self.flow.step.value)
        await self._restore_promo()
        self._touch()

    async def _restore_promo(self) -> None:
        """Re-validate a saved promo code; drop it if it no longer applies."""
        code = self.payload.guest.promo_code
        if not code:
            return
        if self.quote_key() is None:
            self.payload.guest = self.payload.guest.model_copy(update={"promo_code": ""})
            return
        try:
            await self.apply_promo(code)
        except BookingError as exc:
            logger.info("Saved promo %s dropped on resume: %s", code, exc.message)
            self.promo = PromoState()
            self.payload.guest = self.payload.guest.model_copy(update={"promo_code": ""})

    async def discard(self, db: AsyncSession | None = None) -> None:
        self.saver.cancel()
        self.abandonment.disarm()
        await self.state.clear(db)
        self.payload = DraftPayload()
        self.flow = flow.start(self.variant)
        self.promo = PromoState()
        self.composer.invalidate()
        self.holds.clear()
        self._loaded_guest = None

    def close(self) -> None:
        self.saver.cancel()
        self.abandonment.disarm()

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def update_guest(self, changes: dict[str, Any]) -> GuestDraft:
        before = self.payload.guest
        merged = before.model_dump()
        for key, value in changes.items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key] = {**merged[key], **value}
            else:
                merged[key] = value
        guest = GuestDraft.model_validate(merged)
        self.payload.guest = guest
        self._field_changed()
        return guest

    def set_stay(self, stay: StayRequest) -> None:
        self.payload.arrival_date = stay.arrival_date
        self.payload.departure_date = stay.departure_date
        self.payload.site_type = stay.site_type
        self.payload.rig_type = stay.rig_type
        self.payload.rig_length = stay.rig_length
        guest = self.payload.guest
        self.payload.guest = guest.model_copy(
            update={
                "adults": stay.adults,
                "children": stay.children,
                "pet_count": stay.pet_count,
                "pet_types": list(stay.pet_types),
                "needs_accessible": stay.needs_accessible,
            }
        )
        self._field_changed()

    def select_site(
        self,
        site_id: str | None,
        site_class_id: str | None = None,
        *,
        assign_specific_site: bool | None = None,
        lock_site: bool = False,
    ) -> None:
        site = self.find_site(site_id)
        if site_class_id is None and site is not None:
            site_class_id = site.site_class_id or (site.site_class.id if site.site_class else None)
        self.payload.site_id = site_id
        self.payload.site_class_id = site_class_id
        self.payload.assign_specific_site = site_id is not None if assign_specific_site is None else assign_specific_site
        self.payload.lock_site = lock_site and site_id is not None
        self._field_changed()

    def set_options(self, *, pay_later: bool | None = None, charity_cents: int | None = None) -> None:
        if pay_later is not None:
            self.payload.pay_later = pay_later
        if charity_cents is not None:
            self.payload.charity_cents = max(0, charity_cents)
        self._field_changed()

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    def stay_request(self) -> StayRequest | None:
        p = self.payload
        if not is_valid_range(p.arrival_date, p.departure_date):
            return None
        g = p.guest
        return StayRequest(
            arrival_date=p.arrival_date,
            departure_date=p.departure_date,
            site_type=p.site_type,
            adults=g.adults,
            children=g.children,
            pet_count=g.pet_count,
            pet_types=g.pet_types,
            rig_type=p.rig_type,
            rig_length=p.rig_length,
            needs_accessible=g.needs_accessible,
        )

    def find_site(self, site_id: str | None) -> SiteRecord | None:
        if site_id is None:
            return None
        return next((s for s in self.sites if s.id == site_id), None)

    def _class_sample(self) -> SiteRecord | None:
        class_id = self.payload.site_class_id
        if class_id is None:
            return None
        return next(
            (s for s in self.sites if s.site_class_id == class_id or (s.site_class and s.site_class.id == class_id)),
            None,
        )

    def fallback_rate_cents(self) -> int | None:
        site = self.find_site(self.payload.site_id)
        if site is not None:
            return resolve_rate_cents(site)
        sample = self._class_sample()
        if sample is not None and sample.site_class is not None:
            return sample.site_class.default_rate_cents
        return None

    def context(self) -> FlowContext:
        p = self.payload
        site = self.find_site(p.site_id) or self._class_sample()
        price = self.last_price
        return FlowContext(
            guest=p.guest,
            arrival_date=p.arrival_date,
            departure_date=p.departure_date,
            today=self._today or utcnow().date(),
            site_id=p.site_id,
            site_class_id=p.site_class_id,
            assign_specific_site=p.assign_specific_site,
            max_rig_length=resolve_max_length(site) if site else None,
            tax_waiver_required=price.tax_waiver_required if price else False,
            required_policy_ids=tuple(
                str(item["id"]) for item in (price.policy_requirements if price else []) if item.get("id")
            ),
            amount_due_cents=price.total_cents if price else 0,
            staff=self.staff,
        )

    def quote_key(self) -> QuoteKey | None:
        p = self.payload
        if not is_valid_range(p.arrival_date, p.departure_date):
            return None
        g = p.guest
        return QuoteKey(
            campground_id=self.campground_id,
            site_id=p.site_id,
            site_class_id=p.site_class_id,
            arrival_date=p.arrival_date,
            departure_date=p.departure_date,
            promo_code=self.promo.code if self.promo.applied else None,
            tax_waiver_signed=g.tax_waiver_signed,
            referral_code=g.referral_code or None,
            stay_reason=g.stay_reason,
            adults=g.adults,
            children=g.children,
            pet_count=g.pet_count,
        )

    # ------------------------------------------------------------------
    # Availability & pricing
    # ------------------------------------------------------------------

    async def _fetch_sites(self, stay: StayRequest) -> list[SiteRecord]:
        sites = await self._platform.get_availability(self.campground_id, stay)
        if any(s.site_class is None and s.site_class_id for s in sites):
            sites = await self._attach_site_classes(sites)
        return sites

    async def _attach_site_classes(self, sites: list[SiteRecord]) -> list[SiteRecord]:
        """Fill in class details for sites the availability feed returned bare."""
        if self._site_classes is None:
            try:
                classes = await self._platform.get_site_classes(self.campground_id)
            except BookingError as exc:
                logger.warning("Site classes unavailable for %s: %s", self.campground_id, exc.message)
                return sites
            self._site_classes = {c.id: c for c in classes}
        return [
            s.model_copy(update={"site_class": self._site_classes[s.site_class_id]})
            if s.site_class is None and s.site_class_id in self._site_classes
            else s
            for s in sites
        ]

    async def availability(self, include_unavailable: bool = False) -> AvailabilityOutcome:
        stay = self.stay_request()
        if stay is not None:
            ticket = self.tracker.issue(AVAILABILITY_CATEGORY, (stay.arrival_date, stay.departure_date, stay.rig_type))
            sites = await self._fetch_sites(stay)
            if self.tracker.accepts(ticket):
                self.sites = sites
            else:
                logger.debug("Discarding stale availability for %s", self.session_key)
        return await self.matcher.match(self.sites, stay, include_unavailable=include_unavailable)

    async def ensure_fees(self) -> FeeSettings:
        if self.fees is None:
            try:
                self.fees = await self._platform.get_payment_settings(self.campground_id)
            except BookingError as exc:
                logger.warning("Payment settings unavailable for %s, using plan defaults: %s", self.campground_id, exc.message)
                self.fees = FeeSettings()
        return self.fees

    async def _fetch_quote(self, key: QuoteKey) -> Quote:
        g = self.payload.guest
        body: dict[str, Any] = {
            "siteId": key.site_id,
            "arrivalDate": key.arrival_date.isoformat(),
            "departureDate": key.departure_date.isoformat(),
            "taxWaiverSigned": key.tax_waiver_signed,
            "adults": key.adults,
            "children": key.children,
            "petCount": key.pet_count,
        }
        if key.promo_code:
            body["promoCode"] = key.promo_code
        if key.referral_code:
            body["referralCode"] = key.referral_code
        if g.stay_reason_preset:
            body["stayReasonPreset"] = g.stay_reason_preset
        if g.stay_reason_preset == "other" and g.stay_reason_other:
            body["stayReasonOther"] = g.stay_reason_other
        return await self._platform.get_quote(self.campground_id, body)

    async def price(self) -> PriceSummary:
        key = self.quote_key()
        if key is None:
            raise BookingValidationError({"dates": "Please select arrival and departure dates"})
        fees = await self.ensure_fees()
        summary = await self.composer.price(
            key,
            fallback_rate_cents=self.fallback_rate_cents(),
            nights=self.stay_request().nights,
            fees=fees,
            promo=self.promo,
            lock_site=self.payload.lock_site,
            charity_cents=self.payload.charity_cents,
        )
        self.last_price = summary
        return summary

    async def apply_promo(self, code: str) -> PromoState:
        # Validate against the current selection, not whatever was priced last.
        self.promo = PromoState()
        summary = await self.price()
        try:
            self.promo = await apply_promo(
                self._platform.validate_promo_code, self.campground_id, code, summary.subtotal_cents
            )
        except PromoInvalid as exc:
            self.promo = PromoState(code=code.strip().upper(), error=exc.message)
            raise
        self.payload.guest = self.payload.guest.model_copy(update={"promo_code": self.promo.code})
        self._field_changed()
        return self.promo

    def remove_promo(self) -> PromoState:
        self.promo = remove_promo()
        self.payload.guest = self.payload.guest.model_copy(update={"promo_code": ""})
        self._field_changed()
        return self.promo

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def next(self) -> flow.FlowState:
        self.flow = flow.transition(self.flow, flow.Next(self.context()))
        self._touch()
        return self.flow

    def back(self) -> flow.FlowState:
        self.flow = flow.transition(self.flow, flow.Back())
        self._touch()
        return self.flow

    def _field_changed(self) -> None:
        if not self.flow.is_complete:
            self.flow = flow.transition(self.flow, flow.FieldChanged(self.context()))
        self._touch()

    def _touch(self) -> None:
        """Schedule a draft save and restart the abandonment timer."""
        if self.flow.is_complete:
            return
        self.saver.schedule()
        self.abandonment.update(
            has_contact=self.payload.guest.has_contact,
            reached_payment=self.flow.index >= self.flow.steps.index(Step.PAYMENT),
        )

    async def _persist(self) -> None:
        await self.state.save(self.flow.step.value, self.payload)

    async def _report_abandoned(self) -> None:
        g = self.payload.guest
        await self._platform.report_abandoned_cart(
            self.campground_id,
            {"email": g.email or None, "phone": g.phone or None},
            utcnow(),
        )
        logger.info("Reported abandoned checkout %s", self.session_key)

    # ------------------------------------------------------------------
    # Payment
    # ------------------------------------------------------------------

    def _reservation_draft(self, summary: PriceSummary, hold_id: str | None) -> ReservationDraft:
        p = self.payload
        g = p.guest
        policy_acceptances = [{"policyId": pid, "accepted": True} for pid, ok in g.policy_acceptances.items() if ok]
        return ReservationDraft(
            campground_id=self.campground_id,
            guest_id=g.guest_id,
            guest=None
            if g.guest_id
            else GuestContact(
                first_name=g.first_name,
                last_name=g.last_name,
                email=g.email,
                phone=g.phone or None,
                zip_code=g.postal_code or None,
            ),
            site_id=p.site_id,
            site_class_id=p.site_class_id,
            site_locked=p.lock_site,
            arrival_date=p.arrival_date,
            departure_date=p.departure_date,
            adults=g.adults,
            children=g.children,
            pet_count=g.pet_count,
            pet_types=g.pet_types,
            additional_guests=additional_guests_wire(g.additional_guests),
            equipment=equipment_wire(g.equipment),
            needs_accessible=g.needs_accessible or None,
            promo_code=self.promo.code if self.promo.applied else None,
            referral_code=g.referral_code or None,
            stay_reason_preset=g.stay_reason_preset or None,
            stay_reason_other=g.stay_reason_other or None,
            tax_waiver_signed=g.tax_waiver_signed or None,
            policy_acceptances=policy_acceptances or None,
            charity_donation={"amountCents": summary.charity_cents} if summary.charity_cents else None,
            notes=g.notes or None,
            total_amount=summary.total_cents,
            payment_notes=g.payment.notes or None,
            hold_id=hold_id,
        )

    async def checkout(self) -> dict[str, Any]:
        """Start the payment saga from the payment step."""
        if self.flow.step != Step.PAYMENT:
            raise FlowTransitionError("Continue to the payment step first.")

        summary = await self.price()
        errors = flow.validate_through(self.variant, Step.PAYMENT, self.context())
        if errors:
            self.flow = replace(self.flow, errors=errors)
            raise BookingValidationError(errors)

        hold_id = None
        p = self.payload
        if p.site_id and p.assign_specific_site:
            hold = await self.holds.acquire(self.campground_id, p.site_id, p.arrival_date, p.departure_date)
            hold_id = hold.id if hold else None

        g = p.guest
        pay_later = p.pay_later or (self.staff and not g.payment.collect_now)
        method = g.payment.method if self.staff else "card"
        site = self.find_site(p.site_id)
        request = SagaRequest(
            draft=self._reservation_draft(summary, hold_id),
            guest_email=g.email,
            guest_name=g.full_name,
            site_name=site.name if site else "",
            guest_update=guest_update_patch(self._loaded_guest, g) if g.guest_id else None,
            pay_later=pay_later,
            method=method,
            cash_received_cents=g.payment.cash_received_cents,
        )

        self.abandonment.disarm()
        try:
            await self.saga.start(request)
        except AvailabilityConflict as exc:
            await self._site_taken(exc)
            raise
        if self.saga.state.stage == SagaStage.COMPLETED:
            await self._complete()
        return self.payment_status()

    async def _site_taken(self, exc: AvailabilityConflict) -> None:
        """Drop the taken site, attach alternatives to the error, and send the guest back to pick again."""
        taken = self.payload.site_id
        logger.info("Site %s taken during checkout %s", taken, self.session_key)
        self.holds.clear()
        if taken is None:
            self.payload.site_class_id = None
        self.payload.site_id = None
        self.payload.lock_site = False

        stay = self.stay_request()
        if stay is not None:
            try:
                sites = await self._fetch_sites(stay)
            except BookingError as fetch_exc:
                logger.warning("Availability refresh after conflict failed: %s", fetch_exc.message)
                sites = []
            self.sites = [s for s in sites if s.id != taken]
            self.tracker.invalidate(AVAILABILITY_CATEGORY)
            remaining = match_sites(self.sites, stay).sites
            exc.suggestions = conflict_suggestions(
                remaining,
                suggest_alternate_types(self.sites, stay.site_type),
                await find_next_availability(self._fetch_sites, stay),
            )

        ctx = self.context()
        picked_again = flow.resume(self.variant, self.flow.step.value, ctx)
        self.flow = replace(picked_again, errors=flow.validate_step(self.variant, picked_again.step, ctx))
        self._touch()

    async def retry_payment(self) -> dict[str, Any]:
        await self.saga.retry_payment_init()
        return self.payment_status()

    async def confirm_payment(self, payment_method: str | None = None) -> dict[str, Any]:
        """Payment confirmed by the browser (no method) or by staff through Stripe."""
        if payment_method:
            await self.saga.confirm_with_processor(payment_method)
        else:
            await self.saga.payment_succeeded()
        await self._complete()
        return self.payment_status()

    def fail_payment(self, message: str | None = None) -> None:
        """The browser reported a declined payment."""
        raise self.saga.payment_failed(message)

    async def cancel_payment(self) -> dict[str, Any]:
        """Payment dismissed before confirmation: cancel the reservation and allow a new attempt."""
        state = await self.saga.cancel()
        status = self.payment_status()
        if state.stage == SagaStage.CANCELLED:
            self.saga = PaymentSaga(self._platform, staff=self.staff)
            self.holds.clear()
        return status

    async def _complete(self) -> None:
        self.flow = flow.transition(self.flow, flow.PaymentCompleted())
        self.saver.cancel()
        self.abandonment.disarm()
        try:
            await self.state.clear()
        except Exception:
            logger.exception("Could not clear draft %s after booking", self.session_key)
        logger.info("Checkout %s complete: reservation %s", self.session_key, self.saga.state.reservation_id)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def payment_status(self) -> dict[str, Any]:
        s = self.saga.state
        receipt = self.saga.receipt
        return {
            "stage": s.stage.value,
            "reservationId": s.reservation_id,
            "reservationStatus": s.reservation_status,
            "paymentIntentId": s.intent_id,
            "clientSecret": s.client_secret,
            "error": s.error,
            "receipt": receipt.to_wire() if receipt else None,
        }

    def hold_status(self) -> dict[str, Any]:
        hold = self.holds.hold
        return {
            "hold": hold.to_wire() if hold else None,
            "countdown": self.holds.countdown(),
            "expired": self.holds.is_expired() if hold else None,
        }

    def snapshot(self) -> dict[str, Any]:
        return {
            "sessionKey": self.session_key,
            "campgroundId": self.campground_id,
            "variant": self.variant.value,
            "step": self.flow.step.value,
            "steps": [step.value for step in self.flow.steps],
            "errors": self.flow.errors,
            "draft": self.payload.model_dump(mode="json"),
            "promo": self.promo.model_dump(),
            "payment": self.payment_status(),
        }


class CheckoutRegistry:
    """In-process map of browser session key to its checkout.

    Checkouts nobody has looked up for ``idle_minutes`` are evicted on the next
    lookup. Their drafts stay in the database, so a returning guest is offered
    a resume.
    """

    def __init__(
        self,
        platform: PlatformClient,
        session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
        *,
        idle_minutes: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.platform = platform
        self._session_factory = session_factory
        self._sessions: dict[str, CheckoutSession] = {}
        self._last_seen: dict[str, datetime] = {}
        self._idle = timedelta(minutes=settings.checkout_idle_minutes if idle_minutes is None else idle_minutes)
        self._clock = clock

    def get(self, session_key: str) -> CheckoutSession | None:
        self.evict_idle()
        session = self._sessions.get(session_key)
        if session is not None:
            self._last_seen[session_key] = self._clock()
        return session

    def open(
        self,
        session_key: str,
        campground_id: str,
        *,
        variant: Variant = Variant.STANDARD,
        staff: bool = False,
    ) -> CheckoutSession:
        """Return the live checkout for this key, replacing one for another campground or a finished one."""
        self.evict_idle()
        existing = self._sessions.get(session_key)
        if (
            existing is not None
            and existing.campground_id == campground_id
            and existing.variant == variant
            and not existing.flow.is_complete
        ):
            self._last_seen[session_key] = self._clock()
            return existing
        if existing is not None:
            existing.close()

        session = CheckoutSession(
            session_key,
            campground_id,
            self.platform,
            variant=variant,
            staff=staff,
            session_factory=self._session_factory,
        )
        self._sessions[session_key] = session
        self._last_seen[session_key] = self._clock()
        return session

    def evict_idle(self) -> int:
        cutoff = self._clock() - self._idle
        stale = [key for key, seen in self._last_seen.items() if seen <= cutoff]
        for key in stale:
            self.drop(key)
        if stale:
            logger.info("Evicted %s idle checkout(s)", len(stale))
        return len(stale)

    def drop(self, session_key: str) -> None:
        self._last_seen.pop(session_key, None)
        session = self._sessions.pop(session_key, None)
        if session is not None:
            session.close()

    def close_all(self) -> None:
        for key in list(self._sessions):
            self.drop(key)
