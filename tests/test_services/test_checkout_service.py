"""Tests for CheckoutSession: the service tying flow, pricing, holds, and payment together."""

import asyncio
from datetime import UTC, date, datetime, timedelta
from unittest.mock import ANY

import pytest
import pytest_asyncio

from campflow.billing.fees import FeeSettings
from campflow.booking.flow import Step, Variant
from campflow.booking.saga import SagaStage
from campflow.booking.session import AbandonmentWatcher, DraftPayload
from campflow.errors import (
    AvailabilityConflict,
    BookingValidationError,
    CollaboratorError,
    FlowTransitionError,
    HoldFailure,
    PaymentConfirmationFailure,
    PaymentInitializationFailure,
    QuoteUnavailable,
)
from campflow.schemas.catalog import SiteClass, SiteRecord
from campflow.schemas.guest import AdditionalGuest, Equipment, GuestAddress, GuestDraft
from campflow.schemas.quote import PromoValidation, Quote
from campflow.schemas.reservation import PaymentIntent
from campflow.schemas.stay import StayRequest
from campflow.services.checkout_service import (
    CheckoutRegistry,
    CheckoutSession,
    additional_guests_wire,
    equipment_wire,
    guest_update_patch,
)

TODAY = date(2031, 6, 1)

CONTACT = {
    "first_name": "Ada",
    "last_name": "Park",
    "email": "ada@example.com",
    "phone": "555-0100",
    "postal_code": "97201",
}

LIVE_QUOTE = Quote(per_night_cents=5000, nights=3, base_subtotal_cents=15000, total_cents=15000)


@pytest_asyncio.fixture
async def checkout(platform, session_factory):
    session = CheckoutSession("sess-abc123", "pine-lake", platform, session_factory=session_factory, today=TODAY)
    yield session
    session.close()


async def _choose_site(session: CheckoutSession, stay_dates, site_id: str = "site-1") -> None:
    arrival, departure = stay_dates
    session.set_stay(StayRequest(arrival_date=arrival, departure_date=departure))
    await session.availability()
    session.select_site(site_id)


async def _reach_payment(session: CheckoutSession, stay_dates) -> None:
    await _choose_site(session, stay_dates)
    session.next()
    session.next()
    session.update_guest(CONTACT)
    session.next()
    assert session.flow.step == Step.PAYMENT


class TestGuestUpdatePatch:
    def test_only_changed_fields(self):
        before = GuestDraft(first_name="Ada", phone="555-0100")
        after = before.model_copy(update={"phone": "555-0199", "postal_code": "97201"})
        assert guest_update_patch(before, after) == {"phone": "555-0199", "zipCode": "97201"}

    def test_address_fields(self):
        after = GuestDraft(address=GuestAddress(city="Bend", postal_code="97701"))
        assert guest_update_patch(None, after) == {"city": "Bend", "addressPostalCode": "97701"}

    def test_camel_case_names(self):
        assert guest_update_patch(GuestDraft(), GuestDraft(first_name="Ada")) == {"firstName": "Ada"}


class TestReservationWireHelpers:
    def test_tent_and_car_drop_length(self):
        assert equipment_wire(Equipment(type="tent", length=12)) == {"type": "tent"}
        assert equipment_wire(Equipment(type="car", length=15, plate_state="OR")) == {"type": "car", "plateState": "OR"}

    def test_rig_keeps_length_and_plate(self):
        rig = Equipment(type="fifth-wheel", length=32, plate_number="ABC123")
        assert equipment_wire(rig) == {"type": "fifth-wheel", "length": 32, "plateNumber": "ABC123"}

    def test_additional_guests_drop_blank_fields(self):
        rows = additional_guests_wire([AdditionalGuest(first_name="Bo", last_name="Park")])
        assert rows == [{"firstName": "Bo", "lastName": "Park"}]
        assert additional_guests_wire([]) is None


@pytest.mark.asyncio
class TestSelectionAndPricing:
    async def test_select_site_fills_class(self, checkout, stay_dates):
        await _choose_site(checkout, stay_dates)
        assert checkout.payload.site_class_id == "class-rv"
        assert checkout.payload.assign_specific_site
        assert checkout.fallback_rate_cents() == 5000

    async def test_price_requires_dates(self, checkout):
        with pytest.raises(BookingValidationError) as exc_info:
            await checkout.price()
        assert "dates" in exc_info.value.errors

    async def test_live_quote_request_body(self, checkout, platform, stay_dates):
        platform.get_quote.side_effect = None
        platform.get_quote.return_value = LIVE_QUOTE
        await _choose_site(checkout, stay_dates)

        summary = await checkout.price()

        assert not summary.is_estimate
        assert summary.total_cents == 15000
        scope, body = platform.get_quote.await_args.args
        assert scope == "pine-lake"
        assert body["siteId"] == "site-1"
        assert body["arrivalDate"] == "2031-06-10"
        assert body["stayReasonPreset"] == "vacation"
        assert "promoCode" not in body

    async def test_promo_apply_and_remove_on_estimate(self, checkout, platform, stay_dates):
        platform.get_quote.side_effect = QuoteUnavailable()
        await _choose_site(checkout, stay_dates)

        before = await checkout.price()
        assert before.is_estimate
        assert before.total_cents == 15000

        promo = await checkout.apply_promo("save10")
        platform.validate_promo_code.assert_awaited_once_with("pine-lake", "SAVE10", 15000)
        assert promo.applied
        assert (await checkout.price()).total_cents == 13500

        checkout.remove_promo()
        assert (await checkout.price()).total_cents == 15000

    async def test_fee_settings_fall_back_to_plan_defaults(self, checkout, platform):
        platform.get_payment_settings.side_effect = CollaboratorError()
        fees = await checkout.ensure_fees()
        assert fees == FeeSettings()
        assert fees.absorbed_fee_cents == 300

    async def test_stale_availability_is_not_applied(self, checkout, platform, make_site, stay_dates):
        arrival, departure = stay_dates
        release = asyncio.Event()
        slow_sites = [make_site("slow")]

        async def get_availability(scope, stay):
            if stay.arrival_date == arrival:
                await release.wait()
                return slow_sites
            return [make_site("fast")]

        platform.get_availability.side_effect = get_availability
        checkout.set_stay(StayRequest(arrival_date=arrival, departure_date=departure))
        slow = asyncio.create_task(checkout.availability())
        await asyncio.sleep(0)

        checkout.set_stay(StayRequest(arrival_date=date(2031, 7, 1), departure_date=date(2031, 7, 3)))
        await checkout.availability()
        release.set()
        await slow

        assert [s.id for s in checkout.sites] == ["fast"]

    async def test_promo_validated_against_current_stay(self, checkout, platform, stay_dates):
        platform.get_quote.side_effect = QuoteUnavailable()
        await _choose_site(checkout, stay_dates)
        assert (await checkout.price()).total_cents == 15000

        arrival, _ = stay_dates
        checkout.set_stay(StayRequest(arrival_date=arrival, departure_date=date(2031, 6, 11)))
        await checkout.apply_promo("save10")

        platform.validate_promo_code.assert_awaited_once_with("pine-lake", "SAVE10", 5000)
        assert (await checkout.price()).total_cents == 3500

    async def test_bare_sites_get_class_details(self, checkout, platform, stay_dates):
        platform.get_availability.return_value = [
            SiteRecord(id="site-9", name="Site 9", site_type="rv", site_class_id="class-rv")
        ]
        platform.get_site_classes.return_value = [
            SiteClass(id="class-rv", name="Full Hookup RV", site_type="rv", default_rate_cents=5000)
        ]

        await _choose_site(checkout, stay_dates, "site-9")
        await checkout.availability()

        assert checkout.fallback_rate_cents() == 5000
        assert checkout.find_site("site-9").site_class.name == "Full Hookup RV"
        platform.get_site_classes.assert_awaited_once_with("pine-lake")

    async def test_site_classes_outage_keeps_bare_sites(self, checkout, platform, stay_dates):
        platform.get_availability.return_value = [
            SiteRecord(id="site-9", name="Site 9", site_type="rv", site_class_id="class-rv", default_rate_cents=4000)
        ]
        platform.get_site_classes.side_effect = CollaboratorError()

        await _choose_site(checkout, stay_dates, "site-9")

        assert checkout.find_site("site-9").site_class is None
        assert checkout.fallback_rate_cents() == 4000


@pytest.mark.asyncio
class TestCheckout:
    async def test_card_checkout_end_to_end(self, checkout, platform, stay_dates):
        platform.get_quote.side_effect = None
        platform.get_quote.return_value = LIVE_QUOTE
        await _reach_payment(checkout, stay_dates)

        status = await checkout.checkout()

        assert status["stage"] == SagaStage.AWAITING_PAYMENT
        assert status["clientSecret"] == "pi_123_secret_abc"
        platform.create_hold.assert_awaited_once_with("pine-lake", "site-1", *stay_dates)
        draft = platform.create_reservation.await_args.args[0]
        assert draft.total_amount == 15000
        assert draft.hold_id == "hold-1"
        assert draft.guest.email == "ada@example.com"
        assert not checkout.abandonment.armed

        status = await checkout.confirm_payment()

        assert status["stage"] == SagaStage.COMPLETED
        assert checkout.flow.is_complete
        platform.confirm_payment_intent.assert_awaited_once_with("pi_123", "res-1")

    async def test_checkout_outside_payment_step(self, checkout):
        with pytest.raises(FlowTransitionError):
            await checkout.checkout()

    async def test_site_taken_offers_alternatives(self, checkout, platform, make_site, stay_dates):
        platform.get_quote.side_effect = QuoteUnavailable()
        platform.get_availability.return_value = [
            make_site("site-1"),
            make_site("site-2"),
            make_site("tent-1", site_type="tent", class_id="class-tent", class_name="Tent"),
        ]
        platform.create_reservation.side_effect = AvailabilityConflict(status_code=409)
        await _reach_payment(checkout, stay_dates)

        with pytest.raises(AvailabilityConflict) as exc_info:
            await checkout.checkout()

        suggestions = exc_info.value.suggestions
        assert suggestions["availableSiteIds"] == ["site-2", "tent-1"]
        assert suggestions["alternateTypes"]["tent"] == ["tent-1"]
        assert suggestions["nextAvailable"]["arrivalDate"] == "2031-06-11"
        assert checkout.payload.site_id is None
        assert not checkout.payload.lock_site
        assert checkout.holds.hold is None
        assert checkout.flow.step == Step.SITE
        assert "site" in checkout.flow.errors
        assert checkout.saga.state.stage == SagaStage.IDLE

        checkout.select_site("site-2")
        checkout.next()
        checkout.next()
        platform.create_reservation.side_effect = None
        status = await checkout.checkout()
        assert status["stage"] == SagaStage.AWAITING_PAYMENT
        assert platform.create_reservation.await_args.args[0].site_id == "site-2"

    async def test_auto_assigned_class_full_requires_new_class(self, checkout, platform, stay_dates):
        platform.get_quote.side_effect = QuoteUnavailable()
        platform.create_reservation.side_effect = AvailabilityConflict(status_code=409)
        arrival, departure = stay_dates
        checkout.set_stay(StayRequest(arrival_date=arrival, departure_date=departure))
        await checkout.availability()
        checkout.select_site(None, "class-rv")
        checkout.next()
        checkout.next()
        checkout.update_guest(CONTACT)
        checkout.next()

        with pytest.raises(AvailabilityConflict):
            await checkout.checkout()

        assert checkout.payload.site_class_id is None
        assert checkout.flow.step == Step.SITE
        platform.create_hold.assert_not_awaited()

    async def test_hold_failure_does_not_block_checkout(self, checkout, platform, stay_dates):
        platform.get_quote.side_effect = QuoteUnavailable()
        platform.create_hold.side_effect = HoldFailure("Hold response was malformed")
        await _reach_payment(checkout, stay_dates)

        status = await checkout.checkout()

        assert status["stage"] == SagaStage.AWAITING_PAYMENT
        assert platform.create_reservation.await_args.args[0].hold_id is None

    async def test_reservation_carries_party_and_equipment(self, checkout, platform, stay_dates):
        platform.get_quote.side_effect = QuoteUnavailable()
        await _reach_payment(checkout, stay_dates)
        checkout.update_guest(
            {
                "adults": 2,
                "additional_guests": [{"first_name": "Bo", "last_name": "Park"}],
                "equipment": {"type": "tent", "length": 12, "plate_number": "ABC123"},
            }
        )

        await checkout.checkout()

        wire = platform.create_reservation.await_args.args[0].to_wire()
        assert wire["adults"] == 2
        assert wire["additionalGuests"] == [{"firstName": "Bo", "lastName": "Park"}]
        assert wire["equipment"] == {"type": "tent", "plateNumber": "ABC123"}

    async def test_checkout_revalidates_before_reserving(self, checkout, platform, stay_dates):
        platform.get_quote.side_effect = QuoteUnavailable()
        await _reach_payment(checkout, stay_dates)
        checkout.update_guest({"email": "not-an-email"})

        with pytest.raises(BookingValidationError) as exc_info:
            await checkout.checkout()

        assert "email" in exc_info.value.errors
        assert "email" in checkout.flow.errors
        platform.create_reservation.assert_not_awaited()

    async def test_intent_failure_then_retry(self, checkout, platform, stay_dates):
        platform.get_quote.side_effect = QuoteUnavailable()
        platform.create_payment_intent.side_effect = [
            PaymentInitializationFailure(reservation_id="res-1"),
            PaymentIntent(id="pi_456", client_secret="pi_456_secret"),
        ]
        await _reach_payment(checkout, stay_dates)

        with pytest.raises(PaymentInitializationFailure):
            await checkout.checkout()
        assert checkout.payment_status()["stage"] == SagaStage.INTENT_FAILED

        status = await checkout.retry_payment()
        assert status["clientSecret"] == "pi_456_secret"
        assert platform.create_reservation.await_count == 1

    async def test_declined_payment_is_reported(self, checkout, platform, stay_dates):
        platform.get_quote.side_effect = QuoteUnavailable()
        await _reach_payment(checkout, stay_dates)
        await checkout.checkout()

        with pytest.raises(PaymentConfirmationFailure):
            checkout.fail_payment("Your card was declined.")
        assert checkout.payment_status()["error"] == "Your card was declined."
        assert checkout.flow.step == Step.PAYMENT

    async def test_cancel_allows_a_fresh_attempt(self, checkout, platform, stay_dates):
        platform.get_quote.side_effect = QuoteUnavailable()
        await _reach_payment(checkout, stay_dates)
        await checkout.checkout()

        status = await checkout.cancel_payment()
        assert status["stage"] == SagaStage.CANCELLED
        platform.cancel_reservation.assert_awaited_once_with("res-1")
        assert checkout.saga.state.stage == SagaStage.IDLE
        assert checkout.holds.hold is None

        await checkout.checkout()
        assert platform.create_reservation.await_count == 2

    async def test_staff_cash_express_checkout(self, platform, session_factory, stay_dates):
        session = CheckoutSession(
            "sess-staff01",
            "pine-lake",
            platform,
            variant=Variant.EXPRESS,
            staff=True,
            session_factory=session_factory,
            today=TODAY,
        )
        platform.get_quote.side_effect = QuoteUnavailable()
        try:
            await _choose_site(session, stay_dates)
            session.next()
            session.update_guest({"guest_id": "g-1", "payment": {"method": "cash", "cash_received_cents": 20000}})

            status = await session.checkout()

            assert status["stage"] == SagaStage.COMPLETED
            assert status["receipt"]["changeDueCents"] == 5000
            assert session.flow.is_complete
            draft = platform.create_reservation.await_args.args[0]
            assert draft.status == "confirmed"
            assert draft.guest_id == "g-1"
            platform.create_payment_intent.assert_not_awaited()
        finally:
            session.close()


@pytest.mark.asyncio
class TestDraftsAndAbandonment:
    async def test_resume_restores_step(self, platform, session_factory, db_session, stay_dates):
        arrival, departure = stay_dates
        first = CheckoutSession("sess-abc123", "pine-lake", platform, session_factory=session_factory, today=TODAY)
        payload = DraftPayload(
            guest=GuestDraft(**CONTACT), arrival_date=arrival, departure_date=departure, site_class_id="class-rv"
        )
        await first.state.save("details", payload, db_session)

        second = CheckoutSession("sess-abc123", "pine-lake", platform, session_factory=session_factory, today=TODAY)
        try:
            offer = await second.resume_offer(db_session)
            assert offer["step"] == "details"

            await second.resume(db_session)
            assert second.flow.step == Step.DETAILS
            assert second.payload.guest.email == "ada@example.com"
        finally:
            second.close()

    async def test_resume_reapplies_saved_promo(self, platform, session_factory, db_session, stay_dates):
        platform.get_quote.side_effect = None
        platform.get_quote.return_value = LIVE_QUOTE
        arrival, departure = stay_dates
        payload = DraftPayload(
            guest=GuestDraft(**CONTACT, promo_code="SAVE10"),
            arrival_date=arrival,
            departure_date=departure,
            site_id="site-1",
            site_class_id="class-rv",
            assign_specific_site=True,
        )
        await CheckoutSession(
            "sess-abc123", "pine-lake", platform, session_factory=session_factory, today=TODAY
        ).state.save("details", payload, db_session)

        resumed = CheckoutSession("sess-abc123", "pine-lake", platform, session_factory=session_factory, today=TODAY)
        try:
            await resumed.resume(db_session)
            platform.validate_promo_code.assert_awaited_once_with("pine-lake", "SAVE10", 15000)
            assert resumed.promo.applied
            assert (await resumed.price()).total_cents == 13500
        finally:
            resumed.close()

    async def test_resume_drops_promo_that_no_longer_applies(self, platform, session_factory, db_session, stay_dates):
        platform.get_quote.side_effect = QuoteUnavailable()
        platform.validate_promo_code.return_value = PromoValidation(code="SAVE10", valid=False)
        arrival, departure = stay_dates
        payload = DraftPayload(
            guest=GuestDraft(**CONTACT, promo_code="SAVE10"),
            arrival_date=arrival,
            departure_date=departure,
            site_class_id="class-rv",
        )
        await CheckoutSession(
            "sess-abc123", "pine-lake", platform, session_factory=session_factory, today=TODAY
        ).state.save("details", payload, db_session)

        resumed = CheckoutSession("sess-abc123", "pine-lake", platform, session_factory=session_factory, today=TODAY)
        try:
            await resumed.resume(db_session)
            assert not resumed.promo.applied
            assert resumed.payload.guest.promo_code == ""
        finally:
            resumed.close()

    async def test_discard_clears_draft(self, checkout, db_session, stay_dates):
        await _choose_site(checkout, stay_dates)
        await checkout.state.save("site", checkout.payload, db_session)

        await checkout.discard(db_session)

        assert await checkout.resume_offer(db_session) is None
        assert checkout.payload == DraftPayload()
        assert checkout.flow.step == Step.DATES

    async def test_abandoned_cart_reported_once(self, checkout, platform):
        checkout.abandonment = AbandonmentWatcher(checkout._report_abandoned, delay=0.01)
        checkout.update_guest({"email": "ada@example.com"})
        await asyncio.sleep(0.05)
        checkout.update_guest({"phone": "555-0100"})
        await asyncio.sleep(0.05)

        platform.report_abandoned_cart.assert_awaited_once_with(
            "pine-lake", {"email": "ada@example.com", "phone": None}, ANY
        )


class TestRegistry:
    def test_open_reuses_live_session(self, platform, session_factory):
        registry = CheckoutRegistry(platform, session_factory=session_factory)
        first = registry.open("sess-abc123", "pine-lake")
        assert registry.open("sess-abc123", "pine-lake") is first
        assert registry.get("sess-abc123") is first

    def test_other_campground_replaces_session(self, platform, session_factory):
        registry = CheckoutRegistry(platform, session_factory=session_factory)
        first = registry.open("sess-abc123", "pine-lake")
        second = registry.open("sess-abc123", "elk-creek")
        assert second is not first
        assert second.campground_id == "elk-creek"

        registry.drop("sess-abc123")
        assert registry.get("sess-abc123") is None

    def test_idle_sessions_are_evicted(self, platform, session_factory):
        now = [datetime(2031, 6, 1, 12, 0, tzinfo=UTC)]
        registry = CheckoutRegistry(platform, session_factory=session_factory, idle_minutes=30, clock=lambda: now[0])
        registry.open("sess-idle001", "pine-lake")
        registry.open("sess-live001", "pine-lake")

        now[0] += timedelta(minutes=20)
        assert registry.get("sess-live001") is not None

        now[0] += timedelta(minutes=15)
        assert registry.get("sess-idle001") is None
        assert registry.get("sess-live001") is not None
        assert registry.evict_idle() == 0
