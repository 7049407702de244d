"""Campground platform API client.

Catalog lookups, quotes, holds, reservations, guest updates, payment intents,
and abandoned-cart reporting all go through here. HTTP and transport failures
are translated into the booking error taxonomy so callers never see httpx
exceptions.
"""

import logging
from datetime import date, datetime
from typing import Any

import httpx
from pydantic import ValidationError

from campflow.billing.fees import FeeSettings
from campflow.config import settings
from campflow.errors import (
    AvailabilityConflict,
    BookingError,
    CollaboratorError,
    HoldFailure,
    PaymentInitializationFailure,
    PromoInvalid,
    QuoteUnavailable,
    ReconciliationFailure,
    ReservationCreationFailure,
)
from campflow.schemas.catalog import SiteClass, SiteRecord
from campflow.schemas.quote import PromoValidation, Quote
from campflow.schemas.reservation import Hold, PaymentIntent, Reservation, ReservationDraft
from campflow.schemas.stay import StayRequest

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
    """Pull a readable message out of an error body."""
    message = f"Request failed: {response.status_code}"
    try:
        body = response.json()
    except ValueError:
        return message
    if isinstance(body, dict):
        raw = body.get("message")
        if isinstance(raw, str):
            return raw
        if isinstance(raw, list) and raw and isinstance(raw[0], str):
            return ", ".join(raw)
    return message


class PlatformClient:
    """
    Async client for the campground platform API.

    Usage:
        async with PlatformClient() as platform:
            sites = await platform.get_availability("pine-lake", stay)
            quote = await platform.get_quote("pine-lake", {...})
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.platform_api_url).rstrip("/")
        self.api_key = settings.platform_api_key if api_key is None else api_key
        self.timeout = timeout or settings.platform_timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "PlatformClient":
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=headers,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get HTTP client, raise if not initialized."""
        if self._client is None:
            raise RuntimeError("Client not initialized. Use 'async with PlatformClient(...)' context.")
        return self._client

    async def _request(
        self,
        method: str,
        path: str,
        failure: type[BookingError],
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        conflict: bool = False,
    ) -> Any:
        """Send a request and map failures onto ``failure``.

        With ``conflict=True`` a 409 becomes AvailabilityConflict.
        """
        try:
            response = await self.client.request(method, path, json=json, params=params)
        except httpx.TransportError as e:
            logger.warning("Platform %s %s failed: %s", method, path, e)
            raise failure(status_code=None) from e

        if response.status_code == 409 and conflict:
            raise AvailabilityConflict(_error_message(response), status_code=409, response=response)
        if response.is_error:
            message = _error_message(response)
            logger.warning("Platform %s %s returned %s: %s", method, path, response.status_code, message)
            # Server errors keep the operation's friendly message; client errors carry the server's.
            raise failure(
                None if response.is_server_error else message,
                status_code=response.status_code,
                response=response,
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            logger.warning("Platform %s %s returned a non-JSON body", method, path)
            raise failure(status_code=response.status_code, response=response) from e

    # =========================================================================
    # Catalog
    # =========================================================================

    async def get_availability(self, scope: str, stay: StayRequest) -> list[SiteRecord]:
        params: dict[str, Any] = {
            "arrivalDate": stay.arrival_date.isoformat(),
            "departureDate": stay.departure_date.isoformat(),
        }
        if stay.rig_type:
            params["rigType"] = stay.rig_type
        if stay.rig_length is not None:
            params["rigLength"] = stay.rig_length
        if stay.needs_accessible:
            params["needsAccessible"] = "true"

        data = await self._request(
            "GET", f"/public/campgrounds/{scope}/availability", CollaboratorError, params=params
        )
        try:
            return [SiteRecord.model_validate(item) for item in data or []]
        except ValidationError as e:
            raise CollaboratorError("Availability response was malformed") from e

    async def get_site_classes(self, scope: str) -> list[SiteClass]:
        data = await self._request("GET", f"/campgrounds/{scope}/site-classes", CollaboratorError)
        try:
            return [SiteClass.model_validate(item) for item in data or []]
        except ValidationError as e:
            raise CollaboratorError("Site class response was malformed") from e

    async def get_payment_settings(self, scope: str) -> FeeSettings:
        data = await self._request("GET", f"/campgrounds/{scope}", CollaboratorError)
        try:
            return FeeSettings.model_validate(data or {})
        except ValidationError as e:
            raise CollaboratorError("Payment settings response was malformed") from e

    # =========================================================================
    # Pricing
    # =========================================================================

    async def get_quote(self, scope: str, request: dict[str, Any]) -> Quote:
        """Authoritative quote. Malformed or inconsistent quotes are unavailable too."""
        data = await self._request("POST", f"/public/campgrounds/{scope}/quote", QuoteUnavailable, json=request)
        try:
            return Quote.model_validate(data or {})
        except ValidationError as e:
            logger.warning("Rejected inconsistent quote for %s: %s", scope, e.error_count())
            raise QuoteUnavailable() from e

    async def validate_promo_code(self, scope: str, code: str, base_total_cents: int) -> PromoValidation:
        try:
            data = await self._request(
                "POST",
                "/promotions/validate",
                PromoInvalid,
                json={"campgroundId": scope, "code": code, "subtotal": base_total_cents},
            )
        except PromoInvalid as e:
            if e.status_code is None or e.status_code >= 500:
                raise PromoInvalid("Couldn't check that code right now. Try again.") from e
            raise
        try:
            return PromoValidation.model_validate(data or {})
        except ValidationError as e:
            raise PromoInvalid("Couldn't check that code right now. Try again.") from e

    # =========================================================================
    # Holds & reservations
    # =========================================================================

    async def create_hold(self, scope: str, site_id: str, arrival: date, departure: date) -> Hold:
        data = await self._request(
            "POST",
            "/holds",
            HoldFailure,
            json={
                "campgroundId": scope,
                "siteId": site_id,
                "arrivalDate": arrival.isoformat(),
                "departureDate": departure.isoformat(),
            },
            conflict=True,
        )
        try:
            return Hold.model_validate(data or {})
        except ValidationError as e:
            raise HoldFailure("Hold response was malformed") from e

    async def create_reservation(self, draft: ReservationDraft) -> Reservation:
        data = await self._request(
            "POST", "/reservations", ReservationCreationFailure, json=draft.to_wire(), conflict=True
        )
        try:
            return Reservation.model_validate(data or {})
        except ValidationError as e:
            raise ReservationCreationFailure() from e

    async def update_reservation(self, reservation_id: str, patch: dict[str, Any]) -> Reservation:
        data = await self._request("PATCH", f"/reservations/{reservation_id}", CollaboratorError, json=patch)
        try:
            return Reservation.model_validate(data or {})
        except ValidationError as e:
            raise CollaboratorError("Reservation update response was malformed") from e

    async def cancel_reservation(self, reservation_id: str) -> None:
        await self._request("POST", f"/reservations/{reservation_id}/cancel", CollaboratorError)

    async def update_guest(self, guest_id: str, patch: dict[str, Any]) -> None:
        await self._request("PATCH", f"/guests/{guest_id}", CollaboratorError, json=patch)

    # =========================================================================
    # Payments
    # =========================================================================

    async def create_payment_intent(
        self,
        reservation_id: str,
        guest_email: str,
        amount_cents: int | None = None,
    ) -> PaymentIntent:
        body: dict[str, Any] = {"reservationId": reservation_id, "guestEmail": guest_email}
        if amount_cents is not None:
            body["amountCents"] = amount_cents
        try:
            data = await self._request("POST", "/public/payments/intents", PaymentInitializationFailure, json=body)
        except PaymentInitializationFailure as e:
            e.reservation_id = reservation_id
            raise
        try:
            return PaymentIntent.model_validate(data or {})
        except ValidationError as e:
            raise PaymentInitializationFailure(reservation_id=reservation_id) from e

    async def confirm_payment_intent(self, intent_id: str, reservation_id: str) -> None:
        await self._request(
            "POST",
            f"/public/payments/intents/{intent_id}/confirm",
            ReconciliationFailure,
            json={"reservationId": reservation_id},
        )

    async def report_abandoned_cart(
        self,
        scope: str,
        contact: dict[str, str | None],
        timestamp: datetime,
    ) -> None:
        body: dict[str, Any] = {"campgroundId": scope, "abandonedAt": timestamp.isoformat()}
        body.update({k: v for k, v in contact.items() if v})
        await self._request("POST", "/public/reservations/abandon", CollaboratorError, json=body)
