import logging
import os
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional

import httpx

from servicehub.clients import codec
from servicehub.errors import (
    ERRORS_BY_CODE,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ServiceHubError,
    TransientError,
    ValidationError,
)
from servicehub.models import (
    AvailableSlot,
    Booking,
    BookingStatus,
    DayAvailability,
    Location,
    Profile,
    ProviderAvailability,
)

logger = logging.getLogger(__name__)

STORE_BASE_URL = os.getenv("STORE_BASE_URL", "http://localhost:8000")


def _env_float(name: str, default: float) -> float:
    try:
        value = float(os.getenv(name, str(default)))
    except ValueError:
        return default
    return value if value > 0 else default


STORE_TIMEOUT_SECONDS = _env_float("STORE_TIMEOUT_SECONDS", 10.0)

_RETRYABLE_STATUS_CODES = {502, 503, 504}
_ERRORS_BY_STATUS = {
    400: ValidationError,
    401: AuthorizationError,
    403: AuthorizationError,
    404: NotFoundError,
    409: ConflictError,
    422: ValidationError,
}


def _error_from_response(response: httpx.Response) -> ServiceHubError:
    code = None
    message = f"Store request failed with HTTP {response.status_code}"
    try:
        payload = response.json()
    except ValueError:
        payload = None
    detail = payload.get("detail") if isinstance(payload, dict) else None
    if isinstance(detail, dict):
        code = detail.get("code")
        message = detail.get("message") or message
    elif isinstance(detail, str):
        message = detail

    error_cls = ERRORS_BY_CODE.get(code) or _ERRORS_BY_STATUS.get(response.status_code, ServiceHubError)
    return error_cls(message)


class HttpStoreClient:
    """Talks to the booking store over HTTP as a single acting user."""

    def __init__(
        self,
        actor_id: str,
        base_url: str = STORE_BASE_URL,
        token: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = STORE_TIMEOUT_SECONDS,
    ):
        self.actor_id = actor_id
        self.token = token
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpStoreClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        try:
            response = await self._client.request(method, path, json=json, params=params, headers=headers)
        except httpx.TransportError as exc:
            logger.warning("Store request %s %s failed: %s", method, path, exc)
            raise TransientError(f"Store unreachable: {exc}") from exc

        if response.status_code in _RETRYABLE_STATUS_CODES:
            raise TransientError(f"Store temporarily unavailable (HTTP {response.status_code})")
        if response.status_code >= 400:
            raise _error_from_response(response)
        return response.json()

    def _actor(self, **extra: Any) -> Dict[str, Any]:
        return {"actor_user_id": self.actor_id, **extra}

    # Bookings

    async def create_booking(
        self,
        service_id: str,
        provider_id: str,
        price: int,
        location: Location,
        requested_date: datetime,
    ) -> Booking:
        payload = self._actor(
            service_id=service_id,
            provider_id=provider_id,
            price=price,
            location=codec.encode_location(location),
            requested_date=codec.to_ns(requested_date),
        )
        return codec.decode_booking(await self._request("POST", "/bookings", json=payload))

    async def get_booking(self, booking_id: str) -> Booking:
        return codec.decode_booking(await self._request("GET", f"/bookings/{booking_id}"))

    async def get_client_bookings(self, client_id: str) -> List[Booking]:
        rows = await self._request("GET", f"/bookings/client/{client_id}")
        return [codec.decode_booking(row) for row in rows]

    async def get_provider_bookings(self, provider_id: str) -> List[Booking]:
        rows = await self._request("GET", f"/bookings/provider/{provider_id}")
        return [codec.decode_booking(row) for row in rows]

    async def get_bookings_by_status(self, status: BookingStatus) -> List[Booking]:
        payload = self._actor(status=codec.encode_status(status))
        rows = await self._request("POST", "/bookings/by-status", json=payload)
        return [codec.decode_booking(row) for row in rows]

    async def _transition(self, booking_id: str, action: str, **extra: Any) -> Booking:
        payload = self._actor(**extra)
        return codec.decode_booking(await self._request("POST", f"/bookings/{booking_id}/{action}", json=payload))

    async def accept_booking(self, booking_id: str, scheduled_date: datetime) -> Booking:
        return await self._transition(booking_id, "accept", scheduled_date=codec.to_ns(scheduled_date))

    async def decline_booking(self, booking_id: str) -> Booking:
        return await self._transition(booking_id, "decline")

    async def cancel_booking(self, booking_id: str) -> Booking:
        return await self._transition(booking_id, "cancel")

    async def start_booking(self, booking_id: str) -> Booking:
        return await self._transition(booking_id, "start")

    async def complete_booking(self, booking_id: str) -> Booking:
        return await self._transition(booking_id, "complete")

    async def dispute_booking(self, booking_id: str, description: str, file_urls: List[str]) -> Booking:
        return await self._transition(booking_id, "dispute", description=description, file_urls=list(file_urls))

    async def submit_evidence(self, booking_id: str, description: str, file_urls: List[str]) -> Booking:
        return await self._transition(booking_id, "evidence", description=description, file_urls=list(file_urls))

    # Availability, always for the acting provider when writing

    async def set_availability(
        self,
        weekly_schedule: Mapping[str, DayAvailability],
        instant_booking_enabled: bool,
        booking_notice_hours: int,
        max_bookings_per_day: int,
    ) -> ProviderAvailability:
        payload = self._actor(
            weekly_schedule={str(getattr(day, "value", day)): value.model_dump() for day, value in weekly_schedule.items()},
            instant_booking_enabled=instant_booking_enabled,
            booking_notice_hours=booking_notice_hours,
            max_bookings_per_day=max_bookings_per_day,
        )
        return codec.decode_availability(await self._request("PUT", f"/availability/{self.actor_id}", json=payload))

    async def get_availability(self, provider_id: str) -> ProviderAvailability:
        return codec.decode_availability(await self._request("GET", f"/availability/{provider_id}"))

    async def add_vacation(self, start: datetime, end: datetime, reason: Optional[str] = None) -> ProviderAvailability:
        payload = self._actor(start=codec.to_ns(start), end=codec.to_ns(end), reason=reason)
        data = await self._request("POST", f"/availability/{self.actor_id}/vacations", json=payload)
        return codec.decode_availability(data)

    async def remove_vacation(self, vacation_id: str) -> ProviderAvailability:
        data = await self._request(
            "DELETE",
            f"/availability/{self.actor_id}/vacations/{vacation_id}",
            params={"actor_user_id": self.actor_id},
        )
        return codec.decode_availability(data)

    async def get_available_slots(self, provider_id: str, slot_date: date) -> List[AvailableSlot]:
        rows = await self._request(
            "GET",
            f"/availability/{provider_id}/slots",
            params={"date": codec.date_to_ns(slot_date)},
        )
        return [codec.decode_slot(row) for row in rows]

    async def is_provider_available(self, provider_id: str, at: datetime) -> bool:
        data = await self._request("GET", f"/availability/{provider_id}/check", params={"at": codec.to_ns(at)})
        return bool(data.get("available"))

    # Profiles

    async def get_profile(self, profile_id: str) -> Optional[Profile]:
        try:
            return codec.decode_profile(await self._request("GET", f"/profiles/{profile_id}"))
        except NotFoundError:
            return None
