from datetime import date, datetime
from typing import List, Mapping, Optional, Protocol

from servicehub.models import (
    AvailableSlot,
    Booking,
    BookingStatus,
    DayAvailability,
    Location,
    Profile,
    ProviderAvailability,
)


class BookingStoreClient(Protocol):
    """Remote booking operations, performed as the client's own user."""

    async def create_booking(
        self,
        service_id: str,
        provider_id: str,
        price: int,
        location: Location,
        requested_date: datetime,
    ) -> Booking:
        ...

    async def get_booking(self, booking_id: str) -> Booking:
        ...

    async def get_client_bookings(self, client_id: str) -> List[Booking]:
        ...

    async def get_provider_bookings(self, provider_id: str) -> List[Booking]:
        ...

    async def get_bookings_by_status(self, status: BookingStatus) -> List[Booking]:
        ...

    async def accept_booking(self, booking_id: str, scheduled_date: datetime) -> Booking:
        ...

    async def decline_booking(self, booking_id: str) -> Booking:
        ...

    async def cancel_booking(self, booking_id: str) -> Booking:
        ...

    async def start_booking(self, booking_id: str) -> Booking:
        ...

    async def complete_booking(self, booking_id: str) -> Booking:
        ...

    async def dispute_booking(self, booking_id: str, description: str, file_urls: List[str]) -> Booking:
        ...

    async def submit_evidence(self, booking_id: str, description: str, file_urls: List[str]) -> Booking:
        ...


class AvailabilityStoreClient(Protocol):
    async def set_availability(
        self,
        weekly_schedule: Mapping[str, DayAvailability],
        instant_booking_enabled: bool,
        booking_notice_hours: int,
        max_bookings_per_day: int,
    ) -> ProviderAvailability:
        ...

    async def get_availability(self, provider_id: str) -> ProviderAvailability:
        ...

    async def add_vacation(self, start: datetime, end: datetime, reason: Optional[str] = None) -> ProviderAvailability:
        ...

    async def remove_vacation(self, vacation_id: str) -> ProviderAvailability:
        ...

    async def get_available_slots(self, provider_id: str, slot_date: date) -> List[AvailableSlot]:
        ...

    async def is_provider_available(self, provider_id: str, at: datetime) -> bool:
        ...


class ProfileStoreClient(Protocol):
    """Display-only profile lookups; never consulted for authorization."""

    async def get_profile(self, profile_id: str) -> Optional[Profile]:
        ...

