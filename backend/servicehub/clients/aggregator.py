"""
Booking Aggregator: the consumer-facing view over one user's bookings.

Local state only changes after the store confirms a call. Every remote call
goes through the access layer under a label such as ``accept-b_1234`` so
callers can ask whether that specific operation is still running.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional, Set

from servicehub.clients import presentation
from servicehub.clients.access_layer import ResilientAccessLayer
from servicehub.clients.interfaces import BookingStoreClient, ProfileStoreClient
from servicehub.errors import NotFoundError, ServiceHubError, ValidationError
from servicehub.models import (
    Booking,
    BookingStatus,
    EnrichedBooking,
    Location,
    Profile,
    ProviderBookingAnalytics,
    utc_now,
)
from servicehub.services.state_machine import Actor, check_transition

logger = logging.getLogger(__name__)


class BookingAggregator:
    def __init__(
        self,
        booking_store: BookingStoreClient,
        profile_store: ProfileStoreClient,
        *,
        viewer_id: str,
        viewer_role: Actor,
        access_layer: Optional[ResilientAccessLayer] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.booking_store = booking_store
        self.profile_store = profile_store
        self.viewer_id = viewer_id
        self.viewer_role = Actor(viewer_role)
        self.access = access_layer or ResilientAccessLayer()
        self.clock = clock
        self.error: Optional[str] = None
        self._bookings: List[EnrichedBooking] = []
        # Counterparts the profile store reported as missing; kept until refresh.
        self._missing_profiles: Set[str] = set()

    @property
    def bookings(self) -> List[EnrichedBooking]:
        return list(self._bookings)

    def clear_error(self) -> None:
        self.error = None

    def _record_error(self, action: str, exc: Exception) -> None:
        self.error = f"Failed to {action}: {exc}"
        logger.error("Booking aggregator for %s could not %s: %s", self.viewer_id, action, exc)

    def is_operation_in_progress(self, label: str) -> bool:
        return self.access.is_operation_in_progress(label)

    # Loading

    async def load_bookings(self) -> List[EnrichedBooking]:
        lookup = (
            self.booking_store.get_client_bookings
            if self.viewer_role == Actor.CLIENT
            else self.booking_store.get_provider_bookings
        )
        try:
            rows = await self.access.execute_with_retry(lambda: lookup(self.viewer_id), "load-bookings")
        except ServiceHubError as exc:
            self._record_error("load bookings", exc)
            raise
        if rows is None:
            return self.bookings

        enriched = [await self.enrich(row) for row in rows]
        if not self.access.liveness.alive:
            return self.bookings
        self._bookings = enriched
        return self.bookings

    async def refresh_bookings(self) -> List[EnrichedBooking]:
        self.access.clear_cache()
        self._missing_profiles.clear()
        return await self.load_bookings()

    # Enrichment

    def _counterpart_id(self, booking: Booking) -> str:
        return booking.provider_id if self.viewer_role == Actor.CLIENT else booking.client_id

    async def _load_profile(self, profile_id: str) -> Optional[Profile]:
        async def fetch() -> Optional[Profile]:
            return await self.access.execute_with_retry(
                lambda: self.profile_store.get_profile(profile_id),
                f"profile-{profile_id}",
            )

        if profile_id in self._missing_profiles:
            return None
        try:
            profile = await self.access.get_cached(f"profile:{profile_id}", fetch)
        except ServiceHubError as exc:
            logger.warning("Profile %s unavailable for enrichment: %s", profile_id, exc)
            return None
        if profile is None and self.access.liveness.alive:
            self._missing_profiles.add(profile_id)
        return profile

    async def enrich(self, booking: Booking) -> EnrichedBooking:
        now = self.clock()
        profile = await self._load_profile(self._counterpart_id(booking))
        fallback_name = "Unknown Provider" if self.viewer_role == Actor.CLIENT else "Unknown Client"
        when = booking.scheduled_date or booking.requested_date

        base = booking.model_dump(include=set(Booking.model_fields))
        return EnrichedBooking(
            **base,
            counterpart_profile=profile,
            counterpart_name=profile.name if profile else fallback_name,
            formatted_location=presentation.format_location(booking.location),
            display_date=presentation.format_booking_date(when, now),
            display_time=presentation.format_booking_time(when),
            time_until_service=(
                presentation.time_until_service(booking.scheduled_date, now) if booking.scheduled_date else None
            ),
            is_overdue=presentation.is_overdue(booking, now),
            is_profile_loaded=profile is not None,
        )

    # Queries over the cached list

    def bookings_by_status(self, status: BookingStatus) -> List[EnrichedBooking]:
        return [b for b in self._bookings if b.status == status]

    def booking_count(self, status: Optional[BookingStatus] = None) -> int:
        if status is None:
            return len(self._bookings)
        return len(self.bookings_by_status(status))

    def pending_bookings(self) -> List[EnrichedBooking]:
        return self.bookings_by_status(BookingStatus.REQUESTED)

    def upcoming_bookings(self) -> List[EnrichedBooking]:
        return [b for b in self.bookings_by_status(BookingStatus.ACCEPTED) if not b.is_overdue]

    def active_bookings(self) -> List[EnrichedBooking]:
        return self.bookings_by_status(BookingStatus.IN_PROGRESS)

    def completed_bookings(self) -> List[EnrichedBooking]:
        return self.bookings_by_status(BookingStatus.COMPLETED)

    def todays_bookings(self) -> List[EnrichedBooking]:
        today = self.clock().date()
        return [b for b in self._bookings if b.scheduled_date and b.scheduled_date.date() == today]

    def overdue_bookings(self) -> List[EnrichedBooking]:
        return [b for b in self._bookings if b.is_overdue]

    def calculate_analytics(self) -> ProviderBookingAnalytics:
        return presentation.calculate_analytics(self._bookings, self.clock())

    # Mutations

    def _find(self, booking_id: str) -> Optional[EnrichedBooking]:
        for booking in self._bookings:
            if booking.id == booking_id:
                return booking
        return None

    def _replace(self, booking: EnrichedBooking) -> None:
        self._bookings = [booking if b.id == booking.id else b for b in self._bookings]

    async def _mutate(self, action: str, booking_id: str, target: Optional[BookingStatus], call) -> Optional[EnrichedBooking]:
        label = f"{action}-{booking_id}"
        try:
            current = self._find(booking_id)
            if current is not None and target is not None:
                check_transition(current.status, target, self.viewer_role)
            updated = await self.access.execute_with_retry(call, label)
        except ServiceHubError as exc:
            self._record_error(f"{action} booking {booking_id}", exc)
            raise
        if updated is None:
            return None

        enriched = await self.enrich(updated)
        if not self.access.liveness.alive:
            return None
        self._replace(enriched)
        return enriched

    async def create_booking(
        self,
        service_id: str,
        provider_id: str,
        price: int,
        location: Location,
        requested_date: datetime,
    ) -> Optional[EnrichedBooking]:
        try:
            created = await self.access.execute_with_retry(
                lambda: self.booking_store.create_booking(service_id, provider_id, price, location, requested_date),
                f"create-{service_id}",
            )
        except ServiceHubError as exc:
            self._record_error(f"create booking for service {service_id}", exc)
            raise
        if created is None:
            return None

        enriched = await self.enrich(created)
        if not self.access.liveness.alive:
            return None
        self._bookings = [enriched, *[b for b in self._bookings if b.id != enriched.id]]
        return enriched

    async def accept_booking(
        self,
        booking_id: str,
        scheduled_date: Optional[datetime] = None,
    ) -> Optional[EnrichedBooking]:
        if scheduled_date is None:
            current = self._find(booking_id)
            if current is None:
                exc = NotFoundError(f"Booking {booking_id} is not loaded; pass a scheduled date")
                self._record_error(f"accept booking {booking_id}", exc)
                raise exc
            scheduled_date = current.requested_date
        return await self._mutate(
            "accept",
            booking_id,
            BookingStatus.ACCEPTED,
            lambda: self.booking_store.accept_booking(booking_id, scheduled_date),
        )

    async def decline_booking(self, booking_id: str) -> Optional[EnrichedBooking]:
        return await self._mutate(
            "decline", booking_id, BookingStatus.DECLINED, lambda: self.booking_store.decline_booking(booking_id)
        )

    async def cancel_booking(self, booking_id: str) -> Optional[EnrichedBooking]:
        return await self._mutate(
            "cancel", booking_id, BookingStatus.CANCELLED, lambda: self.booking_store.cancel_booking(booking_id)
        )

    async def start_booking(self, booking_id: str) -> Optional[EnrichedBooking]:
        return await self._mutate(
            "start", booking_id, BookingStatus.IN_PROGRESS, lambda: self.booking_store.start_booking(booking_id)
        )

    async def complete_booking(self, booking_id: str) -> Optional[EnrichedBooking]:
        return await self._mutate(
            "complete", booking_id, BookingStatus.COMPLETED, lambda: self.booking_store.complete_booking(booking_id)
        )

    async def dispute_booking(
        self,
        booking_id: str,
        description: str,
        file_urls: Optional[List[str]] = None,
    ) -> Optional[EnrichedBooking]:
        if not description.strip():
            exc = ValidationError("A dispute needs a description")
            self._record_error(f"dispute booking {booking_id}", exc)
            raise exc
        return await self._mutate(
            "dispute",
            booking_id,
            BookingStatus.DISPUTED,
            lambda: self.booking_store.dispute_booking(booking_id, description, list(file_urls or [])),
        )

    async def submit_evidence(
        self,
        booking_id: str,
        description: str,
        file_urls: Optional[List[str]] = None,
    ) -> Optional[EnrichedBooking]:
        current = self._find(booking_id)
        if current is not None and current.status != BookingStatus.DISPUTED:
            exc = ValidationError("Evidence can only be submitted for a disputed booking")
            self._record_error(f"submit evidence for booking {booking_id}", exc)
            raise exc
        return await self._mutate(
            "evidence",
            booking_id,
            None,
            lambda: self.booking_store.submit_evidence(booking_id, description, list(file_urls or [])),
        )

    async def update_booking_status(
        self,
        booking_id: str,
        status: BookingStatus,
        *,
        scheduled_date: Optional[datetime] = None,
        description: str = "",
        file_urls: Optional[List[str]] = None,
    ) -> Optional[EnrichedBooking]:
        status = BookingStatus(status)
        if status == BookingStatus.ACCEPTED:
            return await self.accept_booking(booking_id, scheduled_date)
        if status == BookingStatus.DECLINED:
            return await self.decline_booking(booking_id)
        if status == BookingStatus.CANCELLED:
            return await self.cancel_booking(booking_id)
        if status == BookingStatus.IN_PROGRESS:
            return await self.start_booking(booking_id)
        if status == BookingStatus.COMPLETED:
            return await self.complete_booking(booking_id)
        if status == BookingStatus.DISPUTED:
            return await self.dispute_booking(booking_id, description, file_urls)
        exc = ValidationError(f"Bookings cannot be moved to {status.value}")
        self._record_error(f"update booking {booking_id}", exc)
        raise exc
