"""
Boundary encoding shared by the HTTP surface and the store client.

Timestamps cross the wire as integer nanoseconds since the Unix epoch and
booking statuses as single-tag mappings such as ``{"Accepted": None}``.
Nothing outside this module sees either form.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from servicehub.errors import ValidationError
from servicehub.models import (
    AvailableSlot,
    Booking,
    BookingStatus,
    BookingStatusChange,
    DayAvailability,
    DayOfWeek,
    Evidence,
    Location,
    Profile,
    ProviderAvailability,
    Service,
    ServiceStatus,
    TimeSlot,
    VacationPeriod,
)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def to_ns(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    delta = value - EPOCH
    return (delta.days * 86400 + delta.seconds) * 10**9 + delta.microseconds * 1000


def from_ns(value: int) -> datetime:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"Expected integer nanoseconds, got {value!r}")
    try:
        return EPOCH + timedelta(microseconds=value // 1000)
    except (OverflowError, ValueError) as exc:
        raise ValidationError(f"Timestamp {value} out of range") from exc


def optional_to_ns(value: Optional[datetime]) -> Optional[int]:
    return None if value is None else to_ns(value)


def optional_from_ns(value: Optional[int]) -> Optional[datetime]:
    return None if value is None else from_ns(value)


def date_to_ns(value: date) -> int:
    return to_ns(datetime.combine(value, time(0, 0), tzinfo=timezone.utc))


def ns_to_date(value: int) -> date:
    return from_ns(value).date()


def encode_status(status: BookingStatus) -> Dict[str, None]:
    return {BookingStatus(status).value: None}


def decode_status(value: Mapping[str, Any]) -> BookingStatus:
    if not isinstance(value, Mapping) or len(value) != 1:
        raise ValidationError(f"Expected a single-tag status, got {value!r}")
    (tag,) = value.keys()
    try:
        return BookingStatus(tag)
    except ValueError as exc:
        raise ValidationError(f"Unknown booking status: {tag}") from exc


def encode_location(location: Location) -> Dict[str, Any]:
    return location.model_dump()


def decode_location(payload: Optional[Mapping[str, Any]]) -> Location:
    return Location.model_validate(payload or {})


def encode_evidence(evidence: Evidence) -> Dict[str, Any]:
    return {
        "id": evidence.id,
        "booking_id": evidence.booking_id,
        "submitter_id": evidence.submitter_id,
        "description": evidence.description,
        "file_urls": list(evidence.file_urls),
        "quality_score": evidence.quality_score,
        "created_at": to_ns(evidence.created_at),
    }


def decode_evidence(payload: Mapping[str, Any]) -> Evidence:
    return Evidence(
        id=payload["id"],
        booking_id=payload["booking_id"],
        submitter_id=payload["submitter_id"],
        description=payload["description"],
        file_urls=list(payload.get("file_urls") or []),
        quality_score=payload.get("quality_score"),
        created_at=from_ns(payload["created_at"]),
    )


def encode_booking(booking: Booking) -> Dict[str, Any]:
    return {
        "id": booking.id,
        "client_id": booking.client_id,
        "provider_id": booking.provider_id,
        "service_id": booking.service_id,
        "status": encode_status(booking.status),
        "requested_date": to_ns(booking.requested_date),
        "scheduled_date": optional_to_ns(booking.scheduled_date),
        "completed_date": optional_to_ns(booking.completed_date),
        "price": booking.price,
        "location": encode_location(booking.location),
        "evidence": encode_evidence(booking.evidence) if booking.evidence else None,
        "created_at": to_ns(booking.created_at),
        "updated_at": to_ns(booking.updated_at),
    }


def decode_booking(payload: Mapping[str, Any]) -> Booking:
    try:
        return Booking(
            id=payload["id"],
            client_id=payload["client_id"],
            provider_id=payload["provider_id"],
            service_id=payload["service_id"],
            status=decode_status(payload["status"]),
            requested_date=from_ns(payload["requested_date"]),
            scheduled_date=optional_from_ns(payload.get("scheduled_date")),
            completed_date=optional_from_ns(payload.get("completed_date")),
            price=payload["price"],
            location=decode_location(payload.get("location")),
            evidence=decode_evidence(payload["evidence"]) if payload.get("evidence") else None,
            created_at=from_ns(payload["created_at"]),
            updated_at=from_ns(payload["updated_at"]),
        )
    except KeyError as exc:
        raise ValidationError(f"Booking payload is missing {exc.args[0]}") from exc
    except (PydanticValidationError, TypeError) as exc:
        raise ValidationError(f"Malformed booking payload: {exc}") from exc


def encode_weekly_schedule(schedule: Mapping[DayOfWeek, DayAvailability]) -> Dict[str, Any]:
    return {DayOfWeek(day).value: availability.model_dump() for day, availability in schedule.items()}


def decode_weekly_schedule(payload: Mapping[str, Any]) -> Dict[DayOfWeek, DayAvailability]:
    return {DayOfWeek(day): DayAvailability.model_validate(value) for day, value in payload.items()}


def encode_vacation(vacation: VacationPeriod) -> Dict[str, Any]:
    return {
        "id": vacation.id,
        "start": to_ns(vacation.start),
        "end": to_ns(vacation.end),
        "reason": vacation.reason,
        "created_at": to_ns(vacation.created_at),
    }


def decode_vacation(payload: Mapping[str, Any]) -> VacationPeriod:
    return VacationPeriod(
        id=payload["id"],
        start=from_ns(payload["start"]),
        end=from_ns(payload["end"]),
        reason=payload.get("reason"),
        created_at=from_ns(payload["created_at"]),
    )


def encode_availability(availability: ProviderAvailability) -> Dict[str, Any]:
    return {
        "provider_id": availability.provider_id,
        "is_active": availability.is_active,
        "instant_booking_enabled": availability.instant_booking_enabled,
        "booking_notice_hours": availability.booking_notice_hours,
        "max_bookings_per_day": availability.max_bookings_per_day,
        "weekly_schedule": encode_weekly_schedule(availability.weekly_schedule),
        "vacation_dates": [encode_vacation(v) for v in availability.vacation_dates],
        "created_at": to_ns(availability.created_at),
        "updated_at": to_ns(availability.updated_at),
    }


def decode_availability(payload: Mapping[str, Any]) -> ProviderAvailability:
    return ProviderAvailability(
        provider_id=payload["provider_id"],
        is_active=payload.get("is_active", True),
        instant_booking_enabled=payload.get("instant_booking_enabled", False),
        booking_notice_hours=payload.get("booking_notice_hours", 0),
        max_bookings_per_day=payload.get("max_bookings_per_day", 1),
        weekly_schedule=decode_weekly_schedule(payload.get("weekly_schedule") or {}),
        vacation_dates=[decode_vacation(v) for v in payload.get("vacation_dates") or []],
        created_at=from_ns(payload["created_at"]),
        updated_at=from_ns(payload["updated_at"]),
    )


def encode_slot(slot: AvailableSlot) -> Dict[str, Any]:
    return {
        "date": date_to_ns(slot.date),
        "time_slot": slot.time_slot.model_dump(),
        "is_available": slot.is_available,
        "conflicting_bookings": list(slot.conflicting_bookings),
        "reason": slot.reason,
    }


def decode_slot(payload: Mapping[str, Any]) -> AvailableSlot:
    return AvailableSlot(
        date=ns_to_date(payload["date"]),
        time_slot=TimeSlot.model_validate(payload["time_slot"]),
        is_available=payload["is_available"],
        conflicting_bookings=list(payload.get("conflicting_bookings") or []),
        reason=payload.get("reason"),
    )


def encode_service(service: Service) -> Dict[str, Any]:
    return {
        "id": service.id,
        "provider_id": service.provider_id,
        "title": service.title,
        "category": service.category,
        "price": service.price,
        "location": encode_location(service.location),
        "status": service.status.value,
        "rating": service.rating,
        "review_count": service.review_count,
        "weekly_schedule": (
            encode_weekly_schedule(service.weekly_schedule) if service.weekly_schedule is not None else None
        ),
        "instant_booking_enabled": service.instant_booking_enabled,
        "booking_notice_hours": service.booking_notice_hours,
        "max_bookings_per_day": service.max_bookings_per_day,
        "created_at": to_ns(service.created_at),
        "updated_at": to_ns(service.updated_at),
    }


def decode_service(payload: Mapping[str, Any]) -> Service:
    schedule = payload.get("weekly_schedule")
    return Service(
        id=payload["id"],
        provider_id=payload["provider_id"],
        title=payload["title"],
        category=payload["category"],
        price=payload["price"],
        location=decode_location(payload.get("location")),
        status=ServiceStatus(payload.get("status", ServiceStatus.AVAILABLE.value)),
        rating=payload.get("rating"),
        review_count=payload.get("review_count", 0),
        weekly_schedule=decode_weekly_schedule(schedule) if schedule is not None else None,
        instant_booking_enabled=payload.get("instant_booking_enabled"),
        booking_notice_hours=payload.get("booking_notice_hours"),
        max_bookings_per_day=payload.get("max_bookings_per_day"),
        created_at=from_ns(payload["created_at"]),
        updated_at=from_ns(payload["updated_at"]),
    )


def encode_profile(profile: Profile) -> Dict[str, Any]:
    return profile.model_dump()


def decode_profile(payload: Mapping[str, Any]) -> Profile:
    return Profile.model_validate(payload)


def encode_status_change(change: BookingStatusChange) -> Dict[str, Any]:
    return {
        "id": change.id,
        "booking_id": change.booking_id,
        "actor_user_id": change.actor_user_id,
        "from_status": encode_status(change.from_status) if change.from_status else None,
        "to_status": encode_status(change.to_status),
        "note": change.note,
        "created_at": to_ns(change.created_at),
    }
