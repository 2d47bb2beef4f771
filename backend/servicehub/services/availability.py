"""
Provider availability: weekly schedule, vacations and booking policy.

A schedule is only ever replaced as a whole; vacations are appended or removed
one at a time. Every function returns a new ProviderAvailability and leaves its
input untouched, so a failed validation never leaves partial state behind.
"""

from datetime import date, datetime, time
from typing import Iterable, List, Mapping, Optional, Union
from uuid import uuid4

from servicehub.errors import NotFoundError, ValidationError
from servicehub.models import DayAvailability, DayOfWeek, ProviderAvailability, TimeSlot, VacationPeriod, as_utc, utc_now


def parse_slot_time(value: str, *, field: str = "time") -> time:
    try:
        parsed = time.fromisoformat(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid {field} {value!r}; expected HH:MM") from exc
    return parsed.replace(second=0, microsecond=0)


def _normalize_day(day: Union[DayOfWeek, str]) -> DayOfWeek:
    if isinstance(day, DayOfWeek):
        return day
    try:
        return DayOfWeek(str(day).strip().title())
    except ValueError as exc:
        raise ValidationError(f"Unknown day of week: {day}") from exc


def validate_day_slots(day: DayOfWeek, slots: Iterable[TimeSlot]) -> List[TimeSlot]:
    windows = []
    for index, slot in enumerate(slots):
        start = parse_slot_time(slot.start, field=f"{day.value} slot start")
        end = parse_slot_time(slot.end, field=f"{day.value} slot end")
        if end <= start:
            raise ValidationError(f"{day.value} slot {slot.start}-{slot.end} must end after it starts")
        windows.append((start, end, index, slot))

    ordered = sorted(windows, key=lambda item: (item[0], item[2]))
    for previous, current in zip(ordered, ordered[1:]):
        # Touching windows (09:00-12:00, 12:00-15:00) are fine.
        if current[0] < previous[1]:
            raise ValidationError(
                f"{day.value} slots {previous[3].start}-{previous[3].end} and "
                f"{current[3].start}-{current[3].end} overlap"
            )
    return [TimeSlot(start=slot.start, end=slot.end) for _, _, _, slot in windows]


def validate_weekly_schedule(
    weekly_schedule: Mapping[Union[DayOfWeek, str], DayAvailability],
) -> dict[DayOfWeek, DayAvailability]:
    normalized: dict[DayOfWeek, DayAvailability] = {}
    for raw_day, availability in weekly_schedule.items():
        day = _normalize_day(raw_day)
        if day in normalized:
            raise ValidationError(f"{day.value} is listed more than once")
        normalized[day] = DayAvailability(
            is_available=availability.is_available,
            slots=validate_day_slots(day, availability.slots),
        )
    for day in DayOfWeek:
        normalized.setdefault(day, DayAvailability(is_available=False, slots=[]))
    return {day: normalized[day] for day in DayOfWeek}


def build_availability(
    provider_id: str,
    weekly_schedule: Mapping[Union[DayOfWeek, str], DayAvailability],
    instant_booking_enabled: bool,
    booking_notice_hours: int,
    max_bookings_per_day: int,
    existing: Optional[ProviderAvailability] = None,
    now: Optional[datetime] = None,
) -> ProviderAvailability:
    if booking_notice_hours < 0:
        raise ValidationError("booking_notice_hours must be zero or greater")
    if max_bookings_per_day < 1:
        raise ValidationError("max_bookings_per_day must be at least 1")
    schedule = validate_weekly_schedule(weekly_schedule)

    now = now or utc_now()
    return ProviderAvailability(
        provider_id=provider_id,
        is_active=existing.is_active if existing else True,
        instant_booking_enabled=instant_booking_enabled,
        booking_notice_hours=booking_notice_hours,
        max_bookings_per_day=max_bookings_per_day,
        weekly_schedule=schedule,
        vacation_dates=list(existing.vacation_dates) if existing else [],
        created_at=existing.created_at if existing else now,
        updated_at=now,
    )


def add_vacation(
    availability: ProviderAvailability,
    start: datetime,
    end: datetime,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ProviderAvailability:
    start, end = as_utc(start), as_utc(end)
    if end <= start:
        raise ValidationError("Vacation end must be after its start")
    now = as_utc(now) or utc_now()
    vacation = VacationPeriod(
        id=f"vac_{uuid4().hex[:10]}",
        start=start,
        end=end,
        reason=(reason or "").strip() or None,
        created_at=now,
    )
    return availability.model_copy(
        update={"vacation_dates": [*availability.vacation_dates, vacation], "updated_at": now}
    )


def remove_vacation(
    availability: ProviderAvailability,
    vacation_id: str,
    now: Optional[datetime] = None,
) -> ProviderAvailability:
    remaining = [v for v in availability.vacation_dates if v.id != vacation_id]
    if len(remaining) == len(availability.vacation_dates):
        raise NotFoundError("Vacation not found")
    return availability.model_copy(update={"vacation_dates": remaining, "updated_at": as_utc(now) or utc_now()})


def is_on_vacation(vacations: Iterable[VacationPeriod], target_date: date) -> bool:
    return any(v.start.date() <= target_date <= v.end.date() for v in vacations)
