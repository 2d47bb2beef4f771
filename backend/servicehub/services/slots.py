"""
Slot generation for a provider on a single date.

Slots are derived on every query and never stored. A slot is unavailable for
the first matching reason, in this order:

    same_day     instant booking is off and the date is today
    notice       the slot starts before now + booking_notice_hours
    daily_limit  active bookings on the date already reach the daily cap
    booked       an active booking falls inside the slot window

conflicting_bookings is filled whenever bookings block the slot, even when an
earlier reason wins.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from servicehub.errors import ConflictError
from servicehub.models import (
    AvailableSlot,
    Booking,
    DayAvailability,
    DayOfWeek,
    ProviderAvailability,
    Service,
    TimeSlot,
    VacationPeriod,
    as_utc,
    utc_now,
)
from servicehub.services.availability import is_on_vacation, parse_slot_time
from servicehub.services.state_machine import ACTIVE_STATUSES


@dataclass(frozen=True)
class BookingPolicy:
    provider_id: str
    is_active: bool
    instant_booking_enabled: bool
    booking_notice_hours: int
    max_bookings_per_day: int
    weekly_schedule: Dict[DayOfWeek, DayAvailability] = field(default_factory=dict)
    vacations: Tuple[VacationPeriod, ...] = ()


def resolve_policy(availability: ProviderAvailability, service: Optional[Service] = None) -> BookingPolicy:
    """Service-level settings win over the provider's wherever they are set."""

    def pick(name: str):
        override = getattr(service, name, None) if service is not None else None
        return override if override is not None else getattr(availability, name)

    return BookingPolicy(
        provider_id=availability.provider_id,
        is_active=availability.is_active,
        instant_booking_enabled=pick("instant_booking_enabled"),
        booking_notice_hours=pick("booking_notice_hours"),
        max_bookings_per_day=pick("max_bookings_per_day"),
        weekly_schedule=dict(pick("weekly_schedule")),
        vacations=tuple(availability.vacation_dates),
    )


def booking_time(booking: Booking) -> datetime:
    return as_utc(booking.scheduled_date or booking.requested_date)


def _active_bookings_on(
    bookings: Iterable[Booking],
    target_date: date,
    ignore_booking_id: Optional[str],
) -> List[Booking]:
    return [
        b
        for b in bookings
        if b.id != ignore_booking_id and b.status in ACTIVE_STATUSES and booking_time(b).date() == target_date
    ]


def _day_closed_reason(policy: BookingPolicy, target_date: date) -> Optional[str]:
    if not policy.is_active:
        return "provider is not accepting bookings"
    day = policy.weekly_schedule.get(DayOfWeek.for_date(target_date))
    if day is None or not day.is_available:
        return f"provider does not work on {DayOfWeek.for_date(target_date).value}"
    if is_on_vacation(policy.vacations, target_date):
        return "provider is on vacation"
    return None


def generate_slots(
    policy: BookingPolicy,
    target_date: date,
    bookings: Iterable[Booking],
    now: Optional[datetime] = None,
    ignore_booking_id: Optional[str] = None,
) -> List[AvailableSlot]:
    if _day_closed_reason(policy, target_date):
        return []

    now = as_utc(now or utc_now())
    day = policy.weekly_schedule[DayOfWeek.for_date(target_date)]
    active = _active_bookings_on(bookings, target_date, ignore_booking_id)
    at_daily_limit = len(active) >= policy.max_bookings_per_day
    same_day = not policy.instant_booking_enabled and target_date == now.date()
    notice_cutoff = now + timedelta(hours=policy.booking_notice_hours)

    windows = []
    for index, slot in enumerate(day.slots):
        start = parse_slot_time(slot.start, field="slot start")
        end = parse_slot_time(slot.end, field="slot end")
        windows.append((start, index, end, slot))
    windows.sort(key=lambda item: (item[0], item[1]))

    result: List[AvailableSlot] = []
    for start, _, end, slot in windows:
        start_at = datetime.combine(target_date, start, tzinfo=timezone.utc)
        end_at = datetime.combine(target_date, end, tzinfo=timezone.utc)
        overlapping = [b.id for b in active if start_at <= booking_time(b) < end_at]

        if same_day:
            reason = "same_day"
        elif start_at < notice_cutoff:
            reason = "notice"
        elif at_daily_limit:
            reason = "daily_limit"
        elif overlapping:
            reason = "booked"
        else:
            reason = None

        result.append(
            AvailableSlot(
                date=target_date,
                time_slot=TimeSlot(start=slot.start, end=slot.end),
                is_available=reason is None,
                conflicting_bookings=[b.id for b in active] if at_daily_limit else overlapping,
                reason=reason,
            )
        )
    return result


def find_slot(slots: Iterable[AvailableSlot], at: datetime) -> Optional[AvailableSlot]:
    at = as_utc(at)
    moment: time = at.time().replace(tzinfo=None)
    for slot in slots:
        if slot.date != at.date():
            continue
        start = parse_slot_time(slot.time_slot.start)
        end = parse_slot_time(slot.time_slot.end)
        if start <= moment < end:
            return slot
    return None


def check_requested_time(
    policy: BookingPolicy,
    at: datetime,
    bookings: Iterable[Booking],
    now: Optional[datetime] = None,
    ignore_booking_id: Optional[str] = None,
) -> AvailableSlot:
    """Return the open slot containing ``at`` or raise ConflictError."""
    at = as_utc(at)
    closed = _day_closed_reason(policy, at.date())
    if closed:
        raise ConflictError(f"Requested time is unavailable: {closed}")

    slots = generate_slots(policy, at.date(), bookings, now=now, ignore_booking_id=ignore_booking_id)
    slot = find_slot(slots, at)
    if slot is None:
        raise ConflictError(f"Requested time {at.strftime('%Y-%m-%d %H:%M')} is outside the provider's schedule")
    if not slot.is_available:
        raise ConflictError(
            f"Slot {slot.time_slot.start}-{slot.time_slot.end} on {slot.date.isoformat()} is unavailable ({slot.reason})"
        )
    return slot


def is_available_at(
    policy: BookingPolicy,
    at: datetime,
    bookings: Iterable[Booking],
    now: Optional[datetime] = None,
) -> bool:
    try:
        check_requested_time(policy, at, bookings, now=now)
    except ConflictError:
        return False
    return True
