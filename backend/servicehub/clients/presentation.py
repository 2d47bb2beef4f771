from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from servicehub.models import Booking, BookingStatus, Location, ProviderBookingAnalytics

STATUS_LABELS = {
    BookingStatus.REQUESTED: "Pending",
    BookingStatus.ACCEPTED: "Confirmed",
    BookingStatus.DECLINED: "Declined",
    BookingStatus.CANCELLED: "Cancelled",
    BookingStatus.IN_PROGRESS: "In Progress",
    BookingStatus.COMPLETED: "Completed",
    BookingStatus.DISPUTED: "Disputed",
}


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def status_label(status: BookingStatus) -> str:
    return STATUS_LABELS[BookingStatus(status)]


def format_location(location: Optional[Location]) -> str:
    """Structured address first, then coordinates, then the bare country."""
    if location is None:
        return "Location not specified"
    if location.address:
        parts = [location.address, location.city, location.state, location.country]
        return ", ".join(part for part in parts if part)
    if location.latitude and location.longitude:
        return f"{location.latitude:.4f}°, {location.longitude:.4f}°"
    if location.country:
        return location.country
    return "Location not available"


def format_booking_date(value: Optional[datetime], now: datetime) -> str:
    if value is None:
        return "TBD"
    value = _utc(value)
    days = (value.date() - _utc(now).date()).days
    if days == 0:
        return "Today"
    if days == 1:
        return "Tomorrow"
    if days == -1:
        return "Yesterday"
    if 1 < days <= 7:
        return f"In {days} days"
    if -7 <= days < -1:
        return f"{abs(days)} days ago"
    if value.year == _utc(now).year:
        return f"{value.strftime('%b')} {value.day}"
    return f"{value.strftime('%b')} {value.day}, {value.year}"


def format_booking_time(value: Optional[datetime]) -> str:
    if value is None:
        return "TBD"
    value = _utc(value)
    hour = value.hour % 12 or 12
    return f"{hour}:{value.minute:02d} {'AM' if value.hour < 12 else 'PM'}"


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'s' if count != 1 else ''}"


def time_until_service(scheduled: Optional[datetime], now: datetime) -> str:
    if scheduled is None:
        return "Not scheduled"
    remaining = _utc(scheduled) - _utc(now)
    if remaining < timedelta(0):
        return "Overdue"
    minutes = int(remaining.total_seconds() // 60)
    hours, days = minutes // 60, minutes // (60 * 24)
    if days > 0:
        return _plural(days, "day")
    if hours > 0:
        return _plural(hours, "hour")
    return _plural(minutes, "minute")


def is_overdue(booking: Booking, now: datetime) -> bool:
    return (
        booking.status == BookingStatus.ACCEPTED
        and booking.scheduled_date is not None
        and _utc(booking.scheduled_date) < _utc(now)
    )


def calculate_analytics(bookings: Iterable[Booking], now: datetime) -> ProviderBookingAnalytics:
    """
    Summarize a provider's bookings.

    Weeks start on Monday (UTC). Revenue counts completed bookings at their
    booked price; expected revenue counts accepted and in-progress ones.
    """
    rows = list(bookings)
    now = _utc(now)
    week_start = datetime.combine(now.date() - timedelta(days=now.weekday()), datetime.min.time(), tzinfo=timezone.utc)
    month_start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)

    def count(status: BookingStatus) -> int:
        return sum(1 for b in rows if b.status == status)

    completed = [b for b in rows if b.status == BookingStatus.COMPLETED]
    pending = count(BookingStatus.REQUESTED)
    accepted = count(BookingStatus.ACCEPTED)
    in_progress = count(BookingStatus.IN_PROGRESS)
    declined = count(BookingStatus.DECLINED)

    # Everything the provider said yes to, whatever happened afterwards.
    said_yes = accepted + in_progress + len(completed)
    decided_or_waiting = said_yes + declined + pending

    def completed_since(start: datetime) -> int:
        return sum(b.price for b in completed if b.completed_date and _utc(b.completed_date) >= start)

    return ProviderBookingAnalytics(
        total_bookings=len(rows),
        pending_requests=pending,
        accepted_bookings=accepted,
        completed_bookings=len(completed),
        cancelled_bookings=count(BookingStatus.CANCELLED),
        disputed_bookings=count(BookingStatus.DISPUTED),
        total_revenue=sum(b.price for b in completed),
        expected_revenue=sum(
            b.price for b in rows if b.status in (BookingStatus.ACCEPTED, BookingStatus.IN_PROGRESS)
        ),
        average_booking_value=(sum(b.price for b in rows) / len(rows)) if rows else 0.0,
        acceptance_rate=(said_yes / decided_or_waiting * 100) if decided_or_waiting else 0.0,
        completion_rate=(len(completed) / said_yes * 100) if said_yes else 0.0,
        bookings_this_week=sum(1 for b in rows if _utc(b.created_at) >= week_start),
        bookings_this_month=sum(1 for b in rows if _utc(b.created_at) >= month_start),
        revenue_this_week=completed_since(week_start),
        revenue_this_month=completed_since(month_start),
    )
