import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from servicehub.clients import presentation
from servicehub.models import Booking, BookingStatus, Location

UTC = timezone.utc
NOW = datetime(2026, 3, 4, 12, 0, tzinfo=UTC)  # a Wednesday


def _booking(status, price=10000, created_at=NOW, completed_date=None, scheduled_date=None):
    return Booking(
        id=f"b_{status.value}_{price}",
        client_id="client",
        provider_id="prov",
        service_id="svc",
        status=status,
        requested_date=NOW,
        scheduled_date=scheduled_date,
        completed_date=completed_date,
        price=price,
        created_at=created_at,
        updated_at=created_at,
    )


def test_location_formatting():
    assert presentation.format_location(None) == "Location not specified"
    assert presentation.format_location(Location(address="1 Crown St", city="Surry Hills", country="AU")) == "1 Crown St, Surry Hills, AU"
    assert presentation.format_location(Location(latitude=-33.88889, longitude=151.21111)) == "-33.8889°, 151.2111°"
    assert presentation.format_location(Location(country="Australia")) == "Australia"
    assert presentation.format_location(Location()) == "Location not available"


@pytest.mark.parametrize(
    "offset,expected",
    [
        (timedelta(0), "Today"),
        (timedelta(days=1), "Tomorrow"),
        (timedelta(days=-1), "Yesterday"),
        (timedelta(days=3), "In 3 days"),
        (timedelta(days=-5), "5 days ago"),
        (timedelta(days=20), "Mar 24"),
        (timedelta(days=400), "Apr 8, 2027"),
    ],
)
def test_booking_date_labels(offset, expected):
    assert presentation.format_booking_date(NOW + offset, NOW) == expected


def test_booking_time_and_missing_dates():
    assert presentation.format_booking_time(datetime(2026, 3, 4, 14, 5, tzinfo=UTC)) == "2:05 PM"
    assert presentation.format_booking_time(datetime(2026, 3, 4, 0, 30, tzinfo=UTC)) == "12:30 AM"
    assert presentation.format_booking_date(None, NOW) == "TBD"
    assert presentation.format_booking_time(None) == "TBD"


def test_time_until_service():
    assert presentation.time_until_service(None, NOW) == "Not scheduled"
    assert presentation.time_until_service(NOW - timedelta(minutes=1), NOW) == "Overdue"
    assert presentation.time_until_service(NOW + timedelta(days=2, hours=5), NOW) == "2 days"
    assert presentation.time_until_service(NOW + timedelta(hours=1, minutes=10), NOW) == "1 hour"
    assert presentation.time_until_service(NOW + timedelta(minutes=45), NOW) == "45 minutes"


def test_overdue_only_for_accepted():
    past = NOW - timedelta(hours=2)
    assert presentation.is_overdue(_booking(BookingStatus.ACCEPTED, scheduled_date=past), NOW)
    assert not presentation.is_overdue(_booking(BookingStatus.IN_PROGRESS, scheduled_date=past), NOW)
    assert not presentation.is_overdue(_booking(BookingStatus.ACCEPTED, scheduled_date=NOW + timedelta(hours=1)), NOW)


def test_status_labels_cover_every_status():
    assert {presentation.status_label(s) for s in BookingStatus} == set(presentation.STATUS_LABELS.values())
    assert presentation.status_label(BookingStatus.ACCEPTED) == "Confirmed"


def test_analytics():
    last_month = datetime(2026, 2, 20, 9, 0, tzinfo=UTC)
    bookings = [
        _booking(BookingStatus.REQUESTED, price=5000),
        _booking(BookingStatus.ACCEPTED, price=8000),
        _booking(BookingStatus.IN_PROGRESS, price=7000),
        _booking(BookingStatus.DECLINED, price=3000),
        _booking(BookingStatus.CANCELLED, price=1000),
        _booking(BookingStatus.COMPLETED, price=10000, completed_date=NOW),
        _booking(BookingStatus.COMPLETED, price=6000, created_at=last_month, completed_date=last_month),
    ]

    analytics = presentation.calculate_analytics(bookings, NOW)

    assert analytics.total_bookings == 7
    assert analytics.pending_requests == 1
    assert analytics.completed_bookings == 2
    assert analytics.total_revenue == 16000
    assert analytics.expected_revenue == 15000
    assert analytics.average_booking_value == pytest.approx(40000 / 7)
    # 4 said yes (accepted, in progress, 2 completed) out of 6 decided or waiting.
    assert analytics.acceptance_rate == pytest.approx(4 / 6 * 100)
    assert analytics.completion_rate == pytest.approx(50.0)
    assert analytics.bookings_this_week == 6
    assert analytics.bookings_this_month == 6
    assert analytics.revenue_this_week == 10000
    assert analytics.revenue_this_month == 10000


def test_analytics_of_nothing():
    analytics = presentation.calculate_analytics([], NOW)
    assert analytics.total_bookings == 0
    assert analytics.acceptance_rate == 0.0
    assert analytics.completion_rate == 0.0
