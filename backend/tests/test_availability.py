import os
import sys
from datetime import date, datetime, timezone

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from servicehub.errors import NotFoundError, ValidationError
from servicehub.models import DayAvailability, DayOfWeek, TimeSlot
from servicehub.services.availability import (
    add_vacation,
    build_availability,
    is_on_vacation,
    remove_vacation,
    validate_weekly_schedule,
)

NOW = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


def _day(*windows):
    return DayAvailability(is_available=True, slots=[TimeSlot(start=s, end=e) for s, e in windows])


def test_touching_slots_are_accepted_and_missing_days_closed():
    schedule = validate_weekly_schedule({"Monday": _day(("09:00", "12:00"), ("12:00", "15:00"))})
    assert list(schedule) == list(DayOfWeek)
    assert len(schedule[DayOfWeek.MONDAY].slots) == 2
    assert schedule[DayOfWeek.SUNDAY].is_available is False


@pytest.mark.parametrize(
    "windows",
    [
        [("09:00", "12:00"), ("11:30", "14:00")],
        [("13:00", "17:00"), ("09:00", "13:30")],
        [("09:00", "17:00"), ("10:00", "11:00")],
    ],
)
def test_overlapping_slots_rejected(windows):
    with pytest.raises(ValidationError, match="overlap"):
        build_availability("prov", {"Tuesday": _day(*windows)}, False, 0, 1, now=NOW)


def test_slot_must_end_after_start():
    with pytest.raises(ValidationError, match="end after"):
        validate_weekly_schedule({"Monday": _day(("10:00", "10:00"))})


def test_bad_time_and_unknown_day_rejected():
    with pytest.raises(ValidationError, match="HH:MM"):
        validate_weekly_schedule({"Monday": _day(("9am", "10:00"))})
    with pytest.raises(ValidationError, match="Unknown day"):
        validate_weekly_schedule({"Funday": _day(("09:00", "10:00"))})


def test_policy_bounds():
    with pytest.raises(ValidationError):
        build_availability("prov", {}, False, -1, 1, now=NOW)
    with pytest.raises(ValidationError):
        build_availability("prov", {}, False, 0, 0, now=NOW)


def test_replacement_keeps_vacations_and_created_at():
    first = build_availability("prov", {"Monday": _day(("09:00", "17:00"))}, False, 24, 2, now=NOW)
    with_vacation = add_vacation(
        first,
        datetime(2026, 3, 10, tzinfo=timezone.utc),
        datetime(2026, 3, 12, tzinfo=timezone.utc),
        reason="  ",
        now=NOW,
    )
    later = datetime(2026, 3, 5, tzinfo=timezone.utc)
    replaced = build_availability("prov", {"Friday": _day(("10:00", "11:00"))}, True, 0, 3, existing=with_vacation, now=later)

    assert replaced.created_at == NOW
    assert replaced.updated_at == later
    assert replaced.vacation_dates == with_vacation.vacation_dates
    assert with_vacation.vacation_dates[0].reason is None
    assert replaced.weekly_schedule[DayOfWeek.MONDAY].is_available is False
    assert first.vacation_dates == []


def test_vacation_requires_end_after_start():
    availability = build_availability("prov", {}, False, 0, 1, now=NOW)
    moment = datetime(2026, 3, 10, tzinfo=timezone.utc)
    with pytest.raises(ValidationError):
        add_vacation(availability, moment, moment)


def test_remove_vacation():
    availability = build_availability("prov", {}, False, 0, 1, now=NOW)
    availability = add_vacation(
        availability,
        datetime(2026, 3, 10, tzinfo=timezone.utc),
        datetime(2026, 3, 11, tzinfo=timezone.utc),
    )
    vacation_id = availability.vacation_dates[0].id

    assert remove_vacation(availability, vacation_id).vacation_dates == []
    with pytest.raises(NotFoundError):
        remove_vacation(availability, "vac_missing")


def test_vacation_dates_inclusive_and_overlaps_union():
    availability = build_availability("prov", {}, False, 0, 1, now=NOW)
    availability = add_vacation(
        availability,
        datetime(2026, 3, 3, 10, 0, tzinfo=timezone.utc),
        datetime(2026, 3, 5, 9, 0, tzinfo=timezone.utc),
    )
    availability = add_vacation(
        availability,
        datetime(2026, 3, 4, tzinfo=timezone.utc),
        datetime(2026, 3, 8, tzinfo=timezone.utc),
    )
    vacations = availability.vacation_dates

    assert not is_on_vacation(vacations, date(2026, 3, 2))
    assert is_on_vacation(vacations, date(2026, 3, 3))
    assert is_on_vacation(vacations, date(2026, 3, 5))
    assert is_on_vacation(vacations, date(2026, 3, 8))
    assert not is_on_vacation(vacations, date(2026, 3, 9))
