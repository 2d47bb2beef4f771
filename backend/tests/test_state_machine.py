import logging
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from servicehub.errors import AuthorizationError, InvalidTransitionError, ValidationError
from servicehub.models import Booking, BookingStatus, Evidence
from servicehub.services.state_machine import (
    TRANSITIONS,
    Actor,
    BookingStateMachine,
    apply_transition,
    can_transition,
    check_transition,
    is_valid_path,
)

UTC = timezone.utc
CREATED = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
S = BookingStatus


def _booking(status=S.REQUESTED, **extra):
    return Booking(
        id="b_1",
        client_id="client",
        provider_id="prov",
        service_id="svc",
        status=status,
        requested_date=datetime(2026, 3, 3, 10, 0, tzinfo=UTC),
        price=7000,
        created_at=CREATED,
        updated_at=CREATED,
        **extra,
    )


@pytest.mark.parametrize(
    "path,valid",
    [
        ([S.REQUESTED, S.ACCEPTED, S.IN_PROGRESS, S.COMPLETED], True),
        ([S.REQUESTED, S.ACCEPTED, S.IN_PROGRESS, S.COMPLETED, S.DISPUTED], True),
        ([S.REQUESTED, S.CANCELLED], True),
        ([S.REQUESTED, S.ACCEPTED, S.CANCELLED], True),
        ([S.REQUESTED, S.DECLINED], True),
        ([S.REQUESTED, S.ACCEPTED, S.COMPLETED], False),
        ([S.REQUESTED, S.ACCEPTED, S.IN_PROGRESS, S.CANCELLED], False),
        ([S.REQUESTED, S.ACCEPTED, S.IN_PROGRESS, S.COMPLETED, S.CANCELLED], False),
        ([S.ACCEPTED, S.IN_PROGRESS], False),
        ([], False),
    ],
)
def test_realized_paths(path, valid):
    assert is_valid_path(path) is valid


def test_unknown_edges_raise_invalid_transition_naming_both_states():
    for current in BookingStatus:
        for target in BookingStatus:
            if target in TRANSITIONS.get(current, {}):
                continue
            with pytest.raises(InvalidTransitionError) as excinfo:
                check_transition(current, target, Actor.PROVIDER)
            assert current.value in str(excinfo.value)
            assert target.value in str(excinfo.value)


def test_edge_guard_runs_before_actor_guard():
    with pytest.raises(InvalidTransitionError):
        check_transition(S.IN_PROGRESS, S.CANCELLED, Actor.PROVIDER)
    with pytest.raises(AuthorizationError):
        check_transition(S.REQUESTED, S.CANCELLED, Actor.PROVIDER)
    with pytest.raises(AuthorizationError):
        check_transition(S.REQUESTED, S.ACCEPTED, Actor.CLIENT)


def test_actor_rules():
    assert can_transition(S.REQUESTED, S.ACCEPTED, Actor.PROVIDER)
    assert can_transition(S.ACCEPTED, S.CANCELLED, Actor.CLIENT)
    assert not can_transition(S.ACCEPTED, S.IN_PROGRESS, Actor.CLIENT)
    assert can_transition(S.COMPLETED, S.DISPUTED, Actor.CLIENT)
    assert can_transition(S.COMPLETED, S.DISPUTED, Actor.PROVIDER)
    assert can_transition(S.IN_PROGRESS, S.COMPLETED)


def test_accept_requires_schedule_and_sets_it():
    now = CREATED + timedelta(hours=1)
    with pytest.raises(ValidationError):
        apply_transition(_booking(), S.ACCEPTED, Actor.PROVIDER, now=now)

    scheduled = datetime(2026, 3, 3, 11, 0, tzinfo=UTC)
    accepted = apply_transition(_booking(), S.ACCEPTED, Actor.PROVIDER, now=now, scheduled_date=scheduled)
    assert accepted.status == S.ACCEPTED
    assert accepted.scheduled_date == scheduled
    assert accepted.updated_at == now
    assert accepted.created_at == CREATED


def test_complete_sets_completed_date():
    now = datetime(2026, 3, 3, 12, 0, tzinfo=UTC)
    done = apply_transition(_booking(S.IN_PROGRESS), S.COMPLETED, Actor.PROVIDER, now=now)
    assert done.completed_date == now
    assert done.updated_at == now


def test_dispute_attaches_evidence_and_keeps_dates():
    completed_at = datetime(2026, 3, 3, 12, 0, tzinfo=UTC)
    booking = _booking(S.COMPLETED, completed_date=completed_at, scheduled_date=completed_at)
    evidence = Evidence(id="ev_1", booking_id="b_1", submitter_id="client", description="Stains left behind")
    now = completed_at + timedelta(days=1)

    with pytest.raises(ValidationError):
        apply_transition(booking, S.DISPUTED, Actor.CLIENT, now=now)

    disputed = apply_transition(booking, S.DISPUTED, Actor.CLIENT, now=now, evidence=evidence)
    assert disputed.evidence == evidence
    assert disputed.completed_date == completed_at
    assert disputed.scheduled_date == completed_at
    assert disputed.requested_date == booking.requested_date
    assert booking.status == S.COMPLETED


def test_listener_failure_is_logged_and_others_still_run(caplog):
    machine = BookingStateMachine()
    seen = []

    def broken(booking, previous, actor):
        raise RuntimeError("mailer down")

    machine.add_listener(broken)
    machine.add_listener(lambda booking, previous, actor: seen.append((booking.status, previous, actor)))

    booking = machine.transition(_booking(), S.CANCELLED, Actor.CLIENT, now=CREATED)
    with caplog.at_level(logging.ERROR):
        machine.notify(booking, S.REQUESTED, Actor.CLIENT)

    assert seen == [(S.CANCELLED, S.REQUESTED, Actor.CLIENT)]
    assert "Transition listener failed" in caplog.text


def test_naive_times_are_stored_as_utc():
    accepted = apply_transition(_booking(), S.ACCEPTED, Actor.PROVIDER, now=datetime(2026, 3, 2, 9, 0), scheduled_date=datetime(2026, 3, 3, 10, 0))

    assert accepted.scheduled_date.tzinfo == UTC
    assert accepted.updated_at == datetime(2026, 3, 2, 9, 0, tzinfo=UTC)
