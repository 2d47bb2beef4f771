import logging
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional

from servicehub.errors import AuthorizationError, InvalidTransitionError, ValidationError
from servicehub.models import Booking, BookingStatus, Evidence, as_utc, utc_now

logger = logging.getLogger(__name__)


class Actor(str, Enum):
    CLIENT = "client"
    PROVIDER = "provider"


_CLIENT = frozenset({Actor.CLIENT})
_PROVIDER = frozenset({Actor.PROVIDER})
_EITHER = frozenset({Actor.CLIENT, Actor.PROVIDER})

TRANSITIONS: Dict[BookingStatus, Dict[BookingStatus, FrozenSet[Actor]]] = {
    BookingStatus.REQUESTED: {
        BookingStatus.ACCEPTED: _PROVIDER,
        BookingStatus.DECLINED: _PROVIDER,
        BookingStatus.CANCELLED: _CLIENT,
    },
    BookingStatus.ACCEPTED: {
        BookingStatus.CANCELLED: _CLIENT,
        BookingStatus.IN_PROGRESS: _PROVIDER,
        BookingStatus.DISPUTED: _EITHER,
    },
    BookingStatus.IN_PROGRESS: {
        BookingStatus.COMPLETED: _PROVIDER,
        BookingStatus.DISPUTED: _EITHER,
    },
    BookingStatus.COMPLETED: {
        BookingStatus.DISPUTED: _EITHER,
    },
}

# Bookings in these states hold a slot and count toward the daily cap.
ACTIVE_STATUSES = frozenset({BookingStatus.REQUESTED, BookingStatus.ACCEPTED, BookingStatus.IN_PROGRESS})

TERMINAL_STATUSES = frozenset(
    status for status in BookingStatus if status not in TRANSITIONS
)

TransitionListener = Callable[[Booking, BookingStatus, Actor], None]


def allowed_targets(status: BookingStatus) -> List[BookingStatus]:
    return list(TRANSITIONS.get(status, {}))


def can_transition(current: BookingStatus, target: BookingStatus, actor: Optional[Actor] = None) -> bool:
    actors = TRANSITIONS.get(current, {}).get(target)
    if actors is None:
        return False
    return actor is None or actor in actors


def check_transition(current: BookingStatus, target: BookingStatus, actor: Actor) -> None:
    actors = TRANSITIONS.get(current, {}).get(target)
    if actors is None:
        raise InvalidTransitionError(f"Invalid status transition: {current.value} -> {target.value}")
    if actor not in actors:
        allowed = " or ".join(sorted(a.value for a in actors))
        raise AuthorizationError(f"Only the {allowed} can move a booking to {target.value}")


def is_valid_path(statuses: Iterable[BookingStatus]) -> bool:
    """True when the sequence starts at Requested and only follows known edges."""
    sequence = list(statuses)
    if not sequence or sequence[0] != BookingStatus.REQUESTED:
        return False
    return all(can_transition(current, target) for current, target in zip(sequence, sequence[1:]))


def apply_transition(
    booking: Booking,
    target: BookingStatus,
    actor: Actor,
    *,
    now: Optional[datetime] = None,
    scheduled_date: Optional[datetime] = None,
    evidence: Optional[Evidence] = None,
) -> Booking:
    check_transition(booking.status, target, actor)
    now = as_utc(now) or utc_now()

    update: Dict[str, object] = {"status": target, "updated_at": now}
    if target == BookingStatus.ACCEPTED:
        if scheduled_date is None:
            raise ValidationError("A scheduled date is required to accept a booking")
        update["scheduled_date"] = as_utc(scheduled_date)
    elif target == BookingStatus.COMPLETED:
        update["completed_date"] = now
    elif target == BookingStatus.DISPUTED:
        if evidence is None:
            raise ValidationError("Evidence is required to dispute a booking")
        update["evidence"] = evidence
    return booking.model_copy(update=update)


class BookingStateMachine:
    """Applies transitions and fans each success out to registered listeners."""

    def __init__(self) -> None:
        self._listeners: List[TransitionListener] = []

    def add_listener(self, listener: TransitionListener) -> None:
        self._listeners.append(listener)

    def transition(
        self,
        booking: Booking,
        target: BookingStatus,
        actor: Actor,
        *,
        now: Optional[datetime] = None,
        scheduled_date: Optional[datetime] = None,
        evidence: Optional[Evidence] = None,
    ) -> Booking:
        return apply_transition(
            booking,
            target,
            actor,
            now=now,
            scheduled_date=scheduled_date,
            evidence=evidence,
        )

    def notify(self, booking: Booking, previous: BookingStatus, actor: Actor) -> None:
        for listener in list(self._listeners):
            try:
                listener(booking, previous, actor)
            except Exception:
                logger.exception("Transition listener failed for booking %s (%s -> %s)", booking.id, previous.value, booking.status.value)
