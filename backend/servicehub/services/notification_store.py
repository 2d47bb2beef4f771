import logging
from datetime import datetime, timezone
from threading import Lock
from typing import List, Optional
from uuid import uuid4

from servicehub.models import Booking, BookingStatus, NotificationRecord
from servicehub.services.state_machine import Actor

logger = logging.getLogger(__name__)

_STATUS_MESSAGES = {
    BookingStatus.ACCEPTED: ("Booking accepted", "Your booking {id} was accepted."),
    BookingStatus.DECLINED: ("Booking declined", "Your booking {id} was declined."),
    BookingStatus.CANCELLED: ("Booking cancelled", "Booking {id} was cancelled by the client."),
    BookingStatus.IN_PROGRESS: ("Service started", "Work on booking {id} has started."),
    BookingStatus.COMPLETED: ("Service completed", "Booking {id} is complete."),
    BookingStatus.DISPUTED: ("Booking disputed", "Booking {id} was disputed and is under review."),
}


class NotificationStore:
    def __init__(self):
        self._lock = Lock()
        self._notifications: List[NotificationRecord] = []

    def create(
        self,
        user_id: str,
        title: str,
        body: str,
        category: str = "system",
        deep_link: Optional[str] = None,
    ) -> NotificationRecord:
        record = NotificationRecord(
            id=f"ntf_{uuid4().hex[:10]}",
            user_id=user_id,
            title=title,
            body=body,
            category=category,  # type: ignore[arg-type]
            read=False,
            created_at=datetime.now(timezone.utc).isoformat(),
            deep_link=deep_link,
        )
        with self._lock:
            self._notifications.insert(0, record)
        return record

    def on_booking_transition(self, booking: Booking, previous: BookingStatus, actor: Actor) -> None:
        """Tell the party that did not act about the new status."""
        recipient = booking.provider_id if actor == Actor.CLIENT else booking.client_id
        title, body = _STATUS_MESSAGES.get(
            booking.status,
            ("Booking updated", "Booking {id} is now " + booking.status.value + "."),
        )
        self.create(
            user_id=recipient,
            title=title,
            body=body.format(id=booking.id),
            category="booking",
            deep_link=f"booking:{booking.id}",
        )
        logger.debug("Notified %s of booking %s (%s -> %s)", recipient, booking.id, previous.value, booking.status.value)

    def list_for_user(self, user_id: str, unread_only: bool = False) -> List[NotificationRecord]:
        with self._lock:
            rows = [n for n in self._notifications if n.user_id == user_id]
            if unread_only:
                rows = [n for n in rows if not n.read]
            return rows[:100]

    def mark_read(self, user_id: str, notification_id: str) -> Optional[NotificationRecord]:
        with self._lock:
            for idx, row in enumerate(self._notifications):
                if row.id == notification_id and row.user_id == user_id:
                    updated = row.model_copy(update={"read": True})
                    self._notifications[idx] = updated
                    return updated
        return None
