import logging
import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from threading import Lock
from typing import Callable, Iterator, List, Mapping, Optional, Union
from uuid import uuid4

from servicehub.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    TransientError,
    ValidationError,
)
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
    as_utc,
    utc_now,
)
from servicehub.services import availability as availability_model
from servicehub.services.slots import check_requested_time, generate_slots, is_available_at, resolve_policy
from servicehub.services.state_machine import Actor, BookingStateMachine, TransitionListener, check_transition

logger = logging.getLogger(__name__)

WeeklyScheduleInput = Mapping[Union[DayOfWeek, str], DayAvailability]


@dataclass
class BookingStore:
    """sqlite-backed store; the authority for slot checks and status transitions."""

    db_path: str
    clock: Callable[[], datetime] = utc_now
    busy_timeout: float = 5.0
    state_machine: BookingStateMachine = field(default_factory=BookingStateMachine)

    def __post_init__(self) -> None:
        self._lock = Lock()
        path = Path(self.db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = str(path)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=self.busy_timeout)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                with self._connect() as conn:
                    yield conn
            except sqlite3.OperationalError as exc:
                message = str(exc).lower()
                if "locked" in message or "busy" in message:
                    logger.warning("Booking store busy: %s", exc)
                    raise TransientError("Booking store is busy, retry shortly") from exc
                raise

    def _init_db(self) -> None:
        with self._session() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS profiles (
                    id TEXT PRIMARY KEY,
                    payload_json TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS provider_availability (
                    provider_id TEXT PRIMARY KEY,
                    payload_json TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS services (
                    id TEXT PRIMARY KEY,
                    provider_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    payload_json TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS bookings (
                    id TEXT PRIMARY KEY,
                    client_id TEXT NOT NULL,
                    provider_id TEXT NOT NULL,
                    service_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    payload_json TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS booking_status_history (
                    id TEXT PRIMARY KEY,
                    booking_id TEXT NOT NULL,
                    actor_user_id TEXT NOT NULL,
                    from_status TEXT NOT NULL,
                    to_status TEXT NOT NULL,
                    note TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_bookings_provider ON bookings(provider_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_bookings_client ON bookings(client_id)")
            conn.commit()

    def add_transition_listener(self, listener: TransitionListener) -> None:
        self.state_machine.add_listener(listener)

    # Profiles

    def upsert_profile(
        self,
        profile_id: str,
        name: str,
        picture_url: Optional[str] = None,
        phone: Optional[str] = None,
        is_verified: bool = False,
    ) -> Profile:
        if not name.strip():
            raise ValidationError("Profile name is required")
        profile = Profile(
            id=profile_id,
            name=name.strip(),
            picture_url=picture_url,
            phone=phone,
            is_verified=is_verified,
        )
        with self._session() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO profiles (id, payload_json) VALUES (?, ?)",
                (profile.id, profile.model_dump_json()),
            )
            conn.commit()
        return profile

    def get_profile(self, profile_id: str) -> Profile:
        with self._session() as conn:
            row = conn.execute("SELECT payload_json FROM profiles WHERE id = ?", (profile_id,)).fetchone()
        if not row:
            raise NotFoundError("Profile not found")
        return Profile.model_validate_json(row["payload_json"])

    # Services

    def create_service(
        self,
        provider_id: str,
        title: str,
        category: str,
        price: int,
        location: Optional[Location] = None,
        weekly_schedule: Optional[WeeklyScheduleInput] = None,
        instant_booking_enabled: Optional[bool] = None,
        booking_notice_hours: Optional[int] = None,
        max_bookings_per_day: Optional[int] = None,
    ) -> Service:
        if not title.strip():
            raise ValidationError("Service title is required")
        if not category.strip():
            raise ValidationError("Service category is required")
        if price < 0:
            raise ValidationError("Service price must be zero or greater")
        if booking_notice_hours is not None and booking_notice_hours < 0:
            raise ValidationError("booking_notice_hours must be zero or greater")
        if max_bookings_per_day is not None and max_bookings_per_day < 1:
            raise ValidationError("max_bookings_per_day must be at least 1")

        now = self.clock()
        service = Service(
            id=f"svc_{uuid4().hex[:8]}",
            provider_id=provider_id,
            title=title.strip(),
            category=category.strip(),
            price=price,
            location=location or Location(),
            status=ServiceStatus.AVAILABLE,
            weekly_schedule=(
                availability_model.validate_weekly_schedule(weekly_schedule) if weekly_schedule is not None else None
            ),
            instant_booking_enabled=instant_booking_enabled,
            booking_notice_hours=booking_notice_hours,
            max_bookings_per_day=max_bookings_per_day,
            created_at=now,
            updated_at=now,
        )
        with self._session() as conn:
            conn.execute(
                "INSERT INTO services (id, provider_id, status, payload_json) VALUES (?, ?, ?, ?)",
                (service.id, service.provider_id, service.status.value, service.model_dump_json()),
            )
            conn.commit()
        return service

    def _load_service(self, conn: sqlite3.Connection, service_id: str) -> Service:
        row = conn.execute("SELECT payload_json FROM services WHERE id = ?", (service_id,)).fetchone()
        if not row:
            raise NotFoundError("Service not found")
        return Service.model_validate_json(row["payload_json"])

    def get_service(self, service_id: str) -> Service:
        with self._session() as conn:
            return self._load_service(conn, service_id)

    def update_service_status(self, service_id: str, actor_user_id: str, status: ServiceStatus) -> Service:
        with self._session() as conn:
            service = self._load_service(conn, service_id)
            if service.provider_id != actor_user_id:
                raise AuthorizationError("Only the provider can change this service")
            updated = service.model_copy(update={"status": status, "updated_at": as_utc(self.clock())})
            conn.execute(
                "UPDATE services SET status = ?, payload_json = ? WHERE id = ?",
                (updated.status.value, updated.model_dump_json(), service_id),
            )
            conn.commit()
        return updated

    # Availability

    def _load_availability(self, conn: sqlite3.Connection, provider_id: str) -> Optional[ProviderAvailability]:
        row = conn.execute(
            "SELECT payload_json FROM provider_availability WHERE provider_id = ?",
            (provider_id,),
        ).fetchone()
        if not row:
            return None
        return ProviderAvailability.model_validate_json(row["payload_json"])

    def _save_availability(self, conn: sqlite3.Connection, availability: ProviderAvailability) -> None:
        conn.execute(
            """
            INSERT INTO provider_availability (provider_id, payload_json, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(provider_id) DO UPDATE SET payload_json = excluded.payload_json, updated_at = excluded.updated_at
            """,
            (availability.provider_id, availability.model_dump_json(), availability.updated_at.isoformat()),
        )

    def _require_availability(self, conn: sqlite3.Connection, provider_id: str) -> ProviderAvailability:
        current = self._load_availability(conn, provider_id)
        if current is None:
            raise NotFoundError("Provider availability not set")
        return current

    def _assert_own_availability(self, actor_user_id: str, provider_id: str) -> None:
        if actor_user_id != provider_id:
            raise AuthorizationError("Providers can only change their own availability")

    def set_availability(
        self,
        actor_user_id: str,
        provider_id: str,
        weekly_schedule: WeeklyScheduleInput,
        instant_booking_enabled: bool,
        booking_notice_hours: int,
        max_bookings_per_day: int,
    ) -> ProviderAvailability:
        self._assert_own_availability(actor_user_id, provider_id)
        with self._session() as conn:
            existing = self._load_availability(conn, provider_id)
            updated = availability_model.build_availability(
                provider_id=provider_id,
                weekly_schedule=weekly_schedule,
                instant_booking_enabled=instant_booking_enabled,
                booking_notice_hours=booking_notice_hours,
                max_bookings_per_day=max_bookings_per_day,
                existing=existing,
                now=self.clock(),
            )
            self._save_availability(conn, updated)
            conn.commit()
        logger.info("Availability replaced for provider %s", provider_id)
        return updated

    def get_availability(self, provider_id: str) -> ProviderAvailability:
        with self._session() as conn:
            return self._require_availability(conn, provider_id)

    def add_vacation(
        self,
        actor_user_id: str,
        provider_id: str,
        start: datetime,
        end: datetime,
        reason: Optional[str] = None,
    ) -> ProviderAvailability:
        self._assert_own_availability(actor_user_id, provider_id)
        with self._session() as conn:
            current = self._require_availability(conn, provider_id)
            updated = availability_model.add_vacation(current, start, end, reason=reason, now=self.clock())
            self._save_availability(conn, updated)
            conn.commit()
        return updated

    def remove_vacation(self, actor_user_id: str, provider_id: str, vacation_id: str) -> ProviderAvailability:
        self._assert_own_availability(actor_user_id, provider_id)
        with self._session() as conn:
            current = self._require_availability(conn, provider_id)
            updated = availability_model.remove_vacation(current, vacation_id, now=self.clock())
            self._save_availability(conn, updated)
            conn.commit()
        return updated

    def _provider_bookings(self, conn: sqlite3.Connection, provider_id: str) -> List[Booking]:
        rows = conn.execute(
            "SELECT payload_json FROM bookings WHERE provider_id = ? ORDER BY created_at DESC",
            (provider_id,),
        ).fetchall()
        return [Booking.model_validate_json(row["payload_json"]) for row in rows]

    def get_available_slots(
        self,
        provider_id: str,
        slot_date: date,
        service_id: Optional[str] = None,
    ) -> List[AvailableSlot]:
        with self._session() as conn:
            current = self._require_availability(conn, provider_id)
            service = self._load_service(conn, service_id) if service_id else None
            bookings = self._provider_bookings(conn, provider_id)
        return generate_slots(resolve_policy(current, service), slot_date, bookings, now=self.clock())

    def is_provider_available(self, provider_id: str, at: datetime, service_id: Optional[str] = None) -> bool:
        with self._session() as conn:
            current = self._load_availability(conn, provider_id)
            if current is None:
                return False
            service = self._load_service(conn, service_id) if service_id else None
            bookings = self._provider_bookings(conn, provider_id)
        return is_available_at(resolve_policy(current, service), at, bookings, now=self.clock())

    # Bookings

    def _load_booking(self, conn: sqlite3.Connection, booking_id: str) -> Booking:
        row = conn.execute("SELECT payload_json FROM bookings WHERE id = ?", (booking_id,)).fetchone()
        if not row:
            raise NotFoundError("Booking not found")
        return Booking.model_validate_json(row["payload_json"])

    def _record_history(
        self,
        conn: sqlite3.Connection,
        booking_id: str,
        actor_user_id: str,
        from_status: Optional[BookingStatus],
        to_status: BookingStatus,
        note: str,
        created_at: datetime,
    ) -> None:
        conn.execute(
            """
            INSERT INTO booking_status_history (id, booking_id, actor_user_id, from_status, to_status, note, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                f"bsh_{uuid4().hex[:10]}",
                booking_id,
                actor_user_id,
                from_status.value if from_status else "none",
                to_status.value,
                note,
                created_at.isoformat(),
            ),
        )

    def create_booking(
        self,
        client_id: str,
        service_id: str,
        provider_id: str,
        price: int,
        location: Optional[Location],
        requested_date: datetime,
    ) -> Booking:
        if client_id == provider_id:
            raise ValidationError("Providers cannot book their own services")
        if price < 0:
            raise ValidationError("Booking price must be zero or greater")

        now = self.clock()
        with self._session() as conn:
            service = self._load_service(conn, service_id)
            if service.provider_id != provider_id:
                raise ValidationError("Service does not belong to this provider")
            if service.status != ServiceStatus.AVAILABLE:
                raise ConflictError(f"Service is not accepting bookings ({service.status.value})")
            current = self._load_availability(conn, provider_id)
            if current is None:
                raise ConflictError("Provider has not published availability")

            # Re-check at submission time; two requests may still race for one slot.
            check_requested_time(
                resolve_policy(current, service),
                requested_date,
                self._provider_bookings(conn, provider_id),
                now=now,
            )

            booking = Booking(
                id=f"b_{uuid4().hex[:8]}",
                client_id=client_id,
                provider_id=provider_id,
                service_id=service_id,
                status=BookingStatus.REQUESTED,
                requested_date=requested_date,
                price=price,
                location=location or service.location,
                created_at=now,
                updated_at=now,
            )
            conn.execute(
                """
                INSERT INTO bookings (id, client_id, provider_id, service_id, status, payload_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    booking.id,
                    booking.client_id,
                    booking.provider_id,
                    booking.service_id,
                    booking.status.value,
                    booking.model_dump_json(),
                    now.isoformat(),
                ),
            )
            self._record_history(conn, booking.id, client_id, None, booking.status, "booking requested", now)
            conn.commit()

        logger.info("Booking %s requested by %s for service %s", booking.id, client_id, service_id)
        return booking

    def get_booking(self, booking_id: str) -> Booking:
        with self._session() as conn:
            return self._load_booking(conn, booking_id)

    def _list_where(self, clause: str, params: tuple) -> List[Booking]:
        with self._session() as conn:
            rows = conn.execute(
                f"SELECT payload_json FROM bookings WHERE {clause} ORDER BY created_at DESC",
                params,
            ).fetchall()
        return [Booking.model_validate_json(row["payload_json"]) for row in rows]

    def get_client_bookings(self, client_id: str) -> List[Booking]:
        return self._list_where("client_id = ?", (client_id,))

    def get_provider_bookings(self, provider_id: str) -> List[Booking]:
        return self._list_where("provider_id = ?", (provider_id,))

    def get_bookings_by_status(self, status: BookingStatus, user_id: Optional[str] = None) -> List[Booking]:
        if user_id:
            return self._list_where(
                "status = ? AND (client_id = ? OR provider_id = ?)",
                (status.value, user_id, user_id),
            )
        return self._list_where("status = ?", (status.value,))

    def get_status_history(self, booking_id: str) -> List[BookingStatusChange]:
        with self._session() as conn:
            self._load_booking(conn, booking_id)
            rows = conn.execute(
                "SELECT * FROM booking_status_history WHERE booking_id = ? ORDER BY created_at, rowid",
                (booking_id,),
            ).fetchall()
        return [
            BookingStatusChange(
                id=row["id"],
                booking_id=row["booking_id"],
                actor_user_id=row["actor_user_id"],
                from_status=None if row["from_status"] == "none" else BookingStatus(row["from_status"]),
                to_status=BookingStatus(row["to_status"]),
                note=row["note"],
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]

    def _actor_for(self, booking: Booking, actor_user_id: str) -> Actor:
        if actor_user_id == booking.client_id:
            return Actor.CLIENT
        if actor_user_id == booking.provider_id:
            return Actor.PROVIDER
        raise AuthorizationError("Only the client or the provider of a booking can change it")

    def _build_evidence(
        self,
        booking_id: str,
        actor_user_id: str,
        description: Optional[str],
        file_urls: Optional[List[str]],
        now: datetime,
    ) -> Evidence:
        text = (description or "").strip()
        if not text:
            raise ValidationError("Evidence description is required")
        return Evidence(
            id=f"ev_{uuid4().hex[:10]}",
            booking_id=booking_id,
            submitter_id=actor_user_id,
            description=text,
            file_urls=[url.strip() for url in (file_urls or []) if url.strip()],
            created_at=now,
        )

    def _save_booking(self, conn: sqlite3.Connection, booking: Booking) -> None:
        conn.execute(
            "UPDATE bookings SET status = ?, payload_json = ? WHERE id = ?",
            (booking.status.value, booking.model_dump_json(), booking.id),
        )

    def transition(
        self,
        booking_id: str,
        actor_user_id: str,
        target: BookingStatus,
        *,
        scheduled_date: Optional[datetime] = None,
        description: Optional[str] = None,
        file_urls: Optional[List[str]] = None,
    ) -> Booking:
        now = self.clock()
        with self._session() as conn:
            booking = self._load_booking(conn, booking_id)
            actor = self._actor_for(booking, actor_user_id)
            previous = booking.status

            evidence = None
            if target == BookingStatus.ACCEPTED and scheduled_date is not None:
                check_transition(previous, target, actor)
                current = self._load_availability(conn, booking.provider_id)
                if current is None:
                    raise ConflictError("Provider has not published availability")
                service = self._load_service(conn, booking.service_id)
                check_requested_time(
                    resolve_policy(current, service),
                    scheduled_date,
                    self._provider_bookings(conn, booking.provider_id),
                    now=now,
                    ignore_booking_id=booking.id,
                )
            elif target == BookingStatus.DISPUTED:
                check_transition(previous, target, actor)
                evidence = self._build_evidence(booking.id, actor_user_id, description, file_urls, now)

            updated = self.state_machine.transition(
                booking,
                target,
                actor,
                now=now,
                scheduled_date=scheduled_date,
                evidence=evidence,
            )
            self._save_booking(conn, updated)
            self._record_history(
                conn,
                booking.id,
                actor_user_id,
                previous,
                updated.status,
                f"{actor.value} moved booking to {updated.status.value}",
                now,
            )
            conn.commit()

        logger.info("Booking %s: %s -> %s by %s", booking_id, previous.value, updated.status.value, actor.value)
        self.state_machine.notify(updated, previous, actor)
        return updated

    def accept_booking(self, booking_id: str, actor_user_id: str, scheduled_date: datetime) -> Booking:
        return self.transition(booking_id, actor_user_id, BookingStatus.ACCEPTED, scheduled_date=scheduled_date)

    def decline_booking(self, booking_id: str, actor_user_id: str) -> Booking:
        return self.transition(booking_id, actor_user_id, BookingStatus.DECLINED)

    def cancel_booking(self, booking_id: str, actor_user_id: str) -> Booking:
        return self.transition(booking_id, actor_user_id, BookingStatus.CANCELLED)

    def start_booking(self, booking_id: str, actor_user_id: str) -> Booking:
        return self.transition(booking_id, actor_user_id, BookingStatus.IN_PROGRESS)

    def complete_booking(self, booking_id: str, actor_user_id: str) -> Booking:
        return self.transition(booking_id, actor_user_id, BookingStatus.COMPLETED)

    def dispute_booking(
        self,
        booking_id: str,
        actor_user_id: str,
        description: str,
        file_urls: Optional[List[str]] = None,
    ) -> Booking:
        return self.transition(
            booking_id,
            actor_user_id,
            BookingStatus.DISPUTED,
            description=description,
            file_urls=file_urls,
        )

    def submit_evidence(
        self,
        booking_id: str,
        actor_user_id: str,
        description: str,
        file_urls: Optional[List[str]] = None,
    ) -> Booking:
        now = self.clock()
        with self._session() as conn:
            booking = self._load_booking(conn, booking_id)
            self._actor_for(booking, actor_user_id)
            if booking.status != BookingStatus.DISPUTED:
                raise ValidationError("Evidence can only be submitted for a disputed booking")
            evidence = self._build_evidence(booking.id, actor_user_id, description, file_urls, now)
            updated = booking.model_copy(update={"evidence": evidence, "updated_at": as_utc(now)})
            self._save_booking(conn, updated)
            conn.commit()
        return updated


default_db = str(Path(__file__).resolve().parents[2] / "data" / "servicehub.sqlite3")


def store_from_env() -> BookingStore:
    return BookingStore(db_path=os.getenv("SERVICEHUB_DB_PATH", default_db))
