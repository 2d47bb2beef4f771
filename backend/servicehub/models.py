from datetime import date, datetime, timezone
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes are taken to be UTC; aware ones are converted to it."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCModel(BaseModel):
    @field_validator("*", mode="after")
    @classmethod
    def _datetimes_in_utc(cls, value):
        if isinstance(value, datetime):
            return as_utc(value)
        return value


class DayOfWeek(str, Enum):
    MONDAY = "Monday"
    TUESDAY = "Tuesday"
    WEDNESDAY = "Wednesday"
    THURSDAY = "Thursday"
    FRIDAY = "Friday"
    SATURDAY = "Saturday"
    SUNDAY = "Sunday"

    @classmethod
    def for_date(cls, value: date) -> "DayOfWeek":
        return list(cls)[value.weekday()]


class BookingStatus(str, Enum):
    REQUESTED = "Requested"
    ACCEPTED = "Accepted"
    DECLINED = "Declined"
    CANCELLED = "Cancelled"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    DISPUTED = "Disputed"


class ServiceStatus(str, Enum):
    AVAILABLE = "Available"
    SUSPENDED = "Suspended"
    UNAVAILABLE = "Unavailable"


class TimeSlot(BaseModel):
    start: str
    end: str


class DayAvailability(BaseModel):
    is_available: bool = False
    slots: List[TimeSlot] = Field(default_factory=list)


class VacationPeriod(UTCModel):
    id: str
    start: datetime
    end: datetime
    reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)


class ProviderAvailability(UTCModel):
    provider_id: str
    is_active: bool = True
    instant_booking_enabled: bool = False
    booking_notice_hours: int = 0
    max_bookings_per_day: int = 1
    weekly_schedule: Dict[DayOfWeek, DayAvailability] = Field(default_factory=dict)
    vacation_dates: List[VacationPeriod] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Location(BaseModel):
    latitude: float = 0.0
    longitude: float = 0.0
    address: str = ""
    city: str = ""
    state: str = ""
    country: str = ""
    postal_code: str = ""


class Service(UTCModel):
    id: str
    provider_id: str
    title: str
    category: str
    price: int
    location: Location = Field(default_factory=Location)
    status: ServiceStatus = ServiceStatus.AVAILABLE
    rating: Optional[float] = None
    review_count: int = 0
    # Optional overrides of the provider-level booking policy.
    weekly_schedule: Optional[Dict[DayOfWeek, DayAvailability]] = None
    instant_booking_enabled: Optional[bool] = None
    booking_notice_hours: Optional[int] = None
    max_bookings_per_day: Optional[int] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Evidence(UTCModel):
    id: str
    booking_id: str
    submitter_id: str
    description: str
    file_urls: List[str] = Field(default_factory=list)
    quality_score: Optional[float] = None
    created_at: datetime = Field(default_factory=utc_now)


class Booking(UTCModel):
    id: str
    client_id: str
    provider_id: str
    service_id: str
    status: BookingStatus = BookingStatus.REQUESTED
    requested_date: datetime
    scheduled_date: Optional[datetime] = None
    completed_date: Optional[datetime] = None
    price: int
    location: Location = Field(default_factory=Location)
    evidence: Optional[Evidence] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class AvailableSlot(BaseModel):
    date: date
    time_slot: TimeSlot
    is_available: bool
    conflicting_bookings: List[str] = Field(default_factory=list)
    reason: Optional[Literal["same_day", "notice", "daily_limit", "booked"]] = None


class Profile(BaseModel):
    id: str
    name: str
    picture_url: Optional[str] = None
    is_verified: bool = False
    phone: Optional[str] = None


class EnrichedBooking(Booking):
    counterpart_profile: Optional[Profile] = None
    counterpart_name: str = ""
    formatted_location: str = ""
    display_date: str = ""
    display_time: str = ""
    time_until_service: Optional[str] = None
    is_overdue: bool = False
    is_profile_loaded: bool = False


class ProviderBookingAnalytics(BaseModel):
    total_bookings: int = 0
    pending_requests: int = 0
    accepted_bookings: int = 0
    completed_bookings: int = 0
    cancelled_bookings: int = 0
    disputed_bookings: int = 0
    total_revenue: int = 0
    expected_revenue: int = 0
    average_booking_value: float = 0.0
    acceptance_rate: float = 0.0
    completion_rate: float = 0.0
    bookings_this_week: int = 0
    bookings_this_month: int = 0
    revenue_this_week: int = 0
    revenue_this_month: int = 0


class BookingStatusChange(UTCModel):
    id: str
    booking_id: str
    actor_user_id: str
    from_status: Optional[BookingStatus] = None
    to_status: BookingStatus
    note: str = ""
    created_at: datetime = Field(default_factory=utc_now)


class NotificationRecord(BaseModel):
    id: str
    user_id: str
    title: str
    body: str
    category: Literal["booking", "system"] = "system"
    read: bool = False
    created_at: str
    deep_link: Optional[str] = None


# Wire request bodies. Timestamps are integer nanoseconds since the epoch.


class ActorRequest(BaseModel):
    actor_user_id: str


class BookingCreateRequest(ActorRequest):
    service_id: str
    provider_id: str
    price: int
    location: Location = Field(default_factory=Location)
    requested_date: int


class BookingAcceptRequest(ActorRequest):
    scheduled_date: int


class EvidenceRequest(ActorRequest):
    description: str
    file_urls: List[str] = Field(default_factory=list)


class StatusQueryRequest(BaseModel):
    status: Dict[str, None]
    actor_user_id: Optional[str] = None


class AvailabilityUpdateRequest(ActorRequest):
    weekly_schedule: Dict[str, DayAvailability]
    instant_booking_enabled: bool = False
    booking_notice_hours: int = 0
    max_bookings_per_day: int = 1


class VacationCreateRequest(ActorRequest):
    start: int
    end: int
    reason: Optional[str] = None


class ServiceCreateRequest(ActorRequest):
    title: str
    category: str
    price: int
    location: Location = Field(default_factory=Location)
    weekly_schedule: Optional[Dict[str, DayAvailability]] = None
    instant_booking_enabled: Optional[bool] = None
    booking_notice_hours: Optional[int] = None
    max_bookings_per_day: Optional[int] = None


class ServiceStatusUpdateRequest(ActorRequest):
    status: ServiceStatus


class ProfileUpsertRequest(ActorRequest):
    name: str
    picture_url: Optional[str] = None
    phone: Optional[str] = None
    is_verified: bool = False
