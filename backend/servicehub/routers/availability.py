from typing import Optional

from fastapi import APIRouter, Depends, Header, Query

from servicehub.auth import assert_actor_authorized
from servicehub.clients.codec import encode_availability, encode_slot, from_ns, ns_to_date
from servicehub.errors import ServiceHubError
from servicehub.models import AvailabilityUpdateRequest, VacationCreateRequest
from servicehub.routers.common import get_store, raise_http_error
from servicehub.services.booking_store import BookingStore

router = APIRouter(prefix="/availability", tags=["availability"])


@router.put("/{provider_id}", response_model=dict)
def set_availability(
    provider_id: str,
    payload: AvailabilityUpdateRequest,
    store: BookingStore = Depends(get_store),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization)
    try:
        updated = store.set_availability(
            actor_user_id=payload.actor_user_id,
            provider_id=provider_id,
            weekly_schedule=payload.weekly_schedule,
            instant_booking_enabled=payload.instant_booking_enabled,
            booking_notice_hours=payload.booking_notice_hours,
            max_bookings_per_day=payload.max_bookings_per_day,
        )
    except ServiceHubError as exc:
        raise_http_error(exc)
    return encode_availability(updated)


@router.get("/{provider_id}", response_model=dict)
def get_availability(provider_id: str, store: BookingStore = Depends(get_store)):
    try:
        return encode_availability(store.get_availability(provider_id))
    except ServiceHubError as exc:
        raise_http_error(exc)


@router.post("/{provider_id}/vacations", response_model=dict)
def add_vacation(
    provider_id: str,
    payload: VacationCreateRequest,
    store: BookingStore = Depends(get_store),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization)
    try:
        updated = store.add_vacation(
            actor_user_id=payload.actor_user_id,
            provider_id=provider_id,
            start=from_ns(payload.start),
            end=from_ns(payload.end),
            reason=payload.reason,
        )
    except ServiceHubError as exc:
        raise_http_error(exc)
    return encode_availability(updated)


@router.delete("/{provider_id}/vacations/{vacation_id}", response_model=dict)
def remove_vacation(
    provider_id: str,
    vacation_id: str,
    actor_user_id: str = Query(...),
    store: BookingStore = Depends(get_store),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=actor_user_id, authorization=authorization)
    try:
        updated = store.remove_vacation(actor_user_id=actor_user_id, provider_id=provider_id, vacation_id=vacation_id)
    except ServiceHubError as exc:
        raise_http_error(exc)
    return encode_availability(updated)


@router.get("/{provider_id}/slots", response_model=list[dict])
def get_available_slots(
    provider_id: str,
    date: int = Query(..., description="UTC midnight of the day, in nanoseconds"),
    service_id: Optional[str] = Query(default=None),
    store: BookingStore = Depends(get_store),
):
    try:
        slots = store.get_available_slots(provider_id, ns_to_date(date), service_id=service_id)
    except ServiceHubError as exc:
        raise_http_error(exc)
    return [encode_slot(slot) for slot in slots]


@router.get("/{provider_id}/check", response_model=dict)
def is_provider_available(
    provider_id: str,
    at: int = Query(...),
    service_id: Optional[str] = Query(default=None),
    store: BookingStore = Depends(get_store),
):
    try:
        available = store.is_provider_available(provider_id, from_ns(at), service_id=service_id)
    except ServiceHubError as exc:
        raise_http_error(exc)
    return {"available": available}
