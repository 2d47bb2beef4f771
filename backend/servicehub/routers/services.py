from typing import Optional

from fastapi import APIRouter, Depends, Header

from servicehub.auth import assert_actor_authorized
from servicehub.clients.codec import encode_service
from servicehub.errors import ServiceHubError
from servicehub.models import ServiceCreateRequest, ServiceStatusUpdateRequest
from servicehub.routers.common import get_store, raise_http_error
from servicehub.services.booking_store import BookingStore

router = APIRouter(prefix="/services", tags=["services"])


@router.post("", response_model=dict)
def create_service(
    payload: ServiceCreateRequest,
    store: BookingStore = Depends(get_store),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization)
    try:
        service = store.create_service(
            provider_id=payload.actor_user_id,
            title=payload.title,
            category=payload.category,
            price=payload.price,
            location=payload.location,
            weekly_schedule=payload.weekly_schedule,
            instant_booking_enabled=payload.instant_booking_enabled,
            booking_notice_hours=payload.booking_notice_hours,
            max_bookings_per_day=payload.max_bookings_per_day,
        )
    except ServiceHubError as exc:
        raise_http_error(exc)
    return encode_service(service)


@router.get("/{service_id}", response_model=dict)
def get_service(service_id: str, store: BookingStore = Depends(get_store)):
    try:
        return encode_service(store.get_service(service_id))
    except ServiceHubError as exc:
        raise_http_error(exc)


@router.post("/{service_id}/status", response_model=dict)
def update_service_status(
    service_id: str,
    payload: ServiceStatusUpdateRequest,
    store: BookingStore = Depends(get_store),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization)
    try:
        service = store.update_service_status(service_id, payload.actor_user_id, payload.status)
    except ServiceHubError as exc:
        raise_http_error(exc)
    return encode_service(service)
