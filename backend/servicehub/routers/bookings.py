from typing import Optional

from fastapi import APIRouter, Depends, Header

from servicehub.auth import assert_actor_authorized
from servicehub.clients.codec import decode_status, encode_booking, encode_status_change, from_ns
from servicehub.errors import ServiceHubError
from servicehub.models import (
    ActorRequest,
    BookingAcceptRequest,
    BookingCreateRequest,
    BookingStatus,
    EvidenceRequest,
    StatusQueryRequest,
)
from servicehub.routers.common import get_store, raise_http_error
from servicehub.services.booking_store import BookingStore

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("", response_model=dict)
def create_booking(
    payload: BookingCreateRequest,
    store: BookingStore = Depends(get_store),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization)
    try:
        booking = store.create_booking(
            client_id=payload.actor_user_id,
            service_id=payload.service_id,
            provider_id=payload.provider_id,
            price=payload.price,
            location=payload.location,
            requested_date=from_ns(payload.requested_date),
        )
    except ServiceHubError as exc:
        raise_http_error(exc)
    return encode_booking(booking)


@router.get("/client/{client_id}", response_model=list[dict])
def list_client_bookings(client_id: str, store: BookingStore = Depends(get_store)):
    return [encode_booking(b) for b in store.get_client_bookings(client_id)]


@router.get("/provider/{provider_id}", response_model=list[dict])
def list_provider_bookings(provider_id: str, store: BookingStore = Depends(get_store)):
    return [encode_booking(b) for b in store.get_provider_bookings(provider_id)]


@router.post("/by-status", response_model=list[dict])
def list_bookings_by_status(payload: StatusQueryRequest, store: BookingStore = Depends(get_store)):
    try:
        status = decode_status(payload.status)
        bookings = store.get_bookings_by_status(status, user_id=payload.actor_user_id)
    except ServiceHubError as exc:
        raise_http_error(exc)
    return [encode_booking(b) for b in bookings]


@router.get("/{booking_id}", response_model=dict)
def get_booking(booking_id: str, store: BookingStore = Depends(get_store)):
    try:
        return encode_booking(store.get_booking(booking_id))
    except ServiceHubError as exc:
        raise_http_error(exc)


@router.get("/{booking_id}/history", response_model=list[dict])
def get_booking_history(booking_id: str, store: BookingStore = Depends(get_store)):
    try:
        return [encode_status_change(change) for change in store.get_status_history(booking_id)]
    except ServiceHubError as exc:
        raise_http_error(exc)


@router.post("/{booking_id}/accept", response_model=dict)
def accept_booking(
    booking_id: str,
    payload: BookingAcceptRequest,
    store: BookingStore = Depends(get_store),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization)
    try:
        booking = store.accept_booking(booking_id, payload.actor_user_id, from_ns(payload.scheduled_date))
    except ServiceHubError as exc:
        raise_http_error(exc)
    return encode_booking(booking)


def _simple_transition(
    booking_id: str,
    payload: ActorRequest,
    target: BookingStatus,
    store: BookingStore,
    authorization: Optional[str],
) -> dict:
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization)
    try:
        booking = store.transition(booking_id, payload.actor_user_id, target)
    except ServiceHubError as exc:
        raise_http_error(exc)
    return encode_booking(booking)


@router.post("/{booking_id}/decline", response_model=dict)
def decline_booking(
    booking_id: str,
    payload: ActorRequest,
    store: BookingStore = Depends(get_store),
    authorization: Optional[str] = Header(default=None),
):
    return _simple_transition(booking_id, payload, BookingStatus.DECLINED, store, authorization)


@router.post("/{booking_id}/cancel", response_model=dict)
def cancel_booking(
    booking_id: str,
    payload: ActorRequest,
    store: BookingStore = Depends(get_store),
    authorization: Optional[str] = Header(default=None),
):
    return _simple_transition(booking_id, payload, BookingStatus.CANCELLED, store, authorization)


@router.post("/{booking_id}/start", response_model=dict)
def start_booking(
    booking_id: str,
    payload: ActorRequest,
    store: BookingStore = Depends(get_store),
    authorization: Optional[str] = Header(default=None),
):
    return _simple_transition(booking_id, payload, BookingStatus.IN_PROGRESS, store, authorization)


@router.post("/{booking_id}/complete", response_model=dict)
def complete_booking(
    booking_id: str,
    payload: ActorRequest,
    store: BookingStore = Depends(get_store),
    authorization: Optional[str] = Header(default=None),
):
    return _simple_transition(booking_id, payload, BookingStatus.COMPLETED, store, authorization)


@router.post("/{booking_id}/dispute", response_model=dict)
def dispute_booking(
    booking_id: str,
    payload: EvidenceRequest,
    store: BookingStore = Depends(get_store),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization)
    try:
        booking = store.dispute_booking(booking_id, payload.actor_user_id, payload.description, payload.file_urls)
    except ServiceHubError as exc:
        raise_http_error(exc)
    return encode_booking(booking)


@router.post("/{booking_id}/evidence", response_model=dict)
def submit_evidence(
    booking_id: str,
    payload: EvidenceRequest,
    store: BookingStore = Depends(get_store),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization)
    try:
        booking = store.submit_evidence(booking_id, payload.actor_user_id, payload.description, payload.file_urls)
    except ServiceHubError as exc:
        raise_http_error(exc)
    return encode_booking(booking)
