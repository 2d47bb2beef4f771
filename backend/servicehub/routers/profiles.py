from typing import Optional

from fastapi import APIRouter, Depends, Header

from servicehub.auth import assert_actor_authorized
from servicehub.clients.codec import encode_profile
from servicehub.errors import AuthorizationError, ServiceHubError
from servicehub.models import ProfileUpsertRequest
from servicehub.routers.common import get_store, raise_http_error
from servicehub.services.booking_store import BookingStore

router = APIRouter(prefix="/profiles", tags=["profiles"])


@router.put("/{profile_id}", response_model=dict)
def upsert_profile(
    profile_id: str,
    payload: ProfileUpsertRequest,
    store: BookingStore = Depends(get_store),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization)
    try:
        if payload.actor_user_id != profile_id:
            raise AuthorizationError("Users can only edit their own profile")
        profile = store.upsert_profile(
            profile_id,
            name=payload.name,
            picture_url=payload.picture_url,
            phone=payload.phone,
            is_verified=payload.is_verified,
        )
    except ServiceHubError as exc:
        raise_http_error(exc)
    return encode_profile(profile)


@router.get("/{profile_id}", response_model=dict)
def get_profile(profile_id: str, store: BookingStore = Depends(get_store)):
    try:
        return encode_profile(store.get_profile(profile_id))
    except ServiceHubError as exc:
        raise_http_error(exc)
