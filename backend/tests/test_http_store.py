import asyncio
import json
import os
import sys
from datetime import datetime, timezone

import httpx
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from servicehub.clients.codec import to_ns
from servicehub.clients.http_store import HttpStoreClient
from servicehub.errors import (
    AuthorizationError,
    InvalidTransitionError,
    ServiceHubError,
    TransientError,
)
from servicehub.models import Location

UTC = timezone.utc
TUESDAY_10AM = datetime(2026, 3, 3, 10, 0, tzinfo=UTC)

BOOKING_ROW = {
    "id": "b_1",
    "client_id": "client",
    "provider_id": "prov",
    "service_id": "svc_1",
    "status": {"Requested": None},
    "requested_date": to_ns(TUESDAY_10AM),
    "scheduled_date": None,
    "completed_date": None,
    "price": 12000,
    "location": {"address": "1 Crown St"},
    "evidence": None,
    "created_at": to_ns(TUESDAY_10AM),
    "updated_at": to_ns(TUESDAY_10AM),
}


def _run(handler, call, token=None):
    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://store") as http:
            client = HttpStoreClient("client", token=token, http_client=http)
            return await call(client)

    return asyncio.run(scenario())


def test_create_booking_sends_actor_and_nanoseconds():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=BOOKING_ROW)

    booking = _run(
        handler,
        lambda c: c.create_booking("svc_1", "prov", 12000, Location(address="1 Crown St"), TUESDAY_10AM),
        token="tok",
    )

    assert seen["path"] == "/bookings"
    assert seen["auth"] == "Bearer tok"
    assert seen["body"]["actor_user_id"] == "client"
    assert seen["body"]["requested_date"] == to_ns(TUESDAY_10AM)
    assert booking.requested_date == TUESDAY_10AM


def test_unreachable_store_is_transient():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransientError):
        _run(handler, lambda c: c.get_booking("b_1"))


@pytest.mark.parametrize("status_code", [502, 503, 504])
def test_gateway_errors_are_transient(status_code):
    with pytest.raises(TransientError):
        _run(lambda request: httpx.Response(status_code), lambda c: c.get_client_bookings("client"))


def test_error_code_in_body_picks_the_error_type():
    def handler(request):
        return httpx.Response(
            409,
            json={"detail": {"code": "invalid_transition", "message": "Invalid status transition: InProgress -> Cancelled"}},
        )

    with pytest.raises(InvalidTransitionError, match="InProgress -> Cancelled"):
        _run(handler, lambda c: c.cancel_booking("b_1"))


def test_status_code_used_when_body_has_no_code():
    with pytest.raises(AuthorizationError):
        _run(lambda request: httpx.Response(403, json={"detail": "Forbidden"}), lambda c: c.decline_booking("b_1"))
    with pytest.raises(ServiceHubError, match="HTTP 500"):
        _run(lambda request: httpx.Response(500, text="oops"), lambda c: c.get_booking("b_1"))


def test_missing_profile_is_none():
    def handler(request):
        return httpx.Response(404, json={"detail": {"code": "not_found", "message": "Profile not found"}})

    assert _run(handler, lambda c: c.get_profile("prov")) is None
