from typing import NoReturn

from fastapi import HTTPException, Request

from servicehub.errors import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ServiceHubError,
    TransientError,
)
from servicehub.services.booking_store import BookingStore
from servicehub.services.notification_store import NotificationStore


def get_store(request: Request) -> BookingStore:
    return request.app.state.store


def get_notifications(request: Request) -> NotificationStore:
    return request.app.state.notifications


def _status_for(exc: ServiceHubError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, AuthorizationError):
        return 403
    if isinstance(exc, (ConflictError, InvalidTransitionError)):
        return 409
    if isinstance(exc, TransientError):
        return 503
    return 400


def raise_http_error(exc: ServiceHubError) -> NoReturn:
    raise HTTPException(status_code=_status_for(exc), detail={"code": exc.code, "message": str(exc)}) from exc
