import logging
import os
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware

from servicehub.routers import availability, bookings, notifications, profiles, services
from servicehub.services.booking_store import BookingStore, store_from_env
from servicehub.services.notification_store import NotificationStore

logger = logging.getLogger(__name__)


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def create_app(
    store: Optional[BookingStore] = None,
    notification_store: Optional[NotificationStore] = None,
) -> FastAPI:
    app = FastAPI(title="ServiceHub API", version="0.1.0")
    app.state.store = store or store_from_env()
    app.state.notifications = notification_store or NotificationStore()
    app.state.store.add_transition_listener(app.state.notifications.on_booking_transition)

    cors_origins = _parse_csv_env("CORS_ORIGINS", "*")
    allow_any_origin = len(cors_origins) == 1 and cors_origins[0] == "*"
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        # Browsers reject wildcard CORS with credentials enabled.
        allow_credentials=not allow_any_origin,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    trusted_hosts = _parse_csv_env("TRUSTED_HOSTS", "*")
    if not (len(trusted_hosts) == 1 and trusted_hosts[0] == "*"):
        app.add_middleware(TrustedHostMiddleware, allowed_hosts=trusted_hosts)

    app.include_router(bookings.router)
    app.include_router(availability.router)
    app.include_router(services.router)
    app.include_router(profiles.router)
    app.include_router(notifications.router)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    logger.info("ServiceHub API configured with store at %s", app.state.store.db_path)
    return app


app = create_app()
