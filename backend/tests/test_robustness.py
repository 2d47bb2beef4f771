import importlib
import os
import sqlite3
import sys
from datetime import datetime, timedelta, timezone

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from servicehub.errors import TransientError
from servicehub.services.booking_store import BookingStore


def test_auth_ttl_invalid_env_falls_back(monkeypatch):
    monkeypatch.setenv("AUTH_TOKEN_TTL_HOURS", "not-a-number")
    sys.modules.pop("servicehub.auth", None)
    auth = importlib.import_module("servicehub.auth")
    assert auth.TOKEN_TTL_HOURS == 24


def test_auth_ttl_non_positive_env_falls_back(monkeypatch):
    monkeypatch.setenv("AUTH_TOKEN_TTL_HOURS", "0")
    sys.modules.pop("servicehub.auth", None)
    auth = importlib.import_module("servicehub.auth")
    assert auth.TOKEN_TTL_HOURS == 24


def test_retry_settings_invalid_env_fall_back(monkeypatch):
    monkeypatch.setenv("STORE_RETRY_DELAY_MS", "soon")
    monkeypatch.setenv("STORE_MAX_RETRY_ATTEMPTS", "-2")
    sys.modules.pop("servicehub.clients.access_layer", None)
    access_layer = importlib.import_module("servicehub.clients.access_layer")
    assert access_layer.STORE_RETRY_DELAY_MS == 500
    assert access_layer.STORE_MAX_RETRY_ATTEMPTS == 3


def test_tampered_token_is_rejected():
    auth = importlib.import_module("servicehub.auth")
    token, expires_at = auth.issue_actor_token("prov")
    claims = auth.decode_actor_token(token)
    assert claims.user_id == "prov"
    assert claims.expires_at == expires_at.replace(microsecond=0)

    _, signature = token.split(".", 1)
    forged_claims = auth._encode_part(b'{"sub":"client","exp":9999999999}')
    assert auth.decode_actor_token(f"{forged_claims}.{signature}") is None
    assert auth.decode_actor_token("garbage") is None
    assert auth.bearer_token("Token abc") is None
    assert auth.bearer_token("Bearer  abc ") == "abc"


def test_expired_token_is_rejected():
    auth = importlib.import_module("servicehub.auth")
    issued_at = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)
    token, expires_at = auth.issue_actor_token("prov", now=issued_at)
    assert auth.decode_actor_token(token, now=expires_at).user_id == "prov"
    assert auth.decode_actor_token(token, now=expires_at + timedelta(seconds=1)) is None


def test_locked_database_surfaces_as_transient(tmp_path):
    store = BookingStore(db_path=str(tmp_path / "locked.sqlite3"), busy_timeout=0.05)
    blocker = sqlite3.connect(store.db_path)
    blocker.execute("BEGIN EXCLUSIVE")
    try:
        with pytest.raises(TransientError):
            store.get_booking("b_missing")
    finally:
        blocker.rollback()
        blocker.close()


def test_store_creates_missing_parent_directory(tmp_path):
    db_path = tmp_path / "nested" / "dir" / "servicehub.sqlite3"
    BookingStore(db_path=str(db_path))
    assert db_path.exists()
