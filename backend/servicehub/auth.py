"""
Bearer tokens naming the acting user.

Identity is issued elsewhere; this service only checks that a signed token,
when present, belongs to the ``actor_user_id`` a request claims to act as.
Tokens are ``<claims>.<signature>`` with base64url JSON claims
``{"sub": user_id, "exp": unix_seconds}`` signed by HMAC-SHA256.
"""

import base64
import hashlib
import hmac
import json
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import NamedTuple, Optional

from fastapi import Header, HTTPException, status

from servicehub.errors import AuthorizationError

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    try:
        value = int(os.getenv(name, str(default)))
    except ValueError:
        return default
    return value if value > 0 else default


TOKEN_TTL_HOURS = _env_int("AUTH_TOKEN_TTL_HOURS", 24)
AUTH_REQUIRED = os.getenv("AUTH_REQUIRED", "false").lower() in {"1", "true", "yes"}
_AUTH_SECRET = os.getenv("AUTH_SECRET", "dev-insecure-secret-change-me")


class ActorClaims(NamedTuple):
    user_id: str
    expires_at: datetime


def _encode_part(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _decode_part(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def _signature(claims: bytes) -> bytes:
    return hmac.new(_AUTH_SECRET.encode("utf-8"), claims, hashlib.sha256).digest()


def issue_actor_token(user_id: str, now: Optional[datetime] = None) -> tuple[str, datetime]:
    """Mint a token the way the identity service does; used by tooling and tests."""
    expires_at = (now or datetime.now(timezone.utc)) + timedelta(hours=TOKEN_TTL_HOURS)
    claims = json.dumps({"sub": user_id, "exp": int(expires_at.timestamp())}, separators=(",", ":")).encode("utf-8")
    return f"{_encode_part(claims)}.{_encode_part(_signature(claims))}", expires_at


def decode_actor_token(token: str, now: Optional[datetime] = None) -> Optional[ActorClaims]:
    try:
        claims_part, signature_part = token.split(".", 1)
        claims = _decode_part(claims_part)
        if not hmac.compare_digest(_decode_part(signature_part), _signature(claims)):
            logger.debug("Rejected token with a bad signature")
            return None
        payload = json.loads(claims)
        expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
        user_id = str(payload["sub"])
    except (ValueError, KeyError, TypeError, UnicodeDecodeError):
        return None
    if (now or datetime.now(timezone.utc)) > expires_at:
        logger.debug("Rejected expired token for %s", user_id)
        return None
    return ActorClaims(user_id=user_id, expires_at=expires_at)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def assert_actor_authorized(
    actor_user_id: str,
    authorization: Optional[str] = Header(default=None),
) -> None:
    """Unauthenticated requests pass unless AUTH_REQUIRED; a presented token must match the actor."""
    token = bearer_token(authorization)
    claims = decode_actor_token(token) if token else None
    if claims is None:
        if AUTH_REQUIRED or authorization:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"code": "unauthenticated", "message": "Invalid or missing bearer token"},
            )
        return
    if claims.user_id != actor_user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "code": AuthorizationError.code,
                "message": f"Token for {claims.user_id} cannot act as {actor_user_id}",
            },
        )
