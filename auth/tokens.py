"""
auth/tokens.py -- JWT issuance, reset-token hashing, and refresh cookie helpers.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens are signed with the
       same SECRET_KEY and told apart by a "type" claim, so an access token
       can never be replayed at /auth/refresh and vice versa.
         access:  sub (account id), role, type="access",  iat, exp (15 min)
         refresh: sub (account id), tid (session token id), type="refresh",
                  iat, exp (7 days)
       Decoding returns None on any failure -- the service layer turns that
       into AuthenticationFailure. A refresh token's signature alone is never
       enough: its tid must also match an ACTIVE SessionRecord.

  Token ids: secrets.token_hex(16), 128 bits. Ids are never reused, so a
       revoked record cannot be brought back to life by a colliding id.

  Reset tokens: secrets.token_hex(24), 192 bits. Only SHA-256(raw) is stored.
       A fast hash is enough here because the raw value is high-entropy; the
       comparison uses hmac.compare_digest.

  SECRET_KEY: sourced from core.config.get_settings() at import time, which
       is application startup. A missing or short key raises
       ConfigurationError there, not on the first request. The key is not
       rotated at runtime.

Layer rule: no imports from api/, content/, or cache/. Import from core/
is allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt

from core.config import get_settings

logger = logging.getLogger("newsdesk.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"
ACCESS = "access"
REFRESH = "refresh"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Random identifiers
# ---------------------------------------------------------------------------


def generate_token_id() -> str:
    """Return a fresh 128-bit session token id (32 hex chars)."""
    return secrets.token_hex(16)


def generate_reset_token() -> str:
    """Return a fresh 192-bit password reset token (48 hex chars)."""
    return secrets.token_hex(24)


def hash_reset_token(raw: str) -> str:
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def reset_token_matches(raw: str, stored_hash: Optional[str]) -> bool:
    """Constant-time check of a presented reset token against the stored hash."""
    if not stored_hash:
        return False
    return hmac.compare_digest(hash_reset_token(raw), stored_hash)


# ---------------------------------------------------------------------------
# JWT encode
# ---------------------------------------------------------------------------


def create_access_token(account_id: str, role: str, now: Optional[datetime] = None) -> str:
    """Encode a short-lived access token. Never persisted; validity is signature + expiry."""
    issued = now or _utcnow()
    payload = {
        "sub": account_id,
        "role": role,
        "type": ACCESS,
        "iat": issued,
        "exp": issued + timedelta(seconds=_settings.access_token_expire_seconds),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def create_refresh_token(account_id: str, token_id: str, now: Optional[datetime] = None) -> str:
    """Encode a refresh token bound to the SessionRecord identified by token_id."""
    issued = now or _utcnow()
    payload = {
        "sub": account_id,
        "tid": token_id,
        "type": REFRESH,
        "iat": issued,
        "exp": issued + timedelta(seconds=_settings.refresh_token_expire_seconds),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


# ---------------------------------------------------------------------------
# JWT decode
# ---------------------------------------------------------------------------


def _decode(token: str, expected_type: str, required: tuple[str, ...], verify_exp: bool = True) -> dict | None:
    try:
        payload = jwt.decode(
            token,
            _settings.secret_key,
            algorithms=[_ALGORITHM],
            options={"verify_exp": verify_exp},
        )
    except ExpiredSignatureError:
        logger.info("Rejected %s token: expired", expected_type)
        return None
    except JWTError:
        logger.info("Rejected %s token: bad signature or malformed", expected_type)
        return None
    if payload.get("type") != expected_type or any(not payload.get(k) for k in required):
        logger.info("Rejected %s token: wrong type or missing claims", expected_type)
        return None
    return payload


def decode_access_token(token: str) -> dict | None:
    """Verify an access token. Returns the payload dict or None on any failure."""
    return _decode(token, ACCESS, ("sub", "role"))


def decode_refresh_token(token: str, verify_exp: bool = True) -> dict | None:
    """Verify a refresh token's signature (and, by default, expiry).

    verify_exp=False is only for logout, which must be able to revoke the
    session behind a token that has already expired.
    """
    return _decode(token, REFRESH, ("sub", "tid"), verify_exp=verify_exp)


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_refresh_cookie(response, token: str) -> None:
    """Write the refresh token as an httpOnly cookie scoped to the auth endpoints.

    httponly=True: client script cannot read it.
    secure: sent over HTTPS only (on unless DEBUG).
    samesite: from COOKIE_SAMESITE ("lax" by default).
    path: REFRESH_COOKIE_PATH, so ordinary API calls never carry it.
    max_age: matches the refresh token lifetime.
    """
    response.set_cookie(
        _settings.refresh_cookie_name,
        value=token,
        httponly=True,
        secure=_settings.secure_cookies,
        samesite=_settings.cookie_samesite,
        path=_settings.refresh_cookie_path,
        max_age=_settings.refresh_token_expire_seconds,
    )


def clear_refresh_cookie(response) -> None:
    """Expire the refresh cookie. Attributes must match set_refresh_cookie or browsers keep it."""
    response.delete_cookie(
        _settings.refresh_cookie_name,
        httponly=True,
        secure=_settings.secure_cookies,
        samesite=_settings.cookie_samesite,
        path=_settings.refresh_cookie_path,
    )


def refresh_cookie_name() -> str:
    return _settings.refresh_cookie_name
