"""
auth/passwords.py -- Password hashing and verification (bcrypt, used directly).

bcrypt's cost factor makes each check deliberately slow, which is what
low-entropy secrets like passwords need. The cost comes from
Settings.bcrypt_rounds (12 in production, 4 in the test suite).

Using bcrypt directly rather than passlib: passlib's internal wrap-bug
detection creates a password longer than 72 bytes, which bcrypt 4.x rejects
with an explicit error.

Layer rule: no imports from api/, content/, or cache/.
"""

from __future__ import annotations

import bcrypt

from core.config import get_settings

_MAX_BCRYPT_BYTES = 72


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_MAX_BCRYPT_BYTES]


def hash_password(plain: str, rounds: int = 0) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    bcrypt only reads the first 72 bytes and current releases refuse longer
    input, so the encoded password is cut at 72 bytes here and in
    verify_password(). The API layer caps passwords at 128 characters.
    """
    cost = rounds if rounds > 0 else get_settings().bcrypt_rounds
    return bcrypt.hashpw(_encode(plain), bcrypt.gensalt(rounds=cost)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    bcrypt.checkpw does the comparison in constant time. A malformed or
    empty hash is a non-match, not an error.
    """
    try:
        return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization: computed once so unknown-email logins pay the same
# bcrypt cost as wrong-password logins.
_DUMMY_HASH: str = hash_password("newsdesk_timing_dummy")


def dummy_verify(plain: str) -> None:
    """Burn one bcrypt verification without a real account behind it."""
    verify_password(plain, _DUMMY_HASH)
