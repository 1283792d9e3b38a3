"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the auth
service do the work; these classes only own the shape.

Layer rule: no imports from api/, content/, or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass
class SessionRecord:
    """Server-side record of one issued refresh token.

    token_id is embedded in the signed refresh token (claim "tid"). A refresh
    token is only honoured while a record with its token_id exists on the
    account and revoked_at is None. Records are never deleted; revoking sets
    revoked_at and the record is dead from then on.

    client_ip / client_agent are kept for security review only and play no
    part in validation.
    """

    token_id: str
    issued_at: datetime
    revoked_at: Optional[datetime] = None
    client_ip: Optional[str] = None
    client_agent: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.revoked_at is None


@dataclass
class Account:
    """An admin account. One per email; there is no self-registration.

    email is always stored lower-cased and stripped. password_hash and
    reset_token_hash are one-way hashes and are never returned over the API.
    refresh_tokens is ordered oldest first.
    """

    email: str
    password_hash: str
    id: Optional[str] = None
    name: str = "Admin"
    role: str = "admin"
    failed_login_attempts: int = 0
    locked_until: Optional[datetime] = None
    reset_token_hash: Optional[str] = None
    reset_token_expire: Optional[datetime] = None
    created_at: Optional[datetime] = None
    last_login: Optional[datetime] = None
    refresh_tokens: list[SessionRecord] = field(default_factory=list)

    def find_session(self, token_id: str) -> Optional[SessionRecord]:
        for record in self.refresh_tokens:
            if record.token_id == token_id:
                return record
        return None

    @property
    def active_sessions(self) -> list[SessionRecord]:
        return [r for r in self.refresh_tokens if r.is_active]


@dataclass
class AuditEvent:
    """Append-only record of a security-relevant action.

    action is one of: login, login_failed, account_locked, logout,
    refresh_reuse, password_reset_requested, password_reset, create_post,
    update_post, delete_post. target_id names the post for the last three.
    """

    action: str
    account_id: Optional[str] = None
    email: Optional[str] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    target_id: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None
