"""
auth/service.py -- Login, refresh rotation, logout, and password reset.

This is the only code that mutates an Account or its SessionRecords. Routes
call it; it calls AccountStore, the lockout policy, the password verifier and
the token issuer.

Session record lifecycle: ACTIVE -> REVOKED (terminal).
  login    creates a new ACTIVE record; other sessions are untouched.
  refresh  revokes the presented record and creates its replacement in one
           conditional transaction (AccountStore.rotate_session). A token
           whose record is already REVOKED is a replay: TokenReuseDetected,
           logged at WARNING and audited as refresh_reuse.
  logout   revokes the presented record if it is still ACTIVE. Never raises
           for a bad, expired or already-revoked token.
  reset    revokes every ACTIVE record on the account.

Every failure on the credential path raises a core.errors type with a
generic client message. Logs carry the account id, never a password or token.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth import lockout
from auth.lockout import LockoutPolicy
from auth.models import Account, AuditEvent, SessionRecord
from auth.passwords import dummy_verify, hash_password, verify_password
from auth.store import AccountStore
from auth.tokens import (
    create_access_token,
    create_refresh_token,
    decode_access_token,
    decode_refresh_token,
    generate_reset_token,
    generate_token_id,
    hash_reset_token,
    reset_token_matches,
)
from core.errors import (
    AccountLocked,
    AuthenticationFailure,
    InvalidCredentials,
    InvalidRefreshToken,
    InvalidResetToken,
    TokenReuseDetected,
)

logger = logging.getLogger("newsdesk.auth")


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass
class LoginResult:
    account: Account
    tokens: TokenPair


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthService:
    """Session and credential operations over an AccountStore.

    clock is injectable so lockout and reset expiry can be tested without
    sleeping; it must return timezone-aware UTC datetimes.
    """

    def __init__(
        self,
        store: AccountStore,
        policy: Optional[LockoutPolicy] = None,
        reset_ttl: timedelta = timedelta(hours=1),
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.policy = policy or LockoutPolicy()
        self.reset_ttl = reset_ttl
        self._clock = clock or _utcnow

    @classmethod
    def from_settings(cls, store: AccountStore, settings, clock: Optional[Callable[[], datetime]] = None) -> "AuthService":
        return cls(
            store,
            policy=LockoutPolicy.from_settings(settings),
            reset_ttl=timedelta(seconds=settings.reset_token_expire_seconds),
            clock=clock,
        )

    def _now(self) -> datetime:
        return self._clock()

    def _audit(
        self,
        action: str,
        account: Optional[Account] = None,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        target_id: Optional[str] = None,
    ) -> None:
        self.store.record_audit(
            AuditEvent(
                action=action,
                account_id=account.id if account else None,
                email=account.email if account else None,
                ip=ip,
                user_agent=user_agent,
                target_id=target_id,
                created_at=self._now(),
            )
        )

    def record_activity(self, action: str, account: Account, target_id: Optional[str] = None, client_ip: Optional[str] = None) -> None:
        """Append an editorial action (create_post, update_post, delete_post) to the audit log."""
        self._audit(action, account, client_ip, target_id=target_id)

    def _issue(self, account: Account, token_id: str, now: datetime) -> TokenPair:
        return TokenPair(
            access_token=create_access_token(account.id, account.role, now=now),
            refresh_token=create_refresh_token(account.id, token_id, now=now),
        )

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(
        self,
        email: str,
        password: str,
        client_ip: Optional[str] = None,
        client_agent: Optional[str] = None,
    ) -> LoginResult:
        """Verify credentials and open a new session.

        Raises:
            InvalidCredentials: unknown email or wrong password (same message).
            AccountLocked: the account is inside its lockout window. Checked
                before the password, whatever the password is.
        """
        account = self.store.get_by_email(email)
        if account is None:
            # Same bcrypt cost as a real check so timing does not reveal the email is unknown.
            dummy_verify(password)
            logger.info("Login failed: unknown email (ip=%s)", client_ip)
            raise InvalidCredentials()

        now = self._now()
        if lockout.is_locked(account, now):
            logger.warning("Login refused for locked account %s (locked until %s)", account.id, account.locked_until.isoformat())
            raise AccountLocked(account.locked_until, lockout.seconds_remaining(account, now))

        if not verify_password(password, account.password_hash):
            self._register_failure(account, now, client_ip, client_agent)
            raise InvalidCredentials()

        record = SessionRecord(token_id=generate_token_id(), issued_at=now, client_ip=client_ip, client_agent=client_agent)
        self.store.record_login(account.id, record)
        account.failed_login_attempts = 0
        account.locked_until = None
        account.last_login = now
        account.refresh_tokens.append(record)
        self._audit("login", account, client_ip, client_agent)
        logger.info("Login succeeded for account %s", account.id)
        return LoginResult(account=account, tokens=self._issue(account, record.token_id, now))

    def _register_failure(self, account: Account, now: datetime, client_ip: Optional[str], client_agent: Optional[str]) -> None:
        attempts = self.store.increment_failed_attempts(account.id)
        self._audit("login_failed", account, client_ip, client_agent)
        until = lockout.next_lock(attempts, account.locked_until, now, self.policy)
        if until is not None and self.store.extend_lock(account.id, until):
            logger.warning("Account %s locked until %s after %d failed attempts", account.id, until.isoformat(), attempts)
            self._audit("account_locked", account, client_ip, client_agent)
        else:
            logger.info("Login failed for account %s (%d consecutive failures)", account.id, attempts)

    # ------------------------------------------------------------------
    # Refresh rotation
    # ------------------------------------------------------------------

    def validate_refresh_token(self, raw_token: Optional[str]) -> tuple[Account, SessionRecord]:
        """Check a refresh token without consuming it.

        Valid iff the signature verifies, it has not expired, and its tid
        matches an ACTIVE session record on the account it names.

        Raises:
            InvalidRefreshToken: missing, malformed, expired, or unknown token.
            TokenReuseDetected: the token's record exists but is REVOKED.
        """
        if not raw_token:
            raise InvalidRefreshToken()
        payload = decode_refresh_token(raw_token)
        if payload is None:
            raise InvalidRefreshToken()
        account = self.store.get_by_id(payload["sub"])
        if account is None:
            logger.warning("Refresh token names unknown account %s", payload["sub"])
            raise InvalidRefreshToken()
        record = account.find_session(payload["tid"])
        if record is None:
            logger.warning("Refresh token with unknown token id for account %s", account.id)
            raise InvalidRefreshToken()
        if not record.is_active:
            raise TokenReuseDetected(account.id, record.token_id)
        return account, record

    def refresh(
        self,
        raw_token: Optional[str],
        client_ip: Optional[str] = None,
        client_agent: Optional[str] = None,
    ) -> TokenPair:
        """Rotate a refresh token: revoke it and issue a replacement pair.

        Raises:
            InvalidRefreshToken: see validate_refresh_token().
            TokenReuseDetected: the token was already rotated away, either
                earlier or by a concurrent refresh that won the race.
        """
        try:
            account, record = self.validate_refresh_token(raw_token)
            now = self._now()
            replacement = SessionRecord(
                token_id=generate_token_id(), issued_at=now, client_ip=client_ip, client_agent=client_agent
            )
            if not self.store.rotate_session(account.id, record.token_id, replacement):
                raise TokenReuseDetected(account.id, record.token_id)
        except TokenReuseDetected as exc:
            logger.warning(
                "Refresh token reuse detected for account %s (token id %s..., ip=%s)",
                exc.account_id,
                exc.token_id[:8],
                client_ip,
            )
            self._audit("refresh_reuse", self.store.get_by_id(exc.account_id), client_ip, client_agent)
            raise
        return self._issue(account, replacement.token_id, now)

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def logout(self, raw_token: Optional[str], client_ip: Optional[str] = None) -> bool:
        """Revoke the session behind a refresh token. Idempotent.

        The signature is checked (so nobody can revoke sessions with a forged
        token) but expiry is not: an expired token still names a session that
        should be closed. Returns True if a record was revoked by this call.
        """
        if not raw_token:
            return False
        payload = decode_refresh_token(raw_token, verify_exp=False)
        if payload is None:
            return False
        account = self.store.get_by_id(payload["sub"])
        if account is None:
            return False
        revoked = self.store.revoke_session(account.id, payload["tid"], self._now())
        if revoked:
            self._audit("logout", account, client_ip)
            logger.info("Logout: revoked session for account %s", account.id)
        return revoked

    # ------------------------------------------------------------------
    # Access tokens
    # ------------------------------------------------------------------

    def authenticate_access_token(self, token: Optional[str]) -> Account:
        """Resolve a Bearer access token to its Account.

        Raises:
            AuthenticationFailure: missing, invalid or expired token, or the
                account no longer exists.
        """
        if not token:
            raise AuthenticationFailure()
        payload = decode_access_token(token)
        if payload is None:
            raise AuthenticationFailure("Invalid or expired token.")
        account = self.store.get_by_id(payload["sub"])
        if account is None:
            raise AuthenticationFailure("Invalid or expired token.")
        return account

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def request_password_reset(self, email: str, client_ip: Optional[str] = None) -> Optional[str]:
        """Issue a reset token for the account, returning the raw value.

        Returns None, touching nothing, when the email is unknown. The caller
        must answer both cases identically.
        """
        account = self.store.get_by_email(email)
        if account is None:
            logger.info("Password reset requested for unknown email (ip=%s)", client_ip)
            return None
        raw = generate_reset_token()
        self.store.set_reset_token(account.id, hash_reset_token(raw), self._now() + self.reset_ttl)
        self._audit("password_reset_requested", account, client_ip)
        logger.info("Password reset token issued for account %s", account.id)
        return raw

    def reset_password(self, email: str, raw_token: str, new_password: str, client_ip: Optional[str] = None) -> int:
        """Consume a reset token, set the new password, and revoke every session.

        Returns the number of sessions revoked.

        Raises:
            InvalidResetToken: unknown email, no outstanding token, mismatch,
                expired, or already consumed.
        """
        account = self.store.get_by_email(email)
        if account is None:
            raise InvalidResetToken()
        now = self._now()
        if not reset_token_matches(raw_token, account.reset_token_hash):
            logger.info("Password reset rejected for account %s: token mismatch", account.id)
            raise InvalidResetToken()
        if account.reset_token_expire is None or account.reset_token_expire < now:
            logger.info("Password reset rejected for account %s: token expired", account.id)
            raise InvalidResetToken()

        revoked = self.store.complete_password_reset(
            account.id, account.reset_token_hash, hash_password(new_password), now
        )
        if revoked is None:
            raise InvalidResetToken()
        self._audit("password_reset", account, client_ip)
        logger.warning("Password reset completed for account %s; %d sessions revoked", account.id, revoked)
        return revoked

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    def seed_admin(self, email: str, password: str, name: str = "Default Admin") -> Optional[str]:
        """Create the bootstrap admin unless an account with that email exists.

        Returns the new account id, or None if nothing was created.
        """
        if self.store.get_by_email(email) is not None:
            logger.info("Default admin already exists")
            return None
        try:
            account_id = self.store.create_account(
                Account(email=email, password_hash=hash_password(password), name=name, role="admin")
            )
        except IntegrityError:
            # A concurrent worker seeded the same email first.
            return None
        logger.info("Default admin created (account %s)", account_id)
        return account_id
