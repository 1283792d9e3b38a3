"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account / _row_to_session / _row_to_audit are the mappers. The auth
service never touches SQL directly, and nothing outside auth/service.py calls
the mutating methods here.

Atomicity:
  Every mutation runs inside engine.begin(), so each method is one
  transaction. rotate_session() is the one that matters: it revokes the
  presented record with a conditional UPDATE (... AND revoked_at IS NULL)
  and only inserts the replacement when that UPDATE hit exactly one row.
  Two concurrent refreshes of the same token therefore cannot both succeed.

Failures and timestamps follow core/db.py: driver errors surface as
StorageFailure, IntegrityError passes through, and timestamps are fixed-width
UTC ISO-8601 strings.

Layer rule: no imports from api/, content/, or cache/.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import Account, AuditEvent, SessionRecord
from core.db import build_engine, from_db, storage_errors, to_db, utcnow

_DEFAULT_DB_URL = "sqlite:///newsdesk.db"
_DEFAULT_TIMEOUT = 5.0

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),  # always lower-cased
    Column("name", String(255), nullable=False, server_default="Admin"),
    Column("role", String(30), nullable=False, server_default="admin"),
    Column("password_hash", Text, nullable=False),
    Column("failed_login_attempts", Integer, nullable=False, server_default="0"),
    Column("locked_until", String(32)),
    Column("reset_token_hash", String(64)),  # SHA-256 hex
    Column("reset_token_expire", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
)

_sessions = Table(
    "session_records",
    _metadata,
    # Autoincrement id doubles as insertion order for Account.refresh_tokens.
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", String(32), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("token_id", String(64), nullable=False),
    Column("issued_at", String(32), nullable=False),
    Column("revoked_at", String(32)),
    Column("client_ip", String(64)),
    Column("client_agent", String(255)),
    UniqueConstraint("account_id", "token_id", name="uq_session_token"),
)

_audit = Table(
    "audit_events",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", String(32)),
    Column("email", String(255)),
    Column("action", String(40), nullable=False),
    Column("ip", String(64)),
    Column("user_agent", String(255)),
    Column("target_id", String(64)),
    Column("created_at", String(32), nullable=False),
)


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account, SessionRecord and AuditEvent entities.

    Usage:
        store = AccountStore("sqlite:///newsdesk.db")
        account_id = store.create_account(Account(email="a@x.com", password_hash=hash_password("secret")))
        account = store.get_by_email("A@X.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL, timeout: float = _DEFAULT_TIMEOUT) -> None:
        self.engine: Engine = build_engine(db_url, timeout)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Account queries
    # ------------------------------------------------------------------

    def has_accounts(self) -> bool:
        with storage_errors("has_accounts"), self.engine.connect() as conn:
            count = conn.execute(select(func.count()).select_from(_accounts)).scalar()
        return (count or 0) > 0

    def create_account(self, account: Account) -> str:
        """Insert a new account and return its id.

        Raises sqlalchemy.exc.IntegrityError if the email already exists
        (compared case-insensitively, since emails are normalised on write).
        """
        account_id = account.id or uuid.uuid4().hex
        with storage_errors("create_account"), self.engine.begin() as conn:
            conn.execute(
                _accounts.insert().values(
                    id=account_id,
                    email=normalize_email(account.email),
                    name=account.name,
                    role=account.role,
                    password_hash=account.password_hash,
                    failed_login_attempts=0,
                    created_at=to_db(account.created_at or utcnow()),
                )
            )
        return account_id

    def get_by_email(self, email: str) -> Optional[Account]:
        """Look up an account by email, case-insensitively. Returns None if not found."""
        return self._load(_accounts.c.email == normalize_email(email), "get_by_email")

    def get_by_id(self, account_id: str) -> Optional[Account]:
        return self._load(_accounts.c.id == account_id, "get_by_id")

    def _load(self, clause, operation: str) -> Optional[Account]:
        with storage_errors(operation), self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(clause)).fetchone()
            if row is None:
                return None
            session_rows = conn.execute(
                _sessions.select().where(_sessions.c.account_id == row.id).order_by(_sessions.c.id)
            ).fetchall()
        account = _row_to_account(row)
        account.refresh_tokens = [_row_to_session(r) for r in session_rows]
        return account

    # ------------------------------------------------------------------
    # Lockout state
    # ------------------------------------------------------------------

    def increment_failed_attempts(self, account_id: str) -> int:
        """Atomically add one to failed_login_attempts and return the new count."""
        with storage_errors("increment_failed_attempts"), self.engine.begin() as conn:
            conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(failed_login_attempts=_accounts.c.failed_login_attempts + 1)
            )
            count = conn.execute(
                select(_accounts.c.failed_login_attempts).where(_accounts.c.id == account_id)
            ).scalar()
        return count or 0

    def extend_lock(self, account_id: str, until: datetime) -> bool:
        """Set locked_until to `until` unless it already lies at or beyond it.

        locked_until only moves forward through this method. Returns True if
        the stored value changed.
        """
        stamp = to_db(until)
        with storage_errors("extend_lock"), self.engine.begin() as conn:
            result = conn.execute(
                _accounts.update()
                .where(
                    (_accounts.c.id == account_id)
                    & ((_accounts.c.locked_until.is_(None)) | (_accounts.c.locked_until < stamp))
                )
                .values(locked_until=stamp)
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Session records
    # ------------------------------------------------------------------

    def record_login(self, account_id: str, record: SessionRecord) -> None:
        """Clear lockout state, stamp last_login and add a new ACTIVE session record."""
        with storage_errors("record_login"), self.engine.begin() as conn:
            conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(failed_login_attempts=0, locked_until=None, last_login=to_db(record.issued_at))
            )
            conn.execute(_sessions.insert().values(**_session_values(account_id, record)))

    def rotate_session(self, account_id: str, old_token_id: str, new_record: SessionRecord) -> bool:
        """Revoke `old_token_id` and add `new_record`, or do nothing at all.

        The revoke only matches a record that is still ACTIVE. If it matched
        nothing (unknown id, or already revoked by a previous or concurrent
        rotation) the new record is not inserted and False is returned.
        """
        with storage_errors("rotate_session"), self.engine.begin() as conn:
            result = conn.execute(
                _sessions.update()
                .where(
                    (_sessions.c.account_id == account_id)
                    & (_sessions.c.token_id == old_token_id)
                    & (_sessions.c.revoked_at.is_(None))
                )
                .values(revoked_at=to_db(new_record.issued_at))
            )
            if result.rowcount != 1:
                return False
            conn.execute(_sessions.insert().values(**_session_values(account_id, new_record)))
        return True

    def revoke_session(self, account_id: str, token_id: str, when: datetime) -> bool:
        """Mark one session record revoked. No-op (returns False) if already revoked or unknown."""
        with storage_errors("revoke_session"), self.engine.begin() as conn:
            result = conn.execute(
                _sessions.update()
                .where(
                    (_sessions.c.account_id == account_id)
                    & (_sessions.c.token_id == token_id)
                    & (_sessions.c.revoked_at.is_(None))
                )
                .values(revoked_at=to_db(when))
            )
        return result.rowcount > 0

    def revoke_all_sessions(self, account_id: str, when: datetime) -> int:
        """Revoke every ACTIVE session record on the account. Returns how many were revoked."""
        with storage_errors("revoke_all_sessions"), self.engine.begin() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.account_id == account_id) & (_sessions.c.revoked_at.is_(None)))
                .values(revoked_at=to_db(when))
            )
        return result.rowcount

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def set_reset_token(self, account_id: str, token_hash: str, expires: datetime) -> None:
        """Store the hash of a freshly issued reset token, replacing any outstanding one."""
        with storage_errors("set_reset_token"), self.engine.begin() as conn:
            conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(reset_token_hash=token_hash, reset_token_expire=to_db(expires))
            )

    def complete_password_reset(
        self, account_id: str, token_hash: str, password_hash: str, when: datetime
    ) -> Optional[int]:
        """Consume the reset token and apply the new password in one transaction.

        The account update is conditional on reset_token_hash still matching,
        so a token is consumed at most once even if two resets race. On
        success the reset fields and lockout state are cleared, every ACTIVE
        session record is revoked, and the number revoked is returned. Returns
        None if the token had already been consumed.
        """
        stamp = to_db(when)
        with storage_errors("complete_password_reset"), self.engine.begin() as conn:
            result = conn.execute(
                _accounts.update()
                .where((_accounts.c.id == account_id) & (_accounts.c.reset_token_hash == token_hash))
                .values(
                    password_hash=password_hash,
                    reset_token_hash=None,
                    reset_token_expire=None,
                    failed_login_attempts=0,
                    locked_until=None,
                )
            )
            if result.rowcount != 1:
                return None
            revoked = conn.execute(
                _sessions.update()
                .where((_sessions.c.account_id == account_id) & (_sessions.c.revoked_at.is_(None)))
                .values(revoked_at=stamp)
            )
        return revoked.rowcount

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def record_audit(self, event_: AuditEvent) -> int:
        with storage_errors("record_audit"), self.engine.begin() as conn:
            result = conn.execute(
                _audit.insert().values(
                    account_id=event_.account_id,
                    email=event_.email,
                    action=event_.action,
                    ip=event_.ip,
                    user_agent=(event_.user_agent or "")[:255] or None,
                    target_id=event_.target_id,
                    created_at=to_db(event_.created_at or utcnow()),
                )
            )
        return result.inserted_primary_key[0]

    def list_audit(self, account_id: Optional[str] = None, limit: int = 50) -> list[AuditEvent]:
        """Return audit events newest first, optionally for one account."""
        query = _audit.select().order_by(_audit.c.id.desc()).limit(limit)
        if account_id is not None:
            query = query.where(_audit.c.account_id == account_id)
        with storage_errors("list_audit"), self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_audit(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _session_values(account_id: str, record: SessionRecord) -> dict:
    return {
        "account_id": account_id,
        "token_id": record.token_id,
        "issued_at": to_db(record.issued_at),
        "revoked_at": to_db(record.revoked_at),
        "client_ip": record.client_ip,
        "client_agent": (record.client_agent or "")[:255] or None,
    }


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        name=row.name,
        role=row.role,
        password_hash=row.password_hash,
        failed_login_attempts=row.failed_login_attempts,
        locked_until=from_db(row.locked_until),
        reset_token_hash=row.reset_token_hash,
        reset_token_expire=from_db(row.reset_token_expire),
        created_at=from_db(row.created_at),
        last_login=from_db(row.last_login),
    )


def _row_to_session(row) -> SessionRecord:
    return SessionRecord(
        token_id=row.token_id,
        issued_at=from_db(row.issued_at),
        revoked_at=from_db(row.revoked_at),
        client_ip=row.client_ip,
        client_agent=row.client_agent,
    )


def _row_to_audit(row) -> AuditEvent:
    return AuditEvent(
        id=row.id,
        account_id=row.account_id,
        email=row.email,
        action=row.action,
        ip=row.ip,
        user_agent=row.user_agent,
        target_id=row.target_id,
        created_at=from_db(row.created_at),
    )
