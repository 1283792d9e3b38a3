"""
auth/lockout.py -- Consecutive-failure lockout policy.

Pure functions over an Account snapshot and a clock value. The auth service
reads the account, asks this module what to do, and persists the answer
through AccountStore (increment_failed_attempts / extend_lock /
record_login). Keeping the policy free of I/O lets the lockout rules be
tested without a database.

Rules:
  - A lock is in force while locked_until is set and later than now.
  - The check runs BEFORE password verification, so a locked account never
    burns a bcrypt check or reveals whether the password was right.
  - Every failure counts. Once the counter reaches the threshold, each
    further failure (re)locks for the full duration. locked_until never
    moves backwards.
  - Success resets the counter and clears the lock.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from auth.models import Account


@dataclass(frozen=True)
class LockoutPolicy:
    threshold: int = 5
    duration: timedelta = timedelta(minutes=10)

    @classmethod
    def from_settings(cls, settings) -> "LockoutPolicy":
        return cls(threshold=settings.lockout_threshold, duration=timedelta(seconds=settings.lockout_seconds))


def is_locked(account: Account, now: datetime) -> bool:
    return account.locked_until is not None and account.locked_until > now


def next_lock(
    failed_attempts: int,
    current_lock: Optional[datetime],
    now: datetime,
    policy: LockoutPolicy,
) -> Optional[datetime]:
    """Return the locked_until value a failure should produce, or None for no lock.

    failed_attempts is the count AFTER the failure was recorded.
    """
    if failed_attempts < policy.threshold:
        return None
    candidate = now + policy.duration
    if current_lock is not None and current_lock >= candidate:
        return current_lock
    return candidate


def seconds_remaining(account: Account, now: datetime) -> int:
    """Seconds until the lock lifts, rounded up; 0 if not locked."""
    if not is_locked(account, now):
        return 0
    delta = (account.locked_until - now).total_seconds()
    return max(int(delta) + (1 if delta % 1 else 0), 1)
