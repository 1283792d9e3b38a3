"""
auth/notify.py -- Delivery of password reset tokens.

Email delivery is an external concern. The auth routes hand a freshly issued
raw reset token to whatever ResetNotifier sits on app.state.reset_notifier;
the default just records that a reset was issued. Deployments plug in a
mailer; tests plug in a notifier that captures the token.

The raw token is never logged.
"""

from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger("newsdesk.auth.notify")


class ResetNotifier(Protocol):
    def send_reset(self, email: str, raw_token: str) -> None: ...


class LoggingResetNotifier:
    """Default notifier: logs the event, drops the token."""

    def send_reset(self, email: str, raw_token: str) -> None:
        logger.info("Password reset issued for %s (no mailer configured; token not delivered)", email)
