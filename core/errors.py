"""
core/errors.py -- Domain exception taxonomy.

Every exception that may cross the request boundary subclasses NewsdeskError
and carries the HTTP status, a stable machine-readable code, and a message
that is safe to show to clients. api/main.py maps them to the standard
{"error": {"code", "message"}} envelope; nothing else in the stack needs to
know about HTTP.

Messages on the authentication path are deliberately generic: an unknown
email, a wrong password, and a bad token all read the same to the client.
The distinguishing detail goes to the log, keyed by account id.

ConfigurationError is the exception: it is raised at startup only and never
reaches a request handler.

Layer rule: core/ is the kernel. No imports from api/, auth/, content/, or cache/.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional


class NewsdeskError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = 400
    code: str = "bad_request"
    message: str = "Bad request."

    def __init__(self, message: Optional[str] = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class AuthenticationFailure(NewsdeskError):
    """Missing, invalid, or expired credential or token (401)."""

    status_code = 401
    code = "unauthorized"
    message = "Authentication required."


class InvalidCredentials(AuthenticationFailure):
    """Wrong email or password on the login path.

    Reported as 400 to match the published login contract. The same message
    is used whether or not the email exists.
    """

    status_code = 400
    code = "invalid_credentials"
    message = "Invalid credentials."


class InvalidRefreshToken(AuthenticationFailure):
    """The presented refresh token cannot be used to mint new tokens."""

    code = "invalid_refresh_token"
    message = "Invalid or expired refresh token."


class TokenReuseDetected(InvalidRefreshToken):
    """A refresh token whose session record is unknown or already revoked.

    The client sees the same response as any other invalid refresh token.
    The service logs it at WARNING and records an audit event so repeated
    replays of a leaked token can be picked out of the log.
    """

    def __init__(self, account_id: str, token_id: str) -> None:
        super().__init__()
        self.account_id = account_id
        self.token_id = token_id


class AccountLocked(NewsdeskError):
    """Login refused because the account is inside its lockout window (403)."""

    status_code = 403
    code = "account_locked"
    message = "Account locked. Try again later."

    def __init__(self, locked_until: datetime, retry_after: int = 0) -> None:
        super().__init__()
        self.locked_until = locked_until
        self.retry_after = retry_after


class InvalidResetToken(NewsdeskError):
    """Password reset token is unknown, mismatched, or expired (400)."""

    status_code = 400
    code = "invalid_reset_token"
    message = "Expired or invalid token."


class NotFound(NewsdeskError):
    status_code = 404
    code = "not_found"
    message = "Not found."


class StorageFailure(NewsdeskError):
    """The backing store timed out or is unavailable (503, retryable).

    Raised by the stores in place of the driver exception. Never to be read
    as "record not found".
    """

    status_code = 503
    code = "storage_unavailable"
    message = "Service temporarily unavailable. Retry shortly."
    retry_after: int = 5


class ConfigurationError(Exception):
    """Fatal misconfiguration detected at startup (e.g. missing SECRET_KEY)."""
