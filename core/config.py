"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Newsdesk happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Dev mode generates a SECRET_KEY with a
      warning, production mode refuses to start without one.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. Access and refresh
  JWTs are both signed with it, so a short key weakens every session.

  Any validation failure is re-raised as ConfigurationError from
  get_settings(). It is a fatal startup error, never a per-request one.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, content/, or cache/.
"""

import logging
import secrets
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.errors import ConfigurationError

logger = logging.getLogger("newsdesk.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults (except SECRET_KEY outside DEBUG) so Settings()
    can be instantiated in test environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    database_url: str = "sqlite:///newsdesk.db"
    # Upper bound on how long a single storage call may wait for a lock.
    storage_timeout_seconds: float = Field(default=5.0, gt=0)

    # ------------------------------------------------------------------
    # Tokens and sessions
    # ------------------------------------------------------------------

    access_token_expire_seconds: int = Field(default=15 * 60, gt=0)
    refresh_token_expire_seconds: int = Field(default=7 * 24 * 3600, gt=0)
    reset_token_expire_seconds: int = Field(default=3600, gt=0)

    # None means "derive from DEBUG": secure everywhere except dev mode.
    secure_cookies: Optional[bool] = None
    cookie_samesite: Literal["lax", "strict", "none"] = "lax"
    refresh_cookie_name: str = "refresh_token"
    # Covers /auth/refresh and /auth/logout; nothing else receives the cookie.
    refresh_cookie_path: str = "/auth"

    # ------------------------------------------------------------------
    # Login protection
    # ------------------------------------------------------------------

    lockout_threshold: int = Field(default=5, ge=1)
    lockout_seconds: int = Field(default=10 * 60, gt=0)
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    login_rate_limit: str = "30/10minute"
    rate_limit_enabled: bool = True

    # ------------------------------------------------------------------
    # Bootstrap admin (createDefaultAdmin equivalent)
    # ------------------------------------------------------------------

    admin_email: str = ""
    admin_password: str = ""
    admin_name: str = "Default Admin"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cors_origins: list[str] = ["http://localhost:5173"]
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    view_throttle_seconds: float = Field(default=3.0, ge=0)
    view_throttle_max_entries: int = Field(default=10_000, gt=0)
    publish_interval_seconds: int = Field(default=60, gt=0)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Refresh tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def resolve_cookie_security(self) -> "Settings":
        """Default SECURE_COOKIES to the inverse of DEBUG when unset.

        SameSite=None is only honoured by browsers on Secure cookies, so that
        combination is rejected outright.
        """
        if self.secure_cookies is None:
            self.secure_cookies = not self.debug
        if self.cookie_samesite == "none" and not self.secure_cookies:
            raise ValueError("COOKIE_SAMESITE=none requires SECURE_COOKIES=true.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings() directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.

    Raises:
        ConfigurationError: the environment does not describe a usable configuration.
    """
    try:
        return Settings()
    except ValidationError as exc:
        raise ConfigurationError(str(exc)) from exc
