"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for CodeGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Dev mode generates missing signing keys
      with a warning; production mode refuses to start without them.

Security notes:
  Two signing keys. Access tokens are signed with SECRET_KEY and refresh
  tokens with REFRESH_SECRET_KEY. A leaked access key cannot mint refresh
  tokens, so the validator rejects configurations where the two are equal.

  Keys shorter than 32 chars are rejected outright. HMAC-SHA256 and JWT
  signing both rely on key entropy.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("codegate.config")

DEFAULT_DATABASE_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'codegate.db'}"

_MIN_KEY_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
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
    database_url: str = DEFAULT_DATABASE_URL

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    refresh_secret_key: str = ""
    # Keys the HMAC stored in place of raw codes and refresh tokens.
    # Falls back to refresh_secret_key when unset.
    code_hash_key: str = ""

    # ------------------------------------------------------------------
    # Tokens and codes
    # ------------------------------------------------------------------

    access_token_expire_seconds: int = 15 * 60
    refresh_token_expire_seconds: int = 7 * 24 * 60 * 60
    code_ttl_seconds: int = 5 * 60
    code_resend_seconds: int = 5 * 60

    # ------------------------------------------------------------------
    # Account policy
    # ------------------------------------------------------------------

    # Verification-code login creates the account on first use.
    auto_provision_on_login: bool = True
    registration_enabled: bool = True

    # ------------------------------------------------------------------
    # Email delivery (empty API key = log-only notifier in DEBUG, no delivery otherwise)
    # ------------------------------------------------------------------

    sendgrid_api_key: str = ""
    sendgrid_from_email: str = "noreply@example.com"
    mail_product_name: str = "CodeGate"

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    send_code_rate_limit: str = "5/minute"
    login_rate_limit: str = "10/minute"
    cors_origins: list[str] = ["http://localhost:3000"]
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    session_purge_interval_seconds: int = 60 * 60

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_signing_keys(self) -> "Settings":
        """Enforce the signing-key policy.

        Dev mode (DEBUG=true): auto-generate missing keys with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if either key is missing.

        Both modes: reject short keys and reject SECRET_KEY == REFRESH_SECRET_KEY.
        """
        for name in ("secret_key", "refresh_secret_key"):
            if getattr(self, name):
                continue
            if not self.debug:
                raise ValueError(
                    f"{name.upper()} is required in production mode. "
                    f"Set {name.upper()} in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
            setattr(self, name, secrets.token_hex(32))
            logger.warning("Using auto-generated %s. Sessions will not persist across restarts.", name.upper())

        if len(self.secret_key) < _MIN_KEY_LENGTH or len(self.refresh_secret_key) < _MIN_KEY_LENGTH:
            raise ValueError(f"SECRET_KEY and REFRESH_SECRET_KEY must be at least {_MIN_KEY_LENGTH} characters.")
        if self.secret_key == self.refresh_secret_key:
            raise ValueError("SECRET_KEY and REFRESH_SECRET_KEY must be different.")
        if not self.code_hash_key:
            self.code_hash_key = self.refresh_secret_key
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
