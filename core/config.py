"""
core/config.py -- Gatehouse settings, read once from the environment.

Every knob lives on Settings (pydantic-settings). Field names map to upper-case
environment variables or .env entries: lockout_threshold <- LOCKOUT_THRESHOLD.
Nothing else in the tree reads os.environ; call get_settings().

get_settings() is lru_cached, so the whole process sees one Settings object.
List and dict fields (DEFAULT_ROLES, ROLE_PERMISSIONS) are given as JSON.

SECRET_KEY policy, enforced by validate_secret_key():
  [M6] Keys shorter than 32 characters are refused. The key signs access
       tokens (HS256) and keys the refresh-token HMAC digest.
  [M7] With DEBUG off, a missing key stops startup. A generated key would
       orphan every stored refresh digest on the next restart. With DEBUG on,
       a random key is generated and a warning logged.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("gatehouse.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'gatehouse_auth.db'}"


class Settings(BaseSettings):
    """Runtime configuration. Every field has a default except SECRET_KEY outside DEBUG."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # "" means unset; validate_secret_key replaces it or raises
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    access_token_expire_seconds: int = Field(default=900, gt=0)
    refresh_token_expire_seconds: int = Field(default=7 * 24 * 3600, gt=0)

    # ------------------------------------------------------------------
    # Credentials and lockout
    # ------------------------------------------------------------------

    # bcrypt cost factor: 2**rounds iterations. bcrypt accepts 4..31.
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    lockout_threshold: int = Field(default=5, ge=1)
    require_email_verification: bool = False
    # True: "Alice" and "alice" are different usernames. False: duplicate
    # checks and login lookups compare lower-cased values.
    identifiers_case_sensitive: bool = True

    # ------------------------------------------------------------------
    # Authorization collaborator
    # ------------------------------------------------------------------

    default_roles: list[str] = Field(default_factory=lambda: ["USER"])
    role_permissions: dict[str, list[str]] = Field(
        default_factory=lambda: {
            "USER": [],
            "ADMIN": ["users:READ", "users:UPDATE"],
        }
    )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    session_sweep_interval_seconds: int = Field(default=3600, gt=0)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Fill in or reject SECRET_KEY [M6] [M7]."""
        if not self.secret_key and not self.debug:
            raise ValueError(
                "SECRET_KEY is required in production mode. "
                "Set it in the environment or .env, or set DEBUG=true for local development."
            )
        if not self.secret_key:
            self.secret_key = secrets.token_urlsafe(48)
            logger.warning("DEBUG: generated a throwaway SECRET_KEY; refresh sessions end on restart")
        if len(self.secret_key) < 32:
            raise ValueError(f"SECRET_KEY must be at least 32 characters (got {len(self.secret_key)}).")
        return self


@lru_cache
def get_settings() -> Settings:
    """Process-wide Settings. Tests that change the environment call get_settings.cache_clear()."""
    return Settings()
