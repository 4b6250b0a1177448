"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for micro-crm happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, oidc_issuer -> OIDC_ISSUER).

  @model_validator(mode="after"): Enforces the SECRET_KEY policy. Dev mode
      generates a key with a warning, production mode refuses to start
      without one. A pydantic ValidationError raised here aborts startup.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. HS256 session
       tokens rely on key entropy.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

  OIDC is optional. If any of the five OIDC_* parameters is empty, federated
  login is disabled with a warning at startup -- never a startup failure.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, cache/, or crm/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("microcrm.config")

_DATA_DIR = Path(__file__).resolve().parent.parent / "data"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields except SECRET_KEY have working defaults so Settings() can be
    instantiated in development without a real .env file.
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

    database_url: str = f"sqlite:///{_DATA_DIR / 'micro-crm.db'}"
    token_store_path: str = str(_DATA_DIR / "id_tokens.db")

    # Front-end base URL: OIDC callback redirects and post-logout landing page.
    web_ui_base_url: str = "http://localhost:5173"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12
    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # OIDC (optional -- any empty value disables federated login)
    # ------------------------------------------------------------------

    oidc_issuer: str = ""
    oidc_client_id: str = ""
    oidc_client_secret: str = ""
    oidc_redirect_uri: str = ""
    oidc_logout_url: str = ""
    oidc_timeout_seconds: float = 10.0
    # Off by default: the callback does not check the state value. Turning
    # this on binds the state to the signed session cookie.
    oidc_verify_state: bool = False

    @property
    def oidc_enabled(self) -> bool:
        """True only when every OIDC parameter needed for the flow is set."""
        return all(
            (
                self.oidc_issuer,
                self.oidc_client_id,
                self.oidc_client_secret,
                self.oidc_redirect_uri,
                self.oidc_logout_url,
            )
        )

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Session tokens will not survive a restart.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
