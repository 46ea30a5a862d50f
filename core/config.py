"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for HostAuth happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. Components
      never read it themselves; the app lifespan and the CLI read it once and
      pass plain values into SecretStore, TokenCodec, etc.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secrets_dir -> JWT_SECRETS_DIR).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Misconfiguration is a startup failure, never a runtime surprise.

Security notes:
  [P1] DEBUG is the posture switch. DEBUG=true is development: the fixed
       localhost signing secret is served. DEBUG unset/false is production:
       a request for "localhost" is refused because a forged Host header
       would otherwise get tokens signed with a publicly known key.

  [P2] The secrets directory must be absolute. A relative path would resolve
       against whatever the working directory happens to be at startup.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("hostauth.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    startup-safety rules.
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

    # ------------------------------------------------------------------
    # Per-domain JWT secrets
    # ------------------------------------------------------------------

    jwt_secrets_dir: Path = Path("/var/lib/hostauth/secrets")
    # 7 days. Cookie max-age follows the same value.
    token_expire_seconds: int = 7 * 24 * 3600

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    # Empty string means "use the default SQLite file next to auth/store.py".
    database_url: str = ""

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    frontend_url: str = "http://localhost:5175"
    # Empty string = host-only cookie.
    cookie_domain: str = ""
    secure_cookies: bool = False
    allowed_hosts: list[str] = ["*"]
    cors_origins: list[str] = ["http://localhost:5175"]
    login_rate_limit: str = "10/minute"
    password_min_length: int = 8

    # ------------------------------------------------------------------
    # Google OAuth (optional -- empty client id means the flow is disabled)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_client_secret: str = ""
    google_callback_url: str = ""
    oauth_http_timeout: float = 10.0
    oauth_state_ttl_seconds: int = 600
    oauth_state_reap_seconds: int = 60

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_startup_policy(self) -> "Settings":
        """Fail fast on configuration that would break auth at runtime.

        - Google client id and secret must be set together, and a callback
          URL is required once they are.
        - TTLs and intervals must be positive.
        - The secrets directory must be an absolute path [P2].

        In development posture a warning is logged once so nobody ships the
        localhost dev secret by accident [P1].
        """
        if bool(self.google_client_id) != bool(self.google_client_secret):
            raise ValueError("GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET must be set together.")
        if self.google_client_id and not self.google_callback_url:
            raise ValueError("GOOGLE_CALLBACK_URL is required when Google OAuth is configured.")
        for name in ("token_expire_seconds", "oauth_state_ttl_seconds", "oauth_state_reap_seconds"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name.upper()} must be a positive number of seconds.")
        if self.oauth_http_timeout <= 0:
            raise ValueError("OAUTH_HTTP_TIMEOUT must be positive.")
        if not self.jwt_secrets_dir.is_absolute():
            raise ValueError("JWT_SECRETS_DIR must be an absolute path.")
        if self.debug:
            logger.warning("WARNING: DEBUG=true -- localhost requests are signed with the built-in dev secret.")
        return self

    @property
    def google_enabled(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret)


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
