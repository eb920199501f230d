from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AuthFetchSettings(BaseSettings):
    """Client defaults, overridable through AUTHFETCH_* environment variables."""

    model_config = SettingsConfigDict(env_prefix="AUTHFETCH_")

    base_url: str | None = None
    default_headers: dict[str, str] = Field(default_factory=dict)

    # Per-request timeout in milliseconds; None or <= 0 disables it
    timeout_ms: float | None = 30_000
    max_retry_attempts: int = Field(default=2, ge=0)

    # Bound on a single refresh operation, in milliseconds
    refresh_timeout_ms: float | None = None
