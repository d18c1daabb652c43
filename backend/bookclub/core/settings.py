from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    app_base_url: str = "http://localhost:8000"
    web_base_url: str = "http://localhost:5173"
    allowed_origins: str = ""
    allowed_hosts: str = ""
    allowed_return_urls: str = ""

    cookie_secure: bool = False
    log_level: str = "INFO"

    database_url: str
    session_secret_key: str

    session_ttl_hours: int = Field(default=24, gt=0)
    oauth_state_ttl_minutes: int = Field(default=10, gt=0)

    oidc_issuer: str = "https://accounts.google.com"
    oidc_client_id: str = ""
    oidc_client_secret: str = ""
    oidc_redirect_uri: str = ""
    oidc_http_timeout_seconds: float = Field(default=10.0, gt=0)
    oidc_require_verified_email: bool = True


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


def _split_csv(value: str) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


def parse_allowed_origins(settings: Settings) -> list[str]:
    if settings.allowed_origins.strip():
        origins = _split_csv(settings.allowed_origins)
        if "*" in origins:
            # Credentials are sent cross-origin, so a wildcard is never acceptable.
            raise ValueError("ALLOWED_ORIGINS must not contain '*'")
        return origins
    # Default to common local dev origins.
    return list({settings.web_base_url, "http://localhost:5173", "http://127.0.0.1:5173"})


def parse_allowed_hosts(settings: Settings) -> list[str]:
    if settings.allowed_hosts.strip():
        return _split_csv(settings.allowed_hosts)
    # Default for local dev + tests.
    return ["localhost", "127.0.0.1", "testserver"]


def parse_allowed_return_urls(settings: Settings) -> list[str]:
    if settings.allowed_return_urls.strip():
        return _split_csv(settings.allowed_return_urls)
    return [settings.web_base_url]


def oidc_redirect_uri(settings: Settings) -> str:
    if settings.oidc_redirect_uri:
        return settings.oidc_redirect_uri
    return f"{settings.app_base_url.rstrip('/')}/api/auth/callback"
