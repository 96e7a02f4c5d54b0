from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    App settings.

    Notes:
    - Defaults are local and deterministic (SQLite file next to the repo, dev JWT secret).
    - Every value can be overridden with a `SCOPEGUARD_*` environment variable.
    """

    model_config = SettingsConfigDict(env_prefix="SCOPEGUARD_", extra="ignore")

    db_url: str | None = None
    policy_config_path: str | None = None
    log_level: str = "INFO"

    # Bearer tokens (cached authorization claims)
    jwt_secret: str = "dev-only-change-me-0123456789abcdef"
    jwt_algorithm: str = "HS256"
    jwt_issuer: str = "scopeguard"
    token_ttl_seconds: int = 3600
    clock_skew_seconds: int = 30

    # Outbound email (best-effort). No webhook -> emails are only logged.
    email_webhook_url: str | None = None
    email_sender: str = "no-reply@scopeguard.local"
    email_timeout_seconds: int = 10

    def resolved_db_url(self) -> str:
        if self.db_url:
            return self.db_url

        repo_root = Path(__file__).resolve().parents[1]
        db_path = repo_root / "scopeguard.db"
        return f"sqlite:///{db_path}"

    def resolved_policy_config_path(self) -> Path:
        if self.policy_config_path:
            return Path(self.policy_config_path)

        repo_root = Path(__file__).resolve().parents[1]
        return repo_root / "config" / "policy.yaml"


@lru_cache
def get_settings() -> Settings:
    return Settings()
