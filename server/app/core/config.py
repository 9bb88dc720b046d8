# pyright: reportMissingImports=false

from __future__ import annotations

from functools import lru_cache
import json
from typing import ClassVar, cast

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_DEV_ACCESS_TOKEN_SECRET = "dev-secret-change-me"


class Settings(BaseSettings):
    """Environment-driven settings with local dev defaults."""

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=None,
        case_sensitive=False,
        extra="ignore",
    )

    api_v1_prefix: str = "/api/v1"
    log_level: str = "INFO"

    env: str = "dev"

    cors_allowed_origins: list[str] = Field(default_factory=list)
    trusted_hosts: list[str] = Field(default_factory=list)

    # Auth (JWT) settings
    auth_access_token_secret: str = _DEV_ACCESS_TOKEN_SECRET
    auth_access_token_ttl_seconds: int = 900
    auth_refresh_token_ttl_days: int = 30

    auth_rate_limit_enabled: bool = True
    auth_rate_limit_max_failures: int = 5
    auth_rate_limit_window_seconds: int = 300

    # The single privileged principal; matched case-insensitively.
    owner_email: str | None = None

    invite_redeem_rate_limit_enabled: bool = True
    invite_redeem_rate_limit_max_attempts: int = 5
    invite_redeem_rate_limit_window_seconds: int = 60

    invite_code_prefix: str = "STARGATE"

    audit_log_retention_days: int = 90

    coach_mode: str = "fake"
    coach_timeout_seconds: float = 30.0
    coach_max_tokens: int = 1024
    openai_base_url: str | None = None
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"

    # Prefer DATABASE_URL when provided; otherwise construct from POSTGRES_* vars.
    database_url: str | None = None
    postgres_db: str = "stargate"
    postgres_user: str = "stargate"
    postgres_password: str = "stargate"
    postgres_host: str = "localhost"
    postgres_port: int = 5432

    @field_validator("owner_email", mode="before")
    @classmethod
    def _blank_owner_email_is_unset(cls, v: object) -> str | None:
        if v is None:
            return None
        s = str(v).strip()
        return s or None

    @field_validator("cors_allowed_origins", "trusted_hosts", mode="before")
    @classmethod
    def _parse_listish_env(cls, v: object) -> list[str]:
        if v is None:
            return []
        if isinstance(v, list):
            v_list = cast(list[object], v)
            return [str(x).strip() for x in v_list if str(x).strip()]
        if isinstance(v, str):
            raw = v.strip()
            if raw == "":
                return []
            if raw.startswith("["):
                try:
                    parsed: object = cast(object, json.loads(raw))
                except ValueError:
                    parsed = None
                if isinstance(parsed, list):
                    parsed_list = cast(list[object], parsed)
                    return [str(x).strip() for x in parsed_list if str(x).strip()]
            return [s.strip() for s in raw.replace("\n", ",").split(",") if s.strip()]
        return [str(v).strip()] if str(v).strip() else []

    @property
    def sqlalchemy_database_uri(self) -> str:
        if self.database_url:
            url = self.database_url
            # Hosted Postgres providers still hand out the legacy scheme.
            if url.startswith("postgres://"):
                url = "postgresql+psycopg://" + url.removeprefix("postgres://")
            return url
        return (
            f"postgresql+psycopg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def owner_email_normalized(self) -> str | None:
        if self.owner_email is None:
            return None
        return self.owner_email.strip().lower()

    def _is_prod_env(self) -> bool:
        return self.env.strip().lower() in ("prod", "production")

    @model_validator(mode="after")
    def _validate_prod_config(self) -> "Settings":
        if not self._is_prod_env():
            return self

        problems: list[str] = []

        if self.auth_access_token_secret.strip() in ("", _DEV_ACCESS_TOKEN_SECRET):
            problems.append(
                f"AUTH_ACCESS_TOKEN_SECRET must be set in production (cannot use default '{_DEV_ACCESS_TOKEN_SECRET}')."
            )
        if self.coach_mode.strip().lower() == "fake":
            problems.append("COACH_MODE=fake is forbidden in production. Set COACH_MODE=openai.")
        if self.owner_email is None:
            problems.append("OWNER_EMAIL must be set in production.")

        if problems:
            details = "\n".join(f"- {p}" for p in problems)
            raise ValueError(
                f"Production settings validation failed (ENV={self.env!r}). Fix the following before starting the server:\n"
                + details
            )

        return self

    @model_validator(mode="after")
    def _validate_coach_config(self) -> "Settings":
        mode = self.coach_mode.strip().lower()
        if mode not in ("fake", "openai"):
            raise ValueError("COACH_MODE must be one of: fake, openai")
        if mode == "openai":
            if not (self.openai_base_url and self.openai_base_url.strip()):
                raise ValueError("OPENAI_BASE_URL must be set when COACH_MODE=openai")
            if not (self.openai_api_key and self.openai_api_key.strip()):
                raise ValueError("OPENAI_API_KEY must be set when COACH_MODE=openai")
        if self.coach_timeout_seconds <= 0:
            raise ValueError("COACH_TIMEOUT_SECONDS must be > 0")
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
