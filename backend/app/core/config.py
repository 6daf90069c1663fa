from functools import lru_cache
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from pydantic import AnyUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _ensure_sqlalchemy_postgres_scheme(value: str) -> str:
    if not value.lower().startswith("postgres"):
        return value

    parsed = urlparse(value)
    scheme = parsed.scheme.lower()
    if scheme in {"postgres", "postgresql"} or scheme not in {
        "postgresql+psycopg",
        "postgresql+asyncpg",
    }:
        scheme = "postgresql+psycopg"

    query_params = dict(parse_qsl(parsed.query, keep_blank_values=True))
    query_params.setdefault("sslmode", "require")
    return urlunparse(parsed._replace(scheme=scheme, query=urlencode(query_params, doseq=True)))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    debug: bool = Field(False, description="Echo SQL statements and enable verbose diagnostics")
    environment: str = Field(
        default="development",
        description="Runtime environment (development|staging|production)",
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum level written by the watchdog log sink",
    )
    database_url: AnyUrl | str = Field(
        default="sqlite:///../data/settlements.db",
        description="SQLAlchemy compatible database URL",
    )
    production_database_url: AnyUrl | str | None = Field(
        default=None,
        description="Postgres connection string used when ENVIRONMENT=production",
    )
    settlement_scan_interval_seconds: float = Field(
        default=300.0,
        description="Seconds between scheduled settlement scans",
        gt=0,
    )
    settlement_scan_on_start: bool = Field(
        default=False,
        description="Run one scan immediately when the scheduler starts",
    )
    settlement_cost_buffer_percent: int = Field(
        default=20,
        description="Safety margin added on top of the estimated finalize cost",
        ge=0,
        le=100,
    )
    settlement_creator_reward_bps: int = Field(
        default=500,
        description="Creator share of the staked pool in basis points (500 = 5%)",
        ge=0,
        le=10_000,
    )
    settlement_confirmation_timeout_seconds: float = Field(
        default=120.0,
        description="How long to wait for a finalize transaction to be confirmed",
        gt=0,
    )
    settlement_db_retry_attempts: int = Field(
        default=3,
        description="Attempts made when writing a settlement record hits a transient database error",
        ge=1,
    )
    settlement_db_retry_backoff_seconds: list[float] | tuple[float, ...] | str = Field(
        default_factory=lambda: [1.0, 2.0, 4.0],
        description="Comma-separated list or array of backoff delays (seconds) between record write attempts",
    )
    settlement_reconcile_on_scan: bool = Field(
        default=False,
        description="Run the unrecorded-market reconciliation sweep after every scheduled scan",
    )
    ledger_gateway_factory: str | None = Field(
        default=None,
        description="Dotted path ('package.module:callable') returning the host ledger gateway",
    )
    default_vote_stake: str = Field(
        default="100000000000000",
        description="Stake (smallest unit) assumed for recorded votes that do not carry one",
    )

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"LOG_LEVEL {value!r} is not a loguru level")
        return level

    @field_validator("production_database_url")
    @classmethod
    def _require_postgres_scheme(cls, value: Any) -> Any:
        if value is None:
            return value
        scheme = str(value).split(":", 1)[0].lower()
        if scheme not in {"postgres", "postgresql", "postgresql+psycopg", "postgresql+asyncpg"}:
            raise ValueError(
                "PRODUCTION_DATABASE_URL must be a PostgreSQL connection string (e.g. postgresql://...)."
            )
        return value

    @field_validator("ledger_gateway_factory")
    @classmethod
    def _validate_factory_path(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        module_name, sep, attribute = value.strip().partition(":")
        if not sep or not module_name or not attribute:
            raise ValueError("LEDGER_GATEWAY_FACTORY must look like 'package.module:callable'")
        return value.strip()

    @field_validator("default_vote_stake")
    @classmethod
    def _validate_stake(cls, value: str) -> str:
        if not value.strip().isdigit():
            raise ValueError("DEFAULT_VOTE_STAKE must be a non-negative integer string")
        return value.strip()

    @field_validator("settlement_db_retry_backoff_seconds", mode="before")
    @classmethod
    def _parse_retry_backoff(cls, value: Any) -> list[float]:
        if value in (None, "", []):
            return [1.0, 2.0, 4.0]
        if isinstance(value, str):
            value = [token.strip() for token in value.split(",") if token.strip()]
        if not isinstance(value, (list, tuple)):
            raise ValueError(
                "SETTLEMENT_DB_RETRY_BACKOFF_SECONDS must be a comma-separated string or list of numbers"
            )
        backoff: list[float] = []
        for item in value:
            try:
                delay = float(item)
            except (TypeError, ValueError) as exc:
                raise ValueError("SETTLEMENT_DB_RETRY_BACKOFF_SECONDS entries must be numeric") from exc
            if delay < 0:
                raise ValueError("SETTLEMENT_DB_RETRY_BACKOFF_SECONDS entries must not be negative")
            backoff.append(delay)
        if not backoff:
            raise ValueError("SETTLEMENT_DB_RETRY_BACKOFF_SECONDS must contain at least one value")
        return backoff

    @property
    def resolved_database_url(self) -> str:
        if self.environment.lower() == "production":
            if not self.production_database_url:
                raise ValueError(
                    "PRODUCTION_DATABASE_URL must be set when ENVIRONMENT=production"
                )
            return _ensure_sqlalchemy_postgres_scheme(str(self.production_database_url))
        return _ensure_sqlalchemy_postgres_scheme(str(self.database_url))

    @property
    def settlement_db_retry_backoff_schedule(self) -> tuple[float, ...]:
        sequence = tuple(float(value) for value in self.settlement_db_retry_backoff_seconds)
        if not sequence:
            return (1.0,)
        return sequence


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
