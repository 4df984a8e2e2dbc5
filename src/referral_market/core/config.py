from __future__ import annotations

import uuid
from decimal import Decimal
from enum import StrEnum
from functools import lru_cache
from urllib.parse import quote_plus

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    computed_field,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from referral_market.core.constants import (
    DEFAULT_CURRENCY,
    DEFAULT_ENV_FILE,
    SECRETS_DIR,
    SERVICE_NAME,
)


class Environment(StrEnum):
    """Deployment environments supported by the service."""

    DEVELOPMENT = "development"
    TEST = "test"
    STAGING = "staging"
    PRODUCTION = "production"


class DatabaseSettings(BaseModel):
    """Database connectivity configuration."""

    model_config = ConfigDict(extra="ignore")

    url: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "DATABASE__URL", "database__url", "DATABASE_URL", "database_url", "url"
        ),
    )
    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: SecretStr = SecretStr("postgres")
    name: str = SERVICE_NAME.replace("-", "_")
    echo: bool = False

    @computed_field
    @property
    def dsn(self) -> str:
        """Assemble the SQLAlchemy async DSN."""
        if self.url is not None:
            return self.url

        password = quote_plus(self.password.get_secret_value())
        return (
            f"postgresql+asyncpg://{self.user}:{password}"
            f"@{self.host}:{self.port}/{self.name}"
        )


class PricingSettings(BaseModel):
    """Pricing settings cache configuration."""

    model_config = ConfigDict(extra="ignore")

    cache_ttl_seconds: float = Field(
        default=300.0,
        gt=0,
        validation_alias=AliasChoices(
            "PRICING__CACHE_TTL_SECONDS", "pricing__cache_ttl_seconds", "cache_ttl_seconds"
        ),
    )


class ReferralSettings(BaseModel):
    """Referral request lifecycle tuning."""

    model_config = ConfigDict(extra="ignore")

    expiration_days: int = Field(default=14, ge=1)
    daily_request_limit: int = Field(default=5, ge=1)
    quick_response_hours: int = Field(default=24, ge=1)
    proof_submission_points: int = Field(default=15, ge=0)
    quick_response_points: int = Field(default=10, ge=0)
    verification_points: int = Field(default=25, ge=0)


class PointsSettings(BaseModel):
    """Points to wallet conversion settings."""

    model_config = ConfigDict(extra="ignore")

    conversion_rate: Decimal = Field(default=Decimal("0.50"), gt=0)
    minimum_conversion: int = Field(default=1, ge=1)


class WalletSettings(BaseModel):
    """Wallet defaults."""

    model_config = ConfigDict(extra="ignore")

    currency: str = Field(default=DEFAULT_CURRENCY, min_length=3, max_length=3)


class ExpirationSettings(BaseModel):
    """Background expiration sweep configuration."""

    model_config = ConfigDict(extra="ignore")

    enabled: bool = False
    interval_minutes: int = Field(default=60, ge=1)
    batch_size: int = Field(default=100, ge=1, le=1000)


class AdminSettings(BaseModel):
    """Operators allowed to call the administrative endpoints."""

    model_config = ConfigDict(extra="ignore")

    user_ids: list[uuid.UUID] = Field(default_factory=list)


class PrometheusSettings(BaseSettings):
    """Prometheus metrics configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PROMETHEUS__",
        extra="ignore",
        case_sensitive=False,
    )

    enabled: bool = True
    metrics_path: str = "/metrics"
    should_group_status_codes: bool = True
    should_ignore_untemplated: bool = True
    should_group_untemplated: bool = True
    should_round_latency_decimals: bool = False
    should_respect_env_var: bool = False
    excluded_handlers: list[str] = Field(
        default_factory=lambda: ["/metrics", "/health", "/docs", "/redoc"]
    )


class SentrySettings(BaseSettings):
    """Sentry error tracking configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SENTRY__",
        extra="ignore",
        case_sensitive=False,
    )

    enabled: bool = True
    dsn: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "SENTRY_DSN",
            "sentry__dsn",
        ),
    )
    environment: str | None = None
    release: str | None = None
    sample_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    traces_sample_rate: float = Field(default=0.1, ge=0.0, le=1.0)
    send_default_pii: bool = False
    debug: bool = False


class Settings(BaseSettings):
    """Application settings loaded from the environment or secret stores."""

    model_config = SettingsConfigDict(
        env_file=DEFAULT_ENV_FILE,
        env_nested_delimiter="__",
        secrets_dir=SECRETS_DIR,
        extra="ignore",
        validate_default=True,
        case_sensitive=False,
    )

    environment: Environment = Environment.DEVELOPMENT
    debug: bool = False
    log_level: str = "INFO"

    project_name: str = "Referral Marketplace"
    project_description: str = (
        "Referral request lifecycle, wallet ledger and referrer rewards"
    )
    project_version: str = "0.1.0"
    docs_url: str | None = "/docs"
    redoc_url: str | None = "/redoc"
    openapi_url: str = "/openapi.json"

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    pricing: PricingSettings = Field(default_factory=PricingSettings)
    referrals: ReferralSettings = Field(default_factory=ReferralSettings)
    points: PointsSettings = Field(default_factory=PointsSettings)
    wallet: WalletSettings = Field(default_factory=WalletSettings)
    expiration: ExpirationSettings = Field(default_factory=ExpirationSettings)
    admin: AdminSettings = Field(default_factory=AdminSettings)
    prometheus: PrometheusSettings = Field(default_factory=PrometheusSettings)
    sentry: SentrySettings = Field(default_factory=SentrySettings)

    @model_validator(mode="after")
    def _normalize(self) -> Settings:
        self.log_level = self.log_level.upper()

        if self.environment in {Environment.DEVELOPMENT, Environment.TEST}:
            self.debug = True

        if self.sentry.environment is None:
            self.sentry.environment = self.environment.value

        if self.is_production and not self.admin.user_ids:
            raise ValueError("ADMIN__USER_IDS must be set in production")

        return self

    @computed_field
    @property
    def is_testing(self) -> bool:
        return self.environment is Environment.TEST

    @computed_field
    @property
    def is_production(self) -> bool:
        return self.environment is Environment.PRODUCTION


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached instance of the application settings."""

    return Settings()
