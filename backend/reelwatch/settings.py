from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

PERSIST_STRATEGIES = ("check_then_insert", "bulk")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        extra="ignore",
    )

    app_name: str = "reelwatch"
    environment: str = Field(default="local", validation_alias=AliasChoices("ENVIRONMENT", "REELWATCH_ENVIRONMENT"))
    database_url: str = Field(
        default="postgresql+asyncpg://postgres:postgres@db:5432/reelwatch",
        validation_alias=AliasChoices("DATABASE_URL", "REELWATCH_DATABASE_URL"),
    )
    apify_token: str | None = Field(default=None, validation_alias=AliasChoices("APIFY_TOKEN", "REELWATCH_APIFY_TOKEN"))
    apify_actor_id: str = Field(
        default="apify/instagram-reel-scraper",
        validation_alias=AliasChoices("APIFY_ACTOR_ID", "REELWATCH_APIFY_ACTOR_ID"),
    )
    actor_results_limit: int = Field(default=1000, validation_alias=AliasChoices("ACTOR_RESULTS_LIMIT", "REELWATCH_ACTOR_RESULTS_LIMIT"))
    actor_timeout_sec: int = Field(default=900, validation_alias=AliasChoices("ACTOR_TIMEOUT_SEC", "REELWATCH_ACTOR_TIMEOUT_SEC"))
    actor_poll_interval_sec: float = Field(default=5.0, validation_alias=AliasChoices("ACTOR_POLL_INTERVAL_SEC", "REELWATCH_ACTOR_POLL_INTERVAL_SEC"))
    # 0 disables the view floor
    min_views: int = Field(default=0, validation_alias=AliasChoices("MIN_VIEWS", "REELWATCH_MIN_VIEWS"))
    max_age_days: int = Field(default=180, validation_alias=AliasChoices("MAX_AGE_DAYS", "REELWATCH_MAX_AGE_DAYS"))
    dry_run: bool = Field(default=False, validation_alias=AliasChoices("DRY_RUN", "REELWATCH_DRY_RUN"))
    persist_strategy: str = Field(default="check_then_insert", validation_alias=AliasChoices("PERSIST_STRATEGY", "REELWATCH_PERSIST_STRATEGY"))
    source_concurrency: int = Field(default=1, validation_alias=AliasChoices("SOURCE_CONCURRENCY", "REELWATCH_SOURCE_CONCURRENCY"))
    scheduler_enabled: bool = Field(default=True, validation_alias=AliasChoices("SCHEDULER_ENABLED", "REELWATCH_SCHEDULER_ENABLED"))
    daily_run_cron: str = Field(default="0 6 * * *", validation_alias=AliasChoices("DAILY_RUN_CRON", "REELWATCH_DAILY_RUN_CRON"))
    telegram_bot_token: str | None = Field(default=None, validation_alias=AliasChoices("TELEGRAM_BOT_TOKEN", "REELWATCH_TELEGRAM_BOT_TOKEN"))
    telegram_chat_id: str | None = Field(default=None, validation_alias=AliasChoices("TELEGRAM_CHAT_ID", "REELWATCH_TELEGRAM_CHAT_ID"))
    log_level: str = Field(default="INFO", validation_alias=AliasChoices("LOG_LEVEL", "REELWATCH_LOG_LEVEL"))

    @property
    def async_database_url(self) -> str:
        if self.database_url.startswith("postgresql+"):
            return self.database_url
        if self.database_url.startswith("postgresql://"):
            return self.database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return self.database_url

    @property
    def view_floor(self) -> int | None:
        return self.min_views if self.min_views > 0 else None

    @property
    def age_ceiling_days(self) -> int | None:
        return self.max_age_days if self.max_age_days > 0 else None

    def require_apify_token(self) -> str:
        if not self.apify_token:
            raise ConfigurationError("APIFY_TOKEN missing")
        return self.apify_token

    def validate_for_run(self) -> None:
        """Fail fast on settings the daily run cannot start without."""
        if not self.dry_run:
            self.require_apify_token()
        if self.persist_strategy not in PERSIST_STRATEGIES:
            raise ConfigurationError(
                f"PERSIST_STRATEGY must be one of {', '.join(PERSIST_STRATEGIES)}, got {self.persist_strategy!r}"
            )
        if self.source_concurrency < 1:
            raise ConfigurationError("SOURCE_CONCURRENCY must be >= 1")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
