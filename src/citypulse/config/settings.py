"""Application settings loaded from environment."""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Strongly typed settings for the pipeline."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Cold tier (Postgres)
    database_url: Optional[str] = Field(default=None, alias="DATABASE_URL")
    pghost: Optional[str] = Field(default=None, alias="PGHOST")
    pgport: int = Field(default=5432, alias="PGPORT")
    pguser: Optional[str] = Field(default=None, alias="PGUSER")
    pgpassword: Optional[str] = Field(default=None, alias="PGPASSWORD")
    pgdatabase: Optional[str] = Field(default=None, alias="PGDATABASE")
    cold_write_max_workers: int = Field(default=4, alias="COLD_WRITE_MAX_WORKERS")

    # Hot tier (Redis)
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    hot_key_prefix: str = Field(default="citypulse", alias="HOT_KEY_PREFIX")

    # Enrichment (Gemini)
    google_api_key: Optional[str] = Field(default=None, alias="GOOGLE_API_KEY")
    gemini_api_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        alias="GEMINI_API_BASE_URL",
    )
    gemini_model_id: str = Field(default="gemini-2.0-flash", alias="GEMINI_MODEL_ID")
    gemini_temperature: float = Field(default=0.2, alias="GEMINI_TEMPERATURE")
    gemini_max_output_tokens: int = Field(default=1024, alias="GEMINI_MAX_OUTPUT_TOKENS")
    gemini_max_retries: int = Field(default=2, alias="GEMINI_MAX_RETRIES")
    gemini_retry_sleep_seconds: float = Field(default=0.5, alias="GEMINI_RETRY_SLEEP_SECONDS")
    enrichment_prompt_version: str = Field(default="v001", alias="ENRICHMENT_PROMPT_VERSION")
    enrichment_timeout_seconds: float = Field(default=5.0, alias="ENRICHMENT_TIMEOUT_SECONDS")
    enrichment_max_workers: int = Field(default=8, alias="ENRICHMENT_MAX_WORKERS")

    # SerpApi
    serpapi_api_key: Optional[str] = Field(default=None, alias="SERPAPI_API_KEY")
    serpapi_base_url: str = Field(default="https://serpapi.com/search", alias="SERPAPI_BASE_URL")
    serpapi_timeout_seconds: int = Field(default=30, alias="SERPAPI_TIMEOUT_SECONDS")
    serpapi_max_results: int = Field(default=10, alias="SERPAPI_MAX_RESULTS")
    serpapi_max_retries: int = Field(default=3, alias="SERPAPI_MAX_RETRIES")
    serpapi_language: str = Field(default="en", alias="SERPAPI_LANGUAGE")
    serpapi_country: str = Field(default="in", alias="SERPAPI_COUNTRY")
    serpapi_google_domain: str = Field(default="google.co.in", alias="SERPAPI_GOOGLE_DOMAIN")

    # Scheduler
    high_priority_interval_minutes: int = Field(
        default=15, alias="HIGH_PRIORITY_INTERVAL_MINUTES"
    )
    standard_interval_minutes: int = Field(default=60, alias="STANDARD_INTERVAL_MINUTES")
    emergency_interval_minutes: int = Field(default=5, alias="EMERGENCY_INTERVAL_MINUTES")
    sweep_interval_minutes: int = Field(default=30, alias="SWEEP_INTERVAL_MINUTES")
    high_priority_window_minutes: int = Field(default=10, alias="HIGH_PRIORITY_WINDOW_MINUTES")
    standard_window_minutes: int = Field(default=45, alias="STANDARD_WINDOW_MINUTES")
    emergency_window_minutes: int = Field(default=3, alias="EMERGENCY_WINDOW_MINUTES")

    # Read fallback
    fallback_freshness_hours: int = Field(default=6, alias="FALLBACK_FRESHNESS_HOURS")
    fallback_min_results: int = Field(default=3, alias="FALLBACK_MIN_RESULTS")
    high_activity_areas: str = Field(
        default="Koramangala,HSR Layout,Indiranagar,Whitefield,Electronic City,Marathahalli",
        alias="HIGH_ACTIVITY_AREAS",
    )
    high_activity_categories: str = Field(
        default="TRAFFIC,PUBLIC_TRANSPORT,WEATHER",
        alias="HIGH_ACTIVITY_CATEGORIES",
    )
    cold_query_default_days: int = Field(default=7, alias="COLD_QUERY_DEFAULT_DAYS")

    # Fan-out
    fanout_idle_timeout_minutes: int = Field(default=30, alias="FANOUT_IDLE_TIMEOUT_MINUTES")
    fanout_queue_size: int = Field(default=100, alias="FANOUT_QUEUE_SIZE")

    # Runtime
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    run_env: str = Field(default="local", alias="RUN_ENV")

    def get_database_url(self) -> str:
        """Return a usable database URL or raise."""
        if self.database_url:
            return self.database_url

        if all([self.pghost, self.pguser, self.pgpassword, self.pgdatabase]):
            return (
                "postgresql://"
                f"{self.pguser}:{self.pgpassword}@{self.pghost}:{self.pgport}/"
                f"{self.pgdatabase}"
            )

        raise ValueError("DATABASE_URL or PG* env vars must be set")

    def has_database(self) -> bool:
        return bool(self.database_url or self.pghost)

    def high_activity_area_set(self) -> set[str]:
        """Lowercased area names that normally produce many events."""
        return {area.lower() for area in _split_csv(self.high_activity_areas)}

    def high_activity_category_set(self) -> set[str]:
        return {category.upper() for category in _split_csv(self.high_activity_categories)}
