"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from typing import Literal
from urllib.parse import unquote

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # DataForSEO API
    dataforseo_login: str = Field(default="", description="DataForSEO API login")
    dataforseo_password: SecretStr = Field(default=SecretStr(""), description="DataForSEO API password")
    dataforseo_base_url: str = Field(
        default="https://api.dataforseo.com", description="DataForSEO API base URL"
    )
    dataforseo_timeout: float = Field(
        default=120.0, description="Timeout in seconds for task_post requests"
    )

    # Demand classifier (OpenRouter)
    openrouter_api_key: SecretStr = Field(default=SecretStr(""), description="OpenRouter API key")
    openrouter_model: str = Field(
        default="anthropic/claude-3-haiku", description="Model used for demand classification"
    )
    classifier_cache_size: int = Field(
        default=1024, description="Maximum cached demand assessments per process"
    )

    # Database
    database_url: str = Field(
        default="sqlite:///data/trends.db",
        description="Database connection URL",
    )

    # Public URL used to build the provider postback URL
    app_url: str = Field(default="", description="Public base URL of this service")

    # Discovery scope
    trends_markets: str = Field(
        default="global", description="Comma-separated market codes (e.g. 'us,gb,de')"
    )
    trends_timeframes: str = Field(
        default="past_7_days", description="Comma-separated Google Trends time ranges"
    )

    # Spike detection
    new_keyword_window_hours: int = Field(default=72, description="Recent window for spike analysis")
    baseline_max_before_window: float = Field(
        default=10.0, description="Highest baseline value still considered 'new'"
    )
    min_spike_value: float = Field(default=20.0, description="Minimum recent value for a spike")
    hot_keyword_window_hours: int = Field(default=24, description="Window for the '24h' priority")
    new_keyword_max_age_hours: int = Field(
        default=72, description="Maximum age of first_seen for a keyword to count as new"
    )
    spike_decay_window_hours: int = Field(default=12, description="Trailing window for decay checks")
    spike_decay_max_value: float = Field(default=5.0, description="Value at/below which a spike has decayed")

    # Expansion
    rising_queue_threshold: float = Field(
        default=100.0, description="Minimum rising value for a child query"
    )
    max_discovery_depth: int = Field(default=2, description="Maximum recursive expansion depth")
    task_post_batch_size: int = Field(default=100, description="Tasks per task_post request")

    # Seeding
    news_keyword_window_hours: int = Field(default=48, description="News lookback for keyword seeds")
    news_keyword_max_seeds: int = Field(default=20, description="Maximum news keyword seeds per run")
    candidate_seed_limit: int = Field(default=40, description="Maximum approved candidate seeds per run")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    log_format: Literal["json", "text"] = Field(default="text", description="Log output format")

    @property
    def dataforseo_credentials(self) -> tuple[str, str]:
        """Get DataForSEO credentials as tuple."""
        return (self.dataforseo_login, self.dataforseo_password.get_secret_value())

    @property
    def classifier_configured(self) -> bool:
        """Check if the demand classifier has an API key."""
        return bool(self.openrouter_api_key.get_secret_value())

    @property
    def markets(self) -> list[str]:
        """Configured markets, lower-cased. Falls back to ['global']."""
        markets = [item.lower() for item in _split_csv(self.trends_markets)]
        return markets or ["global"]

    @property
    def timeframes(self) -> list[str]:
        """Configured timeframes, normalized to provider time_range keys."""
        from trend_scout.analysis.series import normalize_timeframe

        timeframes = _split_csv(self.trends_timeframes) or ["past_7_days"]
        return [unquote(normalize_timeframe(item)) for item in timeframes]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
