import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from hwsentry.services.retry import RetryPolicy

load_dotenv()


class Settings(BaseModel):
    # Extraction Service Configuration
    extraction_api_key: str = Field(default="", alias="EXTRACTION_API_KEY")
    extraction_base_url: str = Field(
        default="https://agent.tinyfish.ai", alias="EXTRACTION_BASE_URL"
    )
    fetch_timeout_seconds: float = Field(default=90.0, alias="FETCH_TIMEOUT")

    # Retry Configuration
    retry_max_attempts: int = Field(default=3, alias="RETRY_MAX_ATTEMPTS")
    retry_base_delay_seconds: float = Field(default=2.0, alias="RETRY_BASE_DELAY")
    retry_max_delay_seconds: float = Field(default=8.0, alias="RETRY_MAX_DELAY")
    retry_jitter: float = Field(default=0.0, alias="RETRY_JITTER")

    # Circuit Breaker Configuration
    breaker_failure_threshold: int = Field(default=3, alias="BREAKER_FAILURE_THRESHOLD")
    breaker_success_threshold: int = Field(default=2, alias="BREAKER_SUCCESS_THRESHOLD")
    breaker_recovery_seconds: float = Field(default=30.0, alias="BREAKER_RECOVERY")
    breaker_half_open_max_calls: int = Field(
        default=2, alias="BREAKER_HALF_OPEN_MAX_CALLS"
    )

    # Rate Limit Configuration
    rate_limit_max_requests: int = Field(default=5, alias="RATE_LIMIT_MAX_REQUESTS")
    rate_limit_window_seconds: float = Field(default=60.0, alias="RATE_LIMIT_WINDOW")

    # Cache Configuration
    cache_ttl_seconds: float = Field(default=3600.0, alias="CACHE_TTL")
    cache_fresh_seconds: float = Field(default=300.0, alias="CACHE_FRESH_WINDOW")
    history_limit: int = Field(default=10, alias="HISTORY_LIMIT")
    cache_debug: bool = Field(default=False, alias="CACHE_DEBUG")

    # Lock Configuration
    lock_ttl_seconds: float = Field(default=120.0, alias="LOCK_TTL")
    processing_budget_seconds: float = Field(default=10.0, alias="PROCESSING_BUDGET")
    lock_margin_seconds: float = Field(default=30.0, alias="LOCK_MARGIN")

    # Analytics Configuration
    analytics_response_samples: int = Field(default=100, alias="ANALYTICS_SAMPLES")
    analytics_recent_limit: int = Field(default=50, alias="ANALYTICS_RECENT_LIMIT")

    # Maintenance / API Configuration
    maintenance_interval_seconds: int = Field(
        default=60, alias="MAINTENANCE_INTERVAL"
    )
    catalog_path: str = Field(default="catalog.json", alias="CATALOG_PATH")
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")

    @property
    def worst_case_fetch_seconds(self) -> float:
        """Longest a single vendor fetch can take across all retry attempts."""
        backoff = self.retry_policy().worst_case_backoff() * (1 + self.retry_jitter)
        return self.retry_max_attempts * self.fetch_timeout_seconds + backoff

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            base_delay=self.retry_base_delay_seconds,
            max_delay=self.retry_max_delay_seconds,
            jitter=self.retry_jitter,
        )

    @property
    def effective_lock_ttl(self) -> float:
        """Lock TTL that outlasts the worst-case critical section."""
        derived = (
            self.worst_case_fetch_seconds
            + self.processing_budget_seconds
            + self.lock_margin_seconds
        )
        return max(self.lock_ttl_seconds, derived)


global_settings = Settings.model_validate(dict(os.environ))
