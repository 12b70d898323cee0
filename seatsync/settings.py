from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(populate_by_name=True, extra="ignore")

    # Primary backend (low-latency database service)
    primary_base_url: str = Field(
        default="http://localhost:54321/rest/v1", alias="PRIMARY_BASE_URL"
    )
    primary_api_key: str = Field(default="", alias="PRIMARY_API_KEY")
    primary_timeout: float = Field(default=20.0, alias="PRIMARY_TIMEOUT")

    # Secondary backend (legacy callback service), comma separated
    secondary_urls: str = Field(default="", alias="SECONDARY_URLS")
    secondary_timeout: float = Field(default=20.0, alias="SECONDARY_TIMEOUT")
    secondary_late_response_grace: float = Field(
        default=60.0, alias="SECONDARY_LATE_RESPONSE_GRACE"
    )
    secondary_url_rotation_interval: float = Field(
        default=300.0, alias="SECONDARY_URL_ROTATION_INTERVAL"
    )
    secondary_max_failures: int = Field(default=3, alias="SECONDARY_MAX_FAILURES")
    secondary_recovery_window: float = Field(
        default=300.0, alias="SECONDARY_RECOVERY_WINDOW"
    )

    # Request cache / scheduler
    cache_ttl: float = Field(default=60.0, alias="CACHE_TTL")
    cache_max_size: int = Field(default=500, alias="CACHE_MAX_SIZE")
    max_concurrent_requests: int = Field(default=5, alias="MAX_CONCURRENT_REQUESTS")

    # Retry policy for the primary backend
    retry_attempts: int = Field(default=2, alias="RETRY_ATTEMPTS")
    retry_base_delay: float = Field(default=0.3, alias="RETRY_BASE_DELAY")
    retry_max_delay: float = Field(default=2.0, alias="RETRY_MAX_DELAY")
    retry_jitter: bool = Field(default=True, alias="RETRY_JITTER")

    # Circuit breaker
    breaker_threshold: int = Field(default=5, alias="BREAKER_THRESHOLD")
    breaker_cooldown: float = Field(default=30.0, alias="BREAKER_COOLDOWN")

    # Offline queue
    offline_max_age: float = Field(default=300.0, alias="OFFLINE_MAX_AGE")
    offline_max_attempts: int = Field(default=3, alias="OFFLINE_MAX_ATTEMPTS")
    offline_max_queue_size: int = Field(default=200, alias="OFFLINE_MAX_QUEUE_SIZE")
    defer_writes_on_network_failure: bool = Field(
        default=True, alias="DEFER_WRITES_ON_NETWORK_FAILURE"
    )

    # Connectivity monitoring
    probe_url: str = Field(default="", alias="PROBE_URL")
    probe_interval: float = Field(default=30.0, alias="PROBE_INTERVAL")
    probe_timeout: float = Field(default=5.0, alias="PROBE_TIMEOUT")
    reconnect_max_attempts: int = Field(default=10, alias="RECONNECT_MAX_ATTEMPTS")
    reconnect_base_delay: float = Field(default=1.0, alias="RECONNECT_BASE_DELAY")
    reconnect_max_delay: float = Field(default=30.0, alias="RECONNECT_MAX_DELAY")

    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///./seatsync.db", alias="DATABASE_URL"
    )
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    debug: bool = Field(default=False, alias="DEBUG")

    @property
    def secondary_url_list(self) -> list[str]:
        return [u.strip() for u in self.secondary_urls.split(",") if u.strip()]


global_settings = Settings()
