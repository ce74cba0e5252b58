from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # App
    app_name: str = "Driver Dispatch Client"
    env: str = "development"
    secret_key: str = "change-me"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 12

    # Backend API
    backend_base_url: str = "http://localhost:8000/v1"
    backend_api_key: str = ""
    backend_timeout_seconds: float = 10.0

    # Redis (decline ledger)
    redis_url: str = "redis://localhost:6379/0"

    # New Relic
    new_relic_license_key: str = ""
    new_relic_app_name: str = "Driver-Dispatch-Client"

    # Heartbeat throttle
    heartbeat_interval_ms: int = 20_000
    heartbeat_min_move_meters: float = 100.0

    # Request polling
    poll_interval_seconds: float = 10.0

    # Incoming request presentation
    presentation_debounce_seconds: float = 1.0
    countdown_seconds: int = 120
    countdown_tick_seconds: float = 1.0
    next_request_delay_seconds: float = 2.0

    # Decline policy: None keeps a declined request suppressed for the whole session
    decline_dedup_seconds: Optional[float] = None
    decline_ledger_backend: Literal["memory", "redis"] = "memory"

    # Active job status monitoring
    job_status_poll_seconds: float = 5.0
    job_status_max_retries: int = 3
    job_status_retry_delay_seconds: float = 1.0


@lru_cache
def get_settings() -> Settings:
    return Settings()
