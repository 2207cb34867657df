# booking_core/app/config.py

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[2]  # repository root


class Settings(BaseSettings):
    database_url: str = "sqlite:///./data/booking_core.db"
    redis_url: str = "redis://localhost:6379/0"

    provider_directory_url: str = "http://localhost:8000"
    provider_directory_timeout: float = 5.0
    provider_directory_retries: int = 3

    availability_cache_ttl: int = 300
    idempotency_ttl: int = 600
    booking_query_cache_ttl: int = 120

    # auto: test the backend once at startup
    transactions: Literal["auto", "enabled", "disabled"] = "auto"

    maintenance_interval: int = 3600  # seconds between maintenance passes
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        extra="ignore",
    )

    @property
    def resolved_database_url(self) -> str:
        url = self.database_url
        if url.startswith("sqlite:///./"):
            relative_path = url.replace("sqlite:///./", "")
            absolute_path = BASE_DIR / relative_path
            absolute_path.parent.mkdir(parents=True, exist_ok=True)
            return f"sqlite:///{absolute_path}"
        return url


settings = Settings()
