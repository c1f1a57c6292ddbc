"""Service settings loaded from environment variables or a .env file."""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: str = Field(default="development")

    # Database
    db_name: str = Field(default="contacts.db")
    lock_timeout: float = Field(default=5.0, gt=0)

    # Conflict handling
    max_retries: int = Field(default=3, ge=0)

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_format: Literal["json", "text"] = Field(default="text")

    # Rate limiting, per client IP
    rate_limit_window_seconds: float = Field(default=900, gt=0)
    rate_limit_requests: Optional[int] = Field(default=None, gt=0)

    @property
    def rate_limit_max_requests(self) -> int:
        if self.rate_limit_requests is not None:
            return self.rate_limit_requests
        return 100 if self.environment == "production" else 1000


@lru_cache
def get_settings() -> Settings:
    return Settings()
