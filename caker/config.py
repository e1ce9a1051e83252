from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv
import logging

load_dotenv()
logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Persistent store; unset means memory-only
    REDIS_URL: Optional[str] = Field(default=None, description="Redis connection URL")

    CACHE_KEY_PREFIX: str = Field(default="com.Caker.", min_length=1)
    SWEEP_INTERVAL_SECONDS: float = Field(default=600, gt=0)

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)
    LOG_FILE: Optional[str] = Field(default=None)

    @field_validator("REDIS_URL")
    @classmethod
    def validate_redis_url(cls, v):
        if v is not None and not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("REDIS_URL must be a valid Redis connection string")
        return v


try:
    settings = Settings()
    logger.info("Configuration loaded successfully")
except Exception as e:
    logger.critical(f"Failed to load configuration: {str(e)}")
    raise
