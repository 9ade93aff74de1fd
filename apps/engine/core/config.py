"""
Engine settings, read from the environment (and .env) and validated once
at import.

Algorithmic constants (detector thresholds, effect sizes, protocol
multipliers) live beside the algorithms; only operational knobs belong here.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Engine settings with validation."""

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text

    # Streaming session buffers
    # 300 samples = 5 minutes at 1 Hz
    STREAM_BUFFER_CAPACITY: int = Field(default=300, ge=1, le=3600)
    # Buffer length required before fatigue detection runs
    STREAM_FATIGUE_MIN_POINTS: int = Field(default=30, ge=1)
    # Most recent samples handed to the fatigue detector
    STREAM_FATIGUE_LOOKBACK: int = Field(default=60, ge=1)
    # Trailing samples that must all be idle to raise an inactivity alert
    STREAM_INACTIVITY_WINDOW: int = Field(default=5, ge=1)


# Global settings instance
settings = Settings()
