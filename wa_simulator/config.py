"""Application configuration loaded from environment variables and .env file."""

from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

PACKAGE_DIR = Path(__file__).resolve().parent


class Settings(BaseSettings):
    """Application settings.

    Values are loaded from environment variables first,
    then from a .env file in the project root as fallback.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # Scenario catalog
    SCENARIO_DIR: Path = PACKAGE_DIR / "data" / "scenarios"
    DEFAULT_SCENARIO: Optional[str] = "restaurant_reservation"

    # Playback
    AUTO_RESTART_DELAY_MS: Optional[float] = None
    FAST_MODE: bool = False

    # Flow execution
    FLOW_MAX_EXECUTION_MS: float = 30000
    FLOW_AUTO_COMPLETE: bool = True
    FLOW_MOCK_EXECUTION_DELAY_MS: float = 2000

    EVENT_LOG_SIZE: int = 100


settings = Settings()
