from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # App settings
    PROJECT_NAME: str = "HouseholdInsights"
    API_PREFIX: str = "/api"
    DEBUG: bool = Field(default=False)
    LOG_LEVEL: str = Field(default="INFO")

    # Category suggestions
    SUGGESTION_HISTORY_LIMIT: int = Field(default=500)

    # Expense forecast
    FORECAST_DEFAULT_MONTHS: int = Field(default=3)
    FORECAST_MAX_MONTHS: int = Field(default=12)
    FORECAST_JITTER_ENABLED: bool = Field(default=True)
    FORECAST_JITTER_SEED: Optional[int] = Field(default=None)

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)


settings = Settings()
