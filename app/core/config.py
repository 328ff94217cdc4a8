from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # Receipt numbers look like RCP-2026-000042
    receipt_prefix: str = Field("RCP", alias="RECEIPT_PREFIX")
    # Day of month on which each instalment falls due (clamped to month length)
    fee_due_day: int = Field(10, ge=1, le=31, alias="FEE_DUE_DAY")
    default_page_size: int = Field(50, ge=1, le=500, alias="DEFAULT_PAGE_SIZE")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
