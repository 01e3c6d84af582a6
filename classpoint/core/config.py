from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")
    db_pool_timeout: int = Field(10, alias="DB_POOL_TIMEOUT")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    cors_origins: str = Field("*", alias="CORS_ORIGINS")

    # Compare-and-swap attempts on a student balance before giving up.
    ledger_max_retries: int = Field(3, alias="LEDGER_MAX_RETRIES")

    # Used until an explicit thresholds update has been saved.
    level_nay_mam: int = Field(50, alias="LEVEL_NAY_MAM")
    level_cay_con: int = Field(100, alias="LEVEL_CAY_CON")
    level_cay_to: int = Field(200, alias="LEVEL_CAY_TO")

    stats_timezone: str = Field("Asia/Ho_Chi_Minh", alias="STATS_TIMEZONE")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


settings = Settings()
