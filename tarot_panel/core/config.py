from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(720, alias="ACCESS_TOKEN_EXPIRE_MINUTES")
    refresh_token_expire_days: int = Field(30, alias="REFRESH_TOKEN_EXPIRE_DAYS")

    # Shared secret for scheduled jobs (?secret= or Bearer)
    cron_secret: Optional[str] = Field(None, alias="CRON_SECRET")

    attendance_csv_url: Optional[str] = Field(None, alias="ATTENDANCE_CSV_URL")
    csv_fetch_timeout_seconds: float = Field(30.0, alias="CSV_FETCH_TIMEOUT_SECONDS")
    sync_batch_size: int = Field(250, alias="SYNC_BATCH_SIZE")

    storage_dir: str = Field("./storage", alias="STORAGE_DIR")
    signed_url_expire_seconds: int = Field(3600, alias="SIGNED_URL_EXPIRE_SECONDS")
    invoice_logo_path: Optional[str] = Field(None, alias="INVOICE_LOGO_PATH")

    # EUR paid per attended minute, by call code
    rate_free_eur: float = Field(0.0, alias="RATE_FREE_EUR")
    rate_rueda_eur: float = Field(0.05, alias="RATE_RUEDA_EUR")
    rate_cliente_eur: float = Field(0.08, alias="RATE_CLIENTE_EUR")
    rate_repite_eur: float = Field(0.10, alias="RATE_REPITE_EUR")
    # BONUS_CAP_EUR=none disables the cap
    bonus_cap_eur: Optional[float] = Field(150.0, alias="BONUS_CAP_EUR")

    late_grace_minutes: int = Field(10, alias="LATE_GRACE_MINUTES")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    cors_allow_origins: List[str] = Field(default_factory=lambda: ["*"], alias="CORS_ALLOW_ORIGINS")

    admin_email: Optional[str] = Field(None, alias="ADMIN_EMAIL")
    admin_password: Optional[str] = Field(None, alias="ADMIN_PASSWORD")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_parse_none_str = "none"
        extra = "ignore"

    def rate_for(self, codigo: str) -> float:
        return float(getattr(self, f"rate_{codigo}_eur", 0.0))


settings = Settings()
