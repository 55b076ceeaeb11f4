from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "payflow"
    LOG_LEVEL: str = "INFO"
    # Comma-separated origins for CORS. If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""

    SECRET_KEY: str

    DATABASE_URL: str

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v

    @field_validator("LOG_LEVEL", mode="after")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return (v or "INFO").strip().upper()

    APP_PUBLIC_URL: str = "http://localhost:3000"  # used for P24 urlReturn / urlStatus

    # Przelewy24 (REST API v1, Basic auth POS id + API key)
    P24_MERCHANT_ID: str = ""
    P24_POS_ID: str = ""
    P24_API_KEY: str = ""
    P24_CRC: str = ""
    P24_SANDBOX: bool = True
    P24_TIMEOUT: int = 25
    P24_CURRENCY: str = "PLN"
    P24_COUNTRY: str = "PL"
    P24_LANGUAGE: str = "pl"

    # An initiation claim older than this is treated as abandoned (crashed worker).
    PAYMENT_CLAIM_TTL_SECONDS: int = 120


settings = Settings()
