from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parent.parent.parent
ENV_FILE = BASE_DIR / ".env"


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    PROJECT_NAME: str = "Yield Cycle OTP"
    API_V1_PREFIX: str = "/api/v1"

    DATABASE_URL: str = Field(default="sqlite:///" + str(BASE_DIR / "otp.db"))
    DATABASE_TIMEOUT_SECONDS: float = Field(default=5.0, gt=0)
    REDIS_URL: Optional[str] = Field(default=None)

    OTP_LENGTH: int = Field(default=6, ge=4, le=8)
    OTP_EXPIRATION_MINUTES: int = Field(default=5, ge=1)
    OTP_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    OTP_RESEND_COOLDOWN_SECONDS: int = Field(default=60, ge=0)
    OTP_DELIVERY_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)
    OTP_DELIVERY_MAX_WORKERS: int = Field(default=16, ge=1)
    OTP_CLEANUP_INTERVAL_SECONDS: int = Field(default=300, ge=1)

    SMS_DRY_RUN: bool = Field(default=True)
    ESKIZ_LOGIN: str = Field(default="")
    ESKIZ_PASSWORD: str = Field(default="")
    ESKIZ_FROM_WHOM: str = Field(default="4546")
    ESKIZ_SMS_TEMPLATE: str = Field(default="Yield Cycle {purpose} code: {code}")

    LOG_LEVEL: str = Field(default="INFO")
    LOG_FILE_PATH: Optional[str] = Field(default=None)
    ENVIRONMENT: str = Field(default="development")

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return str(v).strip().upper() or "INFO"

    @field_validator("ESKIZ_SMS_TEMPLATE")
    @classmethod
    def require_code_placeholder(cls, v: str) -> str:
        # Templates without the code would silently deliver nothing useful.
        if "{code}" not in v:
            raise ValueError("ESKIZ_SMS_TEMPLATE must contain a {code} placeholder")
        return v


load_dotenv(ENV_FILE)


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings instance."""

    return Settings()
