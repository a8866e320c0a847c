from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageAdapter(Enum):
    MEMORY = "memory"
    SQL = "sql"


class DatabaseConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="DATABASE_", env_file=".env", extra="ignore")

    url: str = "sqlite+aiosqlite:///./intelliconsult.db"
    echo: bool = False


class SchedulingConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SCHEDULING_", env_file=".env", extra="ignore")

    slot_minutes: int = Field(default=60, ge=5, le=240)
    horizon_days: int = Field(default=14, ge=1, le=90)


class PaymentConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="RAZORPAY_", env_file=".env", extra="ignore")

    key_id: str
    key_secret: str
    api_url: str = "https://api.razorpay.com/v1"
    currency: str = "INR"


class EmailConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="EMAIL_", env_file=".env", extra="ignore")

    resend_api_key: str = ""
    from_address: str = "IntelliConsult <no-reply@intelliconsult.app>"


class AppConfig(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    clinic_timezone: str = "Asia/Kolkata"
    host: str = "0.0.0.0"
    port: int = 8000
    storage: StorageAdapter = StorageAdapter.SQL
    database: DatabaseConfig = Field(default_factory=lambda: DatabaseConfig())
    scheduling: SchedulingConfig = Field(default_factory=lambda: SchedulingConfig())
    payment: PaymentConfig = Field(default_factory=lambda: PaymentConfig())  # type: ignore[call-arg]
    email: EmailConfig = Field(default_factory=lambda: EmailConfig())
