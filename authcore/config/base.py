"""Base configuration settings."""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# One year, the default lifetime of a login session
DEFAULT_SESSION_DURATION = 31536000


class Settings(BaseSettings):
    """Application settings.

    Tenant policy values here are defaults only; each project carries its
    own ``ProjectPolicy`` built from them.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="AUTHCORE_",
        case_sensitive=False,
        extra="allow",
    )

    # Application
    app_name: str = "authcore"
    environment: str = "development"
    debug: bool = False
    testing: bool = False
    log_level: str = "INFO"
    log_format: str = "console"

    # Database
    database_url: str = "sqlite:///./authcore.db"
    database_echo: bool = False

    # Geolocation
    geoip_database_path: Optional[str] = Field(
        default=None, description="Path to a GeoLite2 Country/City mmdb file"
    )

    # Tenant policy defaults
    session_duration: int = Field(
        default=DEFAULT_SESSION_DURATION, description="Session lifetime in seconds"
    )
    password_history: int = Field(
        default=0, description="Number of former passwords rejected on change"
    )
    users_limit: int = Field(default=0, description="Max users per project, 0 = unlimited")
    personal_data_check: bool = False
    session_alerts: bool = False
    max_sessions: int = 0
    smtp_enabled: bool = True
    sms_enabled: bool = True

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalise and validate the log level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Only console and json renderers exist."""
        if v not in ("console", "json"):
            raise ValueError("log_format must be 'console' or 'json'")
        return v

    @field_validator("session_duration", "password_history", "users_limit")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        """Policy counters cannot be negative."""
        if v < 0:
            raise ValueError("value must be >= 0")
        return v
