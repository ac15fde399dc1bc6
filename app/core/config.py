# app/core/config.py
import secrets
from typing import List, Optional, Union, Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Environment settings
    ENVIRONMENT: Literal["development", "testing", "production"] = "development"

    # API settings
    API_V1_STR: str = "/api/v1"
    SECRET_KEY: str = ""  # Signs session JWTs and webhook channel tokens
    JWT_ALGORITHM: str = "HS256"

    # Server settings
    SERVER_NAME: str = "localhost"
    SERVER_HOST: str = "http://localhost:8000"
    FRONTEND_URL: str = "http://localhost:3000"  # Settings page lives here

    # CORS settings
    BACKEND_CORS_ORIGINS: List[str] = [
        "http://localhost",
        "http://localhost:3000",
    ]

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    @model_validator(mode="after")
    def check_secret_key(self) -> "Settings":
        # Channel tokens must verify across processes, so the key cannot be per-process
        if not self.SECRET_KEY:
            if self.WEBHOOK_REQUIRE_TOKEN:
                raise ValueError("SECRET_KEY must be set when WEBHOOK_REQUIRE_TOKEN is enabled")
            self.SECRET_KEY = secrets.token_urlsafe(32)
        return self

    # Logging settings
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None  # Path to log file if file logging is enabled

    # Database settings
    SQLALCHEMY_DATABASE_URI: str = "sqlite:///./calendar_sync.db"

    # Fernet key (urlsafe base64, 32 bytes) used for credentials at rest
    ENCRYPTION_KEY: str = ""

    # Google OAuth
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""
    GOOGLE_REDIRECT_URI: str = ""
    GOOGLE_TOKEN_URI: str = "https://oauth2.googleapis.com/token"
    GOOGLE_CALENDAR_SCOPES: List[str] = [
        "https://www.googleapis.com/auth/calendar",
        "https://www.googleapis.com/auth/calendar.events",
    ]

    # Calendar API behaviour
    CALENDAR_TIME_ZONE: str = "UTC"
    GOOGLE_API_TIMEOUT_SECONDS: int = 10
    TOKEN_REFRESH_MARGIN_SECONDS: int = 300
    CLIENT_CACHE_TTL_SECONDS: int = 600  # 10 minutes

    # Retry policy for remote calls
    RETRY_MAX_RETRIES: int = 3
    RETRY_INITIAL_DELAY_SECONDS: float = 1.0
    RETRY_DEADLINE_SECONDS: float = 15.0

    # Push notification channels
    WEBHOOK_CALLBACK_URL: str = ""
    WEBHOOK_CHANNEL_TTL_SECONDS: int = 7 * 24 * 60 * 60  # 7 days
    WEBHOOK_RENEWAL_HORIZON_HOURS: int = 24
    WEBHOOK_RENEWAL_WORKERS: int = 4
    WEBHOOK_REQUIRE_TOKEN: bool = True

    # Defaults applied when a task opts into the calendar without details
    DEFAULT_EVENT_TIME: str = "09:00"
    DEFAULT_EVENT_DURATION: int = 60
    DEFAULT_REMINDER_MINUTES: int = 30

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=True, extra="ignore"
    )

    @property
    def webhook_callback_url(self) -> str:
        if self.WEBHOOK_CALLBACK_URL:
            return self.WEBHOOK_CALLBACK_URL
        return f"{self.SERVER_HOST}{self.API_V1_STR}/webhooks/google-calendar"

    @property
    def google_redirect_uri(self) -> str:
        if self.GOOGLE_REDIRECT_URI:
            return self.GOOGLE_REDIRECT_URI
        return f"{self.SERVER_HOST}{self.API_V1_STR}/auth/google-calendar/callback"


# Create settings instance
settings = Settings()
