from functools import lru_cache
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

ALLOWED_ENV_FIELD_NAMES = frozenset(
    {
        "app_name",
        "app_env",
        "app_version",
        "api_prefix",
        "allowed_origins",
        "mongodb_uri",
        "mongodb_db_name",
        "mongodb_users_collection",
        "mongodb_notes_collection",
        "mongodb_tasks_collection",
        "mongodb_connect_timeout_ms",
        "user_data_store",
        "auth_secret_key",
        "auth_refresh_secret_key",
        "auth_token_ttl_minutes",
        "auth_refresh_token_ttl_minutes",
        "password_reset_token_ttl_minutes",
        "gemini_api_key",
        "gemini_model",
        "gemini_api_timeout_seconds",
        "gemini_max_attempts",
        "gemini_retry_delay_seconds",
        "frontend_base_url",
        "google_client_id",
        "google_client_secret",
        "google_calendar_redirect_uri",
        "google_calendar_id",
        "google_calendar_event_timezone",
        "google_calendar_api_timeout_seconds",
        "sendgrid_api_key",
        "sendgrid_sender",
        "sendgrid_sender_name",
        "sendgrid_api_timeout_seconds",
        "gmail_client_id",
        "gmail_client_secret",
        "gmail_refresh_token",
        "gmail_sender",
        "gmail_api_timeout_seconds",
        "mail_max_attempts_per_channel",
        "mail_retry_base_delay_seconds",
    },
)


class Settings(BaseSettings):
    app_name: str = "Milo Assistant API"
    app_env: str = "development"
    app_version: str = "0.1.0"
    api_prefix: str = "/api"
    allowed_origins: Annotated[list[str], NoDecode] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
    ]
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "milo_assistant"
    mongodb_users_collection: str = "users"
    mongodb_notes_collection: str = "notes"
    mongodb_tasks_collection: str = "tasks"
    mongodb_connect_timeout_ms: int = 2000
    user_data_store: str = "mongodb"
    auth_secret_key: str = "change-me-in-production"
    auth_refresh_secret_key: str = "change-me-too-in-production"
    auth_token_ttl_minutes: int = 60
    auth_refresh_token_ttl_minutes: int = 60 * 24 * 7
    password_reset_token_ttl_minutes: int = 60
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"
    gemini_api_timeout_seconds: float = 20.0
    gemini_max_attempts: int = 3
    gemini_retry_delay_seconds: float = 1.0
    frontend_base_url: str = "http://localhost:5173"
    google_client_id: str = ""
    google_client_secret: str = ""
    google_calendar_redirect_uri: str = "http://localhost:3000/api/calendar/callback"
    google_calendar_id: str = "primary"
    google_calendar_event_timezone: str = "America/Argentina/Buenos_Aires"
    google_calendar_api_timeout_seconds: float = 10.0
    sendgrid_api_key: str = ""
    sendgrid_sender: str = ""
    sendgrid_sender_name: str = "Milo Assistant"
    sendgrid_api_timeout_seconds: float = 10.0
    gmail_client_id: str = ""
    gmail_client_secret: str = ""
    gmail_refresh_token: str = ""
    gmail_sender: str = ""
    gmail_api_timeout_seconds: float = 10.0
    mail_max_attempts_per_channel: int = 2
    mail_retry_base_delay_seconds: float = 0.5

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        def _filter_allowed_env_fields(source):
            return {
                field_name: raw_value
                for field_name, raw_value in source().items()
                if field_name in ALLOWED_ENV_FIELD_NAMES
            }

        return (
            init_settings,
            lambda: _filter_allowed_env_fields(env_settings),
            lambda: _filter_allowed_env_fields(dotenv_settings),
            file_secret_settings,
        )

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_allowed_origins(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("user_data_store", mode="before")
    @classmethod
    def normalize_user_data_store(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("frontend_base_url", mode="before")
    @classmethod
    def normalize_frontend_base_url(cls, value: str) -> str:
        cleaned = (value or "").strip().rstrip("/")
        return cleaned or "http://localhost:5173"

    @field_validator("gemini_api_timeout_seconds", mode="before")
    @classmethod
    def normalize_gemini_timeout(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value <= 0:
            return 20.0
        return parsed_value

    @field_validator(
        "google_calendar_api_timeout_seconds",
        "sendgrid_api_timeout_seconds",
        "gmail_api_timeout_seconds",
        mode="before",
    )
    @classmethod
    def normalize_http_timeout(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value <= 0:
            return 10.0
        return parsed_value

    @field_validator("gemini_max_attempts", "mail_max_attempts_per_channel", mode="before")
    @classmethod
    def normalize_attempts(cls, value: int | str) -> int:
        return max(int(value), 1)

    @field_validator("gemini_retry_delay_seconds", "mail_retry_base_delay_seconds", mode="before")
    @classmethod
    def normalize_retry_delay(cls, value: float | str) -> float:
        return max(float(value), 0.0)

    @field_validator("auth_token_ttl_minutes", mode="before")
    @classmethod
    def normalize_auth_token_ttl(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 60
        return parsed_value

    @field_validator("password_reset_token_ttl_minutes", mode="before")
    @classmethod
    def normalize_password_reset_ttl(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 60
        return parsed_value


@lru_cache
def get_settings() -> Settings:
    return Settings()
