from typing import List

from pydantic import AliasChoices, AnyHttpUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Application
    PROJECT_NAME: str = "Supabase Compliance Checker"
    VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"
    APP_ENV: str = "development"

    # CORS
    BACKEND_CORS_ORIGINS: List[AnyHttpUrl] = []
    CORS_ALLOW_METHODS: List[str] = ["GET", "POST", "OPTIONS"]
    CORS_ALLOW_HEADERS: List[str] = ["Content-Type", "Authorization", "X-Request-ID"]

    # Supabase Management API (server-side only, never taken from requests)
    SUPABASE_MANAGEMENT_TOKEN: str | None = Field(
        default=None,
        validation_alias=AliasChoices("SUPABASE_MANAGEMENT_TOKEN", "SUPABASE_PAT"),
    )
    SUPABASE_MANAGEMENT_API_URL: str = "https://api.supabase.com"
    PITR_RETENTION_DAYS: int = 7

    # Project admin API
    ADMIN_API_TIMEOUT_SECONDS: float = 5.0
    ADMIN_USERS_PAGE_SIZE: int = 1000

    # Direct database access
    DATASTORE_CONNECT_TIMEOUT_SECONDS: float = 10.0
    DATASTORE_COMMAND_TIMEOUT_SECONDS: float = 15.0
    DATASTORE_SSL_MODE: str = "require"

    # Assistant
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4"
    OPENAI_TEMPERATURE: float = 0.7
    OPENAI_MAX_TOKENS: int = 700
    OPENAI_TIMEOUT_SECONDS: float = 30.0

    # Evidence log
    EVIDENCE_LOG_PATH: str = "evidence.log"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore", populate_by_name=True)

settings = Settings()  # type: ignore
