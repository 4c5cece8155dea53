"""Runtime settings for the class session service."""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    SERVICE_NAME: str = "class-session-service"
    ENVIRONMENT: str = "development"
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Web settings
    CORS_ORIGINS: list[str] = ["*"]

    # Session scheduling rules
    MIN_SESSION_DURATION_MINUTES: int = 30
    MAX_SESSION_DURATION_HOURS: int = 24
    # Upper bound on days scanned while generating a recurring batch
    MAX_RECURRENCE_SCAN_DAYS: int = 732

    # Per-aggregate lock wait (None = wait indefinitely)
    LOCK_WAIT_TIMEOUT_SECONDS: Optional[float] = None

    # File storage collaborator (memory|http)
    FILE_STORAGE_BACKEND: str = "memory"
    FILE_SERVICE_URL: str = "http://localhost:8010"
    FILE_SERVICE_TIMEOUT_SECONDS: float = 10.0

    model_config = {
        "env_file": ".env.dev",
        "case_sensitive": False,
    }


_settings_cache: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings()
    return _settings_cache
