"""Application configuration managed via environment variables."""
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Weekly Agenda Backend"
    debug: bool = False
    log_level: str = "INFO"
    database_url: str = "postgresql+psycopg2://agenda@localhost:5432/agenda"
    opik_enabled: bool = False
    opik_api_key: str | None = None
    opik_project: str = "weekly-agenda"

    # Weekly cycle. Weekday numbering follows date.weekday() (Monday=0).
    scheduling_timezone: str = "UTC"
    week_start_weekday: int = 2
    week_boundary_hour: int = 13
    week_boundary_minute: int = 30
    review_lead_days: int = 2
    enforce_week_lock: bool = True

    preview_max_tasks: int = 5
    preview_block_hours: int = 2

    openai_api_key: str | None = None
    openai_model: str = "gpt-4o"
    llm_timeout_seconds: float = 60.0

    scheduler_enabled: bool = False
    generation_job_minute_offset: int = 1
    reconcile_job_hour: int = 3
    jobs_run_on_startup: bool = False
    notifications_enabled: bool = False
    notifications_provider: str = "noop"


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()


settings = get_settings()
