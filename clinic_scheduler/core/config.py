from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    DATABASE_URL: str
    DATABASE_ECHO: bool = False

    # NLU oracle (optional, the resolver degrades to deterministic parsing)
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    LLM_TIMEOUT_SECONDS: float = 8.0
    INTENT_CONFIDENCE_THRESHOLD: float = 0.5

    # Clinic calendar
    CLINIC_NAME: str = "Dental Tutor"
    CLINIC_TIMEZONE: str = "UTC"
    SLOT_GRANULARITY_MINUTES: int = 30
    DEFAULT_APPOINTMENT_MINUTES: int = 30
    BUSINESS_HOURS: dict[str, str] = {
        "monday": "09:00-17:00",
        "tuesday": "09:00-17:00",
        "wednesday": "09:00-17:00",
        "thursday": "09:00-17:00",
        "friday": "09:00-15:00",
        "saturday": "closed",
        "sunday": "closed",
    }

    # Dialogue
    DEFAULT_LANGUAGE: str = "en"
    HISTORY_TURNS: int = 10
    SUGGESTION_DAYS: int = 3
    SUGGESTIONS_PER_DAY: int = 5

    # Waitlist + notifications
    WAITLIST_INTERVAL_SECONDS: int = 300
    EMAIL_WEBHOOK_URL: str | None = None
    SMS_WEBHOOK_URL: str | None = None
    NOTIFICATION_TIMEOUT_SECONDS: float = 10.0

    class Config:
        env_file = ".env"


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
