from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    PROJECT_NAME: str = "Availability & Pricing Engine"

    # Server
    PORT: int = 8000
    ENVIRONMENT: str = "development"

    # Resource-local wall clock (no DST conversion is applied)
    TIMEZONE: str = "America/New_York"

    # Storage: "memory" (seeded from JSON) or "supabase"
    STORE_BACKEND: str = "memory"
    SEED_DATA_PATH: str = "data/seed.json"

    # Supabase
    SUPABASE_URL: str = ""
    SUPABASE_KEY: str = ""

    # Slot settings used when a resource has no settings row
    DEFAULT_SLOT_INCREMENT_MINUTES: int = 30
    DEFAULT_BUFFER_BEFORE_MINUTES: int = 0
    DEFAULT_BUFFER_AFTER_MINUTES: int = 0
    DEFAULT_MIN_ADVANCE_HOURS: int = 2
    DEFAULT_MAX_ADVANCE_DAYS: int = 60
    DEFAULT_SERVICE_DURATION_MINUTES: int = 60

    # Booking flow
    FIND_SOONEST_MAX_DAYS: int = 30
    SLOT_HOLD_MINUTES: int = 10

    class Config:
        env_file = ".env"
        case_sensitive = True

settings = Settings()
