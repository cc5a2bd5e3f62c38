from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    # App
    APP_NAME: str = "AlertLedger"
    DEBUG: bool = True

    # CORS
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000"]

    # Supabase
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_KEY: str = ""

    # Gmail API
    GMAIL_CLIENT_ID: str = ""
    GMAIL_CLIENT_SECRET: str = ""
    GMAIL_REFRESH_TOKEN: str = ""
    GMAIL_USER_ID: str = ""  # owner of the polled inbox
    GMAIL_QUERY: str = (
        "is:unread (from:alerts OR from:transactions OR from:bank OR subject:payment "
        "OR subject:transaction OR subject:spent OR subject:debited OR subject:credited "
        "OR subject:alert OR subject:purchase)"
    )
    GMAIL_MAX_RESULTS: int = 10

    # Polling
    POLL_INTERVAL_SECONDS: int = 30
    POLL_MAX_BACKOFF_SECONDS: int = 900
    SEEN_MESSAGE_CACHE_SIZE: int = 1000

    # Pending review
    PENDING_TTL_DAYS: int = 7
    DEFAULT_CURRENCY: str = "INR"
    REVIEW_CONFIDENCE_THRESHOLD: float = 0.6

    # Background location history
    LOCATION_RETENTION_DAYS: int = 90
    LOCATION_WINDOW_MINUTES: int = 15

    # Geocoding (Nominatim)
    GEOCODER_URL: str = "https://nominatim.openstreetmap.org"
    GEOCODER_USER_AGENT: str = "AlertLedger/0.1"

    # Push notifications (FCM legacy HTTP endpoint)
    FCM_SERVER_KEY: str = ""
    FCM_URL: str = "https://fcm.googleapis.com/fcm/send"

    # Outbound HTTP
    HTTP_TIMEOUT_SECONDS: float = 5.0

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
