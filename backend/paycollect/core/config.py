# core/config.py
from decimal import Decimal
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # ────────────────────────────────
    # 1. APP & ENVIRONMENT
    # ────────────────────────────────
    PROJECT_NAME: str = "Paycollect"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    BACKEND_URL: str = "http://127.0.0.1:8000"

    # ────────────────────────────────
    # 2. FIREBASE / FIRESTORE
    # ────────────────────────────────
    GOOGLE_APPLICATION_CREDENTIALS: Optional[str] = Field(
        default=None,
        description="Path to Firebase service account JSON",
    )
    PAYCOLLECT_FIREBASE_KEY: Optional[str] = Field(
        default=None,
        description="Base64-encoded Firebase service account JSON",
    )

    # ────────────────────────────────
    # 3. STRIPE
    # ────────────────────────────────
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_API_BASE: str = "https://api.stripe.com/v1"
    STRIPE_WEBHOOK_TOLERANCE: int = 300  # seconds
    PAYMENT_CURRENCY: str = "usd"

    # ────────────────────────────────
    # 4. SMS (Twilio)
    # ────────────────────────────────
    TWILIO_SID: str = ""
    TWILIO_AUTH_TOKEN: str = ""
    TWILIO_SMS_NUMBER: str = ""
    TWILIO_API_BASE: str = "https://api.twilio.com/2010-04-01"
    # When set, every SMS goes to this number instead of the patient (staging)
    SMS_OVERRIDE_TO: Optional[str] = None

    CLINIC_NAME: str = "True Sport PT"
    CLINIC_PHONE: str = "443 249 2990"

    # ────────────────────────────────
    # 5. TASK QUEUE (Celery) & PROGRESS (Redis)
    # ────────────────────────────────
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"
    REDIS_URL: str = "redis://localhost:6379/1"

    # ────────────────────────────────
    # 6. BATCH TUNING
    # ────────────────────────────────
    PROGRESS_TTL_SECONDS: int = 60 * 60
    PROGRESS_FLUSH_EVERY: int = 5
    BATCH_SMS_MAX: int = 160
    MIN_LINK_AMOUNT: Decimal = Decimal("0.01")
    MIN_ELIGIBLE_BALANCE: Decimal = Decimal("0.50")
    STATUS_POLL_DELAY_SECONDS: float = 0.1
    GENERATE_LINKS_TIME_LIMIT: int = 60 * 60  # 1 hour, large imports
    BATCH_SMS_TIME_LIMIT: int = 600

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


# Create singleton
settings = Settings()
