"""Application configuration settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    MONGODB_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "clinic_emr"

    # Application
    APP_NAME: str = "Clinic EMR Billing & Referrals"
    API_V1_PREFIX: str = "/api/v1"
    PORT: int = 8000

    # CORS - frontend dashboards
    BACKEND_CORS_ORIGINS: str = '["http://localhost:3000", "http://localhost:5173"]'

    # Public URL of the frontend, used when a shareable link is built outside a request
    FRONTEND_URL: str = "http://localhost:3000"

    # JWT
    JWT_SECRET_KEY: str = "change-me-in-production"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    # Email (SMTP)
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    EMAIL_FROM: str = "Clinic EMR <no-reply@clinic-emr.local>"

    # Referral notifications
    REFERRAL_NOTIFICATIONS_ENABLED: bool = True
    REFERRAL_NOTIFICATION_EMAIL: str = ""  # Fallback recipient when the specialist has no email

    # Initial super master admin, created by `python -m clinic_emr.seed`
    SEED_ADMIN_EMAIL: str = "admin@clinic-emr.local"
    SEED_ADMIN_PASSWORD: str = ""
    SEED_ADMIN_NAME: str = "Super Admin"

    # Billing
    INVOICE_DEFAULT_TERMS: str = "Net 30"

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def cors_origins(self) -> List[str]:
        """Parse CORS origins from JSON string."""
        try:
            return json.loads(self.BACKEND_CORS_ORIGINS)
        except json.JSONDecodeError:
            return ["http://localhost:3000"]


settings = Settings()
