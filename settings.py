"""
Runtime configuration for the Therapy API.

Values come from the environment (a local .env file is loaded first).
"""
import logging
import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_JWT_SECRET = "secretkey"


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %s", name, raw, default)
        return default


@dataclass(frozen=True)
class Settings:
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "therapy"
    jwt_secret: str = DEFAULT_JWT_SECRET
    jwt_expires_days: int = 7
    app_env: str = "development"
    bcrypt_rounds: int = 12
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_pass: str = ""
    email_from_name: str = "DOT Therapy"
    frontend_url: str = "http://localhost:3000"
    deep_link_scheme: str = "dottherapy"
    superuser_email: str = "admin@admin.com"
    superuser_password: str = "admin123"
    password_reset_minutes: int = 10
    unknown_account_delay_ms: int = 100
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    port: int = 8000

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"


def load_settings() -> Settings:
    load_dotenv()

    jwt_secret = os.getenv("JWT_SECRET") or DEFAULT_JWT_SECRET
    if jwt_secret == DEFAULT_JWT_SECRET:
        logger.warning("JWT_SECRET not set, falling back to the development secret")

    origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

    return Settings(
        database_url=os.getenv("DATABASE_URL", "mongodb://localhost:27017"),
        database_name=os.getenv("DATABASE_NAME", "therapy"),
        jwt_secret=jwt_secret,
        jwt_expires_days=_int_env("JWT_EXPIRES_DAYS", 7),
        app_env=os.getenv("APP_ENV", "development"),
        bcrypt_rounds=_int_env("BCRYPT_ROUNDS", 12),
        smtp_host=os.getenv("SMTP_HOST", "smtp.gmail.com"),
        smtp_port=_int_env("SMTP_PORT", 587),
        smtp_user=os.getenv("SMTP_USER", ""),
        smtp_pass=os.getenv("SMTP_PASS", ""),
        email_from_name=os.getenv("EMAIL_FROM_NAME", "DOT Therapy"),
        frontend_url=os.getenv("FRONTEND_URL", "http://localhost:3000"),
        deep_link_scheme=os.getenv("APP_DEEP_LINK_SCHEME", "dottherapy"),
        superuser_email=os.getenv("SUPERUSER_EMAIL", "admin@admin.com"),
        superuser_password=os.getenv("SUPERUSER_PASSWORD", "admin123"),
        password_reset_minutes=_int_env("PASSWORD_RESET_MINUTES", 10),
        unknown_account_delay_ms=_int_env("UNKNOWN_ACCOUNT_DELAY_MS", 100),
        cors_origins=origins or ["*"],
        port=_int_env("PORT", 8000),
    )
