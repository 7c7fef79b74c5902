# config.py
# Role: Environment-driven configuration for the Kwacha Tracker backend.
#       Loads an optional .env file and exposes a Settings object that
#       create_app() and the background scheduler receive explicitly.

"""
Application settings.

Values come from environment variables (optionally via a .env file).
Every setting has a development-friendly default so the app boots locally
with nothing configured; AI insights and push notifications stay disabled
until their credentials are provided.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

# Base directory of the project (where this module lives)
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# Default SQLite location for local development: <project_root>/database/kwachatracker.db
DEFAULT_DB_PATH = os.path.join(BASE_DIR, "database", "kwachatracker.db")

GEMINI_OPENAI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"


def _env_truthy(name: str, default: str = "0") -> bool:
    v = os.getenv(name, default)
    return str(v).strip().lower() in ("1", "true", "yes", "y", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    if raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class Settings:
    # Server
    port: int = 8080
    environment: str = "development"

    # Database
    database_url: str = f"sqlite:///{DEFAULT_DB_PATH}"

    # JWT
    jwt_secret: str = "change-me-in-production"
    jwt_expiration_hours: int = 720  # 30 days

    # AI insights (Gemini through its OpenAI-compatible endpoint)
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"
    gemini_base_url: str = GEMINI_OPENAI_BASE_URL

    # Firebase Cloud Messaging
    firebase_credentials_path: str = "./firebase-credentials.json"
    firebase_credentials_b64: str = ""

    # Admin API shared secret (X-Admin-Key header)
    admin_api_key: str = ""

    # HTTP
    rate_limit_per_minute: int = 100
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    # Daily analysis scheduler
    scheduler_enabled: bool = True
    scheduler_hour: int = 6
    scheduler_timezone: Optional[str] = None

    @property
    def ai_configured(self) -> bool:
        return bool(self.gemini_api_key.strip())

    @classmethod
    def from_env(cls) -> "Settings":
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            port=_env_int("PORT", 8080),
            environment=os.getenv("ENVIRONMENT", "development"),
            database_url=os.getenv("DATABASE_URL") or f"sqlite:///{DEFAULT_DB_PATH}",
            jwt_secret=os.getenv("JWT_SECRET", "change-me-in-production"),
            jwt_expiration_hours=_env_int("JWT_EXPIRATION_HOURS", 720),
            gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
            gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
            gemini_base_url=os.getenv("GEMINI_BASE_URL", GEMINI_OPENAI_BASE_URL),
            firebase_credentials_path=os.getenv("FIREBASE_CREDENTIALS", "./firebase-credentials.json"),
            firebase_credentials_b64=os.getenv("FIREBASE_CREDENTIALS_BASE64", ""),
            admin_api_key=os.getenv("ADMIN_API_KEY", ""),
            rate_limit_per_minute=_env_int("RATE_LIMIT_PER_MINUTE", 100),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            scheduler_enabled=_env_truthy("SCHEDULER_ENABLED", "1"),
            scheduler_hour=_env_int("SCHEDULER_HOUR", 6),
            scheduler_timezone=os.getenv("SCHEDULER_TIMEZONE") or None,
        )
