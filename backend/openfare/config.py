"""Application configuration management"""

import json
import re
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, List, Optional
from urllib.parse import quote_plus

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode

# Base directory: backend/
_BASE_DIR = Path(__file__).resolve().parent.parent

_DURATION_RE = re.compile(r"^\s*(-?\d+)\s*([smhd])\s*$")
_DURATION_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days"}


def parse_duration(value: str) -> timedelta:
    """
    Parse a compact duration string such as ``15m`` or ``7d``.

    Args:
        value: Duration with a single unit suffix (s, m, h, d)

    Returns:
        timedelta: Parsed duration

    Raises:
        ValueError: If the string is not a recognised duration
    """
    match = _DURATION_RE.match(value or "")
    if not match:
        raise ValueError(f"Invalid duration '{value}'. Use forms like 30s, 15m, 12h or 7d.")
    amount, unit = match.groups()
    return timedelta(**{_DURATION_UNITS[unit]: int(amount)})


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # Application
    APP_NAME: str = "OpenFare"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4

    # Database (PostgreSQL)
    DATABASE_URL: str = ""
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "openfare_db"
    POSTGRES_USER: str = "openfare"
    POSTGRES_PASSWORD: str = "openfare"
    DATABASE_POOL_SIZE: int = 30
    DATABASE_MAX_OVERFLOW: int = 20
    DB_INIT_MODE: str = "create_all"  # create_all | off

    # Security
    # No default: the process must refuse to start without a signing secret.
    JWT_SECRET: str
    REFRESH_TOKEN_SECRET: Optional[str] = None
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRY: str = "15m"
    REFRESH_TOKEN_EXPIRY: str = "7d"
    TOKEN_LEEWAY_SECONDS: int = 0
    BCRYPT_ROUNDS: int = 10

    # Cookies
    REFRESH_COOKIE_NAME: str = "refreshToken"
    REFRESH_COOKIE_PATH: str = "/api/auth/refresh"
    SESSION_COOKIE_NAME: str = "session"
    LOGIN_PAGE_PATH: str = "/login"

    # Session stores
    REVOCATION_BACKEND: str = "database"  # memory | database | redis
    RATE_LIMIT_BACKEND: str = "memory"  # memory | redis
    REDIS_URL: str = "redis://localhost:6379/0"
    STORE_TIMEOUT_SECONDS: float = 2.0

    # Rate Limiting
    RATE_LIMIT_PER_MINUTE: int = 100
    LOGIN_RATE_LIMIT_PER_MINUTE: int = 10
    LOGIN_RATE_LIMIT_PER_HOUR: int = 50
    REFRESH_RATE_LIMIT_PER_MINUTE: int = 30
    RATE_LIMIT_SWEEP_INTERVAL_SECONDS: int = 60

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # CORS
    CORS_ORIGINS: Annotated[List[str], NoDecode] = ["http://localhost:3000"]

    # Admin bootstrap (skipped when ADMIN_PASSWORD is empty)
    ADMIN_EMAIL: str = "admin@example.com"
    ADMIN_PASSWORD: str = ""

    class Config:
        env_file = ".env"
        case_sensitive = True

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors_origins(cls, value: Any) -> Any:
        """
        Accept JSON array or comma-separated origins from env.

        Examples:
            CORS_ORIGINS=["http://localhost:3000","http://example.com"]
            CORS_ORIGINS=http://localhost:3000,http://example.com
        """
        if not isinstance(value, str):
            return value

        raw = value.strip()
        if not raw:
            return []

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None

        if isinstance(parsed, str):
            return [parsed]
        if isinstance(parsed, list):
            return [str(origin).strip() for origin in parsed if str(origin).strip()]

        return [origin.strip() for origin in raw.split(",") if origin.strip()]

    @field_validator("JWT_SECRET")
    @classmethod
    def _require_secret(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("JWT_SECRET must be set")
        return value

    @field_validator("ACCESS_TOKEN_EXPIRY", "REFRESH_TOKEN_EXPIRY")
    @classmethod
    def _validate_expiry(cls, value: str) -> str:
        if parse_duration(value) <= timedelta(0):
            raise ValueError("Token expiry must be positive")
        return value

    @field_validator("REVOCATION_BACKEND", "RATE_LIMIT_BACKEND")
    @classmethod
    def _normalize_backend(cls, value: str) -> str:
        return value.strip().lower()

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def access_token_ttl(self) -> timedelta:
        return parse_duration(self.ACCESS_TOKEN_EXPIRY)

    @property
    def refresh_token_ttl(self) -> timedelta:
        return parse_duration(self.REFRESH_TOKEN_EXPIRY)

    @property
    def refresh_secret(self) -> str:
        """Dedicated refresh secret, falling back to the shared JWT secret"""
        return self.REFRESH_TOKEN_SECRET or self.JWT_SECRET

    def get_log_file(self) -> Optional[str]:
        p = self.LOG_FILE
        if not p:
            return None
        if p.startswith(".."):
            return str(_BASE_DIR.parent / "logs" / "app.log")
        return p

    def get_database_url(self) -> str:
        """
        Resolve database URL.

        Priority:
          1) Explicit DATABASE_URL
          2) Construct from POSTGRES_* parts with safe URL encoding
        """
        if self.DATABASE_URL:
            return self.DATABASE_URL

        user = quote_plus(self.POSTGRES_USER)
        password = quote_plus(self.POSTGRES_PASSWORD)
        return (
            f"postgresql://{user}:{password}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    def validate_security_settings(self) -> None:
        """
        Validate runtime security defaults in production.

        Raises:
            ValueError: If insecure defaults are detected.
        """
        if not self.is_production:
            return

        insecure_secret_markers = {
            "",
            "fallback_access_secret",
            "fallback_refresh_secret",
            "your-super-secret-key-change-this-in-production",
            "change-me",
        }

        for name, secret in (("JWT_SECRET", self.JWT_SECRET), ("REFRESH_TOKEN_SECRET", self.refresh_secret)):
            if secret in insecure_secret_markers or len(secret) < 32:
                raise ValueError(
                    f"Insecure {name} for production. Use a strong key (e.g. `openssl rand -hex 32`)."
                )

        if self.ADMIN_PASSWORD and len(self.ADMIN_PASSWORD) < 10:
            raise ValueError(
                "Insecure ADMIN_PASSWORD for production. Set a strong admin password before startup."
            )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
