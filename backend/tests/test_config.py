from datetime import timedelta

import pytest
from pydantic import ValidationError

from openfare.config import Settings, parse_duration

STRONG = "0123456789abcdef0123456789abcdef"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("30s", timedelta(seconds=30)),
        ("15m", timedelta(minutes=15)),
        ("12h", timedelta(hours=12)),
        (" 7d ", timedelta(days=7)),
    ],
)
def test_parse_duration(raw, expected):
    assert parse_duration(raw) == expected


@pytest.mark.parametrize("raw", ["", "15", "m", "1w", "1.5h"])
def test_parse_duration_rejects(raw):
    with pytest.raises(ValueError):
        parse_duration(raw)


def test_missing_jwt_secret_refuses_to_load(monkeypatch):
    monkeypatch.delenv("JWT_SECRET", raising=False)
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_blank_jwt_secret_refuses_to_load():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, JWT_SECRET="   ")


def test_non_positive_expiry_rejected():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, JWT_SECRET=STRONG, ACCESS_TOKEN_EXPIRY="0m")


def test_refresh_secret_fallback():
    cfg = Settings(_env_file=None, JWT_SECRET=STRONG, REFRESH_TOKEN_SECRET=None)
    assert cfg.refresh_secret == STRONG
    assert cfg.access_token_ttl == timedelta(minutes=15)
    assert cfg.refresh_token_ttl == timedelta(days=7)


def test_cors_origins_from_comma_list():
    cfg = Settings(_env_file=None, JWT_SECRET=STRONG, CORS_ORIGINS="http://a.test, http://b.test")
    assert cfg.CORS_ORIGINS == ["http://a.test", "http://b.test"]


def test_production_rejects_weak_secrets():
    cfg = Settings(_env_file=None, JWT_SECRET="change-me", REFRESH_TOKEN_SECRET=STRONG, ENVIRONMENT="production")
    with pytest.raises(ValueError):
        cfg.validate_security_settings()

    Settings(
        _env_file=None, JWT_SECRET=STRONG, REFRESH_TOKEN_SECRET=STRONG, ENVIRONMENT="production"
    ).validate_security_settings()


def test_database_url_from_parts():
    cfg = Settings(
        _env_file=None,
        JWT_SECRET=STRONG,
        DATABASE_URL="",
        POSTGRES_USER="bus",
        POSTGRES_PASSWORD="p@ss",
        POSTGRES_HOST="db",
        POSTGRES_DB="fares",
    )
    assert cfg.get_database_url() == "postgresql://bus:p%40ss@db:5432/fares"
