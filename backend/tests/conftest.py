import os

os.environ.setdefault("JWT_SECRET", "test-access-secret-0123456789abcdef0123456789")
os.environ.setdefault("REFRESH_TOKEN_SECRET", "test-refresh-secret-0123456789abcdef012345678")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REVOCATION_BACKEND", "memory")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from openfare.core.database import Base, get_db
from openfare.core.security import get_password_hash
from openfare.main import app
from openfare.models.user import User
from openfare.services.rate_limiter import InMemoryRateLimiter
from openfare.services.revocation import InMemoryRevocationRegistry

PASSWORD = "correctpw"


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def users(db):
    password_hash = get_password_hash(PASSWORD)
    seeded = {
        "admin": User(name="Admin User", email="admin@example.com", password_hash=password_hash, role="ADMIN"),
        "operator": User(name="Operator User", email="operator@example.com", password_hash=password_hash, role="OPERATOR"),
        "passenger": User(name="Passenger User", email="passenger@example.com", password_hash=password_hash, role="PASSENGER"),
    }
    db.add_all(seeded.values())
    db.commit()
    for user in seeded.values():
        db.refresh(user)
    return seeded


@pytest.fixture
def registry():
    return InMemoryRevocationRegistry()


@pytest.fixture
def limiter():
    return InMemoryRateLimiter()


@pytest.fixture
def client(session_factory, registry, limiter, users):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    previous = (app.state.revocation_registry, app.state.rate_limiter)
    app.dependency_overrides[get_db] = override_get_db
    app.state.revocation_registry = registry
    app.state.rate_limiter = limiter
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        app.state.revocation_registry, app.state.rate_limiter = previous


@pytest.fixture
def login_as(client):
    """Log in and return (response, access token, refresh token, session token)."""

    def _login(email="admin@example.com", password=PASSWORD):
        response = client.post("/api/auth/login", json={"email": email, "password": password})
        access = response.json().get("accessToken")
        refresh = response.cookies.get("refreshToken")
        session = response.cookies.get("session")
        # Tests send cookies explicitly so path scoping in the jar does not matter.
        client.cookies.clear()
        return response, access, refresh, session

    return _login


@pytest.fixture
def post_refresh(client):
    """POST /api/auth/refresh presenting the given refresh cookie value."""

    def _refresh(refresh_token=None):
        headers = {"Cookie": f"refreshToken={refresh_token}"} if refresh_token else {}
        response = client.post("/api/auth/refresh", headers=headers)
        client.cookies.clear()
        return response

    return _refresh
