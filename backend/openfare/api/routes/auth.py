"""Authentication routes"""

import logging

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session

from openfare.api.cookies import (
    clear_auth_cookies,
    read_bearer_token,
    read_refresh_cookie,
    read_session_cookie,
    set_refresh_cookie,
    set_session_cookie,
)
from openfare.api.deps import get_current_user, get_rate_limiter, get_revocation_registry
from openfare.api.gate import client_key
from openfare.config import settings
from openfare.core.database import get_db
from openfare.core.exceptions import RateLimitExceededError, ServiceUnavailableError
from openfare.core.metrics import AUTH_EVENTS
from openfare.models.user import User
from openfare.schemas.auth import LoginResponse, LogoutResponse, RefreshResponse, SignupResponse
from openfare.schemas.response import ErrorResponse
from openfare.schemas.user import UserCreate, UserLogin, UserResponse
from openfare.services.rate_limiter import RateLimiter
from openfare.services.revocation import RevocationRegistry
from openfare.services.token_service import IssuedSession, token_service
from openfare.services.user_service import user_service

logger = logging.getLogger(__name__)

router = APIRouter(
    responses={
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
    }
)


def _set_session_cookies(response: Response, issued: IssuedSession) -> None:
    max_age = token_service.refresh_max_age
    set_refresh_cookie(response, issued.refresh_token, max_age)
    set_session_cookie(response, issued.session_token, max_age)


@router.post("/login", response_model=LoginResponse, status_code=status.HTTP_200_OK)
def login(
    credentials: UserLogin,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """
    Login endpoint - verify credentials and start a session

    The access token is returned in the body; the refresh token is only set
    as an HTTP-only cookie scoped to the refresh endpoint.

    Args:
        credentials: Email and password
        db: Database session

    Returns:
        Access token and user info
    """
    client_ip = client_key(request)
    per_min_key = f"login:min:{client_ip}:{credentials.email}"
    per_hour_key = f"login:hour:{client_ip}:{credentials.email}"
    if not limiter.allow(per_min_key, settings.LOGIN_RATE_LIMIT_PER_MINUTE, 60):
        raise RateLimitExceededError(
            "Too many login attempts. Please wait a minute.",
            retry_after=limiter.retry_after(per_min_key, 60),
        )
    if not limiter.allow(per_hour_key, settings.LOGIN_RATE_LIMIT_PER_HOUR, 3600):
        raise RateLimitExceededError(
            "Too many login attempts. Please try again later.",
            retry_after=limiter.retry_after(per_hour_key, 3600),
        )

    issued = token_service.login(db, credentials.email, credentials.password)
    _set_session_cookies(response, issued)

    return LoginResponse(
        access_token=issued.access_token,
        expires_in=token_service.access_expires_in,
        user=UserResponse.model_validate(issued.user),
    )


@router.post("/signup", response_model=SignupResponse, status_code=status.HTTP_201_CREATED)
def signup(
    user_data: UserCreate,
    db: Session = Depends(get_db),
):
    """
    Signup endpoint - create a passenger account

    Returns:
        Created user (without password)
    """
    user = user_service.create_user(db, user_data)
    AUTH_EVENTS.labels("signup", "success").inc()
    return SignupResponse(user=UserResponse.model_validate(user))


@router.post("/refresh", response_model=RefreshResponse)
def refresh_token(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    registry: RevocationRegistry = Depends(get_revocation_registry),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """
    Refresh endpoint - rotate the refresh cookie and mint a new access token

    Returns:
        New access token; the rotated refresh token is only set as a cookie
    """
    per_min_key = f"refresh:min:{client_key(request)}"
    if not limiter.allow(per_min_key, settings.REFRESH_RATE_LIMIT_PER_MINUTE, 60):
        raise RateLimitExceededError(
            "Too many refresh attempts. Slow down.",
            retry_after=limiter.retry_after(per_min_key, 60),
        )

    issued = token_service.refresh(db, registry, read_refresh_cookie(request))
    _set_session_cookies(response, issued)

    return RefreshResponse(
        access_token=issued.access_token,
        expires_in=token_service.access_expires_in,
    )


@router.post("/logout", response_model=LogoutResponse, status_code=status.HTTP_200_OK)
def logout(
    request: Request,
    response: Response,
    registry: RevocationRegistry = Depends(get_revocation_registry),
):
    """
    Logout endpoint - revoke outstanding sessions and clear auth cookies

    The Authorization header, or failing that the session cookie, only
    identifies whose sessions to revoke. Cookies are cleared whatever the
    revocation outcome.
    """
    revoked = False
    try:
        revoked = token_service.logout(registry, read_bearer_token(request), read_session_cookie(request))
    except ServiceUnavailableError as exc:
        AUTH_EVENTS.labels("logout", "registry_error").inc()
        logger.error(f"Revocation failed during logout: {exc.message}")
    except Exception:
        AUTH_EVENTS.labels("logout", "registry_error").inc()
        logger.exception("Unexpected error while revoking sessions during logout")
    finally:
        clear_auth_cookies(response)

    return LogoutResponse(revoked=revoked)


@router.get("/me", response_model=UserResponse)
def get_current_user_info(
    current_user: User = Depends(get_current_user)
):
    """
    Get current user information

    Returns:
        User information
    """
    return UserResponse.model_validate(current_user)
