"""Cookie store for the refresh and page-session credentials"""

from typing import Optional

from fastapi import Request, Response

from openfare.config import settings


def set_refresh_cookie(response: Response, refresh_token: str, max_age: int) -> None:
    """HTTP-only, SameSite=Strict, scoped to the refresh endpoint only."""
    response.set_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        value=refresh_token,
        max_age=max_age,
        path=settings.REFRESH_COOKIE_PATH,
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
    )


def set_session_cookie(response: Response, session_token: str, max_age: int) -> None:
    """Page-route credential; Lax so top-level navigations carry it."""
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=session_token,
        max_age=max_age,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )


def clear_auth_cookies(response: Response) -> None:
    response.delete_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        path=settings.REFRESH_COOKIE_PATH,
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
    )
    response.delete_cookie(
        key=settings.SESSION_COOKIE_NAME,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )


def read_refresh_cookie(request: Request) -> Optional[str]:
    return request.cookies.get(settings.REFRESH_COOKIE_NAME) or None


def read_session_cookie(request: Request) -> Optional[str]:
    return request.cookies.get(settings.SESSION_COOKIE_NAME) or None


def read_bearer_token(request: Request) -> Optional[str]:
    """Token from ``Authorization: Bearer <token>``, or None when absent or empty"""
    header = request.headers.get("authorization")
    if not header:
        return None
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None
