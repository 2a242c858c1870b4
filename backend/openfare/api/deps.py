"""API dependencies - authenticated principal, role checks and shared stores"""

from fastapi import Depends, Request
from sqlalchemy.orm import Session
from typing import Callable

from openfare.core.database import get_db
from openfare.core.exceptions import InsufficientRoleError, MissingCredentialError, UserGoneError
from openfare.models.user import User
from openfare.schemas.auth import Principal
from openfare.schemas.user import UserRole
from openfare.services.rate_limiter import RateLimiter
from openfare.services.revocation import RevocationRegistry
from openfare.services.user_service import user_service


def get_revocation_registry(request: Request) -> RevocationRegistry:
    return request.app.state.revocation_registry


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_current_principal(request: Request) -> Principal:
    """
    Principal attached by the request gate

    Raises:
        MissingCredentialError: If the route was reached without passing the gate
    """
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise MissingCredentialError()
    return principal


def require_roles(*roles: UserRole) -> Callable[..., Principal]:
    """
    Build a dependency that admits only the given roles

    The gate already enforces path-level roles; this covers handlers whose
    requirement is narrower than their path prefix.
    """
    allowed = frozenset(UserRole(role) for role in roles)

    def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise InsufficientRoleError([role.value for role in allowed])
        return principal

    return dependency


def get_current_user(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
) -> User:
    """
    Load the credential record behind the current principal

    Raises:
        UserGoneError: If the user was deleted after the token was issued
    """
    user = user_service.get_user_by_id(db, principal.id)
    if not user:
        raise UserGoneError()
    return user
