"""Pydantic schemas for API validation"""

from openfare.schemas.user import UserRole, UserLogin, UserCreate, UserResponse, Pagination, UserListResponse
from openfare.schemas.auth import (
    TokenType,
    Principal,
    TokenClaims,
    LoginResponse,
    RefreshResponse,
    LogoutResponse,
    SignupResponse,
)
from openfare.schemas.response import ErrorResponse

__all__ = [
    "UserRole", "UserLogin", "UserCreate", "UserResponse", "Pagination", "UserListResponse",
    "TokenType", "Principal", "TokenClaims",
    "LoginResponse", "RefreshResponse", "LogoutResponse", "SignupResponse",
    "ErrorResponse",
]
