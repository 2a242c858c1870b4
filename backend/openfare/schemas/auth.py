"""Token and session schemas"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel
from pydantic.alias_generators import to_camel

from openfare.schemas.user import UserResponse, UserRole


class TokenType(str, Enum):
    """Value of the ``typ`` claim"""
    ACCESS = "access"
    REFRESH = "refresh"
    SESSION = "session"


class Principal(BaseModel):
    """Authenticated identity embedded in every token"""
    id: int
    email: str
    role: UserRole

    class Config:
        frozen = True


class TokenClaims(BaseModel):
    """Verified token contents"""
    principal: Principal
    token_type: TokenType
    issued_at: float
    expires_at: float
    token_id: Optional[str] = None

    class Config:
        frozen = True


class LoginResponse(BaseModel):
    """Login response; the refresh token only travels in its cookie"""
    success: bool = True
    message: str = "Login successful"
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse

    class Config:
        populate_by_name = True
        alias_generator = to_camel


class RefreshResponse(BaseModel):
    """Refresh response"""
    success: bool = True
    message: str = "Tokens refreshed successfully"
    access_token: str
    token_type: str = "bearer"
    expires_in: int

    class Config:
        populate_by_name = True
        alias_generator = to_camel


class LogoutResponse(BaseModel):
    """Logout response"""
    success: bool = True
    message: str = "Logged out successfully"
    revoked: bool = False


class SignupResponse(BaseModel):
    """Signup response"""
    success: bool = True
    message: str = "Signup successful"
    user: UserResponse
