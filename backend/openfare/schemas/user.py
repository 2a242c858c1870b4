"""User schemas"""

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import List, Optional
from datetime import datetime
from enum import Enum

EMAIL_PATTERN = r'^[^\s@]+@[^\s@]+\.[^\s@]+$'


class UserRole(str, Enum):
    """User role enumeration"""
    ADMIN = "ADMIN"
    OPERATOR = "OPERATOR"
    PASSENGER = "PASSENGER"


class UserLogin(BaseModel):
    """User login schema"""
    # Lookup is an exact match on the stored column, so no normalisation here.
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=1, max_length=128)


class UserCreate(BaseModel):
    """Self-service signup schema"""
    name: str = Field(..., min_length=2, max_length=120)
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    phone: Optional[str] = Field(None, max_length=32)
    password: str = Field(..., min_length=6, max_length=128)

    @field_validator('name')
    @classmethod
    def strip_name(cls, v):
        """Reject names that are only whitespace"""
        v = v.strip()
        if len(v) < 2:
            raise ValueError('Name must be at least 2 characters')
        return v


class UserResponse(BaseModel):
    """User response schema"""
    id: int
    name: str
    email: str
    phone: Optional[str] = None
    role: UserRole
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
        populate_by_name = True
        alias_generator = to_camel


class Pagination(BaseModel):
    """Page metadata for list endpoints"""
    page: int
    limit: int
    total: int
    total_pages: int

    class Config:
        populate_by_name = True
        alias_generator = to_camel


class UserListResponse(BaseModel):
    """Paged user listing"""
    success: bool = True
    data: List[UserResponse]
    pagination: Pagination
