"""User management routes (admin only, enforced by the request gate)"""

import math

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional

from openfare.api.deps import require_roles
from openfare.core.database import get_db
from openfare.core.exceptions import ResourceNotFoundError
from openfare.schemas.auth import Principal
from openfare.schemas.response import ErrorResponse
from openfare.schemas.user import Pagination, UserListResponse, UserResponse, UserRole
from openfare.services.user_service import user_service

router = APIRouter(responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}})

require_admin = require_roles(UserRole.ADMIN)


@router.get("", response_model=UserListResponse)
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    role: Optional[UserRole] = None,
    admin: Principal = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """
    Get users, newest first

    Args:
        page: 1-based page number
        limit: Page size
        role: Optional role filter
    """
    users, total = user_service.get_users(db, role=role, page=page, limit=limit)
    return UserListResponse(
        data=[UserResponse.model_validate(user) for user in users],
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit) if total else 0,
        ),
    )


@router.get("/{user_id}", response_model=UserResponse)
def get_user(
    user_id: int,
    admin: Principal = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Get a single user by ID"""
    user = user_service.get_user_by_id(db, user_id)
    if not user:
        raise ResourceNotFoundError("User")
    return UserResponse.model_validate(user)
