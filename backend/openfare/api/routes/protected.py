"""Protected probe route - echoes the principal resolved by the request gate"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from openfare.api.deps import get_current_principal
from openfare.schemas.auth import Principal

router = APIRouter()


@router.get("")
def protected(principal: Principal = Depends(get_current_principal)):
    """Any authenticated role may call this"""
    return {
        "success": True,
        "message": "Access granted to protected route",
        "user": principal.model_dump(mode="json"),
        "data": {"timestamp": datetime.now(timezone.utc).isoformat()},
    }
