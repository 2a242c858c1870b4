"""Error envelope schema, used to document error responses in OpenAPI"""

from pydantic import BaseModel
from typing import Optional, Any, Dict


class ErrorResponse(BaseModel):
    """Generic API error response"""
    success: bool = False
    message: str
    code: str
    details: Optional[Dict[str, Any]] = None
    path: Optional[str] = None
    timestamp: str
