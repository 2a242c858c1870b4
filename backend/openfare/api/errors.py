"""JSON error envelope shared by exception handlers and the request gate"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from openfare.core.exceptions import BaseAPIException, RateLimitExceededError


def error_body(
    message: str,
    code: str,
    path: str,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    return {
        "success": False,
        "message": message,
        "code": code,
        "details": details or {},
        "path": path,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def error_response(request: Request, exc: BaseAPIException) -> JSONResponse:
    """Render an API exception as the standard ``success: false`` envelope"""
    headers = None
    if isinstance(exc, RateLimitExceededError):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.message, exc.code, request.url.path, exc.details),
        headers=headers,
    )
