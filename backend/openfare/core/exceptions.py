"""Custom exception classes for the application"""

from typing import Optional, Dict, Any


class BaseAPIException(Exception):
    """Base exception for all API errors"""

    code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
        code: Optional[str] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        if code:
            self.code = code
        super().__init__(self.message)


# Authentication Errors
class AuthenticationError(BaseAPIException):
    """Base authentication error (no usable credential was presented)"""
    code = "AUTHENTICATION_ERROR"

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message, status_code=401)


class MissingCredentialError(AuthenticationError):
    """No Authorization header, bearer token or refresh cookie"""
    code = "MISSING_TOKEN"

    def __init__(self, message: str = "Authorization token missing"):
        super().__init__(message)


class InvalidCredentialsError(AuthenticationError):
    """Unknown email or wrong password; both look identical to the caller"""
    code = "INVALID_CREDENTIALS"

    def __init__(self):
        super().__init__("Invalid credentials")


# Token rejection (a credential was presented but refused)
class TokenRejectedError(BaseAPIException):
    """Base class for tokens that were presented but cannot be trusted"""
    code = "INVALID_OR_EXPIRED_TOKEN"

    def __init__(self, message: str = "Invalid or expired token"):
        super().__init__(message, status_code=403)


class MalformedTokenError(TokenRejectedError):
    """Token cannot be parsed or lacks required claims"""
    code = "MALFORMED_TOKEN"

    def __init__(self, message: str = "Malformed token"):
        super().__init__(message)


class BadSignatureError(TokenRejectedError):
    """Token signature does not match"""
    code = "BAD_SIGNATURE"

    def __init__(self, message: str = "Invalid token signature"):
        super().__init__(message)


class TokenExpiredError(TokenRejectedError):
    """Token is past its expiry"""
    code = "TOKEN_EXPIRED"

    def __init__(self, message: str = "Token has expired"):
        super().__init__(message)


class WrongTokenTypeError(TokenRejectedError):
    """Token of one type presented where another type is expected"""
    code = "WRONG_TOKEN_TYPE"

    def __init__(self, expected: str, actual: Any):
        super().__init__(f"Expected a {expected} token")
        self.details = {"expected": expected, "actual": str(actual)}


class RevokedTokenError(TokenRejectedError):
    """Token is valid but has been revoked or already used"""
    code = "TOKEN_REVOKED"

    def __init__(self, message: str = "Refresh token has been revoked"):
        super().__init__(message)


class UserGoneError(TokenRejectedError):
    """Token refers to a user that no longer exists"""
    code = "USER_NOT_FOUND"

    def __init__(self):
        super().__init__("User no longer exists")


# Authorization Errors
class AuthorizationError(BaseAPIException):
    """Insufficient permissions"""
    code = "AUTHORIZATION_ERROR"

    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message, status_code=403)


class InsufficientRoleError(AuthorizationError):
    """Principal's role is not allowed on this path"""
    code = "INSUFFICIENT_ROLE"

    def __init__(self, required: Optional[list] = None):
        super().__init__("Insufficient role")
        if required:
            self.details = {"required_roles": sorted(required)}


# Resource Errors
class ResourceNotFoundError(BaseAPIException):
    """Resource not found"""
    code = "NOT_FOUND"

    def __init__(self, resource: str):
        super().__init__(f"{resource} not found", status_code=404)


class ResourceAlreadyExistsError(BaseAPIException):
    """Resource already exists"""
    code = "ALREADY_EXISTS"

    def __init__(self, resource: str):
        super().__init__(f"{resource} already exists", status_code=409)


# Validation Errors
class ValidationError(BaseAPIException):
    """Validation error"""
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=400, details=details)


# System Errors
class DatabaseError(BaseAPIException):
    """Database operation failed"""
    code = "DATABASE_ERROR"

    def __init__(self, message: str = "Database operation failed"):
        super().__init__(message, status_code=500)


class RateLimitExceededError(BaseAPIException):
    """Rate limit exceeded"""
    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, message: str = "Rate limit exceeded. Please try again later.", retry_after: int = 60):
        super().__init__(message, status_code=429, details={"retry_after": retry_after})
        self.retry_after = retry_after


class ServiceUnavailableError(BaseAPIException):
    """A backing store (revocation registry, rate limiter) is unreachable"""
    code = "SERVICE_UNAVAILABLE"

    def __init__(self, message: str = "Service temporarily unavailable"):
        super().__init__(message, status_code=503)
