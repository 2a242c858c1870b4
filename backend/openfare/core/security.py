"""Security utilities - password hashing and the signed token codec"""

import time
import uuid
from datetime import timedelta
from numbers import Real
from typing import Any, Callable, Dict, Mapping, Optional

import bcrypt
from jose import jwt
from jose.exceptions import JOSEError

from openfare.config import Settings, settings
from openfare.core.exceptions import (
    BadSignatureError,
    MalformedTokenError,
    TokenExpiredError,
    WrongTokenTypeError,
)
from openfare.schemas.auth import Principal, TokenClaims, TokenType
from openfare.schemas.user import UserRole

# bcrypt only looks at the first 72 bytes; newer releases raise instead of truncating.
_BCRYPT_MAX_BYTES = 72

_dummy_hash: Optional[str] = None


def _password_bytes(password: str) -> bytes:
    return password.encode('utf-8')[:_BCRYPT_MAX_BYTES]


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash

    Args:
        plain_password: Plain text password
        hashed_password: Hashed password

    Returns:
        bool: True if password matches
    """
    try:
        return bcrypt.checkpw(
            _password_bytes(plain_password),
            hashed_password.encode('utf-8')
        )
    except ValueError:
        # Stored value is not a bcrypt hash.
        return False


def get_password_hash(password: str) -> str:
    """
    Hash a password using bcrypt

    Args:
        password: Plain text password

    Returns:
        str: Hashed password
    """
    return bcrypt.hashpw(
        _password_bytes(password),
        bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
    ).decode('utf-8')


def burn_password_check(plain_password: str) -> None:
    """Run a bcrypt comparison against a throwaway hash so unknown emails cost the same as wrong passwords."""
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = get_password_hash(uuid.uuid4().hex)
    verify_password(plain_password, _dummy_hash)


class TokenCodec:
    """
    Sign and verify compact HMAC tokens carrying a principal and a type tag.

    Access and session tokens share the access secret; refresh tokens use
    their own secret when one is configured. Expiry is checked against the
    codec's own clock with an optional leeway.
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: Optional[str] = None,
        *,
        algorithm: str = "HS256",
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
        leeway_seconds: float = 0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not access_secret:
            raise ValueError("A signing secret is required")
        self._secrets = {
            TokenType.ACCESS: access_secret,
            TokenType.SESSION: access_secret,
            TokenType.REFRESH: refresh_secret or access_secret,
        }
        self._ttls = {
            TokenType.ACCESS: access_ttl,
            TokenType.SESSION: refresh_ttl,
            TokenType.REFRESH: refresh_ttl,
        }
        self.algorithm = algorithm
        self.leeway_seconds = leeway_seconds
        self.clock = clock

    @classmethod
    def from_settings(cls, cfg: Settings, **overrides: Any) -> "TokenCodec":
        options: Dict[str, Any] = dict(
            algorithm=cfg.JWT_ALGORITHM,
            access_ttl=cfg.access_token_ttl,
            refresh_ttl=cfg.refresh_token_ttl,
            leeway_seconds=cfg.TOKEN_LEEWAY_SECONDS,
        )
        options.update(overrides)
        return cls(cfg.JWT_SECRET, cfg.REFRESH_TOKEN_SECRET, **options)

    def ttl_for(self, token_type: TokenType) -> timedelta:
        return self._ttls[TokenType(token_type)]

    def issue(
        self,
        principal: Principal,
        token_type: TokenType,
        ttl: Optional[timedelta] = None,
        token_id: Optional[str] = None,
    ) -> str:
        """
        Create a signed token for a principal

        Args:
            principal: Identity to embed
            token_type: access, refresh or session
            ttl: Lifetime override; negative values yield an expired token
            token_id: Explicit jti, generated when omitted

        Returns:
            str: Compact JWS string safe for headers and cookies
        """
        token_type = TokenType(token_type)
        lifetime = self._ttls[token_type] if ttl is None else ttl
        now = self.clock()
        claims = {
            "sub": str(principal.id),
            "email": principal.email,
            "role": UserRole(principal.role).value,
            "typ": token_type.value,
            # Fractional NumericDate; revocation compares at sub-second precision.
            "iat": now,
            "exp": now + lifetime.total_seconds(),
            "jti": token_id or uuid.uuid4().hex,
        }
        return jwt.encode(claims, self._secrets[token_type], algorithm=self.algorithm)

    def decode(self, token: str, expected_type: TokenType) -> TokenClaims:
        """
        Verify a token and return its claims

        Checks run in order: structure, signature, claim shape, type, expiry.

        Raises:
            MalformedTokenError, BadSignatureError, WrongTokenTypeError,
            TokenExpiredError
        """
        expected_type = TokenType(expected_type)
        if not token or not isinstance(token, str):
            raise MalformedTokenError()

        try:
            jwt.get_unverified_claims(token)
        except JOSEError:
            raise MalformedTokenError()

        try:
            payload = jwt.decode(
                token,
                self._secrets[expected_type],
                algorithms=[self.algorithm],
                options={"verify_exp": False, "verify_iat": False, "verify_aud": False},
            )
        except JOSEError:
            raise BadSignatureError()

        claims = self._parse_claims(payload)
        if claims.token_type != expected_type:
            raise WrongTokenTypeError(expected_type.value, claims.token_type.value)
        if self.clock() >= claims.expires_at + self.leeway_seconds:
            raise TokenExpiredError()
        return claims

    def verify(self, token: str, expected_type: TokenType) -> Principal:
        return self.decode(token, expected_type).principal

    @staticmethod
    def _parse_claims(payload: Mapping[str, Any]) -> TokenClaims:
        try:
            user_id = int(payload["sub"])
            email = payload["email"]
            role = UserRole(payload["role"])
            token_type = TokenType(payload["typ"])
            issued_at = payload["iat"]
            expires_at = payload["exp"]
        except (KeyError, TypeError, ValueError):
            raise MalformedTokenError()

        if not isinstance(email, str) or not email:
            raise MalformedTokenError()
        for stamp in (issued_at, expires_at):
            if isinstance(stamp, bool) or not isinstance(stamp, Real):
                raise MalformedTokenError()
        token_id = payload.get("jti")
        if token_id is not None and not isinstance(token_id, str):
            raise MalformedTokenError()

        return TokenClaims(
            principal=Principal(id=user_id, email=email, role=role),
            token_type=token_type,
            issued_at=float(issued_at),
            expires_at=float(expires_at),
            token_id=token_id,
        )


token_codec = TokenCodec.from_settings(settings)
