"""Session issuance, refresh-token rotation and revocation service."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from openfare.core.exceptions import (
    BaseAPIException,
    MissingCredentialError,
    RevokedTokenError,
    TokenRejectedError,
    UserGoneError,
)
from openfare.core.metrics import AUTH_EVENTS
from openfare.core.security import TokenCodec, token_codec
from openfare.models.user import User
from openfare.schemas.auth import Principal, TokenType
from openfare.schemas.user import UserRole
from openfare.services.revocation import RevocationRegistry
from openfare.services.user_service import user_service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuedSession:
    """Tokens minted for one login or refresh"""
    user: User
    principal: Principal
    access_token: str
    refresh_token: str
    session_token: str


class TokenService:
    """Manage the access/refresh/session token lifecycle."""

    def __init__(self, codec: TokenCodec) -> None:
        self.codec = codec

    @property
    def access_expires_in(self) -> int:
        return int(self.codec.ttl_for(TokenType.ACCESS).total_seconds())

    @property
    def refresh_max_age(self) -> int:
        return int(self.codec.ttl_for(TokenType.REFRESH).total_seconds())

    @staticmethod
    def principal_for(user: User) -> Principal:
        return Principal(id=user.id, email=user.email, role=UserRole(user.role))

    def issue_session(self, user: User) -> IssuedSession:
        principal = self.principal_for(user)
        return IssuedSession(
            user=user,
            principal=principal,
            access_token=self.codec.issue(principal, TokenType.ACCESS),
            refresh_token=self.codec.issue(principal, TokenType.REFRESH),
            session_token=self.codec.issue(principal, TokenType.SESSION),
        )

    def login(self, db: Session, email: str, password: str) -> IssuedSession:
        """
        Verify credentials and mint a fresh token set

        Raises:
            InvalidCredentialsError: Unknown email or wrong password
        """
        try:
            user = user_service.authenticate_user(db, email, password)
        except BaseAPIException:
            AUTH_EVENTS.labels("login", "failure").inc()
            raise
        issued = self.issue_session(user)
        AUTH_EVENTS.labels("login", "success").inc()
        return issued

    def refresh(self, db: Session, registry: RevocationRegistry, refresh_token: Optional[str]) -> IssuedSession:
        """
        Validate a refresh token and rotate to a new token set

        The presented token id is claimed in the registry; presenting it a
        second time revokes every outstanding token of the principal.

        Raises:
            MissingCredentialError: No refresh token cookie
            TokenRejectedError: Invalid, expired, revoked or replayed token,
                or the user no longer exists
            ServiceUnavailableError: Revocation registry unreachable
        """
        if not refresh_token:
            AUTH_EVENTS.labels("refresh", "missing").inc()
            raise MissingCredentialError("Refresh token not provided")

        try:
            claims = self.codec.decode(refresh_token, TokenType.REFRESH)
        except TokenRejectedError as exc:
            AUTH_EVENTS.labels("refresh", exc.code.lower()).inc()
            logger.info("Refresh rejected: %s", exc.code)
            exc.message = "Invalid or expired refresh token"
            raise

        principal_id = claims.principal.id
        user = user_service.get_user_by_id(db, principal_id)
        if not user:
            AUTH_EVENTS.labels("refresh", "user_gone").inc()
            raise UserGoneError()

        if registry.is_revoked(principal_id, claims.issued_at):
            AUTH_EVENTS.labels("refresh", "revoked").inc()
            logger.info("Refresh rejected: principal %s revoked", principal_id)
            raise RevokedTokenError()

        if claims.token_id and not registry.claim_token(claims.token_id, claims.expires_at):
            registry.revoke(principal_id)
            AUTH_EVENTS.labels("refresh", "replayed").inc()
            logger.warning("Refresh token replay detected for principal %s; revoked all sessions", principal_id)
            raise RevokedTokenError("Refresh token has already been used")

        issued = self.issue_session(user)
        AUTH_EVENTS.labels("refresh", "success").inc()
        logger.info("Rotated refresh token for principal %s", principal_id)
        return issued

    def logout(
        self,
        registry: RevocationRegistry,
        access_token: Optional[str],
        session_token: Optional[str] = None,
    ) -> bool:
        """
        Revoke outstanding refresh/session tokens of the caller, if identifiable

        The bearer access token identifies the caller; when it is absent or
        no longer valid, the page session cookie is tried instead.

        Returns:
            bool: True if a principal was revoked
        """
        principal = self._identify(access_token, TokenType.ACCESS) or self._identify(session_token, TokenType.SESSION)
        if principal is None:
            AUTH_EVENTS.labels("logout", "anonymous").inc()
            return False

        registry.revoke(principal.id)
        AUTH_EVENTS.labels("logout", "revoked").inc()
        logger.info("Revoked sessions for principal %s", principal.id)
        return True

    def _identify(self, token: Optional[str], token_type: TokenType) -> Optional[Principal]:
        if not token:
            return None
        try:
            return self.codec.verify(token, token_type)
        except TokenRejectedError:
            return None

    def resolve_principal(
        self,
        credential: Optional[str],
        token_type: TokenType,
        registry: Optional[RevocationRegistry] = None,
    ) -> Principal:
        """
        Turn a presented credential into a principal

        Shared by API (bearer/access) and page (cookie/session) gating. When a
        registry is given, revocation is checked too.

        Raises:
            MissingCredentialError, TokenRejectedError
        """
        if not credential or not credential.strip():
            raise MissingCredentialError()
        claims = self.codec.decode(credential.strip(), token_type)
        if registry is not None and registry.is_revoked(claims.principal.id, claims.issued_at):
            raise RevokedTokenError("Session has been revoked")
        return claims.principal


token_service = TokenService(token_codec)
