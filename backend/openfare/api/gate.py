"""Request gate - authentication and role checks before any route handler runs"""

import logging
from typing import Iterable, Optional
from urllib.parse import quote

from fastapi import Request
from fastapi.responses import PlainTextResponse, RedirectResponse, Response
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from openfare.api.cookies import read_bearer_token, read_session_cookie
from openfare.api.errors import error_response
from openfare.config import settings
from openfare.core.access import AccessRule, RouteKind, classify
from openfare.core.exceptions import (
    BaseAPIException,
    InsufficientRoleError,
    MissingCredentialError,
    RateLimitExceededError,
    TokenRejectedError,
)
from openfare.core.metrics import AUTH_EVENTS
from openfare.schemas.auth import Principal, TokenType
from openfare.services.token_service import TokenService, token_service

logger = logging.getLogger(__name__)


def client_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"


class RequestGateMiddleware(BaseHTTPMiddleware):
    """
    Single pass per request: classify, rate-limit, extract credential,
    verify, authorize role, then proceed or reject.

    API paths read a bearer access token and reject with the JSON envelope.
    Page paths read the session cookie and reject with a redirect to the
    login page. Both resolve the principal through the same service call.
    The revocation registry and rate limiter are taken from ``app.state``.
    """

    def __init__(
        self,
        app: ASGIApp,
        tokens: TokenService = token_service,
        rules: Optional[Iterable[AccessRule]] = None,
    ) -> None:
        super().__init__(app)
        self.tokens = tokens
        self.rules = tuple(rules) if rules is not None else None

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        rule = classify(request.url.path, self.rules)
        if rule.kind == RouteKind.UNCLASSIFIED:
            return await call_next(request)

        limited = await self._rate_limit(request, rule)
        if limited is not None:
            return limited

        if rule.kind == RouteKind.EXEMPT:
            return await call_next(request)
        if rule.kind == RouteKind.API:
            return await self._gate_api(request, rule, call_next)
        return await self._gate_page(request, rule, call_next)

    async def _rate_limit(self, request: Request, rule: AccessRule) -> Optional[Response]:
        # Limiter backends may block on the network; keep them off the event loop.
        limiter = request.app.state.rate_limiter
        key = f"gate:{client_key(request)}"
        if await run_in_threadpool(limiter.allow, key, settings.RATE_LIMIT_PER_MINUTE, 60):
            return None

        AUTH_EVENTS.labels("gate", "rate_limited").inc()
        retry_after = await run_in_threadpool(limiter.retry_after, key, 60)
        logger.info("Rate limit exceeded for %s on %s", key, request.url.path)
        if rule.kind == RouteKind.PAGE:
            return PlainTextResponse(
                "Too many requests",
                status_code=429,
                headers={"Retry-After": str(retry_after)},
            )
        return error_response(request, RateLimitExceededError(retry_after=retry_after))

    async def _gate_api(self, request: Request, rule: AccessRule, call_next: RequestResponseEndpoint) -> Response:
        try:
            principal = self.tokens.resolve_principal(read_bearer_token(request), TokenType.ACCESS)
            self._authorize(principal, rule)
        except MissingCredentialError as exc:
            AUTH_EVENTS.labels("gate_api", "missing").inc()
            return error_response(request, exc)
        except TokenRejectedError as exc:
            AUTH_EVENTS.labels("gate_api", "rejected").inc()
            logger.info("Rejected token on %s: %s", request.url.path, exc.code)
            # Keep the precise reason in the code, not in the caller-facing message.
            exc.message = "Invalid or expired token"
            return error_response(request, exc)
        except InsufficientRoleError as exc:
            AUTH_EVENTS.labels("gate_api", "forbidden").inc()
            return error_response(request, exc)

        request.state.principal = principal
        AUTH_EVENTS.labels("gate_api", "allowed").inc()
        return await call_next(request)

    async def _gate_page(self, request: Request, rule: AccessRule, call_next: RequestResponseEndpoint) -> Response:
        registry = request.app.state.revocation_registry
        try:
            principal = await run_in_threadpool(
                self.tokens.resolve_principal,
                read_session_cookie(request),
                TokenType.SESSION,
                registry,
            )
            self._authorize(principal, rule)
        except BaseAPIException as exc:
            AUTH_EVENTS.labels("gate_page", "redirected").inc()
            logger.info("Redirecting %s to login: %s", request.url.path, exc.code)
            return self._login_redirect(request)

        request.state.principal = principal
        AUTH_EVENTS.labels("gate_page", "allowed").inc()
        return await call_next(request)

    @staticmethod
    def _authorize(principal: Principal, rule: AccessRule) -> None:
        if not rule.permits(principal.role):
            raise InsufficientRoleError([role.value for role in rule.roles])

    @staticmethod
    def _login_redirect(request: Request) -> RedirectResponse:
        target = f"{settings.LOGIN_PAGE_PATH}?next={quote(request.url.path)}"
        return RedirectResponse(url=target, status_code=303)
