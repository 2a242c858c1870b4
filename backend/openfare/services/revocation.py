"""Refresh/session token revocation registry.

A principal revocation blocks every refresh or session token issued at or
before the revocation instant. A token claim marks one refresh token id as
consumed so a rotated token cannot be replayed.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple

import redis
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from openfare.config import Settings
from openfare.core.exceptions import ServiceUnavailableError
from openfare.models.security import RevokedToken

logger = logging.getLogger(__name__)


class RevocationRegistry(ABC):
    """Server-side record of refresh tokens that must no longer be honoured."""

    def __init__(self, record_ttl: timedelta = timedelta(days=7), clock: Callable[[], float] = time.time) -> None:
        self.record_ttl = record_ttl
        self.clock = clock

    @abstractmethod
    def revoke(self, principal_id: int) -> None:
        """Revoke every token issued to the principal up to now."""

    @abstractmethod
    def revoked_since(self, principal_id: int) -> Optional[float]:
        """Epoch seconds of the latest live revocation, or None."""

    @abstractmethod
    def claim_token(self, token_id: str, expires_at: float) -> bool:
        """Mark a refresh token id as used. Returns False if it was already used."""

    def is_revoked(self, principal_id: int, issued_at: Optional[float] = None) -> bool:
        since = self.revoked_since(principal_id)
        if since is None:
            return False
        return issued_at is None or issued_at <= since

    def sweep(self) -> int:
        """Drop expired records; backends with native expiry return 0."""
        return 0

    def _ttl_seconds(self, expires_at: Optional[float] = None) -> int:
        if expires_at is None:
            return max(1, int(self.record_ttl.total_seconds()))
        return max(1, math.ceil(expires_at - self.clock()))


class InMemoryRevocationRegistry(RevocationRegistry):
    """Lock-guarded dictionaries with TTL eviction, for single-node deployments and tests."""

    def __init__(
        self,
        record_ttl: timedelta = timedelta(days=7),
        clock: Callable[[], float] = time.time,
        sweep_interval_seconds: float = 60.0,
    ) -> None:
        super().__init__(record_ttl, clock)
        self._lock = threading.Lock()
        self._principals: Dict[int, Tuple[float, float]] = {}
        self._tokens: Dict[str, float] = {}
        self._sweep_interval = sweep_interval_seconds
        self._last_sweep = clock()

    def revoke(self, principal_id: int) -> None:
        now = self.clock()
        with self._lock:
            self._principals[int(principal_id)] = (now, now + self.record_ttl.total_seconds())
            self._maybe_sweep(now)

    def revoked_since(self, principal_id: int) -> Optional[float]:
        now = self.clock()
        with self._lock:
            record = self._principals.get(int(principal_id))
            if record is None:
                return None
            revoked_at, expires_at = record
            if expires_at <= now:
                del self._principals[int(principal_id)]
                return None
            return revoked_at

    def claim_token(self, token_id: str, expires_at: float) -> bool:
        now = self.clock()
        with self._lock:
            self._maybe_sweep(now)
            held_until = self._tokens.get(token_id)
            if held_until is not None and held_until > now:
                return False
            self._tokens[token_id] = max(expires_at, now + 1)
            return True

    def sweep(self) -> int:
        with self._lock:
            return self._sweep(self.clock())

    def _maybe_sweep(self, now: float) -> None:
        if now - self._last_sweep >= self._sweep_interval:
            self._sweep(now)

    def _sweep(self, now: float) -> int:
        stale_principals = [pid for pid, (_, exp) in self._principals.items() if exp <= now]
        stale_tokens = [jti for jti, exp in self._tokens.items() if exp <= now]
        for pid in stale_principals:
            del self._principals[pid]
        for jti in stale_tokens:
            del self._tokens[jti]
        self._last_sweep = now
        return len(stale_principals) + len(stale_tokens)


class RedisRevocationRegistry(RevocationRegistry):
    """Redis-backed registry; keys expire on their own."""

    PRINCIPAL_PREFIX = "openfare:auth:revoked:principal:"
    TOKEN_PREFIX = "openfare:auth:refresh:used:"

    def __init__(
        self,
        client: "redis.Redis",
        record_ttl: timedelta = timedelta(days=7),
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(record_ttl, clock)
        self.client = client

    @classmethod
    def from_url(cls, url: str, *, timeout: float, record_ttl: timedelta) -> "RedisRevocationRegistry":
        client = redis.Redis.from_url(
            url,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
            decode_responses=True,
        )
        return cls(client, record_ttl=record_ttl)

    def revoke(self, principal_id: int) -> None:
        try:
            self.client.set(
                f"{self.PRINCIPAL_PREFIX}{int(principal_id)}",
                repr(self.clock()),
                ex=self._ttl_seconds(),
            )
        except redis.RedisError as exc:
            logger.error("Redis revoke failed for principal %s: %s", principal_id, exc)
            raise ServiceUnavailableError("Revocation store unavailable")

    def revoked_since(self, principal_id: int) -> Optional[float]:
        try:
            value = self.client.get(f"{self.PRINCIPAL_PREFIX}{int(principal_id)}")
        except redis.RedisError as exc:
            logger.error("Redis lookup failed for principal %s: %s", principal_id, exc)
            raise ServiceUnavailableError("Revocation store unavailable")
        return float(value) if value is not None else None

    def claim_token(self, token_id: str, expires_at: float) -> bool:
        try:
            created = self.client.set(
                f"{self.TOKEN_PREFIX}{token_id}",
                "1",
                nx=True,
                ex=self._ttl_seconds(expires_at),
            )
        except redis.RedisError as exc:
            logger.error("Redis token claim failed: %s", exc)
            raise ServiceUnavailableError("Revocation store unavailable")
        return bool(created)


class DatabaseRevocationRegistry(RevocationRegistry):
    """Relational registry on the ``revocations`` table; claims rely on its unique constraint."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        record_ttl: timedelta = timedelta(days=7),
        clock: Callable[[], float] = time.time,
        sweep_interval_seconds: float = 60.0,
    ) -> None:
        super().__init__(record_ttl, clock)
        self.session_factory = session_factory
        self._sweep_interval = sweep_interval_seconds
        self._last_sweep = clock()

    @staticmethod
    def _to_datetime(epoch: float) -> datetime:
        return datetime.fromtimestamp(epoch, tz=timezone.utc)

    @staticmethod
    def _to_epoch(value: datetime) -> float:
        # sqlite drops tzinfo; stored values are always UTC.
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()

    def _find(self, db: Session, kind: str, subject: str) -> Optional[RevokedToken]:
        return (
            db.query(RevokedToken)
            .filter(RevokedToken.kind == kind, RevokedToken.subject == subject)
            .first()
        )

    def revoke(self, principal_id: int) -> None:
        now = self.clock()
        revoked_at = self._to_datetime(now)
        expires_at = self._to_datetime(now + self.record_ttl.total_seconds())
        subject = str(int(principal_id))
        db = self.session_factory()
        try:
            record = self._find(db, RevokedToken.KIND_PRINCIPAL, subject)
            if record is None:
                db.add(RevokedToken(
                    kind=RevokedToken.KIND_PRINCIPAL,
                    subject=subject,
                    revoked_at=revoked_at,
                    expires_at=expires_at,
                ))
            else:
                record.revoked_at = revoked_at
                record.expires_at = expires_at
            db.commit()
        except IntegrityError:
            db.rollback()
            self._overwrite_revocation(db, principal_id, subject, revoked_at, expires_at)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Database revoke failed for principal %s: %s", principal_id, exc)
            raise ServiceUnavailableError("Revocation store unavailable")
        finally:
            db.close()
        self._maybe_sweep()

    def _overwrite_revocation(
        self,
        db: Session,
        principal_id: int,
        subject: str,
        revoked_at: datetime,
        expires_at: datetime,
    ) -> None:
        """A concurrent revoke inserted first; overwrite its timestamps."""
        try:
            record = self._find(db, RevokedToken.KIND_PRINCIPAL, subject)
            if record is not None:
                record.revoked_at = revoked_at
                record.expires_at = expires_at
                db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Database revoke retry failed for principal %s: %s", principal_id, exc)
            raise ServiceUnavailableError("Revocation store unavailable")

    def revoked_since(self, principal_id: int) -> Optional[float]:
        db = self.session_factory()
        try:
            record = self._find(db, RevokedToken.KIND_PRINCIPAL, str(int(principal_id)))
            if record is None or self._to_epoch(record.expires_at) <= self.clock():
                return None
            return self._to_epoch(record.revoked_at)
        except SQLAlchemyError as exc:
            logger.error("Database revocation lookup failed for principal %s: %s", principal_id, exc)
            raise ServiceUnavailableError("Revocation store unavailable")
        finally:
            db.close()

    def claim_token(self, token_id: str, expires_at: float) -> bool:
        self._maybe_sweep()
        now = self.clock()
        db = self.session_factory()
        try:
            existing = self._find(db, RevokedToken.KIND_TOKEN, token_id)
            if existing is not None:
                if self._to_epoch(existing.expires_at) > now:
                    return False
                db.delete(existing)
                db.flush()
            db.add(RevokedToken(
                kind=RevokedToken.KIND_TOKEN,
                subject=token_id,
                revoked_at=self._to_datetime(now),
                expires_at=self._to_datetime(max(expires_at, now + 1)),
            ))
            db.commit()
            return True
        except IntegrityError:
            db.rollback()
            return False
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Database token claim failed: %s", exc)
            raise ServiceUnavailableError("Revocation store unavailable")
        finally:
            db.close()

    def sweep(self) -> int:
        db = self.session_factory()
        try:
            count = (
                db.query(RevokedToken)
                .filter(RevokedToken.expires_at <= self._to_datetime(self.clock()))
                .delete(synchronize_session=False)
            )
            db.commit()
            return count
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Database revocation sweep failed: %s", exc)
            raise ServiceUnavailableError("Revocation store unavailable")
        finally:
            db.close()

    def _maybe_sweep(self) -> None:
        """Sweep at most once per interval, piggybacking on writes."""
        now = self.clock()
        if now - self._last_sweep < self._sweep_interval:
            return
        self._last_sweep = now
        try:
            removed = self.sweep()
        except ServiceUnavailableError:
            logger.warning("Revocation sweep skipped; retrying after the next interval")
            return
        if removed:
            logger.info("Swept %s expired revocation records", removed)


def build_revocation_registry(cfg: Settings, session_factory: Optional[Callable[[], Session]] = None) -> RevocationRegistry:
    """Create the registry selected by REVOCATION_BACKEND."""
    backend = cfg.REVOCATION_BACKEND
    if backend == "memory":
        return InMemoryRevocationRegistry(
            record_ttl=cfg.refresh_token_ttl,
            sweep_interval_seconds=cfg.RATE_LIMIT_SWEEP_INTERVAL_SECONDS,
        )
    if backend == "redis":
        return RedisRevocationRegistry.from_url(
            cfg.REDIS_URL,
            timeout=cfg.STORE_TIMEOUT_SECONDS,
            record_ttl=cfg.refresh_token_ttl,
        )
    if backend == "database":
        if session_factory is None:
            from openfare.core.database import SessionLocal
            session_factory = SessionLocal
        return DatabaseRevocationRegistry(session_factory, record_ttl=cfg.refresh_token_ttl,
            sweep_interval_seconds=cfg.RATE_LIMIT_SWEEP_INTERVAL_SECONDS,
        )
    raise ValueError(f"Unknown REVOCATION_BACKEND: {backend}")
