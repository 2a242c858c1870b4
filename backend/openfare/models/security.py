"""Security-related persistence models."""

from sqlalchemy import Column, Integer, String, DateTime, Index, UniqueConstraint
from sqlalchemy.sql import func

from openfare.core.database import Base


class RevokedToken(Base):
    """Revocation record for a whole principal or a single consumed refresh token."""

    __tablename__ = "revocations"

    KIND_PRINCIPAL = "principal"
    KIND_TOKEN = "token"

    id = Column(Integer, primary_key=True, index=True)
    kind = Column(String(16), nullable=False)
    # Principal id (as text) or refresh token jti.
    subject = Column(String(128), nullable=False)
    revoked_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("kind", "subject", name="uq_revocations_kind_subject"),
        Index("idx_revocations_expires_at", "expires_at"),
    )

    def __repr__(self):
        return f"<RevokedToken(kind='{self.kind}', subject='{self.subject}')>"
