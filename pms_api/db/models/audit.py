"""SQLAlchemy ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, BigInteger, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from pms_api.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditLog(Base):
    """
    Append-only audit trail of privileged actions.

    Security:
    - Never stores secrets (metadata is redacted before insert)
    - actor_email is denormalized so entries survive user deletion
    - Rows are never updated or deleted by the application
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("idx_audit_org_created", "organization_id", "created_at"),
        Index("idx_audit_org_action_created", "organization_id", "action", "created_at"),
        Index("idx_audit_org_actor_created", "organization_id", "actor_user_id", "created_at"),
        Index("idx_audit_entity", "entity_type", "entity_id"),
    )

    # Monotonic id doubles as the persistence-order tie breaker
    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)

    actor_user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,  # System events have no actor
    )
    actor_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    organization_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,  # Cross-tenant/system events
    )

    action: Mapped[str] = mapped_column(String(64), nullable=False)  # AuditAction
    entity_type: Mapped[str | None] = mapped_column(String(32), nullable=True)  # AuditEntityType
    entity_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    # Request metadata
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)  # IPv6 max length
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
