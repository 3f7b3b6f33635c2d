"""SQLAlchemy ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from pms_api.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IntegrationSetting(Base):
    """
    Per-organization credentials for one third-party integration.

    ``values`` maps field name to stored value. Secret fields hold Fernet
    tokens ("enc:..."), never plaintext. The whole map is written in one row
    so a save is either fully persisted or not at all.

    Verification columns cache the last connection test for the credentials
    at ``current_version``; any save resets them.
    """

    __tablename__ = "integration_settings"
    __table_args__ = (
        UniqueConstraint(
            "organization_id", "integration_key", name="uq_integration_settings_org_key"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    integration_key: Mapped[str] = mapped_column(String(32), nullable=False)  # IntegrationKey
    values: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    # Optimistic version, bumped on every save
    current_version: Mapped[int] = mapped_column(
        Integer, default=1, server_default=text("1"), nullable=False
    )

    last_verified_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_verification_ok: Mapped[bool | None] = mapped_column(nullable=True)
    last_verification_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    updated_by_user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
