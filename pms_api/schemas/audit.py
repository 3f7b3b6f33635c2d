"""Audit trail schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from pms_api.db.enums import AuditAction, AuditEntityType

MAX_QUERY_LIMIT = 500


class AuditEntry(BaseModel):
    """Semantic part of an audit event, supplied by the acting component."""

    action: AuditAction
    description: str
    entity_type: AuditEntityType | None = None
    entity_id: str | None = None
    metadata: dict[str, Any] | None = None


class AuditContext(BaseModel):
    """Ambient part of an audit event: who, where from, for which organization."""

    model_config = ConfigDict(frozen=True)

    actor_user_id: UUID | None = None
    actor_email: str | None = None
    organization_id: UUID | None = None
    ip_address: str | None = None
    user_agent: str | None = None


class AuditQuery(BaseModel):
    """
    Audit log filters. All set filters must match (AND); the time range is
    inclusive on both ends.
    """

    organization_id: UUID | None = None
    action: AuditAction | None = None
    entity_type: AuditEntityType | None = None
    entity_id: str | None = None
    actor_user_id: UUID | None = None
    start: datetime | None = None
    end: datetime | None = None
    limit: int = Field(50, ge=1, le=MAX_QUERY_LIMIT)
    offset: int = Field(0, ge=0)


class AuditLogRead(BaseModel):
    """Audit log entry for API response."""

    id: int
    created_at: datetime
    actor_user_id: UUID | None
    actor_email: str | None
    organization_id: UUID | None
    action: str
    action_label: str
    entity_type: str | None
    entity_id: str | None
    description: str
    metadata: dict[str, Any] | None
    ip_address: str | None
    user_agent: str | None


class AuditLogListResponse(BaseModel):
    """Paginated audit log response."""

    items: list[AuditLogRead]
    total: int
    limit: int
    offset: int
