"""Audit router - API endpoints for viewing the organization's audit trail."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from pms_api.core.deps import get_db, require_permission
from pms_api.db.enums import AuditAction, AuditEntityType
from pms_api.schemas.audit import MAX_QUERY_LIMIT, AuditLogListResponse, AuditQuery
from pms_api.schemas.auth import AuthContext
from pms_api.services import audit_service

router = APIRouter(prefix="/audit", tags=["Audit"])


@router.get("/", response_model=AuditLogListResponse)
def list_audit_logs(
    limit: int = Query(50, ge=1, le=MAX_QUERY_LIMIT),
    offset: int = Query(0, ge=0),
    action: AuditAction | None = Query(None, description="Filter by action"),
    entity_type: AuditEntityType | None = Query(None, description="Filter by entity type"),
    entity_id: str | None = Query(None, description="Filter by entity id"),
    actor_user_id: UUID | None = Query(None, description="Filter by actor"),
    start: datetime | None = Query(None, description="Events at or after this time"),
    end: datetime | None = Query(None, description="Events at or before this time"),
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_permission("audit.view")),
) -> AuditLogListResponse:
    """
    List audit log entries for the active organization, newest first.

    Requires: admin role
    """
    filters = AuditQuery(
        organization_id=auth.organization_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        start=start,
        end=end,
        limit=limit,
        offset=offset,
    )
    logs = audit_service.query(db, filters)
    return AuditLogListResponse(
        items=[audit_service.to_read(log) for log in logs],
        total=audit_service.count(db, filters),
        limit=limit,
        offset=offset,
    )


@router.get("/actions")
def list_actions(
    auth: AuthContext = Depends(require_permission("audit.view")),
) -> list[dict[str, str]]:
    """Action catalogue with display labels (for filter dropdowns)."""
    return [
        {"value": action.value, "label": audit_service.action_label(action)}
        for action in AuditAction
    ]
