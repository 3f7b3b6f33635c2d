"""Audit logging service - append-only trail of privileged actions.

Security guidelines:
- NEVER log secrets (API keys, passwords, tokens); metadata is redacted on write
- Record only after the primary change has been committed, so a crash in
  between can lose an entry but never produce a false one
- Audit write failures are logged and swallowed; they never undo the primary action
- IP: Trust X-Forwarded-For only when TRUST_PROXY_HEADERS is set (behind LB)
"""

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import Request
from sqlalchemy import select, func
from sqlalchemy.orm import Session

from pms_api.core.config import settings
from pms_api.core.structured_logging import build_log_context
from pms_api.db.enums import AuditAction, AuditEntityType
from pms_api.db.models import AuditLog
from pms_api.schemas.audit import AuditContext, AuditEntry, AuditLogRead, AuditQuery
from pms_api.schemas.auth import AuthContext, SessionIdentity

logger = logging.getLogger(__name__)

REDACTED = "[redacted]"

# Metadata keys whose values are replaced before insert (matched case-insensitively,
# after removing "_" and "-")
_SENSITIVE_KEY_MARKERS = (
    "password",
    "pass",
    "secret",
    "token",
    "apikey",
    "accesskey",
    "privatekey",
    "credential",
)

ACTION_LABELS: dict[AuditAction, str] = {
    AuditAction.AUTH_LOGIN: "Logged in",
    AuditAction.AUTH_LOGOUT: "Logged out",
    AuditAction.AUTH_FAILED_LOGIN: "Failed login",
    AuditAction.USER_CREATED: "User created",
    AuditAction.USER_UPDATED: "User updated",
    AuditAction.USER_DELETED: "User deleted",
    AuditAction.USER_ROLE_CHANGED: "Role changed",
    AuditAction.ORG_CREATED: "Organization created",
    AuditAction.ORG_UPDATED: "Organization updated",
    AuditAction.ORG_MEMBER_ADDED: "Member added",
    AuditAction.ORG_MEMBER_REMOVED: "Member removed",
    AuditAction.PROPERTY_CREATED: "Property created",
    AuditAction.PROPERTY_UPDATED: "Property updated",
    AuditAction.PROPERTY_DELETED: "Property deleted",
    AuditAction.UNIT_CREATED: "Unit created",
    AuditAction.UNIT_UPDATED: "Unit updated",
    AuditAction.UNIT_DELETED: "Unit deleted",
    AuditAction.APPLICATION_SUBMITTED: "Application submitted",
    AuditAction.APPLICATION_REVIEWED: "Application reviewed",
    AuditAction.APPLICATION_APPROVED: "Application approved",
    AuditAction.APPLICATION_REJECTED: "Application rejected",
    AuditAction.APPLICATION_WITHDRAWN: "Application withdrawn",
    AuditAction.LEASE_CREATED: "Lease created",
    AuditAction.LEASE_UPDATED: "Lease updated",
    AuditAction.LEASE_ACTIVATED: "Lease activated",
    AuditAction.LEASE_TERMINATED: "Lease terminated",
    AuditAction.LEASE_RENEWED: "Lease renewed",
    AuditAction.PAYMENT_RECORDED: "Payment recorded",
    AuditAction.PAYMENT_VOIDED: "Payment voided",
    AuditAction.LATE_FEE_APPLIED: "Late fee applied",
    AuditAction.LATE_FEE_WAIVED: "Late fee waived",
    AuditAction.MAINTENANCE_CREATED: "Request created",
    AuditAction.MAINTENANCE_UPDATED: "Request updated",
    AuditAction.MAINTENANCE_ASSIGNED: "Request assigned",
    AuditAction.MAINTENANCE_COMPLETED: "Request completed",
    AuditAction.MAINTENANCE_CANCELLED: "Request cancelled",
    AuditAction.MAINTENANCE_COMMENT_ADDED: "Comment added",
    AuditAction.DOCUMENT_UPLOADED: "Document uploaded",
    AuditAction.DOCUMENT_DELETED: "Document deleted",
    AuditAction.DOCUMENT_ACCESSED: "Document accessed",
    AuditAction.SETTINGS_UPDATED: "Settings updated",
    AuditAction.EXPORT_REQUESTED: "Export requested",
    AuditAction.INTEGRATION_SETTINGS_UPDATED: "Integration settings updated",
    AuditAction.INTEGRATION_SETTINGS_CLEARED: "Integration settings cleared",
    AuditAction.INTEGRATION_CONNECTION_TESTED: "Integration connection verified",
    AuditAction.INTEGRATION_CONNECTION_FAILED: "Integration connection test failed",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# =============================================================================
# Request context
# =============================================================================


def get_client_ip(request: Request | None) -> str | None:
    """
    Extract client IP from request.

    Only trusts X-Forwarded-For when TRUST_PROXY_HEADERS=True (behind reverse proxy).
    In development/direct connections, uses request.client.host.
    """
    if not request:
        return None

    if settings.TRUST_PROXY_HEADERS:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            # X-Forwarded-For: client, proxy1, proxy2 - take first
            return forwarded.split(",")[0].strip()

    if request.client:
        return request.client.host

    return None


def get_user_agent(request: Request | None) -> str | None:
    """Extract user agent from request."""
    if not request:
        return None
    ua = request.headers.get("user-agent", "")
    # Truncate to 500 chars (DB limit)
    return ua[:500] if ua else None


def build_audit_context(
    auth: AuthContext | None = None,
    request: Request | None = None,
    *,
    identity: SessionIdentity | None = None,
) -> AuditContext:
    """
    Build the ambient audit context for an action.

    ``auth`` supplies actor and organization for privileged actions;
    ``identity`` covers authenticated actions outside any organization.
    Request headers win over values carried on the identity.
    """
    actor_user_id = auth.user_id if auth else (identity.user_id if identity else None)
    actor_email = auth.email if auth else (identity.email if identity else None)
    ip_address = get_client_ip(request) or (identity.ip_address if identity else None)
    user_agent = get_user_agent(request) or (identity.user_agent if identity else None)
    return AuditContext(
        actor_user_id=actor_user_id,
        actor_email=actor_email,
        organization_id=auth.organization_id if auth else None,
        ip_address=ip_address,
        user_agent=user_agent,
    )


# =============================================================================
# Write path
# =============================================================================


def _is_sensitive_key(key: str) -> bool:
    normalized = key.lower().replace("_", "").replace("-", "")
    return any(marker in normalized for marker in _SENSITIVE_KEY_MARKERS)


def redact_metadata(metadata: Any) -> Any:
    """Replace values stored under secret-looking keys, recursively."""
    if isinstance(metadata, dict):
        return {
            key: REDACTED if _is_sensitive_key(str(key)) else redact_metadata(value)
            for key, value in metadata.items()
        }
    if isinstance(metadata, (list, tuple)):
        return [redact_metadata(item) for item in metadata]
    return metadata


def record(db: Session, entry: AuditEntry, context: AuditContext) -> AuditLog | None:
    """
    Persist one audit entry.

    Call after the primary change has been committed. Commits on its own;
    on failure the session is rolled back (undoing only this insert), the
    error is logged, and None is returned.
    """
    log = AuditLog(
        created_at=_utcnow(),
        actor_user_id=context.actor_user_id,
        actor_email=context.actor_email,
        organization_id=context.organization_id,
        action=entry.action.value,
        entity_type=entry.entity_type.value if entry.entity_type else None,
        entity_id=entry.entity_id,
        description=entry.description,
        metadata_=redact_metadata(entry.metadata) if entry.metadata else None,
        ip_address=context.ip_address,
        user_agent=context.user_agent[:500] if context.user_agent else None,
    )
    try:
        db.add(log)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "Failed to write audit entry %s",
            entry.action.value,
            extra=build_log_context(
                user_id=str(context.actor_user_id) if context.actor_user_id else None,
                org_id=str(context.organization_id) if context.organization_id else None,
            ),
        )
        return None
    return log


def record_auth_event(
    db: Session,
    action: AuditAction,
    email: str,
    context: AuditContext | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditLog | None:
    """Record a login/logout/failed-login event (no organization scope)."""
    descriptions = {
        AuditAction.AUTH_LOGIN: f"User {email} logged in",
        AuditAction.AUTH_LOGOUT: f"User {email} logged out",
        AuditAction.AUTH_FAILED_LOGIN: f"Failed login attempt for {email}",
    }
    if action not in descriptions:
        raise ValueError(f"{action.value} is not an auth event")
    base = context or AuditContext()
    return record(
        db,
        AuditEntry(
            action=action,
            entity_type=AuditEntityType.USER,
            description=descriptions[action],
            metadata=metadata,
        ),
        base.model_copy(update={"actor_email": email, "organization_id": None}),
    )


# =============================================================================
# Read path
# =============================================================================


def _filtered(filters: AuditQuery):
    stmt = select(AuditLog)
    if filters.organization_id is not None:
        stmt = stmt.where(AuditLog.organization_id == filters.organization_id)
    if filters.action is not None:
        stmt = stmt.where(AuditLog.action == filters.action.value)
    if filters.entity_type is not None:
        stmt = stmt.where(AuditLog.entity_type == filters.entity_type.value)
    if filters.entity_id is not None:
        stmt = stmt.where(AuditLog.entity_id == filters.entity_id)
    if filters.actor_user_id is not None:
        stmt = stmt.where(AuditLog.actor_user_id == filters.actor_user_id)
    if filters.start is not None:
        stmt = stmt.where(AuditLog.created_at >= _as_utc(filters.start))
    if filters.end is not None:
        stmt = stmt.where(AuditLog.created_at <= _as_utc(filters.end))
    return stmt


def query(db: Session, filters: AuditQuery) -> list[AuditLog]:
    """Return matching entries, newest first (persistence order breaks ties)."""
    stmt = (
        _filtered(filters)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset(filters.offset)
        .limit(filters.limit)
    )
    return list(db.scalars(stmt))


def count(db: Session, filters: AuditQuery) -> int:
    """Count entries matching the filters (ignores limit/offset)."""
    subquery = _filtered(filters).subquery()
    return db.scalar(select(func.count()).select_from(subquery)) or 0


def action_label(action: AuditAction | str) -> str:
    """Human-readable label for an action value."""
    try:
        action = AuditAction(action)
    except ValueError:
        return str(action)
    return ACTION_LABELS.get(action, action.value)


def to_read(log: AuditLog) -> AuditLogRead:
    return AuditLogRead(
        id=log.id,
        created_at=log.created_at,
        actor_user_id=log.actor_user_id,
        actor_email=log.actor_email,
        organization_id=log.organization_id,
        action=log.action,
        action_label=action_label(log.action),
        entity_type=log.entity_type,
        entity_id=log.entity_id,
        description=log.description,
        metadata=log.metadata_,
        ip_address=log.ip_address,
        user_agent=log.user_agent,
    )
