"""FastAPI dependencies for identity, authorization, and database access."""

import logging
from typing import Generator
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from pms_api.core.policies import min_role_for
from pms_api.core.security import decode_session_token
from pms_api.db.session import SessionLocal
from pms_api.schemas.auth import AuthContext, Denied, DenialReason, SessionIdentity
from pms_api.services import audit_service, authorization_service

logger = logging.getLogger(__name__)


# Cookie and header names
COOKIE_NAME = "pms_session"
ORG_COOKIE_NAME = "pms_current_org"
ORG_HEADER = "X-Organization-Id"
CSRF_HEADER = "X-Requested-With"
CSRF_HEADER_VALUE = "XMLHttpRequest"

NOT_AUTHORIZED = "Not authorized"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _parse_uuid(value: str | None) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(value)
    except ValueError:
        return None


def get_session_identity(request: Request) -> SessionIdentity | None:
    """
    Identity from the signed session cookie, or None when absent/invalid.

    The active-organization hint comes from the X-Organization-Id header or
    the org cookie; it is a request, not a grant, and is checked against
    memberships later.
    """
    token = request.cookies.get(COOKIE_NAME)
    if not token:
        return None

    try:
        payload = decode_session_token(token)
    except jwt.InvalidTokenError:
        return None

    user_id = _parse_uuid(payload.get("sub"))
    if user_id is None:
        return None

    org_hint = _parse_uuid(request.headers.get(ORG_HEADER)) or _parse_uuid(
        request.cookies.get(ORG_COOKIE_NAME)
    )
    return SessionIdentity(
        user_id=user_id,
        email=payload.get("email") or "",
        org_hint=org_hint,
        ip_address=audit_service.get_client_ip(request),
        user_agent=audit_service.get_user_agent(request),
    )


def require_identity(request: Request) -> SessionIdentity:
    """Authenticated identity or 401."""
    identity = get_session_identity(request)
    if identity is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return identity


def raise_for_denied(denied: Denied) -> None:
    """Translate a Denied outcome into 401/403 with the generic message."""
    if denied.reason == DenialReason.UNAUTHENTICATED:
        raise HTTPException(status_code=401, detail="Not authenticated")
    raise HTTPException(status_code=403, detail=NOT_AUTHORIZED)


def require_permission(operation: str):
    """
    Dependency factory for policy-based authorization.

    Usage:
        @router.put("/{key}", dependencies=[Depends(require_csrf_header)])
        def save(auth: AuthContext = Depends(require_permission("integrations.manage"))): ...
    """
    min_role = min_role_for(operation)

    def dependency(request: Request, db: Session = Depends(get_db)) -> AuthContext:
        identity = get_session_identity(request)
        result = authorization_service.require_role(db, identity, min_role)
        if isinstance(result, Denied):
            logger.info("Denied %s: %s", operation, result.reason.value)
            raise_for_denied(result)
        return result

    return dependency


def require_csrf_header(request: Request) -> None:
    """
    Verify CSRF header on mutations.

    Apply to state-changing endpoints (POST, PUT, DELETE).

    Raises:
        HTTPException 403: Missing or invalid CSRF header
    """
    if request.headers.get(CSRF_HEADER) != CSRF_HEADER_VALUE:
        raise HTTPException(
            status_code=403,
            detail=f"Missing CSRF header. Include '{CSRF_HEADER}: {CSRF_HEADER_VALUE}'",
        )
