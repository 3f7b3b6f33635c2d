"""
Authorization service - the single role checkpoint for privileged operations.

``require_role`` never raises for authorization outcomes; it returns an
AuthContext or a Denied value and the caller decides the user-visible error.
Read-only: audit recording is left to the acting component.
"""

import logging

from sqlalchemy.orm import Session

from pms_api.core.policies import min_role_for
from pms_api.core.structured_logging import build_log_context
from pms_api.db.enums import Role
from pms_api.schemas.auth import AuthContext, Denied, DenialReason, SessionIdentity
from pms_api.services import org_context_service

logger = logging.getLogger(__name__)


def require_role(
    db: Session, identity: SessionIdentity | None, min_role: Role
) -> AuthContext | Denied:
    """Admit the caller if their role in the active organization is at least ``min_role``."""
    if identity is None:
        return Denied(reason=DenialReason.UNAUTHENTICATED)

    context = org_context_service.resolve_org_context(db, identity)
    if context.organization_id is None or context.role is None:
        return Denied(reason=DenialReason.NO_ORGANIZATION)

    if not context.role.satisfies(min_role):
        logger.info(
            "Role %s below required %s",
            context.role.value,
            min_role.value,
            extra=build_log_context(
                user_id=str(identity.user_id), org_id=str(context.organization_id)
            ),
        )
        return Denied(reason=DenialReason.INSUFFICIENT_ROLE)

    return AuthContext(
        user_id=identity.user_id,
        email=identity.email,
        organization_id=context.organization_id,
        role=context.role,
    )


def authorize(
    db: Session, identity: SessionIdentity | None, operation: str
) -> AuthContext | Denied:
    """``require_role`` with the minimum role looked up in the policy table."""
    return require_role(db, identity, min_role_for(operation))


def is_denied(result: AuthContext | Denied) -> bool:
    return isinstance(result, Denied)
