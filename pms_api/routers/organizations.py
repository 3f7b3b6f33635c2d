"""Organizations router - active organization context and member management."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.orm import Session

from pms_api.core.config import settings
from pms_api.core.deps import (
    ORG_COOKIE_NAME,
    get_db,
    require_csrf_header,
    require_identity,
    require_permission,
)
from pms_api.schemas.auth import AuthContext, SessionIdentity
from pms_api.schemas.org import (
    MemberRead,
    MemberRoleUpdate,
    OrgContextRead,
    SwitchOrganizationRequest,
)
from pms_api.services import audit_service, membership_service, org_context_service
from pms_api.services.errors import MemberNotFoundError, MembershipRuleError, PersistenceError

router = APIRouter(prefix="/organizations", tags=["Organizations"])

# Active-org cookie lifetime (30 days)
_ORG_COOKIE_MAX_AGE = 60 * 60 * 24 * 30


def _membership_error(exc: Exception) -> HTTPException:
    if isinstance(exc, MemberNotFoundError):
        return HTTPException(status_code=404, detail=exc.message)
    if isinstance(exc, MembershipRuleError):
        return HTTPException(status_code=409, detail=exc.message)
    return HTTPException(status_code=503, detail="Service temporarily unavailable")


@router.get("/context", response_model=OrgContextRead)
def get_context(
    db: Session = Depends(get_db),
    identity: SessionIdentity = Depends(require_identity),
) -> OrgContextRead:
    """Organizations the caller belongs to and the one currently active."""
    context = org_context_service.resolve_org_context(db, identity)
    return OrgContextRead(
        organizations=list(context.organizations),
        organization_id=context.organization_id,
        role=context.role,
        platform_role=context.platform_role,
        needs_onboarding=context.needs_onboarding,
    )


@router.post(
    "/switch",
    response_model=OrgContextRead,
    dependencies=[Depends(require_csrf_header)],
)
def switch_organization(
    body: SwitchOrganizationRequest,
    response: Response,
    db: Session = Depends(get_db),
    identity: SessionIdentity = Depends(require_identity),
) -> OrgContextRead:
    """Make another organization active. Non-members get the generic 403."""
    if not org_context_service.set_active_organization(db, identity, body.organization_id):
        raise HTTPException(status_code=403, detail="Not authorized")

    response.set_cookie(
        key=ORG_COOKIE_NAME,
        value=str(body.organization_id),
        max_age=_ORG_COOKIE_MAX_AGE,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        path="/",
    )
    context = org_context_service.resolve_org_context(
        db, identity.model_copy(update={"org_hint": body.organization_id})
    )
    return OrgContextRead(
        organizations=list(context.organizations),
        organization_id=context.organization_id,
        role=context.role,
        platform_role=context.platform_role,
        needs_onboarding=context.needs_onboarding,
    )


@router.get("/members", response_model=list[MemberRead])
def list_members(
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_permission("members")),
) -> list[MemberRead]:
    return membership_service.list_members(db, auth.organization_id)


@router.delete(
    "/members/{user_id}",
    status_code=204,
    dependencies=[Depends(require_csrf_header)],
)
def remove_member(
    user_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_permission("members.manage")),
) -> Response:
    """Remove a member. Requires admin; owners only for admin/owner targets."""
    try:
        membership_service.remove_member(
            db,
            auth,
            user_id,
            audit_context=audit_service.build_audit_context(auth, request),
        )
    except (MemberNotFoundError, MembershipRuleError, PersistenceError) as exc:
        raise _membership_error(exc)
    return Response(status_code=204)


@router.patch(
    "/members/{user_id}",
    response_model=MemberRead,
    dependencies=[Depends(require_csrf_header)],
)
def change_member_role(
    user_id: UUID,
    body: MemberRoleUpdate,
    request: Request,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_permission("members.manage")),
) -> MemberRead:
    try:
        return membership_service.change_member_role(
            db,
            auth,
            user_id,
            body.role,
            audit_context=audit_service.build_audit_context(auth, request),
        )
    except (MemberNotFoundError, MembershipRuleError, PersistenceError) as exc:
        raise _membership_error(exc)
