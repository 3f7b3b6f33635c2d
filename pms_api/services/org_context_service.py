"""Org context service - which organization and role a session is acting as."""

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from pms_api.core.structured_logging import build_log_context
from pms_api.db.enums import Role
from pms_api.db.models import Membership, Organization, User
from pms_api.schemas.auth import OrgContext, OrgMembershipView, SessionIdentity

logger = logging.getLogger(__name__)

# Per-session memo: resolved contexts live as long as the request's Session
_MEMO_KEY = "pms_org_context"


def _memo(db: Session) -> dict[tuple[UUID, UUID | None], OrgContext]:
    return db.info.setdefault(_MEMO_KEY, {})


def clear_memo(db: Session) -> None:
    db.info.pop(_MEMO_KEY, None)


def _membership_rows(db: Session, user_id: UUID) -> list[tuple[Membership, Organization]]:
    stmt = (
        select(Membership, Organization)
        .join(Organization, Organization.id == Membership.organization_id)
        .where(Membership.user_id == user_id)
        .order_by(Organization.id.asc())
    )
    return [(membership, org) for membership, org in db.execute(stmt).all()]


def list_user_organizations(db: Session, user_id: UUID) -> list[OrgMembershipView]:
    """
    All organizations the user belongs to, ordered by organization id.

    Memberships carrying a role this build does not know are skipped (and
    logged) rather than mapped to some guessed privilege level.
    """
    views: list[OrgMembershipView] = []
    for membership, org in _membership_rows(db, user_id):
        if not Role.has_value(membership.role):
            logger.warning(
                "Ignoring membership with unknown role %r",
                membership.role,
                extra=build_log_context(user_id=str(user_id), org_id=str(org.id)),
            )
            continue
        views.append(
            OrgMembershipView(
                organization_id=org.id,
                name=org.name,
                slug=org.slug,
                role=Role(membership.role),
            )
        )
    return views


def _most_recent(rows: list[tuple[Membership, Organization]], allowed: set[UUID]) -> UUID | None:
    best: Membership | None = None
    for membership, _org in rows:
        if membership.organization_id not in allowed or membership.last_active_at is None:
            continue
        if best is None or membership.last_active_at > best.last_active_at:
            best = membership
    return best.organization_id if best else None


def resolve_org_context(db: Session, identity: SessionIdentity) -> OrgContext:
    """
    Resolve the active organization for a session.

    Selection order: the session's org hint (only if the user is a member),
    then the most recently used membership, then the first membership by
    organization id. No memberships yields an empty context, which callers
    treat as "needs onboarding".

    Read-only. Repeated calls with the same Session return the same object.
    """
    memo = _memo(db)
    cache_key = (identity.user_id, identity.org_hint)
    if cache_key in memo:
        return memo[cache_key]

    user = db.get(User, identity.user_id)
    platform_role = user.legacy_role if user else None

    rows = _membership_rows(db, identity.user_id)
    organizations = list_user_organizations(db, identity.user_id)
    by_id = {view.organization_id: view for view in organizations}

    active: UUID | None = None
    if identity.org_hint is not None and identity.org_hint in by_id:
        active = identity.org_hint
    if active is None:
        active = _most_recent(rows, set(by_id))
    if active is None and organizations:
        active = organizations[0].organization_id

    context = OrgContext(
        organizations=tuple(organizations),
        organization_id=active,
        role=by_id[active].role if active is not None else None,
        platform_role=platform_role,
    )
    memo[cache_key] = context
    return context


def set_active_organization(db: Session, identity: SessionIdentity, org_id: UUID) -> bool:
    """
    Make ``org_id`` the user's most recently used organization.

    Returns False (and changes nothing) when the user is not a member.
    """
    membership = db.scalar(
        select(Membership).where(
            Membership.user_id == identity.user_id,
            Membership.organization_id == org_id,
        )
    )
    if membership is None or not Role.has_value(membership.role):
        return False

    membership.last_active_at = datetime.now(timezone.utc)
    db.commit()
    clear_memo(db)
    logger.info(
        "Active organization switched",
        extra=build_log_context(user_id=str(identity.user_id), org_id=str(org_id)),
    )
    return True
