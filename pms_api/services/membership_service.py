"""Membership service - list members and guarded membership mutations.

Mutations require an AuthContext from ``require_role`` with at least the
"members.manage" role. The checks here cover who may touch whom; the
organization always keeps at least one owner. Owner rows are locked before
the last-owner check and the count is repeated after the change is flushed.
"""

import logging
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pms_api.core.structured_logging import build_log_context
from pms_api.db.enums import AuditAction, AuditEntityType, Role
from pms_api.db.models import Membership, User
from pms_api.schemas.audit import AuditContext, AuditEntry
from pms_api.schemas.auth import AuthContext
from pms_api.schemas.org import MemberRead
from pms_api.services import audit_service
from pms_api.services.errors import (
    MemberNotFoundError,
    MembershipRuleError,
    PersistenceError,
)

logger = logging.getLogger(__name__)

# Roles only an owner may grant, or act upon
_PRIVILEGED_ROLES = (Role.OWNER, Role.ADMIN)


def get_membership_for_org(db: Session, org_id: UUID, user_id: UUID) -> Membership | None:
    """Get membership for a specific user in a specific org."""
    return db.scalar(
        select(Membership).where(
            Membership.organization_id == org_id,
            Membership.user_id == user_id,
        )
    )


def list_members(db: Session, org_id: UUID) -> list[MemberRead]:
    """Members of an organization, oldest first."""
    stmt = (
        select(Membership, User)
        .join(User, User.id == Membership.user_id)
        .where(Membership.organization_id == org_id)
        .order_by(Membership.created_at.asc(), User.email.asc())
    )
    members: list[MemberRead] = []
    for membership, user in db.execute(stmt).all():
        if not Role.has_value(membership.role):
            continue
        members.append(
            MemberRead(
                user_id=user.id,
                email=user.email,
                display_name=user.display_name,
                role=Role(membership.role),
                joined_at=membership.created_at,
            )
        )
    return members


def count_owners(db: Session, org_id: UUID) -> int:
    return db.scalar(
        select(func.count())
        .select_from(Membership)
        .where(Membership.organization_id == org_id, Membership.role == Role.OWNER.value)
    ) or 0


def _lock_owner_count(db: Session, org_id: UUID) -> int:
    """Lock the organization's owner rows for this transaction and count them."""
    owners = db.execute(
        select(Membership)
        .where(Membership.organization_id == org_id, Membership.role == Role.OWNER.value)
        .with_for_update()
    ).scalars().all()
    return len(owners)


def _load_target(db: Session, auth: AuthContext, target_user_id: UUID) -> tuple[Membership, Role]:
    membership = get_membership_for_org(db, auth.organization_id, target_user_id)
    if membership is None or not Role.has_value(membership.role):
        raise MemberNotFoundError("Member not found in organization")
    return membership, Role(membership.role)


def _check_can_act_on(auth: AuthContext, target_role: Role, verb: str) -> None:
    if target_role == Role.OWNER and auth.role != Role.OWNER:
        raise MembershipRuleError(f"Only owners can {verb} an owner")
    if target_role == Role.ADMIN and auth.role != Role.OWNER:
        raise MembershipRuleError(f"Admins cannot {verb} other admins")


def remove_member(
    db: Session,
    auth: AuthContext,
    target_user_id: UUID,
    *,
    audit_context: AuditContext | None = None,
) -> None:
    """
    Remove a member from the caller's organization.

    Raises:
        MemberNotFoundError: target is not a member
        MembershipRuleError: self-removal, insufficient rank, or last owner
        PersistenceError: the delete could not be committed
    """
    if target_user_id == auth.user_id:
        raise MembershipRuleError("You cannot remove yourself from the organization")

    membership, target_role = _load_target(db, auth, target_user_id)
    _check_can_act_on(auth, target_role, "remove")
    if target_role == Role.OWNER and _lock_owner_count(db, auth.organization_id) <= 1:
        db.rollback()
        raise MembershipRuleError("Cannot remove the last owner")

    try:
        db.delete(membership)
        db.flush()
        # Re-check inside the transaction; a concurrent change may have landed first
        if target_role == Role.OWNER and count_owners(db, auth.organization_id) < 1:
            db.rollback()
            raise MembershipRuleError("Cannot remove the last owner")
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "Failed to remove member",
            extra=build_log_context(user_id=str(auth.user_id), org_id=str(auth.organization_id)),
        )
        raise PersistenceError("Failed to remove member")

    audit_service.record(
        db,
        AuditEntry(
            action=AuditAction.ORG_MEMBER_REMOVED,
            entity_type=AuditEntityType.USER,
            entity_id=str(target_user_id),
            description="Removed member from organization",
            metadata={"role": target_role.value},
        ),
        audit_context or audit_service.build_audit_context(auth),
    )


def change_member_role(
    db: Session,
    auth: AuthContext,
    target_user_id: UUID,
    new_role: Role,
    *,
    audit_context: AuditContext | None = None,
) -> MemberRead:
    """
    Change a member's role in the caller's organization.

    Raises:
        MemberNotFoundError: target is not a member
        MembershipRuleError: own role, insufficient rank, or last owner
        PersistenceError: the update could not be committed
    """
    if target_user_id == auth.user_id:
        raise MembershipRuleError("You cannot change your own role")

    membership, old_role = _load_target(db, auth, target_user_id)
    _check_can_act_on(auth, old_role, "change the role of")
    if new_role in _PRIVILEGED_ROLES and auth.role != Role.OWNER:
        raise MembershipRuleError(f"Only owners can grant the {new_role.value} role")
    demoting_owner = old_role == Role.OWNER and new_role != Role.OWNER
    if demoting_owner and _lock_owner_count(db, auth.organization_id) <= 1:
        db.rollback()
        raise MembershipRuleError("Cannot demote the last owner")

    if new_role != old_role:
        try:
            membership.role = new_role.value
            db.flush()
            if demoting_owner and count_owners(db, auth.organization_id) < 1:
                db.rollback()
                raise MembershipRuleError("Cannot demote the last owner")
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception(
                "Failed to change member role",
                extra=build_log_context(
                    user_id=str(auth.user_id), org_id=str(auth.organization_id)
                ),
            )
            raise PersistenceError("Failed to change member role")

        audit_service.record(
            db,
            AuditEntry(
                action=AuditAction.USER_ROLE_CHANGED,
                entity_type=AuditEntityType.USER,
                entity_id=str(target_user_id),
                description=f"Changed role from {old_role.value} to {new_role.value}",
                metadata={"old_role": old_role.value, "new_role": new_role.value},
            ),
            audit_context or audit_service.build_audit_context(auth),
        )

    user = db.get(User, target_user_id)
    return MemberRead(
        user_id=target_user_id,
        email=user.email if user else "",
        display_name=user.display_name if user else "",
        role=new_role,
        joined_at=membership.created_at,
    )
