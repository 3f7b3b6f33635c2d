"""Tests for membership listing and guarded membership changes."""

import uuid

import pytest
from sqlalchemy import select

from pms_api.db.enums import AuditAction, Role
from pms_api.db.models import AuditLog, Membership
from pms_api.db.session import SessionLocal
from pms_api.services import membership_service
from pms_api.services.errors import MemberNotFoundError, MembershipRuleError


def _role_of(db, org, user):
    membership = membership_service.get_membership_for_org(db, org.id, user.id)
    return Role(membership.role) if membership else None


def _interleave_after_lock(monkeypatch, concurrent_change):
    """Run ``concurrent_change`` to completion right after the first owner-row lock."""
    original = membership_service._lock_owner_count
    ran = []

    def lock_then_interleave(session, org_id):
        locked = original(session, org_id)
        if not ran:
            ran.append(True)
            other = SessionLocal()
            try:
                concurrent_change(other)
            finally:
                other.close()
        return locked

    monkeypatch.setattr(membership_service, "_lock_owner_count", lock_then_interleave)


def test_lists_members_of_org_only(db, org, make_org, make_member, owner, admin):
    """Members of other organizations are not listed."""
    other_org = make_org("Other")
    make_member(Role.STAFF, other_org)

    members = membership_service.list_members(db, org.id)

    assert {member.user_id for member in members} == {owner.id, admin.id}
    assert {member.role for member in members} == {Role.OWNER, Role.ADMIN}


def test_count_owners(db, org, owner, make_member):
    make_member(Role.OWNER)
    assert membership_service.count_owners(db, org.id) == 2


def test_admin_removes_staff(db, org, admin, admin_auth, make_member):
    """Removal deletes the membership and writes an audit entry."""
    staff = make_member(Role.STAFF)

    membership_service.remove_member(db, admin_auth, staff.id)

    assert _role_of(db, org, staff) is None
    log = db.scalar(select(AuditLog))
    assert log.action == AuditAction.ORG_MEMBER_REMOVED.value
    assert log.entity_id == str(staff.id)
    assert log.organization_id == org.id


def test_cannot_remove_self(db, owner, org, auth_for):
    with pytest.raises(MembershipRuleError):
        membership_service.remove_member(db, auth_for(owner, org, Role.OWNER), owner.id)


def test_admin_cannot_remove_admin_or_owner(db, admin_auth, owner, make_member):
    """Admins may only remove members ranked below them."""
    other_admin = make_member(Role.ADMIN)

    with pytest.raises(MembershipRuleError):
        membership_service.remove_member(db, admin_auth, other_admin.id)
    with pytest.raises(MembershipRuleError):
        membership_service.remove_member(db, admin_auth, owner.id)


def test_cannot_remove_last_owner(db, org, owner, make_member, auth_for):
    """A stale owner context cannot remove the only remaining owner."""
    co_owner = make_member(Role.OWNER)
    auth = auth_for(co_owner, org, Role.OWNER)

    membership_service.remove_member(db, auth, owner.id)

    with pytest.raises(MembershipRuleError):
        membership_service.remove_member(db, auth_for(owner, org, Role.OWNER), co_owner.id)
    assert membership_service.count_owners(db, org.id) == 1


def test_interleaved_owner_removals_keep_an_owner(db, org, owner, make_member, auth_for, monkeypatch):
    """Two owners removing each other at once leave one owner behind."""
    co_owner = make_member(Role.OWNER)

    def co_owner_removes_owner(other_session):
        membership_service.remove_member(
            other_session, auth_for(co_owner, org, Role.OWNER), owner.id
        )

    _interleave_after_lock(monkeypatch, co_owner_removes_owner)

    with pytest.raises(MembershipRuleError):
        membership_service.remove_member(db, auth_for(owner, org, Role.OWNER), co_owner.id)

    assert membership_service.count_owners(db, org.id) == 1
    assert _role_of(db, org, co_owner) == Role.OWNER
    assert _role_of(db, org, owner) is None


def test_unknown_member(db, admin_auth, make_org, make_member):
    """Members of other organizations and unknown users are not found."""
    outsider = make_member(Role.STAFF, make_org("Elsewhere"))

    with pytest.raises(MemberNotFoundError):
        membership_service.remove_member(db, admin_auth, outsider.id)
    with pytest.raises(MemberNotFoundError):
        membership_service.remove_member(db, admin_auth, uuid.uuid4())


def test_admin_promotes_staff_to_manager(db, org, admin_auth, make_member):
    """Role changes are persisted and audited with old and new role."""
    staff = make_member(Role.STAFF)

    member = membership_service.change_member_role(db, admin_auth, staff.id, Role.MANAGER)

    assert member.role == Role.MANAGER
    assert _role_of(db, org, staff) == Role.MANAGER
    log = db.scalar(select(AuditLog))
    assert log.action == AuditAction.USER_ROLE_CHANGED.value
    assert log.metadata_ == {"old_role": "staff", "new_role": "manager"}


def test_only_owner_grants_admin(db, org, admin_auth, owner, auth_for, make_member):
    staff = make_member(Role.STAFF)

    with pytest.raises(MembershipRuleError):
        membership_service.change_member_role(db, admin_auth, staff.id, Role.ADMIN)

    membership_service.change_member_role(
        db, auth_for(owner, org, Role.OWNER), staff.id, Role.ADMIN
    )
    assert _role_of(db, org, staff) == Role.ADMIN


def test_cannot_change_own_role(db, admin, admin_auth):
    with pytest.raises(MembershipRuleError):
        membership_service.change_member_role(db, admin_auth, admin.id, Role.STAFF)


def test_cannot_demote_last_owner(db, org, owner, make_member, auth_for):
    """The sole owner cannot be demoted, even by a stale owner context."""
    co_owner = make_member(Role.OWNER)
    membership_service.change_member_role(
        db, auth_for(owner, org, Role.OWNER), co_owner.id, Role.ADMIN
    )

    with pytest.raises(MembershipRuleError):
        membership_service.change_member_role(
            db, auth_for(co_owner, org, Role.OWNER), owner.id, Role.STAFF
        )
    assert _role_of(db, org, owner) == Role.OWNER


def test_interleaved_owner_demotions_keep_an_owner(db, org, owner, make_member, auth_for, monkeypatch):
    """Two owners demoting each other at once leave one owner behind."""
    co_owner = make_member(Role.OWNER)

    def co_owner_demotes_owner(other_session):
        membership_service.change_member_role(
            other_session, auth_for(co_owner, org, Role.OWNER), owner.id, Role.ADMIN
        )

    _interleave_after_lock(monkeypatch, co_owner_demotes_owner)

    with pytest.raises(MembershipRuleError):
        membership_service.change_member_role(
            db, auth_for(owner, org, Role.OWNER), co_owner.id, Role.ADMIN
        )

    assert membership_service.count_owners(db, org.id) == 1
    assert _role_of(db, org, co_owner) == Role.OWNER
    assert _role_of(db, org, owner) == Role.ADMIN


def test_same_role_is_not_audited(db, admin_auth, make_member):
    staff = make_member(Role.STAFF)

    membership_service.change_member_role(db, admin_auth, staff.id, Role.STAFF)

    assert db.scalar(select(AuditLog)) is None
    assert db.query(Membership).count() == 2
