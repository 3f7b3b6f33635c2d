"""Organization and membership schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel

from pms_api.db.enums import Role
from pms_api.schemas.auth import OrgMembershipView


class OrgContextRead(BaseModel):
    organizations: list[OrgMembershipView]
    organization_id: UUID | None
    role: Role | None
    platform_role: str | None
    needs_onboarding: bool


class SwitchOrganizationRequest(BaseModel):
    organization_id: UUID


class MemberRead(BaseModel):
    user_id: UUID
    email: str
    display_name: str
    role: Role
    joined_at: datetime


class MemberRoleUpdate(BaseModel):
    role: Role
