"""Authentication and authorization schemas."""

from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from pms_api.db.enums import Role


class SessionIdentity(BaseModel):
    """
    Authenticated caller as supplied by the session provider.

    ``org_hint`` is the organization the client asked to act as (cookie or
    header); it is only honoured if the user is a member.
    """

    model_config = ConfigDict(frozen=True)

    user_id: UUID
    email: str
    org_hint: UUID | None = None
    ip_address: str | None = None
    user_agent: str | None = None


class OrgMembershipView(BaseModel):
    """One organization the user belongs to, with their role in it."""

    model_config = ConfigDict(frozen=True)

    organization_id: UUID
    name: str
    slug: str
    role: Role


class OrgContext(BaseModel):
    """
    Resolved organization context for a request.

    An empty ``organizations`` list with ``role=None`` means the user needs
    onboarding; it is not an error.
    """

    model_config = ConfigDict(frozen=True)

    organizations: tuple[OrgMembershipView, ...] = ()
    organization_id: UUID | None = None
    role: Role | None = None
    # Legacy single platform role, shown to the user but never used for authorization
    platform_role: str | None = None

    @property
    def needs_onboarding(self) -> bool:
        return not self.organizations


class AuthContext(BaseModel):
    """Proof that a caller passed a role check for one organization."""

    model_config = ConfigDict(frozen=True)

    user_id: UUID
    email: str
    organization_id: UUID
    role: Role


class DenialReason(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    NO_ORGANIZATION = "no_organization"
    INSUFFICIENT_ROLE = "insufficient_role"


class Denied(BaseModel):
    """
    Outcome of a failed role check.

    ``reason`` is for logs and the 401/403 choice only. ``message`` is the
    same for every reason so callers cannot probe which organizations exist.
    """

    model_config = ConfigDict(frozen=True)

    reason: DenialReason
    message: str = "Not authorized"
