"""SQLAlchemy ORM models."""

from pms_api.db.models.audit import AuditLog
from pms_api.db.models.auth import Membership, Organization, User
from pms_api.db.models.integrations import IntegrationSetting

__all__ = [
    "AuditLog",
    "IntegrationSetting",
    "Membership",
    "Organization",
    "User",
]
