"""Enum definitions for application constants."""

from pms_api.db.enums.audit import AuditAction, AuditEntityType
from pms_api.db.enums.auth import ROLE_RANK, Role, compare_roles
from pms_api.db.enums.integrations import (
    ConnectionOutcome,
    FieldKind,
    FieldSource,
    IntegrationKey,
    IntegrationState,
)

__all__ = [
    "AuditAction",
    "AuditEntityType",
    "ConnectionOutcome",
    "FieldKind",
    "FieldSource",
    "IntegrationKey",
    "IntegrationState",
    "ROLE_RANK",
    "Role",
    "compare_roles",
]
