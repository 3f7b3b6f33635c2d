"""Audit and compliance enums."""

from enum import Enum


class AuditAction(str, Enum):
    """
    Audit trail actions.

    Values are dotted ``<area>.<verb>`` strings and are persisted verbatim,
    so existing values must never be renamed.
    """

    # Auth events
    AUTH_LOGIN = "auth.login"
    AUTH_LOGOUT = "auth.logout"
    AUTH_FAILED_LOGIN = "auth.failed_login"

    # User management
    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"
    USER_DELETED = "user.deleted"
    USER_ROLE_CHANGED = "user.role_changed"

    # Organization management
    ORG_CREATED = "org.created"
    ORG_UPDATED = "org.updated"
    ORG_MEMBER_ADDED = "org.member_added"
    ORG_MEMBER_REMOVED = "org.member_removed"

    # Property management
    PROPERTY_CREATED = "property.created"
    PROPERTY_UPDATED = "property.updated"
    PROPERTY_DELETED = "property.deleted"
    UNIT_CREATED = "unit.created"
    UNIT_UPDATED = "unit.updated"
    UNIT_DELETED = "unit.deleted"

    # Application workflow
    APPLICATION_SUBMITTED = "application.submitted"
    APPLICATION_REVIEWED = "application.reviewed"
    APPLICATION_APPROVED = "application.approved"
    APPLICATION_REJECTED = "application.rejected"
    APPLICATION_WITHDRAWN = "application.withdrawn"

    # Lease management
    LEASE_CREATED = "lease.created"
    LEASE_UPDATED = "lease.updated"
    LEASE_ACTIVATED = "lease.activated"
    LEASE_TERMINATED = "lease.terminated"
    LEASE_RENEWED = "lease.renewed"

    # Rent/Payments
    PAYMENT_RECORDED = "payment.recorded"
    PAYMENT_VOIDED = "payment.voided"
    LATE_FEE_APPLIED = "late_fee.applied"
    LATE_FEE_WAIVED = "late_fee.waived"

    # Maintenance
    MAINTENANCE_CREATED = "maintenance.created"
    MAINTENANCE_UPDATED = "maintenance.updated"
    MAINTENANCE_ASSIGNED = "maintenance.assigned"
    MAINTENANCE_COMPLETED = "maintenance.completed"
    MAINTENANCE_CANCELLED = "maintenance.cancelled"
    MAINTENANCE_COMMENT_ADDED = "maintenance.comment_added"

    # Documents
    DOCUMENT_UPLOADED = "document.uploaded"
    DOCUMENT_DELETED = "document.deleted"
    DOCUMENT_ACCESSED = "document.accessed"

    # Settings/Admin
    SETTINGS_UPDATED = "settings.updated"
    EXPORT_REQUESTED = "export.requested"

    # Integrations
    INTEGRATION_SETTINGS_UPDATED = "integration.settings_updated"
    INTEGRATION_SETTINGS_CLEARED = "integration.settings_cleared"
    INTEGRATION_CONNECTION_TESTED = "integration.connection_tested"
    INTEGRATION_CONNECTION_FAILED = "integration.connection_failed"


class AuditEntityType(str, Enum):
    """Kinds of entity an audit entry can point at."""

    USER = "user"
    ORGANIZATION = "organization"
    PROPERTY = "property"
    UNIT = "unit"
    APPLICATION = "application"
    LEASE = "lease"
    PAYMENT = "payment"
    MAINTENANCE = "maintenance"
    DOCUMENT = "document"
    SETTINGS = "settings"
    INTEGRATION = "integration"
