"""Integration credential enums."""

from enum import Enum


class IntegrationKey(str, Enum):
    """Third-party integrations an organization can bring its own credentials for."""

    STRIPE = "stripe"
    SMTP = "smtp"
    OAUTH_GOOGLE = "oauth_google"
    OAUTH_GITHUB = "oauth_github"
    STORAGE = "storage"

    @classmethod
    def has_value(cls, value: str) -> bool:
        return value in cls._value2member_map_


class IntegrationState(str, Enum):
    """
    Lifecycle of an organization's settings for one integration.

    VERIFIED and FAILED are sub-states of CONFIGURED, told apart by the
    outcome of the last connection test.
    """

    UNCONFIGURED = "unconfigured"
    CONFIGURED = "configured"
    VERIFIED = "verified"
    FAILED = "failed"


class FieldKind(str, Enum):
    TEXT = "text"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    EMAIL = "email"
    CHOICE = "choice"


class FieldSource(str, Enum):
    """Where an effective field value came from."""

    ORGANIZATION = "organization"
    ENVIRONMENT = "environment"
    NOT_CONFIGURED = "not_configured"


class ConnectionOutcome(str, Enum):
    """Result kind of a live connection test."""

    VERIFIED = "verified"
    REJECTED = "rejected"  # provider answered and refused the credentials
    UNREACHABLE = "unreachable"  # network failure or timeout
    INCOMPLETE = "incomplete"  # required settings missing, nothing was attempted
