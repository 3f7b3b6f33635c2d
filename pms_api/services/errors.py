"""Service-layer exceptions shared by the tenant security services."""


class ServiceError(Exception):
    """Base class for expected service failures."""

    def __init__(self, message: str = ""):
        self.message = message
        super().__init__(message)


class NotFoundError(ServiceError):
    """Requested record does not exist in the caller's organization."""


class SettingsValidationError(ServiceError):
    """Malformed field set; ``errors`` maps field name to problem."""

    def __init__(self, message: str = "Invalid settings", errors: dict[str, str] | None = None):
        super().__init__(message)
        self.errors = errors or {}


class PersistenceError(ServiceError):
    """Storage layer failure on the primary path. Not retried here."""


class UnknownIntegrationError(ServiceError, KeyError):
    """Integration key is not in the catalogue (programming error)."""

    def __str__(self) -> str:
        return self.message


class MembershipError(ServiceError):
    """Base class for membership mutation failures."""


class MemberNotFoundError(MembershipError, NotFoundError):
    """Target user is not a member of the organization."""


class MembershipRuleError(MembershipError):
    """Mutation would break a membership rule (last owner, self-removal, ...)."""
