"""Auth-related enums."""

from enum import Enum


class Role(str, Enum):
    """
    Organization roles with increasing privilege levels.

    - STAFF: Day-to-day operations within assigned properties
    - MANAGER: Property management (maintenance, leases, assignments)
    - ADMIN: Business admin (members, integrations, audit trail)
    - OWNER: Organization owner (everything admins can do, plus owner/admin grants)
    """

    OWNER = "owner"
    ADMIN = "admin"
    MANAGER = "manager"
    STAFF = "staff"

    @classmethod
    def has_value(cls, value: str) -> bool:
        """Check if value is a valid role."""
        return value in cls._value2member_map_

    @property
    def rank(self) -> int:
        return ROLE_RANK[self]

    def satisfies(self, minimum: "Role") -> bool:
        """True when this role is at least as privileged as ``minimum``."""
        return self.rank >= minimum.rank


# Total privilege order. Every Role must have a rank; a new role without one
# fails at import instead of being silently denied by omission.
ROLE_RANK: dict[Role, int] = {
    Role.STAFF: 10,
    Role.MANAGER: 20,
    Role.ADMIN: 30,
    Role.OWNER: 40,
}

_unranked = set(Role) - set(ROLE_RANK)
if _unranked:
    raise RuntimeError(f"Roles missing from ROLE_RANK: {sorted(r.value for r in _unranked)}")


def compare_roles(a: Role, b: Role) -> int:
    """Return -1, 0 or 1 as ``a`` is less, equally or more privileged than ``b``."""
    return (a.rank > b.rank) - (a.rank < b.rank)
