"""Centralized minimum-role policies for API resources.

Each use site names its own minimum role, so the manager/staff distinction is
decided per resource rather than by one global rule.
"""

from dataclasses import dataclass

from pms_api.db.enums import Role


@dataclass(frozen=True)
class ResourcePolicy:
    """Default minimum role + per-action overrides for a resource."""

    default: Role
    actions: dict[str, Role]


POLICIES: dict[str, ResourcePolicy] = {
    "organizations": ResourcePolicy(default=Role.STAFF, actions={}),
    "members": ResourcePolicy(
        default=Role.STAFF,
        actions={"manage": Role.ADMIN},
    ),
    "integrations": ResourcePolicy(
        default=Role.ADMIN,
        actions={"manage": Role.ADMIN},
    ),
    "audit": ResourcePolicy(
        default=Role.ADMIN,
        actions={"view": Role.ADMIN},
    ),
}


def get_policy(resource: str) -> ResourcePolicy:
    """Fetch a resource policy or raise KeyError."""
    return POLICIES[resource]


def min_role_for(operation: str) -> Role:
    """
    Minimum role for a dotted operation name ("integrations.manage").

    A bare resource name returns the resource default. Unknown resources
    raise KeyError.
    """
    resource, _, action = operation.partition(".")
    policy = get_policy(resource)
    if action:
        return policy.actions.get(action, policy.default)
    return policy.default
