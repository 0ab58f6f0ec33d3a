"""
Role hierarchy (``approval_kernel.domain.roles``).

Responsibility
--------------
Defines the ordered tenant role hierarchy and a reference
``RoleResolver`` implementation over explicit actor -> role assignments.

Architecture position
---------------------
**Kernel domain layer** -- pure, ZERO I/O.  The resolver is constructed
explicitly (one per tenant) and injected into the engine; there is no
module-level instance.

Invariants enforced
-------------------
* Strict ordering: viewer < user < manager < admin < owner.  Each role
  inherits every permission of the roles below it, so a higher role
  satisfies a lower-role requirement.
* Unknown actors or unknown roles are never authorized.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum


class Role(str, Enum):
    VIEWER = "viewer"
    USER = "user"
    MANAGER = "manager"
    ADMIN = "admin"
    OWNER = "owner"


ROLE_LEVELS: dict[Role, int] = {
    Role.VIEWER: 1,
    Role.USER: 2,
    Role.MANAGER: 3,
    Role.ADMIN: 4,
    Role.OWNER: 5,
}

KNOWN_ROLES: frozenset[str] = frozenset(r.value for r in Role)


def role_level(role: str) -> int | None:
    """Level of a role tag, or None if the tag is not in the hierarchy."""
    try:
        return ROLE_LEVELS[Role(role)]
    except ValueError:
        return None


def role_satisfies(actor_role: str, required_role: str) -> bool:
    """True if ``actor_role`` is ``required_role`` or inherits from it."""
    actor_level = role_level(actor_role)
    required_level = role_level(required_role)
    if actor_level is None or required_level is None:
        return False
    return actor_level >= required_level


class HierarchicalRoleResolver:
    """RoleResolver over a fixed mapping of actor id -> effective role.

    Example::

        resolver = HierarchicalRoleResolver({"u-1": "manager", "u-2": "admin"})
        resolver.is_authorized_for_role("u-2", "manager")  # True
    """

    def __init__(self, assignments: Mapping[str, str]):
        self._assignments = dict(assignments)

    def role_of(self, actor_id: str) -> str | None:
        return self._assignments.get(actor_id)

    def is_authorized_for_role(self, actor_id: str, required_role: str) -> bool:
        actor_role = self._assignments.get(actor_id)
        if actor_role is None:
            return False
        return role_satisfies(actor_role, required_role)

    def has_actor_for_role(self, required_role: str) -> bool:
        return any(
            role_satisfies(role, required_role)
            for role in self._assignments.values()
        )

    def is_known_actor(self, actor_id: str) -> bool:
        return actor_id in self._assignments
