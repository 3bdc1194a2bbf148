"""Permission atoms and role grants.

A role carries a set of permission strings. Route guards name the
atoms they accept; a role passes when it holds the wildcard, when its
name is one of the accepted atoms, or when it holds one of them as a
permission. Role names and permission strings share one namespace, so
"admin" works both as a coarse role gate and as a fine permission.
"""

import enum
from dataclasses import dataclass
from typing import Iterable


class Permission(str, enum.Enum):
    WILDCARD = "*"
    ADMIN = "admin"
    MANAGER = "manager"
    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    MANAGE_USERS = "manage_users"
    MANAGE_ROLES = "manage_roles"


# Name and permissions of the role created with every new organization
DEFAULT_ADMIN_ROLE = "admin"
DEFAULT_ADMIN_PERMISSIONS = frozenset({Permission.WILDCARD.value})


@dataclass(frozen=True)
class RoleGrant:
    """What a stored role is allowed to do."""

    name: str
    permissions: frozenset[str]

    @classmethod
    def from_role(cls, role) -> "RoleGrant":
        return cls(name=role.name, permissions=frozenset(role.permissions or ()))

    @property
    def is_wildcard(self) -> bool:
        return Permission.WILDCARD.value in self.permissions

    def allows(self, required: Iterable[Permission]) -> bool:
        if self.is_wildcard:
            return True
        atoms = {Permission(p).value for p in required}
        return self.name in atoms or not self.permissions.isdisjoint(atoms)
