"""
Role Catalog

Static role -> capability table. Capabilities are data, not branching code:
adding a permission to a role means editing ROLE_CAPABILITIES only.

Capability sets are not strictly nested by rank. Administrator holds
every permission and is never subject to ownership checks.
"""

from typing import Iterable, Optional

from ..schemas import Permission, Role


_READER_CAPABILITIES = frozenset({
    Permission.READ,
    Permission.SEARCH,
    Permission.DOWNLOAD,
    Permission.COMMENT,
    Permission.RATE,
})

ROLE_CAPABILITIES: dict[Role, frozenset[Permission]] = {
    Role.GENERAL_USER: _READER_CAPABILITIES,
    Role.PUBLISHER: _READER_CAPABILITIES | {
        Permission.CREATE,
        Permission.UPDATE_OWN,
        Permission.DELETE_OWN,
    },
    Role.ADMINISTRATOR: frozenset(Permission),
}

# First match wins when an actor holds several roles
ROLE_PRIORITY: tuple[Role, ...] = (
    Role.ADMINISTRATOR,
    Role.PUBLISHER,
    Role.GENERAL_USER,
)

# Roles that skip ownership checks
UNCONDITIONAL_ROLES = frozenset({Role.ADMINISTRATOR})

OWNERSHIP_SCOPED = frozenset({
    Permission.UPDATE_OWN,
    Permission.DELETE_OWN,
})


class RoleCatalog:
    """Read-only queries over the capability table."""

    @staticmethod
    def capabilities(role: Role) -> frozenset[Permission]:
        return ROLE_CAPABILITIES.get(role, frozenset())

    @staticmethod
    def allows(role: Role, permission: Permission) -> bool:
        """Role-level check only; ownership is the evaluator's job."""
        return permission in ROLE_CAPABILITIES.get(role, frozenset())

    @staticmethod
    def is_ownership_scoped(permission: Permission) -> bool:
        return permission in OWNERSHIP_SCOPED

    @staticmethod
    def is_unconditional(role: Role) -> bool:
        return role in UNCONDITIONAL_ROLES

    @staticmethod
    def resolve_role(grants: Iterable[Optional[Role]]) -> Optional[Role]:
        """
        Pick exactly one role from an actor's grants.

        Capabilities are never merged across roles. The highest role in
        ROLE_PRIORITY wins. Without a recognised grant there is no role
        (None), and the actor holds no capability at all.
        """
        granted = {g for g in grants if g is not None}
        for role in ROLE_PRIORITY:
            if role in granted:
                return role
        return None
