"""
Canonical Role and Permission Schema

Who is acting, and what they are asking to do.
Roles and permissions are closed sets: anything not named here does not exist.
"""

from enum import Enum
from typing import Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field


class Role(str, Enum):
    """
    User roles, ordered by trust.

    Rank and authority string mirror the legacy grant format
    (ROLE_0, ROLE_1, ROLE_2) issued by the authentication layer.
    """
    GENERAL_USER = "general_user"       # Read, search, download, comment, rate
    PUBLISHER = "publisher"             # Plus create and edit/delete own work
    ADMINISTRATOR = "administrator"     # Everything, including review

    @property
    def rank(self) -> int:
        return _ROLE_RANKS[self]

    @property
    def authority(self) -> str:
        return f"ROLE_{self.rank}"

    @property
    def display_name(self) -> str:
        return _ROLE_DISPLAY_NAMES[self]

    @classmethod
    def from_rank(cls, rank: int) -> Optional["Role"]:
        for role in cls:
            if role.rank == rank:
                return role
        return None

    @classmethod
    def from_authority(cls, authority: str) -> Optional["Role"]:
        """
        Map a granted authority string to a role.

        Unknown authorities map to None, never to a default role.
        """
        for role in cls:
            if role.authority == authority:
                return role
        return None


_ROLE_RANKS = {
    Role.GENERAL_USER: 0,
    Role.PUBLISHER: 1,
    Role.ADMINISTRATOR: 2,
}

_ROLE_DISPLAY_NAMES = {
    Role.GENERAL_USER: "General User",
    Role.PUBLISHER: "Publisher",
    Role.ADMINISTRATOR: "Administrator",
}


class Permission(str, Enum):
    """
    Named action tokens.

    UPDATE_OWN and DELETE_OWN are ownership-scoped: holding them is not
    enough, the actor must also own the target achievement.
    """
    READ = "READ"
    SEARCH = "SEARCH"
    DOWNLOAD = "DOWNLOAD"
    COMMENT = "COMMENT"
    RATE = "RATE"
    CREATE = "CREATE"
    UPDATE_OWN = "UPDATE_OWN"
    UPDATE_ANY = "UPDATE_ANY"
    DELETE_OWN = "DELETE_OWN"
    DELETE_ANY = "DELETE_ANY"
    APPROVE = "APPROVE"
    MANAGE_USERS = "MANAGE_USERS"
    MANAGE_ROLES = "MANAGE_ROLES"

    @classmethod
    def parse(cls, token: Union["Permission", str, None]) -> Optional["Permission"]:
        """
        Resolve a permission token, or None if it is not recognised.

        Accepts enum members, values in any case, and the legacy
        "<ACTION>_ACHIEVEMENT" spelling (e.g. "APPROVE_ACHIEVEMENT").
        """
        if isinstance(token, cls):
            return token
        if not isinstance(token, str):
            return None

        name = token.strip().upper()
        if name.endswith(_LEGACY_SUFFIX):
            name = name[: -len(_LEGACY_SUFFIX)]
        try:
            return cls(name)
        except ValueError:
            return None


_LEGACY_SUFFIX = "_ACHIEVEMENT"


class Actor(BaseModel):
    """
    The authenticated principal behind a call.

    Built by the authentication layer and passed explicitly to every
    operation; there is no ambient "current user".
    """
    id: UUID = Field(
        ...,
        description="User identifier"
    )

    roles: tuple[Role, ...] = Field(
        default=(),
        description="Granted roles; may be empty or contain several"
    )

    authenticated: bool = Field(
        default=True,
        description="False for anonymous callers"
    )

    username: Optional[str] = Field(
        default=None,
        description="Login name, for logs only"
    )
