"""
Permission Evaluator

Decides allow/deny for (actor, permission, achievement) triples.

Rules, in order:
1. Anonymous or missing actors are denied
2. Unrecognised permission tokens are denied
3. Exactly one role is chosen from the actor's grants (see RoleCatalog);
   an actor with no grant is denied
4. Administrator is allowed everything, owner or not
5. Otherwise the role's capability set decides
6. Ownership-scoped permissions also require actor.id == owner id

Ownership only matters for *_OWN permissions; every other permission is
decided by role alone, whether or not a target achievement is given.

evaluate() never raises. Any doubt (unknown owner, store failure) is a deny.
"""

from typing import Optional, Union
from uuid import UUID

from ..db.store import ResourceStore
from ..observability import get_logger
from ..schemas import Actor, Permission
from .catalog import RoleCatalog
from .errors import UnauthorizedError

logger = get_logger(__name__)


class PermissionEvaluator:
    """
    Pure decision function over (role, permission, ownership fact).

    The resource store is consulted only to look up an owner when an
    ownership-scoped permission is checked and the caller did not pass
    owner_id.
    """

    def __init__(self, resource_store: Optional[ResourceStore] = None):
        self._resource_store = resource_store

    def evaluate(
        self,
        actor: Optional[Actor],
        permission: Union[Permission, str],
        resource_id: Optional[UUID] = None,
        owner_id: Optional[UUID] = None,
    ) -> bool:
        """
        Return True if the actor may perform the permission.

        Args:
            actor: Authenticated principal, or None for anonymous callers
            permission: Permission member or token string
            resource_id: Target achievement, used for owner lookup
            owner_id: Owner of the target, if the caller already knows it
        """
        if actor is None or not actor.authenticated:
            return False

        parsed = Permission.parse(permission)
        if parsed is None:
            logger.debug("Unknown permission token denied", permission=str(permission))
            return False

        role = RoleCatalog.resolve_role(actor.roles)
        if role is None:
            logger.debug("Actor holds no role; denied", actor_id=str(actor.id))
            return False

        if RoleCatalog.is_unconditional(role):
            return True

        if not RoleCatalog.allows(role, parsed):
            logger.debug(
                "Permission denied by role",
                actor_id=str(actor.id),
                role=role.value,
                permission=parsed.value,
            )
            return False

        if not RoleCatalog.is_ownership_scoped(parsed):
            return True

        if owner_id is None:
            owner_id = self._lookup_owner(resource_id)
        if owner_id is None:
            return False

        is_owner = owner_id == actor.id
        if not is_owner:
            logger.debug(
                "Permission denied: not the owner",
                actor_id=str(actor.id),
                permission=parsed.value,
                resource_id=str(resource_id) if resource_id else None,
            )
        return is_owner

    def require(
        self,
        actor: Optional[Actor],
        permission: Union[Permission, str],
        resource_id: Optional[UUID] = None,
        owner_id: Optional[UUID] = None,
    ) -> None:
        """Raise UnauthorizedError unless evaluate() allows."""
        if not self.evaluate(actor, permission, resource_id=resource_id, owner_id=owner_id):
            raise UnauthorizedError()

    def _lookup_owner(self, resource_id: Optional[UUID]) -> Optional[UUID]:
        if resource_id is None or self._resource_store is None:
            return None
        try:
            return self._resource_store.get_owner_id(resource_id)
        except Exception:
            logger.warning(
                "Owner lookup failed; denying",
                resource_id=str(resource_id),
                exc_info=True,
            )
            return None
