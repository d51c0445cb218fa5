"""
Role checks for engine operations.

Every operation calls `require_role` before touching storage, so an
under-privileged caller learns nothing about whether a case exists.
"""

from models.config import settings
from models.exceptions import InvalidRoleException
from models.schemas import Actor, Role


def require_role(actor: Actor, minimum: Role, action: str) -> Actor:
    """
    Require the caller to hold at least `minimum`.

    Args:
        actor: Authenticated caller
        minimum: Lowest role allowed to perform the action
        action: Verb phrase used in the error message

    Returns:
        The actor, for chaining

    Raises:
        InvalidRoleException: If the caller's role is lower
    """
    if not actor.role.at_least(minimum):
        raise InvalidRoleException(action, minimum.value)
    return actor


def require_moderator(actor: Actor, action: str) -> Actor:
    """Require moderator or admin."""
    return require_role(actor, Role.MODERATOR, action)


def require_admin(actor: Actor, action: str) -> Actor:
    """Require admin."""
    return require_role(actor, Role.ADMIN, action)


def system_actor() -> Actor:
    """Identity recorded on automatic enforcement actions."""
    return Actor(user_id=settings.SYSTEM_ACTOR_ID, role=Role.ADMIN)
