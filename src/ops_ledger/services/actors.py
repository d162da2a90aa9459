"""
Acting-user resolution.

Mutating operations take an optional ``actor``. When none is passed the
current-actor resolver supplied by the host application (login screen, API
middleware, CLI) is consulted. With no resolver installed there is no actor,
and the authorization gate denies every mutation.
"""

from dataclasses import dataclass
from typing import Callable, Optional


@dataclass(frozen=True)
class Actor:
    """The identity performing an operation.

    Attributes:
        id: User identifier recorded in the audit trail
        role: Role name looked up in the authorization table
        name: Optional display name
        email: Optional email address
    """

    id: str
    role: str
    name: Optional[str] = None
    email: Optional[str] = None


ActorResolver = Callable[[], Optional[Actor]]

_resolver: Optional[ActorResolver] = None


def set_actor_resolver(resolver: Optional[ActorResolver]) -> Optional[ActorResolver]:
    """Install the current-actor resolver. Returns the previous one."""
    global _resolver
    previous = _resolver
    _resolver = resolver
    return previous


def get_current_actor() -> Optional[Actor]:
    """Return the actor from the installed resolver, or None."""
    if _resolver is None:
        return None
    return _resolver()


def resolve_actor(actor: Optional[Actor] = None) -> Optional[Actor]:
    """Return ``actor`` if given, otherwise the current actor."""
    if actor is not None:
        return actor
    return get_current_actor()
