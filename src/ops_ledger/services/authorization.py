"""
Authorization gate.

Maps (actor role, resource, action) to allow/deny using a single explicit
role -> capability table built once at import time. Every function here is a
pure predicate over the actor; unknown roles and missing actors are denied.

The ``require_*`` helpers raise Unauthorized (and emit an error notification)
and are what the inventory and batch services call before any state change.
"""

import logging
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from ops_ledger.utils.constants import SALES_PRICE_OVERRIDE_LIMIT_PERCENT

from .actors import Actor
from .exceptions import Unauthorized
from .logging_utils import get_service_logger, log_operation
from .notifications import notify_error

logger = get_service_logger(__name__)


class UserRole(str, Enum):
    ADMIN = "admin"
    PRODUCTION = "production"
    SALES_MANAGER = "sales_manager"
    FINANCE = "finance"
    VIEWER = "viewer"


CREATE = "create"
READ = "read"
UPDATE = "update"
DELETE = "delete"

WILDCARD = "*"

Capability = Tuple[str, str]


def _grant(resource: str, *actions: str) -> FrozenSet[Capability]:
    return frozenset((resource, action) for action in actions)


ROLE_CAPABILITIES: Dict[UserRole, FrozenSet[Capability]] = {
    UserRole.ADMIN: _grant(WILDCARD, CREATE, READ, UPDATE, DELETE),
    UserRole.PRODUCTION: (
        _grant("batch", CREATE, READ, UPDATE)
        | _grant("inventory", READ, UPDATE)
        | _grant("material_intake", CREATE, READ, UPDATE)
        | _grant("supplier", READ)
        | _grant("raw_material", READ)
    ),
    UserRole.SALES_MANAGER: (
        _grant("order", CREATE, READ, UPDATE)
        | _grant("customer", CREATE, READ, UPDATE)
        | _grant("pricing", READ, UPDATE)
        | _grant("interaction_log", CREATE, READ, UPDATE)
        | _grant("samples_log", CREATE, READ, UPDATE)
        | _grant("batch", READ)
        | _grant("inventory", READ)
    ),
    UserRole.FINANCE: (
        _grant("invoice", CREATE, READ, UPDATE)
        | _grant("credit_note", CREATE, READ, UPDATE)
        | _grant("financial_ledger", CREATE, READ, UPDATE)
        | _grant("returns_log", CREATE, READ, UPDATE)
        | _grant("order", READ)
        | _grant("customer", READ)
        | _grant("pricing", READ)
    ),
    UserRole.VIEWER: (
        _grant("order", READ)
        | _grant("customer", READ)
        | _grant("batch", READ)
        | _grant("inventory", READ)
        | _grant("financial_ledger", READ)
        | _grant("invoice", READ)
    ),
}

# Maximum absolute price deviation in percent; None means unlimited.
# Roles missing from this table may not override prices at all.
PRICE_OVERRIDE_LIMITS: Dict[UserRole, Optional[Decimal]] = {
    UserRole.ADMIN: None,
    UserRole.SALES_MANAGER: SALES_PRICE_OVERRIDE_LIMIT_PERCENT,
}


def _role_of(actor: Optional[Actor]) -> Optional[UserRole]:
    if actor is None or not actor.role:
        return None
    try:
        return UserRole(actor.role)
    except ValueError:
        return None


def get_capabilities(actor: Optional[Actor]) -> FrozenSet[Capability]:
    """Return the actor's capability set (empty for unknown roles)."""
    role = _role_of(actor)
    if role is None:
        return frozenset()
    return ROLE_CAPABILITIES.get(role, frozenset())


def has_permission(actor: Optional[Actor], resource: str, action: str) -> bool:
    """Check whether the actor may perform ``action`` on ``resource``."""
    capabilities = get_capabilities(actor)
    return (WILDCARD, action) in capabilities or (resource, action) in capabilities


def has_role(actor: Optional[Actor], *roles: UserRole) -> bool:
    role = _role_of(actor)
    return role is not None and role in roles


def can_modify_inventory(actor: Optional[Actor]) -> bool:
    return has_role(actor, UserRole.ADMIN, UserRole.PRODUCTION)


def can_access_financial_data(actor: Optional[Actor]) -> bool:
    return has_role(actor, UserRole.ADMIN, UserRole.FINANCE)


def can_manage_customers(actor: Optional[Actor]) -> bool:
    return has_role(actor, UserRole.ADMIN, UserRole.SALES_MANAGER)


def can_override_price(actor: Optional[Actor], list_price, requested_price) -> bool:
    """
    Check whether the actor may sell at ``requested_price`` instead of ``list_price``.

    The deviation is |requested - list| / list x 100 and must not exceed the
    role's limit. Admins are unlimited; roles without a limit entry are refused.
    A non-positive list price has no meaningful percentage, so only unlimited
    roles may override it.
    """
    role = _role_of(actor)
    if role is None or role not in PRICE_OVERRIDE_LIMITS:
        return False

    limit = PRICE_OVERRIDE_LIMITS[role]
    if limit is None:
        return True

    try:
        list_price = Decimal(str(list_price))
        requested_price = Decimal(str(requested_price))
    except (InvalidOperation, ValueError):
        return False

    if list_price <= 0:
        return False

    deviation = abs(requested_price - list_price) / list_price * Decimal("100")
    return deviation <= limit


def require_permission(actor: Optional[Actor], resource: str, action: str) -> Actor:
    """
    Raise Unauthorized unless the actor has the permission.

    Returns:
        The actor, for chaining

    Raises:
        Unauthorized: With an error notification already emitted
    """
    if not has_permission(actor, resource, action):
        _deny(actor, f"{action} {resource}")
    return actor


def require_inventory_modification(actor: Optional[Actor]) -> Actor:
    """Raise Unauthorized unless the actor may modify inventory."""
    if not can_modify_inventory(actor):
        _deny(actor, "modify inventory")
    return actor


def _deny(actor: Optional[Actor], action: str) -> None:
    actor_id = actor.id if actor is not None else None
    error = Unauthorized(action, actor_id=actor_id)
    log_operation(
        logger,
        operation="authorize",
        outcome="denied",
        level=logging.WARNING,
        actor_id=actor_id,
        role=actor.role if actor is not None else None,
        action=action,
    )
    notify_error(str(error))
    raise error
