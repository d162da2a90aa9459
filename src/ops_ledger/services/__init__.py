"""Services package - Business logic layer for the Operations Ledger.

This package contains all service modules that read and mutate the
inventory ledger and production batches.

Architecture:
- Services: Stateless functions organized by domain (inventory, batches, reporting)
- Transactions: Managed via session_scope() context manager
- Exceptions: Consistent error handling via ServiceError hierarchy
- Authorization: Role capability checks before any mutation

Service Modules:
- inventory_service: Material lots, FIFO selection, decrement/increment primitives
- production_batch_service: Batch create/update/complete/rollback (atomic or saga)
- batch_reporting_service: Audit trail and movement summary per batch

Infrastructure:
- exceptions: Custom exception classes for service layer errors
- database: Session management and database utilities
- authorization: Role -> capability table and permission checks
- actors: Current-actor resolution
- notifications: Pluggable success/error/warning sink
- lot_locks: Per-lot and per-batch lock registries
"""

from . import (
    database,
    inventory_service,
    production_batch_service,
    batch_reporting_service,
)

from .actors import Actor, get_current_actor, set_actor_resolver
from .authorization import (
    UserRole,
    can_access_financial_data,
    can_manage_customers,
    can_modify_inventory,
    can_override_price,
    has_permission,
)
from .exceptions import (
    BatchNotFound,
    ErrorKind,
    InsufficientQuantity,
    InvalidInput,
    InvalidTransition,
    LotExpired,
    LotNotFound,
    NotFound,
    PartialFailure,
    ServiceError,
    TransactionFailed,
    Unauthorized,
    ValidationError,
)
from .notifications import (
    LoggingNotificationSink,
    NotificationSink,
    RecordingNotificationSink,
    set_notification_sink,
)

__all__ = [
    "database",
    "inventory_service",
    "production_batch_service",
    "batch_reporting_service",
    "Actor",
    "get_current_actor",
    "set_actor_resolver",
    "UserRole",
    "can_access_financial_data",
    "can_manage_customers",
    "can_modify_inventory",
    "can_override_price",
    "has_permission",
    "BatchNotFound",
    "ErrorKind",
    "InsufficientQuantity",
    "InvalidInput",
    "InvalidTransition",
    "LotExpired",
    "LotNotFound",
    "NotFound",
    "PartialFailure",
    "ServiceError",
    "TransactionFailed",
    "Unauthorized",
    "ValidationError",
    "LoggingNotificationSink",
    "NotificationSink",
    "RecordingNotificationSink",
    "set_notification_sink",
]
