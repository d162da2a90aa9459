"""Service layer exception classes for the Operations Ledger.

This module defines all custom exceptions used by the service layer to provide
consistent error handling across the application. Every exception carries an
ErrorKind so callers can branch on the failure type without isinstance chains.

Exception Hierarchy:
    ServiceError (base)
    ├── InsufficientQuantity
    ├── NotFound
    │   ├── LotNotFound
    │   └── BatchNotFound
    ├── LotExpired
    ├── Unauthorized
    ├── ValidationError          (InvalidInput)
    ├── InvalidTransition
    ├── PartialFailure
    └── TransactionFailed
"""

from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorKind(str, Enum):
    """Typed failure categories surfaced to callers."""

    INSUFFICIENT_QUANTITY = "insufficient_quantity"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    UNAUTHORIZED = "unauthorized"
    INVALID_INPUT = "invalid_input"
    INVALID_TRANSITION = "invalid_transition"
    PARTIAL_FAILURE = "partial_failure"
    TRANSACTION_FAILED = "transaction_failed"


class ServiceError(Exception):
    """Base exception for all service layer errors.

    All service-specific exceptions should inherit from this class.
    """

    kind: ErrorKind = ErrorKind.TRANSACTION_FAILED


class InsufficientQuantity(ServiceError):
    """Raised when a lot or material cannot cover a requested quantity.

    Args:
        requested: Quantity that was requested
        available: Quantity available (in the lot, or across all lots)
        lot_id: The lot that fell short (None for material-level shortfalls)
        material_id: The material that fell short (material-level shortfalls)
        suggested_lots: Alternative lots the caller may retry/split with

    Example:
        >>> raise InsufficientQuantity(Decimal("30"), Decimal("25"), lot_id=1)
        InsufficientQuantity: Insufficient quantity in lot 1: requested 30, available 25
    """

    kind = ErrorKind.INSUFFICIENT_QUANTITY

    def __init__(
        self,
        requested: Decimal,
        available: Decimal,
        lot_id: Optional[int] = None,
        material_id: Optional[str] = None,
        suggested_lots: Optional[List[Any]] = None,
        message: Optional[str] = None,
    ):
        self.requested = requested
        self.available = available
        self.lot_id = lot_id
        self.material_id = material_id
        self.suggested_lots = suggested_lots or []
        if message is None:
            if lot_id is not None:
                target = f"lot {lot_id}"
            else:
                target = f"material '{material_id}'"
            message = (
                f"Insufficient quantity in {target}: "
                f"requested {requested}, available {available}"
            )
        super().__init__(message)

    @property
    def total_available(self) -> Decimal:
        return self.available


class NotFound(ServiceError):
    """Raised when a ledger entity cannot be found."""

    kind = ErrorKind.NOT_FOUND


class LotNotFound(NotFound):
    """Raised when a material lot cannot be found by ID.

    Example:
        >>> raise LotNotFound(456)
        LotNotFound: Material lot with ID 456 not found
    """

    def __init__(self, lot_id: Any):
        self.lot_id = lot_id
        super().__init__(f"Material lot with ID {lot_id} not found")


class BatchNotFound(NotFound):
    """Raised when a production batch cannot be found by ID.

    Example:
        >>> raise BatchNotFound(12)
        BatchNotFound: Production batch with ID 12 not found
    """

    def __init__(self, batch_id: Any):
        self.batch_id = batch_id
        super().__init__(f"Production batch with ID {batch_id} not found")


class LotExpired(ServiceError):
    """Raised when attempting to consume from an expired lot."""

    kind = ErrorKind.EXPIRED

    def __init__(self, lot_id: int, expiry_date: Any = None):
        self.lot_id = lot_id
        self.expiry_date = expiry_date
        super().__init__(f"Material lot {lot_id} has expired")


class Unauthorized(ServiceError):
    """Raised when the acting user may not perform an action.

    Args:
        action: Human-readable description of the refused action
        actor_id: The refused actor's id (None if no actor was resolved)
    """

    kind = ErrorKind.UNAUTHORIZED

    def __init__(self, action: str, actor_id: Optional[str] = None):
        self.action = action
        self.actor_id = actor_id
        super().__init__(f"Unauthorized: You do not have permission to {action}")


class ValidationError(ServiceError):
    """Raised when input validation fails (InvalidInput)."""

    kind = ErrorKind.INVALID_INPUT

    def __init__(self, errors: list):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = errors
        error_msg = "; ".join(errors)
        super().__init__(f"Validation failed: {error_msg}")


InvalidInput = ValidationError


class InvalidTransition(ServiceError):
    """Raised when a batch state machine transition is not allowed.

    Example:
        >>> raise InvalidTransition(3, "completed", "cancelled")
        InvalidTransition: Cannot move batch 3 from 'completed' to 'cancelled'
    """

    kind = ErrorKind.INVALID_TRANSITION

    def __init__(self, batch_id: Any, current_status: str, requested_status: str):
        self.batch_id = batch_id
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(
            f"Cannot move batch {batch_id} from '{current_status}' to '{requested_status}'"
        )


class PartialFailure(ServiceError):
    """Raised when a saga step failed after earlier steps were committed.

    The earlier steps have already been compensated when this is raised.

    Args:
        operation: The saga that failed (e.g. "create_batch")
        original_error: The error that stopped the saga
        compensated: Descriptions of the steps that were reversed
        compensation_failures: Steps whose reversal itself failed
    """

    kind = ErrorKind.PARTIAL_FAILURE

    def __init__(
        self,
        operation: str,
        original_error: Exception,
        compensated: Optional[List[Dict[str, Any]]] = None,
        compensation_failures: Optional[List[Dict[str, Any]]] = None,
    ):
        self.operation = operation
        self.original_error = original_error
        self.compensated = compensated or []
        self.compensation_failures = compensation_failures or []
        message = (
            f"{operation} failed and {len(self.compensated)} applied step(s) were "
            f"rolled back: {original_error}"
        )
        if self.compensation_failures:
            message += f" ({len(self.compensation_failures)} step(s) could not be reversed)"
        super().__init__(message)

    @property
    def original_kind(self) -> ErrorKind:
        return getattr(self.original_error, "kind", ErrorKind.TRANSACTION_FAILED)


class TransactionFailed(ServiceError):
    """Raised when a persistence operation fails."""

    kind = ErrorKind.TRANSACTION_FAILED

    def __init__(self, message: str, original_error: Exception = None):
        self.original_error = original_error
        super().__init__(f"Transaction failed: {message}")
