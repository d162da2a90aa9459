"""Data Transfer Objects for the service layer.

Typed results returned by validation helpers, so callers can branch on a
failure without catching exceptions.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .exceptions import ErrorKind


@dataclass
class ValidationResult:
    """Outcome of validating a lot selection.

    Attributes:
        is_valid: True if the requested quantity can be taken from the lot
        message: Human-readable explanation
        available_quantity: The lot's remaining quantity (0 if unknown)
        suggested_lots: Up to N alternative lots of the same material, FIFO order
        error_kind: Failure category when invalid, None when valid

    Examples:
        >>> result = validate_selection(lot_id=1, requested_quantity=Decimal("30"))
        >>> result.is_valid
        False
        >>> result.error_kind
        <ErrorKind.INSUFFICIENT_QUANTITY: 'insufficient_quantity'>
    """

    is_valid: bool
    message: str
    available_quantity: Decimal = Decimal("0")
    suggested_lots: List[Any] = field(default_factory=list)
    error_kind: Optional[ErrorKind] = None

    def __bool__(self) -> bool:
        return self.is_valid

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "message": self.message,
            "available_quantity": str(self.available_quantity),
            "suggested_lot_ids": [lot.id for lot in self.suggested_lots],
            "error_kind": self.error_kind.value if self.error_kind else None,
        }
