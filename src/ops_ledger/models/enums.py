"""
Enumerations for the inventory ledger.

This module contains enums used across ledger models:
- BatchStatus: Lifecycle state of a production batch
- TransactionType: Kind of quantity change recorded against a lot
"""

from enum import Enum


class BatchStatus(str, Enum):
    """
    Production batch lifecycle status.

    Values:
        DRAFT: Created, inputs consumed, not yet started
        ACTIVE: Production in progress
        COMPLETED: Output recorded, costs finalized (terminal)
        CANCELLED: Rolled back, inputs restored (terminal)
    """

    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (BatchStatus.COMPLETED, BatchStatus.CANCELLED)


# Allowed forward transitions; rollback handles the move to CANCELLED
BATCH_TRANSITIONS = {
    BatchStatus.DRAFT: {BatchStatus.ACTIVE, BatchStatus.COMPLETED, BatchStatus.CANCELLED},
    BatchStatus.ACTIVE: {BatchStatus.COMPLETED, BatchStatus.CANCELLED},
    BatchStatus.COMPLETED: set(),
    BatchStatus.CANCELLED: set(),
}


class TransactionType(str, Enum):
    """
    Kind of quantity change recorded in the inventory transaction log.

    Values:
        DECREMENT: Material consumed (negative delta)
        INCREMENT: Material restored (positive delta)
        ADJUSTMENT: Stock-take correction (either sign)
    """

    DECREMENT = "decrement"
    INCREMENT = "increment"
    ADJUSTMENT = "adjustment"
