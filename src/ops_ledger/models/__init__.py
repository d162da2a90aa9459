"""
Database models package.

This package contains all SQLAlchemy ORM models for the inventory ledger.
"""

from .base import Base, BaseModel
from .enums import BatchStatus, TransactionType, BATCH_TRANSITIONS
from .material_lot import MaterialLot
from .inventory_transaction import InventoryTransaction
from .production_batch import ProductionBatch, BatchInput
from .batch_rollback import BatchRollback

__all__ = [
    "Base",
    "BaseModel",
    "BatchStatus",
    "TransactionType",
    "BATCH_TRANSITIONS",
    "MaterialLot",
    "InventoryTransaction",
    "ProductionBatch",
    "BatchInput",
    "BatchRollback",
]
