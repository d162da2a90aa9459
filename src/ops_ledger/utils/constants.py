"""
Constants for the Operations Ledger application.

This module defines all system-wide constants including:
- Application metadata
- Ledger reference types used to tag inventory movements
- Quantity precision and default limits
"""

from decimal import Decimal
from typing import List

# ============================================================================
# Application Metadata
# ============================================================================

APP_NAME = "Operations Ledger"
APP_VERSION = "0.1.0"
DATABASE_FILENAME = "ops_ledger.db"
DATABASE_VERSION = "1.0"

# ============================================================================
# Ledger Reference Types
# ============================================================================

# Movement caused by creating a production batch
REFERENCE_PRODUCTION_BATCH = "production_batch"
# Movement caused by replacing the inputs of an existing batch
REFERENCE_PRODUCTION_BATCH_UPDATE = "production_batch_update"
# Restoration performed by a batch rollback/cancellation
REFERENCE_PRODUCTION_BATCH_ROLLBACK = "production_batch_rollback"
# Compensating step of a failed saga
REFERENCE_PRODUCTION_BATCH_COMPENSATION = "production_batch_compensation"
# Stock-take correction
REFERENCE_MANUAL_ADJUSTMENT = "manual_adjustment"

BATCH_REFERENCE_TYPES: List[str] = [
    REFERENCE_PRODUCTION_BATCH,
    REFERENCE_PRODUCTION_BATCH_UPDATE,
    REFERENCE_PRODUCTION_BATCH_ROLLBACK,
    REFERENCE_PRODUCTION_BATCH_COMPENSATION,
]

# ============================================================================
# Batch Write Modes
# ============================================================================

WRITE_MODE_ATOMIC = "atomic"
WRITE_MODE_SAGA = "saga"
WRITE_MODES: List[str] = [WRITE_MODE_ATOMIC, WRITE_MODE_SAGA]

# ============================================================================
# Quantities and Limits
# ============================================================================

QUANTITY_PRECISION = Decimal("0.001")
COST_PRECISION = Decimal("0.0001")
ZERO = Decimal("0")

DEFAULT_MAX_SUGGESTED_LOTS = 3
DEFAULT_LOW_STOCK_THRESHOLD = Decimal("10")
DEFAULT_LOCK_TIMEOUT_SECONDS = 30.0
DEFAULT_EXPIRING_WITHIN_DAYS = 14

# Maximum absolute price deviation (percent) a sales manager may apply
SALES_PRICE_OVERRIDE_LIMIT_PERCENT = Decimal("20")
