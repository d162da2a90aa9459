"""Service layer logging utilities.

Provides structured logging functions for service operations, enabling
consistent log format and context across inventory and batch operations.

Usage:
    from ops_ledger.services.logging_utils import get_service_logger, log_operation

    logger = get_service_logger(__name__)

    log_operation(
        logger,
        operation="decrement",
        outcome="success",
        lot_id=12,
        quantity="25",
    )
"""

import logging
from typing import Any, Optional

LOGGER_PREFIX = "ops_ledger.services"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def get_service_logger(name: str) -> logging.Logger:
    """
    Get a logger configured for service operations.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Logger instance with the 'ops_ledger.services' prefix.

    Example:
        >>> get_service_logger("ops_ledger.services.inventory_service").name
        'ops_ledger.services.inventory_service'
    """
    if "." in name:
        name = name.split(".")[-1]
    return logging.getLogger(f"{LOGGER_PREFIX}.{name}")


def log_operation(
    logger: logging.Logger,
    operation: str,
    outcome: str,
    level: int = logging.INFO,
    **context: Any,
) -> None:
    """
    Log a service operation with structured context.

    The context is passed via the 'extra' parameter for structured logging,
    so handlers can pick fields such as lot_id or batch_id off the record.

    Args:
        logger: Logger instance to use
        operation: Operation name (e.g., "decrement", "create_batch")
        outcome: Outcome description (e.g., "success", "insufficient_quantity")
        level: Log level (default: INFO)
        **context: Additional context fields (entity IDs, quantities, error details)

    Example:
        >>> log_operation(
        ...     logger,
        ...     operation="rollback_batch",
        ...     outcome="restoration_failed",
        ...     level=logging.WARNING,
        ...     batch_id=3,
        ...     lot_id=7,
        ... )
    """
    extra = {
        "operation": operation,
        "outcome": outcome,
        **context,
    }
    logger.log(level, f"{operation}: {outcome}", extra=extra)


def configure_logging(level: int = logging.INFO, fmt: Optional[str] = None) -> None:
    """Install a basic stream handler for command-line use."""
    logging.basicConfig(level=level, format=fmt or LOG_FORMAT)
