"""Inventory Service - material lot ledger with FIFO selection.

This module is the single authority for reading, selecting and mutating
material lot quantities. Every quantity change goes through decrement(),
increment() or adjust_lot_quantity(), each of which writes exactly one
InventoryTransaction row so the lot's history always reconstructs its
current quantity_remaining.

All functions are stateless and follow the session pattern:
- If session provided: caller owns the transaction, nothing is committed here
- If session is None: the function runs in its own session_scope()

Key Features:
- FIFO lot ordering by intake date (ties broken by lot id)
- Selection validation with alternative-lot suggestions
- Per-lot serialized read-modify-write (see lot_locks)
- Append-only transaction history and integrity verification

Example Usage:
    >>> from ops_ledger.services import inventory_service
    >>> plan = inventory_service.select_fifo("rm_001", Decimal("40"))
    >>> [(s["lot_id"], s["quantity_to_use"]) for s in plan["selections"]]
    [(1, Decimal('25')), (2, Decimal('15'))]
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ops_ledger.models import InventoryTransaction, MaterialLot, TransactionType
from ops_ledger.utils.config import get_config
from ops_ledger.utils.constants import (
    DEFAULT_EXPIRING_WITHIN_DAYS,
    QUANTITY_PRECISION,
    REFERENCE_MANUAL_ADJUSTMENT,
    ZERO,
)
from ops_ledger.utils.datetime_utils import to_naive_utc, utc_now

from .actors import Actor, resolve_actor
from .authorization import require_inventory_modification, require_permission
from .database import session_scope
from .dto import ValidationResult
from .exceptions import (
    ErrorKind,
    InsufficientQuantity,
    LotExpired,
    LotNotFound,
    ServiceError,
    TransactionFailed,
    ValidationError as ServiceValidationError,
)
from .logging_utils import get_service_logger, log_operation
from .lot_locks import lot_locks
from .notifications import notify_error, notify_success

logger = get_service_logger(__name__)


# =============================================================================
# Helpers
# =============================================================================


def to_quantity(value: Any) -> Optional[Decimal]:
    """Parse a quantity to a Decimal at ledger precision, or None if unparsable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value)).quantize(QUANTITY_PRECISION, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        return None


def _is_blank_id(lot_id: Any) -> bool:
    return lot_id is None or (isinstance(lot_id, str) and not lot_id.strip())


def coerce_lot_id(lot_id: Any) -> Optional[int]:
    """Return the integer lot id, or None if it cannot name a lot."""
    if _is_blank_id(lot_id) or isinstance(lot_id, bool):
        return None
    if isinstance(lot_id, int):
        return lot_id
    try:
        return int(str(lot_id).strip())
    except ValueError:
        return None


def _load_lot(session: Session, lot_id: Any, for_update: bool = False) -> Optional[MaterialLot]:
    key = coerce_lot_id(lot_id)
    if key is None:
        return None
    query = session.query(MaterialLot).filter(MaterialLot.id == key)
    if for_update:
        # Re-read the row even if it is already in the identity map
        query = query.with_for_update().populate_existing()
    return query.first()


def _run(impl, session: Optional[Session]):
    if session is not None:
        return impl(session)
    with session_scope() as sess:
        return impl(sess)


def _apply_change(
    session: Session,
    lot: MaterialLot,
    delta: Decimal,
    transaction_type: TransactionType,
    reference_id: Optional[str],
    reference_type: Optional[str],
    reason: str,
    user_id: str,
) -> InventoryTransaction:
    """Change a lot's remaining quantity and append the matching transaction."""
    previous = lot.remaining
    new = previous + delta
    lot.quantity_remaining = new

    transaction = InventoryTransaction(
        lot_id=lot.id,
        transaction_type=transaction_type.value,
        quantity_changed=delta,
        previous_quantity=previous,
        new_quantity=new,
        reference_id=str(reference_id) if reference_id is not None else None,
        reference_type=reference_type,
        reason=reason or "",
        user_id=user_id,
    )
    session.add(transaction)
    session.flush()
    return transaction


def _raise_for_validation(result: ValidationResult, lot_id: Any, quantity: Any) -> None:
    """Turn an invalid ValidationResult into the matching typed exception."""
    if result.error_kind == ErrorKind.NOT_FOUND:
        raise LotNotFound(lot_id)
    if result.error_kind == ErrorKind.EXPIRED:
        raise LotExpired(lot_id)
    if result.error_kind == ErrorKind.INSUFFICIENT_QUANTITY:
        raise InsufficientQuantity(
            requested=to_quantity(quantity),
            available=result.available_quantity,
            lot_id=coerce_lot_id(lot_id),
            suggested_lots=result.suggested_lots,
        )
    raise ServiceValidationError([result.message])


def _raise_failure(operation: str, lot_id: Any, error: Exception, notify: bool) -> None:
    """Log and notify a failed mutation, then raise it (wrapped if unexpected)."""
    wrapped = error
    if not isinstance(error, ServiceError):
        wrapped = TransactionFailed(f"Failed to {operation} lot {lot_id}: {error}", original_error=error)
    log_operation(
        logger,
        operation=operation,
        outcome=wrapped.kind.value,
        level=logging.WARNING,
        lot_id=lot_id,
        error=str(wrapped),
    )
    if notify:
        notify_error(str(wrapped))
    if wrapped is error:
        raise error
    raise wrapped from error


# =============================================================================
# Queries
# =============================================================================


def get_lot(lot_id: Any, session: Optional[Session] = None) -> MaterialLot:
    """Get a material lot by id.

    Raises:
        LotNotFound: If the lot does not exist
    """

    def _impl(sess: Session) -> MaterialLot:
        lot = _load_lot(sess, lot_id)
        if lot is None:
            raise LotNotFound(lot_id)
        return lot

    return _run(_impl, session)


def get_available_lots(
    material_id: str,
    *,
    now: Optional[datetime] = None,
    session: Optional[Session] = None,
) -> List[MaterialLot]:
    """Get consumable lots for a material in FIFO order.

    A lot is consumable when quantity_remaining > 0 and it has no expiry date
    or the expiry date is still in the future.

    Args:
        material_id: Material to list lots for
        now: Reference time for expiry checks (defaults to current UTC time)
        session: Optional database session

    Returns:
        List[MaterialLot]: Ordered by intake_date ascending, then lot id.
        Empty when no lot qualifies.
    """
    reference_time = to_naive_utc(now or utc_now())

    def _impl(sess: Session) -> List[MaterialLot]:
        lots = (
            sess.query(MaterialLot)
            .filter(
                MaterialLot.material_id == material_id,
                MaterialLot.quantity_remaining > 0,
            )
            .order_by(MaterialLot.intake_date.asc(), MaterialLot.id.asc())
            .all()
        )
        return [lot for lot in lots if not lot.is_expired(reference_time)]

    return _run(_impl, session)


def get_total_available(material_id: str, session: Optional[Session] = None) -> Decimal:
    """Sum of quantity_remaining over the material's consumable lots."""
    lots = get_available_lots(material_id, session=session)
    return sum((lot.remaining for lot in lots), ZERO)


def validate_selection(
    lot_id: Any,
    requested_quantity: Any,
    *,
    session: Optional[Session] = None,
) -> ValidationResult:
    """Validate taking ``requested_quantity`` from a lot without mutating anything.

    Checks, in order: identifier and quantity are usable, lot exists, lot is
    not expired, lot holds enough. When the lot holds too little the result
    carries its available quantity and up to ``max_suggested_lots`` other
    consumable lots of the same material (FIFO order) so the caller can retry
    or split the request.

    Args:
        lot_id: Lot to take from
        requested_quantity: Quantity to take (must be > 0)
        session: Optional database session

    Returns:
        ValidationResult
    """
    quantity = to_quantity(requested_quantity)
    if _is_blank_id(lot_id) or quantity is None or quantity <= 0:
        return ValidationResult(
            is_valid=False,
            message="Invalid lot ID or quantity",
            error_kind=ErrorKind.INVALID_INPUT,
        )

    def _impl(sess: Session) -> ValidationResult:
        lot = _load_lot(sess, lot_id)
        return _validate_lot(sess, lot, quantity)

    return _run(_impl, session)


def _validate_lot(sess: Session, lot: Optional[MaterialLot], quantity: Decimal) -> ValidationResult:
    if lot is None:
        return ValidationResult(
            is_valid=False,
            message="Lot not found",
            error_kind=ErrorKind.NOT_FOUND,
        )

    if lot.is_expired():
        return ValidationResult(
            is_valid=False,
            message=f"Lot {lot.lot_number} has expired",
            available_quantity=lot.remaining,
            error_kind=ErrorKind.EXPIRED,
        )

    if quantity > lot.remaining:
        limit = get_config().max_suggested_lots
        alternatives = [
            other
            for other in get_available_lots(lot.material_id, session=sess)
            if other.id != lot.id
        ]
        return ValidationResult(
            is_valid=False,
            message=(
                f"Insufficient quantity. Available: {lot.remaining}, "
                f"Requested: {quantity}"
            ),
            available_quantity=lot.remaining,
            suggested_lots=alternatives[:limit],
            error_kind=ErrorKind.INSUFFICIENT_QUANTITY,
        )

    return ValidationResult(
        is_valid=True,
        message="Lot selection is valid",
        available_quantity=lot.remaining,
    )


def select_fifo(
    material_id: str,
    required_quantity: Any,
    *,
    session: Optional[Session] = None,
) -> Dict[str, Any]:
    """Plan which lots cover ``required_quantity`` of a material, oldest first.

    **CRITICAL FUNCTION**: This is the FIFO allocation policy.

    Algorithm:
        1. Get consumable lots in FIFO order (get_available_lots)
        2. Fail if their total is below the requirement (nothing is proposed)
        3. Walk the lots taking min(lot remaining, still needed) from each
           until nothing is needed

    This is a pure planning function: no lot is modified.

    Args:
        material_id: Material to allocate
        required_quantity: Quantity needed (must be > 0)
        session: Optional database session

    Returns:
        Dict with keys:
            - "material_id" (str)
            - "required_quantity" (Decimal)
            - "selections" (List[Dict]): lot, lot_id, lot_number,
              quantity_to_use, cost_per_unit, cost - in consumption order;
              quantity_to_use values sum exactly to required_quantity
            - "total_available" (Decimal): total across all consumable lots
            - "total_cost" (Decimal): cost of the planned consumption

    Raises:
        ValidationError: If required_quantity is not positive
        InsufficientQuantity: If total_available < required_quantity
    """
    required = to_quantity(required_quantity)
    if required is None or required <= 0:
        raise ServiceValidationError(["Required quantity must be greater than zero"])

    def _impl(sess: Session) -> Dict[str, Any]:
        lots = get_available_lots(material_id, session=sess)
        total_available = sum((lot.remaining for lot in lots), ZERO)

        if total_available < required:
            log_operation(
                logger,
                operation="select_fifo",
                outcome="insufficient_quantity",
                material_id=material_id,
                required=str(required),
                total_available=str(total_available),
            )
            raise InsufficientQuantity(
                requested=required,
                available=total_available,
                material_id=material_id,
                message=(
                    f"Insufficient total quantity. Available: {total_available}, "
                    f"Required: {required}"
                ),
            )

        selections = []
        total_cost = ZERO
        remaining = required
        for lot in lots:
            if remaining <= 0:
                break
            to_use = min(lot.remaining, remaining)
            cost_per_unit = Decimal(str(lot.cost_per_unit))
            cost = to_use * cost_per_unit
            selections.append(
                {
                    "lot": lot,
                    "lot_id": lot.id,
                    "lot_number": lot.lot_number,
                    "quantity_to_use": to_use,
                    "cost_per_unit": cost_per_unit,
                    "cost": cost,
                }
            )
            total_cost += cost
            remaining -= to_use

        return {
            "material_id": material_id,
            "required_quantity": required,
            "selections": selections,
            "total_available": total_available,
            "total_cost": total_cost,
        }

    return _run(_impl, session)


def check_stock(material_id: str, required_quantity: Any) -> bool:
    """Cheap pre-check: is there at least ``required_quantity`` available?

    Any error is logged and reported as False. Not an authority for
    mutation decisions - decrement() re-validates under the lot lock.
    """
    try:
        required = to_quantity(required_quantity)
        if required is None:
            return False
        return get_total_available(material_id) >= required
    except Exception as e:
        logger.error(f"Error checking material stock for '{material_id}': {e}")
        return False


def get_transaction_history(
    lot_id: Any,
    *,
    limit: Optional[int] = None,
    session: Optional[Session] = None,
) -> List[InventoryTransaction]:
    """Get the transaction history of a lot, newest first.

    Unknown lots (and lots with no movements yet) return an empty list.
    """
    key = coerce_lot_id(lot_id)
    if key is None:
        return []

    def _impl(sess: Session) -> List[InventoryTransaction]:
        query = (
            sess.query(InventoryTransaction)
            .filter(InventoryTransaction.lot_id == key)
            .order_by(InventoryTransaction.created_at.desc(), InventoryTransaction.id.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    return _run(_impl, session)


def get_low_stock_lots(
    threshold: Any = None,
    *,
    material_id: Optional[str] = None,
    session: Optional[Session] = None,
) -> List[MaterialLot]:
    """Get consumable lots whose remaining quantity is at or below ``threshold``.

    Args:
        threshold: Quantity threshold (defaults to config.low_stock_threshold)
        material_id: Optional material filter
        session: Optional database session

    Returns:
        Lots ordered by material, then FIFO order
    """
    limit = to_quantity(threshold) if threshold is not None else get_config().low_stock_threshold
    reference_time = to_naive_utc(utc_now())

    def _impl(sess: Session) -> List[MaterialLot]:
        query = sess.query(MaterialLot).filter(
            MaterialLot.quantity_remaining > 0,
            MaterialLot.quantity_remaining <= limit,
        )
        if material_id is not None:
            query = query.filter(MaterialLot.material_id == material_id)
        lots = query.order_by(
            MaterialLot.material_id.asc(),
            MaterialLot.intake_date.asc(),
            MaterialLot.id.asc(),
        ).all()
        return [lot for lot in lots if not lot.is_expired(reference_time)]

    return _run(_impl, session)


def get_expiring_lots(
    days: int = DEFAULT_EXPIRING_WITHIN_DAYS,
    *,
    session: Optional[Session] = None,
) -> List[MaterialLot]:
    """Get consumable lots expiring within ``days`` days, soonest first.

    Already expired lots and lots without an expiry date are excluded.
    """
    now = to_naive_utc(utc_now())
    cutoff = now + timedelta(days=days)

    def _impl(sess: Session) -> List[MaterialLot]:
        lots = (
            sess.query(MaterialLot)
            .filter(
                MaterialLot.expiry_date.isnot(None),
                MaterialLot.quantity_remaining > 0,
            )
            .order_by(MaterialLot.expiry_date.asc(), MaterialLot.id.asc())
            .all()
        )
        return [
            lot
            for lot in lots
            if now < to_naive_utc(lot.expiry_date) <= cutoff
        ]

    return _run(_impl, session)


def verify_lot_integrity(lot_id: Any, session: Optional[Session] = None) -> Dict[str, Any]:
    """Check that a lot's transaction log reconstructs its current quantity.

    Replays the transactions oldest first starting from quantity_received,
    checking that each row's arithmetic holds and that each row starts where
    the previous one ended.

    Returns:
        Dict with keys: lot_id, quantity_received, quantity_remaining,
        reconstructed_quantity, transaction_count, is_consistent,
        broken_transactions (ids of rows that do not chain)

    Raises:
        LotNotFound: If the lot does not exist
    """

    def _impl(sess: Session) -> Dict[str, Any]:
        lot = _load_lot(sess, lot_id)
        if lot is None:
            raise LotNotFound(lot_id)

        transactions = (
            sess.query(InventoryTransaction)
            .filter(InventoryTransaction.lot_id == lot.id)
            .order_by(InventoryTransaction.created_at.asc(), InventoryTransaction.id.asc())
            .all()
        )

        running = Decimal(str(lot.quantity_received))
        broken = []
        for txn in transactions:
            previous = Decimal(str(txn.previous_quantity))
            delta = Decimal(str(txn.quantity_changed))
            new = Decimal(str(txn.new_quantity))
            if previous != running or new != previous + delta:
                broken.append(txn.id)
            running = running + delta

        is_consistent = not broken and running == lot.remaining
        if not is_consistent:
            log_operation(
                logger,
                operation="verify_lot_integrity",
                outcome="inconsistent",
                level=logging.WARNING,
                lot_id=lot.id,
                reconstructed=str(running),
                remaining=str(lot.remaining),
                broken_transactions=broken,
            )

        return {
            "lot_id": lot.id,
            "quantity_received": Decimal(str(lot.quantity_received)),
            "quantity_remaining": lot.remaining,
            "reconstructed_quantity": running,
            "transaction_count": len(transactions),
            "is_consistent": is_consistent,
            "broken_transactions": broken,
        }

    return _run(_impl, session)


# =============================================================================
# Mutations
# =============================================================================


def receive_lot(
    material_id: str,
    supplier_id: str,
    lot_number: str,
    quantity_received: Any,
    cost_per_unit: Any,
    *,
    intake_date: Optional[datetime] = None,
    expiry_date: Optional[datetime] = None,
    quality_grade: Optional[str] = None,
    storage_location: Optional[str] = None,
    notes: Optional[str] = None,
    quantity_remaining: Any = None,
    actor: Optional[Actor] = None,
    session: Optional[Session] = None,
) -> MaterialLot:
    """Record a material intake as a new lot.

    quantity_received and cost_per_unit are immutable from here on. When an
    opening ``quantity_remaining`` below the received quantity is given (e.g.
    migrating a partly used lot), an opening adjustment transaction is
    written so the history still reconstructs the remaining quantity.

    Args:
        material_id: Material received
        supplier_id: Supplier delivering the lot
        lot_number: Supplier/label lot number
        quantity_received: Quantity received (must be > 0)
        cost_per_unit: Cost per unit (must be > 0)
        intake_date: When received (defaults to now)
        expiry_date: Optional expiry (must be after intake_date)
        quality_grade: Optional quality grade
        storage_location: Optional storage location
        notes: Optional notes
        quantity_remaining: Optional opening remaining quantity
        actor: Acting user (defaults to the current actor)
        session: Optional database session

    Returns:
        MaterialLot: The created lot

    Raises:
        Unauthorized: If the actor may not record material intake
        ValidationError: If any field is invalid
    """
    actor = require_permission(resolve_actor(actor), "material_intake", "create")

    received = to_quantity(quantity_received)
    remaining = to_quantity(quantity_remaining) if quantity_remaining is not None else received
    try:
        cost = Decimal(str(cost_per_unit))
    except (InvalidOperation, ValueError):
        cost = None
    intake = intake_date or utc_now()

    errors = []
    if not material_id:
        errors.append("Material ID is required")
    if not supplier_id:
        errors.append("Supplier ID is required")
    if not lot_number:
        errors.append("Lot number is required")
    if received is None or received <= 0:
        errors.append("Quantity received must be greater than zero")
    elif remaining is None or remaining < 0 or remaining > received:
        errors.append("Quantity remaining must be between zero and quantity received")
    if cost is None or cost <= 0:
        errors.append("Cost per unit must be greater than zero")
    if expiry_date is not None and to_naive_utc(expiry_date) <= to_naive_utc(intake):
        errors.append("Expiry date must be after intake date")
    if errors:
        raise ServiceValidationError(errors)

    def _impl(sess: Session) -> MaterialLot:
        lot = MaterialLot(
            material_id=material_id,
            supplier_id=supplier_id,
            lot_number=lot_number,
            quantity_received=received,
            quantity_remaining=received,
            cost_per_unit=cost,
            intake_date=intake,
            expiry_date=expiry_date,
            quality_grade=quality_grade,
            storage_location=storage_location,
            notes=notes,
        )
        sess.add(lot)
        sess.flush()
        if remaining != received:
            _apply_change(
                sess,
                lot,
                remaining - received,
                TransactionType.ADJUSTMENT,
                None,
                REFERENCE_MANUAL_ADJUSTMENT,
                "Opening balance",
                actor.id,
            )
        return lot

    try:
        lot = _run(_impl, session)
    except SQLAlchemyError as e:
        raise TransactionFailed("Failed to record material lot", original_error=e)

    log_operation(
        logger,
        operation="receive_lot",
        outcome="success",
        lot_id=lot.id,
        material_id=material_id,
        quantity=str(received),
    )
    notify_success(f"Received {received} units of {material_id} as lot {lot_number}")
    return lot


def decrement(
    lot_id: Any,
    quantity: Any,
    *,
    reference_id: Optional[str] = None,
    reference_type: Optional[str] = None,
    reason: str = "Material consumption",
    actor: Optional[Actor] = None,
    session: Optional[Session] = None,
    notify: bool = True,
) -> InventoryTransaction:
    """Consume ``quantity`` from a lot.

    Authorization is checked first, then the selection is validated under the
    lot lock, then quantity_remaining is reduced and one ``decrement``
    transaction (delta = -quantity) is appended.

    Args:
        lot_id: Lot to consume from
        quantity: Quantity to consume (must be > 0)
        reference_id: Optional id of the causing entity (e.g. batch uuid)
        reference_type: Optional type of the causing entity
        reason: Free-text reason for the audit trail
        actor: Acting user (defaults to the current actor)
        session: Optional database session. If provided, the caller owns the
                 transaction (and must hold the lot lock until it commits).
        notify: Emit success/error notifications (batch operations emit their own)

    Returns:
        InventoryTransaction: The appended transaction

    Raises:
        Unauthorized: If the actor may not modify inventory (no state change)
        ValidationError: If the lot id is blank or quantity is not positive
        LotNotFound: If the lot does not exist
        LotExpired: If the lot has expired
        InsufficientQuantity: If the lot holds less than quantity
        TransactionFailed: If the database write fails
    """
    actor = require_inventory_modification(resolve_actor(actor))
    amount = to_quantity(quantity)

    def _impl(sess: Session) -> InventoryTransaction:
        if _is_blank_id(lot_id) or amount is None or amount <= 0:
            raise ServiceValidationError(["Invalid lot ID or quantity"])
        lot = _load_lot(sess, lot_id, for_update=True)
        validation = _validate_lot(sess, lot, amount)
        if not validation.is_valid:
            _raise_for_validation(validation, lot_id, amount)
        transaction = _apply_change(
            sess,
            lot,
            -amount,
            TransactionType.DECREMENT,
            reference_id,
            reference_type,
            reason,
            actor.id,
        )
        transaction.lot_number = lot.lot_number
        return transaction

    try:
        transaction = _locked(lot_id, _impl, session)
    except Exception as e:
        _raise_failure("decrement", lot_id, e, notify)

    log_operation(
        logger,
        operation="decrement",
        outcome="success",
        lot_id=transaction.lot_id,
        quantity=str(amount),
        reference_id=reference_id,
        reference_type=reference_type,
        actor_id=actor.id,
    )
    if notify:
        notify_success(
            f"Successfully decremented {amount} units from lot {transaction.lot_number}"
        )
    return transaction


def increment(
    lot_id: Any,
    quantity: Any,
    *,
    reference_id: Optional[str] = None,
    reference_type: Optional[str] = None,
    reason: str = "Inventory restoration",
    actor: Optional[Actor] = None,
    session: Optional[Session] = None,
    notify: bool = True,
) -> InventoryTransaction:
    """Restore ``quantity`` to a lot (compensation / rollback primitive).

    Availability is not re-validated: restoring cannot be "insufficient".
    Expired lots may be restored to. The lot may never hold more than it
    received.

    Raises:
        Unauthorized: If the actor may not modify inventory (no state change)
        ValidationError: If quantity is not positive or would exceed quantity_received
        LotNotFound: If the lot does not exist
        TransactionFailed: If the database write fails
    """
    actor = require_inventory_modification(resolve_actor(actor))
    amount = to_quantity(quantity)

    def _impl(sess: Session) -> InventoryTransaction:
        if _is_blank_id(lot_id) or amount is None or amount <= 0:
            raise ServiceValidationError(["Invalid lot ID or quantity"])
        lot = _load_lot(sess, lot_id, for_update=True)
        if lot is None:
            raise LotNotFound(lot_id)
        if lot.remaining + amount > Decimal(str(lot.quantity_received)):
            raise ServiceValidationError(
                [
                    f"Restoring {amount} to lot {lot.lot_number} would exceed its "
                    f"received quantity of {lot.quantity_received}"
                ]
            )
        transaction = _apply_change(
            sess,
            lot,
            amount,
            TransactionType.INCREMENT,
            reference_id,
            reference_type,
            reason,
            actor.id,
        )
        transaction.lot_number = lot.lot_number
        return transaction

    try:
        transaction = _locked(lot_id, _impl, session)
    except Exception as e:
        _raise_failure("increment", lot_id, e, notify)

    log_operation(
        logger,
        operation="increment",
        outcome="success",
        lot_id=transaction.lot_id,
        quantity=str(amount),
        reference_id=reference_id,
        reference_type=reference_type,
        actor_id=actor.id,
    )
    if notify:
        notify_success(f"Successfully restored {amount} units to lot {transaction.lot_number}")
    return transaction


def adjust_lot_quantity(
    lot_id: Any,
    new_quantity: Any,
    reason: str,
    *,
    actor: Optional[Actor] = None,
    session: Optional[Session] = None,
) -> InventoryTransaction:
    """Correct a lot's remaining quantity after a stock-take.

    Written as an ``adjustment`` transaction whose delta is the difference.

    Raises:
        Unauthorized: If the actor may not modify inventory
        ValidationError: If reason is empty, the quantity is outside
                         [0, quantity_received], or nothing would change
        LotNotFound: If the lot does not exist
    """
    actor = require_inventory_modification(resolve_actor(actor))
    target = to_quantity(new_quantity)

    def _impl(sess: Session) -> InventoryTransaction:
        if not reason or not reason.strip():
            raise ServiceValidationError(["A reason is required for inventory adjustments"])
        if target is None or target < 0:
            raise ServiceValidationError(["Adjusted quantity cannot be negative"])
        lot = _load_lot(sess, lot_id, for_update=True)
        if lot is None:
            raise LotNotFound(lot_id)
        if target > Decimal(str(lot.quantity_received)):
            raise ServiceValidationError(
                [f"Adjusted quantity cannot exceed received quantity {lot.quantity_received}"]
            )
        delta = target - lot.remaining
        if delta == 0:
            raise ServiceValidationError(["Adjustment does not change the lot quantity"])
        transaction = _apply_change(
            sess,
            lot,
            delta,
            TransactionType.ADJUSTMENT,
            None,
            REFERENCE_MANUAL_ADJUSTMENT,
            reason,
            actor.id,
        )
        transaction.lot_number = lot.lot_number
        return transaction

    try:
        transaction = _locked(lot_id, _impl, session)
    except Exception as e:
        _raise_failure("adjust_lot_quantity", lot_id, e, True)

    log_operation(
        logger,
        operation="adjust_lot_quantity",
        outcome="success",
        lot_id=transaction.lot_id,
        delta=str(transaction.quantity_changed),
        actor_id=actor.id,
    )
    notify_success(f"Adjusted lot {transaction.lot_number} to {target} units")
    return transaction


def _locked(lot_id: Any, impl, session: Optional[Session]):
    """Run impl under the lot's lock (impl reports invalid ids itself)."""
    key = coerce_lot_id(lot_id)
    if key is None:
        return _run(impl, session)
    with lot_locks.hold(key):
        return _run(impl, session)
