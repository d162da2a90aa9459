"""Production Batch Service - multi-lot consumption with all-or-nothing semantics.

A production batch consumes one or more material lots and records, per lot,
the quantity used and the lot's cost per unit at that moment. Every batch
create/update either applies completely or leaves inventory untouched.

Two write disciplines are supported (Config.batch_write_mode):

- ``atomic``: all lot locks are taken up front (ascending lot id), then every
  lot mutation plus the batch header and input rows are written in ONE
  database transaction. Any failure rolls the whole transaction back.
- ``saga``: each lot mutation commits on its own. When a later step fails,
  the applied steps are compensated in reverse order (decrement <->
  increment) and PartialFailure is raised carrying the original error.

Ledger rows written for a batch reference the batch's uuid, which is
assigned before any inventory is touched so the reference is valid even if
the header write never happens.

State machine:
    draft -> active -> completed
    draft | active -> cancelled (rollback_batch)
    completed and cancelled are terminal

Status changes are compare-and-set writes against the status that was read,
and every operation on an existing batch holds that batch's lock, so a
rollback racing an update or completion cannot both succeed.
"""

import logging
from contextlib import nullcontext
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from ops_ledger.models import (
    BATCH_TRANSITIONS,
    BatchInput,
    BatchRollback,
    BatchStatus,
    ProductionBatch,
)
from ops_ledger.utils.config import get_config
from ops_ledger.utils.constants import (
    COST_PRECISION,
    REFERENCE_PRODUCTION_BATCH,
    REFERENCE_PRODUCTION_BATCH_COMPENSATION,
    REFERENCE_PRODUCTION_BATCH_ROLLBACK,
    REFERENCE_PRODUCTION_BATCH_UPDATE,
    WRITE_MODE_SAGA,
    ZERO,
)
from ops_ledger.utils.datetime_utils import utc_now

from . import inventory_service
from .actors import Actor, resolve_actor
from .authorization import require_permission
from .database import session_scope
from .exceptions import (
    BatchNotFound,
    ErrorKind,
    InvalidTransition,
    PartialFailure,
    ServiceError,
    TransactionFailed,
    ValidationError as ServiceValidationError,
)
from .logging_utils import get_service_logger, log_operation
from .lot_locks import batch_locks, lot_locks
from .notifications import notify_error, notify_success, notify_warning

logger = get_service_logger(__name__)

HEADER_FIELDS = ("batch_number", "production_date", "notes", "status")
PERCENT_PRECISION = Decimal("0.01")

# Steps applied to inventory, and how to reverse each
DECREMENT = "decrement"
INCREMENT = "increment"


# =============================================================================
# Helpers
# =============================================================================


def _normalize_inputs(inputs: Optional[List[Any]]) -> List[Tuple[int, Decimal]]:
    """Turn input specs into (lot_id, quantity_used) pairs.

    Accepts dicts with ``lot_id`` and ``quantity_used`` (or ``quantity``)
    and two-item tuples.

    Raises:
        ValidationError: Listing every malformed entry
    """
    normalized = []
    errors = []
    for index, entry in enumerate(inputs or []):
        if isinstance(entry, dict):
            lot_id = entry.get("lot_id")
            quantity = entry.get("quantity_used", entry.get("quantity"))
        elif isinstance(entry, (tuple, list)) and len(entry) == 2:
            lot_id, quantity = entry
        else:
            errors.append(f"Input {index + 1}: expected (lot_id, quantity_used)")
            continue

        key = inventory_service.coerce_lot_id(lot_id)
        amount = inventory_service.to_quantity(quantity)
        if key is None:
            errors.append(f"Input {index + 1}: invalid lot ID")
        elif amount is None or amount <= 0:
            errors.append(f"Input {index + 1}: quantity must be greater than zero")
        else:
            normalized.append((key, amount))

    if errors:
        raise ServiceValidationError(errors)
    return normalized


def _parse_status(value: Any) -> BatchStatus:
    try:
        return BatchStatus(value)
    except ValueError:
        raise ServiceValidationError([f"Unknown batch status '{value}'"])


def _load_batch(sess: Session, batch_id: Any) -> ProductionBatch:
    batch = None
    if batch_id is not None and not isinstance(batch_id, bool):
        try:
            batch = sess.get(ProductionBatch, int(batch_id))
        except (TypeError, ValueError):
            batch = None
    if batch is None:
        raise BatchNotFound(batch_id)
    return batch


def _check_transition(batch: ProductionBatch, target: BatchStatus) -> None:
    if target not in BATCH_TRANSITIONS[batch.status_enum]:
        raise InvalidTransition(batch.id, batch.status, target.value)


def _batch_lock(batch_id: Any):
    try:
        key = int(batch_id)
    except (TypeError, ValueError):
        key = batch_id
    return batch_locks.hold(key)


def _claim_status(sess: Session, batch: ProductionBatch, target: BatchStatus) -> None:
    """Write target status only if the stored status is still the one loaded.

    Raises:
        InvalidTransition: If another writer changed the status first
    """
    claimed = (
        sess.query(ProductionBatch)
        .filter(ProductionBatch.id == batch.id, ProductionBatch.status == batch.status)
        .update({ProductionBatch.status: target.value}, synchronize_session=False)
    )
    if claimed != 1:
        sess.refresh(batch)
        raise InvalidTransition(batch.id, batch.status, target.value)
    set_committed_value(batch, "status", target.value)
    sess.expire(batch, ["updated_at"])


def _ensure_unique_number(sess: Session, batch_number: str, exclude_id: Optional[int] = None) -> None:
    query = sess.query(ProductionBatch.id).filter(ProductionBatch.batch_number == batch_number)
    if exclude_id is not None:
        query = query.filter(ProductionBatch.id != exclude_id)
    if query.first() is not None:
        raise ServiceValidationError([f"Batch number '{batch_number}' already exists"])


def _validate_header(batch_data: Dict[str, Any]) -> Dict[str, Any]:
    errors = []
    batch_number = (batch_data.get("batch_number") or "").strip()
    if not batch_number:
        errors.append("Batch number is required")

    status = batch_data.get("status", BatchStatus.DRAFT.value)
    if status not in (BatchStatus.DRAFT.value, BatchStatus.ACTIVE.value):
        errors.append("A new batch must start as 'draft' or 'active'")

    production_date = batch_data.get("production_date") or utc_now()
    if not isinstance(production_date, datetime):
        errors.append("Production date must be a datetime")

    if errors:
        raise ServiceValidationError(errors)

    return {
        "batch_number": batch_number,
        "status": status,
        "production_date": production_date,
        "notes": batch_data.get("notes"),
        # Earlier than every ledger row the batch writes
        "created_at": utc_now(),
    }


def _consume(
    steps: List[Tuple[str, int, Decimal]],
    batch_uuid: str,
    reference_type: str,
    reason: str,
    actor: Actor,
    session: Optional[Session],
    applied: List[Dict[str, Any]],
) -> None:
    """Apply inventory steps in order, recording each applied step.

    With a session every step joins the caller's transaction; without one
    each step commits on its own (saga).
    """
    for direction, lot_id, quantity in steps:
        lot = inventory_service.get_lot(lot_id, session=session)
        mutate = inventory_service.decrement if direction == DECREMENT else inventory_service.increment
        mutate(
            lot_id,
            quantity,
            reference_id=batch_uuid,
            reference_type=reference_type,
            reason=reason,
            actor=actor,
            session=session,
            notify=False,
        )
        applied.append(
            {
                "direction": direction,
                "lot_id": lot_id,
                "quantity": quantity,
                "material_id": lot.material_id,
                "cost_per_unit": Decimal(str(lot.cost_per_unit)),
            }
        )


def _compensate(
    applied: List[Dict[str, Any]],
    batch_uuid: str,
    actor: Actor,
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Reverse applied saga steps, newest first.

    Returns:
        (compensated, failures) - failures never stop the remaining reversals
    """
    compensated = []
    failures = []
    for step in reversed(applied):
        reverse = (
            inventory_service.increment
            if step["direction"] == DECREMENT
            else inventory_service.decrement
        )
        try:
            reverse(
                step["lot_id"],
                step["quantity"],
                reference_id=batch_uuid,
                reference_type=REFERENCE_PRODUCTION_BATCH_COMPENSATION,
                reason=f"Compensating failed batch write ({step['direction']})",
                actor=actor,
                notify=False,
            )
            compensated.append(
                {
                    "direction": step["direction"],
                    "lot_id": step["lot_id"],
                    "quantity": step["quantity"],
                }
            )
        except Exception as e:
            log_operation(
                logger,
                operation="compensate",
                outcome="failed",
                level=logging.ERROR,
                batch_uuid=batch_uuid,
                lot_id=step["lot_id"],
                quantity=str(step["quantity"]),
                error=str(e),
            )
            failures.append(
                {
                    "direction": step["direction"],
                    "lot_id": step["lot_id"],
                    "quantity": step["quantity"],
                    "error": str(e),
                }
            )
    return compensated, failures


def _raise_saga_failure(
    operation: str,
    error: Exception,
    applied: List[Dict[str, Any]],
    batch_uuid: str,
    actor: Actor,
) -> None:
    """Compensate what was applied and raise PartialFailure.

    With nothing applied there is nothing to reverse and the error is re-raised.
    """
    if not applied:
        raise error
    compensated, failures = _compensate(applied, batch_uuid, actor)
    raise PartialFailure(
        operation,
        original_error=error,
        compensated=compensated,
        compensation_failures=failures,
    ) from error


def _raise_failure(operation: str, error: Exception, **context: Any) -> None:
    """Log and notify a failed batch operation, then raise it (wrapped if unexpected)."""
    wrapped = error
    if not isinstance(error, ServiceError):
        wrapped = TransactionFailed(f"{operation} failed: {error}", original_error=error)
    log_operation(
        logger,
        operation=operation,
        outcome=wrapped.kind.value,
        level=logging.WARNING,
        error=str(wrapped),
        **context,
    )
    notify_error(str(wrapped))
    if wrapped is error:
        raise error
    raise wrapped from error


def _build_inputs(batch: ProductionBatch, consumed: List[Dict[str, Any]]) -> Decimal:
    """Attach BatchInput rows for consumed lots; returns the total input cost."""
    total = ZERO
    for step in consumed:
        cost = (step["quantity"] * step["cost_per_unit"]).quantize(COST_PRECISION, rounding=ROUND_HALF_UP)
        batch.inputs.append(
            BatchInput(
                lot_id=step["lot_id"],
                material_id=step["material_id"],
                quantity_used=step["quantity"],
                cost_per_unit=step["cost_per_unit"],
                total_cost=cost,
            )
        )
        total += cost
    return total


def _write_new_batch(
    sess: Session,
    batch_uuid: str,
    header: Dict[str, Any],
    consumed: List[Dict[str, Any]],
    actor: Actor,
) -> Dict[str, Any]:
    batch = ProductionBatch(
        uuid=batch_uuid,
        created_at=header["created_at"],
        batch_number=header["batch_number"],
        production_date=header["production_date"],
        status=header["status"],
        notes=header["notes"],
        created_by=actor.id,
    )
    batch.total_input_cost = _build_inputs(batch, consumed)
    sess.add(batch)
    sess.flush()
    return batch.to_dict()


def _decrement_steps(inputs: List[Tuple[int, Decimal]]) -> List[Tuple[str, int, Decimal]]:
    return [(DECREMENT, lot_id, quantity) for lot_id, quantity in inputs]


def _use_saga(session: Optional[Session]) -> bool:
    # A caller-owned session is one transaction by definition
    return session is None and get_config().batch_write_mode == WRITE_MODE_SAGA


# =============================================================================
# Create
# =============================================================================


def create_batch(
    batch_data: Dict[str, Any],
    inputs: Optional[List[Any]] = None,
    *,
    actor: Optional[Actor] = None,
    session: Optional[Session] = None,
) -> Dict[str, Any]:
    """
    Create a production batch, consuming every input lot.

    All inputs are consumed or none are. The cost per unit of each lot is
    snapshotted into its BatchInput row, and total_input_cost is the sum of
    quantity_used x cost_per_unit. A batch with no inputs is valid (cost 0).

    Args:
        batch_data: Header fields - batch_number (required), production_date,
                    notes, status ('draft' default, or 'active')
        inputs: List of {"lot_id", "quantity_used"} dicts or (lot_id, quantity) pairs
        actor: Acting user (defaults to the current actor)
        session: Optional database session (forces the atomic discipline)

    Returns:
        Dict: The created batch, including its inputs

    Raises:
        Unauthorized: If the actor may not create batches (no state change)
        ValidationError: Bad header/inputs, or duplicate batch_number
        LotNotFound / LotExpired / InsufficientQuantity: atomic mode, nothing applied
        PartialFailure: saga mode after earlier steps were compensated
        TransactionFailed: If the database write fails
    """
    actor = require_permission(resolve_actor(actor), "batch", "create")
    batch_uuid = str(uuid4())
    batch_number = (batch_data or {}).get("batch_number")
    reason = f"Production batch {batch_number}"

    try:
        header = _validate_header(batch_data or {})
        normalized = _normalize_inputs(inputs)

        if _use_saga(session):
            result = _create_saga(batch_uuid, header, normalized, reason, actor)
        else:
            with lot_locks.hold_many(lot_id for lot_id, _ in normalized):
                cm = nullcontext(session) if session is not None else session_scope()
                with cm as sess:
                    _ensure_unique_number(sess, header["batch_number"])
                    consumed: List[Dict[str, Any]] = []
                    _consume(
                        _decrement_steps(normalized),
                        batch_uuid,
                        REFERENCE_PRODUCTION_BATCH,
                        reason,
                        actor,
                        sess,
                        consumed,
                    )
                    result = _write_new_batch(sess, batch_uuid, header, consumed, actor)
    except Exception as e:
        _raise_failure("create_batch", e, batch_number=batch_number, batch_uuid=batch_uuid)

    log_operation(
        logger,
        operation="create_batch",
        outcome="success",
        batch_id=result["id"],
        batch_number=result["batch_number"],
        input_count=len(result["inputs"]),
        total_input_cost=result["total_input_cost"],
        actor_id=actor.id,
    )
    notify_success(
        f"Created batch {result['batch_number']} consuming {len(result['inputs'])} lot(s)"
    )
    return result


def _create_saga(
    batch_uuid: str,
    header: Dict[str, Any],
    inputs: List[Tuple[int, Decimal]],
    reason: str,
    actor: Actor,
) -> Dict[str, Any]:
    with session_scope() as sess:
        _ensure_unique_number(sess, header["batch_number"])

    applied: List[Dict[str, Any]] = []
    try:
        _consume(
            _decrement_steps(inputs),
            batch_uuid,
            REFERENCE_PRODUCTION_BATCH,
            reason,
            actor,
            None,
            applied,
        )
        with session_scope() as sess:
            return _write_new_batch(sess, batch_uuid, header, applied, actor)
    except Exception as e:
        _raise_saga_failure("create_batch", e, applied, batch_uuid, actor)


# =============================================================================
# Update
# =============================================================================


def update_batch(
    batch_id: int,
    changes: Dict[str, Any],
    *,
    actor: Optional[Actor] = None,
    session: Optional[Session] = None,
) -> Dict[str, Any]:
    """
    Update a draft or active batch.

    Header changes (batch_number, production_date, notes, status draft ->
    active) have no inventory effect. ``changes["inputs"]`` replaces the
    inputs: every current input is restored to its lot, then the new set is
    consumed exactly as in create_batch, all-or-nothing.

    Raises:
        Unauthorized: If the actor may not update batches
        BatchNotFound: If the batch does not exist
        InvalidTransition: If the batch is completed/cancelled, or the status
                           change is not allowed
        ValidationError: Unknown fields, bad inputs, duplicate batch_number
        PartialFailure: saga mode after the applied steps were compensated
    """
    actor = require_permission(resolve_actor(actor), "batch", "update")
    changes = dict(changes or {})

    try:
        unknown = set(changes) - set(HEADER_FIELDS) - {"inputs"}
        if unknown:
            raise ServiceValidationError(
                [f"Cannot update field(s): {', '.join(sorted(unknown))}"]
            )
        new_status = None
        if "status" in changes:
            new_status = _parse_status(changes["status"])
            if new_status not in (BatchStatus.DRAFT, BatchStatus.ACTIVE):
                raise ServiceValidationError(
                    ["Use complete_batch or rollback_batch to finish a batch"]
                )
        if "batch_number" in changes and not (changes["batch_number"] or "").strip():
            raise ServiceValidationError(["Batch number is required"])
        new_inputs = _normalize_inputs(changes["inputs"]) if "inputs" in changes else None

        with _batch_lock(batch_id):
            if new_inputs is not None and _use_saga(session):
                result = _update_saga(batch_id, changes, new_status, new_inputs, actor)
            else:
                result = _update_atomic(batch_id, changes, new_status, new_inputs, actor, session)
    except Exception as e:
        _raise_failure("update_batch", e, batch_id=batch_id)

    log_operation(
        logger,
        operation="update_batch",
        outcome="success",
        batch_id=result["id"],
        fields=sorted(changes),
        actor_id=actor.id,
    )
    notify_success(f"Updated batch {result['batch_number']}")
    return result


def _check_updatable(batch: ProductionBatch, new_status: Optional[BatchStatus]) -> None:
    if batch.status_enum.is_terminal:
        requested = new_status.value if new_status else batch.status
        raise InvalidTransition(batch.id, batch.status, requested)
    if new_status is not None and new_status != batch.status_enum:
        _check_transition(batch, new_status)


def _update_atomic(
    batch_id: int,
    changes: Dict[str, Any],
    new_status: Optional[BatchStatus],
    new_inputs: Optional[List[Tuple[int, Decimal]]],
    actor: Actor,
    session: Optional[Session],
) -> Dict[str, Any]:
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as sess:
        batch = _load_batch(sess, batch_id)
        _check_updatable(batch, new_status)
        _claim_status(sess, batch, new_status or batch.status_enum)
        current = [(i.lot_id, Decimal(str(i.quantity_used))) for i in batch.inputs]
        lot_ids = [lot_id for lot_id, _ in current]
        if new_inputs is not None:
            lot_ids += [lot_id for lot_id, _ in new_inputs]
        with lot_locks.hold_many(lot_ids):
            if new_inputs is not None:
                applied: List[Dict[str, Any]] = []
                steps = [(INCREMENT, lot_id, qty) for lot_id, qty in current]
                steps += _decrement_steps(new_inputs)
                _consume(
                    steps,
                    batch.uuid,
                    REFERENCE_PRODUCTION_BATCH_UPDATE,
                    f"Production batch {batch.batch_number} inputs replaced",
                    actor,
                    sess,
                    applied,
                )
                _replace_inputs(batch, applied)
            _apply_header(sess, batch, changes, new_status, actor)
            sess.flush()
            return batch.to_dict()


def _apply_header(
    sess: Session,
    batch: ProductionBatch,
    changes: Dict[str, Any],
    new_status: Optional[BatchStatus],
    actor: Actor,
) -> None:
    if "batch_number" in changes:
        number = changes["batch_number"].strip()
        _ensure_unique_number(sess, number, exclude_id=batch.id)
        batch.batch_number = number
    if changes.get("production_date") is not None:
        batch.production_date = changes["production_date"]
    if "notes" in changes:
        batch.notes = changes["notes"]
    if new_status is not None:
        batch.status = new_status.value
    batch.edited_by = actor.id
    batch.edited_at = utc_now()


def _replace_inputs(batch: ProductionBatch, applied: List[Dict[str, Any]]) -> None:
    batch.inputs.clear()
    consumed = [step for step in applied if step["direction"] == DECREMENT]
    batch.total_input_cost = _build_inputs(batch, consumed)


def _update_saga(
    batch_id: int,
    changes: Dict[str, Any],
    new_status: Optional[BatchStatus],
    new_inputs: List[Tuple[int, Decimal]],
    actor: Actor,
) -> Dict[str, Any]:
    with session_scope() as sess:
        batch = _load_batch(sess, batch_id)
        _check_updatable(batch, new_status)
        if "batch_number" in changes:
            _ensure_unique_number(sess, changes["batch_number"].strip(), exclude_id=batch.id)
        batch_uuid = batch.uuid
        reason = f"Production batch {batch.batch_number} inputs replaced"
        steps = [(INCREMENT, i.lot_id, Decimal(str(i.quantity_used))) for i in batch.inputs]
    steps += _decrement_steps(new_inputs)

    applied: List[Dict[str, Any]] = []
    try:
        _consume(steps, batch_uuid, REFERENCE_PRODUCTION_BATCH_UPDATE, reason, actor, None, applied)
        with session_scope() as sess:
            batch = _load_batch(sess, batch_id)
            _check_updatable(batch, new_status)
            _claim_status(sess, batch, new_status or batch.status_enum)
            _replace_inputs(batch, applied)
            _apply_header(sess, batch, changes, new_status, actor)
            sess.flush()
            return batch.to_dict()
    except Exception as e:
        _raise_saga_failure("update_batch", e, applied, batch_uuid, actor)


# =============================================================================
# State transitions
# =============================================================================


def activate_batch(
    batch_id: int,
    *,
    actor: Optional[Actor] = None,
    session: Optional[Session] = None,
) -> Dict[str, Any]:
    """Move a draft batch to active.

    Raises:
        BatchNotFound: If the batch does not exist
        InvalidTransition: If the batch is not a draft
    """
    actor = require_permission(resolve_actor(actor), "batch", "update")

    try:
        cm = nullcontext(session) if session is not None else session_scope()
        with _batch_lock(batch_id), cm as sess:
            batch = _load_batch(sess, batch_id)
            _check_transition(batch, BatchStatus.ACTIVE)
            _claim_status(sess, batch, BatchStatus.ACTIVE)
            batch.edited_by = actor.id
            batch.edited_at = utc_now()
            sess.flush()
            result = batch.to_dict()
    except Exception as e:
        _raise_failure("activate_batch", e, batch_id=batch_id)

    log_operation(logger, operation="activate_batch", outcome="success", batch_id=batch_id)
    notify_success(f"Batch {result['batch_number']} is now active")
    return result


def complete_batch(
    batch_id: int,
    output_quantity: Any,
    notes: Optional[str] = None,
    *,
    actor: Optional[Actor] = None,
    session: Optional[Session] = None,
) -> Dict[str, Any]:
    """
    Complete a draft or active batch.

    Sets status to completed and stores the output. cost_per_unit is
    total_input_cost / output_quantity (0 when output is 0) and
    yield_percentage is output / total quantity used x 100 (0 with no
    inputs). Notes are appended to any existing notes.

    Raises:
        BatchNotFound: If the batch does not exist
        InvalidTransition: If the batch is completed or cancelled
        ValidationError: If output_quantity is missing or negative
    """
    actor = require_permission(resolve_actor(actor), "batch", "update")

    try:
        output = inventory_service.to_quantity(output_quantity)
        if output is None or output < 0:
            raise ServiceValidationError(["Output quantity cannot be negative"])

        cm = nullcontext(session) if session is not None else session_scope()
        with _batch_lock(batch_id), cm as sess:
            batch = _load_batch(sess, batch_id)
            _check_transition(batch, BatchStatus.COMPLETED)
            _claim_status(sess, batch, BatchStatus.COMPLETED)

            total_cost = Decimal(str(batch.total_input_cost or 0))
            total_used = batch.total_quantity_used

            if output > 0:
                cost_per_unit = (total_cost / output).quantize(COST_PRECISION, rounding=ROUND_HALF_UP)
            else:
                cost_per_unit = ZERO
            if total_used > 0:
                yield_percentage = (output / total_used * 100).quantize(
                    PERCENT_PRECISION, rounding=ROUND_HALF_UP
                )
            else:
                yield_percentage = ZERO

            batch.output_quantity = output
            batch.cost_per_unit = cost_per_unit
            batch.yield_percentage = yield_percentage
            batch.completed_by = actor.id
            batch.completed_at = utc_now()
            if notes:
                batch.notes = f"{batch.notes}\n{notes}" if batch.notes else notes
            sess.flush()
            result = batch.to_dict()
    except Exception as e:
        _raise_failure("complete_batch", e, batch_id=batch_id)

    log_operation(
        logger,
        operation="complete_batch",
        outcome="success",
        batch_id=batch_id,
        output_quantity=str(output),
        cost_per_unit=result["cost_per_unit"],
        actor_id=actor.id,
    )
    notify_success(f"Completed batch {result['batch_number']} with output {output}")
    return result


# =============================================================================
# Rollback
# =============================================================================


def rollback_batch(
    batch_id: int,
    reason: str,
    *,
    actor: Optional[Actor] = None,
) -> Dict[str, Any]:
    """
    Cancel a draft or active batch and restore its inputs to their lots.

    The batch is claimed first: its status moves to cancelled with a
    compare-and-set write, so a concurrent rollback, update or completion of
    the same batch fails with InvalidTransition instead of racing it. Every
    unrestored input is then restored in its own transaction (increment,
    reference = batch uuid, type production_batch_rollback). An input already
    marked restored is skipped. A failing restoration is recorded and reported
    as a warning; the remaining inputs are still attempted. Finally
    cancelled_at is set and a BatchRollback record is written. A warning
    notification is always emitted so an operator reviews the outcome.

    Args:
        batch_id: Batch to roll back
        reason: Why the batch is rolled back (required)
        actor: Acting user (defaults to the current actor)

    Returns:
        Dict with keys: batch_id, batch_number, status, rollback_id,
        restored (list of {lot_id, quantity}), failures (list of
        {lot_id, quantity, error})

    Raises:
        Unauthorized: If the actor may not update batches
        BatchNotFound: If the batch does not exist
        InvalidTransition: If the batch is completed or cancelled
        ValidationError: If no reason is given
    """
    actor = require_permission(resolve_actor(actor), "batch", "update")

    try:
        if not reason or not reason.strip():
            raise ServiceValidationError(["A reason is required to roll back a batch"])

        with _batch_lock(batch_id):
            with session_scope() as sess:
                batch = _load_batch(sess, batch_id)
                _check_transition(batch, BatchStatus.CANCELLED)
                _claim_status(sess, batch, BatchStatus.CANCELLED)
                batch_uuid = batch.uuid
                batch_number = batch.batch_number
                pending = [
                    {
                        "input_id": i.id,
                        "lot_id": i.lot_id,
                        "material_id": i.material_id,
                        "quantity": Decimal(str(i.quantity_used)),
                    }
                    for i in batch.inputs
                    if i.restored_at is None
                ]

            restored, failures = _restore_inputs(
                pending,
                batch_uuid,
                f"Rollback of batch {batch_number}: {reason}",
                actor,
                batch_id,
            )

            with session_scope() as sess:
                batch = _load_batch(sess, batch_id)
                batch.cancelled_at = utc_now()
                record = BatchRollback(
                    batch_id=batch.id,
                    reason=reason,
                    created_by=actor.id,
                    original_inputs=[
                        {
                            "lot_id": entry["lot_id"],
                            "material_id": entry["material_id"],
                            "quantity": str(entry["quantity"]),
                        }
                        for entry in pending
                    ],
                    restored_count=len(restored),
                    failures=[{**f, "quantity": str(f["quantity"])} for f in failures],
                )
                sess.add(record)
                sess.flush()
                rollback_id = record.id
    except Exception as e:
        _raise_failure("rollback_batch", e, batch_id=batch_id)

    log_operation(
        logger,
        operation="rollback_batch",
        outcome="completed" if not failures else "completed_with_failures",
        level=logging.WARNING,
        batch_id=batch_id,
        restored_count=len(restored),
        failure_count=len(failures),
        actor_id=actor.id,
    )
    message = f"Batch {batch_number} rolled back: restored {len(restored)} of {len(pending)} input(s)"
    if failures:
        failed_lots = ", ".join(str(f["lot_id"]) for f in failures)
        message += f"; could not restore lot(s) {failed_lots}"
    notify_warning(message)

    return {
        "batch_id": batch_id,
        "batch_number": batch_number,
        "status": BatchStatus.CANCELLED.value,
        "rollback_id": rollback_id,
        "restored": restored,
        "failures": failures,
    }


def _restore_inputs(
    pending: List[Dict[str, Any]],
    batch_uuid: str,
    reason: str,
    actor: Actor,
    batch_id: Any,
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Return each pending input to its lot, one lot lock and transaction each.

    restored_at is re-read under the lot lock, so an input restored by
    anyone else in the meantime is not restored twice.

    Returns:
        (restored, failures)
    """
    restored = []
    failures = []
    for entry in pending:
        try:
            with lot_locks.hold(entry["lot_id"]):
                with session_scope() as sess:
                    if sess.get(BatchInput, entry["input_id"]).restored_at is not None:
                        continue
                    inventory_service.increment(
                        entry["lot_id"],
                        entry["quantity"],
                        reference_id=batch_uuid,
                        reference_type=REFERENCE_PRODUCTION_BATCH_ROLLBACK,
                        reason=reason,
                        actor=actor,
                        session=sess,
                        notify=False,
                    )
                    sess.get(BatchInput, entry["input_id"]).restored_at = utc_now()
            restored.append({"lot_id": entry["lot_id"], "quantity": entry["quantity"]})
        except Exception as e:
            log_operation(
                logger,
                operation="rollback_batch",
                outcome="restoration_failed",
                level=logging.WARNING,
                batch_id=batch_id,
                lot_id=entry["lot_id"],
                quantity=str(entry["quantity"]),
                error=str(e),
            )
            failures.append(
                {"lot_id": entry["lot_id"], "quantity": entry["quantity"], "error": str(e)}
            )
    return restored, failures


# =============================================================================
# Queries
# =============================================================================


def get_batch(batch_id: int, session: Optional[Session] = None) -> Dict[str, Any]:
    """Get a batch with its inputs.

    Raises:
        BatchNotFound: If the batch does not exist
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as sess:
        return _load_batch(sess, batch_id).to_dict()


def list_batches(
    status: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
    session: Optional[Session] = None,
) -> List[Dict[str, Any]]:
    """List batches, newest production date first.

    Args:
        status: Optional status filter
        limit: Maximum number of batches
        offset: Number of batches to skip
        session: Optional database session
    """
    if status is not None:
        status = _parse_status(status).value

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as sess:
        query = sess.query(ProductionBatch)
        if status is not None:
            query = query.filter(ProductionBatch.status == status)
        batches = (
            query.order_by(ProductionBatch.production_date.desc(), ProductionBatch.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return [batch.to_dict() for batch in batches]


def validate_batch_inputs(inputs: List[Any], session: Optional[Session] = None) -> Dict[str, Any]:
    """Check a proposed input list without touching inventory.

    Each entry is checked with validate_selection. Entries naming the same lot
    are also checked together, since their combined quantity must fit.

    Returns:
        Dict with "is_valid" (bool) and "errors" (list of {index, lot_id,
        message, error_kind})
    """
    errors = []
    requested: Dict[int, Decimal] = {}

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as sess:
        for index, entry in enumerate(inputs or []):
            try:
                [(lot_id, quantity)] = _normalize_inputs([entry])
            except ServiceValidationError as e:
                errors.append(
                    {
                        "index": index,
                        "lot_id": entry.get("lot_id") if isinstance(entry, dict) else None,
                        "message": "; ".join(e.errors),
                        "error_kind": e.kind.value,
                    }
                )
                continue

            result = inventory_service.validate_selection(lot_id, quantity, session=sess)
            if not result.is_valid:
                errors.append(
                    {
                        "index": index,
                        "lot_id": lot_id,
                        "message": result.message,
                        "error_kind": result.error_kind.value,
                    }
                )
                continue

            requested[lot_id] = requested.get(lot_id, ZERO) + quantity
            if requested[lot_id] > result.available_quantity:
                errors.append(
                    {
                        "index": index,
                        "lot_id": lot_id,
                        "message": (
                            f"Lot {lot_id} is requested {requested[lot_id]} in total "
                            f"but only {result.available_quantity} is available"
                        ),
                        "error_kind": ErrorKind.INSUFFICIENT_QUANTITY.value,
                    }
                )

    return {"is_valid": not errors, "errors": errors}
