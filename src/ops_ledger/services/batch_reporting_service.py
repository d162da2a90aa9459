"""Batch Reporting Service - read-only views over a batch's ledger movements.

Both reports are derived data: the transaction log and the BatchInput rows
stay authoritative. Nothing here mutates state or requires authorization.
"""

from contextlib import nullcontext
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ops_ledger.models import InventoryTransaction, ProductionBatch
from ops_ledger.utils.constants import BATCH_REFERENCE_TYPES, ZERO
from ops_ledger.utils.datetime_utils import to_naive_utc

from .database import session_scope

# Tie-break order for events sharing a timestamp
_EVENT_RANK = {
    "batch_created": 0,
    "inventory_decremented": 1,
    "inventory_restored": 1,
    "batch_updated": 2,
    "batch_completed": 3,
    "batch_cancelled": 4,
}


def _find_batch(sess: Session, batch_id: Any) -> Optional[ProductionBatch]:
    try:
        return sess.get(ProductionBatch, int(batch_id))
    except (TypeError, ValueError):
        return None


def _batch_transactions(sess: Session, batch: ProductionBatch) -> List[InventoryTransaction]:
    return (
        sess.query(InventoryTransaction)
        .filter(
            InventoryTransaction.reference_id == batch.uuid,
            InventoryTransaction.reference_type.in_(BATCH_REFERENCE_TYPES),
        )
        .order_by(InventoryTransaction.created_at.asc(), InventoryTransaction.id.asc())
        .all()
    )


def audit_trail(batch_id: Any, session: Optional[Session] = None) -> List[Dict[str, Any]]:
    """
    Reconstruct the timeline of a batch.

    Events: batch_created, one inventory_decremented / inventory_restored
    event per ledger row tagged with the batch, batch_updated (the latest
    header or input change, if any), batch_completed and batch_cancelled.
    Each event carries the actor, timestamp and (for inventory events) lot
    and quantity.

    Args:
        batch_id: Batch to report on
        session: Optional database session

    Returns:
        List of event dicts ordered by timestamp. Empty for an unknown batch.
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as sess:
        batch = _find_batch(sess, batch_id)
        if batch is None:
            return []

        events = [
            {
                "event": "batch_created",
                "timestamp": batch.created_at,
                "actor": batch.created_by,
                "batch_number": batch.batch_number,
                "status": batch.status,
                "_order": 0,
            }
        ]

        for txn in _batch_transactions(sess, batch):
            delta = Decimal(str(txn.quantity_changed))
            events.append(
                {
                    "event": "inventory_decremented" if delta < 0 else "inventory_restored",
                    "timestamp": txn.created_at,
                    "actor": txn.user_id,
                    "lot_id": txn.lot_id,
                    "quantity": abs(delta),
                    "reference_type": txn.reference_type,
                    "reason": txn.reason,
                    "_order": txn.id,
                }
            )

        if batch.edited_at is not None:
            events.append(
                {
                    "event": "batch_updated",
                    "timestamp": batch.edited_at,
                    "actor": batch.edited_by,
                    "batch_number": batch.batch_number,
                    "_order": 0,
                }
            )

        if batch.completed_at is not None:
            events.append(
                {
                    "event": "batch_completed",
                    "timestamp": batch.completed_at,
                    "actor": batch.completed_by or batch.created_by,
                    "output_quantity": batch.output_quantity,
                    "_order": 0,
                }
            )

        if batch.cancelled_at is not None:
            rollback = batch.rollbacks[-1] if batch.rollbacks else None
            events.append(
                {
                    "event": "batch_cancelled",
                    "timestamp": batch.cancelled_at,
                    "actor": rollback.created_by if rollback else batch.created_by,
                    "reason": rollback.reason if rollback else None,
                    "_order": 0,
                }
            )

    for event in events:
        event["timestamp"] = to_naive_utc(event["timestamp"])
    events.sort(key=lambda e: (e["timestamp"], _EVENT_RANK[e["event"]], e["_order"]))
    for event in events:
        del event["_order"]
        event["timestamp"] = event["timestamp"].isoformat()
    return events


def movement_summary(batch_id: Any, session: Optional[Session] = None) -> Dict[str, Any]:
    """
    Aggregate a batch's material usage.

    Totals come from the batch's current inputs; ``raw_transactions`` lists
    every ledger row tagged with the batch, oldest first.

    Returns:
        Dict with keys:
            - "batch_id"
            - "total_materials_used" (Decimal)
            - "total_cost" (Decimal)
            - "per_material_breakdown" (Dict[str, Dict]): quantity, cost, lot_ids
            - "raw_transactions" (List[Dict])

        All totals are zero for a batch without inputs or an unknown batch.
    """
    summary = {
        "batch_id": batch_id,
        "total_materials_used": ZERO,
        "total_cost": ZERO,
        "per_material_breakdown": {},
        "raw_transactions": [],
    }

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as sess:
        batch = _find_batch(sess, batch_id)
        if batch is None:
            return summary

        breakdown: Dict[str, Dict[str, Any]] = {}
        for batch_input in batch.inputs:
            quantity = Decimal(str(batch_input.quantity_used))
            cost = Decimal(str(batch_input.total_cost))
            entry = breakdown.setdefault(
                batch_input.material_id,
                {"quantity": ZERO, "cost": ZERO, "lot_ids": []},
            )
            entry["quantity"] += quantity
            entry["cost"] += cost
            if batch_input.lot_id not in entry["lot_ids"]:
                entry["lot_ids"].append(batch_input.lot_id)
            summary["total_materials_used"] += quantity
            summary["total_cost"] += cost

        summary["per_material_breakdown"] = breakdown
        summary["raw_transactions"] = [txn.to_dict() for txn in _batch_transactions(sess, batch)]

    return summary
