"""
InventoryTransaction model - append-only audit log of lot quantity changes.

Every decrement, increment and adjustment of a MaterialLot writes exactly one
row here. Rows are never updated or deleted; the ORM listeners at the bottom
of this module refuse both.
"""

from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    ForeignKey,
    Index,
    Numeric,
    CheckConstraint,
    event,
)
from sqlalchemy.orm import relationship

from .base import BaseModel


class InventoryTransaction(BaseModel):
    """
    InventoryTransaction model for the immutable lot audit trail.

    Attributes:
        lot_id: FK to the MaterialLot that changed
        transaction_type: TransactionType value
        quantity_changed: Signed delta (negative for decrements)
        previous_quantity: quantity_remaining before the change
        new_quantity: quantity_remaining after the change
        reference_id: Optional id of the causing entity (e.g. batch uuid)
        reference_type: Optional type of the causing entity
        reason: Free-text reason
        user_id: Acting user identifier

    Invariant:
        new_quantity == previous_quantity + quantity_changed
    """

    __tablename__ = "inventory_transactions"

    lot_id = Column(
        Integer,
        ForeignKey("material_lots.id", ondelete="RESTRICT"),
        nullable=False,
    )

    transaction_type = Column(String(20), nullable=False)
    quantity_changed = Column(Numeric(12, 3), nullable=False)
    previous_quantity = Column(Numeric(12, 3), nullable=False)
    new_quantity = Column(Numeric(12, 3), nullable=False)

    reference_id = Column(String(64), nullable=True)
    reference_type = Column(String(50), nullable=True)
    reason = Column(Text, nullable=False, default="")
    user_id = Column(String(100), nullable=False)

    lot = relationship("MaterialLot", back_populates="transactions")

    __table_args__ = (
        Index("idx_inv_txn_lot", "lot_id"),
        Index("idx_inv_txn_reference", "reference_id", "reference_type"),
        Index("idx_inv_txn_created", "created_at"),
        CheckConstraint("quantity_changed <> 0", name="ck_inv_txn_delta_non_zero"),
        CheckConstraint("new_quantity >= 0", name="ck_inv_txn_new_qty_non_negative"),
    )

    def __repr__(self) -> str:
        """String representation of inventory transaction."""
        return (
            f"InventoryTransaction(id={self.id}, lot_id={self.lot_id}, "
            f"type='{self.transaction_type}', delta={self.quantity_changed})"
        )


@event.listens_for(InventoryTransaction, "before_update")
def _refuse_transaction_update(mapper, connection, target):
    raise ValueError(f"Inventory transaction {target.id} is append-only and cannot be modified")


@event.listens_for(InventoryTransaction, "before_delete")
def _refuse_transaction_delete(mapper, connection, target):
    raise ValueError(f"Inventory transaction {target.id} is append-only and cannot be deleted")
