"""
MaterialLot model for FIFO raw-material inventory tracking.

Each record is a physically received quantity of one raw material from one
supplier on one date. Lots are consumed oldest-intake-first.
"""

from decimal import Decimal

from sqlalchemy import (
    Column,
    String,
    Text,
    DateTime,
    Index,
    CheckConstraint,
    Numeric,
)
from sqlalchemy.orm import relationship

from .base import BaseModel
from ops_ledger.utils.datetime_utils import is_expired, utc_now


class MaterialLot(BaseModel):
    """
    MaterialLot model for FIFO material inventory tracking.

    Tracks quantity_received (immutable snapshot), quantity_remaining
    (mutable, changed only by the inventory service) and cost_per_unit
    (immutable snapshot).

    Note: material_id and supplier_id are opaque identifiers owned by the
    catalog side of the application, so they are stored as strings rather
    than foreign keys.

    Attributes:
        material_id: Raw material this lot belongs to
        supplier_id: Supplier the lot was received from
        lot_number: Supplier/label lot number
        quantity_received: Quantity received at intake (IMMUTABLE)
        quantity_remaining: Quantity still available (MUTABLE)
        cost_per_unit: Cost per unit at intake (IMMUTABLE)
        intake_date: When the lot was received (FIFO ordering key)
        expiry_date: Optional expiry; expired lots are never consumed
        quality_grade: Optional quality grade
        storage_location: Optional storage location

    Relationships:
        transactions: One-to-Many with InventoryTransaction
        batch_inputs: One-to-Many with BatchInput
    """

    __tablename__ = "material_lots"

    material_id = Column(String(100), nullable=False)
    supplier_id = Column(String(100), nullable=False)
    lot_number = Column(String(100), nullable=False)

    quantity_received = Column(Numeric(12, 3), nullable=False)
    quantity_remaining = Column(Numeric(12, 3), nullable=False)
    cost_per_unit = Column(Numeric(12, 4), nullable=False)

    intake_date = Column(DateTime, nullable=False, default=utc_now)
    expiry_date = Column(DateTime, nullable=True)

    quality_grade = Column(String(20), nullable=True)
    storage_location = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)

    transactions = relationship(
        "InventoryTransaction",
        back_populates="lot",
        order_by="InventoryTransaction.id",
    )
    batch_inputs = relationship("BatchInput", back_populates="lot")

    __table_args__ = (
        CheckConstraint("quantity_received > 0", name="ck_lot_qty_received_positive"),
        CheckConstraint("quantity_remaining >= 0", name="ck_lot_qty_remaining_non_negative"),
        CheckConstraint(
            "quantity_remaining <= quantity_received",
            name="ck_lot_qty_remaining_within_received",
        ),
        CheckConstraint("cost_per_unit > 0", name="ck_lot_cost_positive"),
        Index("idx_lot_material_intake", "material_id", "intake_date"),
        Index("idx_lot_supplier", "supplier_id"),
    )

    def __repr__(self) -> str:
        """String representation of material lot."""
        return (
            f"MaterialLot(id={self.id}, material_id='{self.material_id}', "
            f"lot_number='{self.lot_number}', remaining={self.quantity_remaining})"
        )

    @property
    def remaining(self) -> Decimal:
        """quantity_remaining as a Decimal (never None)."""
        return Decimal(str(self.quantity_remaining or 0))

    @property
    def is_depleted(self) -> bool:
        return self.remaining <= 0

    def is_expired(self, now=None) -> bool:
        """Check whether the lot's expiry date has passed."""
        return is_expired(self.expiry_date, now)
