"""
ProductionBatch and BatchInput models.

A ProductionBatch is one manufacturing run. It owns an ordered set of
BatchInput rows, each recording how much was consumed from one MaterialLot
and the lot's cost per unit at the moment of consumption. Capturing the cost
here keeps historical batches immune to later cost edits.
"""

from decimal import Decimal

from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    CheckConstraint,
)
from sqlalchemy.orm import relationship

from .base import BaseModel
from .enums import BatchStatus
from ops_ledger.utils.datetime_utils import utc_now


class ProductionBatch(BaseModel):
    """
    ProductionBatch model for tracking manufacturing runs.

    Attributes:
        batch_number: Unique human-assigned batch number
        production_date: When production took place
        status: BatchStatus value (draft, active, completed, cancelled)
        output_quantity: Output produced (set on completion)
        total_input_cost: Sum of input quantity x snapshotted unit cost
        cost_per_unit: total_input_cost / output_quantity (0 when no output)
        yield_percentage: output_quantity / total quantity consumed x 100
        notes: Free-text notes
        created_by: User who created the batch
        edited_by: User who last changed the header or inputs
        edited_at: When the header or inputs were last changed
        completed_by: User who completed the batch
        completed_at: When the batch was completed
        cancelled_at: When the batch was rolled back

    Relationships:
        inputs: One-to-Many with BatchInput (ordered by insertion)
        rollbacks: One-to-Many with BatchRollback
    """

    __tablename__ = "production_batches"

    batch_number = Column(String(50), unique=True, nullable=False)
    production_date = Column(DateTime, nullable=False, default=utc_now)
    status = Column(String(20), nullable=False, default=BatchStatus.DRAFT.value)

    output_quantity = Column(Numeric(12, 3), nullable=True)
    total_input_cost = Column(Numeric(14, 4), nullable=False, default=Decimal("0"))
    cost_per_unit = Column(Numeric(14, 4), nullable=False, default=Decimal("0"))
    yield_percentage = Column(Numeric(7, 2), nullable=False, default=Decimal("0"))

    notes = Column(Text, nullable=True)
    created_by = Column(String(100), nullable=False)
    edited_by = Column(String(100), nullable=True)
    edited_at = Column(DateTime, nullable=True)
    completed_by = Column(String(100), nullable=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    inputs = relationship(
        "BatchInput",
        back_populates="batch",
        order_by="BatchInput.id",
        cascade="all, delete-orphan",
    )
    rollbacks = relationship(
        "BatchRollback",
        back_populates="batch",
        order_by="BatchRollback.id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_batch_status", "status"),
        Index("idx_batch_production_date", "production_date"),
        CheckConstraint("total_input_cost >= 0", name="ck_batch_cost_non_negative"),
        CheckConstraint(
            "output_quantity IS NULL OR output_quantity >= 0",
            name="ck_batch_output_non_negative",
        ),
    )

    def __repr__(self) -> str:
        """String representation of production batch."""
        return (
            f"ProductionBatch(id={self.id}, batch_number='{self.batch_number}', "
            f"status='{self.status}')"
        )

    @property
    def status_enum(self) -> BatchStatus:
        return BatchStatus(self.status)

    @property
    def total_quantity_used(self) -> Decimal:
        return sum((Decimal(str(i.quantity_used)) for i in self.inputs), Decimal("0"))

    def to_dict(self, include_relationships: bool = False) -> dict:
        """
        Convert production batch to dictionary.

        Inputs are always included since the batch is meaningless without them.
        """
        result = super().to_dict(include_relationships=False)
        result["inputs"] = [i.to_dict() for i in self.inputs]
        return result


class BatchInput(BaseModel):
    """
    BatchInput model - one lot consumed by a production batch.

    Attributes:
        batch_id: FK to the owning ProductionBatch
        lot_id: FK to the consumed MaterialLot
        material_id: Material of the lot (snapshot, for reporting)
        quantity_used: Quantity consumed from the lot
        cost_per_unit: Lot cost per unit at consumption time
        total_cost: quantity_used x cost_per_unit
        restored_at: Set when a rollback restored this quantity to the lot
    """

    __tablename__ = "batch_inputs"

    batch_id = Column(
        Integer,
        ForeignKey("production_batches.id", ondelete="CASCADE"),
        nullable=False,
    )
    lot_id = Column(
        Integer,
        ForeignKey("material_lots.id", ondelete="RESTRICT"),
        nullable=False,
    )
    material_id = Column(String(100), nullable=False)

    quantity_used = Column(Numeric(12, 3), nullable=False)
    cost_per_unit = Column(Numeric(12, 4), nullable=False)
    total_cost = Column(Numeric(14, 4), nullable=False)
    restored_at = Column(DateTime, nullable=True)

    batch = relationship("ProductionBatch", back_populates="inputs")
    lot = relationship("MaterialLot", back_populates="batch_inputs")

    __table_args__ = (
        Index("idx_batch_input_batch", "batch_id"),
        Index("idx_batch_input_lot", "lot_id"),
        CheckConstraint("quantity_used > 0", name="ck_batch_input_quantity_positive"),
        CheckConstraint("total_cost >= 0", name="ck_batch_input_cost_non_negative"),
    )

    def __repr__(self) -> str:
        """String representation of batch input."""
        return (
            f"BatchInput(id={self.id}, batch_id={self.batch_id}, "
            f"lot_id={self.lot_id}, quantity={self.quantity_used})"
        )
