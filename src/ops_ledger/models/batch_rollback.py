"""
BatchRollback model - audit record of a production batch rollback.

Records why a batch was rolled back, by whom, which inputs were being
restored, and which restorations failed.
"""

from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    ForeignKey,
    Index,
    JSON,
)
from sqlalchemy.orm import relationship

from .base import BaseModel


class BatchRollback(BaseModel):
    """
    BatchRollback model.

    Attributes:
        batch_id: FK to the rolled back ProductionBatch
        reason: Why the batch was rolled back
        created_by: User who requested the rollback
        original_inputs: Snapshot of the inputs being restored
        restored_count: Number of inputs restored successfully
        failures: List of {"lot_id", "quantity", "error"} for failed restorations
    """

    __tablename__ = "batch_rollbacks"

    batch_id = Column(
        Integer,
        ForeignKey("production_batches.id", ondelete="CASCADE"),
        nullable=False,
    )
    reason = Column(Text, nullable=False)
    created_by = Column(String(100), nullable=False)
    original_inputs = Column(JSON, nullable=False, default=list)
    restored_count = Column(Integer, nullable=False, default=0)
    failures = Column(JSON, nullable=False, default=list)

    batch = relationship("ProductionBatch", back_populates="rollbacks")

    __table_args__ = (Index("idx_batch_rollback_batch", "batch_id"),)
