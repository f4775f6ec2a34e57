"""
models/driver_cod_summary.py  –  Daily driver COD reconciliation

Each record = one driver × one date. Totals are a snapshot of the driver's
transactions collected that day, written by the reconciliation engine only.
"""

from sqlalchemy import (
    Column, Integer, ForeignKey, DateTime, Date,
    DECIMAL, Text, Enum as SAEnum, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from database import Base
from decimal import Decimal
import enum


class ReconciliationStatus(str, enum.Enum):
    pending    = "pending"      # activity recorded, books not closed yet
    reconciled = "reconciled"   # closed for that date (terminal)


class DriverCodSummary(Base):
    __tablename__ = "driver_cod_summaries"
    __table_args__ = (
        UniqueConstraint("driver_id", "summary_date", name="uq_driver_cod_summary_driver_date"),
    )

    summary_id   = Column(Integer, primary_key=True, index=True, autoincrement=True)
    driver_id    = Column(Integer, ForeignKey("drivers.driver_id", ondelete="CASCADE"), nullable=False, index=True)
    summary_date = Column(Date, nullable=False, index=True)

    # Snapshot of that day's numbers
    transaction_count = Column(Integer, nullable=False, default=0)
    total_collected   = Column(DECIMAL(15, 2), nullable=False, default=0)
    total_submitted   = Column(DECIMAL(15, 2), nullable=False, default=0)
    variance          = Column(DECIMAL(15, 2), nullable=False, default=0)   # collected − submitted

    # Reconciliation tracking
    reconciliation_status = Column(SAEnum(ReconciliationStatus), nullable=False, default=ReconciliationStatus.pending, index=True)
    reconciled_by = Column(Integer, ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True)
    reconciled_at = Column(DateTime, nullable=True)
    notes         = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    driver     = relationship("Driver")
    reconciler = relationship("User", foreign_keys=[reconciled_by])

    @property
    def pending_amount(self) -> Decimal:
        """Cash collected that day and not handed in; derived from the snapshot, never stored."""
        return Decimal(str(self.total_collected or 0)) - Decimal(str(self.total_submitted or 0))
