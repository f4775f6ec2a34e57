"""
models/cod_transaction.py  –  Cash-on-delivery custody record

One row per COD order. The money moves driver → company → sender and each
hop only flips flags / timestamps on this row; the amount itself is frozen
when the row is created.

overall_status is never stored: it is derived from the custody fields both
in Python and in SQL (hybrid property), so it can't drift from them.
"""

from decimal import Decimal
from sqlalchemy import (
    Column, Integer, ForeignKey, DateTime, DECIMAL,
    Boolean, String, Text, Enum as SAEnum, case,
)
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import relationship, backref, validates
from sqlalchemy.sql import func
from database import Base
from utils.exceptions import InvalidStateError, InvalidAmountError
import enum


class CollectionStatus(str, enum.Enum):
    pending   = "pending"      # driver hasn't collected yet
    collected = "collected"    # cash is with the driver (or further down the chain)
    failed    = "failed"       # delivery / collection failed


class OverallStatus(str, enum.Enum):
    pending_collection   = "pending_collection"
    collected            = "collected"
    submitted_to_company = "submitted_to_company"
    completed            = "completed"
    failed               = "failed"


class TransferMethod(str, enum.Enum):
    cash          = "cash"
    bank_transfer = "bank_transfer"
    e_wallet      = "e_wallet"


TERMINAL_STATUSES = (OverallStatus.completed, OverallStatus.failed)


def derive_overall_status(collection_status, submitted_to_company, transferred_to_sender) -> OverallStatus:
    if collection_status == CollectionStatus.failed:
        return OverallStatus.failed
    if transferred_to_sender:
        return OverallStatus.completed
    if submitted_to_company:
        return OverallStatus.submitted_to_company
    if collection_status == CollectionStatus.collected:
        return OverallStatus.collected
    return OverallStatus.pending_collection


class CodTransaction(Base):
    __tablename__ = "cod_transactions"

    cod_transaction_id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.order_id", ondelete="RESTRICT"), nullable=False, unique=True, index=True)
    cod_amount = Column(DECIMAL(15, 2), nullable=False)

    # Collection (driver custody)
    collected_by_driver_id = Column(Integer, ForeignKey("drivers.driver_id", ondelete="SET NULL"), nullable=True, index=True)
    collected_at = Column(DateTime, nullable=True, index=True)
    collection_status = Column(SAEnum(CollectionStatus), nullable=False, default=CollectionStatus.pending, index=True)
    collection_proof_photo_url = Column(String(500), nullable=True)

    # Submission (driver → company)
    submitted_to_company = Column(Boolean, nullable=False, default=False, index=True)
    submitted_at = Column(DateTime, nullable=True)
    submitted_amount = Column(DECIMAL(15, 2), nullable=True)

    # Receipt (company acknowledges the cash)
    company_received_by = Column(Integer, ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True, index=True)
    company_received_at = Column(DateTime, nullable=True)

    # Transfer out (company → sender)
    transferred_to_sender = Column(Boolean, nullable=False, default=False, index=True)
    transferred_at = Column(DateTime, nullable=True)
    transfer_method = Column(SAEnum(TransferMethod), nullable=True)
    transfer_reference = Column(String(100), nullable=True)
    transfer_proof_url = Column(String(500), nullable=True)
    company_fee = Column(DECIMAL(15, 2), nullable=False, default=Decimal("0.00"))

    # Written by reconciliation only
    adjustment_amount = Column(DECIMAL(15, 2), nullable=True)
    adjustment_reason = Column(Text, nullable=True)

    failed_at = Column(DateTime, nullable=True)
    failure_reason = Column(Text, nullable=True)

    notes = Column(Text, nullable=True)
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, server_default=func.now(), index=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    order     = relationship("Order", backref=backref("cod_transaction", uselist=False))
    collector = relationship("Driver", foreign_keys=[collected_by_driver_id])
    receiver  = relationship("User", foreign_keys=[company_received_by])

    @validates("cod_amount")
    def _freeze_cod_amount(self, key, value):
        value = Decimal(str(value))
        if self.cod_amount is not None and Decimal(str(self.cod_amount)) != value:
            raise InvalidStateError(
                f"cod_amount of transaction {self.cod_transaction_id} is immutable",
                transaction_ids=[self.cod_transaction_id],
            )
        if value <= 0:
            raise InvalidAmountError(f"COD amount must be positive, got {value}")
        return value

    @hybrid_property
    def overall_status(self) -> OverallStatus:
        return derive_overall_status(
            self.collection_status, self.submitted_to_company, self.transferred_to_sender
        )

    @overall_status.expression
    def overall_status(cls):
        return case(
            (cls.collection_status == CollectionStatus.failed, OverallStatus.failed.value),
            (cls.transferred_to_sender.is_(True), OverallStatus.completed.value),
            (cls.submitted_to_company.is_(True), OverallStatus.submitted_to_company.value),
            (cls.collection_status == CollectionStatus.collected, OverallStatus.collected.value),
            else_=OverallStatus.pending_collection.value,
        )

    @property
    def is_terminal(self) -> bool:
        return self.overall_status in TERMINAL_STATUSES

    @property
    def receipt_confirmed(self) -> bool:
        return self.company_received_by is not None

    @property
    def net_amount(self) -> Decimal:
        """What the sender gets: COD amount minus the company fee."""
        return Decimal(str(self.cod_amount)) - Decimal(str(self.company_fee or 0))
