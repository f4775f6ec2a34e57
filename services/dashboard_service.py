"""
services/dashboard_service.py  –  Read-only COD rollups

Aggregates straight from cod_transactions on every call (no cache), so the
numbers always match what the last committed mutation left behind.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from sqlalchemy import case, func
from sqlalchemy.orm import Session

from models.cod_transaction import CodTransaction, CollectionStatus, OverallStatus
from services.cod_store import CodTransactionStore
from services.directories import DriverDirectory

CENT = Decimal("0.01")


def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT)


def _sum_when(condition, column=CodTransaction.cod_amount):
    return func.coalesce(func.sum(case((condition, column), else_=0)), 0)


def _count_when(condition):
    return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)


@dataclass
class DriverCodRollup:
    driver_id: int
    driver_name: Optional[str]
    total_collected: Decimal
    total_submitted: Decimal
    pending_amount: Decimal
    pending_collection_count: int
    unsubmitted_count: int
    last_submission_at: Optional[datetime]


@dataclass
class CodDashboard:
    company_id: Optional[int]
    total_pending_collection: Decimal
    total_collected: Decimal
    total_submitted: Decimal
    total_transferred: Decimal
    total_company_fees: Decimal
    transaction_count: int
    pending_transaction_count: int
    completed_transaction_count: int
    failed_transaction_count: int
    drivers: List[DriverCodRollup] = field(default_factory=list)

    @property
    def total_net_transferred(self) -> Decimal:
        return self.total_transferred - self.total_company_fees


class DashboardService:
    def __init__(self, db: Session, drivers: Optional[DriverDirectory] = None):
        self.db = db
        self.store = CodTransactionStore(db)
        self.drivers = drivers or DriverDirectory(db)

    def get_dashboard(self, company_id: Optional[int] = None) -> CodDashboard:
        status = CodTransaction.overall_status
        collected = CodTransaction.collection_status == CollectionStatus.collected
        submitted = (CodTransaction.submitted_to_company.is_(True)) & (
            CodTransaction.collection_status != CollectionStatus.failed
        )
        transferred = status == OverallStatus.completed.value

        query = self.store.base_query(
            func.count(CodTransaction.cod_transaction_id).label("transaction_count"),
            _sum_when(status == OverallStatus.pending_collection.value).label("pending_collection"),
            _sum_when(collected).label("collected"),
            _sum_when(submitted).label("submitted"),
            _sum_when(transferred).label("transferred"),
            _sum_when(transferred, CodTransaction.company_fee).label("fees"),
            _count_when(status == OverallStatus.pending_collection.value).label("pending_count"),
            _count_when(transferred).label("completed_count"),
            _count_when(status == OverallStatus.failed.value).label("failed_count"),
        )
        row = self.store.scope_to_company(query, company_id).one()

        return CodDashboard(
            company_id=company_id,
            total_pending_collection=_money(row.pending_collection),
            total_collected=_money(row.collected),
            total_submitted=_money(row.submitted),
            total_transferred=_money(row.transferred),
            total_company_fees=_money(row.fees),
            transaction_count=int(row.transaction_count or 0),
            pending_transaction_count=int(row.pending_count or 0),
            completed_transaction_count=int(row.completed_count or 0),
            failed_transaction_count=int(row.failed_count or 0),
            drivers=self.get_driver_rollups(company_id),
        )

    def get_driver_rollups(self, company_id: Optional[int] = None) -> List[DriverCodRollup]:
        responsible = self.store.responsible_driver()
        collected = CodTransaction.collection_status == CollectionStatus.collected
        unsubmitted = collected & CodTransaction.submitted_to_company.is_(False)

        query = self.store.base_query(
            responsible.label("driver_id"),
            _sum_when(collected).label("collected"),
            _sum_when(collected & CodTransaction.submitted_to_company.is_(True), CodTransaction.submitted_amount).label("submitted"),
            _sum_when(unsubmitted).label("pending"),
            _count_when(CodTransaction.overall_status == OverallStatus.pending_collection.value).label("pending_collection_count"),
            _count_when(unsubmitted).label("unsubmitted_count"),
            func.max(CodTransaction.submitted_at).label("last_submission_at"),
        ).filter(responsible.isnot(None))
        rows = (
            self.store.scope_to_company(query, company_id)
            .group_by(responsible)
            .order_by(responsible)
            .all()
        )

        names = self.drivers.get_driver_names(r.driver_id for r in rows)
        return [
            DriverCodRollup(
                driver_id=r.driver_id,
                driver_name=names.get(r.driver_id),
                total_collected=_money(r.collected),
                total_submitted=_money(r.submitted),
                pending_amount=_money(r.pending),
                pending_collection_count=int(r.pending_collection_count or 0),
                unsubmitted_count=int(r.unsubmitted_count or 0),
                last_submission_at=r.last_submission_at,
            )
            for r in rows
        ]
