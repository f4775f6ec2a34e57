"""
services/cod_store.py  –  Persistence for COD transactions

Lookups and field-level writes only; every business rule lives in
CodService. Company scoping follows the driver responsible for the cash:
the collector once collected, the order's assigned driver before that.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional, Tuple
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import Session, Query

from models.cod_transaction import CodTransaction, CollectionStatus, OverallStatus
from models.driver import Driver
from models.order import Order
from utils.exceptions import NotFoundError
import logging

logger = logging.getLogger(__name__)


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


@dataclass
class CodTransactionFilter:
    company_id: Optional[int] = None
    driver_id: Optional[int] = None
    collection_status: Optional[CollectionStatus] = None
    overall_status: Optional[OverallStatus] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class CodTransactionStore:
    def __init__(self, db: Session):
        self.db = db

    # ── Single-row lookups ─────────────────────────────────────

    def get(self, transaction_id: int, for_update: bool = False) -> CodTransaction:
        query = self.db.query(CodTransaction).filter(
            CodTransaction.cod_transaction_id == transaction_id
        )
        if for_update:
            query = query.with_for_update()
        tx = query.first()
        if tx is None:
            raise NotFoundError(f"COD transaction {transaction_id} not found", transaction_id=transaction_id)
        return tx

    def get_by_order(self, order_id: int, for_update: bool = False) -> CodTransaction:
        query = self.db.query(CodTransaction).filter(CodTransaction.order_id == order_id)
        if for_update:
            query = query.with_for_update()
        tx = query.first()
        if tx is None:
            raise NotFoundError(f"Order {order_id} has no COD transaction", order_id=order_id)
        return tx

    def find_by_order(self, order_id: int) -> Optional[CodTransaction]:
        return self.db.query(CodTransaction).filter(CodTransaction.order_id == order_id).first()

    def get_many(self, transaction_ids: Iterable[int], for_update: bool = False) -> List[CodTransaction]:
        ids = set(transaction_ids)
        if not ids:
            return []
        query = (
            self.db.query(CodTransaction)
            .filter(CodTransaction.cod_transaction_id.in_(ids))
            .order_by(CodTransaction.cod_transaction_id)
        )
        if for_update:
            query = query.with_for_update()
        return query.all()

    def add(self, tx: CodTransaction) -> CodTransaction:
        self.db.add(tx)
        return tx

    # ── Annotations ────────────────────────────────────────────
    # Plain table UPDATEs: they leave the custody version alone so a
    # concurrent collect / submit on the same rows is not aborted.

    def record_shortfall(self, transaction_id: int, amount, reason: str, now: datetime) -> bool:
        """Annotate a still-unsubmitted transaction; False if it was submitted meanwhile."""
        table = CodTransaction.__table__
        result = self.db.execute(
            update(table)
            .where(
                table.c.cod_transaction_id == transaction_id,
                table.c.submitted_to_company.is_(False),
            )
            .values(adjustment_amount=amount, adjustment_reason=reason, updated_at=now)
        )
        return result.rowcount > 0

    def clear_shortfalls(self, transaction_ids: Iterable[int]) -> int:
        """Drop shortfall annotations once the cash has been handed in."""
        ids = set(transaction_ids)
        if not ids:
            return 0
        table = CodTransaction.__table__
        result = self.db.execute(
            update(table)
            .where(
                table.c.cod_transaction_id.in_(ids),
                table.c.adjustment_amount.isnot(None),
            )
            .values(adjustment_amount=None, adjustment_reason=None)
        )
        return result.rowcount

    # ── Scoping helpers ────────────────────────────────────────

    @staticmethod
    def responsible_driver():
        return func.coalesce(CodTransaction.collected_by_driver_id, Order.driver_id)

    def base_query(self, *entities) -> Query:
        """Query over transactions joined to their order."""
        return (
            self.db.query(*(entities or (CodTransaction,)))
            .select_from(CodTransaction)
            .join(Order, Order.order_id == CodTransaction.order_id)
        )

    def scope_to_company(self, query: Query, company_id: Optional[int]) -> Query:
        if company_id is None:
            return query
        company_drivers = select(Driver.driver_id).where(Driver.company_id == company_id)
        return query.filter(self.responsible_driver().in_(company_drivers))

    # ── Driver views ───────────────────────────────────────────

    def list_pending_collections(self, driver_id: int) -> List[CodTransaction]:
        """Assigned to the driver and not collected yet, oldest first."""
        return (
            self.base_query()
            .filter(
                Order.driver_id == driver_id,
                CodTransaction.collection_status == CollectionStatus.pending,
            )
            .order_by(CodTransaction.created_at.asc(), CodTransaction.cod_transaction_id.asc())
            .all()
        )

    def list_by_driver(self, driver_id: int, status: Optional[OverallStatus] = None) -> List[CodTransaction]:
        query = self.base_query().filter(
            or_(
                CodTransaction.collected_by_driver_id == driver_id,
                and_(
                    CodTransaction.collected_by_driver_id.is_(None),
                    Order.driver_id == driver_id,
                ),
            )
        )
        if status is not None:
            query = query.filter(CodTransaction.overall_status == OverallStatus(status).value)
        return query.order_by(
            CodTransaction.created_at.desc(), CodTransaction.cod_transaction_id.desc()
        ).all()

    def list_collected_unsubmitted(self, driver_id: int) -> List[CodTransaction]:
        return (
            self.db.query(CodTransaction)
            .filter(
                CodTransaction.collected_by_driver_id == driver_id,
                CodTransaction.collection_status == CollectionStatus.collected,
                CodTransaction.submitted_to_company.is_(False),
            )
            .order_by(CodTransaction.collected_at.asc(), CodTransaction.cod_transaction_id.asc())
            .all()
        )

    def list_for_driver_date(self, driver_id: int, day: date) -> List[CodTransaction]:
        """Everything the driver collected on ``day`` (UTC): the reconciliation snapshot."""
        start, end = day_bounds(day)
        return (
            self.db.query(CodTransaction)
            .filter(
                CodTransaction.collected_by_driver_id == driver_id,
                CodTransaction.collection_status == CollectionStatus.collected,
                CodTransaction.collected_at >= start,
                CodTransaction.collected_at < end,
            )
            .order_by(CodTransaction.cod_transaction_id)
            .all()
        )

    def list_active_driver_ids(self, day: date, company_id: Optional[int] = None) -> List[int]:
        """Drivers that collected anything on ``day``."""
        start, end = day_bounds(day)
        query = (
            self.db.query(CodTransaction.collected_by_driver_id)
            .join(Driver, Driver.driver_id == CodTransaction.collected_by_driver_id)
            .filter(
                CodTransaction.collection_status == CollectionStatus.collected,
                CodTransaction.collected_at >= start,
                CodTransaction.collected_at < end,
            )
        )
        if company_id is not None:
            query = query.filter(Driver.company_id == company_id)
        rows = query.distinct().all()
        return sorted(r.collected_by_driver_id for r in rows)

    def list_collection_activity(self, company_id: Optional[int] = None) -> List[Tuple[int, datetime]]:
        """(driver_id, collected_at) for every collected transaction."""
        query = (
            self.db.query(CodTransaction.collected_by_driver_id, CodTransaction.collected_at)
            .join(Driver, Driver.driver_id == CodTransaction.collected_by_driver_id)
            .filter(
                CodTransaction.collection_status == CollectionStatus.collected,
                CodTransaction.collected_at.isnot(None),
            )
        )
        if company_id is not None:
            query = query.filter(Driver.company_id == company_id)
        return [(r.collected_by_driver_id, r.collected_at) for r in query.all()]

    # ── Company views ──────────────────────────────────────────

    def list_awaiting_transfer(self, company_id: int) -> List[CodTransaction]:
        """Submitted to the company but not yet forwarded to the sender."""
        query = self.base_query().filter(
            CodTransaction.submitted_to_company.is_(True),
            CodTransaction.transferred_to_sender.is_(False),
            CodTransaction.collection_status != CollectionStatus.failed,
        )
        query = self.scope_to_company(query, company_id)
        return query.order_by(CodTransaction.submitted_at.asc(), CodTransaction.cod_transaction_id.asc()).all()

    def search(self, filters: CodTransactionFilter, page: int = 1, page_size: int = 20) -> Tuple[List[CodTransaction], int]:
        query = self.scope_to_company(self.base_query(), filters.company_id)

        if filters.driver_id is not None:
            query = query.filter(self.responsible_driver() == filters.driver_id)
        if filters.collection_status is not None:
            query = query.filter(CodTransaction.collection_status == filters.collection_status)
        if filters.overall_status is not None:
            query = query.filter(CodTransaction.overall_status == OverallStatus(filters.overall_status).value)
        if filters.start_date is not None:
            query = query.filter(CodTransaction.created_at >= filters.start_date)
        if filters.end_date is not None:
            query = query.filter(CodTransaction.created_at <= filters.end_date)

        total = query.count()
        rows = (
            query.order_by(CodTransaction.created_at.desc(), CodTransaction.cod_transaction_id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return rows, total
