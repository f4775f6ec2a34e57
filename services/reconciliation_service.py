"""
services/reconciliation_service.py  –  Daily COD books closing

Per (driver, date) the books go no_activity → pending → reconciled.
"Activity" is COD cash the driver collected that day. Reconciling compares
what was collected with what the driver has submitted for those same
transactions; a difference never blocks closing, it is written down as
variance on the summary. Transactions still unsubmitted get a shortfall
annotation that bypasses the custody version, so closing the books never
aborts a driver's in-flight submit; submitting clears the annotation.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from models.cod_transaction import CodTransaction
from models.driver_cod_summary import DriverCodSummary, ReconciliationStatus
from services.cod_store import CodTransactionStore
from services.directories import DriverDirectory, StaffDirectory
from utils.clock import utcnow
from utils.exceptions import CodError, NotFoundError, InvalidStateError
import logging

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


class DayState:
    no_activity = "no_activity"
    pending = "pending"
    reconciled = "reconciled"


@dataclass
class DayTotals:
    driver_id: int
    summary_date: date
    transaction_count: int
    total_collected: Decimal
    total_submitted: Decimal

    @property
    def variance(self) -> Decimal:
        return self.total_collected - self.total_submitted


@dataclass
class ReconciliationBatchResult:
    summary_date: date
    company_id: int
    succeeded: List[int] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)
    failed: Dict[int, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass
class PendingReconciliation:
    driver_id: int
    driver_name: Optional[str]
    summary_date: date
    transaction_count: int
    total_collected: Decimal
    total_submitted: Decimal

    @property
    def pending_amount(self) -> Decimal:
        return self.total_collected - self.total_submitted


@dataclass
class CompanyReconciliationReport:
    company_id: int
    summary_date: date
    transaction_count: int
    total_collected: Decimal
    total_submitted: Decimal
    drivers: List[dict] = field(default_factory=list)

    @property
    def variance(self) -> Decimal:
        return self.total_collected - self.total_submitted


def _totals(driver_id: int, day: date, txs: List[CodTransaction]) -> DayTotals:
    return DayTotals(
        driver_id=driver_id,
        summary_date=day,
        transaction_count=len(txs),
        total_collected=sum((Decimal(str(t.cod_amount)) for t in txs), ZERO),
        total_submitted=sum((Decimal(str(t.submitted_amount or 0)) for t in txs), ZERO),
    )


class ReconciliationService:
    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = utcnow,
        drivers: Optional[DriverDirectory] = None,
        staff: Optional[StaffDirectory] = None,
    ):
        self.db = db
        self.clock = clock
        self.store = CodTransactionStore(db)
        self.drivers = drivers or DriverDirectory(db)
        self.staff = staff or StaffDirectory(db)

    # ── Summary rows ───────────────────────────────────────────

    def get_summary(self, driver_id: int, day: date, for_update: bool = False) -> Optional[DriverCodSummary]:
        query = self.db.query(DriverCodSummary).filter(
            DriverCodSummary.driver_id == driver_id,
            DriverCodSummary.summary_date == day,
        )
        if for_update:
            query = query.with_for_update()
        return query.first()

    def get_day_state(self, driver_id: int, day: date) -> str:
        summary = self.get_summary(driver_id, day)
        if summary is not None and summary.reconciliation_status == ReconciliationStatus.reconciled:
            return DayState.reconciled
        if self.store.list_for_driver_date(driver_id, day):
            return DayState.pending
        return DayState.no_activity

    def _apply_totals(self, summary: DriverCodSummary, totals: DayTotals, now: datetime):
        summary.transaction_count = totals.transaction_count
        summary.total_collected = totals.total_collected
        summary.total_submitted = totals.total_submitted
        summary.variance = totals.variance
        summary.updated_at = now

    def _upsert_summary(self, driver_id: int, day: date, totals: DayTotals, now: datetime) -> DriverCodSummary:
        summary = self.get_summary(driver_id, day, for_update=True)
        if summary is None:
            summary = DriverCodSummary(
                driver_id=driver_id,
                summary_date=day,
                reconciliation_status=ReconciliationStatus.pending,
                created_at=now,
            )
            self.db.add(summary)
        elif summary.reconciliation_status == ReconciliationStatus.reconciled:
            raise InvalidStateError(
                f"COD books for driver {driver_id} on {day.isoformat()} are already reconciled",
                driver_id=driver_id,
                summary_date=day.isoformat(),
            )
        self._apply_totals(summary, totals, now)
        return summary

    def refresh_driver_summary(self, driver_id: int, day: date) -> Optional[DriverCodSummary]:
        """Recompute the pending summary for (driver, day). None when there is no activity."""
        if not self.drivers.driver_exists(driver_id):
            raise NotFoundError(f"Driver {driver_id} not found", driver_id=driver_id)

        txs = self.store.list_for_driver_date(driver_id, day)
        if not txs:
            return None

        try:
            summary = self._upsert_summary(driver_id, day, _totals(driver_id, day, txs), self.clock())
            self.db.commit()
        except (CodError, SQLAlchemyError):
            self.db.rollback()
            raise
        return summary

    def get_driver_summary(self, driver_id: int, day: date) -> Tuple[str, Optional[DriverCodSummary]]:
        """Day state plus its summary; a pending day is recomputed first so the totals are current."""
        if not self.drivers.driver_exists(driver_id):
            raise NotFoundError(f"Driver {driver_id} not found", driver_id=driver_id)

        state = self.get_day_state(driver_id, day)
        if state == DayState.reconciled:
            return state, self.get_summary(driver_id, day)
        if state == DayState.pending:
            return state, self.refresh_driver_summary(driver_id, day)
        return state, None

    # ── Reconcile ──────────────────────────────────────────────

    def reconcile_driver(self, driver_id: int, day: date, reconciled_by: int, notes: Optional[str] = None) -> bool:
        if not self.drivers.driver_exists(driver_id):
            raise NotFoundError(f"Driver {driver_id} not found", driver_id=driver_id)
        if not self.staff.user_exists(reconciled_by):
            raise NotFoundError(f"User {reconciled_by} not found", user_id=reconciled_by)

        try:
            txs = self.store.list_for_driver_date(driver_id, day)
            if not txs:
                raise InvalidStateError(
                    f"Driver {driver_id} has no COD activity on {day.isoformat()}",
                    driver_id=driver_id,
                    summary_date=day.isoformat(),
                )

            now = self.clock()
            totals = _totals(driver_id, day, txs)
            summary = self._upsert_summary(driver_id, day, totals, now)

            for tx in txs:
                shortfall = Decimal(str(tx.cod_amount)) - Decimal(str(tx.submitted_amount or 0))
                if shortfall != 0:
                    self.store.record_shortfall(
                        tx.cod_transaction_id,
                        shortfall,
                        f"Reconciliation {day.isoformat()}: collected {tx.cod_amount}, "
                        f"submitted {tx.submitted_amount or ZERO}",
                        now,
                    )

            summary.reconciliation_status = ReconciliationStatus.reconciled
            summary.reconciled_by = reconciled_by
            summary.reconciled_at = now
            if notes:
                summary.notes = notes

            self.db.commit()
        except IntegrityError:
            # Unique (driver, date): a concurrent reconcile created the row first
            self.db.rollback()
            raise InvalidStateError(
                f"COD books for driver {driver_id} on {day.isoformat()} were reconciled concurrently",
                driver_id=driver_id,
                summary_date=day.isoformat(),
            )
        except (CodError, SQLAlchemyError):
            self.db.rollback()
            raise

        if totals.variance != 0:
            logger.warning(
                f"Driver {driver_id} reconciled for {day.isoformat()} with variance {totals.variance} "
                f"(collected {totals.total_collected}, submitted {totals.total_submitted})"
            )
        else:
            logger.info(f"Driver {driver_id} reconciled for {day.isoformat()}: {totals.total_collected}")
        return True

    def reconcile_all_drivers(self, day: date, company_id: int, reconciled_by: int) -> ReconciliationBatchResult:
        """Best effort over every company driver with activity; one driver failing doesn't stop the rest."""
        if not self.staff.user_exists(reconciled_by):
            raise NotFoundError(f"User {reconciled_by} not found", user_id=reconciled_by)

        result = ReconciliationBatchResult(summary_date=day, company_id=company_id)
        for driver_id in self.store.list_active_driver_ids(day, company_id):
            if self.get_day_state(driver_id, day) == DayState.reconciled:
                result.skipped.append(driver_id)
                continue
            try:
                self.reconcile_driver(driver_id, day, reconciled_by)
                result.succeeded.append(driver_id)
            except Exception as e:
                self.db.rollback()
                logger.error(f"Reconciliation failed for driver {driver_id} on {day.isoformat()}: {e}", exc_info=True)
                result.failed[driver_id] = str(e)

        logger.info(
            f"Company {company_id} reconciliation for {day.isoformat()}: "
            f"{len(result.succeeded)} ok, {len(result.skipped)} skipped, {len(result.failed)} failed"
        )
        return result

    # ── Queues & reports ───────────────────────────────────────

    def get_pending_reconciliations(self, company_id: Optional[int] = None) -> List[PendingReconciliation]:
        activity = self.store.list_collection_activity(company_id)
        days = sorted({(driver_id, collected_at.date()) for driver_id, collected_at in activity},
                      key=lambda k: (k[1], k[0]))
        if not days:
            return []

        reconciled = {
            (s.driver_id, s.summary_date)
            for s in self.db.query(DriverCodSummary.driver_id, DriverCodSummary.summary_date).filter(
                DriverCodSummary.reconciliation_status == ReconciliationStatus.reconciled
            )
        }
        names = self.drivers.get_driver_names(d for d, _ in days)

        pending = []
        for driver_id, day in days:
            if (driver_id, day) in reconciled:
                continue
            totals = _totals(driver_id, day, self.store.list_for_driver_date(driver_id, day))
            pending.append(PendingReconciliation(
                driver_id=driver_id,
                driver_name=names.get(driver_id),
                summary_date=day,
                transaction_count=totals.transaction_count,
                total_collected=totals.total_collected,
                total_submitted=totals.total_submitted,
            ))
        return pending

    def get_company_reconciliation(self, company_id: int, day: date) -> CompanyReconciliationReport:
        driver_ids = self.store.list_active_driver_ids(day, company_id)
        names = self.drivers.get_driver_names(driver_ids)
        summaries = {
            s.driver_id: s
            for s in self.db.query(DriverCodSummary).filter(
                DriverCodSummary.summary_date == day,
                DriverCodSummary.driver_id.in_(driver_ids),
            )
        } if driver_ids else {}

        report = CompanyReconciliationReport(
            company_id=company_id,
            summary_date=day,
            transaction_count=0,
            total_collected=ZERO,
            total_submitted=ZERO,
        )
        for driver_id in driver_ids:
            totals = _totals(driver_id, day, self.store.list_for_driver_date(driver_id, day))
            summary = summaries.get(driver_id)
            report.transaction_count += totals.transaction_count
            report.total_collected += totals.total_collected
            report.total_submitted += totals.total_submitted
            report.drivers.append({
                "driver_id": driver_id,
                "driver_name": names.get(driver_id),
                "transaction_count": totals.transaction_count,
                "total_collected": totals.total_collected,
                "total_submitted": totals.total_submitted,
                "variance": totals.variance,
                "reconciliation_status": (
                    summary.reconciliation_status.value if summary else DayState.pending
                ),
                "reconciled_at": summary.reconciled_at if summary else None,
            })
        return report
