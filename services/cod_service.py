"""
services/cod_service.py  –  COD custody operations

    collect      driver took the cash at delivery
    submit       driver hands a batch of collected cash to the company
    confirm      company staff acknowledge the cash arrived
    transfer     company forwards the proceeds (minus fee) to the sender
    mark_failed  collection / custody chain broke down

Every mutation runs in one database transaction. Rows are read FOR UPDATE and
written with the optimistic ``version`` check, so a lost race surfaces as
InvalidStateError instead of a double collection or a torn batch.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, Iterable, List, Optional, Tuple
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from config import settings
from models.cod_transaction import CodTransaction, CollectionStatus, OverallStatus, TransferMethod
from services.cod_store import CodTransactionStore, CodTransactionFilter
from services.directories import OrderDirectory, DriverDirectory, StaffDirectory
from utils.clock import utcnow
from utils.exceptions import (
    CodError, NotFoundError, InvalidStateError, ValidationError,
    AmountMismatchError, InvalidAmountError,
)
import logging

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def to_decimal(value, name: str = "amount") -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmountError(f"Invalid {name}: {value!r}")
    if not amount.is_finite():
        raise InvalidAmountError(f"Invalid {name}: {value!r}")
    return amount


@dataclass
class SubmissionResult:
    driver_id: int
    transaction_ids: List[int]
    total_amount: Decimal
    submitted_at: datetime

    @property
    def count(self) -> int:
        return len(self.transaction_ids)


@dataclass
class DriverPendingCod:
    driver_id: int
    driver_name: Optional[str]
    total_pending: Decimal
    transactions: List[CodTransaction] = field(default_factory=list)

    @property
    def pending_count(self) -> int:
        return len(self.transactions)


class CodService:
    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = utcnow,
        orders: Optional[OrderDirectory] = None,
        drivers: Optional[DriverDirectory] = None,
        staff: Optional[StaffDirectory] = None,
        fee_rate: Optional[Decimal] = None,
    ):
        self.db = db
        self.clock = clock
        self.store = CodTransactionStore(db)
        self.orders = orders or OrderDirectory(db)
        self.drivers = drivers or DriverDirectory(db)
        self.staff = staff or StaffDirectory(db)
        self.fee_rate = Decimal(str(settings.COD_COMPANY_FEE_RATE if fee_rate is None else fee_rate))

    # ── Unit of work ───────────────────────────────────────────

    @contextmanager
    def _unit_of_work(self, action: str, transaction_ids: Iterable[int] = ()):
        ids = sorted(transaction_ids)
        try:
            yield
            self.db.commit()
        except CodError as e:
            self.db.rollback()
            logger.warning(f"COD {action} rejected for {ids}: [{e.code}] {e.message}")
            raise
        except StaleDataError:
            self.db.rollback()
            logger.warning(f"COD {action} lost a concurrent update race on {ids}")
            raise InvalidStateError(
                f"COD transaction(s) {ids} were modified concurrently; reload and retry",
                transaction_ids=ids,
            )
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"COD {action} failed for {ids}", exc_info=True)
            raise
        except Exception:
            self.db.rollback()
            raise

    # ── Creation (order-created trigger) ───────────────────────

    def create_for_order(self, order_id: int, notes: Optional[str] = None) -> CodTransaction:
        if not self.orders.order_exists(order_id):
            raise NotFoundError(f"Order {order_id} not found", order_id=order_id)

        amount = self.orders.get_order_cod_amount(order_id)
        if amount is None or amount <= 0:
            raise InvalidStateError(f"Order {order_id} is not a COD order", order_id=order_id)

        existing = self.store.find_by_order(order_id)
        if existing is not None:
            raise InvalidStateError(
                f"Order {order_id} already has COD transaction {existing.cod_transaction_id}",
                transaction_ids=[existing.cod_transaction_id],
            )

        now = self.clock()
        tx = CodTransaction(
            order_id=order_id,
            cod_amount=amount,
            collection_status=CollectionStatus.pending,
            submitted_to_company=False,
            transferred_to_sender=False,
            company_fee=Decimal("0.00"),
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        try:
            with self._unit_of_work("create", []):
                self.store.add(tx)
        except IntegrityError:
            # Unique order_id: another request created it first
            raise InvalidStateError(f"Order {order_id} already has a COD transaction", order_id=order_id)

        logger.info(f"COD transaction {tx.cod_transaction_id} created for order {order_id}: {amount}")
        return tx

    def update_notes(self, transaction_id: int, notes: Optional[str]) -> CodTransaction:
        with self._unit_of_work("update_notes", [transaction_id]):
            tx = self.store.get(transaction_id, for_update=True)
            tx.notes = notes
            tx.updated_at = self.clock()
        return tx

    # ── Reads ──────────────────────────────────────────────────

    def get_transaction(self, transaction_id: int) -> CodTransaction:
        return self.store.get(transaction_id)

    def get_transaction_by_order(self, order_id: int) -> CodTransaction:
        return self.store.get_by_order(order_id)

    def list_driver_transactions(self, driver_id: int, status: Optional[OverallStatus] = None) -> List[CodTransaction]:
        self._require_driver(driver_id)
        return self.store.list_by_driver(driver_id, status)

    def list_pending_collections(self, driver_id: int) -> List[CodTransaction]:
        self._require_driver(driver_id)
        return self.store.list_pending_collections(driver_id)

    def get_driver_pending_amount(self, driver_id: int) -> Decimal:
        """Cash the driver holds: collected but not yet submitted."""
        self._require_driver(driver_id)
        txs = self.store.list_collected_unsubmitted(driver_id)
        return sum((Decimal(str(t.cod_amount)) for t in txs), Decimal("0.00"))

    def get_driver_pending(self, driver_id: int) -> DriverPendingCod:
        self._require_driver(driver_id)
        txs = self.store.list_collected_unsubmitted(driver_id)
        return DriverPendingCod(
            driver_id=driver_id,
            driver_name=self.drivers.get_driver_name(driver_id),
            total_pending=sum((Decimal(str(t.cod_amount)) for t in txs), Decimal("0.00")),
            transactions=txs,
        )

    def search(self, filters: CodTransactionFilter, page: int = 1, page_size: int = 20) -> Tuple[List[CodTransaction], int]:
        return self.store.search(filters, page=page, page_size=page_size)

    def list_awaiting_transfer(self, company_id: int) -> List[CodTransaction]:
        return self.store.list_awaiting_transfer(company_id)

    def _require_driver(self, driver_id: int):
        if not self.drivers.driver_exists(driver_id):
            raise NotFoundError(f"Driver {driver_id} not found", driver_id=driver_id)

    # ── Collection ─────────────────────────────────────────────

    def collect(self, order_id: int, driver_id: int, proof_photo_url: Optional[str] = None) -> CodTransaction:
        if not self.orders.order_exists(order_id):
            raise NotFoundError(f"Order {order_id} not found", order_id=order_id)

        with self._unit_of_work("collect", []):
            tx = self.store.get_by_order(order_id, for_update=True)

            if tx.collection_status != CollectionStatus.pending:
                raise InvalidStateError(
                    f"COD for order {order_id} is already {tx.collection_status.value}",
                    transaction_ids=[tx.cod_transaction_id],
                )

            assigned = self.orders.get_order_current_driver(order_id)
            if assigned != driver_id:
                raise InvalidStateError(
                    f"Order {order_id} is not assigned to driver {driver_id}",
                    transaction_ids=[tx.cod_transaction_id],
                    assigned_driver_id=assigned,
                )

            now = self.clock()
            tx.collected_by_driver_id = driver_id
            tx.collected_at = now
            tx.collection_status = CollectionStatus.collected
            if proof_photo_url:
                tx.collection_proof_photo_url = proof_photo_url
            tx.updated_at = now

        logger.info(
            f"COD collected - order {order_id}, transaction {tx.cod_transaction_id}, "
            f"driver {driver_id}, amount {tx.cod_amount}"
        )
        return tx

    # ── Submission ─────────────────────────────────────────────

    def submit(self, driver_id: int, transaction_ids: Iterable[int], declared_total) -> SubmissionResult:
        ids = set(transaction_ids)
        if not ids:
            raise ValidationError("Submission batch is empty")
        declared = to_decimal(declared_total, "declared total")
        self._require_driver(driver_id)

        with self._unit_of_work("submit", ids):
            rows = self.store.get_many(ids, for_update=True)

            missing = ids - {tx.cod_transaction_id for tx in rows}
            if missing:
                raise NotFoundError(f"COD transactions not found: {sorted(missing)}", transaction_ids=missing)

            reasons: Dict[int, str] = {}
            for tx in rows:
                if tx.collected_by_driver_id != driver_id:
                    reasons[tx.cod_transaction_id] = "not collected by this driver"
                elif tx.collection_status != CollectionStatus.collected:
                    reasons[tx.cod_transaction_id] = f"collection status is {tx.collection_status.value}"
                elif tx.submitted_to_company:
                    reasons[tx.cod_transaction_id] = "already submitted"
            if reasons:
                raise InvalidStateError(
                    f"Batch rejected; {len(reasons)} transaction(s) cannot be submitted",
                    transaction_ids=reasons.keys(),
                    reasons={str(k): v for k, v in sorted(reasons.items())},
                )

            expected = sum((Decimal(str(tx.cod_amount)) for tx in rows), Decimal("0.00"))
            if declared != expected:
                raise AmountMismatchError(declared, expected)

            now = self.clock()
            for tx in rows:
                tx.submitted_to_company = True
                tx.submitted_at = now
                tx.submitted_amount = tx.cod_amount
                tx.updated_at = now
            self.db.flush()
            self.store.clear_shortfalls(ids)

        logger.info(f"Driver {driver_id} submitted {len(rows)} COD transaction(s) totalling {expected}")
        return SubmissionResult(
            driver_id=driver_id,
            transaction_ids=sorted(ids),
            total_amount=expected,
            submitted_at=now,
        )

    # ── Receipt confirmation ───────────────────────────────────

    def confirm_receipt(self, transaction_id: int, received_by_user_id: int) -> bool:
        if not self.staff.user_exists(received_by_user_id):
            raise NotFoundError(f"User {received_by_user_id} not found", user_id=received_by_user_id)

        with self._unit_of_work("confirm_receipt", [transaction_id]):
            tx = self.store.get(transaction_id, for_update=True)
            if tx.collection_status == CollectionStatus.failed:
                raise InvalidStateError(f"COD transaction {transaction_id} has failed", transaction_ids=[transaction_id])
            if not tx.submitted_to_company:
                raise InvalidStateError(
                    f"COD transaction {transaction_id} has not been submitted to the company",
                    transaction_ids=[transaction_id],
                )
            if tx.company_received_by is not None:
                raise InvalidStateError(
                    f"Receipt of COD transaction {transaction_id} already confirmed by user {tx.company_received_by}",
                    transaction_ids=[transaction_id],
                )

            now = self.clock()
            tx.company_received_by = received_by_user_id
            tx.company_received_at = now
            tx.updated_at = now

        logger.info(f"COD receipt confirmed - transaction {transaction_id}, received by {received_by_user_id}")
        return True

    # ── Transfer to sender ─────────────────────────────────────

    def calculate_company_fee(self, cod_amount: Decimal) -> Decimal:
        return (Decimal(str(cod_amount)) * self.fee_rate).quantize(CENT)

    def transfer_to_sender(
        self,
        transaction_id: int,
        method,
        reference: Optional[str] = None,
        proof_url: Optional[str] = None,
        company_fee=None,
    ) -> bool:
        try:
            method = TransferMethod(method)
        except ValueError:
            raise ValidationError(f"Unknown transfer method: {method!r}")

        with self._unit_of_work("transfer_to_sender", [transaction_id]):
            tx = self.store.get(transaction_id, for_update=True)
            if tx.collection_status == CollectionStatus.failed:
                raise InvalidStateError(f"COD transaction {transaction_id} has failed", transaction_ids=[transaction_id])
            if not tx.submitted_to_company:
                raise InvalidStateError(
                    f"COD transaction {transaction_id} has not been submitted to the company",
                    transaction_ids=[transaction_id],
                )
            if tx.transferred_to_sender:
                raise InvalidStateError(
                    f"COD transaction {transaction_id} was already transferred to the sender",
                    transaction_ids=[transaction_id],
                )
            if not tx.receipt_confirmed:
                logger.warning(f"Transferring COD transaction {transaction_id} without a confirmed receipt")

            cod_amount = Decimal(str(tx.cod_amount))
            fee = self.calculate_company_fee(cod_amount) if company_fee is None else to_decimal(company_fee, "company fee")
            if fee < 0 or fee > cod_amount:
                raise InvalidAmountError(
                    f"Company fee {fee} must be between 0 and the COD amount {cod_amount}",
                    {"company_fee": str(fee), "cod_amount": str(cod_amount)},
                )

            now = self.clock()
            tx.transferred_to_sender = True
            tx.transferred_at = now
            tx.transfer_method = method
            tx.transfer_reference = reference
            tx.transfer_proof_url = proof_url
            tx.company_fee = fee
            tx.updated_at = now

        logger.info(
            f"COD transferred to sender - transaction {transaction_id}, method {method.value}, "
            f"fee {fee}, net {cod_amount - fee}"
        )
        return True

    # ── Failure ────────────────────────────────────────────────

    def mark_failed(self, transaction_id: int, reason: str) -> CodTransaction:
        with self._unit_of_work("mark_failed", [transaction_id]):
            tx = self.store.get(transaction_id, for_update=True)
            if tx.is_terminal:
                raise InvalidStateError(
                    f"COD transaction {transaction_id} is already {tx.overall_status.value}",
                    transaction_ids=[transaction_id],
                )

            now = self.clock()
            tx.collection_status = CollectionStatus.failed
            tx.collected_at = None
            tx.failed_at = now
            tx.failure_reason = reason
            tx.updated_at = now

        logger.info(f"COD transaction {transaction_id} marked failed: {reason}")
        return tx
