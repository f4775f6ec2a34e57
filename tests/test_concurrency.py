"""
Races between independent sessions.

Each worker gets its own session (its own connection), lines up on a
barrier and fires the same mutation. Exactly one may win; every loser
must see InvalidStateError and the row must reflect only the winner.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal
from threading import Barrier

import pytest

from models.cod_transaction import OverallStatus
from models.driver_cod_summary import ReconciliationStatus
from services.cod_service import CodService
from services.reconciliation_service import ReconciliationService
from utils.exceptions import InvalidStateError

from tests.conftest import DRIVER_ID, STAFF_ID

WORKERS = 4


def race(session_factory, clock, action, workers=WORKERS):
    """Run ``action(service)`` concurrently; return (successes, invalid_state_errors)."""
    barrier = Barrier(workers)

    def worker(_):
        session = session_factory()
        try:
            service = CodService(session, clock=clock, fee_rate=Decimal("0"))
            barrier.wait(timeout=10)
            try:
                action(service)
                return "ok"
            except InvalidStateError:
                return "invalid_state"
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=workers) as pool:
        outcomes = list(pool.map(worker, range(workers)))
    return outcomes.count("ok"), outcomes.count("invalid_state")


class TestConcurrentCollect:
    def test_exactly_one_collect_wins(self, db, session_factory, cod_service, clock, make_transactions):
        (tx,) = make_transactions(101)

        wins, losses = race(session_factory, clock, lambda s: s.collect(101, DRIVER_ID))
        db.expire_all()

        assert wins == 1
        assert losses == WORKERS - 1
        stored = cod_service.get_transaction(tx.cod_transaction_id)
        assert stored.overall_status == OverallStatus.collected
        assert stored.collected_by_driver_id == DRIVER_ID


class TestConcurrentSubmit:
    def test_batch_submitted_once(self, session_factory, cod_service, clock, collected):
        ids = [tx.cod_transaction_id for tx in collected]

        wins, losses = race(
            session_factory, clock, lambda s: s.submit(DRIVER_ID, ids, Decimal("290000"))
        )

        assert wins == 1
        assert losses == WORKERS - 1
        assert cod_service.get_driver_pending_amount(DRIVER_ID) == Decimal("0")

    def test_overlapping_batches_never_double_count(self, db, session_factory, cod_service, clock, collected):
        first, second = (tx.cod_transaction_id for tx in collected)
        batches = [([first, second], Decimal("290000")), ([first], Decimal("150000"))]
        barrier = Barrier(len(batches))

        def worker(batch):
            ids, total = batch
            session = session_factory()
            try:
                barrier.wait(timeout=10)
                try:
                    CodService(session, clock=clock).submit(DRIVER_ID, ids, total)
                    return ids
                except InvalidStateError:
                    return None
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=len(batches)) as pool:
            results = [r for r in pool.map(worker, batches) if r is not None]
        db.expire_all()

        assert len(results) == 1
        for tx_id in (first, second):
            tx = cod_service.get_transaction(tx_id)
            assert tx.submitted_to_company == (tx_id in results[0])


class TestConcurrentReconcile:
    @pytest.mark.parametrize("workers", [2, 3])
    def test_driver_day_closed_once(self, session_factory, clock, collected, workers):
        day = date(2026, 3, 14)
        barrier = Barrier(workers)

        def worker(_):
            session = session_factory()
            try:
                service = ReconciliationService(session, clock=clock)
                barrier.wait(timeout=10)
                try:
                    service.reconcile_driver(DRIVER_ID, day, STAFF_ID)
                    return "ok"
                except InvalidStateError:
                    return "invalid_state"
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=workers) as pool:
            outcomes = list(pool.map(worker, range(workers)))

        assert outcomes.count("ok") == 1
        assert outcomes.count("invalid_state") == workers - 1


class TestSubmitDuringReconcile:
    def test_reconcile_between_load_and_write_does_not_abort_submit(
        self, db, session_factory, clock, collected, monkeypatch
    ):
        ids = [tx.cod_transaction_id for tx in collected]
        day = date(2026, 3, 14)
        service = CodService(db, clock=clock)
        load_rows = service.store.get_many

        def load_then_reconcile(*args, **kwargs):
            rows = load_rows(*args, **kwargs)
            other = session_factory()
            try:
                ReconciliationService(other, clock=clock).reconcile_driver(DRIVER_ID, day, STAFF_ID)
            finally:
                other.close()
            return rows

        monkeypatch.setattr(service.store, "get_many", load_then_reconcile)

        result = service.submit(DRIVER_ID, ids, Decimal("290000"))
        db.expire_all()

        assert result.total_amount == Decimal("290000")
        for tx_id in ids:
            tx = service.get_transaction(tx_id)
            assert tx.overall_status == OverallStatus.submitted_to_company
            assert tx.adjustment_amount is None
            assert tx.adjustment_reason is None

        # The closed day keeps the snapshot it was reconciled with
        summary = ReconciliationService(db, clock=clock).get_summary(DRIVER_ID, day)
        assert summary.reconciliation_status == ReconciliationStatus.reconciled
        assert summary.variance == Decimal("290000")
