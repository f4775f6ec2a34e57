"""End-to-end walks through the COD custody chain."""

from decimal import Decimal

import pytest

from models.cod_transaction import OverallStatus
from utils.exceptions import AmountMismatchError, NotFoundError

from tests.conftest import DRIVER_ID, NON_COD_ORDER_ID, STAFF_ID


class TestEndToEnd:
    def test_full_lifecycle(self, cod_service, clock):
        """500000 collected, submitted, confirmed and forwarded with a 10000 fee."""
        tx = cod_service.create_for_order(101)
        tx_id = tx.cod_transaction_id

        cod_service.collect(101, DRIVER_ID)
        assert cod_service.get_transaction(tx_id).overall_status == OverallStatus.collected

        clock.advance(hours=3)
        cod_service.submit(DRIVER_ID, [tx_id], Decimal("500000"))
        assert cod_service.get_transaction(tx_id).overall_status == OverallStatus.submitted_to_company

        clock.advance(minutes=30)
        cod_service.confirm_receipt(tx_id, STAFF_ID)

        clock.advance(days=1)
        cod_service.transfer_to_sender(tx_id, "bank_transfer", company_fee=Decimal("10000"))

        tx = cod_service.get_transaction(tx_id)
        assert tx.overall_status == OverallStatus.completed
        assert tx.net_amount == Decimal("490000")
        assert tx.cod_amount == Decimal("500000")
        assert tx.collected_at < tx.submitted_at < tx.company_received_at < tx.transferred_at

    def test_mismatched_batch_leaves_both_collected(self, cod_service, collected):
        ids = [tx.cod_transaction_id for tx in collected]

        with pytest.raises(AmountMismatchError):
            cod_service.submit(DRIVER_ID, ids, Decimal("300000"))

        for tx_id in ids:
            assert cod_service.get_transaction(tx_id).overall_status == OverallStatus.collected

    def test_collect_on_non_cod_order(self, cod_service):
        with pytest.raises(NotFoundError):
            cod_service.collect(NON_COD_ORDER_ID, DRIVER_ID)

    def test_amount_survives_every_step(self, cod_service):
        tx = cod_service.create_for_order(102)
        tx_id = tx.cod_transaction_id
        steps = [
            lambda: cod_service.collect(102, DRIVER_ID),
            lambda: cod_service.submit(DRIVER_ID, [tx_id], Decimal("150000")),
            lambda: cod_service.confirm_receipt(tx_id, STAFF_ID),
            lambda: cod_service.transfer_to_sender(tx_id, "cash", company_fee=Decimal("500")),
        ]
        for step in steps:
            step()
            assert cod_service.get_transaction(tx_id).cod_amount == Decimal("150000")
