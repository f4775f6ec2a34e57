"""Driver → company batch submission."""

from decimal import Decimal

import pytest

from models.cod_transaction import OverallStatus
from utils.exceptions import (
    AmountMismatchError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)

from tests.conftest import DRIVER_ID, NOW, OTHER_DRIVER_ID


class TestSubmit:
    def test_batch_submitted_atomically(self, cod_service, collected):
        ids = [tx.cod_transaction_id for tx in collected]

        result = cod_service.submit(DRIVER_ID, ids, Decimal("290000"))

        assert result.count == 2
        assert result.total_amount == Decimal("290000")
        assert result.submitted_at == NOW
        for tx_id in ids:
            tx = cod_service.get_transaction(tx_id)
            assert tx.submitted_to_company
            assert tx.submitted_amount == tx.cod_amount
            assert tx.overall_status == OverallStatus.submitted_to_company

    def test_declared_total_accepts_any_decimal_form(self, cod_service, collected):
        ids = [tx.cod_transaction_id for tx in collected]
        result = cod_service.submit(DRIVER_ID, ids, "290000.00")
        assert result.count == 2

    def test_mismatch_changes_nothing(self, cod_service, collected):
        ids = [tx.cod_transaction_id for tx in collected]

        with pytest.raises(AmountMismatchError) as exc:
            cod_service.submit(DRIVER_ID, ids, Decimal("300000"))

        assert exc.value.declared == Decimal("300000")
        assert exc.value.expected == Decimal("290000")
        for tx_id in ids:
            tx = cod_service.get_transaction(tx_id)
            assert not tx.submitted_to_company
            assert tx.submitted_at is None
            assert tx.overall_status == OverallStatus.collected

    def test_empty_batch(self, cod_service):
        with pytest.raises(ValidationError):
            cod_service.submit(DRIVER_ID, [], Decimal("0"))

    def test_unknown_ids_reported(self, cod_service, collected):
        ids = [collected[0].cod_transaction_id, 999]

        with pytest.raises(NotFoundError) as exc:
            cod_service.submit(DRIVER_ID, ids, Decimal("150000"))

        assert exc.value.details["transaction_ids"] == [999]
        assert not cod_service.get_transaction(collected[0].cod_transaction_id).submitted_to_company

    def test_one_bad_member_rejects_whole_batch(self, cod_service, collected, make_transactions):
        (uncollected,) = make_transactions(101)
        ids = [tx.cod_transaction_id for tx in collected] + [uncollected.cod_transaction_id]

        with pytest.raises(InvalidStateError) as exc:
            cod_service.submit(DRIVER_ID, ids, Decimal("790000"))

        assert exc.value.transaction_ids == [uncollected.cod_transaction_id]
        assert exc.value.details["reasons"] == {
            str(uncollected.cod_transaction_id): "not collected by this driver"
        }
        for tx in collected:
            assert not cod_service.get_transaction(tx.cod_transaction_id).submitted_to_company

    def test_other_drivers_cash_rejected(self, cod_service, collected):
        with pytest.raises(InvalidStateError):
            cod_service.submit(OTHER_DRIVER_ID, [collected[0].cod_transaction_id], Decimal("150000"))

    def test_double_submit_rejected(self, cod_service, collected):
        tx_id = collected[0].cod_transaction_id
        cod_service.submit(DRIVER_ID, [tx_id], Decimal("150000"))

        with pytest.raises(InvalidStateError) as exc:
            cod_service.submit(DRIVER_ID, [tx_id], Decimal("150000"))

        assert exc.value.details["reasons"] == {str(tx_id): "already submitted"}

    def test_unknown_driver(self, cod_service, collected):
        with pytest.raises(NotFoundError):
            cod_service.submit(999, [collected[0].cod_transaction_id], Decimal("150000"))
