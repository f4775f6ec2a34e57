"""Derived status and frozen amount on the COD transaction model."""

from decimal import Decimal

import pytest

from models.cod_transaction import (
    CodTransaction,
    CollectionStatus,
    OverallStatus,
    derive_overall_status,
)
from models.driver_cod_summary import DriverCodSummary
from utils.exceptions import InvalidAmountError, InvalidStateError


class TestDeriveOverallStatus:
    @pytest.mark.parametrize(
        "collection_status, submitted, transferred, expected",
        [
            (CollectionStatus.pending, False, False, OverallStatus.pending_collection),
            (CollectionStatus.collected, False, False, OverallStatus.collected),
            (CollectionStatus.collected, True, False, OverallStatus.submitted_to_company),
            (CollectionStatus.collected, True, True, OverallStatus.completed),
            (CollectionStatus.failed, False, False, OverallStatus.failed),
            (CollectionStatus.failed, True, False, OverallStatus.failed),
        ],
    )
    def test_precedence(self, collection_status, submitted, transferred, expected):
        assert derive_overall_status(collection_status, submitted, transferred) == expected


class TestCodTransactionModel:
    def test_new_transaction_is_pending_collection(self):
        tx = CodTransaction(
            order_id=1,
            cod_amount=Decimal("500000"),
            collection_status=CollectionStatus.pending,
            submitted_to_company=False,
            transferred_to_sender=False,
        )
        assert tx.overall_status == OverallStatus.pending_collection
        assert not tx.is_terminal
        assert not tx.receipt_confirmed

    def test_non_positive_amount_rejected(self):
        with pytest.raises(InvalidAmountError):
            CodTransaction(order_id=1, cod_amount=Decimal("0"))
        with pytest.raises(InvalidAmountError):
            CodTransaction(order_id=1, cod_amount=Decimal("-5"))

    def test_amount_is_frozen_once_set(self):
        tx = CodTransaction(order_id=1, cod_amount=Decimal("150000"))
        with pytest.raises(InvalidStateError):
            tx.cod_amount = Decimal("140000")
        assert tx.cod_amount == Decimal("150000")

    def test_net_amount_subtracts_fee(self):
        tx = CodTransaction(order_id=1, cod_amount=Decimal("500000"), company_fee=Decimal("10000"))
        assert tx.net_amount == Decimal("490000")

    def test_status_expression_matches_stored_rows(self, db, cod_service, collected):
        first, second = collected
        cod_service.submit(7, [first.cod_transaction_id], Decimal("150000"))

        rows = dict(
            db.query(CodTransaction.cod_transaction_id, CodTransaction.overall_status).all()
        )
        assert rows[first.cod_transaction_id] == OverallStatus.submitted_to_company.value
        assert rows[second.cod_transaction_id] == OverallStatus.collected.value


class TestDriverCodSummaryModel:
    def test_pending_amount_derived_from_totals(self):
        summary = DriverCodSummary(total_collected=Decimal("290000"), total_submitted=Decimal("150000"))
        assert summary.pending_amount == Decimal("140000")

        summary.total_submitted = Decimal("290000")
        assert summary.pending_amount == Decimal("0")

    def test_pending_amount_is_not_a_column(self):
        assert "pending_amount" not in DriverCodSummary.__table__.c
