"""
utils/exceptions.py  –  Typed errors for the COD ledger

Every failure the ledger reports has its own class with a machine-readable
``code`` so API layers can tell "order not found" from "already collected"
from "amounts don't match" without parsing messages.

    CodError
    ├── NotFoundError           NOT_FOUND         404
    ├── InvalidStateError       INVALID_STATE     409
    ├── ValidationError         VALIDATION_ERROR  422
    │   ├── AmountMismatchError AMOUNT_MISMATCH   422
    │   └── InvalidAmountError  INVALID_AMOUNT    422
    └── PartialFailureError     PARTIAL_FAILURE   207
"""

from decimal import Decimal
from typing import Any, Dict, Iterable, Optional


class CodError(Exception):
    """Base class for every error raised by the COD ledger."""

    code: str = "COD_ERROR"
    status_code: int = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.details}


class NotFoundError(CodError):
    """Referenced transaction, order or driver does not exist."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, message: str, transaction_ids: Optional[Iterable[int]] = None, **details):
        if transaction_ids is not None:
            details["transaction_ids"] = sorted(transaction_ids)
        super().__init__(message, details)


class InvalidStateError(CodError):
    """Operation attempted against a transaction in the wrong state."""

    code = "INVALID_STATE"
    status_code = 409

    def __init__(self, message: str, transaction_ids: Optional[Iterable[int]] = None, **details):
        if transaction_ids is not None:
            details["transaction_ids"] = sorted(transaction_ids)
        super().__init__(message, details)

    @property
    def transaction_ids(self) -> list:
        return self.details.get("transaction_ids", [])


class ValidationError(CodError):
    code = "VALIDATION_ERROR"
    status_code = 422


class AmountMismatchError(ValidationError):
    """Declared submission total differs from the sum of the batch."""

    code = "AMOUNT_MISMATCH"

    def __init__(self, declared: Decimal, expected: Decimal):
        super().__init__(
            f"Declared total {declared} does not match batch total {expected}",
            {"declared_total": str(declared), "expected_total": str(expected)},
        )
        self.declared = declared
        self.expected = expected


class InvalidAmountError(ValidationError):
    code = "INVALID_AMOUNT"


class PartialFailureError(CodError):
    """Some drivers in a company-wide reconciliation failed; the rest went through."""

    code = "PARTIAL_FAILURE"
    status_code = 207

    def __init__(self, message: str, succeeded: Iterable[int], failed: Dict[int, str], skipped: Iterable[int] = ()):
        super().__init__(
            message,
            {
                "succeeded": sorted(succeeded),
                "failed": {str(k): v for k, v in sorted(failed.items())},
                "skipped": sorted(skipped),
            },
        )
