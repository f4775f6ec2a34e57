from .responses import error_response, paginated_response
from .exceptions import (
    CodError,
    NotFoundError,
    InvalidStateError,
    ValidationError,
    AmountMismatchError,
    InvalidAmountError,
    PartialFailureError,
)
from .clock import utcnow, FixedClock

__all__ = [
    "error_response",
    "paginated_response",
    "CodError",
    "NotFoundError",
    "InvalidStateError",
    "ValidationError",
    "AmountMismatchError",
    "InvalidAmountError",
    "PartialFailureError",
    "utcnow",
    "FixedClock",
]
