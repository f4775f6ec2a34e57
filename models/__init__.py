from .user import User, UserType
from .driver import Driver
from .order import Order
from .cod_transaction import (
    CodTransaction,
    CollectionStatus,
    OverallStatus,
    TransferMethod,
    derive_overall_status,
)
from .driver_cod_summary import DriverCodSummary, ReconciliationStatus

__all__ = [
    "User",
    "UserType",
    "Driver",
    "Order",
    "CodTransaction",
    "CollectionStatus",
    "OverallStatus",
    "TransferMethod",
    "derive_overall_status",
    "DriverCodSummary",
    "ReconciliationStatus",
]
