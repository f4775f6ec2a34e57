"""
Narrow read-only views onto data owned by other modules.

The COD ledger never writes orders or drivers; it only asks the questions
below. Driver names and companies are for enriching responses and for the
company-wide reconciliation fan-out, never for authorization.
"""

from decimal import Decimal
from typing import Dict, Iterable, Optional
from sqlalchemy.orm import Session

from models.order import Order
from models.driver import Driver
from models.user import User


class OrderDirectory:
    def __init__(self, db: Session):
        self.db = db

    def _get(self, order_id: int) -> Optional[Order]:
        return self.db.query(Order).filter(Order.order_id == order_id).first()

    def order_exists(self, order_id: int) -> bool:
        return self.db.query(Order.order_id).filter(Order.order_id == order_id).first() is not None

    def get_order_tracking_code(self, order_id: int) -> Optional[str]:
        row = self.db.query(Order.tracking_code).filter(Order.order_id == order_id).first()
        return row.tracking_code if row else None

    def get_order_current_driver(self, order_id: int) -> Optional[int]:
        row = self.db.query(Order.driver_id).filter(Order.order_id == order_id).first()
        return row.driver_id if row else None

    def get_order_cod_amount(self, order_id: int) -> Optional[Decimal]:
        row = self.db.query(Order.cod_amount).filter(Order.order_id == order_id).first()
        if row is None or row.cod_amount is None:
            return None
        return Decimal(str(row.cod_amount))

    def get_tracking_codes(self, order_ids: Iterable[int]) -> Dict[int, str]:
        ids = set(order_ids)
        if not ids:
            return {}
        rows = self.db.query(Order.order_id, Order.tracking_code).filter(Order.order_id.in_(ids)).all()
        return {r.order_id: r.tracking_code for r in rows}


class DriverDirectory:
    def __init__(self, db: Session):
        self.db = db

    def driver_exists(self, driver_id: int) -> bool:
        return self.db.query(Driver.driver_id).filter(Driver.driver_id == driver_id).first() is not None

    def get_driver_name(self, driver_id: int) -> Optional[str]:
        row = self.db.query(Driver.full_name).filter(Driver.driver_id == driver_id).first()
        return row.full_name if row else None

    def get_driver_company(self, driver_id: int) -> Optional[int]:
        row = self.db.query(Driver.company_id).filter(Driver.driver_id == driver_id).first()
        return row.company_id if row else None

    def get_driver_names(self, driver_ids: Iterable[int]) -> Dict[int, str]:
        ids = {d for d in driver_ids if d is not None}
        if not ids:
            return {}
        rows = self.db.query(Driver.driver_id, Driver.full_name).filter(Driver.driver_id.in_(ids)).all()
        return {r.driver_id: r.full_name for r in rows}


class StaffDirectory:
    def __init__(self, db: Session):
        self.db = db

    def user_exists(self, user_id: int) -> bool:
        return self.db.query(User.user_id).filter(User.user_id == user_id).first() is not None
