from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, DECIMAL
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from database import Base


class Order(Base):
    """
    Read-only mirror of the orders table.

    Order management owns these rows; the COD ledger only reads the
    tracking code, the COD amount and the currently assigned driver.
    """

    __tablename__ = "orders"

    order_id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    tracking_code = Column(String(50), nullable=False, unique=True, index=True)
    company_id = Column(Integer, nullable=False, index=True)

    # Current assignment; changes as the order is re-dispatched
    driver_id = Column(Integer, ForeignKey("drivers.driver_id", ondelete="SET NULL"), nullable=True, index=True)

    cod_amount = Column(DECIMAL(15, 2), nullable=True)

    created_at = Column(DateTime, server_default=func.now(), index=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    driver = relationship("Driver")
