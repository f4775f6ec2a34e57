from sqlalchemy import Column, Integer, String, ForeignKey, Boolean, DateTime
from sqlalchemy.sql import func
from database import Base


class Driver(Base):
    """Read-only mirror of the driver directory (owned by the drivers module)."""

    __tablename__ = "drivers"

    driver_id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True, unique=True)
    full_name = Column(String(255), nullable=False)
    company_id = Column(Integer, nullable=False, index=True)
    vehicle_plate = Column(String(50), nullable=True)
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime, server_default=func.now())
