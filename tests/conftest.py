"""
Shared fixtures for the COD ledger tests.

Every test gets its own SQLite file with the schema created and a small
fleet seeded:

    company 1: drivers 7 (Juan Dela Cruz) and 8 (Maria Santos)
    company 2: driver 9 (Pedro Reyes)
    staff:     user 3 (ops staff), user 1 (admin)

    order 101  driver 7  COD 500000
    order 102  driver 7  COD 150000
    order 103  driver 7  COD 140000
    order 104  driver 8  COD 200000
    order 105  driver 9  COD  80000
    order 106  driver 7  no COD
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from database import build_engine, init_db, get_db
from models import User, UserType, Driver, Order
from services.cod_service import CodService
from services.dashboard_service import DashboardService
from services.reconciliation_service import ReconciliationService
from utils.clock import FixedClock

STAFF_ID = 3
ADMIN_ID = 1
DRIVER_ID = 7
OTHER_DRIVER_ID = 8
COMPANY2_DRIVER_ID = 9
NON_COD_ORDER_ID = 106

NOW = datetime(2026, 3, 14, 9, 30, 0)


def seed(session):
    session.add_all([
        User(user_id=ADMIN_ID, full_name="Admin", email="admin@example.com", user_type=UserType.admin),
        User(user_id=STAFF_ID, full_name="Ops Staff", email="ops@example.com", user_type=UserType.staff),
    ])
    session.add_all([
        Driver(driver_id=DRIVER_ID, full_name="Juan Dela Cruz", company_id=1, vehicle_plate="ABC-1234"),
        Driver(driver_id=OTHER_DRIVER_ID, full_name="Maria Santos", company_id=1),
        Driver(driver_id=COMPANY2_DRIVER_ID, full_name="Pedro Reyes", company_id=2),
    ])
    session.flush()
    session.add_all([
        Order(order_id=101, tracking_code="TRK-101", company_id=1, driver_id=DRIVER_ID, cod_amount=Decimal("500000")),
        Order(order_id=102, tracking_code="TRK-102", company_id=1, driver_id=DRIVER_ID, cod_amount=Decimal("150000")),
        Order(order_id=103, tracking_code="TRK-103", company_id=1, driver_id=DRIVER_ID, cod_amount=Decimal("140000")),
        Order(order_id=104, tracking_code="TRK-104", company_id=1, driver_id=OTHER_DRIVER_ID, cod_amount=Decimal("200000")),
        Order(order_id=105, tracking_code="TRK-105", company_id=2, driver_id=COMPANY2_DRIVER_ID, cod_amount=Decimal("80000")),
        Order(order_id=NON_COD_ORDER_ID, tracking_code="TRK-106", company_id=1, driver_id=DRIVER_ID, cod_amount=None),
    ])
    session.commit()


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'cod_ledger.db'}")
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = factory()
    try:
        seed(session)
    finally:
        session.close()
    return factory


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def cod_service(db, clock):
    return CodService(db, clock=clock, fee_rate=Decimal("0"))


@pytest.fixture
def reconciliation_service(db, clock):
    return ReconciliationService(db, clock=clock)


@pytest.fixture
def dashboard_service(db):
    return DashboardService(db)


@pytest.fixture
def make_transactions(cod_service):
    """Open COD transactions for the given orders, returning them in order."""

    def _make(*order_ids):
        return [cod_service.create_for_order(order_id) for order_id in order_ids]

    return _make


@pytest.fixture
def collected(cod_service, make_transactions):
    """COD transactions for orders 102 and 103, both collected by driver 7."""
    txs = make_transactions(102, 103)
    for tx in txs:
        cod_service.collect(tx.order_id, DRIVER_ID)
    return txs


@pytest.fixture
def client(session_factory):
    from app import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
