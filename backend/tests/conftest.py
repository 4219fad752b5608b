"""Pytest configuration and fixtures."""

import os

# Point the app at an in-memory database before anything imports settings
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from decimal import Decimal
from typing import Generator

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from checkcore.core.security import get_pin_hash
from checkcore.db.base import Base
from checkcore.db.session import get_db
from checkcore.main import app
# Import all models to ensure they're registered with Base.metadata
from checkcore.models import *
from checkcore.services.check_lifecycle_service import CheckLifecycleManager
from checkcore.services.event_notifier import EventNotifier
from checkcore.services.manager_approval import APPLY_DISCOUNT, PRICE_OVERRIDE, REOPEN_CHECK, VOID_SENT

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"
BUSINESS_DATE = "2026-10-19"
MANAGER_PIN = "1234"
SERVER_PIN = "5678"


class RecordingNotifier(EventNotifier):
    """Keeps every published event for assertions."""

    def __init__(self):
        self.events = []

    def publish(self, event, channel=None):
        self.events.append((channel, event))

    def actions(self):
        return [event.get("action") for _, event in self.events]


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(db_session: Session, reference_data) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def reference_data(db_session: Session) -> dict:
    """One property with a revenue center, a taxed and an untaxed menu, a
    grill display fed by the Hot print class, a manager and a server."""
    rvc = RevenueCenter(property_id=1, name="Dining Room", dynamic_order_mode=False)
    tax = TaxGroup(name="State Sales Tax", rate=Decimal("0.0825"), tax_mode=TaxMode.ADD_ON.value)
    hot = PrintClass(name="Hot")
    db_session.add_all([rvc, tax, hot])
    db_session.flush()

    kitchen = OrderDevice(property_id=1, name="Kitchen")
    grill = KdsDevice(property_id=1, name="Grill", station_type="hot")
    db_session.add_all([kitchen, grill])
    db_session.flush()
    db_session.add(OrderDeviceKds(order_device_id=kitchen.id, kds_device_id=grill.id))
    db_session.add(
        PrintClassRouting(print_class_id=hot.id, property_id=1, rvc_id=None, order_device_id=kitchen.id)
    )

    burger = MenuItem(name="Burger", price=Decimal("10.00"), tax_group_id=tax.id, print_class_id=hot.id)
    fries = MenuItem(name="Fries", price=Decimal("4.00"), tax_group_id=tax.id)
    wine = MenuItem(name="Bottle of Wine", price=Decimal("20.00"))
    manager = Employee(
        name="Morgan Manager",
        pin_hash=get_pin_hash(MANAGER_PIN, rounds=4),
        privileges=[VOID_SENT, PRICE_OVERRIDE, APPLY_DISCOUNT, REOPEN_CHECK],
    )
    server = Employee(name="Sam Server", pin_hash=get_pin_hash(SERVER_PIN, rounds=4), privileges=[])
    db_session.add_all([burger, fries, wine, manager, server])
    db_session.commit()

    return {
        "rvc": rvc,
        "tax": tax,
        "hot": hot,
        "kitchen": kitchen,
        "grill": grill,
        "burger": burger,
        "fries": fries,
        "wine": wine,
        "manager": manager,
        "server": server,
    }


@pytest.fixture
def lifecycle(db_session: Session, reference_data, notifier) -> CheckLifecycleManager:
    return CheckLifecycleManager(db_session, notifier=notifier, business_date_provider=lambda: BUSINESS_DATE)


@pytest.fixture
def open_check(lifecycle, reference_data) -> Check:
    return lifecycle.create_check(reference_data["rvc"].id, reference_data["server"].id, table_number="12")


@pytest.fixture
def enable_dom(db_session: Session, reference_data):
    """Switch the revenue center into Dynamic Order Mode with a send mode."""
    def _enable(send_mode: DomSendMode) -> RevenueCenter:
        rvc = reference_data["rvc"]
        rvc.dynamic_order_mode = True
        rvc.dom_send_mode = send_mode.value
        db_session.commit()
        return rvc
    return _enable
