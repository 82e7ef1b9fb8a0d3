"""
Shared test fixtures.

Sets up an isolated test database so tests never touch the real
database, plus factories for ledger events and bookings. Engine
tests run against the in-memory backend; API tests run the whole
application (lifespan included) against SQLite.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from sales_ledger.config import Settings
from sales_ledger.main import create_app
from sales_ledger.models import Base
from sales_ledger.models.base import get_db
from sales_ledger.models.enums import CompositeType, OriginationChannel
from sales_ledger.schemas.booking import BookedProduct, BookedService, Booking
from sales_ledger.schemas.ledger_event import IdentityRef, LedgerEvent
from sales_ledger.services.event_store import EventStore, InMemoryEventBackend
from sales_ledger.services.ledger_service import LedgerEventService


# SQLite for tests: no external database needed.
TEST_DATABASE_URL = "sqlite:///./test.db"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
)

TestSessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
)

BASE_TIME = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def setup_database():
    """
    Create all tables before each test, drop them after.

    autouse=True means every test gets this automatically.
    This ensures each test starts with a clean database.
    """
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory():
    return TestSessionLocal


@pytest.fixture
def db_session():
    """Provide a database session for direct backend testing."""
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def settings():
    """Default settings with bootstrap cleanup on, as in production."""
    test_settings = Settings()
    test_settings.BOOTSTRAP_CLEANUP = True
    test_settings.LOG_LEVEL = "DEBUG"
    return test_settings


@pytest.fixture
def client(settings):
    """
    Provide a test client running the full application.

    The context manager runs the lifespan, so the ledger service
    is built and initialized against the test database exactly
    as in production. get_db is overridden for the health check.
    """
    app = create_app(session_factory=TestSessionLocal, settings=settings)

    def override_get_db():
        db = TestSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_event():
    """
    Factory for ledger events.

    Defaults describe a 50.00 service sale recorded by the POS
    for client-1 at BASE_TIME; pass keyword overrides for the
    fields a test cares about.
    """
    def _make(**overrides) -> LedgerEvent:
        booking_id = overrides.pop("booking", None)
        data = {
            "composite_type": CompositeType.SERVICE_ONLY,
            "amount": Decimal("50.00"),
            "client_id": "client-1",
            "origination_channel": OriginationChannel.POS,
            "occurred_at": BASE_TIME,
            "created_at": BASE_TIME,
            "updated_at": BASE_TIME,
            "description": "Haircut",
        }
        if booking_id is not None:
            data["identity_ref"] = IdentityRef(kind="appointment", id=booking_id)
        data.update(overrides)
        return LedgerEvent(**data)

    return _make


@pytest.fixture
def make_booking():
    """Factory for booking aggregates with one 50.00 service."""
    def _make(**overrides) -> Booking:
        data = {
            "id": "apt-100",
            "client_id": "client-1",
            "client_name": "Dana Smith",
            "staff_id": "staff-7",
            "staff_name": "Alex",
            "location": "downtown",
            "service": BookedService(name="Haircut", price=Decimal("50.00")),
        }
        data.update(overrides)
        return Booking(**data)

    return _make


@pytest.fixture
def shampoo():
    return BookedProduct(
        id="prod-shampoo", name="Shampoo", price=Decimal("15.00"),
        quantity=2, cost=Decimal("6.00"),
    )


@pytest.fixture
def make_service(settings):
    """
    Factory for a LedgerEventService over an in-memory backend.

    The service still has to be initialized inside the test's
    event loop.
    """
    def _make(events=(), backend=None, publisher=None, **setting_overrides):
        backend = backend or InMemoryEventBackend(
            [event.model_dump(mode="json") for event in events]
        )
        for key, value in setting_overrides.items():
            setattr(settings, key, value)
        return LedgerEventService(
            EventStore(backend), publisher=publisher, settings=settings
        )

    return _make
