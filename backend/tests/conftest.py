from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from storefront.adapters.mock_mailer import MockMailerAdapter
from storefront.api import deps
from storefront.config import LifecycleWindows
from storefront.db import init_db
from storefront.main import app
from storefront.repositories.record_store import RecordStore
from storefront.services.abandonment_sweep import AbandonmentSweep
from storefront.services.activity_service import ActivityRecorder
from storefront.services.discount_service import DiscountService
from storefront.services.order_service import OrderService
from storefront.services.payment_failure_service import PaymentFailureService
from storefront.services.recovery_service import RecoveryResolver
from storefront.utils.clock import FrozenClock

T0 = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

CART_ITEMS = [
    {"sku": "TEE-BLK-M", "name": "Training Tee", "quantity": 2, "price_cents": 29900},
    {"sku": "CAP-01", "name": "Cap", "quantity": 1, "price_cents": 19900},
]


def _engine(path):
    return create_engine(
        f"sqlite:///{path}",
        future=True,
        connect_args={"check_same_thread": False, "timeout": 30},
    )


@pytest.fixture
def engine(tmp_path):
    eng = _engine(tmp_path / "lifecycle.db")
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def store(engine):
    return RecordStore(sessionmaker(bind=engine, autoflush=False))


@pytest.fixture
def broken_store(tmp_path):
    # schema never created: every call fails inside the driver
    eng = _engine(tmp_path / "empty.db")
    yield RecordStore(sessionmaker(bind=eng))
    eng.dispose()


@pytest.fixture
def clock():
    return FrozenClock(T0)


@pytest.fixture
def mailer():
    return MockMailerAdapter()


@pytest.fixture
def windows():
    return LifecycleWindows()


@pytest.fixture
def recorder(store, clock):
    return ActivityRecorder(store, clock)


@pytest.fixture
def sweep(store, mailer, clock, windows):
    return AbandonmentSweep(store, mailer, clock, windows, frontend_url="https://shop.test")


@pytest.fixture
def resolver(store, clock):
    return RecoveryResolver(store, clock)


@pytest.fixture
def discounts(store, mailer, clock, windows):
    return DiscountService(store, mailer, clock, windows, frontend_url="https://shop.test")


@pytest.fixture
def payment_failures(store, clock):
    return PaymentFailureService(store, clock)


@pytest.fixture
def orders(store, clock, discounts, payment_failures):
    return OrderService(store, clock, discounts, payment_failures)


@pytest.fixture
def client(store, mailer, clock, windows):
    app.dependency_overrides[deps.get_store] = lambda: store
    app.dependency_overrides[deps.get_dispatcher] = lambda: mailer
    app.dependency_overrides[deps.get_clock] = lambda: clock
    app.dependency_overrides[deps.get_windows] = lambda: windows
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
