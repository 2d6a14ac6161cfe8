import time
from decimal import Decimal
import itertools

import pytest

from storefront import settings as app_settings
from storefront.addresses.models import AddressModel
from storefront.cart.repository import CartRepository
from storefront.db import Database, make_engine
from storefront.inventory.models import Product
from storefront.notifications import LoggingNotificationService
from storefront.orders.domain import AuthenticatedUser
from storefront.orders.providers import build_services
from storefront.payments.gateway import SimulatedPaymentGateway

_skus = itertools.count(1)


class _Overrides:
    """Attribute-style overrides of ``storefront.settings`` undone after the test."""

    def __init__(self, monkeypatch):
        object.__setattr__(self, "_mp", monkeypatch)

    def __setattr__(self, name, value):
        self._mp.setattr(app_settings, name, value, raising=False)

    def __getattr__(self, name):
        return getattr(app_settings, name)


@pytest.fixture
def settings(monkeypatch):
    return _Overrides(monkeypatch)


@pytest.fixture(autouse=True)
def use_stubs_for_tests(settings):
    settings.USE_HTTP_ADAPTERS = False


@pytest.fixture
def db(tmp_path):
    database = Database(make_engine(f"sqlite:///{tmp_path / 'storefront.db'}"))
    database.create_all()
    yield database
    database.engine.dispose()


@pytest.fixture
def make_product(db):
    def _make(name="Widget", price="19.99", stock=10, active=True, sku=None):
        with db.transaction() as s:
            p = Product(
                name=name,
                sku=sku or f"SKU-{next(_skus)}",
                price=Decimal(price),
                stock_quantity=stock,
                is_active=active,
            )
            s.add(p)
            s.flush()
            return p.id

    return _make


@pytest.fixture
def make_address(db):
    def _make(user_id=1, street="1 Main St", city="Springfield", state="IL", postal_code="62701", country="US"):
        with db.transaction() as s:
            a = AddressModel(
                user_id=user_id, street=street, city=city, state=state, postal_code=postal_code, country=country
            )
            s.add(a)
            s.flush()
            return a.id

    return _make


@pytest.fixture
def carts(db):
    return CartRepository(db)


@pytest.fixture
def gateway():
    return SimulatedPaymentGateway()


@pytest.fixture
def notifications():
    return LoggingNotificationService()


@pytest.fixture
def services(db, gateway, notifications):
    svc = build_services(db=db, gateway=gateway, notifications=notifications)
    yield svc
    svc.shutdown()


@pytest.fixture
def user():
    return AuthenticatedUser(user_id=1, email="alice@example.com")


@pytest.fixture
def other_user():
    return AuthenticatedUser(user_id=2, email="bob@example.com")


@pytest.fixture
def admin():
    return AuthenticatedUser(user_id=99, email="admin@example.com", roles=("ADMIN",))


def wait_for(predicate, timeout=3.0, interval=0.02):
    """Poll ``predicate`` until it is truthy or ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


@pytest.fixture
def eventually():
    return wait_for
