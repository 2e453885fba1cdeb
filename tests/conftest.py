import os
from pathlib import Path
from uuid import uuid4

import pytest
from protean.integrations.pytest import DomainFixture


def pytest_addoption(parser):
    parser.addoption(
        "--env",
        action="store",
        default="test",
        help="Config environment to run tests on",
    )


def pytest_sessionstart(session):
    """Select the config overlay before the domain is imported and initialised."""
    os.environ["PROTEAN_ENV"] = session.config.option.env
    os.environ.setdefault("PAYMENT_GATEWAY", "fake")
    os.environ.setdefault("STOREFRONT_SWEEPS", "off")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their directory location."""
    for item in items:
        test_path = str(Path(item.fspath))

        if "/domain/" in test_path:
            item.add_marker(pytest.mark.domain)
        elif "/application/" in test_path:
            item.add_marker(pytest.mark.application)
        elif "/integration/" in test_path:
            item.add_marker(pytest.mark.integration)
            if not any(m.name == "fast" for m in item.iter_markers()):
                item.add_marker(pytest.mark.slow)


@pytest.fixture(scope="session")
def storefront_bed():
    from storefront.domain import storefront

    bed = DomainFixture(storefront)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(storefront_bed):
    """Run every test inside the domain context and wipe all stores afterwards."""
    from protean import current_domain

    from storefront.notifications.channel import reset_channels

    with storefront_bed.domain_context():
        yield

        for _, provider in current_domain.providers.items():
            provider._data_reset()
        current_domain.event_store.store._data_reset()

    reset_channels()


# ---------------------------------------------------------------------------
# Shared builders
# ---------------------------------------------------------------------------
ADMIN_ID = "admin-001"
CUSTOMER_ID = "cust-001"


@pytest.fixture()
def settings():
    from storefront.config import Settings

    return Settings(
        payment_retry_interval_seconds=0,
        admin_user_ids=(ADMIN_ID,),
        deliver_in_background=False,
    )


@pytest.fixture()
def email():
    from storefront.notifications.channel.fake_email import FakeEmailAdapter

    return FakeEmailAdapter()


@pytest.fixture()
def services(settings, email):
    from storefront.payments.gateway import fake_registry
    from storefront.services import build_services

    return build_services(settings=settings, providers=fake_registry(), email=email)


@pytest.fixture()
def add_product(services):
    """Add a product and return its id."""

    def _add(name="Widget", price=10.0, stock=5, low_stock_threshold=2, sku=None):
        return services.inventory.add_product(
            sku=sku or f"SKU-{uuid4().hex[:8].upper()}",
            name=name,
            price=price,
            stock=stock,
            low_stock_threshold=low_stock_threshold,
        )

    return _add


@pytest.fixture()
def address():
    return {"street": "1 Moi Avenue", "city": "Nairobi", "country": "Kenya", "zip_code": "00100"}


@pytest.fixture()
def place_order(services, add_product, address):
    """Place a one-line order for a fresh product; returns the ``OrderResult``."""

    def _place(quantity=1, price=10.0, stock=5, user_id=CUSTOMER_ID, payment_method="mpesa", contact_email=None):
        product_id = add_product(name=f"Item {price} {stock}", price=price, stock=stock)
        return services.orders.create_order(
            user_id,
            [{"product_id": product_id, "quantity": quantity}],
            address,
            payment_method,
            contact_email=contact_email,
        )

    return _place


class RecordingConnection:
    """In-memory stand-in for a live client connection."""

    def __init__(self, connection_id="conn-1", acknowledge=True):
        self.connection_id = connection_id
        self.acknowledge = acknowledge
        self.messages: list[dict] = []

    def push(self, message, timeout):
        self.messages.append(message)
        return self.acknowledge


@pytest.fixture()
def connection():
    return RecordingConnection()


@pytest.fixture()
def connection_factory():
    return RecordingConnection


@pytest.fixture()
def api_client(services):
    """TestClient over the storefront routers, sharing the test's ``services``."""
    from fastapi import FastAPI
    from fastapi.testclient import TestClient

    from storefront import api
    from storefront.domain import storefront

    app = FastAPI()
    api.install(app, storefront, services)
    return TestClient(app)

