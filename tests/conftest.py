"""
Shared pytest fixtures.

Provides:
- A file-backed SQLite record store (two sessions can race on it)
- Seed helpers for products, orders, invoices and quotations
- In-memory stand-ins for Redis / the ARQ pool and for mail transports
"""

from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.orm import sessionmaker

from salesops.auth import Actor, Role
from salesops.database import Base, create_db_engine
from salesops.email_service import MailTransport
from salesops.email_templates import EmailBranding
from salesops.metrics import Metrics
from salesops.models import (
    Invoice,
    Product,
    Quotation,
    QuotationItem,
    SalesOrder,
    SalesOrderItem,
)


# ============================================================================
# RECORD STORE
# ============================================================================


@pytest.fixture
def engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'salesops_test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def other_db(session_factory):
    """A second, independent session for concurrency scenarios"""
    session = session_factory()
    yield session
    session.close()


# ============================================================================
# ACTORS
# ============================================================================


@pytest.fixture
def finance_actor():
    return Actor(id=1, role=Role.FINANCE.value, email="finance@example.com")


@pytest.fixture
def sales_actor():
    return Actor(id=2, role=Role.SALES_OFFICER.value, email="sales@example.com")


@pytest.fixture
def owner_actor():
    return Actor(id=3, role=Role.OWNER.value, email="owner@example.com")


@pytest.fixture
def inventory_actor():
    return Actor(id=4, role=Role.INVENTORY_MANAGER.value, email="inventory@example.com")


# ============================================================================
# SEED HELPERS
# ============================================================================


def make_product(db, sku="SKU-1", stock_level=10, unit_price=25.0):
    product = Product(sku=sku, name=f"Product {sku}", unit_price=unit_price, stock_level=stock_level)
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


def make_order(db, status="PENDING", items=(), customer_email="jane@example.com", number="SO-000001001"):
    """items: iterable of (product, quantity)"""
    order = SalesOrder(
        order_number=number,
        status=status,
        customer_name="Jane Customer",
        customer_email=customer_email,
        total=sum(product.unit_price * quantity for product, quantity in items),
        items=[
            SalesOrderItem(
                product_id=product.id,
                quantity=quantity,
                unit_price=product.unit_price,
                total=product.unit_price * quantity,
            )
            for product, quantity in items
        ],
    )
    db.add(order)
    db.commit()
    db.refresh(order)
    return order


def make_invoice(db, order, status="PENDING", total=1234.56, due_date=None, number="INV-000001"):
    invoice = Invoice(
        invoice_number=number,
        sales_order_id=order.id,
        status=status,
        total=total,
        due_date=due_date if due_date is not None else datetime(2024, 12, 31),
    )
    db.add(invoice)
    db.commit()
    db.refresh(invoice)
    return invoice


def make_quotation(db, items, status="APPROVED", number="QT-000001"):
    """items: iterable of (product, quantity)"""
    quotation = Quotation(
        quotation_number=number,
        status=status,
        customer_name="Jane Customer",
        customer_email="jane@example.com",
        total=sum(product.unit_price * quantity for product, quantity in items),
        notes="Deliver to loading dock",
        items=[
            QuotationItem(
                product_id=product.id,
                quantity=quantity,
                unit_price=product.unit_price,
                total=product.unit_price * quantity,
            )
            for product, quantity in items
        ],
    )
    db.add(quotation)
    db.commit()
    db.refresh(quotation)
    return quotation


@pytest.fixture
def past_due():
    return datetime.utcnow() - timedelta(days=3)


# ============================================================================
# NOTIFICATION PIPELINE DOUBLES
# ============================================================================


@pytest.fixture
def metrics():
    return Metrics(name="test")


@pytest.fixture
def branding():
    return EmailBranding(
        company_name="Acme Supplies",
        company_email="finance@acme.test",
        company_phone="+1 (555) 000-1111",
        bank_name="First Test Bank",
        bank_account_name="Acme Supplies LLC",
        bank_account_number="1111-2222-3333",
    )


class FakeTransport(MailTransport):
    """Fails the first `failures` sends (or every send when None)"""

    name = "fake"

    def __init__(self, failures=0):
        self.failures = failures
        self.calls = []

    def send(self, message):
        self.calls.append(message)
        if self.failures is None or len(self.calls) <= self.failures:
            raise ConnectionError("SMTP relay unavailable")
        return f"msg-{len(self.calls)}"


class FakeRedis:
    """The handful of Redis / ArqRedis commands the pipeline uses"""

    def __init__(self):
        self.counters = {}
        self.expiries = {}
        self.hashes = {}
        self.enqueued = []
        self.queue_length = 0

    async def incr(self, key):
        self.counters[key] = self.counters.get(key, 0) + 1
        return self.counters[key]

    async def expire(self, key, seconds):
        self.expiries[key] = seconds
        return True

    async def hset(self, key, field, value):
        self.hashes.setdefault(key, {})[field] = value.encode("utf-8")
        return 1

    async def hget(self, key, field):
        return self.hashes.get(key, {}).get(field)

    async def hgetall(self, key):
        return {k.encode("utf-8"): v for k, v in self.hashes.get(key, {}).items()}

    async def hdel(self, key, field):
        return 1 if self.hashes.get(key, {}).pop(field, None) is not None else 0

    async def zcard(self, key):
        return self.queue_length

    async def enqueue_job(self, function, *args, _job_id=None, **kwargs):
        if any(job_id == _job_id for _, _, job_id in self.enqueued):
            return None
        self.enqueued.append((function, args, _job_id))
        self.queue_length += 1
        return SimpleNamespace(job_id=_job_id)

    async def close(self):
        return None


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def fake_sleep():
    return AsyncMock(return_value=None)
