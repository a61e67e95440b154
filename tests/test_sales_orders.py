"""
Tests for quotation conversion and invoice generation.
"""

import re
from datetime import datetime, timedelta

import pytest

from conftest import make_invoice, make_order, make_product, make_quotation
from salesops.domain.sales_orders.service import (
    SalesOrderService,
    generate_order_number,
    next_invoice_number,
)
from salesops.exceptions import ConversionError, EntityNotFound, Forbidden
from salesops.models import Product, Quotation

FIXED_NOW = datetime(2024, 11, 1, 9, 30)


@pytest.fixture
def service(db):
    return SalesOrderService(db, clock=lambda: FIXED_NOW)


class TestNumbering:
    def test_first_invoice_number(self):
        assert next_invoice_number(None) == "INV-000001"

    def test_continues_sequence(self):
        assert next_invoice_number("INV-000041") == "INV-000042"

    def test_unparseable_restarts(self):
        assert next_invoice_number("LEGACY") == "INV-000001"

    def test_order_number_format(self):
        assert re.fullmatch(r"SO-\d{9}", generate_order_number("SO"))


class TestGenerateInvoice:
    def test_creates_draft_invoice(self, db, service, finance_actor):
        order = make_order(db, items=[(make_product(db, unit_price=40.0), 3)])

        invoice = service.generate_invoice(order.id, finance_actor)

        assert invoice.invoice_number == "INV-000001"
        assert invoice.status == "DRAFT"
        assert invoice.total == 120.0
        assert invoice.due_date == FIXED_NOW + timedelta(days=30)
        assert invoice.created_by_id == finance_actor.id

    def test_numbers_follow_latest_invoice(self, db, service, finance_actor):
        make_invoice(db, make_order(db, number="SO-1"), number="INV-000007")
        order = make_order(db, number="SO-2")

        assert service.generate_invoice(order.id, finance_actor).invoice_number == "INV-000008"

    def test_one_invoice_per_order(self, db, service, finance_actor):
        order = make_order(db)
        service.generate_invoice(order.id, finance_actor)

        with pytest.raises(ConversionError):
            service.generate_invoice(order.id, finance_actor)

    def test_sales_officer_forbidden(self, db, service, sales_actor):
        order = make_order(db)

        with pytest.raises(Forbidden):
            service.generate_invoice(order.id, sales_actor)

    def test_missing_order(self, service, finance_actor):
        with pytest.raises(EntityNotFound):
            service.generate_invoice(404, finance_actor)


class TestConvertQuotation:
    def test_converts_and_reserves_stock(self, db, service, sales_actor):
        widget = make_product(db, sku="W-1", stock_level=10, unit_price=5.0)
        gadget = make_product(db, sku="G-1", stock_level=2, unit_price=50.0)
        quotation = make_quotation(db, [(widget, 4), (gadget, 2)])

        order = service.convert_quotation(quotation.id, sales_actor)

        assert order.status == "PENDING"
        assert order.quotation_id == quotation.id
        assert order.customer_email == "jane@example.com"
        assert order.total == 120.0
        assert order.notes == "Deliver to loading dock"
        assert sorted((item.product_id, item.quantity) for item in order.items) == [
            (widget.id, 4),
            (gadget.id, 2),
        ]
        db.expire_all()
        assert db.get(Quotation, quotation.id).status == "CONVERTED"
        assert db.get(Product, widget.id).stock_level == 6
        assert db.get(Product, gadget.id).stock_level == 0

    def test_only_approved_quotations(self, db, service, sales_actor):
        quotation = make_quotation(db, [(make_product(db), 1)], status="SENT")

        with pytest.raises(ConversionError):
            service.convert_quotation(quotation.id, sales_actor)

    def test_insufficient_stock_changes_nothing(self, db, service, sales_actor):
        widget = make_product(db, sku="W-1", stock_level=1)
        quotation = make_quotation(db, [(widget, 2)])

        with pytest.raises(ConversionError):
            service.convert_quotation(quotation.id, sales_actor)

        db.expire_all()
        assert db.get(Quotation, quotation.id).status == "APPROVED"
        assert db.get(Product, widget.id).stock_level == 1

    def test_cannot_convert_twice(self, db, service, sales_actor):
        quotation = make_quotation(db, [(make_product(db), 1)])
        service.convert_quotation(quotation.id, sales_actor)

        with pytest.raises(ConversionError):
            service.convert_quotation(quotation.id, sales_actor)

    def test_finance_forbidden(self, db, service, finance_actor):
        quotation = make_quotation(db, [(make_product(db), 1)])

        with pytest.raises(Forbidden):
            service.convert_quotation(quotation.id, finance_actor)

    def test_missing_quotation(self, service, owner_actor):
        with pytest.raises(EntityNotFound):
            service.convert_quotation(404, owner_actor)
