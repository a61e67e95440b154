"""
Tests for the status change service.

Covers role checks, transition validation, side effects (stock, dates),
optimistic concurrency and the best-effort customer notification.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import make_invoice, make_order, make_product
from salesops.auth import SYSTEM_ACTOR
from salesops.domain.status.repository import StatusRepository
from salesops.domain.status.service import StatusChangeService
from salesops.domain.status.transitions import EntityKind, InvoiceStatus, OrderStatus
from salesops.exceptions import EntityNotFound, Forbidden, InvalidTransition, PersistenceFailure
from salesops.models import Invoice, Product, SalesOrder
from salesops.notification_queue import NotificationJob

FIXED_NOW = datetime(2024, 11, 1, 9, 30)


@pytest.fixture
def notifier():
    notifier = MagicMock()
    notifier.enqueue = AsyncMock(return_value="email:1")
    return notifier


@pytest.fixture
def service_factory(notifier, branding):
    def build(session, **kwargs):
        kwargs.setdefault("notifier", notifier)
        kwargs.setdefault("branding", branding)
        kwargs.setdefault("notifications_enabled", True)
        kwargs.setdefault("clock", lambda: FIXED_NOW)
        return StatusChangeService(session, **kwargs)

    return build


def stock_of(db, product_id):
    db.expire_all()
    return db.get(Product, product_id).stock_level


class TestAuthorization:
    @pytest.mark.asyncio
    async def test_sales_officer_cannot_change_invoice(self, db, service_factory, sales_actor, notifier):
        invoice = make_invoice(db, make_order(db))

        with pytest.raises(Forbidden):
            await service_factory(db).transition(EntityKind.INVOICE, invoice.id, "PAID", sales_actor)

        db.expire_all()
        assert db.get(Invoice, invoice.id).status == "PENDING"
        notifier.enqueue.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_finance_cannot_change_order(self, db, service_factory, finance_actor):
        order = make_order(db)

        with pytest.raises(Forbidden):
            await service_factory(db).transition(EntityKind.ORDER, order.id, "PROCESSING", finance_actor)

    @pytest.mark.asyncio
    async def test_inventory_manager_has_no_status_rights(self, db, service_factory, inventory_actor):
        invoice = make_invoice(db, make_order(db))

        with pytest.raises(Forbidden):
            await service_factory(db).transition(EntityKind.INVOICE, invoice.id, "PAID", inventory_actor)

    @pytest.mark.asyncio
    async def test_role_checked_before_lookup(self, db, service_factory, sales_actor):
        with pytest.raises(Forbidden):
            await service_factory(db).transition(EntityKind.INVOICE, 999, "PAID", sales_actor)


class TestValidation:
    @pytest.mark.asyncio
    async def test_unknown_entity(self, db, service_factory, finance_actor):
        with pytest.raises(EntityNotFound):
            await service_factory(db).transition(EntityKind.INVOICE, 999, "PAID", finance_actor)

    @pytest.mark.asyncio
    async def test_invalid_transition_leaves_record_untouched(self, db, service_factory, finance_actor, notifier):
        invoice = make_invoice(db, make_order(db), status="PAID")

        with pytest.raises(InvalidTransition) as exc_info:
            await service_factory(db).transition(EntityKind.INVOICE, invoice.id, "PENDING", finance_actor)

        assert exc_info.value.current_status == "PAID"
        assert exc_info.value.requested_status == "PENDING"
        assert exc_info.value.message == "Invalid status transition from PAID to PENDING"
        db.expire_all()
        assert db.get(Invoice, invoice.id).status == "PAID"
        notifier.enqueue.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_terminal_status_rejection_is_logged(self, db, service_factory, finance_actor, caplog):
        invoice = make_invoice(db, make_order(db), status="CANCELLED")

        with caplog.at_level(logging.INFO, logger="salesops.domain.status.service"):
            with pytest.raises(InvalidTransition):
                await service_factory(db).transition(EntityKind.INVOICE, invoice.id, "PAID", finance_actor)

        assert f"Invoice {invoice.id} is already CANCELLED" in caplog.text

    @pytest.mark.asyncio
    async def test_non_terminal_rejection_not_logged_as_final(self, db, service_factory, finance_actor, caplog):
        invoice = make_invoice(db, make_order(db), status="DRAFT")

        with caplog.at_level(logging.INFO, logger="salesops.domain.status.service"):
            with pytest.raises(InvalidTransition):
                await service_factory(db).transition(EntityKind.INVOICE, invoice.id, "PAID", finance_actor)

        assert "is already" not in caplog.text

    @pytest.mark.asyncio
    async def test_unknown_status_is_invalid(self, db, service_factory, finance_actor):
        invoice = make_invoice(db, make_order(db))

        with pytest.raises(InvalidTransition):
            await service_factory(db).transition(EntityKind.INVOICE, invoice.id, "REFUNDED", finance_actor)


class TestInvoiceTransitions:
    @pytest.mark.asyncio
    async def test_paid_stamps_paid_at_and_queues_email(self, db, service_factory, finance_actor, notifier):
        invoice = make_invoice(db, make_order(db))

        updated = await service_factory(db).transition(
            EntityKind.INVOICE, invoice.id, InvoiceStatus.PAID, finance_actor
        )

        assert updated.status == "PAID"
        assert updated.paid_at == FIXED_NOW
        notifier.enqueue.assert_awaited_once()
        job = notifier.enqueue.await_args.args[0]
        assert isinstance(job, NotificationJob)
        assert job.destination == "jane@example.com"
        assert job.subject == "Invoice INV-000001 - Paid Status Update"
        assert "Payment Instructions" not in job.text_body

    @pytest.mark.asyncio
    async def test_pending_email_carries_due_date(self, db, service_factory, finance_actor, notifier):
        invoice = make_invoice(db, make_order(db), status="DRAFT", due_date=datetime(2024, 12, 31))

        await service_factory(db).transition(EntityKind.INVOICE, invoice.id, "PENDING", finance_actor)

        job = notifier.enqueue.await_args.args[0]
        assert "Tuesday, December 31, 2024" in job.text_body
        assert "$1,234.56" in job.text_body

    @pytest.mark.asyncio
    async def test_enqueue_failure_does_not_undo_transition(self, db, service_factory, finance_actor, notifier):
        notifier.enqueue.side_effect = ConnectionError("redis down")
        invoice = make_invoice(db, make_order(db))

        updated = await service_factory(db).transition(EntityKind.INVOICE, invoice.id, "PAID", finance_actor)

        assert updated.status == "PAID"
        db.expire_all()
        assert db.get(Invoice, invoice.id).status == "PAID"

    @pytest.mark.asyncio
    async def test_no_email_without_customer_address(self, db, service_factory, finance_actor, notifier):
        invoice = make_invoice(db, make_order(db, customer_email=None))

        await service_factory(db).transition(EntityKind.INVOICE, invoice.id, "PAID", finance_actor)

        notifier.enqueue.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_notifications_can_be_disabled(self, db, service_factory, finance_actor, notifier):
        invoice = make_invoice(db, make_order(db))

        await service_factory(db, notifications_enabled=False).transition(
            EntityKind.INVOICE, invoice.id, "PAID", finance_actor
        )

        notifier.enqueue.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_persistence_failure_skips_email(self, db, service_factory, finance_actor, notifier, monkeypatch):
        from sqlalchemy.exc import OperationalError

        invoice = make_invoice(db, make_order(db))
        service = service_factory(db)

        def broken_commit():
            raise OperationalError("UPDATE invoices", {}, Exception("database is locked"))

        monkeypatch.setattr(db, "commit", broken_commit)

        with pytest.raises(PersistenceFailure):
            await service.transition(EntityKind.INVOICE, invoice.id, "PAID", finance_actor)

        notifier.enqueue.assert_not_awaited()


class TestOrderTransitions:
    @pytest.mark.asyncio
    async def test_shipped_sets_delivery_date(self, db, service_factory, sales_actor, notifier):
        order = make_order(db, status="PROCESSING")

        updated = await service_factory(db).transition(EntityKind.ORDER, order.id, OrderStatus.SHIPPED, sales_actor)

        assert updated.status == "SHIPPED"
        assert updated.delivery_date == FIXED_NOW + timedelta(days=7)
        # Only invoice changes notify customers
        notifier.enqueue.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_restores_stock(self, db, service_factory, sales_actor):
        widget = make_product(db, sku="W-1", stock_level=5)
        gadget = make_product(db, sku="G-1", stock_level=0)
        order = make_order(db, status="PROCESSING", items=[(widget, 3), (gadget, 2)])

        await service_factory(db).transition(EntityKind.ORDER, order.id, "CANCELLED", sales_actor)

        assert stock_of(db, widget.id) == 8
        assert stock_of(db, gadget.id) == 2

    @pytest.mark.asyncio
    async def test_retried_cancel_restores_stock_once(self, db, service_factory, sales_actor):
        widget = make_product(db, sku="W-1", stock_level=5)
        order = make_order(db, status="PENDING", items=[(widget, 4)])
        service = service_factory(db)

        await service.transition(EntityKind.ORDER, order.id, "CANCELLED", sales_actor)
        with pytest.raises(InvalidTransition):
            await service.transition(EntityKind.ORDER, order.id, "CANCELLED", sales_actor)

        assert stock_of(db, widget.id) == 9

    @pytest.mark.asyncio
    async def test_delivered_is_terminal(self, db, service_factory, owner_actor):
        order = make_order(db, status="DELIVERED")

        with pytest.raises(InvalidTransition):
            await service_factory(db).transition(EntityKind.ORDER, order.id, "CANCELLED", owner_actor)


class TestConcurrentTransitions:
    @pytest.mark.asyncio
    async def test_paid_and_cancelled_race_has_one_winner(self, db, other_db, service_factory, finance_actor):
        invoice = make_invoice(db, make_order(db))

        results = await asyncio.gather(
            service_factory(db).transition(EntityKind.INVOICE, invoice.id, "PAID", finance_actor),
            service_factory(other_db).transition(EntityKind.INVOICE, invoice.id, "CANCELLED", finance_actor),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], InvalidTransition)
        db.expire_all()
        assert db.get(Invoice, invoice.id).status in {"PAID", "CANCELLED"}

    @pytest.mark.asyncio
    async def test_stale_read_loses_compare_and_set(self, db, other_db, service_factory, finance_actor, notifier):
        """Both requests read PENDING; the slower write must be rejected"""
        invoice = make_invoice(db, make_order(db))
        slow = service_factory(db)
        real_compare_and_set = slow.repo.compare_and_set_status

        def cancel_first(*args, **kwargs):
            other_db.query(Invoice).filter(Invoice.id == invoice.id).update({Invoice.status: "CANCELLED"})
            other_db.commit()
            return real_compare_and_set(*args, **kwargs)

        slow.repo.compare_and_set_status = cancel_first

        with pytest.raises(InvalidTransition) as exc_info:
            await slow.transition(EntityKind.INVOICE, invoice.id, "PAID", finance_actor)

        assert exc_info.value.current_status == "CANCELLED"
        db.expire_all()
        stored = db.get(Invoice, invoice.id)
        assert stored.status == "CANCELLED"
        assert stored.paid_at is None
        notifier.enqueue.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_concurrent_cancels_restore_stock_once(self, db, other_db, service_factory, sales_actor):
        widget = make_product(db, sku="W-1", stock_level=1)
        order = make_order(db, status="PROCESSING", items=[(widget, 2)])
        slow = service_factory(db)
        real_compare_and_set = slow.repo.compare_and_set_status

        def other_cancels_first(session, kind, entity_id, expected, new, **fields):
            # The competing request commits its cancel (and restock) first
            assert StatusRepository.compare_and_set_status(other_db, kind, entity_id, expected, new)
            StatusRepository.restore_stock(other_db, [(widget.id, 2)])
            other_db.commit()
            return real_compare_and_set(session, kind, entity_id, expected, new, **fields)

        slow.repo.compare_and_set_status = other_cancels_first

        with pytest.raises(InvalidTransition):
            await slow.transition(EntityKind.ORDER, order.id, "CANCELLED", sales_actor)

        assert stock_of(db, widget.id) == 3


class TestOverdueSweep:
    @pytest.mark.asyncio
    async def test_marks_only_past_due_pending(self, db, service_factory, notifier):
        past = FIXED_NOW - timedelta(days=1)
        future = FIXED_NOW + timedelta(days=10)
        late = make_invoice(db, make_order(db, number="SO-1"), status="PENDING", due_date=past, number="INV-000001")
        current = make_invoice(db, make_order(db, number="SO-2"), status="PENDING", due_date=future, number="INV-000002")
        paid = make_invoice(db, make_order(db, number="SO-3"), status="PAID", due_date=past, number="INV-000003")

        summary = await service_factory(db).mark_overdue_invoices()

        assert summary == {"checked": 1, "marked_overdue": 1, "skipped": 0}
        db.expire_all()
        assert db.get(Invoice, late.id).status == "OVERDUE"
        assert db.get(Invoice, current.id).status == "PENDING"
        assert db.get(Invoice, paid.id).status == "PAID"
        job = notifier.enqueue.await_args.args[0]
        assert "Urgent Payment Required" in job.text_body

    @pytest.mark.asyncio
    async def test_system_actor_may_change_invoices(self, db, service_factory):
        invoice = make_invoice(db, make_order(db))

        updated = await service_factory(db).transition(EntityKind.INVOICE, invoice.id, "OVERDUE", SYSTEM_ACTOR)

        assert updated.status == "OVERDUE"

    @pytest.mark.asyncio
    async def test_system_actor_may_not_change_orders(self, db, service_factory):
        order = make_order(db)

        with pytest.raises(Forbidden):
            await service_factory(db).transition(EntityKind.ORDER, order.id, "PROCESSING", SYSTEM_ACTOR)

        db.expire_all()
        assert db.get(SalesOrder, order.id).status == "PENDING"
