"""Sales order service - Quotation conversion and invoice generation"""

import logging
import random
import time
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...auth import Actor, Role, require_role
from ...exceptions import ConversionError, EntityNotFound, PersistenceFailure
from ...models import Invoice, Quotation, SalesOrder, SalesOrderItem
from ..status.transitions import InvoiceStatus, OrderStatus, QuotationStatus
from .repository import SalesOrderRepository

logger = logging.getLogger(__name__)

INVOICE_ROLES = frozenset({Role.OWNER, Role.ADMIN, Role.FINANCE})
CONVERSION_ROLES = frozenset({Role.OWNER, Role.ADMIN, Role.SALES_OFFICER})

PAYMENT_TERM = timedelta(days=30)


def generate_order_number(prefix: str) -> str:
    """SO-123456789: last six digits of the epoch millis plus three random digits"""
    timestamp = str(int(time.time() * 1000))
    suffix = f"{random.randint(0, 999):03d}"
    return f"{prefix}-{timestamp[-6:]}{suffix}"


def next_invoice_number(latest_number=None) -> str:
    """INV-000041 -> INV-000042; starts at INV-000001"""
    last = 0
    if latest_number:
        try:
            last = int(latest_number.split("-")[1])
        except (IndexError, ValueError):
            logger.warning(f"⚠️ Unparseable invoice number {latest_number}, restarting sequence")
    return f"INV-{last + 1:06d}"


class SalesOrderService:
    """Service layer for sales order workflows"""

    def __init__(self, db: Session, clock: Callable[[], datetime] = datetime.utcnow):
        self.db = db
        self.repo = SalesOrderRepository()
        self.clock = clock

    def generate_invoice(self, order_id: int, actor: Actor) -> Invoice:
        """Create the DRAFT invoice for a sales order (one invoice per order)"""
        require_role(actor, INVOICE_ROLES, "generate invoices")

        order = self.repo.get_order(self.db, order_id)
        if not order:
            raise EntityNotFound("Sales order not found")

        if self.repo.get_invoice_for_order(self.db, order.id):
            raise ConversionError("Invoice already exists for this sales order")

        latest = self.repo.get_latest_invoice(self.db)
        invoice = Invoice(
            invoice_number=next_invoice_number(latest.invoice_number if latest else None),
            status=InvoiceStatus.DRAFT.value,
            sales_order_id=order.id,
            created_by_id=actor.id,
            due_date=self.clock() + PAYMENT_TERM,
            total=order.total,
        )

        try:
            self.db.add(invoice)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to create invoice for order {order_id}: {e}")
            raise PersistenceFailure("Failed to create invoice") from e

        self.db.refresh(invoice)
        logger.info(f"✅ Invoice {invoice.invoice_number} generated for order {order.order_number}")
        return invoice

    def convert_quotation(self, quotation_id: int, actor: Actor) -> SalesOrder:
        """
        Turn an approved quotation into a PENDING sales order.

        Reserves stock for every line item; order, quotation status and stock
        levels are committed together.
        """
        require_role(actor, CONVERSION_ROLES, "convert quotations")

        quotation: Quotation = self.repo.get_quotation(self.db, quotation_id)
        if not quotation:
            raise EntityNotFound("Quotation not found")

        if quotation.status != QuotationStatus.APPROVED.value:
            raise ConversionError("Only approved quotations can be converted to sales orders")

        if self.repo.get_order_for_quotation(self.db, quotation.id):
            raise ConversionError("Quotation is already converted to a sales order")

        for item in quotation.items:
            if item.quantity > item.product.stock_level:
                raise ConversionError(f"Insufficient stock for product {item.product.name}")

        order = SalesOrder(
            order_number=generate_order_number("SO"),
            status=OrderStatus.PENDING.value,
            customer_name=quotation.customer_name,
            customer_email=quotation.customer_email,
            total=quotation.total,
            notes=quotation.notes,
            terms=quotation.terms,
            quotation_id=quotation.id,
            created_by_id=actor.id,
            items=[
                SalesOrderItem(
                    product_id=item.product_id,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    total=item.total,
                    notes=item.notes,
                )
                for item in quotation.items
            ],
        )

        try:
            self.db.add(order)
            quotation.status = QuotationStatus.CONVERTED.value
            for item in quotation.items:
                if not self.repo.reserve_stock(self.db, item.product_id, item.quantity):
                    self.db.rollback()
                    raise ConversionError(f"Insufficient stock for product {item.product.name}")
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to convert quotation {quotation_id}: {e}")
            raise PersistenceFailure("Failed to convert quotation") from e

        self.db.refresh(order)
        logger.info(
            f"✅ Quotation {quotation.quotation_number} converted to order {order.order_number}"
        )
        return order
