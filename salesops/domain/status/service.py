"""Status change service - Validates, persists and announces invoice/order status changes"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ... import config
from ...auth import Actor, Role, SYSTEM_ACTOR, require_role
from ...email_templates import EmailBranding, render_invoice_status_email
from ...exceptions import EntityNotFound, InvalidTransition, PersistenceFailure
from ...models import Invoice
from ...notification_queue import NotificationJob, NotificationQueue
from .repository import StatusRepository
from .transitions import (
    EntityKind,
    InvoiceStatus,
    OrderStatus,
    is_terminal,
    is_valid_transition,
    parse_status,
)

logger = logging.getLogger(__name__)

ALLOWED_ROLES: dict[EntityKind, frozenset[Role]] = {
    EntityKind.INVOICE: frozenset({Role.OWNER, Role.ADMIN, Role.FINANCE, Role.SYSTEM}),
    EntityKind.ORDER: frozenset({Role.OWNER, Role.ADMIN, Role.SALES_OFFICER}),
}

SHIPPING_LEAD_TIME = timedelta(days=7)

ENTITY_LABELS = {
    EntityKind.INVOICE: "Invoice",
    EntityKind.ORDER: "Sales order",
}


class StatusChangeService:
    """Service layer for status transitions"""

    def __init__(
        self,
        db: Session,
        notifier: Optional[NotificationQueue] = None,
        branding: Optional[EmailBranding] = None,
        notifications_enabled: bool = config.ENABLE_EMAIL_NOTIFICATIONS,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.db = db
        self.repo = StatusRepository()
        self.notifier = notifier
        self.branding = branding
        self.notifications_enabled = notifications_enabled
        self.clock = clock

    def _load(self, entity_kind: EntityKind, entity_id: int):
        entity = self.repo.get_entity(self.db, entity_kind, entity_id)
        if entity is None:
            raise EntityNotFound(f"{ENTITY_LABELS[entity_kind]} not found")
        return entity

    def _side_effect_fields(self, entity_kind: EntityKind, requested) -> dict:
        """Extra columns written together with the new status"""
        if entity_kind is EntityKind.ORDER and requested is OrderStatus.SHIPPED:
            return {"delivery_date": self.clock() + SHIPPING_LEAD_TIME}
        if entity_kind is EntityKind.INVOICE and requested is InvoiceStatus.PAID:
            return {"paid_at": self.clock()}
        return {}

    async def transition(self, entity_kind: EntityKind, entity_id: int, requested_status, actor: Actor):
        """
        Move an invoice or sales order to a new status.

        Gates, in order: role check, transition check, atomic write (status,
        side-effect columns and stock restoration in one commit), then a
        best-effort customer notification for invoices.

        Raises:
            Forbidden: actor's role may not change this kind of entity
            EntityNotFound: no such invoice/order
            InvalidTransition: requested status unreachable from the current one,
                including when a concurrent request changed it first
            PersistenceFailure: the database write failed
        """
        kind = EntityKind(entity_kind)
        require_role(actor, ALLOWED_ROLES[kind], f"change {kind.value} status")

        entity = self._load(kind, entity_id)
        current = entity.status
        if not is_valid_transition(kind, current, requested_status):
            if is_terminal(kind, current):
                logger.info(f"ℹ️ {ENTITY_LABELS[kind]} {entity_id} is already {current}, no further changes")
            raise InvalidTransition(current, requested_status)

        requested = parse_status(kind, requested_status)
        fields = self._side_effect_fields(kind, requested)
        restore_items = []
        if kind is EntityKind.ORDER and requested is OrderStatus.CANCELLED:
            restore_items = [(item.product_id, item.quantity) for item in entity.items]

        try:
            if not self.repo.compare_and_set_status(
                self.db, kind, entity_id, current, requested.value, **fields
            ):
                self.db.rollback()
                fresh = self._load(kind, entity_id)
                logger.warning(
                    f"⚠️ {ENTITY_LABELS[kind]} {entity_id} changed concurrently: "
                    f"now {fresh.status}, rejecting {requested.value}"
                )
                raise InvalidTransition(fresh.status, requested)

            if restore_items:
                self.repo.restore_stock(self.db, restore_items)

            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to persist {kind.value} {entity_id} status change: {e}")
            raise PersistenceFailure(f"Failed to update {kind.value} status") from e

        self.db.refresh(entity)
        logger.info(f"✅ {ENTITY_LABELS[kind]} {entity_id} transitioned: {current} → {requested.value}")

        if kind is EntityKind.INVOICE:
            await self._notify_invoice_status(entity)

        return entity

    async def _notify_invoice_status(self, invoice: Invoice) -> Optional[str]:
        """Queue the customer email; failures are logged, never raised"""
        order = invoice.sales_order
        if not (self.notifications_enabled and self.notifier and order and order.customer_email):
            return None

        try:
            rendered = render_invoice_status_email(
                invoice.invoice_number,
                invoice.status,
                order.customer_name,
                invoice.total,
                invoice.due_date,
                branding=self.branding,
            )
            job_id = await self.notifier.enqueue(
                NotificationJob(
                    destination=order.customer_email,
                    subject=rendered.subject,
                    text_body=rendered.text,
                    html_body=rendered.html,
                )
            )
            return job_id
        except Exception as e:
            # The status change is already committed
            logger.warning(f"⚠️ Failed to queue status email for invoice {invoice.id}: {e}")
            return None

    async def mark_overdue_invoices(self) -> dict:
        """Move PENDING invoices past their due date to OVERDUE"""
        summary = {"checked": 0, "marked_overdue": 0, "skipped": 0}

        invoice_ids = self.repo.get_overdue_invoice_ids(
            self.db, self.clock(), [InvoiceStatus.PENDING.value]
        )
        for invoice_id in invoice_ids:
            summary["checked"] += 1
            try:
                await self.transition(
                    EntityKind.INVOICE, invoice_id, InvoiceStatus.OVERDUE, SYSTEM_ACTOR
                )
                summary["marked_overdue"] += 1
            except InvalidTransition as e:
                # Paid or cancelled since the query ran
                logger.info(f"ℹ️ Skipping invoice {invoice_id}: {e.message}")
                summary["skipped"] += 1

        logger.info(f"📊 Overdue invoice summary: {summary}")
        return summary
