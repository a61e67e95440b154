"""Status router - FastAPI endpoints for invoice and sales order status changes"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ...auth import Actor, get_current_actor
from ...database import get_db
from .schemas import (
    InvoiceStatusResponse,
    InvoiceStatusUpdate,
    OrderStatusResponse,
    OrderStatusUpdate,
)
from .service import StatusChangeService
from .transitions import EntityKind

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Status"])


def get_status_service(request: Request, db: Session = Depends(get_db)) -> StatusChangeService:
    """Dependency injection for StatusChangeService"""
    notifier = getattr(request.app.state, "notification_queue", None)
    return StatusChangeService(db, notifier=notifier)


@router.patch("/invoices/{invoice_id}/status", response_model=InvoiceStatusResponse)
async def update_invoice_status(
    invoice_id: int,
    data: InvoiceStatusUpdate,
    actor: Actor = Depends(get_current_actor),
    service: StatusChangeService = Depends(get_status_service),
):
    """Change an invoice's status and email the customer"""
    invoice = await service.transition(EntityKind.INVOICE, invoice_id, data.status, actor)
    return InvoiceStatusResponse(
        id=invoice.id,
        invoiceNumber=invoice.invoice_number,
        status=invoice.status,
        total=invoice.total,
        dueDate=invoice.due_date,
        paidAt=invoice.paid_at,
    )


@router.patch("/sales-orders/{order_id}/status", response_model=OrderStatusResponse)
async def update_order_status(
    order_id: int,
    data: OrderStatusUpdate,
    actor: Actor = Depends(get_current_actor),
    service: StatusChangeService = Depends(get_status_service),
):
    """Change a sales order's status"""
    order = await service.transition(EntityKind.ORDER, order_id, data.status, actor)
    return OrderStatusResponse(
        id=order.id,
        orderNumber=order.order_number,
        status=order.status,
        total=order.total,
        deliveryDate=order.delivery_date,
    )
