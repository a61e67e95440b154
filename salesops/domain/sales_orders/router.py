"""Sales order router - FastAPI endpoints for quotation conversion and invoicing"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import Actor, get_current_actor
from ...database import get_db
from .schemas import InvoiceResponse, SalesOrderItemResponse, SalesOrderResponse
from .service import SalesOrderService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Sales Orders"])


def get_sales_order_service(db: Session = Depends(get_db)) -> SalesOrderService:
    """Dependency injection for SalesOrderService"""
    return SalesOrderService(db)


@router.post("/sales-orders/{order_id}/generate-invoice", response_model=InvoiceResponse)
async def generate_invoice(
    order_id: int,
    actor: Actor = Depends(get_current_actor),
    service: SalesOrderService = Depends(get_sales_order_service),
):
    """Create the draft invoice for a sales order"""
    invoice = service.generate_invoice(order_id, actor)
    return InvoiceResponse(
        id=invoice.id,
        public_id=invoice.public_id,
        invoiceNumber=invoice.invoice_number,
        salesOrderId=invoice.sales_order_id,
        status=invoice.status,
        total=invoice.total,
        currency=invoice.currency,
        dueDate=invoice.due_date,
    )


@router.post("/quotations/{quotation_id}/convert", response_model=SalesOrderResponse)
async def convert_quotation(
    quotation_id: int,
    actor: Actor = Depends(get_current_actor),
    service: SalesOrderService = Depends(get_sales_order_service),
):
    """Convert an approved quotation into a sales order"""
    order = service.convert_quotation(quotation_id, actor)
    return SalesOrderResponse(
        id=order.id,
        public_id=order.public_id,
        orderNumber=order.order_number,
        quotationId=order.quotation_id,
        status=order.status,
        customerName=order.customer_name,
        customerEmail=order.customer_email,
        total=order.total,
        items=[
            SalesOrderItemResponse(
                productId=item.product_id,
                quantity=item.quantity,
                unitPrice=item.unit_price,
                total=item.total,
            )
            for item in order.items
        ],
    )
