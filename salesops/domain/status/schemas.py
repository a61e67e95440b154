"""Status domain schemas - Pydantic models for status change requests"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from .transitions import InvoiceStatus, OrderStatus


class InvoiceStatusUpdate(BaseModel):
    """Schema for changing an invoice's status"""

    status: InvoiceStatus


class OrderStatusUpdate(BaseModel):
    """Schema for changing a sales order's status"""

    status: OrderStatus


class InvoiceStatusResponse(BaseModel):
    id: int
    invoiceNumber: str
    status: str
    total: float
    dueDate: Optional[datetime] = None
    paidAt: Optional[datetime] = None


class OrderStatusResponse(BaseModel):
    id: int
    orderNumber: str
    status: str
    total: float
    deliveryDate: Optional[datetime] = None
