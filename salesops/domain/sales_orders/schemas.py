"""Sales order domain schemas - Pydantic models for responses"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class InvoiceResponse(BaseModel):
    """Schema for a generated invoice"""

    id: int
    public_id: Optional[str] = None
    invoiceNumber: str
    salesOrderId: int
    status: str
    total: float
    currency: Optional[str] = None
    dueDate: Optional[datetime] = None


class SalesOrderItemResponse(BaseModel):
    productId: int
    quantity: int
    unitPrice: float
    total: float


class SalesOrderResponse(BaseModel):
    """Schema for a sales order created from a quotation"""

    id: int
    public_id: Optional[str] = None
    orderNumber: str
    quotationId: Optional[int] = None
    status: str
    customerName: str
    customerEmail: Optional[str] = None
    total: float
    items: list[SalesOrderItemResponse] = []
