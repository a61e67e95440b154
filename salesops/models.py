"""
Inventory, quotation, sales order and invoice models
"""

import uuid

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base
from .domain.status.transitions import InvoiceStatus, OrderStatus, QuotationStatus


def generate_public_id():
    """Generate a unique public ID for secure public access"""
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(255), nullable=True)
    role = Column(String(50), nullable=False, default="SALES_OFFICER")  # OWNER, ADMIN, FINANCE, ...
    created_at = Column(DateTime, server_default=func.now())


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    sku = Column(String(100), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    unit_price = Column(Float, nullable=False, default=0)
    stock_level = Column(Integer, nullable=False, default=0)
    reorder_level = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class Quotation(Base):
    __tablename__ = "quotations"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(String(36), unique=True, index=True, default=generate_public_id)
    quotation_number = Column(String(50), unique=True, nullable=False, index=True)
    status = Column(String(50), nullable=False, default=QuotationStatus.DRAFT.value)
    customer_name = Column(String(255), nullable=False)
    customer_email = Column(String(255), nullable=True)
    total = Column(Float, nullable=False, default=0)
    notes = Column(Text, nullable=True)
    terms = Column(Text, nullable=True)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    items = relationship("QuotationItem", back_populates="quotation", cascade="all, delete-orphan")
    sales_order = relationship("SalesOrder", back_populates="quotation", uselist=False)


class QuotationItem(Base):
    __tablename__ = "quotation_items"

    id = Column(Integer, primary_key=True, index=True)
    quotation_id = Column(Integer, ForeignKey("quotations.id"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Float, nullable=False)
    total = Column(Float, nullable=False)
    notes = Column(Text, nullable=True)

    quotation = relationship("Quotation", back_populates="items")
    product = relationship("Product")


class SalesOrder(Base):
    __tablename__ = "sales_orders"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(String(36), unique=True, index=True, default=generate_public_id)
    order_number = Column(String(50), unique=True, nullable=False, index=True)
    status = Column(String(50), nullable=False, default=OrderStatus.PENDING.value)
    customer_name = Column(String(255), nullable=False)
    customer_email = Column(String(255), nullable=True)
    total = Column(Float, nullable=False, default=0)
    notes = Column(Text, nullable=True)
    terms = Column(Text, nullable=True)
    quotation_id = Column(Integer, ForeignKey("quotations.id"), unique=True, nullable=True)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    # Stamped when the order ships
    delivery_date = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    items = relationship("SalesOrderItem", back_populates="sales_order", cascade="all, delete-orphan")
    quotation = relationship("Quotation", back_populates="sales_order")
    invoice = relationship("Invoice", back_populates="sales_order", uselist=False)


class SalesOrderItem(Base):
    __tablename__ = "sales_order_items"

    id = Column(Integer, primary_key=True, index=True)
    sales_order_id = Column(Integer, ForeignKey("sales_orders.id"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Float, nullable=False)
    total = Column(Float, nullable=False)
    notes = Column(Text, nullable=True)

    sales_order = relationship("SalesOrder", back_populates="items")
    product = relationship("Product")


class Invoice(Base):
    """Invoice issued against a single sales order"""

    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(String(36), unique=True, index=True, default=generate_public_id)
    invoice_number = Column(String(50), unique=True, nullable=False, index=True)
    sales_order_id = Column(Integer, ForeignKey("sales_orders.id"), unique=True, nullable=False)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    status = Column(String(50), nullable=False, default=InvoiceStatus.DRAFT.value)
    total = Column(Float, nullable=False)
    currency = Column(String(10), default="USD")

    # Dates
    issue_date = Column(DateTime, server_default=func.now())
    due_date = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    sales_order = relationship("SalesOrder", back_populates="invoice")
