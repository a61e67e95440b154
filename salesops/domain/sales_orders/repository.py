"""Sales order repository - Database operations for orders, quotations and invoices"""

from typing import Optional

from sqlalchemy.orm import Session, selectinload

from ...models import Invoice, Product, Quotation, QuotationItem, SalesOrder


class SalesOrderRepository:
    """Repository for sales order database operations"""

    @staticmethod
    def get_order(db: Session, order_id: int) -> Optional[SalesOrder]:
        return (
            db.query(SalesOrder)
            .options(selectinload(SalesOrder.items))
            .filter(SalesOrder.id == order_id)
            .first()
        )

    @staticmethod
    def get_invoice_for_order(db: Session, order_id: int) -> Optional[Invoice]:
        return db.query(Invoice).filter(Invoice.sales_order_id == order_id).first()

    @staticmethod
    def get_latest_invoice(db: Session) -> Optional[Invoice]:
        return db.query(Invoice).order_by(Invoice.id.desc()).first()

    @staticmethod
    def get_quotation(db: Session, quotation_id: int) -> Optional[Quotation]:
        return (
            db.query(Quotation)
            .options(selectinload(Quotation.items).selectinload(QuotationItem.product))
            .filter(Quotation.id == quotation_id)
            .first()
        )

    @staticmethod
    def get_order_for_quotation(db: Session, quotation_id: int) -> Optional[SalesOrder]:
        return db.query(SalesOrder).filter(SalesOrder.quotation_id == quotation_id).first()

    @staticmethod
    def reserve_stock(db: Session, product_id: int, quantity: int) -> bool:
        """Decrement stock only if enough is left. Does not commit."""
        updated = (
            db.query(Product)
            .filter(Product.id == product_id, Product.stock_level >= quantity)
            .update(
                {Product.stock_level: Product.stock_level - quantity},
                synchronize_session=False,
            )
        )
        return updated == 1
