"""Status change repository - Conditional status writes for invoices and sales orders"""

from typing import Iterable

from sqlalchemy.orm import Session, selectinload

from ...models import Invoice, Product, SalesOrder
from .transitions import EntityKind

MODELS = {
    EntityKind.INVOICE: Invoice,
    EntityKind.ORDER: SalesOrder,
}


class StatusRepository:
    """Repository for status change database operations"""

    @staticmethod
    def get_entity(db: Session, entity_kind: EntityKind, entity_id: int):
        """Load an invoice (with its order) or a sales order (with its items)"""
        if entity_kind is EntityKind.INVOICE:
            return (
                db.query(Invoice)
                .options(selectinload(Invoice.sales_order))
                .filter(Invoice.id == entity_id)
                .first()
            )
        return (
            db.query(SalesOrder)
            .options(selectinload(SalesOrder.items))
            .filter(SalesOrder.id == entity_id)
            .first()
        )

    @staticmethod
    def compare_and_set_status(
        db: Session,
        entity_kind: EntityKind,
        entity_id: int,
        expected_status: str,
        new_status: str,
        **fields,
    ) -> bool:
        """
        Write the new status only if the row still has the expected status.
        Returns False when another request changed it first. Does not commit.
        """
        model = MODELS[entity_kind]
        values = {model.status: new_status}
        for key, value in fields.items():
            values[getattr(model, key)] = value

        updated = (
            db.query(model)
            .filter(model.id == entity_id, model.status == expected_status)
            .update(values, synchronize_session=False)
        )
        return updated == 1

    @staticmethod
    def restore_stock(db: Session, line_items: Iterable[tuple[int, int]]) -> None:
        """Add each (product_id, quantity) back to stock. Does not commit."""
        for product_id, quantity in line_items:
            db.query(Product).filter(Product.id == product_id).update(
                {Product.stock_level: Product.stock_level + quantity},
                synchronize_session=False,
            )

    @staticmethod
    def get_overdue_invoice_ids(db: Session, now, statuses: Iterable[str]) -> list[int]:
        rows = (
            db.query(Invoice.id)
            .filter(
                Invoice.status.in_(list(statuses)),
                Invoice.due_date.isnot(None),
                Invoice.due_date < now,
            )
            .order_by(Invoice.id.asc())
            .all()
        )
        return [row[0] for row in rows]
