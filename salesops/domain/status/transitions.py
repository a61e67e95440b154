"""
Status state machines for invoices and sales orders.

Each entity kind has its own status enum and a transition table keyed by
every member of that enum. Terminal statuses map to an empty set. Only
direct, single-step transitions are listed; self-transitions are never
allowed.
"""

from enum import Enum
from typing import Optional, Union


class EntityKind(str, Enum):
    INVOICE = "invoice"
    ORDER = "order"


class InvoiceStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING = "PENDING"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class QuotationStatus(str, Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CONVERTED = "CONVERTED"


INVOICE_TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.DRAFT: frozenset({InvoiceStatus.PENDING, InvoiceStatus.CANCELLED}),
    InvoiceStatus.PENDING: frozenset(
        {InvoiceStatus.PAID, InvoiceStatus.OVERDUE, InvoiceStatus.CANCELLED}
    ),
    InvoiceStatus.PAID: frozenset(),
    InvoiceStatus.OVERDUE: frozenset({InvoiceStatus.PAID, InvoiceStatus.CANCELLED}),
    InvoiceStatus.CANCELLED: frozenset(),
}

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

STATUS_ENUMS: dict[EntityKind, type[Enum]] = {
    EntityKind.INVOICE: InvoiceStatus,
    EntityKind.ORDER: OrderStatus,
}

TRANSITION_TABLES: dict[EntityKind, dict] = {
    EntityKind.INVOICE: INVOICE_TRANSITIONS,
    EntityKind.ORDER: ORDER_TRANSITIONS,
}


def _check_tables_are_total() -> None:
    """Every entity kind needs a table, and every status of that kind a row"""
    for kind in EntityKind:
        status_enum = STATUS_ENUMS[kind]
        table = TRANSITION_TABLES[kind]
        missing = set(status_enum) - set(table)
        if missing:
            raise RuntimeError(
                f"Transition table for {kind.value} is missing statuses: "
                f"{sorted(s.value for s in missing)}"
            )
        for source, targets in table.items():
            if source in targets:
                raise RuntimeError(f"Self-transition declared for {kind.value} {source.value}")


_check_tables_are_total()


def parse_status(entity_kind: EntityKind, value: Union[str, Enum, None]) -> Optional[Enum]:
    """Coerce a raw status value to the kind's enum, or None if it is not one"""
    if value is None:
        return None
    status_enum = STATUS_ENUMS[EntityKind(entity_kind)]
    if isinstance(value, status_enum):
        return value
    raw = value.value if isinstance(value, Enum) else value
    try:
        return status_enum(raw)
    except ValueError:
        return None


def allowed_transitions(entity_kind: EntityKind, current_status) -> frozenset:
    """Statuses reachable in one step; empty for terminal or unknown statuses"""
    current = parse_status(entity_kind, current_status)
    if current is None:
        return frozenset()
    return TRANSITION_TABLES[EntityKind(entity_kind)][current]


def is_terminal(entity_kind: EntityKind, status) -> bool:
    current = parse_status(entity_kind, status)
    return current is not None and not TRANSITION_TABLES[EntityKind(entity_kind)][current]


def is_valid_transition(entity_kind: EntityKind, current_status, requested_status) -> bool:
    """
    Check whether requested_status is reachable from current_status in one step.

    Never raises: unknown statuses (or statuses belonging to the other
    entity kind) simply make the transition invalid.
    """
    try:
        kind = EntityKind(entity_kind)
    except ValueError:
        return False

    requested = parse_status(kind, requested_status)
    if requested is None:
        return False
    return requested in allowed_transitions(kind, current_status)
