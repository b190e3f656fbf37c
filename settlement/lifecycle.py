"""Order state machines and order/line totals shared by sale, purchase and return orders."""

from dataclasses import dataclass
from decimal import Decimal

from common.errors import StateConflictError
from common.money import compute_discount, to_money
from inventory.models import PurchaseOrder
from sales.models import ReturnOrder, SaleOrder

SALE_TRANSITIONS = {
    SaleOrder.Status.DRAFT: {SaleOrder.Status.COMPLETED},
    SaleOrder.Status.COMPLETED: {SaleOrder.Status.CANCELLED, SaleOrder.Status.REFUNDED},
}

PURCHASE_TRANSITIONS = {
    PurchaseOrder.Status.DRAFT: {PurchaseOrder.Status.ORDERED, PurchaseOrder.Status.CANCELLED},
    PurchaseOrder.Status.ORDERED: {
        PurchaseOrder.Status.PARTIAL_RECEIVED,
        PurchaseOrder.Status.RECEIVED,
        PurchaseOrder.Status.CANCELLED,
    },
    PurchaseOrder.Status.PARTIAL_RECEIVED: {PurchaseOrder.Status.PARTIAL_RECEIVED, PurchaseOrder.Status.RECEIVED},
}

RETURN_TRANSITIONS = {
    ReturnOrder.Status.DRAFT: {ReturnOrder.Status.COMPLETED, ReturnOrder.Status.CANCELLED},
}

TRANSITIONS = {
    SaleOrder: SALE_TRANSITIONS,
    PurchaseOrder: PURCHASE_TRANSITIONS,
    ReturnOrder: RETURN_TRANSITIONS,
}

EDITABLE_STATUSES = {
    SaleOrder: {SaleOrder.Status.DRAFT},
    PurchaseOrder: {PurchaseOrder.Status.DRAFT},
    ReturnOrder: {ReturnOrder.Status.DRAFT},
}

DELETABLE_STATUSES = {
    SaleOrder: {SaleOrder.Status.DRAFT},
    PurchaseOrder: {PurchaseOrder.Status.DRAFT, PurchaseOrder.Status.CANCELLED},
    ReturnOrder: {ReturnOrder.Status.DRAFT},
}

PURCHASE_PAYABLE_STATUSES = {
    PurchaseOrder.Status.ORDERED,
    PurchaseOrder.Status.PARTIAL_RECEIVED,
    PurchaseOrder.Status.RECEIVED,
}

PURCHASE_RECEIVABLE_STATUSES = {
    PurchaseOrder.Status.ORDERED,
    PurchaseOrder.Status.PARTIAL_RECEIVED,
}


def _label(order):
    return f"{order._meta.verbose_name} {order.code}"


def can_transition(order, target):
    return target in TRANSITIONS[type(order)].get(order.status, set())


def ensure_transition(order, target):
    if not can_transition(order, target):
        raise StateConflictError(
            f"Cannot move {_label(order)} from {order.status} to {target}.",
            details={"status": order.status, "target": target},
        )


def ensure_status(order, allowed, action):
    if order.status not in allowed:
        raise StateConflictError(
            f"Cannot {action} {_label(order)} while it is {order.status}.",
            details={"status": order.status, "allowed": sorted(allowed)},
        )


def ensure_editable(order):
    ensure_status(order, EDITABLE_STATUSES[type(order)], "edit")


def ensure_deletable(order):
    ensure_status(order, DELETABLE_STATUSES[type(order)], "delete")


def delete_order(order):
    ensure_deletable(order)
    order.delete()


def derive_purchase_status(lines):
    """Status implied by cumulative received quantities of an ordered purchase."""
    lines = list(lines)
    if lines and all(line.received_quantity >= line.quantity for line in lines):
        return PurchaseOrder.Status.RECEIVED
    if any(line.received_quantity > 0 for line in lines):
        return PurchaseOrder.Status.PARTIAL_RECEIVED
    return PurchaseOrder.Status.ORDERED


@dataclass(frozen=True)
class LineAmounts:
    gross: Decimal
    discount_amount: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    discount_amount: Decimal
    total: Decimal


def compute_line_amounts(quantity, unit_price, discount=None):
    gross = to_money(Decimal(str(quantity)) * Decimal(str(unit_price)))
    discount_amount = compute_discount(gross, discount)
    return LineAmounts(gross=gross, discount_amount=discount_amount, line_total=gross - discount_amount)


def compute_order_totals(line_totals, discount=None):
    subtotal = to_money(sum((Decimal(str(total)) for total in line_totals), Decimal("0")))
    discount_amount = compute_discount(subtotal, discount)
    return OrderTotals(subtotal=subtotal, discount_amount=discount_amount, total=subtotal - discount_amount)
