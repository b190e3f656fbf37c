"""Typed inputs accepted by the settlement coordinator."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from common.choices import PaymentMethod
from common.money import DiscountSpec


@dataclass(frozen=True)
class OrderLineInput:
    product_id: uuid.UUID
    unit_id: uuid.UUID
    quantity: Decimal
    unit_price: Decimal
    discount: DiscountSpec | None = None


@dataclass(frozen=True)
class SaleOrderRequest:
    lines: list[OrderLineInput]
    customer_id: uuid.UUID | None = None
    payment_method: str = PaymentMethod.CASH
    paid_amount: Decimal = Decimal("0")
    discount: DiscountSpec | None = None
    payment_due_date: date | None = None
    warehouse_id: uuid.UUID | None = None
    order_date: datetime | None = None
    notes: str = ""
    complete: bool = True
    actor: str = ""
    event_id: uuid.UUID | None = None


@dataclass(frozen=True)
class PurchaseOrderRequest:
    supplier_id: uuid.UUID
    lines: list[OrderLineInput]
    payment_method: str = PaymentMethod.CASH
    paid_amount: Decimal = Decimal("0")
    discount: DiscountSpec | None = None
    expected_delivery_date: date | None = None
    order_date: datetime | None = None
    notes: str = ""
    place: bool = False
    actor: str = ""
    event_id: uuid.UUID | None = None


@dataclass(frozen=True)
class PurchaseOrderUpdateRequest:
    purchase_order_id: uuid.UUID
    order: PurchaseOrderRequest


@dataclass(frozen=True)
class StatusChangeRequest:
    order_id: uuid.UUID
    warehouse_id: uuid.UUID | None = None
    transaction_date: datetime | None = None
    actor: str = ""
    event_id: uuid.UUID | None = None


@dataclass(frozen=True)
class GoodsReceiptItem:
    order_item_id: uuid.UUID
    received_quantity: Decimal
    expiry_date: date | None = None
    batch_number: str = ""


@dataclass(frozen=True)
class GoodsReceiptRequest:
    purchase_order_id: uuid.UUID
    warehouse_id: uuid.UUID
    items: list[GoodsReceiptItem]
    received_date: datetime | None = None
    notes: str = ""
    actor: str = ""
    event_id: uuid.UUID | None = None


@dataclass(frozen=True)
class ReturnItem:
    sale_order_item_id: uuid.UUID
    quantity: Decimal
    notes: str = ""


@dataclass(frozen=True)
class ReturnOrderRequest:
    sale_order_id: uuid.UUID
    items: list[ReturnItem]
    refund_method: str = PaymentMethod.CASH
    reason: str = ""
    notes: str = ""
    update_receivables: bool = True
    create_cashbook_entry: bool = True
    complete: bool = True
    warehouse_id: uuid.UUID | None = None
    return_date: datetime | None = None
    actor: str = ""
    event_id: uuid.UUID | None = None


@dataclass(frozen=True)
class PartialRefundRequest:
    sale_order_id: uuid.UUID
    items: list[ReturnItem]
    refund_method: str = PaymentMethod.CASH
    reason: str = ""
    update_receivables: bool = True
    create_cashbook_entry: bool = True
    warehouse_id: uuid.UUID | None = None
    transaction_date: datetime | None = None
    actor: str = ""
    event_id: uuid.UUID | None = None


@dataclass(frozen=True)
class FullRefundRequest:
    sale_order_id: uuid.UUID
    refund_method: str = PaymentMethod.CASH
    reason: str = ""
    update_receivables: bool = True
    create_cashbook_entry: bool = True
    warehouse_id: uuid.UUID | None = None
    transaction_date: datetime | None = None
    actor: str = ""
    event_id: uuid.UUID | None = None


@dataclass(frozen=True)
class OrderPaymentRequest:
    order_id: uuid.UUID
    amount: Decimal
    payment_method: str = PaymentMethod.CASH
    description: str = ""
    transaction_date: datetime | None = None
    actor: str = ""
    event_id: uuid.UUID | None = None


@dataclass(frozen=True)
class DebtPaymentRequest:
    account_id: uuid.UUID
    amount: Decimal
    payment_method: str | None = PaymentMethod.CASH
    description: str = ""
    transaction_date: datetime | None = None
    actor: str = ""
    event_id: uuid.UUID | None = None


@dataclass(frozen=True)
class DebtAdjustmentRequest:
    account_id: uuid.UUID
    amount: Decimal
    description: str = ""
    transaction_date: datetime | None = None
    actor: str = ""
    event_id: uuid.UUID | None = None
