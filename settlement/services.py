"""Settlement coordinator.

Each public function settles one business event: it validates the typed
request, computes the stock, debt and cash ledger writes the event implies and
commits them together with the order changes in a single database transaction.
Requests carrying an ``event_id`` are recorded in ``SettlementEvent`` so a
retried request returns the original result instead of appending ledger rows
twice. Requests without an ``event_id`` are not safe to retry.
"""

import logging
from collections import OrderedDict
from decimal import Decimal

from django.db import IntegrityError, transaction
from django.utils import timezone

from common.choices import PaymentMethod, moves_cash
from common.errors import DomainError, InternalError, NotFoundError, StateConflictError, ValidationError
from common.money import DiscountType, to_money, to_quantity
from common.references import Reference, resolve_reference
from common.utils import next_document_code
from finance.models import CashbookEntry, DebtAccount
from finance.services import (
    lock_account,
    lock_customer_account,
    lock_supplier_account,
    post_adjustment,
    post_invoice,
    post_payment,
    post_refund,
    record_cash_entry,
)
from inventory.models import Product, PurchaseOrder, PurchaseOrderLine, StockBatch, StockMovement, Supplier
from inventory.services import (
    StockDelta,
    convert_to_base_units,
    get_total_stock_quantity,
    post_stock_movements,
    resolve_warehouse,
    update_product_cost,
    validate_transaction_unit,
)
from sales.models import Customer, ReturnOrder, ReturnOrderLine, SaleOrder, SaleOrderLine
from settlement import lifecycle
from settlement.models import SettlementEvent
from settlement.requests import ReturnItem

logger = logging.getLogger("settlement")

SALE_CREATE = "sale.create"
SALE_COMPLETE = "sale.complete"
SALE_CANCEL = "sale.cancel"
SALE_REFUND = "sale.refund"
SALE_PARTIAL_REFUND = "sale.partial_refund"
SALE_PAYMENT = "sale.payment"
PURCHASE_CREATE = "purchase.create"
PURCHASE_UPDATE = "purchase.update"
PURCHASE_PLACE = "purchase.place"
PURCHASE_CANCEL = "purchase.cancel"
PURCHASE_RECEIVE = "purchase.receive"
PURCHASE_PAYMENT = "purchase.payment"
RETURN_CREATE = "return.create"
RETURN_COMPLETE = "return.complete"
RETURN_CANCEL = "return.cancel"
DEBT_PAYMENT = "debt.payment"
DEBT_ADJUSTMENT = "debt.adjustment"


def _fetch(model, pk, *, lock=False):
    queryset = model.objects.select_for_update() if lock else model.objects
    try:
        return queryset.get(pk=pk)
    except model.DoesNotExist:
        raise NotFoundError(f"{model._meta.verbose_name.title()} {pk} does not exist.") from None


def _validate_payment_method(method, field="payment_method"):
    if method not in PaymentMethod.values:
        raise ValidationError(f"Unknown payment method '{method}'.", details={field: method})


def _discount_fields(spec, amount):
    if spec is None:
        return {"discount_type": DiscountType.AMOUNT, "discount_value": Decimal("0"), "discount_amount": amount}
    return {"discount_type": spec.type, "discount_value": to_money(spec.value), "discount_amount": amount}


def _stock_warehouse(order_warehouse, warehouse_id, event_type):
    if warehouse_id:
        return resolve_warehouse(warehouse_id, event_type=event_type)
    if order_warehouse is not None and order_warehouse.is_active:
        return order_warehouse
    return resolve_warehouse(None, event_type=event_type)


def _build_lines(line_inputs):
    """Validate order line inputs and price them; returns ``[(product, input, LineAmounts)]``."""
    if not line_inputs:
        raise ValidationError("At least one line is required.", details={"lines": "empty"})

    priced = []
    for index, item in enumerate(line_inputs):
        product = Product.objects.filter(pk=item.product_id, is_active=True).first()
        if product is None:
            raise NotFoundError(f"Product {item.product_id} does not exist or is inactive.", details={"line": index})
        validate_transaction_unit(product, item.unit_id)
        quantity = to_quantity(item.quantity)
        if quantity <= 0:
            raise ValidationError("Line quantity must be greater than zero.", details={"line": index})
        if to_money(item.unit_price) < 0:
            raise ValidationError("Line unit price cannot be negative.", details={"line": index})
        priced.append((product, item, lifecycle.compute_line_amounts(quantity, to_money(item.unit_price), item.discount)))
    return priced


def _validate_paid_amount(paid, total):
    if paid < 0 or paid > total:
        raise ValidationError(
            "Paid amount must be between zero and the order total.",
            details={"paid_amount": str(paid), "total": str(total)},
        )


def _collect_return_items(sale_order, items):
    """Group requested return quantities by sale line and check them against what is still returnable."""
    if not items:
        raise ValidationError("At least one item is required.", details={"items": "empty"})

    lines = {line.pk: line for line in sale_order.lines.select_related("product")}
    requested = OrderedDict()
    for item in items:
        line = lines.get(item.sale_order_item_id)
        if line is None:
            raise ValidationError(
                "Item does not belong to the sale order.",
                details={"sale_order_item_id": str(item.sale_order_item_id)},
            )
        quantity = to_quantity(item.quantity)
        if quantity <= 0:
            raise ValidationError(
                "Return quantity must be greater than zero.",
                details={"sale_order_item_id": str(line.pk)},
            )
        requested[line.pk] = requested.get(line.pk, Decimal("0")) + quantity

    collected = []
    for line_id, quantity in requested.items():
        line = lines[line_id]
        if quantity > line.returnable_quantity:
            raise ValidationError(
                "Return quantity exceeds the quantity still returnable.",
                details={
                    "sale_order_item_id": str(line_id),
                    "requested": str(quantity),
                    "returnable": str(line.returnable_quantity),
                },
            )
        collected.append((line, quantity))
    return collected


def refund_line_amount(line, quantity):
    """Share of the line total for ``quantity`` of the sold quantity."""
    return to_money(Decimal(line.line_total) * Decimal(quantity) / Decimal(line.quantity))


def _apply_refund(
    sale_order,
    items,
    *,
    refund_method,
    update_receivables,
    create_cashbook_entry,
    warehouse,
    reference,
    reason,
    actor,
    when,
):
    """Restock returned quantities and post the refund to the debt or cash ledger."""
    refund_amount = Decimal("0.00")
    deltas = []
    for line, quantity in items:
        refund_amount += refund_line_amount(line, quantity)
        line.returned_quantity += quantity
        line.save(update_fields=["returned_quantity"])
        if warehouse is not None:
            deltas.append(
                StockDelta(
                    product=line.product,
                    warehouse=warehouse,
                    direction=StockMovement.Direction.IN,
                    quantity=convert_to_base_units(line.product, line.unit_id, quantity),
                    cost_price=line.cost_price,
                )
            )

    if deltas:
        post_stock_movements(deltas, reference=reference, transaction_date=when, created_by=actor, notes=reason)

    if refund_amount <= 0:
        return refund_amount

    description = f"Refund for {sale_order.code}"
    is_credit_sale = sale_order.payment_method == PaymentMethod.CREDIT
    if update_receivables and is_credit_sale and sale_order.customer_id:
        account = lock_customer_account(sale_order.customer)
        post_refund(
            account,
            refund_amount,
            reference=reference,
            description=description,
            payment_method=refund_method,
            transaction_date=when,
            created_by=actor,
        )
    if create_cashbook_entry and not is_credit_sale and moves_cash(refund_method):
        record_cash_entry(
            CashbookEntry.EntryType.EXPENSE,
            CashbookEntry.Category.REFUND,
            refund_amount,
            payment_method=refund_method,
            reference=reference,
            description=description,
            transaction_date=when,
            created_by=actor,
        )
    return refund_amount


def _record_order_payment(order, request, *, account, entry_type, category):
    amount = to_money(request.amount)
    if amount <= 0:
        raise ValidationError("Payment amount must be greater than zero.", details={"amount": str(amount)})
    remaining = order.total - order.paid_amount
    if amount > remaining:
        raise ValidationError(
            "Payment amount cannot be greater than the remaining order balance.",
            details={"amount": str(amount), "remaining": str(remaining)},
        )
    _validate_payment_method(request.payment_method)

    when = request.transaction_date or timezone.now()
    reference = Reference.for_instance(order)
    description = request.description or f"Payment for {order.code}"

    order.paid_amount += amount
    order.save(update_fields=["paid_amount", "updated_at"])

    if account is not None:
        post_payment(
            account,
            amount,
            floor_at_zero=True,
            reference=reference,
            description=description,
            payment_method=request.payment_method,
            transaction_date=when,
            created_by=request.actor,
        )
    if moves_cash(request.payment_method):
        record_cash_entry(
            entry_type,
            category,
            amount,
            payment_method=request.payment_method,
            reference=reference,
            description=description,
            transaction_date=when,
            created_by=request.actor,
        )
    return order


# Sale orders


def _complete_sale(order, *, warehouse_id, actor, when):
    lifecycle.ensure_transition(order, SaleOrder.Status.COMPLETED)
    reference = Reference.for_instance(order)

    warehouse = _stock_warehouse(order.warehouse, warehouse_id, SALE_COMPLETE)
    if warehouse is not None:
        post_stock_movements(
            [
                StockDelta(
                    product=line.product,
                    warehouse=warehouse,
                    direction=StockMovement.Direction.OUT,
                    quantity=convert_to_base_units(line.product, line.unit_id, line.quantity),
                    cost_price=line.cost_price,
                )
                for line in order.lines.select_related("product")
            ],
            reference=reference,
            transaction_date=when,
            created_by=actor,
            notes=f"Sale {order.code}",
        )
        order.warehouse = warehouse

    outstanding = order.total - order.paid_amount
    if order.payment_method == PaymentMethod.CREDIT and order.customer_id and outstanding > 0:
        post_invoice(
            lock_customer_account(order.customer),
            outstanding,
            due_date=order.payment_due_date,
            reference=reference,
            description=f"Sale {order.code}",
            payment_method=PaymentMethod.CREDIT,
            transaction_date=when,
            created_by=actor,
        )
    elif moves_cash(order.payment_method) and order.paid_amount > 0:
        record_cash_entry(
            CashbookEntry.EntryType.INCOME,
            CashbookEntry.Category.SALE,
            order.paid_amount,
            payment_method=order.payment_method,
            reference=reference,
            description=f"Sale {order.code}",
            transaction_date=when,
            created_by=actor,
        )

    order.status = SaleOrder.Status.COMPLETED
    order.completed_at = when
    order.save(update_fields=["status", "completed_at", "warehouse", "updated_at"])
    return order


def _create_sale(request):
    customer = None
    if request.customer_id:
        customer = Customer.objects.filter(pk=request.customer_id, is_active=True).first()
        if customer is None:
            raise NotFoundError(f"Customer {request.customer_id} does not exist or is inactive.")
    _validate_payment_method(request.payment_method)
    if request.payment_method == PaymentMethod.CREDIT and customer is None:
        raise ValidationError("Credit sales require a customer.", details={"customer_id": None})

    priced = _build_lines(request.lines)
    totals = lifecycle.compute_order_totals([amounts.line_total for _, _, amounts in priced], request.discount)
    paid = to_money(request.paid_amount)
    _validate_paid_amount(paid, totals.total)

    warehouse = resolve_warehouse(request.warehouse_id, event_type=SALE_CREATE) if request.warehouse_id else None
    when = request.order_date or timezone.now()
    order = SaleOrder.objects.create(
        code=next_document_code(SaleOrder, "SO"),
        customer=customer,
        warehouse=warehouse,
        order_date=when,
        payment_due_date=request.payment_due_date,
        subtotal=totals.subtotal,
        total=totals.total,
        payment_method=request.payment_method,
        paid_amount=paid,
        notes=request.notes,
        created_by=request.actor,
        **_discount_fields(request.discount, totals.discount_amount),
    )
    SaleOrderLine.objects.bulk_create(
        [
            SaleOrderLine(
                sale_order=order,
                product=product,
                unit_id=item.unit_id,
                quantity=to_quantity(item.quantity),
                unit_price=to_money(item.unit_price),
                cost_price=product.cost_price,
                line_total=amounts.line_total,
                **_discount_fields(item.discount, amounts.discount_amount),
            )
            for product, item, amounts in priced
        ]
    )

    if request.complete:
        _complete_sale(order, warehouse_id=None, actor=request.actor, when=when)
    return order


def _handle_sale_complete(request):
    order = _fetch(SaleOrder, request.order_id, lock=True)
    return _complete_sale(
        order,
        warehouse_id=request.warehouse_id,
        actor=request.actor,
        when=request.transaction_date or timezone.now(),
    )


def _handle_sale_cancel(request):
    order = _fetch(SaleOrder, request.order_id, lock=True)
    lifecycle.ensure_transition(order, SaleOrder.Status.CANCELLED)

    warehouse = _stock_warehouse(order.warehouse, request.warehouse_id, SALE_CANCEL)
    when = request.transaction_date or timezone.now()
    if warehouse is not None:
        post_stock_movements(
            [
                StockDelta(
                    product=line.product,
                    warehouse=warehouse,
                    direction=StockMovement.Direction.IN,
                    quantity=convert_to_base_units(line.product, line.unit_id, line.returnable_quantity),
                    cost_price=line.cost_price,
                )
                for line in order.lines.select_related("product")
                if line.returnable_quantity > 0
            ],
            reference=Reference.for_instance(order),
            transaction_date=when,
            created_by=request.actor,
            notes=f"Cancelled sale {order.code}",
        )

    order.status = SaleOrder.Status.CANCELLED
    order.save(update_fields=["status", "updated_at"])
    return order


def _handle_sale_refund(request):
    order = _fetch(SaleOrder, request.sale_order_id, lock=True)
    lifecycle.ensure_transition(order, SaleOrder.Status.REFUNDED)
    _validate_payment_method(request.refund_method, "refund_method")

    items = [(line, line.returnable_quantity) for line in order.lines.select_related("product") if line.returnable_quantity > 0]
    when = request.transaction_date or timezone.now()
    _apply_refund(
        order,
        items,
        refund_method=request.refund_method,
        update_receivables=request.update_receivables,
        create_cashbook_entry=request.create_cashbook_entry,
        warehouse=_stock_warehouse(order.warehouse, request.warehouse_id, SALE_REFUND),
        reference=Reference.for_instance(order),
        reason=request.reason,
        actor=request.actor,
        when=when,
    )

    order.status = SaleOrder.Status.REFUNDED
    order.save(update_fields=["status", "updated_at"])
    return order


def _handle_sale_partial_refund(request):
    order = _fetch(SaleOrder, request.sale_order_id, lock=True)
    lifecycle.ensure_status(order, {SaleOrder.Status.COMPLETED}, "refund")
    _validate_payment_method(request.refund_method, "refund_method")

    items = _collect_return_items(order, request.items)
    _apply_refund(
        order,
        items,
        refund_method=request.refund_method,
        update_receivables=request.update_receivables,
        create_cashbook_entry=request.create_cashbook_entry,
        warehouse=_stock_warehouse(order.warehouse, request.warehouse_id, SALE_PARTIAL_REFUND),
        reference=Reference.for_instance(order),
        reason=request.reason,
        actor=request.actor,
        when=request.transaction_date or timezone.now(),
    )
    order.save(update_fields=["updated_at"])
    return order


def _handle_sale_payment(request):
    order = _fetch(SaleOrder, request.order_id, lock=True)
    lifecycle.ensure_status(order, {SaleOrder.Status.COMPLETED}, "record a payment on")
    account = None
    if order.payment_method == PaymentMethod.CREDIT and order.customer_id:
        account = lock_customer_account(order.customer)
    return _record_order_payment(
        order,
        request,
        account=account,
        entry_type=CashbookEntry.EntryType.INCOME,
        category=CashbookEntry.Category.SALE,
    )


# Purchase orders


def _apply_purchase_fields(order, request):
    supplier = Supplier.objects.filter(pk=request.supplier_id, is_active=True).first()
    if supplier is None:
        raise NotFoundError(f"Supplier {request.supplier_id} does not exist or is inactive.")
    _validate_payment_method(request.payment_method)

    priced = _build_lines(request.lines)
    totals = lifecycle.compute_order_totals([amounts.line_total for _, _, amounts in priced], request.discount)
    paid = to_money(request.paid_amount)
    _validate_paid_amount(paid, totals.total)

    order.supplier = supplier
    order.expected_delivery_date = request.expected_delivery_date
    order.subtotal = totals.subtotal
    order.total = totals.total
    order.payment_method = request.payment_method
    order.paid_amount = paid
    order.notes = request.notes
    for field, value in _discount_fields(request.discount, totals.discount_amount).items():
        setattr(order, field, value)
    if request.order_date:
        order.order_date = request.order_date
    order.save()

    PurchaseOrderLine.objects.bulk_create(
        [
            PurchaseOrderLine(
                purchase_order=order,
                product=product,
                unit_id=item.unit_id,
                quantity=to_quantity(item.quantity),
                unit_price=to_money(item.unit_price),
                line_total=amounts.line_total,
                **_discount_fields(item.discount, amounts.discount_amount),
            )
            for product, item, amounts in priced
        ]
    )
    return order


def _place_purchase(order, *, actor, when):
    lifecycle.ensure_transition(order, PurchaseOrder.Status.ORDERED)
    reference = Reference.for_instance(order)

    outstanding = order.total - order.paid_amount
    if order.payment_method == PaymentMethod.CREDIT:
        if outstanding > 0:
            post_invoice(
                lock_supplier_account(order.supplier),
                outstanding,
                due_date=order.expected_delivery_date,
                reference=reference,
                description=f"Purchase {order.code}",
                payment_method=PaymentMethod.CREDIT,
                transaction_date=when,
                created_by=actor,
            )
    elif order.paid_amount > 0:
        record_cash_entry(
            CashbookEntry.EntryType.EXPENSE,
            CashbookEntry.Category.PURCHASE,
            order.paid_amount,
            payment_method=order.payment_method,
            reference=reference,
            description=f"Purchase {order.code}",
            transaction_date=when,
            created_by=actor,
        )

    order.status = PurchaseOrder.Status.ORDERED
    order.save(update_fields=["status", "updated_at"])
    return order


def _handle_purchase_create(request):
    order = PurchaseOrder(
        code=next_document_code(PurchaseOrder, "PO"),
        order_date=request.order_date or timezone.now(),
        created_by=request.actor,
    )
    _apply_purchase_fields(order, request)
    if request.place:
        _place_purchase(order, actor=request.actor, when=order.order_date)
    return order


def _handle_purchase_update(request):
    order = _fetch(PurchaseOrder, request.purchase_order_id, lock=True)
    lifecycle.ensure_editable(order)
    order.lines.all().delete()
    _apply_purchase_fields(order, request.order)
    if request.order.place:
        _place_purchase(order, actor=request.order.actor, when=timezone.now())
    return order


def _handle_purchase_place(request):
    order = _fetch(PurchaseOrder, request.order_id, lock=True)
    return _place_purchase(order, actor=request.actor, when=request.transaction_date or timezone.now())


def _handle_purchase_cancel(request):
    order = _fetch(PurchaseOrder, request.order_id, lock=True)
    lifecycle.ensure_transition(order, PurchaseOrder.Status.CANCELLED)
    if order.lines.filter(received_quantity__gt=0).exists():
        raise StateConflictError(f"Purchase order {order.code} has received goods and cannot be cancelled.")
    order.status = PurchaseOrder.Status.CANCELLED
    order.save(update_fields=["status", "updated_at"])
    return order


def _handle_purchase_receive(request):
    order = _fetch(PurchaseOrder, request.purchase_order_id, lock=True)
    lifecycle.ensure_status(order, lifecycle.PURCHASE_RECEIVABLE_STATUSES, "receive goods for")
    if not request.warehouse_id:
        raise ValidationError("A warehouse is required to receive goods.", details={"warehouse_id": None})
    warehouse = resolve_warehouse(request.warehouse_id, event_type=PURCHASE_RECEIVE)

    lines = {line.pk: line for line in order.lines.select_related("product")}
    received = OrderedDict()
    for item in request.items:
        line = lines.get(item.order_item_id)
        if line is None:
            raise ValidationError(
                "Item does not belong to the purchase order.",
                details={"order_item_id": str(item.order_item_id)},
            )
        quantity = to_quantity(item.received_quantity)
        if quantity < 0:
            raise ValidationError("Received quantity cannot be negative.", details={"order_item_id": str(line.pk)})
        if quantity == 0:
            continue
        entry = received.setdefault(line.pk, {"quantity": Decimal("0"), "batches": []})
        entry["quantity"] += quantity
        if item.expiry_date:
            entry["batches"].append((item, quantity))

    if not received:
        raise ValidationError("At least one item must have a received quantity.", details={"items": "empty"})

    when = request.received_date or timezone.now()
    deltas = []
    receipt_costs = OrderedDict()
    for line_id, entry in received.items():
        line = lines[line_id]
        quantity = entry["quantity"]
        if quantity > line.remaining_quantity:
            raise ValidationError(
                "Received quantity exceeds the quantity still outstanding.",
                details={
                    "order_item_id": str(line_id),
                    "received": str(quantity),
                    "remaining": str(line.remaining_quantity),
                },
            )

        base_quantity = convert_to_base_units(line.product, line.unit_id, quantity)
        paid_value = line.line_total * quantity / line.quantity
        unit_cost = to_money(paid_value / base_quantity)
        totals = receipt_costs.setdefault(line.product_id, {"quantity": Decimal("0"), "value": Decimal("0")})
        totals["quantity"] += base_quantity
        totals["value"] += paid_value
        deltas.append(
            StockDelta(
                product=line.product,
                warehouse=warehouse,
                direction=StockMovement.Direction.IN,
                quantity=base_quantity,
                cost_price=unit_cost,
            )
        )

        line.received_quantity += quantity
        line.save(update_fields=["received_quantity"])

        for item, batch_quantity in entry["batches"]:
            StockBatch.objects.create(
                product=line.product,
                warehouse=warehouse,
                purchase_order=order,
                batch_number=item.batch_number,
                quantity=convert_to_base_units(line.product, line.unit_id, batch_quantity),
                expiry_date=item.expiry_date,
                received_date=when,
            )

    # One cost update per product, before this receipt's stock lands.
    for product_id, totals in receipt_costs.items():
        product = Product.objects.select_for_update().get(pk=product_id)
        update_product_cost(product, totals["quantity"], totals["value"] / totals["quantity"], get_total_stock_quantity(product_id))

    post_stock_movements(
        deltas,
        reference=Reference.for_instance(order),
        transaction_date=when,
        created_by=request.actor,
        notes=request.notes or f"Received for {order.code}",
    )

    status = lifecycle.derive_purchase_status(lines.values())
    lifecycle.ensure_transition(order, status)
    order.status = status
    order.received_date = when
    order.save(update_fields=["status", "received_date", "updated_at"])
    return order


def _handle_purchase_payment(request):
    order = _fetch(PurchaseOrder, request.order_id, lock=True)
    lifecycle.ensure_status(order, lifecycle.PURCHASE_PAYABLE_STATUSES, "record a payment on")
    account = lock_supplier_account(order.supplier) if order.payment_method == PaymentMethod.CREDIT else None
    return _record_order_payment(
        order,
        request,
        account=account,
        entry_type=CashbookEntry.EntryType.EXPENSE,
        category=CashbookEntry.Category.PURCHASE,
    )


# Return orders


def _complete_return(return_order, *, warehouse_id, actor, when):
    lifecycle.ensure_transition(return_order, ReturnOrder.Status.COMPLETED)
    sale_order = _fetch(SaleOrder, return_order.sale_order_id, lock=True)
    lifecycle.ensure_status(sale_order, {SaleOrder.Status.COMPLETED}, "return goods for")

    # Draft returns do not reserve quantities, so the bound is checked again here.
    return_lines = list(return_order.lines.all())
    items = _collect_return_items(sale_order, _return_lines_as_items(return_lines))

    refund_amount = _apply_refund(
        sale_order,
        items,
        refund_method=return_order.refund_method,
        update_receivables=return_order.update_receivables,
        create_cashbook_entry=return_order.create_cashbook_entry,
        warehouse=_stock_warehouse(return_order.warehouse, warehouse_id, RETURN_COMPLETE),
        reference=Reference.for_instance(return_order),
        reason=return_order.reason,
        actor=actor,
        when=when,
    )

    return_order.refund_amount = refund_amount
    return_order.status = ReturnOrder.Status.COMPLETED
    return_order.completed_at = when
    return_order.save(update_fields=["refund_amount", "status", "completed_at", "updated_at"])
    return return_order


def _return_lines_as_items(return_lines):
    return [ReturnItem(sale_order_item_id=line.sale_order_line_id, quantity=line.quantity) for line in return_lines]


def _handle_return_create(request):
    sale_order = _fetch(SaleOrder, request.sale_order_id, lock=True)
    lifecycle.ensure_status(sale_order, {SaleOrder.Status.COMPLETED}, "create a return for")
    _validate_payment_method(request.refund_method, "refund_method")
    items = _collect_return_items(sale_order, request.items)
    notes = {item.sale_order_item_id: item.notes for item in request.items}

    warehouse = resolve_warehouse(request.warehouse_id, event_type=RETURN_CREATE) if request.warehouse_id else None
    line_totals = [(line, quantity, refund_line_amount(line, quantity)) for line, quantity in items]
    total = to_money(sum((amount for _, _, amount in line_totals), Decimal("0")))
    when = request.return_date or timezone.now()

    return_order = ReturnOrder.objects.create(
        code=next_document_code(ReturnOrder, "RO"),
        sale_order=sale_order,
        customer_id=sale_order.customer_id,
        warehouse=warehouse,
        return_date=when,
        subtotal=total,
        total=total,
        refund_amount=total,
        refund_method=request.refund_method,
        update_receivables=request.update_receivables,
        create_cashbook_entry=request.create_cashbook_entry,
        reason=request.reason,
        notes=request.notes,
        created_by=request.actor,
    )
    ReturnOrderLine.objects.bulk_create(
        [
            ReturnOrderLine(
                return_order=return_order,
                sale_order_line=line,
                product_id=line.product_id,
                unit_id=line.unit_id,
                quantity=quantity,
                unit_price=line.unit_price,
                line_total=amount,
                notes=notes.get(line.pk, ""),
            )
            for line, quantity, amount in line_totals
        ]
    )

    if request.complete:
        _complete_return(return_order, warehouse_id=None, actor=request.actor, when=when)
    return return_order


def _handle_return_complete(request):
    return_order = _fetch(ReturnOrder, request.order_id, lock=True)
    return _complete_return(
        return_order,
        warehouse_id=request.warehouse_id,
        actor=request.actor,
        when=request.transaction_date or timezone.now(),
    )


def _handle_return_cancel(request):
    return_order = _fetch(ReturnOrder, request.order_id, lock=True)
    lifecycle.ensure_transition(return_order, ReturnOrder.Status.CANCELLED)
    return_order.status = ReturnOrder.Status.CANCELLED
    return_order.save(update_fields=["status", "updated_at"])
    return return_order


# Debt accounts


def _handle_debt_payment(request):
    account = lock_account(request.account_id)
    if request.payment_method:
        _validate_payment_method(request.payment_method)
    when = request.transaction_date or timezone.now()
    txn = post_payment(
        account,
        request.amount,
        description=request.description,
        payment_method=request.payment_method,
        transaction_date=when,
        created_by=request.actor,
    )
    if moves_cash(request.payment_method):
        receivable = account.kind == DebtAccount.Kind.RECEIVABLE
        record_cash_entry(
            CashbookEntry.EntryType.INCOME if receivable else CashbookEntry.EntryType.EXPENSE,
            CashbookEntry.Category.DEBT_COLLECTION if receivable else CashbookEntry.Category.DEBT_PAYMENT,
            txn.amount,
            payment_method=request.payment_method,
            reference=Reference.for_instance(txn),
            description=request.description or f"Debt {txn.transaction_type} for {account.counterparty}",
            transaction_date=when,
            created_by=request.actor,
        )
    return txn


def _handle_debt_adjustment(request):
    account = lock_account(request.account_id)
    return post_adjustment(
        account,
        request.amount,
        description=request.description,
        transaction_date=request.transaction_date or timezone.now(),
        created_by=request.actor,
    )


HANDLERS = {
    SALE_CREATE: _create_sale,
    SALE_COMPLETE: _handle_sale_complete,
    SALE_CANCEL: _handle_sale_cancel,
    SALE_REFUND: _handle_sale_refund,
    SALE_PARTIAL_REFUND: _handle_sale_partial_refund,
    SALE_PAYMENT: _handle_sale_payment,
    PURCHASE_CREATE: _handle_purchase_create,
    PURCHASE_UPDATE: _handle_purchase_update,
    PURCHASE_PLACE: _handle_purchase_place,
    PURCHASE_CANCEL: _handle_purchase_cancel,
    PURCHASE_RECEIVE: _handle_purchase_receive,
    PURCHASE_PAYMENT: _handle_purchase_payment,
    RETURN_CREATE: _handle_return_create,
    RETURN_COMPLETE: _handle_return_complete,
    RETURN_CANCEL: _handle_return_cancel,
    DEBT_PAYMENT: _handle_debt_payment,
    DEBT_ADJUSTMENT: _handle_debt_adjustment,
}


def _request_actor(request):
    if hasattr(request, "actor"):
        return request.actor
    return getattr(getattr(request, "order", None), "actor", "")


def _request_event_id(request):
    if hasattr(request, "event_id"):
        return request.event_id
    return getattr(getattr(request, "order", None), "event_id", None)


def _log_extra(event_type, event_id, request, result=None):
    extra = {"event_type": event_type, "event_id": str(event_id) if event_id else None}
    for attr in ("order_id", "sale_order_id", "purchase_order_id"):
        value = getattr(request, attr, None)
        if value:
            extra["order_id"] = str(value)
    if getattr(request, "account_id", None):
        extra["account_id"] = str(request.account_id)
    if getattr(request, "warehouse_id", None):
        extra["warehouse_id"] = str(request.warehouse_id)
    if result is not None and "order_id" not in extra and "account_id" not in extra:
        extra["order_id"] = str(result.pk)
    return extra


def _replayed_result(event_type, event_id):
    recorded = SettlementEvent.objects.filter(event_id=event_id).first()
    if recorded is None:
        return None
    if recorded.event_type != event_type:
        raise StateConflictError(
            f"Event {event_id} was already used for {recorded.event_type}.",
            details={"event_id": str(event_id), "event_type": recorded.event_type},
        )
    return resolve_reference(recorded.reference)


def settle(event_type, request):
    """Run the handler for ``event_type`` as one atomic settlement and return its result."""
    handler = HANDLERS.get(event_type)
    if handler is None:
        raise ValidationError(f"Unsupported event type '{event_type}'.", details={"event_type": event_type})

    event_id = _request_event_id(request)
    extra = _log_extra(event_type, event_id, request)
    try:
        with transaction.atomic():
            if event_id:
                replayed = _replayed_result(event_type, event_id)
                if replayed is not None:
                    logger.info("settlement_replayed", extra=extra)
                    return replayed

            result = handler(request)
            if event_id:
                SettlementEvent.objects.create(
                    event_id=event_id,
                    event_type=event_type,
                    created_by=_request_actor(request),
                    **Reference.for_instance(result).as_fields(),
                )
    except DomainError as exc:
        log = logger.error if isinstance(exc, InternalError) else logger.warning
        log("settlement_rejected", extra={**extra, "error_code": exc.code})
        raise
    except IntegrityError as exc:
        replayed = _replayed_result(event_type, event_id) if event_id else None
        if replayed is not None:
            logger.info("settlement_replayed", extra=extra)
            return replayed
        logger.exception("settlement_failed", extra=extra)
        raise InternalError("The settlement could not be recorded.") from exc
    except Exception as exc:
        logger.exception("settlement_failed", extra=extra)
        raise InternalError("The settlement could not be completed.") from exc

    logger.info("settlement_committed", extra=_log_extra(event_type, event_id, request, result))
    return result


def create_sale_order(request):
    return settle(SALE_CREATE, request)


def complete_sale_order(request):
    return settle(SALE_COMPLETE, request)


def cancel_sale_order(request):
    return settle(SALE_CANCEL, request)


def refund_sale_order(request):
    return settle(SALE_REFUND, request)


def partial_refund_sale_order(request):
    return settle(SALE_PARTIAL_REFUND, request)


def record_sale_payment(request):
    return settle(SALE_PAYMENT, request)


def create_purchase_order(request):
    return settle(PURCHASE_CREATE, request)


def update_purchase_order(request):
    return settle(PURCHASE_UPDATE, request)


def place_purchase_order(request):
    return settle(PURCHASE_PLACE, request)


def cancel_purchase_order(request):
    return settle(PURCHASE_CANCEL, request)


def receive_goods(request):
    return settle(PURCHASE_RECEIVE, request)


def record_purchase_payment(request):
    return settle(PURCHASE_PAYMENT, request)


def create_return_order(request):
    return settle(RETURN_CREATE, request)


def complete_return_order(request):
    return settle(RETURN_COMPLETE, request)


def cancel_return_order(request):
    return settle(RETURN_CANCEL, request)


def pay_debt(request):
    return settle(DEBT_PAYMENT, request)


def adjust_debt(request):
    return settle(DEBT_ADJUSTMENT, request)


def delete_order(model, order_id):
    """Delete a sale, purchase or return order that its lifecycle still allows to be removed."""
    with transaction.atomic():
        order = _fetch(model, order_id, lock=True)
        lifecycle.delete_order(order)
