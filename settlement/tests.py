import random
import threading
import uuid
from datetime import date
from decimal import Decimal
from unittest import mock, skipUnless

from django.core.management import call_command
from django.db import connection, transaction
from django.test import TestCase, TransactionTestCase, override_settings

from common.choices import PaymentMethod
from common.errors import ConfigurationError, InternalError, NotFoundError, StateConflictError, ValidationError
from common.money import DiscountSpec, DiscountType, compute_discount
from common.testing import RetailFixtureMixin
from finance.models import CashbookEntry, DebtAccount, DebtTransaction
from inventory.models import PurchaseOrder, PurchaseOrderLine, StockBatch, StockMovement, Warehouse
from inventory.services import StockDelta, get_movement_balance, get_stock_quantity, post_stock_movements
from sales.models import ReturnOrder, SaleOrder
from settlement import lifecycle
from settlement.checks import check_default_warehouse
from settlement.models import SettlementEvent
from settlement.requests import (
    DebtAdjustmentRequest,
    DebtPaymentRequest,
    FullRefundRequest,
    GoodsReceiptItem,
    GoodsReceiptRequest,
    OrderLineInput,
    OrderPaymentRequest,
    PartialRefundRequest,
    PurchaseOrderRequest,
    PurchaseOrderUpdateRequest,
    ReturnItem,
    ReturnOrderRequest,
    SaleOrderRequest,
    StatusChangeRequest,
)
from settlement.services import (
    adjust_debt,
    cancel_purchase_order,
    cancel_return_order,
    cancel_sale_order,
    complete_return_order,
    complete_sale_order,
    create_purchase_order,
    create_return_order,
    create_sale_order,
    delete_order,
    partial_refund_sale_order,
    pay_debt,
    place_purchase_order,
    receive_goods,
    record_purchase_payment,
    record_sale_payment,
    refund_line_amount,
    refund_sale_order,
    settle,
    update_purchase_order,
)


class LifecycleTests(TestCase):
    def test_sale_transitions(self):
        draft = SaleOrder(code="SO-1", status=SaleOrder.Status.DRAFT)
        completed = SaleOrder(code="SO-2", status=SaleOrder.Status.COMPLETED)
        cancelled = SaleOrder(code="SO-3", status=SaleOrder.Status.CANCELLED)

        self.assertTrue(lifecycle.can_transition(draft, SaleOrder.Status.COMPLETED))
        self.assertFalse(lifecycle.can_transition(draft, SaleOrder.Status.REFUNDED))
        self.assertTrue(lifecycle.can_transition(completed, SaleOrder.Status.REFUNDED))
        self.assertTrue(lifecycle.can_transition(completed, SaleOrder.Status.CANCELLED))
        self.assertFalse(lifecycle.can_transition(cancelled, SaleOrder.Status.COMPLETED))

        with self.assertRaises(StateConflictError) as ctx:
            lifecycle.ensure_transition(cancelled, SaleOrder.Status.COMPLETED)
        self.assertEqual(ctx.exception.details["status"], SaleOrder.Status.CANCELLED)

    def test_purchase_and_return_transitions(self):
        ordered = PurchaseOrder(code="PO-1", status=PurchaseOrder.Status.ORDERED)
        partial = PurchaseOrder(code="PO-2", status=PurchaseOrder.Status.PARTIAL_RECEIVED)
        received = PurchaseOrder(code="PO-3", status=PurchaseOrder.Status.RECEIVED)

        self.assertTrue(lifecycle.can_transition(ordered, PurchaseOrder.Status.PARTIAL_RECEIVED))
        self.assertTrue(lifecycle.can_transition(partial, PurchaseOrder.Status.PARTIAL_RECEIVED))
        self.assertFalse(lifecycle.can_transition(partial, PurchaseOrder.Status.CANCELLED))
        self.assertFalse(lifecycle.can_transition(received, PurchaseOrder.Status.CANCELLED))

        draft_return = ReturnOrder(code="RO-1", status=ReturnOrder.Status.DRAFT)
        done_return = ReturnOrder(code="RO-2", status=ReturnOrder.Status.COMPLETED)
        self.assertTrue(lifecycle.can_transition(draft_return, ReturnOrder.Status.CANCELLED))
        self.assertFalse(lifecycle.can_transition(done_return, ReturnOrder.Status.CANCELLED))

    def test_editable_and_deletable_statuses(self):
        lifecycle.ensure_editable(PurchaseOrder(code="PO-1", status=PurchaseOrder.Status.DRAFT))
        lifecycle.ensure_deletable(PurchaseOrder(code="PO-2", status=PurchaseOrder.Status.CANCELLED))

        with self.assertRaises(StateConflictError):
            lifecycle.ensure_editable(PurchaseOrder(code="PO-3", status=PurchaseOrder.Status.ORDERED))
        with self.assertRaises(StateConflictError):
            lifecycle.ensure_deletable(SaleOrder(code="SO-1", status=SaleOrder.Status.COMPLETED))

    def test_derive_purchase_status_from_received_quantities(self):
        line = PurchaseOrderLine(quantity=Decimal("10"), received_quantity=Decimal("0"))
        self.assertEqual(lifecycle.derive_purchase_status([line]), PurchaseOrder.Status.ORDERED)

        line.received_quantity = Decimal("4")
        self.assertEqual(lifecycle.derive_purchase_status([line]), PurchaseOrder.Status.PARTIAL_RECEIVED)

        line.received_quantity = Decimal("10")
        other = PurchaseOrderLine(quantity=Decimal("2"), received_quantity=Decimal("0"))
        self.assertEqual(lifecycle.derive_purchase_status([line, other]), PurchaseOrder.Status.PARTIAL_RECEIVED)

        other.received_quantity = Decimal("2")
        self.assertEqual(lifecycle.derive_purchase_status([line, other]), PurchaseOrder.Status.RECEIVED)

    def test_discounts_are_bounded_by_base(self):
        self.assertEqual(compute_discount(Decimal("100000"), DiscountSpec(DiscountType.PERCENT, Decimal("10"))), Decimal("10000.00"))
        self.assertEqual(compute_discount(Decimal("100000"), DiscountSpec(DiscountType.PERCENT, Decimal("150"))), Decimal("100000.00"))
        self.assertEqual(compute_discount(Decimal("5000"), DiscountSpec(DiscountType.AMOUNT, Decimal("9000"))), Decimal("5000.00"))
        self.assertEqual(compute_discount(Decimal("5000"), DiscountSpec(DiscountType.AMOUNT, Decimal("-1"))), Decimal("0.00"))
        self.assertEqual(compute_discount(Decimal("5000"), None), Decimal("0.00"))
        self.assertEqual(compute_discount(Decimal("10.005"), DiscountSpec(DiscountType.PERCENT, Decimal("50"))), Decimal("5.01"))

    def test_order_totals_apply_line_then_order_discounts(self):
        line = lifecycle.compute_line_amounts(Decimal("3"), Decimal("2500"), DiscountSpec(DiscountType.AMOUNT, Decimal("500")))
        self.assertEqual(line.gross, Decimal("7500.00"))
        self.assertEqual(line.line_total, Decimal("7000.00"))

        totals = lifecycle.compute_order_totals([line.line_total, Decimal("3000")], DiscountSpec(DiscountType.PERCENT, Decimal("10")))
        self.assertEqual(totals.subtotal, Decimal("10000.00"))
        self.assertEqual(totals.discount_amount, Decimal("1000.00"))
        self.assertEqual(totals.total, Decimal("9000.00"))


class SaleSettlementTests(RetailFixtureMixin, TestCase):
    def setUp(self):
        self.create_fixtures()
        self.add_stock(self.product, 20)

    def test_cash_sale_moves_stock_and_records_income(self):
        order = self.make_sale(quantity="10", unit_price="10000")

        self.assertEqual(order.status, SaleOrder.Status.COMPLETED)
        self.assertEqual(order.total, Decimal("100000.00"))
        self.assertEqual(order.warehouse_id, self.warehouse.id)
        self.assertEqual(get_stock_quantity(self.product.id, self.warehouse.id), Decimal("10"))

        movement = StockMovement.objects.get(reference_type="sale_order", reference_id=order.id)
        self.assertEqual(movement.direction, StockMovement.Direction.OUT)
        self.assertEqual(movement.quantity, Decimal("10"))
        self.assertEqual(movement.cost_price, Decimal("6000.00"))

        entry = CashbookEntry.objects.get(reference_id=order.id)
        self.assertEqual(entry.entry_type, CashbookEntry.EntryType.INCOME)
        self.assertEqual(entry.category, CashbookEntry.Category.SALE)
        self.assertEqual(entry.amount, Decimal("100000.00"))
        self.assertFalse(DebtTransaction.objects.exists())

    def test_credit_sale_posts_invoice_with_due_date(self):
        order = self.make_sale(payment_method=PaymentMethod.CREDIT, customer=self.customer, payment_due_date=date(2030, 1, 31))

        account = DebtAccount.objects.get(customer=self.customer)
        self.assertEqual(account.kind, DebtAccount.Kind.RECEIVABLE)
        self.assertEqual(account.balance, Decimal("100000.00"))
        self.assertEqual(account.payment_due_date, date(2030, 1, 31))

        txn = account.transactions.get()
        self.assertEqual(txn.transaction_type, DebtTransaction.Type.INVOICE)
        self.assertEqual(txn.reference_id, order.id)
        self.assertFalse(CashbookEntry.objects.exists())

    def test_credit_sale_requires_customer(self):
        with self.assertRaises(ValidationError):
            self.make_sale(payment_method=PaymentMethod.CREDIT)
        self.assertFalse(SaleOrder.objects.exists())

    def test_sale_rejects_paid_amount_above_total_and_unknown_unit(self):
        with self.assertRaises(ValidationError):
            self.make_sale(paid_amount="100001")

        with self.assertRaises(ValidationError):
            create_sale_order(
                SaleOrderRequest(
                    lines=[OrderLineInput(product_id=self.product.id, unit_id=self.kg.id, quantity=Decimal("1"), unit_price=Decimal("10"))],
                )
            )

        with self.assertRaises(NotFoundError):
            create_sale_order(
                SaleOrderRequest(
                    lines=[OrderLineInput(product_id=uuid.uuid4(), unit_id=self.piece.id, quantity=Decimal("1"), unit_price=Decimal("10"))],
                )
            )

    def test_sale_in_stocking_unit_converts_to_base_units(self):
        self.add_stock(self.boxed, 24)

        order = create_sale_order(
            SaleOrderRequest(
                lines=[OrderLineInput(product_id=self.boxed.id, unit_id=self.box.id, quantity=Decimal("1"), unit_price=Decimal("60000"))],
                paid_amount=Decimal("60000"),
            )
        )

        self.assertEqual(order.status, SaleOrder.Status.COMPLETED)
        self.assertEqual(get_stock_quantity(self.boxed.id, self.warehouse.id), Decimal("12"))

    def test_draft_sale_completes_later_into_requested_warehouse(self):
        self.add_stock(self.product, 5, warehouse=self.backroom)
        order = self.make_sale(quantity="5", complete=False)

        self.assertEqual(order.status, SaleOrder.Status.DRAFT)
        self.assertFalse(StockMovement.objects.filter(reference_id=order.id).exists())

        completed = complete_sale_order(StatusChangeRequest(order_id=order.id, warehouse_id=self.backroom.id))

        self.assertEqual(completed.status, SaleOrder.Status.COMPLETED)
        self.assertIsNotNone(completed.completed_at)
        self.assertEqual(get_stock_quantity(self.product.id, self.backroom.id), Decimal("0"))
        self.assertEqual(get_stock_quantity(self.product.id, self.warehouse.id), Decimal("20"))

    def test_insufficient_stock_rolls_back_the_whole_sale(self):
        with self.assertRaises(ValidationError) as ctx:
            self.make_sale(quantity="25")

        self.assertEqual(ctx.exception.details["available"], "20.000")
        self.assertFalse(SaleOrder.objects.exists())
        self.assertFalse(CashbookEntry.objects.exists())
        self.assertEqual(get_stock_quantity(self.product.id, self.warehouse.id), Decimal("20"))

    def test_unexpected_failure_is_wrapped_and_rolled_back(self):
        with mock.patch("settlement.services.record_cash_entry", side_effect=RuntimeError("disk full")):
            with self.assertLogs("settlement", level="ERROR") as logs:
                with self.assertRaises(InternalError):
                    self.make_sale(quantity="2")

        self.assertIn("settlement_failed", logs.output[0])
        self.assertFalse(SaleOrder.objects.exists())
        self.assertEqual(StockMovement.objects.filter(direction=StockMovement.Direction.OUT).count(), 0)

    def test_partial_refund_is_proportional_and_restocks(self):
        order = self.make_sale(quantity="10", unit_price="10000")
        line = order.lines.get()

        refunded = partial_refund_sale_order(
            PartialRefundRequest(sale_order_id=order.id, items=[ReturnItem(sale_order_item_id=line.id, quantity=Decimal("3"))])
        )

        self.assertEqual(refunded.status, SaleOrder.Status.COMPLETED)
        line.refresh_from_db()
        self.assertEqual(line.returned_quantity, Decimal("3"))
        self.assertEqual(get_stock_quantity(self.product.id, self.warehouse.id), Decimal("13"))

        refund_entry = CashbookEntry.objects.get(category=CashbookEntry.Category.REFUND)
        self.assertEqual(refund_entry.entry_type, CashbookEntry.EntryType.EXPENSE)
        self.assertEqual(refund_entry.amount, Decimal("30000.00"))

    def test_refund_amount_uses_discounted_line_total(self):
        order = create_sale_order(
            SaleOrderRequest(
                lines=[
                    OrderLineInput(
                        product_id=self.product.id,
                        unit_id=self.piece.id,
                        quantity=Decimal("3"),
                        unit_price=Decimal("10000"),
                        discount=DiscountSpec(DiscountType.AMOUNT, Decimal("1000")),
                    )
                ],
                paid_amount=Decimal("29000"),
            )
        )
        line = order.lines.get()

        self.assertEqual(refund_line_amount(line, Decimal("1")), Decimal("9666.67"))
        self.assertEqual(refund_line_amount(line, Decimal("3")), Decimal("29000.00"))

    def test_refund_cannot_exceed_returnable_quantity(self):
        order = self.make_sale(quantity="10")
        line = order.lines.get()
        partial_refund_sale_order(
            PartialRefundRequest(sale_order_id=order.id, items=[ReturnItem(sale_order_item_id=line.id, quantity=Decimal("6"))])
        )

        with self.assertRaises(ValidationError) as ctx:
            partial_refund_sale_order(
                PartialRefundRequest(
                    sale_order_id=order.id,
                    items=[
                        ReturnItem(sale_order_item_id=line.id, quantity=Decimal("3")),
                        ReturnItem(sale_order_item_id=line.id, quantity=Decimal("2")),
                    ],
                )
            )
        self.assertEqual(ctx.exception.details["returnable"], "4.000")

    def test_full_refund_returns_remaining_quantities(self):
        order = self.make_sale(quantity="10")
        line = order.lines.get()
        partial_refund_sale_order(
            PartialRefundRequest(sale_order_id=order.id, items=[ReturnItem(sale_order_item_id=line.id, quantity=Decimal("4"))])
        )

        refunded = refund_sale_order(FullRefundRequest(sale_order_id=order.id))

        self.assertEqual(refunded.status, SaleOrder.Status.REFUNDED)
        self.assertEqual(get_stock_quantity(self.product.id, self.warehouse.id), Decimal("20"))
        amounts = sorted(CashbookEntry.objects.filter(category=CashbookEntry.Category.REFUND).values_list("amount", flat=True))
        self.assertEqual(amounts, [Decimal("40000.00"), Decimal("60000.00")])

        with self.assertRaises(StateConflictError):
            refund_sale_order(FullRefundRequest(sale_order_id=order.id))

    def test_credit_refund_reduces_receivable_without_cash_entry(self):
        order = self.make_sale(payment_method=PaymentMethod.CREDIT, customer=self.customer)
        line = order.lines.get()

        partial_refund_sale_order(
            PartialRefundRequest(sale_order_id=order.id, items=[ReturnItem(sale_order_item_id=line.id, quantity=Decimal("3"))])
        )

        account = DebtAccount.objects.get(customer=self.customer)
        self.assertEqual(account.balance, Decimal("70000.00"))
        self.assertEqual(account.transactions.filter(transaction_type=DebtTransaction.Type.REFUND).count(), 1)
        self.assertFalse(CashbookEntry.objects.exists())

    def test_credit_refund_above_balance_is_capped_at_zero(self):
        order = self.make_sale(payment_method=PaymentMethod.CREDIT, customer=self.customer)
        line = order.lines.get()
        record_sale_payment(OrderPaymentRequest(order_id=order.id, amount=Decimal("80000")))

        with self.assertLogs("finance.services", level="WARNING") as logs:
            partial_refund_sale_order(
                PartialRefundRequest(sale_order_id=order.id, items=[ReturnItem(sale_order_item_id=line.id, quantity=Decimal("3"))])
            )

        self.assertIn("debt_refund_capped_at_zero", logs.output[0])
        account = DebtAccount.objects.get(customer=self.customer)
        self.assertEqual(account.balance, Decimal("0.00"))
        self.assertIsNone(account.payment_due_date)

    def test_sale_payment_is_bounded_by_remaining_balance(self):
        order = self.make_sale(payment_method=PaymentMethod.CREDIT, customer=self.customer, payment_due_date=date(2030, 1, 31))

        with self.assertRaises(ValidationError) as ctx:
            record_sale_payment(OrderPaymentRequest(order_id=order.id, amount=Decimal("150000")))
        self.assertEqual(ctx.exception.details["remaining"], "100000.00")

        paid = record_sale_payment(OrderPaymentRequest(order_id=order.id, amount=Decimal("100000")))

        self.assertEqual(paid.paid_amount, Decimal("100000.00"))
        account = DebtAccount.objects.get(customer=self.customer)
        self.assertEqual(account.balance, Decimal("0.00"))
        self.assertIsNone(account.payment_due_date)
        entry = CashbookEntry.objects.get(category=CashbookEntry.Category.SALE)
        self.assertEqual(entry.amount, Decimal("100000.00"))

    def test_cancel_restocks_only_unreturned_quantities(self):
        order = self.make_sale(quantity="10")
        line = order.lines.get()
        partial_refund_sale_order(
            PartialRefundRequest(sale_order_id=order.id, items=[ReturnItem(sale_order_item_id=line.id, quantity=Decimal("3"))])
        )

        cancelled = cancel_sale_order(StatusChangeRequest(order_id=order.id))

        self.assertEqual(cancelled.status, SaleOrder.Status.CANCELLED)
        self.assertEqual(get_stock_quantity(self.product.id, self.warehouse.id), Decimal("20"))
        self.assertEqual(get_movement_balance(self.product.id, self.warehouse.id), Decimal("20"))

    def test_only_draft_sales_can_be_deleted(self):
        draft = self.make_sale(complete=False)
        completed = self.make_sale(quantity="1")

        delete_order(SaleOrder, draft.id)
        self.assertFalse(SaleOrder.objects.filter(id=draft.id).exists())

        with self.assertRaises(StateConflictError):
            delete_order(SaleOrder, completed.id)


class ReturnOrderSettlementTests(RetailFixtureMixin, TestCase):
    def setUp(self):
        self.create_fixtures()
        self.add_stock(self.product, 20)
        self.sale = self.make_sale(quantity="10", unit_price="10000")
        self.line = self.sale.lines.get()

    def _return(self, quantity, **kwargs):
        return create_return_order(
            ReturnOrderRequest(
                sale_order_id=self.sale.id,
                items=[ReturnItem(sale_order_item_id=self.line.id, quantity=Decimal(quantity))],
                reason="Damaged",
                **kwargs,
            )
        )

    def test_completed_return_refunds_and_restocks(self):
        return_order = self._return("3")

        self.assertEqual(return_order.status, ReturnOrder.Status.COMPLETED)
        self.assertEqual(return_order.refund_amount, Decimal("30000.00"))
        self.assertEqual(return_order.lines.get().line_total, Decimal("30000.00"))
        self.assertEqual(get_stock_quantity(self.product.id, self.warehouse.id), Decimal("13"))

        movement = StockMovement.objects.get(reference_type="return_order", reference_id=return_order.id)
        self.assertEqual(movement.direction, StockMovement.Direction.IN)
        entry = CashbookEntry.objects.get(reference_id=return_order.id)
        self.assertEqual(entry.amount, Decimal("30000.00"))

    def test_draft_returns_are_checked_again_on_completion(self):
        first = self._return("3", complete=False)
        second = self._return("8", complete=False)

        self.assertEqual(first.status, ReturnOrder.Status.DRAFT)
        self.assertEqual(get_stock_quantity(self.product.id, self.warehouse.id), Decimal("10"))

        complete_return_order(StatusChangeRequest(order_id=first.id))
        with self.assertRaises(ValidationError):
            complete_return_order(StatusChangeRequest(order_id=second.id))

        second.refresh_from_db()
        self.assertEqual(second.status, ReturnOrder.Status.DRAFT)
        self.line.refresh_from_db()
        self.assertEqual(self.line.returned_quantity, Decimal("3"))

    def test_cancelled_draft_return_has_no_ledger_effect(self):
        draft = self._return("2", complete=False)

        cancelled = cancel_return_order(StatusChangeRequest(order_id=draft.id))

        self.assertEqual(cancelled.status, ReturnOrder.Status.CANCELLED)
        self.assertFalse(StockMovement.objects.filter(reference_id=draft.id).exists())
        with self.assertRaises(StateConflictError):
            complete_return_order(StatusChangeRequest(order_id=draft.id))

    def test_return_without_cashbook_entry(self):
        return_order = self._return("1", create_cashbook_entry=False)

        self.assertEqual(return_order.refund_amount, Decimal("10000.00"))
        self.assertFalse(CashbookEntry.objects.filter(category=CashbookEntry.Category.REFUND).exists())

    def test_return_requires_completed_sale(self):
        draft_sale = self.make_sale(quantity="1", complete=False)

        with self.assertRaises(StateConflictError):
            create_return_order(
                ReturnOrderRequest(
                    sale_order_id=draft_sale.id,
                    items=[ReturnItem(sale_order_item_id=draft_sale.lines.get().id, quantity=Decimal("1"))],
                )
            )

    def test_return_item_must_belong_to_sale(self):
        other = self.make_sale(quantity="1")

        with self.assertRaises(ValidationError):
            create_return_order(
                ReturnOrderRequest(
                    sale_order_id=self.sale.id,
                    items=[ReturnItem(sale_order_item_id=other.lines.get().id, quantity=Decimal("1"))],
                )
            )


class PurchaseSettlementTests(RetailFixtureMixin, TestCase):
    def setUp(self):
        self.create_fixtures()

    def _receive(self, order, quantity, **item_kwargs):
        line = order.lines.get()
        return receive_goods(
            GoodsReceiptRequest(
                purchase_order_id=order.id,
                warehouse_id=self.warehouse.id,
                items=[GoodsReceiptItem(order_item_id=line.id, received_quantity=Decimal(quantity), **item_kwargs)],
            )
        )

    def test_partial_then_full_receipt(self):
        order = self.make_purchase(quantities=("10",), unit_price="5000")
        self.assertEqual(order.status, PurchaseOrder.Status.ORDERED)

        order = self._receive(order, "4")
        self.assertEqual(order.status, PurchaseOrder.Status.PARTIAL_RECEIVED)
        self.assertEqual(get_stock_quantity(self.product.id, self.warehouse.id), Decimal("4"))

        order = self._receive(order, "6")
        self.assertEqual(order.status, PurchaseOrder.Status.RECEIVED)
        self.assertIsNotNone(order.received_date)
        self.assertEqual(get_stock_quantity(self.product.id, self.warehouse.id), Decimal("10"))

        self.product.refresh_from_db()
        self.assertEqual(self.product.cost_price, Decimal("5000.00"))

    def test_receipt_above_remaining_quantity_is_rejected(self):
        order = self.make_purchase(quantities=("10",))
        self._receive(order, "4")

        with self.assertRaises(ValidationError) as ctx:
            self._receive(order, "7")
        self.assertEqual(ctx.exception.details["remaining"], "6.000")
        self.assertEqual(get_stock_quantity(self.product.id, self.warehouse.id), Decimal("4"))

    def test_receipt_requires_warehouse_and_positive_items(self):
        order = self.make_purchase()
        line = order.lines.get()

        with self.assertRaises(ValidationError):
            receive_goods(
                GoodsReceiptRequest(
                    purchase_order_id=order.id,
                    warehouse_id=None,
                    items=[GoodsReceiptItem(order_item_id=line.id, received_quantity=Decimal("1"))],
                )
            )
        with self.assertRaises(ValidationError):
            self._receive(order, "0")
        with self.assertRaises(ValidationError):
            self._receive(order, "-1")

    def test_draft_purchase_cannot_receive(self):
        order = self.make_purchase(place=False)

        with self.assertRaises(StateConflictError):
            self._receive(order, "1")

    def test_receipt_with_expiry_creates_batch(self):
        order = self.make_purchase(quantities=("10",))

        self._receive(order, "10", expiry_date=date(2031, 6, 30), batch_number="LOT-7")

        batch = StockBatch.objects.get(purchase_order=order)
        self.assertEqual(batch.quantity, Decimal("10"))
        self.assertEqual(batch.batch_number, "LOT-7")

    def test_receipt_in_stocking_unit_stores_base_unit_cost(self):
        order = create_purchase_order(
            PurchaseOrderRequest(
                supplier_id=self.supplier.id,
                lines=[OrderLineInput(product_id=self.boxed.id, unit_id=self.box.id, quantity=Decimal("2"), unit_price=Decimal("48000"))],
                place=True,
            )
        )
        self._receive(order, "2")

        self.assertEqual(get_stock_quantity(self.boxed.id, self.warehouse.id), Decimal("24"))
        movement = StockMovement.objects.get(reference_id=order.id)
        self.assertEqual(movement.cost_price, Decimal("4000.00"))

    @override_settings(INVENTORY_WEIGHTED_AVERAGE_COST=True)
    def test_weighted_average_cost_on_receipt(self):
        self.add_stock(self.product, 10)
        order = self.make_purchase(quantities=("10",), unit_price="8000")

        self._receive(order, "10")

        self.product.refresh_from_db()
        self.assertEqual(self.product.cost_price, Decimal("7000.00"))

    def _receive_all(self, order):
        return receive_goods(
            GoodsReceiptRequest(
                purchase_order_id=order.id,
                warehouse_id=self.warehouse.id,
                items=[GoodsReceiptItem(order_item_id=line.id, received_quantity=line.quantity) for line in order.lines.all()],
            )
        )

    @override_settings(INVENTORY_WEIGHTED_AVERAGE_COST=True)
    def test_weighted_average_over_lines_of_the_same_product(self):
        self.add_stock(self.product, 10)
        order = create_purchase_order(
            PurchaseOrderRequest(
                supplier_id=self.supplier.id,
                lines=[
                    OrderLineInput(product_id=self.product.id, unit_id=self.piece.id, quantity=Decimal("10"), unit_price=Decimal("8000")),
                    OrderLineInput(product_id=self.product.id, unit_id=self.piece.id, quantity=Decimal("10"), unit_price=Decimal("12000")),
                ],
                place=True,
            )
        )

        self._receive_all(order)

        self.product.refresh_from_db()
        self.assertEqual(self.product.cost_price, Decimal("8666.67"))
        self.assertEqual(get_stock_quantity(self.product.id, self.warehouse.id), Decimal("30"))
        self.assertCountEqual(
            StockMovement.objects.filter(reference_id=order.id).values_list("cost_price", flat=True),
            [Decimal("8000.00"), Decimal("12000.00")],
        )

    def test_receipt_cost_uses_discounted_line_total(self):
        order = create_purchase_order(
            PurchaseOrderRequest(
                supplier_id=self.supplier.id,
                lines=[
                    OrderLineInput(
                        product_id=self.product.id,
                        unit_id=self.piece.id,
                        quantity=Decimal("10"),
                        unit_price=Decimal("5000"),
                        discount=DiscountSpec(type=DiscountType.PERCENT, value=Decimal("10")),
                    )
                ],
                place=True,
            )
        )

        self._receive(order, "10")

        self.product.refresh_from_db()
        self.assertEqual(self.product.cost_price, Decimal("4500.00"))
        self.assertEqual(StockMovement.objects.get(reference_id=order.id).cost_price, Decimal("4500.00"))

    def test_credit_purchase_posts_payable_and_payment_reduces_it(self):
        order = self.make_purchase(quantities=("10",), unit_price="5000", payment_method=PaymentMethod.CREDIT)

        account = DebtAccount.objects.get(supplier=self.supplier)
        self.assertEqual(account.kind, DebtAccount.Kind.PAYABLE)
        self.assertEqual(account.balance, Decimal("50000.00"))

        record_purchase_payment(OrderPaymentRequest(order_id=order.id, amount=Decimal("20000")))

        account.refresh_from_db()
        self.assertEqual(account.balance, Decimal("30000.00"))
        entry = CashbookEntry.objects.get(category=CashbookEntry.Category.PURCHASE)
        self.assertEqual(entry.entry_type, CashbookEntry.EntryType.EXPENSE)
        self.assertEqual(entry.amount, Decimal("20000.00"))

    def test_cash_purchase_records_paid_amount_on_placement(self):
        order = self.make_purchase(quantities=("10",), unit_price="5000", paid_amount="50000", place=False)
        self.assertFalse(CashbookEntry.objects.exists())

        place_purchase_order(StatusChangeRequest(order_id=order.id))

        entry = CashbookEntry.objects.get(reference_id=order.id)
        self.assertEqual(entry.entry_type, CashbookEntry.EntryType.EXPENSE)
        self.assertEqual(entry.amount, Decimal("50000.00"))

    def test_draft_purchase_can_be_updated(self):
        order = self.make_purchase(quantities=("10",), place=False)

        updated = update_purchase_order(
            PurchaseOrderUpdateRequest(
                purchase_order_id=order.id,
                order=PurchaseOrderRequest(
                    supplier_id=self.supplier.id,
                    lines=[
                        OrderLineInput(product_id=self.product.id, unit_id=self.piece.id, quantity=Decimal("3"), unit_price=Decimal("1000")),
                        OrderLineInput(product_id=self.boxed.id, unit_id=self.box.id, quantity=Decimal("1"), unit_price=Decimal("2000")),
                    ],
                ),
            )
        )

        self.assertEqual(updated.lines.count(), 2)
        self.assertEqual(updated.total, Decimal("5000.00"))

        place_purchase_order(StatusChangeRequest(order_id=order.id))
        with self.assertRaises(StateConflictError):
            update_purchase_order(
                PurchaseOrderUpdateRequest(
                    purchase_order_id=order.id,
                    order=PurchaseOrderRequest(
                        supplier_id=self.supplier.id,
                        lines=[OrderLineInput(product_id=self.product.id, unit_id=self.piece.id, quantity=Decimal("1"), unit_price=Decimal("1"))],
                    ),
                )
            )

    def test_cancel_is_blocked_after_receipt(self):
        cancellable = self.make_purchase()
        cancelled = cancel_purchase_order(StatusChangeRequest(order_id=cancellable.id))
        self.assertEqual(cancelled.status, PurchaseOrder.Status.CANCELLED)

        delete_order(PurchaseOrder, cancelled.id)
        self.assertFalse(PurchaseOrder.objects.filter(id=cancelled.id).exists())

        received = self.make_purchase(quantities=("10",))
        self._receive(received, "2")
        with self.assertRaises(StateConflictError):
            cancel_purchase_order(StatusChangeRequest(order_id=received.id))


class DebtSettlementTests(RetailFixtureMixin, TestCase):
    def setUp(self):
        self.create_fixtures()
        self.add_stock(self.product, 20)
        self.make_sale(payment_method=PaymentMethod.CREDIT, customer=self.customer)
        self.account = DebtAccount.objects.get(customer=self.customer)

    def test_debt_payment_records_collection(self):
        txn = pay_debt(DebtPaymentRequest(account_id=self.account.id, amount=Decimal("40000")))

        self.assertEqual(txn.balance_after, Decimal("60000.00"))
        entry = CashbookEntry.objects.get(reference_id=txn.id)
        self.assertEqual(entry.category, CashbookEntry.Category.DEBT_COLLECTION)
        self.assertEqual(entry.entry_type, CashbookEntry.EntryType.INCOME)

    def test_debt_payment_without_method_skips_cashbook(self):
        pay_debt(DebtPaymentRequest(account_id=self.account.id, amount=Decimal("40000"), payment_method=None))

        self.assertFalse(CashbookEntry.objects.exists())

    def test_debt_payment_above_balance_is_rejected(self):
        with self.assertRaises(ValidationError):
            pay_debt(DebtPaymentRequest(account_id=self.account.id, amount=Decimal("100000.01")))

        self.account.refresh_from_db()
        self.assertEqual(self.account.balance, Decimal("100000.00"))

    def test_adjustment_cannot_turn_balance_negative(self):
        adjust_debt(DebtAdjustmentRequest(account_id=self.account.id, amount=Decimal("-20000"), description="Goodwill"))

        with self.assertRaises(ValidationError):
            adjust_debt(DebtAdjustmentRequest(account_id=self.account.id, amount=Decimal("-90000")))

        self.account.refresh_from_db()
        self.assertEqual(self.account.balance, Decimal("80000.00"))

    def test_unknown_account_is_not_found(self):
        with self.assertRaises(NotFoundError):
            pay_debt(DebtPaymentRequest(account_id=uuid.uuid4(), amount=Decimal("1")))


class IdempotencyTests(RetailFixtureMixin, TestCase):
    def setUp(self):
        self.create_fixtures()
        self.add_stock(self.product, 20)

    def test_replayed_sale_returns_original_without_new_ledger_rows(self):
        event_id = uuid.uuid4()
        first = self.make_sale(quantity="5", event_id=event_id)
        movements = StockMovement.objects.count()

        with self.assertLogs("settlement", level="INFO") as logs:
            second = self.make_sale(quantity="5", event_id=event_id)

        self.assertEqual(first.id, second.id)
        self.assertEqual(SaleOrder.objects.count(), 1)
        self.assertEqual(StockMovement.objects.count(), movements)
        self.assertEqual(CashbookEntry.objects.count(), 1)
        self.assertEqual(get_stock_quantity(self.product.id, self.warehouse.id), Decimal("15"))
        self.assertTrue(any("settlement_replayed" in line for line in logs.output))

        recorded = SettlementEvent.objects.get(event_id=event_id)
        self.assertEqual(recorded.event_type, "sale.create")
        self.assertEqual(recorded.reference_id, first.id)

    def test_replayed_debt_payment_is_applied_once(self):
        self.make_sale(payment_method=PaymentMethod.CREDIT, customer=self.customer)
        account = DebtAccount.objects.get(customer=self.customer)
        request = DebtPaymentRequest(account_id=account.id, amount=Decimal("30000"), event_id=uuid.uuid4())

        first = pay_debt(request)
        second = pay_debt(request)

        self.assertEqual(first.id, second.id)
        account.refresh_from_db()
        self.assertEqual(account.balance, Decimal("70000.00"))
        self.assertEqual(account.transactions.filter(transaction_type=DebtTransaction.Type.PAYMENT).count(), 1)

    def test_event_id_reused_for_other_event_type_conflicts(self):
        event_id = uuid.uuid4()
        order = self.make_sale(quantity="1", complete=False, event_id=event_id)

        with self.assertRaises(StateConflictError):
            complete_sale_order(StatusChangeRequest(order_id=order.id, event_id=event_id))

        order.refresh_from_db()
        self.assertEqual(order.status, SaleOrder.Status.DRAFT)

    def test_rejected_settlement_records_no_event(self):
        event_id = uuid.uuid4()

        with self.assertLogs("settlement", level="WARNING") as logs:
            with self.assertRaises(ValidationError):
                self.make_sale(quantity="50", event_id=event_id)

        self.assertIn("settlement_rejected", logs.output[0])
        self.assertFalse(SettlementEvent.objects.filter(event_id=event_id).exists())

        order = self.make_sale(quantity="2", event_id=event_id)
        self.assertEqual(order.status, SaleOrder.Status.COMPLETED)

    def test_unknown_event_type_is_rejected(self):
        with self.assertRaises(ValidationError):
            settle("sale.teleport", StatusChangeRequest(order_id=uuid.uuid4()))


class MissingWarehouseTests(RetailFixtureMixin, TestCase):
    def setUp(self):
        self.create_fixtures()
        self.add_stock(self.product, 20)
        Warehouse.objects.filter(pk=self.warehouse.pk).update(is_default=False)

    def test_error_policy_rejects_sale_without_warehouse(self):
        with self.assertRaises(ConfigurationError):
            self.make_sale(quantity="1")

        self.assertFalse(SaleOrder.objects.exists())

    @override_settings(SETTLEMENT_MISSING_WAREHOUSE_POLICY="skip")
    def test_skip_policy_completes_sale_without_stock_update(self):
        with self.assertLogs("inventory.services", level="WARNING") as logs:
            order = self.make_sale(quantity="1")

        self.assertIn("stock_update_skipped_no_default_warehouse", logs.output[0])
        self.assertEqual(order.status, SaleOrder.Status.COMPLETED)
        self.assertIsNone(order.warehouse_id)
        self.assertFalse(StockMovement.objects.filter(reference_id=order.id).exists())
        self.assertEqual(CashbookEntry.objects.count(), 1)

    def _return_one_of_ten(self):
        Warehouse.objects.filter(pk=self.warehouse.pk).update(is_default=True)
        sale = self.make_sale(quantity="10", unit_price="10000")
        Warehouse.objects.filter(pk=self.warehouse.pk).update(is_default=False)
        line = sale.lines.get()
        return sale, ReturnOrderRequest(
            sale_order_id=sale.id,
            items=[ReturnItem(sale_order_item_id=line.id, quantity=Decimal("3"))],
            reason="Damaged",
        )

    @override_settings(SETTLEMENT_MISSING_WAREHOUSE_POLICY="skip")
    def test_skip_policy_completes_return_without_restock(self):
        sale, request = self._return_one_of_ten()
        stock_before = get_stock_quantity(self.product.id, self.warehouse.id)

        with self.assertLogs("inventory.services", level="WARNING") as logs:
            return_order = create_return_order(request)

        self.assertIn("stock_update_skipped_no_default_warehouse", logs.output[0])
        self.assertEqual(return_order.status, ReturnOrder.Status.COMPLETED)
        self.assertEqual(return_order.refund_amount, Decimal("30000.00"))
        self.assertFalse(StockMovement.objects.filter(reference_id=return_order.id).exists())
        self.assertEqual(get_stock_quantity(self.product.id, self.warehouse.id), stock_before)
        refund = CashbookEntry.objects.get(category=CashbookEntry.Category.REFUND)
        self.assertEqual(refund.reference_id, return_order.id)
        self.assertEqual(refund.amount, Decimal("30000.00"))

    def test_error_policy_rejects_return_without_warehouse(self):
        sale, request = self._return_one_of_ten()

        with self.assertRaises(ConfigurationError):
            create_return_order(request)

        self.assertFalse(ReturnOrder.objects.exists())
        self.assertFalse(CashbookEntry.objects.filter(category=CashbookEntry.Category.REFUND).exists())
        sale.refresh_from_db()
        self.assertEqual(sale.lines.get().returned_quantity, Decimal("0"))

    def test_explicit_warehouse_still_works(self):
        order = self.make_sale(quantity="1", complete=False)

        completed = complete_sale_order(StatusChangeRequest(order_id=order.id, warehouse_id=self.warehouse.id))

        self.assertEqual(completed.warehouse_id, self.warehouse.id)
        self.assertEqual(get_stock_quantity(self.product.id, self.warehouse.id), Decimal("19"))

    def test_check_reports_missing_default(self):
        with override_settings(SETTLEMENT_REQUIRE_DEFAULT_WAREHOUSE=True):
            errors = check_default_warehouse(databases=["default"])
        self.assertEqual([error.id for error in errors], ["settlement.E001"])

        with override_settings(SETTLEMENT_MISSING_WAREHOUSE_POLICY="skip", SETTLEMENT_REQUIRE_DEFAULT_WAREHOUSE=True):
            warnings = check_default_warehouse(databases=["default"])
        self.assertEqual([warning.id for warning in warnings], ["settlement.W001"])

        Warehouse.objects.filter(pk=self.warehouse.pk).update(is_default=True)
        self.assertEqual(check_default_warehouse(databases=["default"]), [])
        self.assertEqual(check_default_warehouse(databases=None), [])


class LedgerInvariantTests(RetailFixtureMixin, TestCase):
    def setUp(self):
        self.create_fixtures()

    def _assert_stock_matches_movements(self):
        quantity = get_stock_quantity(self.product.id, self.warehouse.id)
        self.assertEqual(quantity, get_movement_balance(self.product.id, self.warehouse.id))
        self.assertGreaterEqual(quantity, 0)

    def test_random_settlements_keep_stock_record_equal_to_movements(self):
        rng = random.Random(20240611)
        sales = []

        for _ in range(40):
            operation = rng.choice(["stock_in", "sale", "refund"])
            before = get_stock_quantity(self.product.id, self.warehouse.id)

            if operation == "stock_in":
                self.add_stock(self.product, rng.randint(1, 6))
            elif operation == "sale":
                quantity = rng.randint(1, 8)
                try:
                    sales.append(self.make_sale(quantity=str(quantity), unit_price="1000"))
                except ValidationError:
                    self.assertGreater(Decimal(quantity), before)
                    self.assertEqual(get_stock_quantity(self.product.id, self.warehouse.id), before)
            else:
                open_lines = [line for order in sales for line in order.lines.all() if line.returnable_quantity > 0]
                if open_lines:
                    line = rng.choice(open_lines)
                    partial_refund_sale_order(
                        PartialRefundRequest(
                            sale_order_id=line.sale_order_id,
                            items=[ReturnItem(sale_order_item_id=line.id, quantity=Decimal("1"))],
                        )
                    )

            self._assert_stock_matches_movements()

    def test_random_debt_activity_keeps_balance_equal_to_last_transaction(self):
        rng = random.Random(7)
        self.add_stock(self.product, 1000)
        last_txn = None
        credit_sales = []

        for _ in range(40):
            account = DebtAccount.objects.filter(customer=self.customer).first()
            operation = rng.choice(["invoice", "payment", "adjustment", "refund"])

            try:
                if operation == "invoice" or account is None:
                    order = self.make_sale(
                        quantity=str(rng.randint(1, 3)),
                        unit_price="1000",
                        payment_method=PaymentMethod.CREDIT,
                        customer=self.customer,
                    )
                    credit_sales.append(order)
                    last_txn = DebtTransaction.objects.get(reference_id=order.id)
                elif operation == "refund":
                    last_txn = self._refund_one_unit(rng, credit_sales) or last_txn
                elif operation == "payment":
                    last_txn = pay_debt(DebtPaymentRequest(account_id=account.id, amount=Decimal(rng.randint(1, 4000))))
                else:
                    last_txn = adjust_debt(DebtAdjustmentRequest(account_id=account.id, amount=Decimal(rng.randint(-3000, 3000))))
            except ValidationError:
                pass

            account = DebtAccount.objects.get(customer=self.customer)
            self.assertEqual(account.balance, last_txn.balance_after)
            self.assertEqual(last_txn.balance_after, self._expected_balance_after(last_txn))
            self.assertGreaterEqual(account.balance, 0)

    def _refund_one_unit(self, rng, credit_sales):
        open_lines = [line for order in credit_sales for line in order.lines.all() if line.returnable_quantity > 0]
        if not open_lines:
            return None
        line = rng.choice(open_lines)
        seen = list(DebtTransaction.objects.filter(transaction_type=DebtTransaction.Type.REFUND).values_list("pk", flat=True))
        partial_refund_sale_order(
            PartialRefundRequest(
                sale_order_id=line.sale_order_id,
                items=[ReturnItem(sale_order_item_id=line.id, quantity=Decimal("1"))],
            )
        )
        return DebtTransaction.objects.filter(transaction_type=DebtTransaction.Type.REFUND).exclude(pk__in=seen).get()

    def _expected_balance_after(self, txn):
        if txn.transaction_type in (DebtTransaction.Type.INVOICE, DebtTransaction.Type.ADJUSTMENT):
            return txn.balance_before + txn.amount
        if txn.transaction_type == DebtTransaction.Type.REFUND:
            return max(txn.balance_before - txn.amount, Decimal("0"))
        return txn.balance_before - txn.amount


@skipUnless(connection.vendor == "postgresql", "row locks need PostgreSQL")
class ConcurrentSettlementTests(RetailFixtureMixin, TransactionTestCase):
    def setUp(self):
        self.create_fixtures()

    def _race(self, target, attempts=2):
        outcomes = []

        def run():
            try:
                target()
                outcomes.append("ok")
            except ValidationError:
                outcomes.append("rejected")
            finally:
                connection.close()

        threads = [threading.Thread(target=run) for _ in range(attempts)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        return sorted(outcomes)

    def test_concurrent_stock_out_never_goes_negative(self):
        self.add_stock(self.product, 10)

        def sell():
            with transaction.atomic():
                post_stock_movements(
                    [StockDelta(self.product, self.warehouse, StockMovement.Direction.OUT, Decimal("6"))],
                )

        self.assertEqual(self._race(sell), ["ok", "rejected"])
        self.assertEqual(get_stock_quantity(self.product.id, self.warehouse.id), Decimal("4"))
        self.assertEqual(get_movement_balance(self.product.id, self.warehouse.id), Decimal("4"))

    def test_concurrent_debt_payments_respect_balance(self):
        self.add_stock(self.product, 10)
        self.make_sale(quantity="10", payment_method=PaymentMethod.CREDIT, customer=self.customer)
        account = DebtAccount.objects.get(customer=self.customer)

        def pay():
            pay_debt(DebtPaymentRequest(account_id=account.id, amount=Decimal("60000")))

        self.assertEqual(self._race(pay), ["ok", "rejected"])
        account.refresh_from_db()
        self.assertEqual(account.balance, Decimal("40000.00"))


class SystemCheckCommandTests(RetailFixtureMixin, TestCase):
    def setUp(self):
        self.create_fixtures()

    def test_check_command_passes_with_default_warehouse(self):
        call_command("check", databases=["default"])
