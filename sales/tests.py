import uuid
from decimal import Decimal

from django.test import TestCase

from common.testing import RetailFixtureMixin
from core.models import AuditLog
from finance.models import CashbookEntry, DebtAccount
from inventory.services import get_stock_quantity
from sales.models import ReturnOrder, SaleOrder


class SaleOrderApiTests(RetailFixtureMixin, TestCase):
    def setUp(self):
        self.create_fixtures()
        self.add_stock(self.product, 20)

    def _create_sale(self, **overrides):
        payload = {
            "payment_method": "cash",
            "paid_amount": "100000",
            "lines": [
                {"product_id": str(self.product.id), "unit_id": str(self.piece.id), "quantity": "10", "unit_price": "10000"},
            ],
            **overrides,
        }
        return self.client.post("/api/v1/sale-orders/", payload, format="json")

    def test_cashier_can_create_completed_sale(self):
        self.client.force_authenticate(user=self.cashier)

        response = self._create_sale()

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["status"], "completed")
        self.assertEqual(Decimal(body["total"]), Decimal("100000"))
        self.assertEqual(body["created_by"], "cashier")
        self.assertEqual(get_stock_quantity(self.product.id, self.warehouse.id), Decimal("10"))

        log = AuditLog.objects.get(action="sale_order.create")
        self.assertEqual(str(log.entity_id), body["id"])
        self.assertEqual(log.after_snapshot["code"], body["code"])

    def test_sale_with_order_discount(self):
        self.client.force_authenticate(user=self.cashier)

        response = self._create_sale(discount={"type": "percent", "value": "10"}, paid_amount="90000")

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(Decimal(body["subtotal"]), Decimal("100000"))
        self.assertEqual(Decimal(body["discount_amount"]), Decimal("10000"))
        self.assertEqual(Decimal(body["total"]), Decimal("90000"))

    def test_retried_request_with_event_id_creates_one_sale(self):
        self.client.force_authenticate(user=self.cashier)
        event_id = str(uuid.uuid4())

        first = self._create_sale(event_id=event_id)
        second = self._create_sale(event_id=event_id)

        self.assertEqual(first.status_code, 201)
        self.assertEqual(second.status_code, 201)
        self.assertEqual(first.json()["id"], second.json()["id"])
        self.assertEqual(SaleOrder.objects.count(), 1)
        self.assertEqual(get_stock_quantity(self.product.id, self.warehouse.id), Decimal("10"))
        self.assertEqual(AuditLog.objects.filter(action="sale_order.create", event_id=event_id).count(), 2)

    def test_insufficient_stock_returns_error_envelope(self):
        self.client.force_authenticate(user=self.cashier)

        response = self._create_sale(
            paid_amount="0",
            lines=[{"product_id": str(self.product.id), "unit_id": str(self.piece.id), "quantity": "21", "unit_price": "0"}],
        )

        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertEqual(body["code"], "validation_error")
        self.assertEqual(body["status"], 400)
        self.assertEqual(body["errors"]["required"], "21.000")
        self.assertFalse(SaleOrder.objects.exists())

    def test_malformed_payload_uses_envelope(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.post("/api/v1/sale-orders/", {"lines": []}, format="json")

        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertEqual(body["message"], "Validation failed.")
        self.assertIn("lines", body["errors"])

    def test_credit_sale_then_payment(self):
        self.client.force_authenticate(user=self.cashier)
        order_id = self._create_sale(payment_method="credit", paid_amount="0", customer_id=str(self.customer.id)).json()["id"]

        too_much = self.client.post(f"/api/v1/sale-orders/{order_id}/payments/", {"amount": "150000"}, format="json")
        self.assertEqual(too_much.status_code, 400)

        paid = self.client.post(f"/api/v1/sale-orders/{order_id}/payments/", {"amount": "100000"}, format="json")
        self.assertEqual(paid.status_code, 200)
        self.assertEqual(Decimal(paid.json()["balance_due"]), Decimal("0"))
        self.assertEqual(DebtAccount.objects.get(customer=self.customer).balance, Decimal("0"))

    def test_partial_refund_requires_supervisor(self):
        self.client.force_authenticate(user=self.cashier)
        body = self._create_sale().json()
        line_id = body["lines"][0]["id"]
        payload = {"items": [{"sale_order_item_id": line_id, "quantity": "3"}], "reason": "Damaged"}

        with self.assertLogs("security.authorization", level="WARNING") as logs:
            denied = self.client.post(f"/api/v1/sale-orders/{body['id']}/partial-refund/", payload, format="json")
        self.assertEqual(denied.status_code, 403)
        self.assertIn("capability=sales.refund", logs.output[0])

        self.client.force_authenticate(user=self.supervisor)
        refunded = self.client.post(f"/api/v1/sale-orders/{body['id']}/partial-refund/", payload, format="json")

        self.assertEqual(refunded.status_code, 200)
        self.assertEqual(Decimal(refunded.json()["lines"][0]["returned_quantity"]), Decimal("3"))
        self.assertEqual(CashbookEntry.objects.get(category="refund").amount, Decimal("30000"))

    def test_refund_twice_returns_conflict(self):
        self.client.force_authenticate(user=self.supervisor)
        order_id = self._create_sale().json()["id"]

        first = self.client.post(f"/api/v1/sale-orders/{order_id}/refund/", {}, format="json")
        second = self.client.post(f"/api/v1/sale-orders/{order_id}/refund/", {}, format="json")

        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.json()["status"], "refunded")
        self.assertEqual(second.status_code, 409)
        self.assertEqual(second.json()["code"], "state_conflict")
        self.assertEqual(get_stock_quantity(self.product.id, self.warehouse.id), Decimal("20"))

    def test_unknown_sale_returns_not_found(self):
        self.client.force_authenticate(user=self.supervisor)

        response = self.client.post(f"/api/v1/sale-orders/{uuid.uuid4()}/complete/", {}, format="json")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "not_found")

    def test_sale_list_filters_by_status(self):
        self.client.force_authenticate(user=self.cashier)
        self._create_sale()
        self._create_sale(complete=False)

        response = self.client.get("/api/v1/sale-orders/", {"status": "draft"})

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(sorted(payload.keys()), ["count", "next", "previous", "results"])
        self.assertEqual(payload["count"], 1)


class ReturnOrderApiTests(RetailFixtureMixin, TestCase):
    def setUp(self):
        self.create_fixtures()
        self.add_stock(self.product, 20)
        self.sale = self.make_sale(quantity="10", unit_price="10000")
        self.line = self.sale.lines.get()
        self.client.force_authenticate(user=self.supervisor)

    def _create_return(self, quantity, **overrides):
        payload = {
            "sale_order_id": str(self.sale.id),
            "items": [{"sale_order_item_id": str(self.line.id), "quantity": quantity}],
            "reason": "Wrong size",
            **overrides,
        }
        return self.client.post("/api/v1/return-orders/", payload, format="json")

    def test_draft_return_then_complete(self):
        created = self._create_return("3", complete=False)
        self.assertEqual(created.status_code, 201)
        body = created.json()
        self.assertEqual(body["status"], "draft")
        self.assertEqual(Decimal(body["refund_amount"]), Decimal("30000"))

        completed = self.client.post(f"/api/v1/return-orders/{body['id']}/complete/", {}, format="json")

        self.assertEqual(completed.status_code, 200)
        self.assertEqual(completed.json()["status"], "completed")
        self.assertEqual(get_stock_quantity(self.product.id, self.warehouse.id), Decimal("13"))

    def test_return_above_sold_quantity_is_rejected(self):
        response = self._create_return("11")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["errors"]["returnable"], "10.000")
        self.assertFalse(ReturnOrder.objects.exists())

    def test_cashier_cannot_create_return(self):
        self.client.force_authenticate(user=self.cashier)

        with self.assertLogs("security.authorization", level="WARNING"):
            response = self._create_return("1")

        self.assertEqual(response.status_code, 403)

    def test_draft_return_can_be_deleted(self):
        return_id = self._create_return("1", complete=False).json()["id"]

        response = self.client.delete(f"/api/v1/return-orders/{return_id}/")

        self.assertEqual(response.status_code, 204)
        self.assertFalse(ReturnOrder.objects.filter(id=return_id).exists())
        self.assertTrue(AuditLog.objects.filter(action="return_order.delete").exists())


class CustomerApiTests(RetailFixtureMixin, TestCase):
    def setUp(self):
        self.create_fixtures()

    def test_customer_search(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.get("/api/v1/customers/", {"search": "lan"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual([item["code"] for item in response.json()["results"]], ["C-001"])

    def test_admin_creates_customer(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post("/api/v1/customers/", {"code": "C-002", "name": "Minh Tran"}, format="json")

        self.assertEqual(response.status_code, 201)
        self.assertTrue(AuditLog.objects.filter(action="customer.create").exists())
