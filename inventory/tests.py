from decimal import Decimal

from django.test import TestCase, override_settings

from common.errors import InternalError, ValidationError
from common.testing import RetailFixtureMixin
from core.models import AuditLog
from inventory.models import PurchaseOrder, StockMovement
from inventory.services import (
    StockDelta,
    convert_to_base_units,
    get_movement_balance,
    get_stock_quantity,
    get_total_stock_quantity,
    post_stock_movements,
    update_product_cost,
    validate_transaction_unit,
)


class StockServiceTests(RetailFixtureMixin, TestCase):
    def setUp(self):
        self.create_fixtures()

    def test_convert_to_base_units(self):
        self.assertEqual(convert_to_base_units(self.boxed, self.box.id, Decimal("2")), Decimal("24"))
        self.assertEqual(convert_to_base_units(self.boxed, self.piece.id, Decimal("5")), Decimal("5"))
        self.assertEqual(convert_to_base_units(self.product, self.piece.id, Decimal("1.5")), Decimal("1.5"))

    def test_validate_transaction_unit(self):
        validate_transaction_unit(self.boxed, self.box.id)
        validate_transaction_unit(self.boxed, self.piece.id)

        with self.assertRaises(ValidationError) as ctx:
            validate_transaction_unit(self.product, self.kg.id)
        self.assertEqual(ctx.exception.details["unit"], str(self.kg.id))

    def test_stock_out_rejects_insufficient_quantity(self):
        self.add_stock(self.product, 3)

        with self.assertRaises(ValidationError):
            post_stock_movements(
                [StockDelta(self.product, self.warehouse, StockMovement.Direction.OUT, Decimal("4"))],
            )

        self.assertEqual(get_stock_quantity(self.product.id, self.warehouse.id), Decimal("3"))
        self.assertEqual(StockMovement.objects.count(), 1)

    def test_each_delta_pairs_record_and_movement(self):
        self.add_stock(self.product, 10)
        self.add_stock(self.product, 4, warehouse=self.backroom)

        movements = post_stock_movements(
            [
                StockDelta(self.product, self.warehouse, StockMovement.Direction.OUT, Decimal("2.5")),
                StockDelta(self.product, self.backroom, StockMovement.Direction.OUT, Decimal("1")),
                StockDelta(self.product, self.warehouse, StockMovement.Direction.IN, Decimal("0")),
            ],
            notes="Shrinkage",
        )

        self.assertEqual(len(movements), 2)
        self.assertEqual(get_stock_quantity(self.product.id, self.warehouse.id), Decimal("7.5"))
        self.assertEqual(get_total_stock_quantity(self.product.id), Decimal("10.5"))
        self.assertEqual(get_movement_balance(self.product.id, self.warehouse.id), Decimal("7.5"))
        self.assertEqual(get_movement_balance(self.product.id, self.backroom.id), Decimal("3"))

    def test_stock_movements_are_append_only(self):
        self.add_stock(self.product, 1)
        movement = StockMovement.objects.get()

        movement.notes = "edited"
        with self.assertRaises(InternalError):
            movement.save()
        with self.assertRaises(InternalError):
            movement.delete()

    def test_update_product_cost_uses_last_cost_by_default(self):
        self.assertEqual(update_product_cost(self.product, Decimal("5"), Decimal("7000"), Decimal("10")), Decimal("7000.00"))
        self.assertEqual(update_product_cost(self.product, Decimal("0"), Decimal("1")), Decimal("7000.00"))

    @override_settings(INVENTORY_WEIGHTED_AVERAGE_COST=True)
    def test_update_product_cost_weighted_average(self):
        self.assertEqual(update_product_cost(self.product, Decimal("10"), Decimal("8000"), Decimal("10")), Decimal("7000.00"))
        self.assertEqual(update_product_cost(self.product, Decimal("3"), Decimal("1000.004"), Decimal("-2")), Decimal("1000.00"))
        self.product.refresh_from_db()
        self.assertEqual(self.product.cost_price, Decimal("1000.00"))


class InventoryApiTests(RetailFixtureMixin, TestCase):
    def setUp(self):
        self.create_fixtures()

    def test_product_list_is_paginated_and_searchable(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.get("/api/v1/products/", {"search": "wat"})

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(sorted(payload.keys()), ["count", "next", "previous", "results"])
        self.assertEqual([item["sku"] for item in payload["results"]], ["WATER-12"])
        self.assertEqual(payload["results"][0]["base_unit_code"], "PCS")

    def test_admin_create_product_validates_conversion_rate(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post(
            "/api/v1/products/",
            {"sku": "OIL-1", "name": "Oil", "unit": str(self.piece.id), "conversion_rate": "6"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertEqual(body["code"], "validation_error")
        self.assertIn("conversion_rate", body["errors"])

    def test_admin_create_product_writes_audit_log(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post(
            "/api/v1/products/",
            {
                "sku": "OIL-6",
                "name": "Oil six pack",
                "unit": str(self.box.id),
                "base_unit": str(self.piece.id),
                "conversion_rate": "6",
                "sale_price": "90000",
            },
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        log = AuditLog.objects.get(action="product.create")
        self.assertEqual(str(log.entity_id), response.json()["id"])
        self.assertEqual(log.actor, self.admin)

    def test_cashier_cannot_manage_products(self):
        self.client.force_authenticate(user=self.cashier)

        with self.assertLogs("security.authorization", level="WARNING"):
            response = self.client.post("/api/v1/products/", {"sku": "X", "name": "X", "unit": str(self.piece.id)}, format="json")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "permission_denied")

    def test_only_one_default_warehouse(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post("/api/v1/warehouses/", {"code": "W2", "name": "Second", "is_default": True}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("is_default", response.json()["errors"])

    def test_stock_movements_filter_by_product(self):
        self.add_stock(self.product, 5)
        self.add_stock(self.boxed, 12)
        self.client.force_authenticate(user=self.supervisor)

        response = self.client.get("/api/v1/stock-movements/", {"product_id": str(self.boxed.id)})

        self.assertEqual(response.status_code, 200)
        results = response.json()["results"]
        self.assertEqual(len(results), 1)
        self.assertEqual(results[0]["direction"], "in")
        self.assertEqual(Decimal(results[0]["quantity"]), Decimal("12"))


class PurchaseOrderApiTests(RetailFixtureMixin, TestCase):
    def setUp(self):
        self.create_fixtures()

    def _create(self, **overrides):
        payload = {
            "supplier_id": str(self.supplier.id),
            "payment_method": "credit",
            "lines": [
                {"product_id": str(self.product.id), "unit_id": str(self.piece.id), "quantity": "10", "unit_price": "5000"},
            ],
            **overrides,
        }
        return self.client.post("/api/v1/purchase-orders/", payload, format="json")

    def test_create_place_and_receive(self):
        self.client.force_authenticate(user=self.supervisor)

        created = self._create()
        self.assertEqual(created.status_code, 201)
        body = created.json()
        self.assertEqual(body["status"], "draft")
        self.assertEqual(body["created_by"], "supervisor")
        order_id = body["id"]
        line_id = body["lines"][0]["id"]

        placed = self.client.post(f"/api/v1/purchase-orders/{order_id}/place/", {}, format="json")
        self.assertEqual(placed.status_code, 200)
        self.assertEqual(placed.json()["status"], "ordered")

        received = self.client.post(
            f"/api/v1/purchase-orders/{order_id}/receive/",
            {"warehouse_id": str(self.warehouse.id), "items": [{"order_item_id": line_id, "received_quantity": "4"}]},
            format="json",
        )
        self.assertEqual(received.status_code, 200)
        self.assertEqual(received.json()["status"], "partial_received")
        self.assertEqual(Decimal(received.json()["lines"][0]["remaining_quantity"]), Decimal("6"))
        self.assertEqual(get_stock_quantity(self.product.id, self.warehouse.id), Decimal("4"))
        self.assertTrue(AuditLog.objects.filter(action="purchase_order.receive", entity_id=order_id).exists())

    def test_over_receipt_returns_error_envelope(self):
        self.client.force_authenticate(user=self.supervisor)
        body = self._create(place=True).json()

        response = self.client.post(
            f"/api/v1/purchase-orders/{body['id']}/receive/",
            {"warehouse_id": str(self.warehouse.id), "items": [{"order_item_id": body["lines"][0]["id"], "received_quantity": "11"}]},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        envelope = response.json()
        self.assertEqual(sorted(envelope.keys()), ["code", "errors", "message", "status"])
        self.assertEqual(envelope["code"], "validation_error")
        self.assertEqual(envelope["errors"]["remaining"], "10.000")

    def test_update_and_delete_only_while_draft(self):
        self.client.force_authenticate(user=self.supervisor)
        order_id = self._create().json()["id"]

        updated = self.client.put(
            f"/api/v1/purchase-orders/{order_id}/",
            {
                "supplier_id": str(self.supplier.id),
                "lines": [{"product_id": str(self.product.id), "unit_id": str(self.piece.id), "quantity": "2", "unit_price": "1000"}],
            },
            format="json",
        )
        self.assertEqual(updated.status_code, 200)
        self.assertEqual(Decimal(updated.json()["total"]), Decimal("2000"))

        self.client.post(f"/api/v1/purchase-orders/{order_id}/place/", {}, format="json")
        conflict = self.client.delete(f"/api/v1/purchase-orders/{order_id}/")
        self.assertEqual(conflict.status_code, 409)
        self.assertEqual(conflict.json()["code"], "state_conflict")

        self.client.post(f"/api/v1/purchase-orders/{order_id}/cancel/", {}, format="json")
        deleted = self.client.delete(f"/api/v1/purchase-orders/{order_id}/")
        self.assertEqual(deleted.status_code, 204)
        self.assertFalse(PurchaseOrder.objects.filter(id=order_id).exists())

    def test_cashier_cannot_receive_goods(self):
        self.client.force_authenticate(user=self.supervisor)
        body = self._create(place=True).json()
        self.client.force_authenticate(user=self.cashier)

        with self.assertLogs("security.authorization", level="WARNING") as logs:
            response = self.client.post(
                f"/api/v1/purchase-orders/{body['id']}/receive/",
                {"warehouse_id": str(self.warehouse.id), "items": [{"order_item_id": body["lines"][0]["id"], "received_quantity": "1"}]},
                format="json",
            )

        self.assertEqual(response.status_code, 403)
        self.assertIn("capability=stock.receive", logs.output[0])
