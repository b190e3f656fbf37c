import json
import logging

from django.contrib.auth import get_user_model
from django.test import TestCase
from rest_framework.test import APIClient

from common.logging import JsonFormatter
from common.testing import RetailFixtureMixin
from core.models import AuditLog


class TokenTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.user = self.user_model.objects.create_user(
            username="till-1",
            email="Till1@Example.com",
            password="pass1234",
            role=self.user_model.Role.SUPERVISOR,
        )

    def test_email_is_normalized(self):
        self.user.refresh_from_db()
        self.assertEqual(self.user.email, "till1@example.com")

    def test_token_accepts_email_or_username(self):
        by_email = self.client.post("/api/v1/token/", {"username": "TILL1@example.com", "password": "pass1234"}, format="json")
        by_username = self.client.post("/api/v1/token/", {"username": "till-1", "password": "pass1234"}, format="json")

        self.assertEqual(by_email.status_code, 200)
        self.assertEqual(by_username.status_code, 200)
        self.assertIn("access", by_email.json())
        self.assertIn("refresh", by_username.json())

    def test_wrong_password_uses_error_envelope(self):
        response = self.client.post("/api/v1/token/", {"username": "till-1", "password": "nope"}, format="json")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "authentication_failed")

    def test_anonymous_requests_are_rejected(self):
        response = self.client.get("/api/v1/sale-orders/")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "not_authenticated")


class AuditLogApiTests(RetailFixtureMixin, TestCase):
    def setUp(self):
        self.create_fixtures()
        self.add_stock(self.product, 5)

    def test_settlement_request_id_is_recorded(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.post(
            "/api/v1/sale-orders/",
            {
                "paid_amount": "10000",
                "lines": [{"product_id": str(self.product.id), "unit_id": str(self.piece.id), "quantity": "1", "unit_price": "10000"}],
            },
            format="json",
            HTTP_X_REQUEST_ID="req-123",
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response["X-Request-ID"], "req-123")
        self.assertTrue(AuditLog.objects.filter(action="sale_order.create", entity="sale_order", request_id="req-123").exists())

    def test_audit_logs_are_read_only(self):
        self.client.force_authenticate(user=self.admin)
        log = AuditLog.objects.create(action="test.action", entity="test", actor=self.admin)

        patch_res = self.client.patch(f"/api/v1/admin/audit-logs/{log.id}/", {"action": "changed"}, format="json")
        delete_res = self.client.delete(f"/api/v1/admin/audit-logs/{log.id}/")

        self.assertEqual(patch_res.status_code, 405)
        self.assertEqual(delete_res.status_code, 405)

    def test_audit_logs_filter_and_export(self):
        self.client.force_authenticate(user=self.admin)
        AuditLog.objects.create(action="sale_order.create", entity="sale_order", actor=self.admin)
        AuditLog.objects.create(action="customer.create", entity="customer", actor=self.admin)

        listed = self.client.get("/api/v1/admin/audit-logs/", {"entity": "customer"})
        exported = self.client.get("/api/v1/admin/audit-logs/export/")

        self.assertEqual(listed.status_code, 200)
        self.assertEqual([item["action"] for item in listed.json()["results"]], ["customer.create"])
        self.assertEqual(exported.status_code, 200)
        self.assertEqual(exported["Content-Type"], "text/csv")
        self.assertEqual(len(exported.content.decode().strip().splitlines()), 3)

    def test_supervisor_cannot_read_audit_logs(self):
        self.client.force_authenticate(user=self.supervisor)

        with self.assertLogs("security.authorization", level="WARNING") as cm:
            response = self.client.get("/api/v1/admin/audit-logs/")

        self.assertEqual(response.status_code, 403)
        self.assertIn("capability=admin.records.manage", cm.output[0])


class HealthTests(TestCase):
    def setUp(self):
        self.client = APIClient()

    def test_healthz_and_readyz(self):
        health = self.client.get("/api/v1/healthz/", HTTP_X_REQUEST_ID="probe-1")
        ready = self.client.get("/api/v1/readyz/")

        self.assertEqual(health.status_code, 200)
        self.assertEqual(health.json(), {"status": "ok", "request_id": "probe-1"})
        self.assertEqual(ready.status_code, 200)
        self.assertEqual(ready.json()["status"], "ready")


class JsonFormatterTests(TestCase):
    def test_settlement_fields_are_included(self):
        record = logging.LogRecord("settlement", logging.WARNING, __file__, 1, "settlement_rejected", None, None)
        record.event_type = "sale.create"
        record.error_code = "validation_error"
        record.order_id = None

        payload = json.loads(JsonFormatter().format(record))

        self.assertEqual(payload["message"], "settlement_rejected")
        self.assertEqual(payload["event_type"], "sale.create")
        self.assertEqual(payload["error_code"], "validation_error")
        self.assertNotIn("order_id", payload)
