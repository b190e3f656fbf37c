from datetime import timedelta
from decimal import Decimal

from django.test import TestCase
from django.utils import timezone

from common.choices import PaymentMethod
from common.errors import InternalError, ValidationError
from common.testing import RetailFixtureMixin
from finance.models import CashbookEntry, DebtAccount, DebtTransaction
from finance.services import (
    lock_customer_account,
    lock_supplier_account,
    post_adjustment,
    post_invoice,
    post_payment,
    post_refund,
    record_cash_entry,
    record_manual_cash_entry,
    summarize_cashbook,
)


class DebtLedgerTests(RetailFixtureMixin, TestCase):
    def setUp(self):
        self.create_fixtures()
        self.account = lock_customer_account(self.customer)

    def test_accounts_are_created_once_per_counterparty(self):
        self.assertEqual(lock_customer_account(self.customer).id, self.account.id)
        payable = lock_supplier_account(self.supplier)
        self.assertEqual(payable.kind, DebtAccount.Kind.PAYABLE)
        self.assertEqual(DebtAccount.objects.count(), 2)

    def test_invoice_tracks_latest_due_date(self):
        today = timezone.localdate()
        post_invoice(self.account, Decimal("100"), due_date=today + timedelta(days=30))
        post_invoice(self.account, Decimal("50"), due_date=today + timedelta(days=10))

        self.assertEqual(self.account.balance, Decimal("150.00"))
        self.assertEqual(self.account.payment_due_date, today + timedelta(days=30))

    def test_payment_cannot_exceed_balance(self):
        post_invoice(self.account, Decimal("100"), due_date=timezone.localdate())

        with self.assertRaises(ValidationError):
            post_payment(self.account, Decimal("150"))

        txn = post_payment(self.account, Decimal("100"))

        self.assertEqual(txn.balance_before, Decimal("100.00"))
        self.assertEqual(txn.balance_after, Decimal("0.00"))
        self.account.refresh_from_db()
        self.assertEqual(self.account.balance, Decimal("0.00"))
        self.assertIsNone(self.account.payment_due_date)

    def test_order_payment_floors_at_zero(self):
        post_invoice(self.account, Decimal("100"))

        with self.assertLogs("finance.services", level="WARNING"):
            txn = post_payment(self.account, Decimal("120"), floor_at_zero=True)

        self.assertEqual(txn.amount, Decimal("120.00"))
        self.assertEqual(txn.balance_after, Decimal("0.00"))

    def test_non_positive_amounts_are_rejected(self):
        for post in (post_invoice, post_payment, post_refund):
            with self.assertRaises(ValidationError):
                post(self.account, Decimal("0"))
        with self.assertRaises(ValidationError):
            post_adjustment(self.account, Decimal("0"))

    def test_adjustment_keeps_balance_non_negative(self):
        post_invoice(self.account, Decimal("100"))
        post_adjustment(self.account, Decimal("-40"))

        with self.assertRaises(ValidationError):
            post_adjustment(self.account, Decimal("-60.01"))

        self.assertEqual(self.account.balance, Decimal("60.00"))
        self.assertCountEqual(
            self.account.transactions.values_list("transaction_type", flat=True),
            [DebtTransaction.Type.INVOICE, DebtTransaction.Type.ADJUSTMENT],
        )

    def test_refund_is_capped_at_zero(self):
        post_invoice(self.account, Decimal("20"))

        with self.assertLogs("finance.services", level="WARNING") as logs:
            txn = post_refund(self.account, Decimal("30"))

        self.assertIn("debt_refund_capped_at_zero", logs.output[0])
        self.assertEqual(txn.balance_after, Decimal("0.00"))

    def test_transactions_are_append_only(self):
        txn = post_invoice(self.account, Decimal("10"))

        with self.assertRaises(InternalError):
            txn.save()
        with self.assertRaises(InternalError):
            txn.delete()


class CashbookTests(TestCase):
    def test_cash_entries_require_positive_amount_and_cash_method(self):
        with self.assertRaises(ValidationError):
            record_cash_entry(CashbookEntry.EntryType.INCOME, CashbookEntry.Category.SALE, Decimal("0"))
        with self.assertRaises(ValidationError):
            record_cash_entry(
                CashbookEntry.EntryType.INCOME,
                CashbookEntry.Category.SALE,
                Decimal("10"),
                payment_method=PaymentMethod.CREDIT,
            )

    def test_manual_entries_cannot_use_settlement_categories(self):
        with self.assertRaises(ValidationError):
            record_manual_cash_entry(entry_type=CashbookEntry.EntryType.INCOME, category=CashbookEntry.Category.SALE, amount=Decimal("10"))

        entry = record_manual_cash_entry(
            entry_type=CashbookEntry.EntryType.EXPENSE,
            category=CashbookEntry.Category.RENT,
            amount=Decimal("2500000"),
            payment_method=PaymentMethod.BANK_TRANSFER,
            bank_account="VCB-001",
        )
        self.assertEqual(entry.reference_type, "")
        self.assertIsNone(entry.reference)

    def test_summary_nets_income_and_expense(self):
        record_cash_entry(CashbookEntry.EntryType.INCOME, CashbookEntry.Category.SALE, Decimal("300"))
        record_cash_entry(CashbookEntry.EntryType.EXPENSE, CashbookEntry.Category.REFUND, Decimal("120.50"))

        summary = summarize_cashbook(CashbookEntry.objects.all())

        self.assertEqual(summary, {"income": Decimal("300.00"), "expense": Decimal("120.50"), "net": Decimal("179.50")})
        self.assertEqual(summarize_cashbook(CashbookEntry.objects.none())["net"], Decimal("0.00"))


class DebtAccountApiTests(RetailFixtureMixin, TestCase):
    def setUp(self):
        self.create_fixtures()
        self.add_stock(self.product, 20)
        self.make_sale(payment_method=PaymentMethod.CREDIT, customer=self.customer)
        self.account = DebtAccount.objects.get(customer=self.customer)

    def test_list_outstanding_accounts(self):
        lock_supplier_account(self.supplier)
        self.client.force_authenticate(user=self.cashier)

        response = self.client.get("/api/v1/debt-accounts/", {"outstanding": "true"})

        self.assertEqual(response.status_code, 200)
        results = response.json()["results"]
        self.assertEqual([item["id"] for item in results], [str(self.account.id)])
        self.assertEqual(results[0]["counterparty_name"], "Lan Nguyen")

    def test_payment_over_balance_returns_envelope(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.post(f"/api/v1/debt-accounts/{self.account.id}/payments/", {"amount": "150000"}, format="json")

        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertEqual(body["code"], "validation_error")
        self.assertEqual(body["errors"]["balance"], "100000.00")

    def test_payment_and_transaction_history(self):
        self.client.force_authenticate(user=self.cashier)

        created = self.client.post(
            f"/api/v1/debt-accounts/{self.account.id}/payments/",
            {"amount": "100000", "payment_method": "momo", "description": "Settled at counter"},
            format="json",
        )

        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()["transaction_type"], "payment")
        self.assertEqual(created.json()["created_by"], "cashier")

        history = self.client.get(f"/api/v1/debt-accounts/{self.account.id}/transactions/")
        self.assertEqual(history.status_code, 200)
        self.assertEqual(history.json()["count"], 2)

        account = self.client.get(f"/api/v1/debt-accounts/{self.account.id}/").json()
        self.assertEqual(Decimal(account["balance"]), Decimal("0"))
        self.assertIsNone(account["payment_due_date"])
        self.assertEqual(CashbookEntry.objects.get(category=CashbookEntry.Category.DEBT_COLLECTION).payment_method, "momo")

    def test_adjustment_requires_supervisor(self):
        self.client.force_authenticate(user=self.cashier)
        with self.assertLogs("security.authorization", level="WARNING"):
            denied = self.client.post(f"/api/v1/debt-accounts/{self.account.id}/adjustments/", {"amount": "-1000"}, format="json")
        self.assertEqual(denied.status_code, 403)

        self.client.force_authenticate(user=self.supervisor)
        allowed = self.client.post(f"/api/v1/debt-accounts/{self.account.id}/adjustments/", {"amount": "-1000"}, format="json")
        self.assertEqual(allowed.status_code, 201)
        self.assertEqual(Decimal(allowed.json()["balance_after"]), Decimal("99000"))


class CashbookApiTests(RetailFixtureMixin, TestCase):
    def setUp(self):
        self.create_fixtures()

    def test_cashier_cannot_read_cashbook(self):
        self.client.force_authenticate(user=self.cashier)

        with self.assertLogs("security.authorization", level="WARNING"):
            response = self.client.get("/api/v1/cashbook/")

        self.assertEqual(response.status_code, 403)

    def test_supervisor_records_manual_entry_and_reads_summary(self):
        self.client.force_authenticate(user=self.supervisor)

        created = self.client.post(
            "/api/v1/cashbook/",
            {"entry_type": "expense", "category": "utilities", "amount": "450000", "description": "Electricity"},
            format="json",
        )
        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()["created_by"], "supervisor")

        reserved = self.client.post(
            "/api/v1/cashbook/",
            {"entry_type": "income", "category": "sale", "amount": "10"},
            format="json",
        )
        self.assertEqual(reserved.status_code, 400)
        self.assertEqual(reserved.json()["errors"], {"category": "sale"})

        summary = self.client.get("/api/v1/cashbook/summary/")
        self.assertEqual(summary.status_code, 200)
        self.assertEqual(Decimal(summary.json()["expense"]), Decimal("450000"))
        self.assertEqual(Decimal(summary.json()["net"]), Decimal("-450000"))

    def test_credit_manual_entry_is_rejected(self):
        self.client.force_authenticate(user=self.supervisor)

        response = self.client.post(
            "/api/v1/cashbook/",
            {"entry_type": "expense", "category": "rent", "amount": "10", "payment_method": "credit"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertFalse(CashbookEntry.objects.exists())
