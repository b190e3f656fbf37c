import uuid

import django.db.models.deletion
from django.db import migrations, models


PAYMENT_METHOD_CHOICES = [
    ("cash", "Cash"),
    ("bank_transfer", "Bank Transfer"),
    ("vietqr", "VietQR"),
    ("momo", "MoMo"),
    ("zalopay", "ZaloPay"),
    ("credit", "Credit"),
]
REFERENCE_KIND_CHOICES = [
    ("sale_order", "Sale Order"),
    ("purchase_order", "Purchase Order"),
    ("return_order", "Return Order"),
    ("debt_transaction", "Debt Transaction"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("inventory", "0001_initial"),
        ("sales", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="DebtAccount",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "kind",
                    models.CharField(choices=[("receivable", "Receivable"), ("payable", "Payable")], max_length=16),
                ),
                ("balance", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ("payment_due_date", models.DateField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "customer",
                    models.OneToOneField(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="debt_account",
                        to="sales.customer",
                    ),
                ),
                (
                    "supplier",
                    models.OneToOneField(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="debt_account",
                        to="inventory.supplier",
                    ),
                ),
            ],
            options={
                "indexes": [models.Index(fields=["kind", "balance"], name="fin_account_kind_balance_idx")],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("balance__gte", 0)),
                        name="debt_account_balance_non_negative",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(("customer__isnull", False), ("kind", "receivable"), ("supplier__isnull", True)),
                            models.Q(("customer__isnull", True), ("kind", "payable"), ("supplier__isnull", False)),
                            _connector="OR",
                        ),
                        name="debt_account_counterparty_matches_kind",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="DebtTransaction",
            fields=[
                ("reference_type", models.CharField(blank=True, choices=REFERENCE_KIND_CHOICES, default="", max_length=32)),
                ("reference_id", models.UUIDField(blank=True, null=True)),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "transaction_type",
                    models.CharField(
                        choices=[
                            ("invoice", "Invoice"),
                            ("payment", "Payment"),
                            ("adjustment", "Adjustment"),
                            ("refund", "Refund"),
                        ],
                        max_length=16,
                    ),
                ),
                ("amount", models.DecimalField(decimal_places=2, max_digits=14)),
                ("balance_before", models.DecimalField(decimal_places=2, max_digits=14)),
                ("balance_after", models.DecimalField(decimal_places=2, max_digits=14)),
                ("description", models.CharField(blank=True, default="", max_length=255)),
                ("payment_method", models.CharField(blank=True, choices=PAYMENT_METHOD_CHOICES, default="", max_length=16)),
                ("due_date", models.DateField(blank=True, null=True)),
                ("transaction_date", models.DateTimeField()),
                ("created_by", models.CharField(blank=True, default="", max_length=150)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "account",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transactions",
                        to="finance.debtaccount",
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["account", "created_at"], name="fin_dtxn_account_created_idx"),
                    models.Index(fields=["reference_type", "reference_id"], name="fin_dtxn_reference_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("balance_after__gte", 0)),
                        name="debt_txn_balance_after_non_negative",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="CashbookEntry",
            fields=[
                ("reference_type", models.CharField(blank=True, choices=REFERENCE_KIND_CHOICES, default="", max_length=32)),
                ("reference_id", models.UUIDField(blank=True, null=True)),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("entry_type", models.CharField(choices=[("income", "Income"), ("expense", "Expense")], max_length=16)),
                (
                    "category",
                    models.CharField(
                        choices=[
                            ("sale", "Sale"),
                            ("purchase", "Purchase"),
                            ("refund", "Refund"),
                            ("debt_collection", "Debt Collection"),
                            ("debt_payment", "Debt Payment"),
                            ("rent", "Rent"),
                            ("utilities", "Utilities"),
                            ("salary", "Salary"),
                            ("marketing", "Marketing"),
                            ("supplies", "Supplies"),
                            ("maintenance", "Maintenance"),
                            ("tax", "Tax"),
                            ("other", "Other"),
                        ],
                        max_length=32,
                    ),
                ),
                ("amount", models.DecimalField(decimal_places=2, max_digits=14)),
                ("description", models.CharField(blank=True, default="", max_length=255)),
                ("payment_method", models.CharField(choices=PAYMENT_METHOD_CHOICES, default="cash", max_length=16)),
                ("bank_account", models.CharField(blank=True, default="", max_length=64)),
                ("transaction_date", models.DateTimeField()),
                ("created_by", models.CharField(blank=True, default="", max_length=150)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "verbose_name_plural": "cashbook entries",
                "indexes": [
                    models.Index(fields=["transaction_date"], name="fin_cash_txn_date_idx"),
                    models.Index(fields=["entry_type", "category"], name="fin_cash_type_category_idx"),
                    models.Index(fields=["reference_type", "reference_id"], name="fin_cash_reference_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", 0)),
                        name="cashbook_entry_amount_positive",
                    )
                ],
            },
        ),
    ]
