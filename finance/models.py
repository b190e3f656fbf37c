import uuid

from django.db import models
from django.db.models import Q
from django.utils import timezone

from common.choices import PaymentMethod
from common.models import AppendOnlyModel, ReferencedModel
from inventory.models import Supplier
from sales.models import Customer


class DebtAccount(models.Model):
    """Running receivable (customer) or payable (supplier) balance."""

    class Kind(models.TextChoices):
        RECEIVABLE = "receivable", "Receivable"
        PAYABLE = "payable", "Payable"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    kind = models.CharField(max_length=16, choices=Kind.choices)
    customer = models.OneToOneField(Customer, on_delete=models.PROTECT, null=True, blank=True, related_name="debt_account")
    supplier = models.OneToOneField(Supplier, on_delete=models.PROTECT, null=True, blank=True, related_name="debt_account")
    balance = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    payment_due_date = models.DateField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [models.Index(fields=["kind", "balance"], name="fin_account_kind_balance_idx")]
        constraints = [
            models.CheckConstraint(condition=Q(balance__gte=0), name="debt_account_balance_non_negative"),
            models.CheckConstraint(
                condition=(
                    Q(kind="receivable", customer__isnull=False, supplier__isnull=True)
                    | Q(kind="payable", supplier__isnull=False, customer__isnull=True)
                ),
                name="debt_account_counterparty_matches_kind",
            ),
        ]

    @property
    def counterparty(self):
        return self.customer if self.kind == self.Kind.RECEIVABLE else self.supplier

    @property
    def is_overdue(self):
        return bool(self.balance > 0 and self.payment_due_date and self.payment_due_date < timezone.localdate())


class DebtTransaction(ReferencedModel, AppendOnlyModel):
    class Type(models.TextChoices):
        INVOICE = "invoice", "Invoice"
        PAYMENT = "payment", "Payment"
        ADJUSTMENT = "adjustment", "Adjustment"
        REFUND = "refund", "Refund"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    account = models.ForeignKey(DebtAccount, on_delete=models.PROTECT, related_name="transactions")
    transaction_type = models.CharField(max_length=16, choices=Type.choices)
    amount = models.DecimalField(max_digits=14, decimal_places=2)
    balance_before = models.DecimalField(max_digits=14, decimal_places=2)
    balance_after = models.DecimalField(max_digits=14, decimal_places=2)
    description = models.CharField(max_length=255, blank=True, default="")
    payment_method = models.CharField(max_length=16, choices=PaymentMethod.choices, blank=True, default="")
    due_date = models.DateField(null=True, blank=True)
    transaction_date = models.DateTimeField()
    created_by = models.CharField(max_length=150, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["account", "created_at"], name="fin_dtxn_account_created_idx"),
            models.Index(fields=["reference_type", "reference_id"], name="fin_dtxn_reference_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=Q(balance_after__gte=0), name="debt_txn_balance_after_non_negative"),
        ]


class CashbookEntry(ReferencedModel, AppendOnlyModel):
    class EntryType(models.TextChoices):
        INCOME = "income", "Income"
        EXPENSE = "expense", "Expense"

    class Category(models.TextChoices):
        SALE = "sale", "Sale"
        PURCHASE = "purchase", "Purchase"
        REFUND = "refund", "Refund"
        DEBT_COLLECTION = "debt_collection", "Debt Collection"
        DEBT_PAYMENT = "debt_payment", "Debt Payment"
        RENT = "rent", "Rent"
        UTILITIES = "utilities", "Utilities"
        SALARY = "salary", "Salary"
        MARKETING = "marketing", "Marketing"
        SUPPLIES = "supplies", "Supplies"
        MAINTENANCE = "maintenance", "Maintenance"
        TAX = "tax", "Tax"
        OTHER = "other", "Other"

    MANUAL_CATEGORIES = (
        Category.RENT,
        Category.UTILITIES,
        Category.SALARY,
        Category.MARKETING,
        Category.SUPPLIES,
        Category.MAINTENANCE,
        Category.TAX,
        Category.OTHER,
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    entry_type = models.CharField(max_length=16, choices=EntryType.choices)
    category = models.CharField(max_length=32, choices=Category.choices)
    amount = models.DecimalField(max_digits=14, decimal_places=2)
    description = models.CharField(max_length=255, blank=True, default="")
    payment_method = models.CharField(max_length=16, choices=PaymentMethod.choices, default=PaymentMethod.CASH)
    bank_account = models.CharField(max_length=64, blank=True, default="")
    transaction_date = models.DateTimeField()
    created_by = models.CharField(max_length=150, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name_plural = "cashbook entries"
        indexes = [
            models.Index(fields=["transaction_date"], name="fin_cash_txn_date_idx"),
            models.Index(fields=["entry_type", "category"], name="fin_cash_type_category_idx"),
            models.Index(fields=["reference_type", "reference_id"], name="fin_cash_reference_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=Q(amount__gt=0), name="cashbook_entry_amount_positive"),
        ]
