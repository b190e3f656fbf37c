import logging
from decimal import Decimal

from django.db.models import Q, Sum
from django.utils import timezone

from common.choices import PaymentMethod
from common.errors import NotFoundError, ValidationError
from common.money import to_money
from finance.models import CashbookEntry, DebtAccount, DebtTransaction

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def lock_account(account_id):
    try:
        return DebtAccount.objects.select_for_update().get(pk=account_id)
    except DebtAccount.DoesNotExist:
        raise NotFoundError(f"Debt account {account_id} does not exist.") from None


def lock_customer_account(customer):
    account, _ = DebtAccount.objects.select_for_update().get_or_create(
        customer=customer,
        defaults={"kind": DebtAccount.Kind.RECEIVABLE},
    )
    return account


def lock_supplier_account(supplier):
    account, _ = DebtAccount.objects.select_for_update().get_or_create(
        supplier=supplier,
        defaults={"kind": DebtAccount.Kind.PAYABLE},
    )
    return account


def _append(account, transaction_type, amount, balance_after, *, due_date=None, reference=None, description="", payment_method="", transaction_date=None, created_by=""):
    balance_after = to_money(balance_after)
    txn = DebtTransaction.objects.create(
        account=account,
        transaction_type=transaction_type,
        amount=to_money(amount),
        balance_before=account.balance,
        balance_after=balance_after,
        description=description,
        payment_method=payment_method or "",
        due_date=due_date,
        transaction_date=transaction_date or timezone.now(),
        created_by=created_by,
        **(reference.as_fields() if reference else {}),
    )

    account.balance = balance_after
    if balance_after == ZERO:
        account.payment_due_date = None
    elif due_date and (account.payment_due_date is None or due_date > account.payment_due_date):
        account.payment_due_date = due_date
    account.save(update_fields=["balance", "payment_due_date", "updated_at"])
    return txn


def post_invoice(account, amount, **kwargs):
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError("Invoice amount must be greater than zero.", details={"amount": str(amount)})
    return _append(account, DebtTransaction.Type.INVOICE, amount, account.balance + amount, **kwargs)


def post_payment(account, amount, *, floor_at_zero=False, **kwargs):
    """Decrease the balance by ``amount``.

    Direct debt payments must not exceed the balance. Payments recorded against
    an order (``floor_at_zero``) may outrun a balance that was already settled
    elsewhere, so the result is floored at zero instead.
    """
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError("Payment amount must be greater than zero.", details={"amount": str(amount)})
    if amount > account.balance and not floor_at_zero:
        raise ValidationError(
            "Payment amount cannot be greater than the outstanding balance.",
            details={"amount": str(amount), "balance": str(account.balance)},
        )
    if amount > account.balance:
        logger.warning(
            "debt_payment_capped_at_zero",
            extra={"account_id": str(account.pk), "event_type": "payment"},
        )
    return _append(account, DebtTransaction.Type.PAYMENT, amount, max(account.balance - amount, ZERO), **kwargs)


def post_adjustment(account, amount, **kwargs):
    amount = to_money(amount)
    if amount == 0:
        raise ValidationError("Adjustment amount must not be zero.")
    balance_after = account.balance + amount
    if balance_after < 0:
        raise ValidationError(
            "Adjustment would make the balance negative.",
            details={"amount": str(amount), "balance": str(account.balance)},
        )
    return _append(account, DebtTransaction.Type.ADJUSTMENT, amount, balance_after, **kwargs)


def post_refund(account, amount, **kwargs):
    """Refunds larger than the outstanding balance are capped so the balance stops at zero."""
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError("Refund amount must be greater than zero.", details={"amount": str(amount)})
    if amount > account.balance:
        logger.warning(
            "debt_refund_capped_at_zero",
            extra={"account_id": str(account.pk), "event_type": "refund"},
        )
    return _append(account, DebtTransaction.Type.REFUND, amount, max(account.balance - amount, ZERO), **kwargs)


def record_cash_entry(entry_type, category, amount, *, payment_method=PaymentMethod.CASH, reference=None, description="", bank_account="", transaction_date=None, created_by=""):
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError("Cashbook amount must be greater than zero.", details={"amount": str(amount)})
    if payment_method == PaymentMethod.CREDIT:
        raise ValidationError("Credit settlements do not move cash.", details={"payment_method": payment_method})
    return CashbookEntry.objects.create(
        entry_type=entry_type,
        category=category,
        amount=amount,
        description=description,
        payment_method=payment_method,
        bank_account=bank_account,
        transaction_date=transaction_date or timezone.now(),
        created_by=created_by,
        **(reference.as_fields() if reference else {}),
    )


def record_manual_cash_entry(*, entry_type, category, amount, payment_method=PaymentMethod.CASH, description="", bank_account="", transaction_date=None, created_by=""):
    if category not in CashbookEntry.MANUAL_CATEGORIES:
        raise ValidationError(
            f"Category '{category}' is reserved for settlement entries.",
            details={"category": category},
        )
    return record_cash_entry(
        entry_type,
        category,
        amount,
        payment_method=payment_method,
        description=description,
        bank_account=bank_account,
        transaction_date=transaction_date,
        created_by=created_by,
    )


def summarize_cashbook(queryset):
    totals = queryset.aggregate(
        income=Sum("amount", filter=Q(entry_type=CashbookEntry.EntryType.INCOME)),
        expense=Sum("amount", filter=Q(entry_type=CashbookEntry.EntryType.EXPENSE)),
    )
    income = to_money(totals["income"])
    expense = to_money(totals["expense"])
    return {"income": income, "expense": expense, "net": income - expense}
