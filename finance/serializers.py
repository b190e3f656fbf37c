from rest_framework import serializers

from common.choices import PaymentMethod
from finance.models import CashbookEntry, DebtAccount, DebtTransaction


class DebtAccountSerializer(serializers.ModelSerializer):
    counterparty_name = serializers.SerializerMethodField()
    is_overdue = serializers.BooleanField(read_only=True)

    class Meta:
        model = DebtAccount
        fields = [
            "id",
            "kind",
            "customer",
            "supplier",
            "counterparty_name",
            "balance",
            "payment_due_date",
            "is_overdue",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_counterparty_name(self, obj):
        counterparty = obj.counterparty
        return counterparty.name if counterparty else None


class DebtTransactionSerializer(serializers.ModelSerializer):
    class Meta:
        model = DebtTransaction
        fields = [
            "id",
            "account",
            "transaction_type",
            "amount",
            "balance_before",
            "balance_after",
            "description",
            "payment_method",
            "due_date",
            "reference_type",
            "reference_id",
            "transaction_date",
            "created_by",
            "created_at",
        ]
        read_only_fields = fields


class CashbookEntrySerializer(serializers.ModelSerializer):
    class Meta:
        model = CashbookEntry
        fields = [
            "id",
            "entry_type",
            "category",
            "amount",
            "description",
            "payment_method",
            "bank_account",
            "reference_type",
            "reference_id",
            "transaction_date",
            "created_by",
            "created_at",
        ]
        read_only_fields = fields


class ManualCashbookEntrySerializer(serializers.Serializer):
    entry_type = serializers.ChoiceField(choices=CashbookEntry.EntryType.choices)
    category = serializers.ChoiceField(choices=CashbookEntry.Category.choices)
    amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    payment_method = serializers.ChoiceField(choices=PaymentMethod.choices, default=PaymentMethod.CASH)
    description = serializers.CharField(required=False, allow_blank=True, default="", max_length=255)
    bank_account = serializers.CharField(required=False, allow_blank=True, default="", max_length=64)
    transaction_date = serializers.DateTimeField(required=False, allow_null=True)
