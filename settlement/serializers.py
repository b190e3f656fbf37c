from rest_framework import serializers

from common.choices import PaymentMethod
from common.money import DiscountSpec, DiscountType
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
    ReturnItem,
    ReturnOrderRequest,
    SaleOrderRequest,
    StatusChangeRequest,
)


class DiscountSerializer(serializers.Serializer):
    type = serializers.ChoiceField(choices=DiscountType.choices, default=DiscountType.AMOUNT)
    value = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=0)


def _discount(data):
    return DiscountSpec(**data) if data else None


class SettlementRequestSerializer(serializers.Serializer):
    """Validates the shape of a settlement request and turns it into its typed request object.

    ``actor`` defaults to the authenticated username; ``event_id`` makes the request safe to retry.
    """

    request_class = None

    event_id = serializers.UUIDField(required=False, allow_null=True)
    actor = serializers.CharField(required=False, allow_blank=True, max_length=150)

    def convert(self, data):
        return data

    def to_request(self, user=None, **extra):
        data = dict(self.validated_data)
        actor = data.pop("actor", "") or (user.get_username() if user is not None and user.is_authenticated else "")
        return self.request_class(**self.convert(data), actor=actor, **extra)


class OrderLineInputSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    unit_id = serializers.UUIDField()
    quantity = serializers.DecimalField(max_digits=14, decimal_places=3)
    unit_price = serializers.DecimalField(max_digits=14, decimal_places=2)
    discount = DiscountSerializer(required=False, allow_null=True)


def _order_lines(lines):
    return [OrderLineInput(**{**line, "discount": _discount(line.get("discount"))}) for line in lines]


class SaleOrderInputSerializer(SettlementRequestSerializer):
    request_class = SaleOrderRequest

    customer_id = serializers.UUIDField(required=False, allow_null=True)
    warehouse_id = serializers.UUIDField(required=False, allow_null=True)
    payment_method = serializers.ChoiceField(choices=PaymentMethod.choices, default=PaymentMethod.CASH)
    paid_amount = serializers.DecimalField(max_digits=14, decimal_places=2, default=0)
    discount = DiscountSerializer(required=False, allow_null=True)
    payment_due_date = serializers.DateField(required=False, allow_null=True)
    order_date = serializers.DateTimeField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    complete = serializers.BooleanField(default=True)
    lines = OrderLineInputSerializer(many=True, allow_empty=False)

    def convert(self, data):
        return {**data, "lines": _order_lines(data["lines"]), "discount": _discount(data.get("discount"))}


class PurchaseOrderInputSerializer(SettlementRequestSerializer):
    request_class = PurchaseOrderRequest

    supplier_id = serializers.UUIDField()
    payment_method = serializers.ChoiceField(choices=PaymentMethod.choices, default=PaymentMethod.CASH)
    paid_amount = serializers.DecimalField(max_digits=14, decimal_places=2, default=0)
    discount = DiscountSerializer(required=False, allow_null=True)
    expected_delivery_date = serializers.DateField(required=False, allow_null=True)
    order_date = serializers.DateTimeField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    place = serializers.BooleanField(default=False)
    lines = OrderLineInputSerializer(many=True, allow_empty=False)

    def convert(self, data):
        return {**data, "lines": _order_lines(data["lines"]), "discount": _discount(data.get("discount"))}


class StatusChangeSerializer(SettlementRequestSerializer):
    request_class = StatusChangeRequest

    warehouse_id = serializers.UUIDField(required=False, allow_null=True)
    transaction_date = serializers.DateTimeField(required=False, allow_null=True)


class GoodsReceiptItemSerializer(serializers.Serializer):
    order_item_id = serializers.UUIDField()
    received_quantity = serializers.DecimalField(max_digits=14, decimal_places=3)
    expiry_date = serializers.DateField(required=False, allow_null=True)
    batch_number = serializers.CharField(required=False, allow_blank=True, default="", max_length=64)


class GoodsReceiptSerializer(SettlementRequestSerializer):
    request_class = GoodsReceiptRequest

    warehouse_id = serializers.UUIDField()
    received_date = serializers.DateTimeField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    items = GoodsReceiptItemSerializer(many=True, allow_empty=False)

    def convert(self, data):
        return {**data, "items": [GoodsReceiptItem(**item) for item in data["items"]]}


class ReturnItemSerializer(serializers.Serializer):
    sale_order_item_id = serializers.UUIDField()
    quantity = serializers.DecimalField(max_digits=14, decimal_places=3)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class RefundOptionsSerializer(SettlementRequestSerializer):
    refund_method = serializers.ChoiceField(choices=PaymentMethod.choices, default=PaymentMethod.CASH)
    reason = serializers.CharField(required=False, allow_blank=True, default="", max_length=255)
    update_receivables = serializers.BooleanField(default=True)
    create_cashbook_entry = serializers.BooleanField(default=True)
    warehouse_id = serializers.UUIDField(required=False, allow_null=True)


class ReturnOrderInputSerializer(RefundOptionsSerializer):
    request_class = ReturnOrderRequest

    sale_order_id = serializers.UUIDField()
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    complete = serializers.BooleanField(default=True)
    return_date = serializers.DateTimeField(required=False, allow_null=True)
    items = ReturnItemSerializer(many=True, allow_empty=False)

    def convert(self, data):
        return {**data, "items": [ReturnItem(**item) for item in data["items"]]}


class PartialRefundSerializer(RefundOptionsSerializer):
    request_class = PartialRefundRequest

    transaction_date = serializers.DateTimeField(required=False, allow_null=True)
    items = ReturnItemSerializer(many=True, allow_empty=False)

    def convert(self, data):
        return {**data, "items": [ReturnItem(**item) for item in data["items"]]}


class FullRefundSerializer(RefundOptionsSerializer):
    request_class = FullRefundRequest

    transaction_date = serializers.DateTimeField(required=False, allow_null=True)


class OrderPaymentSerializer(SettlementRequestSerializer):
    request_class = OrderPaymentRequest

    amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    payment_method = serializers.ChoiceField(choices=PaymentMethod.choices, default=PaymentMethod.CASH)
    description = serializers.CharField(required=False, allow_blank=True, default="", max_length=255)
    transaction_date = serializers.DateTimeField(required=False, allow_null=True)


class DebtPaymentSerializer(SettlementRequestSerializer):
    request_class = DebtPaymentRequest

    amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    payment_method = serializers.ChoiceField(choices=PaymentMethod.choices, required=False, allow_null=True, default=PaymentMethod.CASH)
    description = serializers.CharField(required=False, allow_blank=True, default="", max_length=255)
    transaction_date = serializers.DateTimeField(required=False, allow_null=True)


class DebtAdjustmentSerializer(SettlementRequestSerializer):
    request_class = DebtAdjustmentRequest

    amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    description = serializers.CharField(required=False, allow_blank=True, default="", max_length=255)
    transaction_date = serializers.DateTimeField(required=False, allow_null=True)
