from rest_framework import serializers

from sales.models import Customer, ReturnOrder, ReturnOrderLine, SaleOrder, SaleOrderLine


class CustomerSerializer(serializers.ModelSerializer):
    class Meta:
        model = Customer
        fields = ["id", "code", "name", "phone", "email", "address", "is_active", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]

    def validate_email(self, value):
        return value.strip().lower()


class SaleOrderLineSerializer(serializers.ModelSerializer):
    product_sku = serializers.CharField(source="product.sku", read_only=True)
    returnable_quantity = serializers.DecimalField(max_digits=14, decimal_places=3, read_only=True)

    class Meta:
        model = SaleOrderLine
        fields = [
            "id",
            "product",
            "product_sku",
            "unit",
            "quantity",
            "returned_quantity",
            "returnable_quantity",
            "unit_price",
            "cost_price",
            "discount_type",
            "discount_value",
            "discount_amount",
            "line_total",
        ]
        read_only_fields = fields


class SaleOrderSerializer(serializers.ModelSerializer):
    customer_name = serializers.CharField(source="customer.name", read_only=True, default=None)
    balance_due = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)
    lines = SaleOrderLineSerializer(many=True, read_only=True)

    class Meta:
        model = SaleOrder
        fields = [
            "id",
            "code",
            "customer",
            "customer_name",
            "warehouse",
            "status",
            "order_date",
            "completed_at",
            "payment_due_date",
            "subtotal",
            "discount_type",
            "discount_value",
            "discount_amount",
            "total",
            "payment_method",
            "paid_amount",
            "balance_due",
            "notes",
            "created_by",
            "created_at",
            "updated_at",
            "lines",
        ]
        read_only_fields = fields


class ReturnOrderLineSerializer(serializers.ModelSerializer):
    class Meta:
        model = ReturnOrderLine
        fields = ["id", "sale_order_line", "product", "unit", "quantity", "unit_price", "line_total", "notes"]
        read_only_fields = fields


class ReturnOrderSerializer(serializers.ModelSerializer):
    sale_order_code = serializers.CharField(source="sale_order.code", read_only=True)
    lines = ReturnOrderLineSerializer(many=True, read_only=True)

    class Meta:
        model = ReturnOrder
        fields = [
            "id",
            "code",
            "sale_order",
            "sale_order_code",
            "customer",
            "warehouse",
            "status",
            "return_date",
            "completed_at",
            "subtotal",
            "total",
            "refund_amount",
            "refund_method",
            "update_receivables",
            "create_cashbook_entry",
            "reason",
            "notes",
            "created_by",
            "created_at",
            "updated_at",
            "lines",
        ]
        read_only_fields = fields
