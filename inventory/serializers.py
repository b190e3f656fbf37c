from rest_framework import serializers

from inventory.models import (
    Product,
    PurchaseOrder,
    PurchaseOrderLine,
    StockBatch,
    StockMovement,
    StockRecord,
    Supplier,
    UnitOfMeasure,
    Warehouse,
)


class UnitOfMeasureSerializer(serializers.ModelSerializer):
    class Meta:
        model = UnitOfMeasure
        fields = ["id", "code", "name", "is_active", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]


class ProductSerializer(serializers.ModelSerializer):
    unit_code = serializers.CharField(source="unit.code", read_only=True)
    base_unit_code = serializers.CharField(source="base_unit.code", read_only=True, default=None)

    class Meta:
        model = Product
        fields = [
            "id",
            "sku",
            "name",
            "unit",
            "unit_code",
            "base_unit",
            "base_unit_code",
            "conversion_rate",
            "cost_price",
            "sale_price",
            "is_active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]

    def validate_conversion_rate(self, value):
        if value <= 0:
            raise serializers.ValidationError("Conversion rate must be greater than zero.")
        return value

    def validate(self, attrs):
        unit = attrs.get("unit", getattr(self.instance, "unit", None))
        base_unit = attrs.get("base_unit", getattr(self.instance, "base_unit", None))
        conversion_rate = attrs.get("conversion_rate", getattr(self.instance, "conversion_rate", 1))
        if (base_unit is None or base_unit == unit) and conversion_rate != 1:
            raise serializers.ValidationError({"conversion_rate": "Conversion rate must be 1 without a distinct base unit."})
        return attrs


class WarehouseSerializer(serializers.ModelSerializer):
    class Meta:
        model = Warehouse
        fields = ["id", "code", "name", "is_default", "is_active", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]

    def validate(self, attrs):
        is_default = attrs.get("is_default", getattr(self.instance, "is_default", False))
        if is_default:
            others = Warehouse.objects.filter(is_default=True)
            if self.instance is not None:
                others = others.exclude(pk=self.instance.pk)
            if others.exists():
                raise serializers.ValidationError({"is_default": "Another warehouse is already the default."})
        return attrs


class SupplierSerializer(serializers.ModelSerializer):
    class Meta:
        model = Supplier
        fields = ["id", "code", "name", "phone", "email", "address", "is_active", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]


class StockRecordSerializer(serializers.ModelSerializer):
    product_sku = serializers.CharField(source="product.sku", read_only=True)
    warehouse_code = serializers.CharField(source="warehouse.code", read_only=True)

    class Meta:
        model = StockRecord
        fields = ["id", "product", "product_sku", "warehouse", "warehouse_code", "quantity", "reserved_quantity", "last_updated"]
        read_only_fields = fields


class StockMovementSerializer(serializers.ModelSerializer):
    class Meta:
        model = StockMovement
        fields = [
            "id",
            "product",
            "warehouse",
            "direction",
            "quantity",
            "cost_price",
            "reference_type",
            "reference_id",
            "transaction_date",
            "notes",
            "created_by",
            "created_at",
        ]
        read_only_fields = fields


class StockBatchSerializer(serializers.ModelSerializer):
    class Meta:
        model = StockBatch
        fields = ["id", "product", "warehouse", "batch_number", "quantity", "expiry_date", "received_date"]
        read_only_fields = fields


class PurchaseOrderLineSerializer(serializers.ModelSerializer):
    remaining_quantity = serializers.DecimalField(max_digits=14, decimal_places=3, read_only=True)

    class Meta:
        model = PurchaseOrderLine
        fields = [
            "id",
            "product",
            "unit",
            "quantity",
            "received_quantity",
            "remaining_quantity",
            "unit_price",
            "discount_type",
            "discount_value",
            "discount_amount",
            "line_total",
        ]
        read_only_fields = fields


class PurchaseOrderSerializer(serializers.ModelSerializer):
    supplier_name = serializers.CharField(source="supplier.name", read_only=True)
    balance_due = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)
    lines = PurchaseOrderLineSerializer(many=True, read_only=True)
    batches = StockBatchSerializer(many=True, read_only=True)

    class Meta:
        model = PurchaseOrder
        fields = [
            "id",
            "code",
            "supplier",
            "supplier_name",
            "status",
            "order_date",
            "expected_delivery_date",
            "received_date",
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
            "batches",
        ]
        read_only_fields = fields
