import logging
from dataclasses import dataclass
from decimal import Decimal

from django.conf import settings
from django.db.models import Case, DecimalField, F, Sum, When
from django.utils import timezone

from common.errors import ConfigurationError, NotFoundError, ValidationError
from common.money import to_money, to_quantity
from inventory.models import Product, StockMovement, StockRecord, Warehouse

logger = logging.getLogger(__name__)

MISSING_WAREHOUSE_ERROR = "error"
MISSING_WAREHOUSE_SKIP = "skip"


@dataclass(frozen=True)
class StockDelta:
    product: Product
    warehouse: Warehouse
    direction: str
    quantity: Decimal
    cost_price: Decimal = Decimal("0")

    @property
    def sort_key(self):
        return (str(self.product.pk), str(self.warehouse.pk))


def validate_transaction_unit(product, unit_id):
    """Only the product's stocking unit and its base unit can be transacted."""
    allowed = {product.unit_id}
    if product.base_unit_id:
        allowed.add(product.base_unit_id)
    if unit_id not in allowed:
        raise ValidationError(
            f"Unit is not valid for product {product.sku}.",
            details={"unit": str(unit_id), "product": str(product.pk)},
        )


def convert_to_base_units(product, unit_id, quantity):
    """Convert a transacted quantity to the product's base unit.

    Only the product's own conversion rate is known: a quantity in the stocking
    unit is multiplied by it, anything else is returned unchanged.
    """
    quantity = Decimal(str(quantity))
    if product.base_unit_id and unit_id == product.unit_id and unit_id != product.base_unit_id:
        return to_quantity(quantity * product.conversion_rate)
    return to_quantity(quantity)


def get_default_warehouse():
    return Warehouse.objects.filter(is_default=True, is_active=True).first()


def resolve_warehouse(warehouse_id=None, *, event_type=None):
    """Return the warehouse a stock-affecting settlement writes to.

    An explicit id must name an active warehouse. Without one the active default
    warehouse is used; when none exists ``SETTLEMENT_MISSING_WAREHOUSE_POLICY``
    decides between raising and skipping the stock side (``None`` is returned).
    """
    if warehouse_id:
        warehouse = Warehouse.objects.filter(pk=warehouse_id, is_active=True).first()
        if warehouse is None:
            raise NotFoundError(f"Warehouse {warehouse_id} does not exist or is inactive.")
        return warehouse

    warehouse = get_default_warehouse()
    if warehouse is not None:
        return warehouse

    policy = getattr(settings, "SETTLEMENT_MISSING_WAREHOUSE_POLICY", MISSING_WAREHOUSE_ERROR)
    if policy == MISSING_WAREHOUSE_SKIP:
        logger.warning("stock_update_skipped_no_default_warehouse", extra={"event_type": event_type})
        return None
    raise ConfigurationError("No active default warehouse is configured.")


def post_stock_movements(deltas, *, reference=None, transaction_date=None, created_by="", notes=""):
    """Apply stock deltas, pairing each StockRecord update with one StockMovement.

    Rows are locked in (product, warehouse) order so concurrent settlements that
    touch overlapping stock rows cannot deadlock.
    """
    transaction_date = transaction_date or timezone.now()
    movements = []
    for delta in sorted(deltas, key=lambda item: item.sort_key):
        quantity = to_quantity(delta.quantity)
        if quantity <= 0:
            continue

        record, _ = StockRecord.objects.select_for_update().get_or_create(
            product=delta.product,
            warehouse=delta.warehouse,
            defaults={"quantity": Decimal("0")},
        )
        if delta.direction == StockMovement.Direction.OUT:
            if record.quantity < quantity:
                raise ValidationError(
                    f"Insufficient stock for {delta.product.sku} in {delta.warehouse.name}.",
                    details={
                        "product_id": str(delta.product.pk),
                        "warehouse_id": str(delta.warehouse.pk),
                        "available": str(record.quantity),
                        "required": str(quantity),
                    },
                )
            record.quantity -= quantity
        else:
            record.quantity += quantity
        record.save(update_fields=["quantity", "last_updated"])

        movements.append(
            StockMovement.objects.create(
                product=delta.product,
                warehouse=delta.warehouse,
                direction=delta.direction,
                quantity=quantity,
                cost_price=to_money(delta.cost_price),
                transaction_date=transaction_date,
                notes=notes,
                created_by=created_by,
                **(reference.as_fields() if reference else {}),
            )
        )
    return movements


def get_stock_quantity(product_id, warehouse_id):
    record = StockRecord.objects.filter(product_id=product_id, warehouse_id=warehouse_id).first()
    return record.quantity if record else Decimal("0")


def get_total_stock_quantity(product_id):
    return StockRecord.objects.filter(product_id=product_id).aggregate(total=Sum("quantity"))["total"] or Decimal("0")


def get_movement_balance(product_id, warehouse_id):
    signed = Case(
        When(direction=StockMovement.Direction.IN, then=F("quantity")),
        default=-F("quantity"),
        output_field=DecimalField(max_digits=14, decimal_places=3),
    )
    return (
        StockMovement.objects.filter(product_id=product_id, warehouse_id=warehouse_id).aggregate(total=Sum(signed))["total"]
        or Decimal("0")
    )


def update_product_cost(product, incoming_qty, incoming_unit_cost, current_stock_qty=Decimal("0")):
    """Set the product's cost from a receipt: the incoming cost, or with
    INVENTORY_WEIGHTED_AVERAGE_COST the average over stock on hand and the receipt."""
    incoming_qty = to_quantity(incoming_qty or 0)
    incoming_unit_cost = to_money(incoming_unit_cost or 0)
    on_hand = max(to_quantity(current_stock_qty or 0), Decimal("0"))
    if incoming_qty <= 0:
        return product.cost_price

    cost = incoming_unit_cost
    if settings.INVENTORY_WEIGHTED_AVERAGE_COST:
        stock_value = on_hand * to_money(product.cost_price or 0) + incoming_qty * incoming_unit_cost
        cost = stock_value / (on_hand + incoming_qty)

    product.cost_price = to_money(cost)
    product.save(update_fields=["cost_price", "updated_at"])
    return product.cost_price
