from decimal import Decimal

from django.db import transaction
from rest_framework.test import APIClient

from common.choices import PaymentMethod
from core.models import User
from inventory.models import Product, StockMovement, Supplier, UnitOfMeasure, Warehouse
from inventory.services import StockDelta, post_stock_movements
from sales.models import Customer
from settlement.requests import OrderLineInput, PurchaseOrderRequest, SaleOrderRequest
from settlement.services import create_purchase_order, create_sale_order


class RetailFixtureMixin:
    """Catalog, counterparties and users shared by the app test suites."""

    def create_fixtures(self):
        self.client = APIClient()
        self.piece = UnitOfMeasure.objects.create(code="PCS", name="Piece")
        self.box = UnitOfMeasure.objects.create(code="BOX", name="Box of 12")
        self.kg = UnitOfMeasure.objects.create(code="KG", name="Kilogram")
        self.warehouse = Warehouse.objects.create(code="MAIN", name="Main", is_default=True)
        self.backroom = Warehouse.objects.create(code="BACK", name="Back room")
        self.product = Product.objects.create(
            sku="RICE-1",
            name="Rice",
            unit=self.piece,
            cost_price=Decimal("6000.00"),
            sale_price=Decimal("10000.00"),
        )
        self.boxed = Product.objects.create(
            sku="WATER-12",
            name="Water",
            unit=self.box,
            base_unit=self.piece,
            conversion_rate=Decimal("12"),
            cost_price=Decimal("4000.00"),
            sale_price=Decimal("6000.00"),
        )
        self.customer = Customer.objects.create(code="C-001", name="Lan Nguyen")
        self.supplier = Supplier.objects.create(code="S-001", name="Acme Foods")
        self.admin = User.objects.create_user(username="admin", password="pass1234", role=User.Role.ADMIN)
        self.supervisor = User.objects.create_user(username="supervisor", password="pass1234", role=User.Role.SUPERVISOR)
        self.cashier = User.objects.create_user(username="cashier", password="pass1234", role=User.Role.CASHIER)

    def add_stock(self, product, quantity, warehouse=None):
        with transaction.atomic():
            post_stock_movements(
                [
                    StockDelta(
                        product=product,
                        warehouse=warehouse or self.warehouse,
                        direction=StockMovement.Direction.IN,
                        quantity=Decimal(str(quantity)),
                        cost_price=product.cost_price,
                    )
                ],
                notes="Opening stock",
            )

    def make_sale(self, *, quantity="10", unit_price="10000", payment_method=PaymentMethod.CASH, paid_amount=None, customer=None, complete=True, **kwargs):
        quantity = Decimal(quantity)
        unit_price = Decimal(unit_price)
        if paid_amount is None:
            paid_amount = Decimal("0") if payment_method == PaymentMethod.CREDIT else quantity * unit_price
        return create_sale_order(
            SaleOrderRequest(
                lines=[OrderLineInput(product_id=self.product.pk, unit_id=self.piece.pk, quantity=quantity, unit_price=unit_price)],
                customer_id=customer.pk if customer else None,
                payment_method=payment_method,
                paid_amount=Decimal(paid_amount),
                complete=complete,
                actor="tester",
                **kwargs,
            )
        )

    def make_purchase(self, *, quantities=("10",), unit_price="5000", payment_method=PaymentMethod.CASH, paid_amount="0", place=True, **kwargs):
        return create_purchase_order(
            PurchaseOrderRequest(
                supplier_id=self.supplier.pk,
                lines=[
                    OrderLineInput(product_id=self.product.pk, unit_id=self.piece.pk, quantity=Decimal(quantity), unit_price=Decimal(unit_price))
                    for quantity in quantities
                ],
                payment_method=payment_method,
                paid_amount=Decimal(paid_amount),
                place=place,
                actor="tester",
                **kwargs,
            )
        )
