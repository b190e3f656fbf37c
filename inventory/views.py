from django.db.models import Q
from django.utils.dateparse import parse_datetime
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated

from common.audit import AuditedMutationMixin
from common.pagination import LedgerResultsSetPagination
from common.permissions import RoleCapabilityPermission
from inventory.models import Product, PurchaseOrder, StockMovement, StockRecord, Supplier, UnitOfMeasure, Warehouse
from inventory.serializers import (
    ProductSerializer,
    PurchaseOrderSerializer,
    StockMovementSerializer,
    StockRecordSerializer,
    SupplierSerializer,
    UnitOfMeasureSerializer,
    WarehouseSerializer,
)
from settlement.requests import PurchaseOrderUpdateRequest
from settlement.serializers import GoodsReceiptSerializer, OrderPaymentSerializer, PurchaseOrderInputSerializer, StatusChangeSerializer
from settlement.services import (
    cancel_purchase_order,
    create_purchase_order,
    place_purchase_order,
    receive_goods,
    record_purchase_payment,
    update_purchase_order,
)
from settlement.views import OrderDeletionMixin, SettlementActionMixin

MANAGED_ACTIONS = ["create", "update", "partial_update", "destroy"]


def _attribute_permissions(view_capability):
    return {
        "list": view_capability,
        "retrieve": view_capability,
        **{action_name: "admin.records.manage" for action_name in MANAGED_ACTIONS},
    }


class ActiveFilterMixin:
    def get_queryset(self):
        qs = super().get_queryset()
        is_active = self.request.query_params.get("is_active")
        if is_active is not None:
            qs = qs.filter(is_active=is_active.lower() in {"1", "true", "yes"})
        return qs


class UnitOfMeasureViewSet(AuditedMutationMixin, ActiveFilterMixin, viewsets.ModelViewSet):
    queryset = UnitOfMeasure.objects.order_by("code")
    serializer_class = UnitOfMeasureSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = _attribute_permissions("inventory.view")
    audit_entity = "unit"


class ProductViewSet(AuditedMutationMixin, ActiveFilterMixin, viewsets.ModelViewSet):
    queryset = Product.objects.select_related("unit", "base_unit").order_by("sku")
    serializer_class = ProductSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = _attribute_permissions("inventory.view")
    audit_entity = "product"

    def get_queryset(self):
        qs = super().get_queryset()
        search = self.request.query_params.get("search")
        if search:
            qs = qs.filter(Q(name__icontains=search) | Q(sku__icontains=search))
        return qs


class WarehouseViewSet(AuditedMutationMixin, ActiveFilterMixin, viewsets.ModelViewSet):
    queryset = Warehouse.objects.order_by("code")
    serializer_class = WarehouseSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = _attribute_permissions("inventory.view")
    audit_entity = "warehouse"


class SupplierViewSet(AuditedMutationMixin, ActiveFilterMixin, viewsets.ModelViewSet):
    queryset = Supplier.objects.order_by("name")
    serializer_class = SupplierSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = _attribute_permissions("inventory.view")
    audit_entity = "supplier"


class StockRecordViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = StockRecord.objects.select_related("product", "warehouse").order_by("product__sku", "warehouse__code")
    serializer_class = StockRecordSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "inventory.view", "retrieve": "inventory.view"}

    def get_queryset(self):
        qs = super().get_queryset()
        for field in ("product_id", "warehouse_id"):
            value = self.request.query_params.get(field)
            if value:
                qs = qs.filter(**{field: value})
        return qs


class StockMovementViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = StockMovement.objects.order_by("-created_at")
    serializer_class = StockMovementSerializer
    pagination_class = LedgerResultsSetPagination
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "inventory.view", "retrieve": "inventory.view"}

    def get_queryset(self):
        qs = super().get_queryset()
        params = self.request.query_params
        for field in ("product_id", "warehouse_id", "direction", "reference_type", "reference_id"):
            value = params.get(field)
            if value:
                qs = qs.filter(**{field: value})

        start_date = parse_datetime(params.get("start_date") or "")
        end_date = parse_datetime(params.get("end_date") or "")
        if start_date:
            qs = qs.filter(transaction_date__gte=start_date)
        if end_date:
            qs = qs.filter(transaction_date__lte=end_date)
        return qs


class PurchaseOrderViewSet(SettlementActionMixin, OrderDeletionMixin, mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    queryset = PurchaseOrder.objects.select_related("supplier").prefetch_related("lines", "batches").order_by("-created_at")
    serializer_class = PurchaseOrderSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "inventory.view",
        "retrieve": "inventory.view",
        "create": "purchase.manage",
        "update": "purchase.manage",
        "destroy": "purchase.manage",
        "place": "purchase.manage",
        "cancel": "purchase.manage",
        "payments": "purchase.manage",
        "receive": "stock.receive",
    }
    audit_entity = "purchase_order"

    def get_queryset(self):
        qs = super().get_queryset()
        for field in ("status", "supplier_id", "payment_method"):
            value = self.request.query_params.get(field)
            if value:
                qs = qs.filter(**{field: value})
        return qs

    def create(self, request, *args, **kwargs):
        return self.run_settlement(
            request,
            PurchaseOrderInputSerializer,
            create_purchase_order,
            audit_action="purchase_order.create",
            status_code=status.HTTP_201_CREATED,
        )

    def update(self, request, pk=None, *args, **kwargs):
        def settle_update(order_request):
            return update_purchase_order(PurchaseOrderUpdateRequest(purchase_order_id=pk, order=order_request))

        return self.run_settlement(request, PurchaseOrderInputSerializer, settle_update, audit_action="purchase_order.update")

    @action(detail=True, methods=["post"], url_path="place")
    def place(self, request, pk=None):
        return self.run_settlement(request, StatusChangeSerializer, place_purchase_order, audit_action="purchase_order.place", order_id=pk)

    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        return self.run_settlement(request, StatusChangeSerializer, cancel_purchase_order, audit_action="purchase_order.cancel", order_id=pk)

    @action(detail=True, methods=["post"], url_path="receive")
    def receive(self, request, pk=None):
        return self.run_settlement(request, GoodsReceiptSerializer, receive_goods, audit_action="purchase_order.receive", purchase_order_id=pk)

    @action(detail=True, methods=["post"], url_path="payments")
    def payments(self, request, pk=None):
        return self.run_settlement(request, OrderPaymentSerializer, record_purchase_payment, audit_action="purchase_order.payment", order_id=pk)
