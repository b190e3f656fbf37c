from django.db.models import Q
from django.utils.dateparse import parse_datetime
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated

from common.audit import AuditedMutationMixin
from common.permissions import RoleCapabilityPermission
from sales.models import Customer, ReturnOrder, SaleOrder
from sales.serializers import CustomerSerializer, ReturnOrderSerializer, SaleOrderSerializer
from settlement.serializers import (
    FullRefundSerializer,
    OrderPaymentSerializer,
    PartialRefundSerializer,
    ReturnOrderInputSerializer,
    SaleOrderInputSerializer,
    StatusChangeSerializer,
)
from settlement.services import (
    cancel_return_order,
    cancel_sale_order,
    complete_return_order,
    complete_sale_order,
    create_return_order,
    create_sale_order,
    partial_refund_sale_order,
    record_sale_payment,
    refund_sale_order,
)
from settlement.views import OrderDeletionMixin, SettlementActionMixin


def _filter_order_dates(qs, params, field):
    start_date = parse_datetime(params.get("start_date") or "")
    end_date = parse_datetime(params.get("end_date") or "")
    if start_date:
        qs = qs.filter(**{f"{field}__gte": start_date})
    if end_date:
        qs = qs.filter(**{f"{field}__lte": end_date})
    return qs


class CustomerViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = Customer.objects.order_by("name")
    serializer_class = CustomerSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "sales.customers.view",
        "retrieve": "sales.customers.view",
        "create": "admin.records.manage",
        "update": "admin.records.manage",
        "partial_update": "admin.records.manage",
        "destroy": "admin.records.manage",
    }
    audit_entity = "customer"

    def get_queryset(self):
        qs = super().get_queryset()
        search = self.request.query_params.get("search")
        if search:
            qs = qs.filter(Q(name__icontains=search) | Q(phone__icontains=search) | Q(code__icontains=search))
        return qs


class SaleOrderViewSet(SettlementActionMixin, OrderDeletionMixin, mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    queryset = SaleOrder.objects.select_related("customer").prefetch_related("lines__product").order_by("-created_at")
    serializer_class = SaleOrderSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "sales.view",
        "retrieve": "sales.view",
        "create": "sales.pos.access",
        "complete": "sales.pos.access",
        "destroy": "sales.pos.access",
        "payments": "debt.collect",
        "cancel": "sales.refund",
        "refund": "sales.refund",
        "partial_refund": "sales.refund",
    }
    audit_entity = "sale_order"

    def get_queryset(self):
        qs = super().get_queryset()
        params = self.request.query_params
        for field in ("status", "customer_id", "payment_method"):
            value = params.get(field)
            if value:
                qs = qs.filter(**{field: value})
        return _filter_order_dates(qs, params, "order_date")

    def create(self, request, *args, **kwargs):
        return self.run_settlement(
            request,
            SaleOrderInputSerializer,
            create_sale_order,
            audit_action="sale_order.create",
            status_code=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=["post"], url_path="complete")
    def complete(self, request, pk=None):
        return self.run_settlement(request, StatusChangeSerializer, complete_sale_order, audit_action="sale_order.complete", order_id=pk)

    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        return self.run_settlement(request, StatusChangeSerializer, cancel_sale_order, audit_action="sale_order.cancel", order_id=pk)

    @action(detail=True, methods=["post"], url_path="refund")
    def refund(self, request, pk=None):
        return self.run_settlement(request, FullRefundSerializer, refund_sale_order, audit_action="sale_order.refund", sale_order_id=pk)

    @action(detail=True, methods=["post"], url_path="partial-refund")
    def partial_refund(self, request, pk=None):
        return self.run_settlement(
            request,
            PartialRefundSerializer,
            partial_refund_sale_order,
            audit_action="sale_order.partial_refund",
            sale_order_id=pk,
        )

    @action(detail=True, methods=["post"], url_path="payments")
    def payments(self, request, pk=None):
        return self.run_settlement(request, OrderPaymentSerializer, record_sale_payment, audit_action="sale_order.payment", order_id=pk)


class ReturnOrderViewSet(SettlementActionMixin, OrderDeletionMixin, mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    queryset = ReturnOrder.objects.select_related("sale_order").prefetch_related("lines").order_by("-created_at")
    serializer_class = ReturnOrderSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "sales.view",
        "retrieve": "sales.view",
        "create": "returns.manage",
        "complete": "returns.manage",
        "cancel": "returns.manage",
        "destroy": "returns.manage",
    }
    audit_entity = "return_order"

    def get_queryset(self):
        qs = super().get_queryset()
        params = self.request.query_params
        for field in ("status", "sale_order_id", "customer_id"):
            value = params.get(field)
            if value:
                qs = qs.filter(**{field: value})
        return _filter_order_dates(qs, params, "return_date")

    def create(self, request, *args, **kwargs):
        return self.run_settlement(
            request,
            ReturnOrderInputSerializer,
            create_return_order,
            audit_action="return_order.create",
            status_code=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=["post"], url_path="complete")
    def complete(self, request, pk=None):
        return self.run_settlement(request, StatusChangeSerializer, complete_return_order, audit_action="return_order.complete", order_id=pk)

    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        return self.run_settlement(request, StatusChangeSerializer, cancel_return_order, audit_action="return_order.cancel", order_id=pk)
