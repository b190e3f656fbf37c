from django.db import transaction
from django.utils.dateparse import parse_datetime
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.audit import record_audit
from common.pagination import LedgerResultsSetPagination
from common.permissions import RoleCapabilityPermission
from finance.models import CashbookEntry, DebtAccount
from finance.serializers import (
    CashbookEntrySerializer,
    DebtAccountSerializer,
    DebtTransactionSerializer,
    ManualCashbookEntrySerializer,
)
from finance.services import record_manual_cash_entry, summarize_cashbook
from settlement.serializers import DebtAdjustmentSerializer, DebtPaymentSerializer
from settlement.services import adjust_debt, pay_debt
from settlement.views import SettlementActionMixin


def _filter_dates(qs, params, field="transaction_date"):
    start_date = parse_datetime(params.get("start_date") or "")
    end_date = parse_datetime(params.get("end_date") or "")
    if start_date:
        qs = qs.filter(**{f"{field}__gte": start_date})
    if end_date:
        qs = qs.filter(**{f"{field}__lte": end_date})
    return qs


class DebtAccountViewSet(SettlementActionMixin, viewsets.ReadOnlyModelViewSet):
    queryset = DebtAccount.objects.select_related("customer", "supplier").order_by("-balance")
    serializer_class = DebtAccountSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "debt.view",
        "retrieve": "debt.view",
        "transactions": "debt.view",
        "payments": "debt.collect",
        "adjustments": "debt.adjust",
    }
    audit_entity = "debt_account"

    def get_queryset(self):
        qs = super().get_queryset()
        params = self.request.query_params
        for field in ("kind", "customer_id", "supplier_id"):
            value = params.get(field)
            if value:
                qs = qs.filter(**{field: value})
        if params.get("outstanding", "").lower() in {"1", "true", "yes"}:
            qs = qs.filter(balance__gt=0)
        return qs

    @action(detail=True, methods=["get"], url_path="transactions")
    def transactions(self, request, pk=None):
        account = self.get_object()
        qs = _filter_dates(account.transactions.order_by("-created_at"), request.query_params)
        paginator = LedgerResultsSetPagination()
        page = paginator.paginate_queryset(qs, request, view=self)
        return paginator.get_paginated_response(DebtTransactionSerializer(page, many=True).data)

    @action(detail=True, methods=["post"], url_path="payments")
    def payments(self, request, pk=None):
        return self.run_settlement(
            request,
            DebtPaymentSerializer,
            pay_debt,
            audit_action="debt_account.payment",
            output_serializer_class=DebtTransactionSerializer,
            status_code=status.HTTP_201_CREATED,
            account_id=pk,
        )

    @action(detail=True, methods=["post"], url_path="adjustments")
    def adjustments(self, request, pk=None):
        return self.run_settlement(
            request,
            DebtAdjustmentSerializer,
            adjust_debt,
            audit_action="debt_account.adjustment",
            output_serializer_class=DebtTransactionSerializer,
            status_code=status.HTTP_201_CREATED,
            account_id=pk,
        )


class CashbookEntryViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, mixins.CreateModelMixin, viewsets.GenericViewSet):
    queryset = CashbookEntry.objects.order_by("-transaction_date", "-created_at")
    serializer_class = CashbookEntrySerializer
    pagination_class = LedgerResultsSetPagination
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "cashbook.view",
        "retrieve": "cashbook.view",
        "summary": "cashbook.view",
        "create": "cashbook.record",
    }

    def get_queryset(self):
        qs = super().get_queryset()
        params = self.request.query_params
        for field in ("entry_type", "category", "payment_method", "reference_type", "reference_id"):
            value = params.get(field)
            if value:
                qs = qs.filter(**{field: value})
        return _filter_dates(qs, params)

    def create(self, request, *args, **kwargs):
        serializer = ManualCashbookEntrySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        with transaction.atomic():
            entry = record_manual_cash_entry(**serializer.validated_data, created_by=request.user.get_username())
        data = self.get_serializer(entry).data
        record_audit(
            request,
            action="cashbook_entry.create",
            entity="cashbook_entry",
            entity_id=entry.pk,
            after_snapshot=data,
        )
        return Response(data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["get"], url_path="summary")
    def summary(self, request):
        return Response(summarize_cashbook(self.get_queryset()))
