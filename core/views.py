import csv
import logging

from django.db import DatabaseError, connection
from django.http import HttpResponse
from django.utils.dateparse import parse_datetime
from rest_framework import status, viewsets
from rest_framework.decorators import action, api_view, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework_simplejwt.views import TokenObtainPairView

from common.permissions import RoleCapabilityPermission
from core.models import AuditLog
from core.serializers import AuditLogSerializer, EmailOrUsernameTokenObtainPairSerializer

logger = logging.getLogger(__name__)

AUDIT_EXPORT_COLUMNS = ("id", "created_at", "actor", "action", "entity", "entity_id", "event_id", "request_id")
AUDIT_EXACT_FILTERS = ("actor_id", "action", "entity", "entity_id", "event_id", "request_id")


class EmailOrUsernameTokenObtainPairView(TokenObtainPairView):
    serializer_class = EmailOrUsernameTokenObtainPairSerializer
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "auth"


class AuditLogViewSet(viewsets.ReadOnlyModelViewSet):
    """Admin trail of every settlement and catalog change; `export` streams the filtered rows as CSV."""

    serializer_class = AuditLogSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = dict.fromkeys(("list", "retrieve", "export"), "admin.records.manage")

    def get_queryset(self):
        params = self.request.query_params
        qs = AuditLog.objects.select_related("actor").filter(
            **{field: params[field] for field in AUDIT_EXACT_FILTERS if params.get(field)}
        )
        start_date = parse_datetime(params.get("start_date", ""))
        if start_date:
            qs = qs.filter(created_at__gte=start_date)
        end_date = parse_datetime(params.get("end_date", ""))
        if end_date:
            qs = qs.filter(created_at__lte=end_date)
        return qs

    @action(detail=False, methods=["get"])
    def export(self, request):
        response = HttpResponse(content_type="text/csv")
        response["Content-Disposition"] = 'attachment; filename="audit-logs.csv"'
        writer = csv.writer(response)
        writer.writerow(AUDIT_EXPORT_COLUMNS)
        writer.writerows(
            (
                log.id,
                log.created_at.isoformat(),
                log.actor.username if log.actor else "",
                log.action,
                log.entity,
                log.entity_id or "",
                log.event_id or "",
                log.request_id or "",
            )
            for log in self.get_queryset().iterator()
        )
        return response


@api_view(["GET"])
@permission_classes([AllowAny])
def healthz(request):
    return Response({"status": "ok", "request_id": request.request_id})


@api_view(["GET"])
@permission_classes([AllowAny])
def readyz(request):
    """Ready once the ledger database answers."""
    try:
        connection.ensure_connection()
    except DatabaseError as exc:
        logger.exception("readiness_check_failed")
        return Response(
            {"status": "error", "request_id": request.request_id, "detail": str(exc)},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    return Response({"status": "ready", "request_id": request.request_id})
