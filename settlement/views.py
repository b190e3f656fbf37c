from rest_framework import status
from rest_framework.response import Response

from common.audit import record_audit
from settlement.services import delete_order


class SettlementActionMixin:
    """Runs a settlement from a viewset action and audits the outcome."""

    audit_entity = None
    lookup_value_regex = "[0-9a-fA-F-]{36}"

    def run_settlement(self, request, input_serializer_class, service, *, audit_action, output_serializer_class=None, status_code=status.HTTP_200_OK, **extra):
        serializer = input_serializer_class(data=request.data, context=self.get_serializer_context())
        serializer.is_valid(raise_exception=True)
        settlement_request = serializer.to_request(request.user, **extra)

        result = service(settlement_request)

        output_serializer_class = output_serializer_class or self.get_serializer_class()
        data = output_serializer_class(result, context=self.get_serializer_context()).data
        record_audit(
            request,
            action=audit_action,
            entity=self.audit_entity,
            entity_id=result.pk,
            after_snapshot=data,
            event_id=getattr(settlement_request, "event_id", None),
        )
        return Response(data, status=status_code)


class OrderDeletionMixin:
    """Deletes an order only while its lifecycle allows it."""

    def destroy(self, request, *args, **kwargs):
        instance = self.get_object()
        before_snapshot = self.get_serializer(instance).data
        delete_order(type(instance), instance.pk)
        record_audit(
            request,
            action=f"{self.audit_entity}.delete",
            entity=self.audit_entity,
            entity_id=instance.pk,
            before_snapshot=before_snapshot,
        )
        return Response(status=status.HTTP_204_NO_CONTENT)
