import json
import uuid

from django.core.serializers.json import DjangoJSONEncoder

from core.models import AuditLog


def _as_uuid(value):
    if value is None or value == "" or isinstance(value, uuid.UUID):
        return value or None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _snapshot(data):
    """Serializer output can hold Decimals and dates; store it as plain JSON."""
    if data is None:
        return None
    return json.loads(json.dumps(data, cls=DjangoJSONEncoder))


def record_audit(request, *, action, entity, entity_id=None, before_snapshot=None, after_snapshot=None, event_id=None):
    user = getattr(request, "user", None)
    return AuditLog.objects.create(
        actor=user if user is not None and user.is_authenticated else None,
        action=action,
        entity=entity,
        entity_id=_as_uuid(entity_id),
        before_snapshot=_snapshot(before_snapshot),
        after_snapshot=_snapshot(after_snapshot),
        event_id=_as_uuid(event_id),
        request_id=getattr(request, "request_id", None) or request.headers.get("X-Request-ID"),
    )


class AuditedMutationMixin:
    """Audits create/update/destroy on catalog and counterparty viewsets as `<entity>.<verb>`."""

    audit_entity = None

    def _record(self, verb, instance, **snapshots):
        record_audit(self.request, action=f"{self.audit_entity}.{verb}", entity=self.audit_entity, entity_id=instance.pk, **snapshots)

    def perform_create(self, serializer):
        instance = serializer.save()
        self._record("create", instance, after_snapshot=self.get_serializer(instance).data)

    def perform_update(self, serializer):
        before = self.get_serializer(serializer.instance).data
        instance = serializer.save()
        self._record("update", instance, before_snapshot=before, after_snapshot=self.get_serializer(instance).data)

    def perform_destroy(self, instance):
        self._record("delete", instance, before_snapshot=self.get_serializer(instance).data)
        instance.delete()
