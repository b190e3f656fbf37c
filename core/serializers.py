from django.contrib.auth import get_user_model
from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from common.permissions import get_user_role
from core.models import AuditLog

User = get_user_model()


class EmailOrUsernameTokenObtainPairSerializer(TokenObtainPairSerializer):
    """Tills sign in with either the username or the email; the role rides in the token."""

    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token["role"] = get_user_role(user)
        return token

    def validate(self, attrs):
        login = attrs.get("username", "")
        if "@" in login:
            username = User.objects.filter(email__iexact=login.strip()).values_list("username", flat=True).first()
            if username:
                attrs["username"] = username
        return super().validate(attrs)


class AuditLogSerializer(serializers.ModelSerializer):
    actor_username = serializers.CharField(source="actor.username", read_only=True, default=None)

    class Meta:
        model = AuditLog
        fields = [
            "id",
            "created_at",
            "actor",
            "actor_username",
            "action",
            "entity",
            "entity_id",
            "event_id",
            "request_id",
            "before_snapshot",
            "after_snapshot",
        ]
        read_only_fields = fields
