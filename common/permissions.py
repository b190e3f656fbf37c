import logging

from rest_framework.permissions import BasePermission

from core.models import User

logger = logging.getLogger("security.authorization")

EVERY_ROLE = frozenset({User.Role.CASHIER, User.Role.SUPERVISOR, User.Role.ADMIN})
SUPERVISORS = frozenset({User.Role.SUPERVISOR, User.Role.ADMIN})
ADMINS = frozenset({User.Role.ADMIN})

# Counter staff sell and collect; reversals, purchasing and the cashbook need a supervisor.
ROLE_CAPABILITY_MATRIX = {
    "inventory.view": EVERY_ROLE,
    "sales.view": EVERY_ROLE,
    "sales.pos.access": EVERY_ROLE,
    "sales.customers.view": EVERY_ROLE,
    "debt.view": EVERY_ROLE,
    "debt.collect": EVERY_ROLE,
    "sales.refund": SUPERVISORS,
    "returns.manage": SUPERVISORS,
    "purchase.manage": SUPERVISORS,
    "stock.receive": SUPERVISORS,
    "debt.adjust": SUPERVISORS,
    "cashbook.view": SUPERVISORS,
    "cashbook.record": SUPERVISORS,
    "admin.records.manage": ADMINS,
}


def get_user_role(user):
    if user is None or not user.is_authenticated:
        return None
    if user.is_superuser:
        return User.Role.ADMIN
    return getattr(user, "role", None) or User.Role.CASHIER


def user_has_capability(user, capability):
    role = get_user_role(user)
    if role is None:
        return False
    if user.is_superuser:
        return True
    return role in ROLE_CAPABILITY_MATRIX.get(capability, ())


class RoleCapabilityPermission(BasePermission):
    """Looks up the capability for the view action in `permission_action_map`; unmapped actions pass."""

    message = "You do not have permission to perform this action."

    def has_permission(self, request, view):
        action = getattr(view, "action", None) or request.method.lower()
        capability = getattr(view, "permission_action_map", {}).get(action)
        if capability is None or user_has_capability(request.user, capability):
            return True

        logger.warning(
            "permission_denied capability=%s user=%s role=%s method=%s path=%s action=%s",
            capability,
            getattr(request.user, "username", "anonymous"),
            get_user_role(request.user),
            request.method,
            request.path,
            action,
        )
        return False
