from django.conf import settings
from django.core.checks import Error, Tags, Warning, register
from django.db import DatabaseError


@register(Tags.database)
def check_default_warehouse(app_configs=None, databases=None, **kwargs):
    """Report a missing active default warehouse when stock settlements would need one."""
    if not databases:
        return []

    from inventory.services import MISSING_WAREHOUSE_SKIP, get_default_warehouse

    try:
        warehouse = get_default_warehouse()
    except DatabaseError:
        # Tables are not migrated yet.
        return []
    if warehouse is not None:
        return []

    policy = getattr(settings, "SETTLEMENT_MISSING_WAREHOUSE_POLICY", "error")
    hint = "Mark one active warehouse with is_default=True."
    if policy == MISSING_WAREHOUSE_SKIP or not getattr(settings, "SETTLEMENT_REQUIRE_DEFAULT_WAREHOUSE", True):
        return [
            Warning(
                "No active default warehouse is configured; returns and sales without a warehouse will skip stock updates.",
                hint=hint,
                id="settlement.W001",
            )
        ]
    return [
        Error(
            "No active default warehouse is configured; settlements without an explicit warehouse will fail.",
            hint=hint,
            id="settlement.E001",
        )
    ]
