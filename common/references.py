from __future__ import annotations

import uuid
from dataclasses import dataclass

from django.apps import apps
from django.db import models

from common.errors import NotFoundError


class ReferenceKind(models.TextChoices):
    SALE_ORDER = "sale_order", "Sale Order"
    PURCHASE_ORDER = "purchase_order", "Purchase Order"
    RETURN_ORDER = "return_order", "Return Order"
    DEBT_TRANSACTION = "debt_transaction", "Debt Transaction"


REFERENCE_MODELS = {
    ReferenceKind.SALE_ORDER: "sales.SaleOrder",
    ReferenceKind.PURCHASE_ORDER: "inventory.PurchaseOrder",
    ReferenceKind.RETURN_ORDER: "sales.ReturnOrder",
    ReferenceKind.DEBT_TRANSACTION: "finance.DebtTransaction",
}


@dataclass(frozen=True)
class Reference:
    """Pointer from a ledger row back to the order or transaction that caused it."""

    kind: str
    id: uuid.UUID

    def __post_init__(self):
        if self.kind not in ReferenceKind.values:
            raise ValueError(f"Unknown reference kind '{self.kind}'.")
        if not isinstance(self.id, uuid.UUID):
            object.__setattr__(self, "id", uuid.UUID(str(self.id)))

    @classmethod
    def for_instance(cls, instance) -> "Reference":
        label = instance._meta.label
        for kind, model_label in REFERENCE_MODELS.items():
            if model_label == label:
                return cls(kind=kind, id=instance.pk)
        raise ValueError(f"{label} is not a referenceable model.")

    def as_fields(self) -> dict:
        return {"reference_type": self.kind, "reference_id": self.id}


def reference_model(kind):
    try:
        return apps.get_model(REFERENCE_MODELS[kind])
    except KeyError:
        raise ValueError(f"Unknown reference kind '{kind}'.") from None


def resolve_reference(reference: Reference):
    model = reference_model(reference.kind)
    try:
        return model.objects.get(pk=reference.id)
    except model.DoesNotExist:
        raise NotFoundError(
            f"{model._meta.verbose_name.title()} {reference.id} does not exist.",
            details={"reference_type": reference.kind, "reference_id": str(reference.id)},
        ) from None
