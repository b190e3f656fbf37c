from django.db import models

from common.errors import InternalError
from common.money import DiscountSpec, DiscountType
from common.references import Reference, ReferenceKind


class ReferencedModel(models.Model):
    reference_type = models.CharField(max_length=32, choices=ReferenceKind.choices, blank=True, default="")
    reference_id = models.UUIDField(null=True, blank=True)

    class Meta:
        abstract = True

    @property
    def reference(self):
        if not self.reference_type or self.reference_id is None:
            return None
        return Reference(kind=self.reference_type, id=self.reference_id)

    @reference.setter
    def reference(self, value):
        if value is None:
            self.reference_type, self.reference_id = "", None
        else:
            self.reference_type, self.reference_id = value.kind, value.id


class AppendOnlyModel(models.Model):
    """Ledger rows are inserted once and never updated or deleted."""

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise InternalError(f"{self._meta.label} rows are append-only.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise InternalError(f"{self._meta.label} rows are append-only.")


class DiscountedModel(models.Model):
    discount_type = models.CharField(max_length=16, choices=DiscountType.choices, default=DiscountType.AMOUNT)
    discount_value = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    discount_amount = models.DecimalField(max_digits=14, decimal_places=2, default=0)

    class Meta:
        abstract = True

    @property
    def discount_spec(self):
        return DiscountSpec(type=self.discount_type, value=self.discount_value)
