from django.utils import timezone


def next_document_code(model, prefix, *, field="code"):
    """Return the next daily code for ``model``, e.g. ``SO-20240131-0007``."""
    day_prefix = timezone.localtime().strftime(f"{prefix}-%Y%m%d-")
    existing = model.objects.filter(**{f"{field}__startswith": day_prefix}).values_list(field, flat=True)
    serials = [int(str(code).rsplit("-", 1)[-1]) for code in existing if str(code).rsplit("-", 1)[-1].isdigit()]
    return f"{day_prefix}{max(serials + [0]) + 1:04d}"
