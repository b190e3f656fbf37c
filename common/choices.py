from django.db import models


class PaymentMethod(models.TextChoices):
    CASH = "cash", "Cash"
    BANK_TRANSFER = "bank_transfer", "Bank Transfer"
    VIETQR = "vietqr", "VietQR"
    MOMO = "momo", "MoMo"
    ZALOPAY = "zalopay", "ZaloPay"
    CREDIT = "credit", "Credit"


def moves_cash(method):
    """Credit settlements only touch the debt ledger; every other method moves cash."""
    return bool(method) and method != PaymentMethod.CREDIT
