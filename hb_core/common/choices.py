# hb_core/common/choices.py
from django.db import models


class PaymentMethod(models.TextChoices):
    CASH = "cash", "Cash"
    CARD = "card", "Card"
    UPI = "upi", "UPI"
    NET_BANKING = "net_banking", "Net Banking"
    CHEQUE = "cheque", "Cheque"
    INSURANCE = "insurance", "Insurance"
    ADVANCE = "advance", "Advance"


# Methods a cashier can collect with (ADVANCE is only ever a draw on deposits).
COLLECTION_METHODS = tuple(m for m in PaymentMethod.values if m != PaymentMethod.ADVANCE)
