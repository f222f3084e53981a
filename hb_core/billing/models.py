# hb_core/billing/models.py
from __future__ import annotations

from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from hb_core.admissions.models import Admission
from hb_core.common.choices import PaymentMethod
from hb_core.common.models import ScopedModel
from hb_core.common.money import ZERO, money


class BillCategory(models.TextChoices):
    BED_CHARGES = "bed_charges", "Bed Charges"
    DOCTOR_CONSULTATION = "doctor_consultation", "Doctor Consultation"
    DOCTOR_SERVICES = "doctor_services", "Doctor Services"
    SURGERY = "surgery", "Surgery"
    PHARMACY = "pharmacy", "Pharmacy"
    LAB = "lab", "Lab"
    RADIOLOGY = "radiology", "Radiology"
    NURSING = "nursing", "Nursing"
    EQUIPMENT = "equipment", "Equipment"
    CONSUMABLES = "consumables", "Consumables"
    OTHER = "other", "Other"


class ChargeSourceType(models.TextChoices):
    BED = "BED", "Bed"
    CONSULTATION = "CONSULTATION", "Consultation"
    DOCTOR_SERVICE = "DOCTOR_SERVICE", "Doctor Service"
    SURGERY = "SURGERY", "Surgery"
    PRESCRIPTION = "PRESCRIPTION", "Prescription"
    PHARMACY_BILL = "PHARMACY_BILL", "Pharmacy Bill"
    LAB_ORDER = "LAB_ORDER", "Lab Order"
    RADIOLOGY_ORDER = "RADIOLOGY_ORDER", "Radiology Order"
    OTHER_BILL = "OTHER_BILL", "Other Bill"
    MANUAL = "MANUAL", "Manual"


class BillItemStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    PARTIAL = "partial", "Partial"
    PAID = "paid", "Paid"
    CANCELLED = "cancelled", "Cancelled"


def derive_payment_status(*, paid: Decimal, net: Decimal) -> str:
    """
    paid == 0          -> pending
    0 < paid < net     -> partial
    paid >= net        -> paid
    """
    if paid >= net:
        return BillItemStatus.PAID
    if paid > ZERO:
        return BillItemStatus.PARTIAL
    return BillItemStatus.PENDING


class BillItem(ScopedModel):
    """
    One chargeable line within a stay.

    paid_amount + pending_amount == net_amount, and status is derived from
    paid/net by recompute(). Only the allocator moves paid_amount up; a
    cancelled item keeps whatever was paid for audit.
    """
    admission = models.ForeignKey(Admission, on_delete=models.PROTECT, related_name="bill_items")

    category = models.CharField(max_length=32, choices=BillCategory.choices, db_index=True)
    description = models.CharField(max_length=255)

    quantity = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("1.00"))
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    gross_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    discount_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    net_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    paid_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    pending_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    # Portion of paid_amount collected at a department counter (pharmacy, other bills).
    source_paid_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    status = models.CharField(
        max_length=16,
        choices=BillItemStatus.choices,
        default=BillItemStatus.PENDING,
        db_index=True,
    )

    source_type = models.CharField(max_length=32, choices=ChargeSourceType.choices, default=ChargeSourceType.MANUAL)
    source_id = models.UUIDField(null=True, blank=True)

    service_date = models.DateField(null=True, blank=True)

    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancel_reason = models.CharField(max_length=255, blank=True)

    class Meta:
        db_table = "billing_bill_item"
        constraints = [
            models.UniqueConstraint(
                fields=["admission", "source_type", "source_id"],
                condition=Q(source_id__isnull=False),
                name="uq_bill_item_admission_source",
            ),
        ]
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "admission", "status"]),
            models.Index(fields=["tenant_id", "facility_id", "admission", "category"]),
        ]

    def __str__(self) -> str:
        return f"{self.category}: {self.description} ({self.status})"

    @property
    def is_cancelled(self) -> bool:
        return self.status == BillItemStatus.CANCELLED

    def recompute(self) -> None:
        """Re-derive gross/net/pending/status from quantity, rate, discount and paid."""
        self.gross_amount = money(self.quantity * self.unit_price)
        self.net_amount = money(self.gross_amount - self.discount_amount)
        self.pending_amount = max(ZERO, money(self.net_amount - self.paid_amount))
        if not self.is_cancelled:
            self.status = derive_payment_status(paid=self.paid_amount, net=self.net_amount)

    @property
    def allocated_amount(self) -> Decimal:
        """Part of paid_amount that came through payment allocations."""
        return money(self.paid_amount - self.source_paid_amount)

    def absorb_source_paid(self, source_paid: Decimal) -> Decimal:
        """
        Copy a counter's running collection total into paid_amount. Only the
        increase since the last copy is applied, capped at pending. Returns
        the amount applied; the caller saves.
        """
        self.recompute()
        delta = money(source_paid - self.source_paid_amount)
        applied = min(delta, self.pending_amount)
        if applied <= ZERO:
            return ZERO
        self.paid_amount = money(self.paid_amount + applied)
        self.source_paid_amount = money(self.source_paid_amount + applied)
        self.recompute()
        return applied


class AdvanceStatus(models.TextChoices):
    ACTIVE = "active", "Active"
    FULLY_USED = "fully_used", "Fully Used"
    CANCELLED = "cancelled", "Cancelled"


class Advance(ScopedModel):
    """
    Deposit received for a stay, drawn oldest-first (created_at, id) by the allocator.
    available_amount is stored so a draw can be a conditional UPDATE.
    """
    admission = models.ForeignKey(Admission, on_delete=models.PROTECT, related_name="advances")

    amount = models.DecimalField(max_digits=12, decimal_places=2)
    used_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    available_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    method = models.CharField(max_length=32, choices=PaymentMethod.choices, default=PaymentMethod.CASH)
    reference = models.CharField(max_length=64, blank=True)
    notes = models.TextField(blank=True)

    status = models.CharField(
        max_length=16,
        choices=AdvanceStatus.choices,
        default=AdvanceStatus.ACTIVE,
        db_index=True,
    )

    received_at = models.DateTimeField(default=timezone.now)
    received_by_user_id = models.IntegerField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "billing_advance"
        constraints = [
            models.CheckConstraint(condition=Q(available_amount__gte=0), name="ck_advance_available_non_negative"),
            models.CheckConstraint(condition=Q(used_amount__lte=F("amount")), name="ck_advance_used_lte_amount"),
        ]
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "admission", "status", "created_at"]),
        ]

    def __str__(self) -> str:
        return f"Advance({self.amount}, available={self.available_amount}, {self.status})"


class PaymentTransaction(ScopedModel):
    """
    Immutable ledger row. Corrections are new transactions, never edits.
    """
    admission = models.ForeignKey(Admission, on_delete=models.PROTECT, related_name="payment_transactions")

    receipt_number = models.CharField(max_length=32)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    method = models.CharField(max_length=32, choices=PaymentMethod.choices, db_index=True)

    reference = models.CharField(max_length=64, blank=True)
    notes = models.TextField(blank=True)

    received_at = models.DateTimeField(default=timezone.now)
    recorded_by_user_id = models.IntegerField(null=True, blank=True)

    class Meta:
        db_table = "billing_payment_transaction"
        constraints = [
            models.UniqueConstraint(
                fields=["tenant_id", "facility_id", "receipt_number"],
                name="uq_payment_txn_scope_receipt",
            ),
        ]
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "admission", "received_at"]),
        ]

    def __str__(self) -> str:
        return f"{self.receipt_number} {self.method} {self.amount}"

    def save(self, *args, **kwargs):
        # UUID PK exists even before first save, so use _state.adding
        if not self._state.adding:
            raise ValidationError("PaymentTransaction is immutable and cannot be modified once created.")
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("PaymentTransaction is immutable and cannot be deleted.")


class PaymentAllocation(ScopedModel):
    transaction = models.ForeignKey(PaymentTransaction, on_delete=models.PROTECT, related_name="allocations")
    bill_item = models.ForeignKey(BillItem, on_delete=models.PROTECT, related_name="allocations")
    amount = models.DecimalField(max_digits=12, decimal_places=2)

    class Meta:
        db_table = "billing_payment_allocation"
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "transaction"]),
            models.Index(fields=["tenant_id", "facility_id", "bill_item"]),
        ]


class AdvanceDraw(ScopedModel):
    advance = models.ForeignKey(Advance, on_delete=models.PROTECT, related_name="draws")
    transaction = models.ForeignKey(PaymentTransaction, on_delete=models.PROTECT, related_name="advance_draws")
    amount = models.DecimalField(max_digits=12, decimal_places=2)

    class Meta:
        db_table = "billing_advance_draw"
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "advance"]),
            models.Index(fields=["tenant_id", "facility_id", "transaction"]),
        ]


class DiscountType(models.TextChoices):
    PERCENTAGE = "percentage", "Percentage"
    FIXED = "fixed", "Fixed"


class BillDiscount(ScopedModel):
    """
    History of discounts applied to a bill item.
    """
    bill_item = models.ForeignKey(BillItem, on_delete=models.PROTECT, related_name="discounts")

    discount_type = models.CharField(max_length=16, choices=DiscountType.choices)
    discount_value = models.DecimalField(max_digits=12, decimal_places=2)
    discount_amount = models.DecimalField(max_digits=12, decimal_places=2)
    reason = models.CharField(max_length=255, blank=True)
    approved_by = models.CharField(max_length=255, blank=True)
    applied_by_user_id = models.IntegerField(null=True, blank=True)

    class Meta:
        db_table = "billing_bill_discount"
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "bill_item"]),
        ]
