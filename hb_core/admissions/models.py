# hb_core/admissions/models.py
from __future__ import annotations

import math
from datetime import datetime
from decimal import Decimal

from django.db import models
from django.utils import timezone

from hb_core.common.models import ScopedModel
from hb_core.patients.models import Patient

SECONDS_PER_DAY = 24 * 60 * 60


class AdmissionStatus(models.TextChoices):
    ADMITTED = "ADMITTED", "Admitted"
    DISCHARGED = "DISCHARGED", "Discharged"
    CANCELLED = "CANCELLED", "Cancelled"


def calculate_days(start: datetime, end: datetime) -> int:
    """
    Whole days billed between two timestamps.
    Any started day counts as a full day, minimum 1.
    """
    seconds = (end - start).total_seconds()
    return max(1, math.ceil(seconds / SECONDS_PER_DAY))


class Admission(ScopedModel):
    """
    Inpatient stay (bed allocation). Everything billed to a stay hangs off this row,
    and it is the row allocations lock to serialize payments on one stay.
    """
    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name="admissions")

    ip_number = models.CharField(max_length=32)
    status = models.CharField(
        max_length=32,
        choices=AdmissionStatus.choices,
        default=AdmissionStatus.ADMITTED,
        db_index=True,
    )

    admitted_at = models.DateTimeField(default=timezone.now)
    discharged_at = models.DateTimeField(null=True, blank=True)

    bed_type = models.CharField(max_length=64, blank=True)
    bed_number = models.CharField(max_length=32, blank=True)
    bed_daily_rate = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    consulting_doctor = models.CharField(max_length=255, blank=True)
    consultation_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    # Manual override of the number of days charged for bed and consultation.
    billed_days = models.PositiveIntegerField(null=True, blank=True)

    # Admission-level discount (item discounts live on BillItem).
    discount_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    discount_reason = models.CharField(max_length=255, blank=True)

    class Meta:
        db_table = "admissions_admission"
        constraints = [
            models.UniqueConstraint(
                fields=["tenant_id", "facility_id", "ip_number"],
                name="uq_admission_scope_ip_number",
            ),
        ]
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "status"]),
            models.Index(fields=["tenant_id", "facility_id", "patient"]),
            models.Index(fields=["tenant_id", "facility_id", "admitted_at"]),
        ]

    def __str__(self) -> str:
        return f"Admission({self.ip_number}, {self.status})"

    def stay_days(self, at: datetime | None = None) -> int:
        if self.billed_days:
            return int(self.billed_days)
        end = self.discharged_at or at or timezone.now()
        return calculate_days(self.admitted_at, end)
