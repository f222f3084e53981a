# hb_core/patients/models.py
from django.db import models

from hb_core.common.models import ScopedModel


class Patient(ScopedModel):
    """Registry entry that admissions and counter bills point at."""
    mrn = models.CharField(max_length=64)
    full_name = models.CharField(max_length=255)
    gender = models.CharField(max_length=32, blank=True)
    date_of_birth = models.DateField(null=True, blank=True)
    phone = models.CharField(max_length=32, blank=True)
    # printed on the bill header
    address = models.TextField(blank=True)

    class Meta:
        db_table = "patients_patient"
        ordering = ["full_name"]
        constraints = [
            models.UniqueConstraint(fields=["tenant_id", "facility_id", "mrn"], name="uq_patient_scope_mrn"),
        ]
        indexes = [models.Index(fields=["tenant_id", "facility_id", "full_name"])]

    def __str__(self) -> str:
        return f"{self.mrn} {self.full_name}"
