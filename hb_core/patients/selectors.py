# hb_core/patients/selectors.py
from __future__ import annotations

from uuid import UUID

from django.db.models import Q, QuerySet
from rest_framework.exceptions import NotFound

from hb_core.patients.models import Patient


def get_patient(*, tenant_id: UUID, facility_id: UUID, patient_id: UUID) -> Patient:
    try:
        return Patient.objects.get(id=patient_id, tenant_id=tenant_id, facility_id=facility_id)
    except Patient.DoesNotExist:
        raise NotFound("Patient not found.")


def search_patients(
    *,
    tenant_id: UUID,
    facility_id: UUID,
    q: str | None = None,
) -> QuerySet[Patient]:
    qs = Patient.objects.filter(tenant_id=tenant_id, facility_id=facility_id)

    qv = (q or "").strip()
    if qv:
        qs = qs.filter(Q(full_name__icontains=qv) | Q(mrn__icontains=qv) | Q(phone__icontains=qv))

    return qs.order_by("full_name", "mrn")
