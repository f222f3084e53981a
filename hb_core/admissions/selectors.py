# hb_core/admissions/selectors.py
from __future__ import annotations

from uuid import UUID

from django.db.models import QuerySet
from rest_framework.exceptions import NotFound

from hb_core.admissions.models import Admission


class AdmissionSelectors:
    """
    Read-only queries for admissions.
    """

    @staticmethod
    def admissions_qs(*, tenant_id: UUID, facility_id: UUID) -> QuerySet[Admission]:
        return Admission.objects.filter(tenant_id=tenant_id, facility_id=facility_id)

    @staticmethod
    def list_admissions(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        patient_id: UUID | None = None,
        status: str | None = None,
    ) -> QuerySet[Admission]:
        qs = AdmissionSelectors.admissions_qs(tenant_id=tenant_id, facility_id=facility_id).select_related("patient")

        if patient_id:
            qs = qs.filter(patient_id=patient_id)

        if status:
            qs = qs.filter(status=status)

        return qs.order_by("-admitted_at")

    @staticmethod
    def get_admission(*, tenant_id: UUID, facility_id: UUID, admission_id: UUID, for_update: bool = False) -> Admission:
        qs = AdmissionSelectors.admissions_qs(tenant_id=tenant_id, facility_id=facility_id)
        if for_update:
            qs = qs.select_for_update()
        try:
            return qs.get(id=admission_id)
        except Admission.DoesNotExist:
            raise NotFound("Admission not found.")
