# hb_core/admissions/services.py
from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from django.db import IntegrityError, transaction
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from hb_core.admissions.models import Admission, AdmissionStatus
from hb_core.admissions.selectors import AdmissionSelectors
from hb_core.audit.services import AuditService
from hb_core.common.money import ZERO, parse_money
from hb_core.common.numbering import next_number_locked
from hb_core.patients.models import Patient

IP_NUMBER_PREFIX = "IP"


class AdmissionService:
    @staticmethod
    @transaction.atomic
    def admit(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        patient_id: UUID,
        actor_user_id: int | None,
        ip_number: str = "",
        admitted_at=None,
        bed_type: str = "",
        bed_number: str = "",
        bed_daily_rate=Decimal("0.00"),
        consulting_doctor: str = "",
        consultation_fee=Decimal("0.00"),
    ) -> Admission:
        try:
            patient = Patient.objects.get(id=patient_id, tenant_id=tenant_id, facility_id=facility_id)
        except Patient.DoesNotExist:
            raise NotFound("Patient not found.")

        bed_daily_rate = parse_money(bed_daily_rate, "bed_daily_rate")
        consultation_fee = parse_money(consultation_fee, "consultation_fee")
        if bed_daily_rate < ZERO:
            raise ValidationError({"bed_daily_rate": "Must be >= 0"})
        if consultation_fee < ZERO:
            raise ValidationError({"consultation_fee": "Must be >= 0"})

        if not ip_number:
            ip_number = next_number_locked(
                model=Admission,
                field="ip_number",
                prefix=IP_NUMBER_PREFIX,
                tenant_id=tenant_id,
                facility_id=facility_id,
            )

        try:
            with transaction.atomic():
                admission = Admission.objects.create(
                    tenant_id=tenant_id,
                    facility_id=facility_id,
                    patient=patient,
                    ip_number=ip_number,
                    admitted_at=admitted_at or timezone.now(),
                    bed_type=bed_type or "",
                    bed_number=bed_number or "",
                    bed_daily_rate=bed_daily_rate,
                    consulting_doctor=consulting_doctor or "",
                    consultation_fee=consultation_fee,
                )
        except IntegrityError:
            raise ValidationError({"ip_number": "IP number already exists for this tenant/facility."})

        AuditService.log(
            event_code="admission.created",
            entity_type="Admission",
            entity_id=admission.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={"ip_number": ip_number, "patient_id": patient.id},
        )
        return admission

    @staticmethod
    @transaction.atomic
    def discharge(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        admission_id: UUID,
        actor_user_id: int | None,
        discharged_at=None,
    ) -> Admission:
        admission = AdmissionSelectors.get_admission(
            tenant_id=tenant_id,
            facility_id=facility_id,
            admission_id=admission_id,
            for_update=True,
        )
        if admission.status != AdmissionStatus.ADMITTED:
            raise ValidationError({"status": f"Cannot discharge an admission in {admission.status} status."})

        discharged_at = discharged_at or timezone.now()
        if discharged_at < admission.admitted_at:
            raise ValidationError({"discharged_at": "Discharge cannot precede admission."})

        admission.status = AdmissionStatus.DISCHARGED
        admission.discharged_at = discharged_at
        admission.save(update_fields=["status", "discharged_at", "updated_at"])

        AuditService.log(
            event_code="admission.discharged",
            entity_type="Admission",
            entity_id=admission.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={"discharged_at": discharged_at, "stay_days": admission.stay_days()},
        )
        return admission
