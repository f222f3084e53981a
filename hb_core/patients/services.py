# hb_core/patients/services.py
from __future__ import annotations

from uuid import UUID

from django.db import IntegrityError, transaction
from rest_framework.exceptions import ValidationError

from hb_core.audit.services import AuditService
from hb_core.patients.models import Patient


class PatientService:
    @staticmethod
    @transaction.atomic
    def register(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        actor_user_id: int | None,
        full_name: str,
        mrn: str,
        phone: str = "",
        gender: str = "",
        date_of_birth=None,
        address: str = "",
    ) -> Patient:
        try:
            with transaction.atomic():
                patient = Patient.objects.create(
                    tenant_id=tenant_id,
                    facility_id=facility_id,
                    full_name=full_name,
                    mrn=mrn,
                    phone=phone or "",
                    gender=gender or "",
                    date_of_birth=date_of_birth,
                    address=address or "",
                )
        except IntegrityError:
            raise ValidationError({"mrn": "MRN already exists for this tenant/facility."})

        AuditService.log(
            event_code="patient.created",
            entity_type="Patient",
            entity_id=patient.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={"mrn": mrn},
        )
        return patient
