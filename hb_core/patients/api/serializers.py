# hb_core/patients/api/serializers.py
from __future__ import annotations

from rest_framework import serializers

from hb_core.patients.models import Patient

PATIENT_FIELDS = ("mrn", "full_name", "gender", "date_of_birth", "phone", "address")


class PatientCreateSerializer(serializers.ModelSerializer):
    """Registration payload; MRN uniqueness is checked by the service."""

    class Meta:
        model = Patient
        fields = list(PATIENT_FIELDS)
        # the scoped unique constraint needs tenant/facility, which come from headers
        validators = []


class PatientSerializer(serializers.ModelSerializer):
    class Meta:
        model = Patient
        fields = ["id", "tenant_id", "facility_id", *PATIENT_FIELDS, "created_at", "updated_at"]
        read_only_fields = fields
