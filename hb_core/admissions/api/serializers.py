# hb_core/admissions/api/serializers.py
from __future__ import annotations

from decimal import Decimal

from rest_framework import serializers

from hb_core.admissions.models import Admission


class AdmissionSerializer(serializers.ModelSerializer):
    stay_days = serializers.SerializerMethodField()

    class Meta:
        model = Admission
        fields = [
            "id",
            "tenant_id",
            "facility_id",
            "patient",
            "ip_number",
            "status",
            "admitted_at",
            "discharged_at",
            "bed_type",
            "bed_number",
            "bed_daily_rate",
            "consulting_doctor",
            "consultation_fee",
            "billed_days",
            "stay_days",
            "discount_amount",
            "discount_reason",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_stay_days(self, obj: Admission) -> int:
        return obj.stay_days()


class AdmissionCreateSerializer(serializers.Serializer):
    patient = serializers.UUIDField()
    ip_number = serializers.CharField(max_length=32, required=False, allow_blank=True, default="")
    admitted_at = serializers.DateTimeField(required=False, allow_null=True)
    bed_type = serializers.CharField(max_length=64, required=False, allow_blank=True, default="")
    bed_number = serializers.CharField(max_length=32, required=False, allow_blank=True, default="")
    bed_daily_rate = serializers.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    consulting_doctor = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    consultation_fee = serializers.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))


class AdmissionDischargeSerializer(serializers.Serializer):
    discharged_at = serializers.DateTimeField(required=False, allow_null=True)
