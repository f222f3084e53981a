# hb_core/charges/api/serializers.py
from __future__ import annotations

from decimal import Decimal

from rest_framework import serializers

from hb_core.charges.models import OtherBill, OtherBillPayment, OtherChargeCategory, PatientType
from hb_core.common.choices import COLLECTION_METHODS, PaymentMethod


class OtherBillSerializer(serializers.ModelSerializer):
    patient_name = serializers.CharField(source="patient.full_name", read_only=True)

    class Meta:
        model = OtherBill
        fields = [
            "id",
            "tenant_id",
            "facility_id",
            "patient",
            "patient_name",
            "admission",
            "bill_number",
            "bill_date",
            "patient_type",
            "charge_category",
            "charge_description",
            "quantity",
            "unit_price",
            "subtotal",
            "discount_percent",
            "discount_amount",
            "tax_percent",
            "tax_amount",
            "total_amount",
            "paid_amount",
            "balance_amount",
            "payment_status",
            "status",
            "reference_number",
            "remarks",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class OtherBillCreateSerializer(serializers.Serializer):
    patient = serializers.UUIDField()
    admission = serializers.UUIDField(required=False, allow_null=True)
    patient_type = serializers.ChoiceField(choices=PatientType.choices, default=PatientType.IP)
    charge_category = serializers.ChoiceField(choices=OtherChargeCategory.choices, default=OtherChargeCategory.OTHER)
    charge_description = serializers.CharField(max_length=255)
    quantity = serializers.DecimalField(max_digits=10, decimal_places=2, default=Decimal("1.00"))
    unit_price = serializers.DecimalField(max_digits=12, decimal_places=2)
    discount_percent = serializers.DecimalField(max_digits=5, decimal_places=2, default=Decimal("0.00"))
    tax_percent = serializers.DecimalField(max_digits=5, decimal_places=2, default=Decimal("0.00"))
    reference_number = serializers.CharField(max_length=64, required=False, allow_blank=True, default="")
    remarks = serializers.CharField(required=False, allow_blank=True, default="")


class OtherBillPaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = OtherBillPayment
        fields = [
            "id",
            "bill",
            "amount",
            "method",
            "reference",
            "notes",
            "received_at",
            "received_by_user_id",
            "created_at",
        ]
        read_only_fields = fields


class OtherBillPaymentCreateSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    method = serializers.ChoiceField(choices=COLLECTION_METHODS, default=PaymentMethod.CASH)
    reference = serializers.CharField(max_length=64, required=False, allow_blank=True, default="")
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class OtherBillCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
