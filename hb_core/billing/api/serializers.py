# hb_core/billing/api/serializers.py
from __future__ import annotations

from decimal import Decimal

from rest_framework import serializers

from hb_core.billing.models import (
    Advance,
    AdvanceDraw,
    BillCategory,
    BillItem,
    DiscountType,
    PaymentAllocation,
    PaymentTransaction,
)
from hb_core.common.choices import COLLECTION_METHODS, PaymentMethod


def _money_field(**kwargs):
    return serializers.DecimalField(max_digits=14, decimal_places=2, **kwargs)


class BillItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = BillItem
        fields = [
            "id",
            "tenant_id",
            "facility_id",
            "admission",
            "category",
            "description",
            "quantity",
            "unit_price",
            "gross_amount",
            "discount_amount",
            "net_amount",
            "paid_amount",
            "pending_amount",
            "source_paid_amount",
            "status",
            "source_type",
            "source_id",
            "service_date",
            "cancelled_at",
            "cancel_reason",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class BillItemCreateSerializer(serializers.Serializer):
    category = serializers.ChoiceField(choices=BillCategory.choices)
    description = serializers.CharField(max_length=255)
    quantity = serializers.DecimalField(max_digits=10, decimal_places=2, default=Decimal("1.00"))
    unit_price = _money_field(default=Decimal("0.00"))
    service_date = serializers.DateField(required=False, allow_null=True)


class BillItemUpdateSerializer(serializers.Serializer):
    description = serializers.CharField(max_length=255, required=False)
    quantity = serializers.DecimalField(max_digits=10, decimal_places=2, required=False)
    unit_price = _money_field(required=False)


class BillItemDiscountSerializer(serializers.Serializer):
    discount_type = serializers.ChoiceField(choices=DiscountType.choices)
    discount_value = _money_field()
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    approved_by = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")


class CancelSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")


class AdvanceSerializer(serializers.ModelSerializer):
    class Meta:
        model = Advance
        fields = [
            "id",
            "tenant_id",
            "facility_id",
            "admission",
            "amount",
            "used_amount",
            "available_amount",
            "method",
            "reference",
            "notes",
            "status",
            "received_at",
            "received_by_user_id",
            "cancelled_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class AdvanceCreateSerializer(serializers.Serializer):
    amount = _money_field()
    method = serializers.ChoiceField(choices=COLLECTION_METHODS, default=PaymentMethod.CASH)
    reference = serializers.CharField(max_length=64, required=False, allow_blank=True, default="")
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class PaymentAllocationSerializer(serializers.ModelSerializer):
    class Meta:
        model = PaymentAllocation
        fields = ["id", "bill_item", "amount"]
        read_only_fields = fields


class AdvanceDrawSerializer(serializers.ModelSerializer):
    class Meta:
        model = AdvanceDraw
        fields = ["id", "advance", "amount"]
        read_only_fields = fields


class PaymentTransactionSerializer(serializers.ModelSerializer):
    allocations = PaymentAllocationSerializer(many=True, read_only=True)
    advance_draws = AdvanceDrawSerializer(many=True, read_only=True)

    class Meta:
        model = PaymentTransaction
        fields = [
            "id",
            "tenant_id",
            "facility_id",
            "admission",
            "receipt_number",
            "amount",
            "method",
            "reference",
            "notes",
            "received_at",
            "recorded_by_user_id",
            "allocations",
            "advance_draws",
            "created_at",
        ]
        read_only_fields = fields


class SelectionSerializer(serializers.Serializer):
    bill_item_id = serializers.UUIDField()
    pay_amount = _money_field()


class PaymentCreateSerializer(serializers.Serializer):
    selections = SelectionSerializer(many=True)
    method = serializers.ChoiceField(choices=PaymentMethod.choices, default=PaymentMethod.CASH)
    total_amount = _money_field()
    use_advance = serializers.BooleanField(default=False)
    advance_amount = _money_field(required=False, allow_null=True)
    reference = serializers.CharField(max_length=64, required=False, allow_blank=True, default="")
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class SingleBillPaymentSerializer(serializers.Serializer):
    amount = _money_field()
    method = serializers.ChoiceField(choices=PaymentMethod.choices, default=PaymentMethod.CASH)
    use_advance = serializers.BooleanField(default=False)
    advance_amount = _money_field(required=False, allow_null=True)
    reference = serializers.CharField(max_length=64, required=False, allow_blank=True, default="")
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class AdmissionBillingUpdateSerializer(serializers.Serializer):
    bed_daily_rate = _money_field(required=False)
    billed_days = serializers.IntegerField(required=False, allow_null=True, min_value=1)
    consultation_fee = _money_field(required=False)
    discount_amount = _money_field(required=False)
    discount_reason = serializers.CharField(max_length=255, required=False, allow_blank=True)


class BreakdownEntrySerializer(serializers.Serializer):
    category = serializers.CharField()
    label = serializers.CharField()
    amount = _money_field()


class BillingSummarySerializer(serializers.Serializer):
    admission_id = serializers.UUIDField()
    stay_days = serializers.IntegerField()
    subtotals = serializers.DictField(child=_money_field())
    breakdown = BreakdownEntrySerializer(many=True)
    gross_total = _money_field()
    advance_paid = _money_field()
    discount = _money_field()
    receipts_total = _money_field()
    source_paid_total = _money_field()
    paid_total = _money_field()
    net_payable = _money_field()
    pending_amount = _money_field()
    status = serializers.CharField()
    total_advance = _money_field()
    available_advance = _money_field()
    degraded_categories = serializers.ListField(child=serializers.CharField())
    is_complete = serializers.BooleanField()


class AllocationResultSerializer(serializers.Serializer):
    transactions = PaymentTransactionSerializer(many=True)
    summary = BillingSummarySerializer()


class SyncResultSerializer(serializers.Serializer):
    created = serializers.IntegerField()
    updated = serializers.IntegerField()
    cancelled = serializers.IntegerField()
    skipped = serializers.IntegerField()
    degraded_categories = serializers.ListField(child=serializers.CharField())
