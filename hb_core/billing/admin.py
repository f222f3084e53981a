# hb_core/billing/admin.py
from django.contrib import admin

from hb_core.billing.models import (
    Advance,
    AdvanceDraw,
    BillDiscount,
    BillItem,
    PaymentAllocation,
    PaymentTransaction,
)


@admin.register(BillItem)
class BillItemAdmin(admin.ModelAdmin):
    list_display = (
        "admission",
        "category",
        "description",
        "net_amount",
        "paid_amount",
        "pending_amount",
        "status",
        "source_type",
        "service_date",
    )
    list_filter = ("tenant_id", "facility_id", "status", "category", "source_type")
    search_fields = ("description", "admission__ip_number")
    readonly_fields = ("gross_amount", "net_amount", "paid_amount", "pending_amount", "created_at", "updated_at")


@admin.register(Advance)
class AdvanceAdmin(admin.ModelAdmin):
    list_display = ("admission", "amount", "used_amount", "available_amount", "method", "status", "received_at")
    list_filter = ("tenant_id", "facility_id", "status", "method")
    search_fields = ("admission__ip_number", "reference")
    readonly_fields = ("used_amount", "available_amount", "created_at", "updated_at")


class PaymentAllocationInline(admin.TabularInline):
    model = PaymentAllocation
    extra = 0
    can_delete = False
    readonly_fields = ("bill_item", "amount")


class AdvanceDrawInline(admin.TabularInline):
    model = AdvanceDraw
    extra = 0
    can_delete = False
    readonly_fields = ("advance", "amount")


@admin.register(PaymentTransaction)
class PaymentTransactionAdmin(admin.ModelAdmin):
    list_display = ("receipt_number", "admission", "amount", "method", "received_at", "recorded_by_user_id")
    list_filter = ("tenant_id", "facility_id", "method")
    search_fields = ("receipt_number", "admission__ip_number", "reference")
    ordering = ("-received_at",)
    inlines = [PaymentAllocationInline, AdvanceDrawInline]

    # ledger rows are append-only
    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(BillDiscount)
class BillDiscountAdmin(admin.ModelAdmin):
    list_display = ("bill_item", "discount_type", "discount_value", "discount_amount", "approved_by", "created_at")
    list_filter = ("tenant_id", "facility_id", "discount_type")
    readonly_fields = ("created_at", "updated_at")
