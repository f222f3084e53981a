# hb_core/charges/admin.py
from django.contrib import admin

from hb_core.charges.models import (
    DoctorService,
    LabOrder,
    LabOrderTest,
    OtherBill,
    OtherBillPayment,
    PharmacyBill,
    PharmacyBillLine,
    PrescribedMedicine,
    RadiologyOrder,
    RadiologyOrderScan,
    SurgeryCharge,
)


@admin.register(DoctorService)
class DoctorServiceAdmin(admin.ModelAdmin):
    list_display = ("admission", "doctor_name", "service_name", "fee", "quantity", "service_date", "status")
    list_filter = ("tenant_id", "facility_id", "status")
    search_fields = ("doctor_name", "service_name", "admission__ip_number")


@admin.register(SurgeryCharge)
class SurgeryChargeAdmin(admin.ModelAdmin):
    list_display = ("admission", "procedure_name", "surgeon_name", "surgery_date", "status")
    list_filter = ("tenant_id", "facility_id", "status")
    search_fields = ("procedure_name", "surgeon_name", "admission__ip_number")


@admin.register(PrescribedMedicine)
class PrescribedMedicineAdmin(admin.ModelAdmin):
    list_display = ("admission", "medicine_name", "quantity", "unit_price", "prescribed_on", "status")
    list_filter = ("tenant_id", "facility_id", "status")
    search_fields = ("medicine_name", "admission__ip_number")


class PharmacyBillLineInline(admin.TabularInline):
    model = PharmacyBillLine
    extra = 0


@admin.register(PharmacyBill)
class PharmacyBillAdmin(admin.ModelAdmin):
    list_display = ("bill_number", "admission", "bill_date", "paid_amount", "status")
    list_filter = ("tenant_id", "facility_id", "status")
    search_fields = ("bill_number", "admission__ip_number")
    inlines = [PharmacyBillLineInline]


class LabOrderTestInline(admin.TabularInline):
    model = LabOrderTest
    extra = 0


@admin.register(LabOrder)
class LabOrderAdmin(admin.ModelAdmin):
    list_display = ("order_number", "admission", "ordered_on", "status")
    list_filter = ("tenant_id", "facility_id", "status")
    search_fields = ("order_number", "admission__ip_number")
    inlines = [LabOrderTestInline]


class RadiologyOrderScanInline(admin.TabularInline):
    model = RadiologyOrderScan
    extra = 0


@admin.register(RadiologyOrder)
class RadiologyOrderAdmin(admin.ModelAdmin):
    list_display = ("order_number", "admission", "ordered_on", "status")
    list_filter = ("tenant_id", "facility_id", "status")
    search_fields = ("order_number", "admission__ip_number")
    inlines = [RadiologyOrderScanInline]


class OtherBillPaymentInline(admin.TabularInline):
    model = OtherBillPayment
    extra = 0
    readonly_fields = ("amount", "method", "reference", "received_at", "received_by_user_id")


@admin.register(OtherBill)
class OtherBillAdmin(admin.ModelAdmin):
    list_display = (
        "bill_number",
        "patient",
        "admission",
        "charge_category",
        "total_amount",
        "paid_amount",
        "balance_amount",
        "payment_status",
        "status",
        "bill_date",
    )
    list_filter = ("tenant_id", "facility_id", "payment_status", "charge_category", "status")
    search_fields = ("bill_number", "patient__full_name", "patient__mrn", "charge_description")
    readonly_fields = ("created_at", "updated_at")
    ordering = ("-bill_date",)
    inlines = [OtherBillPaymentInline]
