# hb_core/admissions/admin.py
from django.contrib import admin

from hb_core.admissions.models import Admission


@admin.register(Admission)
class AdmissionAdmin(admin.ModelAdmin):
    list_display = (
        "ip_number",
        "patient",
        "status",
        "bed_number",
        "bed_daily_rate",
        "consultation_fee",
        "admitted_at",
        "discharged_at",
    )
    list_filter = ("tenant_id", "facility_id", "status")
    search_fields = ("ip_number", "patient__full_name", "patient__mrn", "bed_number")
    readonly_fields = ("created_at", "updated_at")
    ordering = ("-admitted_at",)
