# hb_core/charges/filters.py
from __future__ import annotations

import django_filters
from django.db.models import Q

from hb_core.charges.models import OtherBill, OtherBillPaymentStatus, OtherChargeCategory


class OtherBillFilter(django_filters.FilterSet):
    """
    Query-string filters for the other-bills list. Scope and the active-only
    default are applied by the selector before this runs.
    """
    patient = django_filters.UUIDFilter(field_name="patient_id")
    admission = django_filters.UUIDFilter(field_name="admission_id")
    payment_status = django_filters.ChoiceFilter(choices=OtherBillPaymentStatus.choices)
    charge_category = django_filters.ChoiceFilter(choices=OtherChargeCategory.choices)
    date_from = django_filters.DateFilter(field_name="bill_date", lookup_expr="date__gte")
    date_to = django_filters.DateFilter(field_name="bill_date", lookup_expr="date__lte")
    q = django_filters.CharFilter(method="filter_q")

    class Meta:
        model = OtherBill
        fields = ["patient", "admission", "payment_status", "charge_category"]

    def filter_q(self, queryset, name, value):
        value = (value or "").strip()
        if not value:
            return queryset
        return queryset.filter(Q(bill_number__icontains=value) | Q(patient__full_name__icontains=value))
