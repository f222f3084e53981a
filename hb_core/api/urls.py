# hb_core/api/urls.py
from __future__ import annotations

from django.urls import path
from rest_framework.routers import DefaultRouter

from hb_core.admissions.api.views import AdmissionViewSet
from hb_core.billing.api.views import (
    AdmissionAdvancesView,
    AdmissionBillingSummaryView,
    AdmissionBillingSyncView,
    AdmissionBillingView,
    AdmissionBillItemsView,
    AdmissionPaymentsView,
    AdvanceViewSet,
    BillItemViewSet,
)
from hb_core.charges.api.views import OtherBillViewSet
from hb_core.patients.api.views import PatientViewSet

router = DefaultRouter()

router.register(r"patients", PatientViewSet, basename="patients")
router.register(r"admissions", AdmissionViewSet, basename="admissions")
router.register(r"billing/items", BillItemViewSet, basename="billing-items")
router.register(r"billing/advances", AdvanceViewSet, basename="billing-advances")
router.register(r"other-bills", OtherBillViewSet, basename="other-bills")

urlpatterns = [
    # Stay billing (non-ViewSet endpoints nested under an admission)
    path(
        "admissions/<uuid:admission_id>/billing/",
        AdmissionBillingView.as_view(),
        name="admission-billing",
    ),
    path(
        "admissions/<uuid:admission_id>/billing/summary/",
        AdmissionBillingSummaryView.as_view(),
        name="admission-billing-summary",
    ),
    path(
        "admissions/<uuid:admission_id>/billing/sync/",
        AdmissionBillingSyncView.as_view(),
        name="admission-billing-sync",
    ),
    path(
        "admissions/<uuid:admission_id>/billing/items/",
        AdmissionBillItemsView.as_view(),
        name="admission-billing-items",
    ),
    path(
        "admissions/<uuid:admission_id>/billing/advances/",
        AdmissionAdvancesView.as_view(),
        name="admission-billing-advances",
    ),
    path(
        "admissions/<uuid:admission_id>/billing/payments/",
        AdmissionPaymentsView.as_view(),
        name="admission-billing-payments",
    ),

    # Router URLs last (so explicit paths win if ever overlapping)
    *router.urls,
]
