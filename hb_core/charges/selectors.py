# hb_core/charges/selectors.py
from __future__ import annotations

from uuid import UUID

from django.db.models import QuerySet
from rest_framework.exceptions import NotFound

from hb_core.charges.models import ChargeStatus, OtherBill


def other_bills_qs(*, tenant_id: UUID, facility_id: UUID) -> QuerySet[OtherBill]:
    return OtherBill.objects.filter(tenant_id=tenant_id, facility_id=facility_id)


def other_bills_filtered(
    *,
    tenant_id: UUID,
    facility_id: UUID,
    patient_id: UUID | None = None,
    admission_id: UUID | None = None,
    payment_status: str | None = None,
    charge_category: str | None = None,
    status: str | None = None,
) -> QuerySet[OtherBill]:
    qs = other_bills_qs(tenant_id=tenant_id, facility_id=facility_id).select_related("patient").order_by("-bill_date")

    if patient_id:
        qs = qs.filter(patient_id=patient_id)

    if admission_id:
        qs = qs.filter(admission_id=admission_id)

    if payment_status:
        qs = qs.filter(payment_status=payment_status)

    if charge_category:
        qs = qs.filter(charge_category=charge_category)

    # Active bills only unless a status is asked for explicitly.
    qs = qs.filter(status=status or ChargeStatus.ACTIVE)

    return qs


def get_other_bill(*, tenant_id: UUID, facility_id: UUID, bill_id: UUID) -> OtherBill:
    try:
        return other_bills_qs(tenant_id=tenant_id, facility_id=facility_id).get(id=bill_id)
    except OtherBill.DoesNotExist:
        raise NotFound("Other bill not found.")
