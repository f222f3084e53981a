# hb_core/billing/selectors.py
from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from django.db.models import QuerySet
from rest_framework.exceptions import NotFound

from hb_core.billing.models import (
    Advance,
    AdvanceStatus,
    BillItem,
    BillItemStatus,
    PaymentTransaction,
)
from hb_core.common.money import money_sum


# -------------------------------------------------------------------
# Bill items
# -------------------------------------------------------------------

def bill_items_qs(*, tenant_id: UUID, facility_id: UUID) -> QuerySet[BillItem]:
    return BillItem.objects.filter(tenant_id=tenant_id, facility_id=facility_id)


def bill_items_for_admission(
    *,
    tenant_id: UUID,
    facility_id: UUID,
    admission_id: UUID,
    status: str | None = None,
    category: str | None = None,
    outstanding_only: bool = False,
) -> QuerySet[BillItem]:
    qs = bill_items_qs(tenant_id=tenant_id, facility_id=facility_id).filter(admission_id=admission_id)

    if status:
        qs = qs.filter(status=status)

    if category:
        qs = qs.filter(category=category)

    if outstanding_only:
        qs = qs.filter(status__in=[BillItemStatus.PENDING, BillItemStatus.PARTIAL], pending_amount__gt=0)

    return qs.order_by("service_date", "created_at", "id")


def get_bill_item(*, tenant_id: UUID, facility_id: UUID, item_id: UUID) -> BillItem:
    try:
        return bill_items_qs(tenant_id=tenant_id, facility_id=facility_id).get(id=item_id)
    except BillItem.DoesNotExist:
        raise NotFound("Bill item not found.")


# -------------------------------------------------------------------
# Advances
# -------------------------------------------------------------------

def list_advances(*, tenant_id: UUID, facility_id: UUID, admission_id: UUID) -> QuerySet[Advance]:
    """FIFO order: the order the allocator draws them in."""
    return Advance.objects.filter(
        tenant_id=tenant_id,
        facility_id=facility_id,
        admission_id=admission_id,
    ).order_by("created_at", "id")


def total_available_advance(*, tenant_id: UUID, facility_id: UUID, admission_id: UUID) -> Decimal:
    return money_sum(
        list_advances(tenant_id=tenant_id, facility_id=facility_id, admission_id=admission_id)
        .filter(status=AdvanceStatus.ACTIVE)
        .values_list("available_amount", flat=True)
    )


# -------------------------------------------------------------------
# Payments
# -------------------------------------------------------------------

def payment_transactions_for_admission(
    *,
    tenant_id: UUID,
    facility_id: UUID,
    admission_id: UUID,
) -> QuerySet[PaymentTransaction]:
    return (
        PaymentTransaction.objects.filter(tenant_id=tenant_id, facility_id=facility_id, admission_id=admission_id)
        .prefetch_related("allocations", "advance_draws")
        .order_by("-received_at", "-receipt_number")
    )
